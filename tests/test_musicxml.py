"""Unit tests for the MusicXML query API: defaults, enums and document loading."""

import io
import zipfile

import pytest
from lxml import etree

from scoreflow import musicxml
from scoreflow.errors import NotationImportError


def _element(xml: str) -> musicxml.NamedElement:
    return musicxml.NamedElement(etree.fromstring(xml))


def _score(measure_xml: str) -> bytes:
    return (
        "<score-partwise>"
        "<work><work-title>Etude</work-title></work>"
        '<part-list><score-part id="P1"><part-name>Piano</part-name></score-part></part-list>'
        f'<part id="P1"><measure number="1">{measure_xml}</measure></part>'
        "</score-partwise>"
    ).encode("utf-8")


def test_note_defaults_when_children_are_missing() -> None:
    note = musicxml.Note(_element("<note><pitch><step>E</step><octave>5</octave></pitch></note>"))
    assert note.duration == 0
    assert note.voice == "1"
    assert note.staff == 1
    assert note.type == "whole"
    assert not note.has_type()
    assert note.stem is None
    assert note.alter == 0.0


def test_note_reads_pitch_and_octave_zero() -> None:
    note = musicxml.Note(
        _element("<note><pitch><step>A</step><alter>-1</alter><octave>0</octave></pitch></note>")
    )
    assert note.step == "A"
    assert note.octave == 0
    assert note.alter == -1.0


def test_invalid_enum_values_fall_back() -> None:
    note = musicxml.Note(_element("<note><stem>sideways</stem><type>huge</type></note>"))
    assert note.stem is None
    assert note.type == "whole"
    assert not note.has_type()


def test_non_numeric_integer_falls_back() -> None:
    note = musicxml.Note(_element("<note><duration>lots</duration></note>"))
    assert note.duration == 0


def test_chord_tail_collects_following_chord_notes() -> None:
    measure = musicxml.Measure(
        _element(
            "<measure>"
            "<note><pitch><step>C</step><octave>4</octave></pitch><duration>1</duration></note>"
            "<note><chord/><pitch><step>E</step><octave>4</octave></pitch><duration>1</duration></note>"
            "<note><chord/><pitch><step>G</step><octave>4</octave></pitch><duration>1</duration></note>"
            "<note><pitch><step>D</step><octave>4</octave></pitch><duration>1</duration></note>"
            "</measure>"
        )
    )
    head, second, third, fourth = measure.entries()
    assert isinstance(head, musicxml.Note)
    assert [note.step for note in head.chord_tail()] == ["E", "G"]
    assert isinstance(second, musicxml.Note) and second.is_chord_tail()
    assert isinstance(fourth, musicxml.Note) and not fourth.is_chord_tail()
    assert fourth.chord_tail() == []


def test_rest_display_pitch_and_measure_rest() -> None:
    note = musicxml.Note(
        _element('<note><rest measure="yes"><display-step>D</display-step><display-octave>5</display-octave></rest></note>')
    )
    assert note.is_rest()
    assert note.is_measure_rest()
    assert note.rest_display_pitch() == ("D", 5)


def test_note_notations() -> None:
    note = musicxml.Note(
        _element(
            "<note>"
            '<beam number="1">begin</beam><beam number="2">forward hook</beam>'
            "<notations>"
            '<slur type="start" number="2" placement="below"/>'
            '<tuplet type="start" bracket="no"/>'
            '<ornaments><wavy-line type="start"/></ornaments>'
            "</notations>"
            "</note>"
        )
    )
    assert [(beam.number, beam.value) for beam in note.beams()] == [(1, "begin"), (2, "forward hook")]
    (slur,) = note.slurs()
    assert (slur.type, slur.number, slur.placement) == ("start", 2, "below")
    (tuplet,) = note.tuplets()
    assert tuplet.placement == "above"
    assert not tuplet.show_bracket
    assert [line.type for line in note.wavy_lines()] == ["start"]


def test_attributes_accessors() -> None:
    attributes = musicxml.Attributes(
        _element(
            "<attributes>"
            "<divisions>4</divisions>"
            "<key><fifths>-3</fifths><mode>minor</mode></key>"
            '<time symbol="common"><beats>3+2</beats><beat-type>8</beat-type></time>'
            "<staves>2</staves>"
            '<clef number="2"><sign>F</sign><line>4</line></clef>'
            "<measure-style><multiple-rest>3</multiple-rest></measure-style>"
            "</attributes>"
        )
    )
    assert attributes.quarter_note_divisions == 4
    assert attributes.stave_count == 2
    (key,) = attributes.keys()
    assert (key.fifths, key.mode, key.stave_number) == (-3, "minor", None)
    (time,) = attributes.times()
    assert time.signatures() == [(5, 8)]
    assert time.symbol == "common"
    (clef,) = attributes.clefs()
    assert (clef.stave_number, clef.sign, clef.line) == (2, "F", 4)
    (style,) = attributes.measure_styles()
    assert style.multiple_rest_count == 3


def test_attributes_defaults() -> None:
    attributes = musicxml.Attributes(_element("<attributes/>"))
    assert attributes.quarter_note_divisions is None
    assert attributes.stave_count == 1


def test_direction_tokens_and_spanner_markup() -> None:
    direction = musicxml.Direction(
        _element(
            '<direction placement="above">'
            "<direction-type><words>dolce</words></direction-type>"
            "<direction-type><dynamics><mf/></dynamics></direction-type>"
            '<direction-type><wedge type="crescendo"/></direction-type>'
            '<direction-type><octave-shift type="down" size="15"/></direction-type>'
            '<direction-type><pedal type="start" line="yes"/></direction-type>'
            "<staff>2</staff>"
            "</direction>"
        )
    )
    assert direction.tokens() == ["dolce", "mf"]
    assert direction.staff == 2
    assert direction.voice is None
    (wedge,) = direction.wedges()
    assert (wedge.type, wedge.placement) == ("crescendo", "above")
    (shift,) = direction.octave_shifts()
    assert (shift.type, shift.size) == ("down", 15)
    (pedal,) = direction.pedals()
    assert pedal.line
    assert not pedal.sign


def test_parse_musicxml_reads_parts_and_title() -> None:
    score = musicxml.parse_musicxml(_score("<note><rest/><duration>4</duration></note>"))
    assert score.title == "Etude"
    (part,) = score.parts()
    assert part.id == "P1"
    assert part.name == "Piano"
    (measure,) = part.measures()
    assert measure.number == "1"
    assert isinstance(measure.entries()[0], musicxml.Note)


def test_parse_musicxml_reads_compressed_container() -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(
            "META-INF/container.xml",
            '<container><rootfiles><rootfile full-path="score.xml"/></rootfiles></container>',
        )
        archive.writestr("score.xml", _score("<note><rest/><duration>4</duration></note>"))
    score = musicxml.parse_musicxml(buffer.getvalue())
    assert score.title == "Etude"


def test_parse_musicxml_rejects_compressed_without_container() -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("score.xml", _score(""))
    with pytest.raises(NotationImportError, match="container"):
        musicxml.parse_musicxml(buffer.getvalue())


def test_parse_musicxml_rejects_timewise() -> None:
    with pytest.raises(NotationImportError, match="timewise"):
        musicxml.parse_musicxml(b"<score-timewise/>")


def test_parse_musicxml_rejects_malformed_xml() -> None:
    with pytest.raises(NotationImportError):
        musicxml.parse_musicxml(b"<score-partwise><part>")
