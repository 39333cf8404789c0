"""Unit tests for the Score walker: systems, signatures, multi-rests and spanners."""

import pytest

from scoreflow.chorus import EntryKind
from scoreflow.config import Config
from scoreflow.musicxml import parse_musicxml
from scoreflow.score import Score, ScoreRendering
from scoreflow.stave_signature import StaveModifier

_ATTRIBUTES = (
    "<attributes><divisions>1</divisions><key><fifths>0</fifths></key>"
    "<time><beats>4</beats><beat-type>4</beat-type></time>"
    "<clef><sign>G</sign><line>2</line></clef></attributes>"
)

_WHOLE_NOTE = "<note><pitch><step>C</step><octave>5</octave></pitch><duration>4</duration><type>whole</type></note>"


def _quarter(step: str, extra: str = "") -> str:
    return (
        f"<note><pitch><step>{step}</step><octave>5</octave></pitch>"
        f"<duration>1</duration><voice>1</voice><type>quarter</type>{extra}</note>"
    )


def _render(*measures: str, config: Config | None = None, parts: int = 1) -> ScoreRendering:
    part_list = "".join(f'<score-part id="P{n}"><part-name>Part {n}</part-name></score-part>' for n in range(1, parts + 1))
    body = "".join(
        f'<part id="P{n}">'
        + "".join(f'<measure number="{i + 1}">{content}</measure>' for i, content in enumerate(measures))
        + "</part>"
        for n in range(1, parts + 1)
    )
    xml = f"<score-partwise><movement-title>Test</movement-title><part-list>{part_list}</part-list>{body}</score-partwise>"
    return Score(parse_musicxml(xml.encode("utf-8")), config).render()


def test_single_measure_rendering() -> None:
    rendering = _render(_ATTRIBUTES + _WHOLE_NOTE)
    assert rendering.title == "Test"
    assert rendering.system_count == 1
    (part,) = rendering.parts
    (measure,) = part.measures
    (stave,) = measure.staves
    assert stave.modifiers == frozenset(StaveModifier)
    assert stave.clef.name == "treble"
    (voice,) = stave.chorus.voices
    assert voice.entries[0].kind is EntryKind.NOTE


def test_measures_per_system_breaks_systems() -> None:
    rendering = _render(_ATTRIBUTES + _WHOLE_NOTE, *[_WHOLE_NOTE] * 4, config=Config(measures_per_system=2))
    assert rendering.system_count == 3
    assert [measure.system_index for measure in rendering.parts[0].measures] == [0, 0, 1, 1, 2]


def test_print_new_system_forces_a_break() -> None:
    rendering = _render(
        _ATTRIBUTES + _WHOLE_NOTE,
        '<print new-system="yes"/>' + _WHOLE_NOTE,
        config=Config(measures_per_system=None),
    )
    assert rendering.system_count == 2


def test_system_start_redraws_clef_and_key_only() -> None:
    rendering = _render(_ATTRIBUTES + _WHOLE_NOTE, _WHOLE_NOTE, _WHOLE_NOTE, config=Config(measures_per_system=2))
    modifiers = [measure.staves[0].modifiers for measure in rendering.parts[0].measures]
    assert modifiers[1] == frozenset()
    assert modifiers[2] == frozenset({StaveModifier.CLEF, StaveModifier.KEY_SIGNATURE})


def test_mid_score_time_change_is_reported() -> None:
    rendering = _render(
        _ATTRIBUTES + _WHOLE_NOTE,
        "<attributes><time><beats>3</beats><beat-type>4</beat-type></time></attributes>"
        "<note><pitch><step>C</step><octave>5</octave></pitch><duration>3</duration></note>",
        config=Config(measures_per_system=None),
    )
    second = rendering.parts[0].measures[1].staves[0]
    assert second.modifiers == frozenset({StaveModifier.TIME_SIGNATURE})
    assert second.time_signature.beats == 3


def test_mid_measure_divisions_change_applies_from_its_position() -> None:
    rendering = _render(
        _ATTRIBUTES + _WHOLE_NOTE,
        "<note><pitch><step>C</step><octave>5</octave></pitch><duration>2</duration><voice>1</voice><type>half</type></note>"
        "<attributes><divisions>2</divisions></attributes>"
        "<note><pitch><step>D</step><octave>5</octave></pitch><duration>4</duration><voice>1</voice><type>half</type></note>",
        config=Config(measures_per_system=None),
    )
    (voice,) = rendering.parts[0].measures[1].staves[0].chorus.voices
    assert [entry.kind for entry in voice.entries] == [EntryKind.NOTE, EntryKind.NOTE]
    assert [entry.start.to_beats() for entry in voice.entries] == [0, 2]
    assert voice.entries[-1].end.to_beats() == 4


def test_mid_measure_clef_change_is_drawn_from_the_next_measure() -> None:
    rendering = _render(
        _ATTRIBUTES + _WHOLE_NOTE,
        _quarter("C") + _quarter("D") + "<attributes><clef><sign>F</sign><line>4</line></clef></attributes>" + _quarter("E") + _quarter("F"),
        _WHOLE_NOTE,
        config=Config(measures_per_system=None),
    )
    _, changed, following = (measure.staves[0] for measure in rendering.parts[0].measures)
    assert changed.clef.name == "treble"
    assert changed.modifiers == frozenset()
    assert following.clef.name == "bass"
    assert following.modifiers == frozenset({StaveModifier.CLEF})


def test_modifier_widths_add_to_the_measure_width() -> None:
    config = Config(measures_per_system=None)
    rendering = _render(_ATTRIBUTES + _WHOLE_NOTE, _WHOLE_NOTE, config=config)
    first, second = rendering.parts[0].measures
    assert first.min_justify_width - second.min_justify_width == config.clef_width + config.time_signature_width


def test_multi_rest_skips_following_measures() -> None:
    rest = "<note><rest/><duration>4</duration></note>"
    rendering = _render(
        _ATTRIBUTES.replace("</attributes>", "<measure-style><multiple-rest>3</multiple-rest></measure-style></attributes>")
        + rest,
        rest,
        rest,
        _WHOLE_NOTE,
        config=Config(measures_per_system=None),
    )
    measures = rendering.parts[0].measures
    assert [measure.index for measure in measures] == [0, 3]
    assert measures[0].multi_rest_count == 3
    assert measures[0].staves[0].chorus.is_whole_rest


def test_grand_staff_splits_notes_by_staff() -> None:
    attributes = (
        "<attributes><divisions>1</divisions><staves>2</staves>"
        '<clef number="1"><sign>G</sign><line>2</line></clef>'
        '<clef number="2"><sign>F</sign><line>4</line></clef></attributes>'
    )
    rendering = _render(
        attributes
        + "<note><pitch><step>E</step><octave>5</octave></pitch><duration>4</duration><voice>1</voice><staff>1</staff></note>"
        + "<backup><duration>4</duration></backup>"
        + "<note><pitch><step>C</step><octave>3</octave></pitch><duration>4</duration><voice>5</voice><staff>2</staff></note>"
    )
    treble, bass = rendering.parts[0].measures[0].staves
    assert treble.clef.name == "treble"
    assert bass.clef.name == "bass"
    assert [voice.id for voice in treble.chorus.voices] == ["1"]
    assert [voice.id for voice in bass.chorus.voices] == ["5"]


def test_beams_slurs_and_tuplets_are_collected() -> None:
    measure = (
        _ATTRIBUTES
        + _quarter("C", '<beam number="1">begin</beam><notations><slur type="start"/><tuplet type="start"/></notations>')
        + _quarter("D", '<beam number="1">continue</beam>')
        + _quarter("E", '<beam number="1">end</beam><notations><tuplet type="stop"/></notations>')
        + _quarter("F", '<notations><slur type="stop"/></notations>')
    )
    spanners = _render(measure).spanners
    (beam,) = spanners.beams
    assert len(beam.fragments) == 3
    (tuplet,) = spanners.tuplets
    assert len(tuplet.fragments) == 3
    (slur,) = spanners.slurs
    assert [anchor.offset.to_beats() for anchor in slur.anchors] == [0, 3]


def test_wedge_crossing_a_system_break_is_split() -> None:
    def wedge(kind: str) -> str:
        return f'<direction><direction-type><wedge type="{kind}"/></direction-type></direction>'

    rendering = _render(
        _ATTRIBUTES + wedge("diminuendo") + _quarter("C") + wedge("continue") + _quarter("D") + _quarter("E") + _quarter("F"),
        wedge("continue") + _quarter("C") + _quarter("D") + _quarter("E") + wedge("stop") + _quarter("F"),
        config=Config(measures_per_system=1),
    )
    assert rendering.system_count == 2
    first, second = rendering.spanners.wedges
    assert first.payload["type"] == "diminuendo"
    assert {anchor.measure_index for anchor in second.anchors} == {1}
    assert second.payload["type"] == "diminuendo"


def test_wedge_ending_in_a_whole_rest_measure_is_kept() -> None:
    def wedge(kind: str) -> str:
        return f'<direction><direction-type><wedge type="{kind}"/></direction-type></direction>'

    rendering = _render(
        _ATTRIBUTES + wedge("crescendo") + _quarter("C") + _quarter("D") + _quarter("E") + _quarter("F"),
        wedge("stop") + "<forward><duration>4</duration></forward>",
        config=Config(measures_per_system=None),
    )
    assert rendering.parts[0].measures[1].staves[0].chorus.is_whole_rest
    (spanner,) = rendering.spanners.wedges
    assert [anchor.measure_index for anchor in spanner.anchors] == [0, 1]


def test_octave_shift_and_pedal_payloads() -> None:
    def direction(content: str) -> str:
        return f"<direction><direction-type>{content}</direction-type></direction>"

    rendering = _render(
        _ATTRIBUTES
        + direction('<octave-shift type="down" size="8"/>')
        + direction('<pedal type="start" line="yes"/>')
        + _quarter("C")
        + _quarter("D")
        + _quarter("E")
        + direction('<octave-shift type="stop" size="8"/>')
        + direction('<pedal type="stop" line="yes"/>')
        + _quarter("F")
    )
    (shift,) = rendering.spanners.octave_shifts
    assert shift.payload == {"text": "8", "superscript": "va", "position": "top"}
    (pedal,) = rendering.spanners.pedals
    assert pedal.payload["line"] is True


@pytest.mark.parametrize("parts", [1, 2])
def test_parts_share_systems(parts: int) -> None:
    rendering = _render(_ATTRIBUTES + _WHOLE_NOTE, _WHOLE_NOTE, parts=parts, config=Config(measures_per_system=1))
    assert rendering.system_count == 2
    assert len(rendering.parts) == parts
    assert all(len(part.measures) == 2 for part in rendering.parts)
