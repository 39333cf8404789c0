"""Unit tests for the StaveSignature chain and its change detection."""

import pytest
from lxml import etree

from scoreflow import musicxml
from scoreflow.division import Division
from scoreflow.stave_signature import (
    ALL_STAVE_MODIFIERS,
    Clef,
    KeySignature,
    StaveModifier,
    StaveSignature,
    TimeSignature,
)


def _attributes(xml: str) -> musicxml.Attributes:
    return musicxml.Attributes(musicxml.NamedElement(etree.fromstring(f"<attributes>{xml}</attributes>")))


def _chain(*attribute_xml: str) -> list[StaveSignature]:
    signatures: list[StaveSignature] = []
    previous = None
    for measure_index, xml in enumerate(attribute_xml):
        previous = StaveSignature.merge(
            measure_index=measure_index,
            measure_entry_index=0,
            previous=previous,
            attributes=_attributes(xml),
        )
        signatures.append(previous)
    return signatures


_GRAND_STAFF = (
    "<divisions>2</divisions>"
    "<key><fifths>2</fifths></key>"
    "<time><beats>3</beats><beat-type>4</beat-type></time>"
    "<staves>2</staves>"
    '<clef number="1"><sign>G</sign><line>2</line></clef>'
    '<clef number="2"><sign>F</sign><line>4</line></clef>'
)


def test_first_signature_reports_every_modifier() -> None:
    (first,) = _chain(_GRAND_STAFF)
    assert first.changed_stave_modifiers == ALL_STAVE_MODIFIERS


def test_unnumbered_key_and_time_apply_to_every_stave() -> None:
    (first,) = _chain(_GRAND_STAFF)
    for stave_number in (1, 2):
        assert first.key_signature(stave_number) == KeySignature(fifths=2)
        assert first.time_signature(stave_number) == TimeSignature(beats=3, beat_value=4)
    assert first.clef(2) == Clef(sign="F", line=4)
    assert first.stave_numbers == [1, 2]


def test_merge_carries_forward_unmentioned_values() -> None:
    _, second = _chain(_GRAND_STAFF, '<clef number="2"><sign>G</sign><line>2</line></clef>')
    assert second.clef(1) == Clef(sign="G", line=2)
    assert second.clef(2) == Clef(sign="G", line=2)
    assert second.key_signature(2) == KeySignature(fifths=2)
    assert second.quarter_note_divisions == 2


def test_only_the_clef_change_is_reported() -> None:
    _, second = _chain(_GRAND_STAFF, '<clef number="2"><sign>G</sign><line>2</line></clef>')
    assert second.changed_stave_modifiers == frozenset({StaveModifier.CLEF})


def test_restating_identical_values_reports_nothing() -> None:
    _, second = _chain(_GRAND_STAFF, _GRAND_STAFF)
    assert second.changed_stave_modifiers == frozenset()


def test_key_and_time_changes_are_detected() -> None:
    _, second = _chain(
        _GRAND_STAFF,
        "<key><fifths>-1</fifths></key><time><beats>4</beats><beat-type>4</beat-type></time>",
    )
    assert second.changed_stave_modifiers == frozenset({StaveModifier.KEY_SIGNATURE, StaveModifier.TIME_SIGNATURE})


def test_changes_since_an_earlier_signature_accumulate() -> None:
    first, _, third = _chain(
        _GRAND_STAFF,
        "<key><fifths>1</fifths></key>",
        '<clef number="1"><sign>C</sign><line>3</line></clef>',
    )
    assert third.changed_stave_modifiers == frozenset({StaveModifier.CLEF})
    assert third.stave_modifiers_changed_since(first) == frozenset({StaveModifier.CLEF, StaveModifier.KEY_SIGNATURE})
    assert third.stave_modifiers_changed_since(third) == frozenset()


def test_changed_stave_modifiers_is_memoized() -> None:
    _, second = _chain(_GRAND_STAFF, "<key><fifths>1</fifths></key>")
    assert second.changed_stave_modifiers is second.changed_stave_modifiers


def test_divisions_default_to_one_without_a_predecessor() -> None:
    (first,) = _chain("<key><fifths>0</fifths></key>")
    assert first.quarter_note_divisions == 1


def test_stave_count_is_raised_by_known_clefs() -> None:
    _, second = _chain(_GRAND_STAFF, "<key><fifths>0</fifths></key>")
    assert second.stave_count == 1
    assert second.stave_numbers == [1, 2]


def test_multi_rest_counts() -> None:
    first, second = _chain(
        "<measure-style><multiple-rest>4</multiple-rest></measure-style>",
        "<key><fifths>0</fifths></key>",
    )
    assert first.multi_rest_count(1) == 4
    assert first.specifies_multi_rest()
    assert not second.specifies_multi_rest()


def test_clef_names() -> None:
    assert Clef(sign="G").name == "treble"
    assert Clef(sign="F", line=4).name == "bass"
    assert Clef(sign="C", line=4).name == "tenor"
    assert Clef(sign="percussion").name == "percussion"
    assert Clef(sign="G", octave_change=-1).annotation == "8vb"


@pytest.mark.parametrize(
    ("fifths", "mode", "expected"),
    [(0, "major", "C"), (2, "major", "D"), (-2, "major", "Bb"), (0, "minor", "Am"), (3, "minor", "F#m")],
)
def test_key_signature_vexflow_key(fifths: int, mode: str, expected: str) -> None:
    assert KeySignature(fifths=fifths, mode=mode).vexflow_key == expected


def test_time_signature_measure_duration_and_spec() -> None:
    assert TimeSignature(beats=6, beat_value=8).measure_duration() == Division.of(3, 1)
    assert TimeSignature(beats=4, beat_value=4, symbol="common").vexflow_spec == "C"
    assert TimeSignature(beats=2, beat_value=2, symbol="cut").vexflow_spec == "C|"
    assert TimeSignature(beats=5, beat_value=8).vexflow_spec == "5/8"
