"""StaveSignature: the clef/key/time state in effect at a point in a part."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from functools import cached_property
from typing import Final, Mapping, TypeVar

from scoreflow import musicxml
from scoreflow.division import Division

T = TypeVar("T")

StaveMap = Mapping[int, T]

# (sign, line) -> VexFlow clef name
_CLEF_NAMES: Final[dict[tuple[str, int], str]] = {
    ("G", 2): "treble",
    ("G", 1): "french",
    ("F", 4): "bass",
    ("F", 3): "baritone-f",
    ("F", 5): "subbass",
    ("C", 1): "soprano",
    ("C", 2): "mezzo-soprano",
    ("C", 3): "alto",
    ("C", 4): "tenor",
    ("C", 5): "baritone-c",
}

_DEFAULT_CLEF_LINES: Final[dict[str, int]] = {"G": 2, "F": 4, "C": 3}


class StaveModifier(str, Enum):
    """Decorations drawn at the start of a stave."""

    CLEF = "clef"
    KEY_SIGNATURE = "key_signature"
    TIME_SIGNATURE = "time_signature"


ALL_STAVE_MODIFIERS: Final[frozenset[StaveModifier]] = frozenset(StaveModifier)


@dataclass(frozen=True)
class Clef:
    """A clef, compared structurally."""

    sign: str = "G"
    line: int | None = None
    octave_change: int = 0

    @classmethod
    def from_musicxml(cls, clef: musicxml.Clef) -> Clef:
        return cls(sign=clef.sign, line=clef.line, octave_change=clef.octave_change)

    @property
    def name(self) -> str:
        """VexFlow clef name, e.g. ``treble`` or ``bass``."""
        if self.sign == "percussion":
            return "percussion"
        if self.sign == "TAB":
            return "tab"
        line = self.line if self.line is not None else _DEFAULT_CLEF_LINES.get(self.sign, 2)
        return _CLEF_NAMES.get((self.sign, line), "treble")

    @property
    def annotation(self) -> str | None:
        """VexFlow clef annotation for octave-transposing clefs."""
        if self.octave_change > 0:
            return "8va"
        if self.octave_change < 0:
            return "8vb"
        return None


@dataclass(frozen=True)
class KeySignature:
    """A key signature given as a count of fifths and a mode."""

    fifths: int = 0
    mode: str = "major"

    @property
    def accidental_count(self) -> int:
        return abs(self.fifths)

    @property
    def vexflow_key(self) -> str:
        """VexFlow key spec, e.g. ``D`` or ``Bbm``."""
        from music21 import key

        mode = "minor" if self.mode == "minor" else "major"
        tonic = key.KeySignature(self.fifths).asKey(mode).tonic.name.replace("-", "b")
        return f"{tonic}m" if mode == "minor" else tonic


@dataclass(frozen=True)
class TimeSignature:
    """A time signature with its optional display symbol."""

    beats: int = 4
    beat_value: int = 4
    symbol: str | None = None

    def measure_duration(self) -> Division:
        """Nominal length of one measure."""
        return Division(Fraction(self.beats * 4, self.beat_value))

    @property
    def vexflow_spec(self) -> str:
        if self.symbol == "common" and (self.beats, self.beat_value) == (4, 4):
            return "C"
        if self.symbol == "cut" and (self.beats, self.beat_value) == (2, 2):
            return "C|"
        return f"{self.beats}/{self.beat_value}"


def _overlay(previous: StaveMap[T] | None, updates: dict[int, T]) -> dict[int, T]:
    merged: dict[int, T] = dict(previous or {})
    merged.update(updates)
    return merged


class StaveSignature:
    """
    An immutable snapshot of the <attributes> state in effect.

    Each signature is merged forward from its predecessor: staves that the
    new <attributes> does not mention keep the predecessor's values. The
    chain must be built strictly in measure-then-entry order.
    """

    def __init__(
        self,
        *,
        measure_index: int,
        measure_entry_index: int,
        clefs: StaveMap[Clef],
        key_signatures: StaveMap[KeySignature],
        time_signatures: StaveMap[TimeSignature],
        multi_rest_counts: StaveMap[int],
        quarter_note_divisions: int,
        stave_count: int,
        previous: StaveSignature | None,
        attributes: musicxml.Attributes | None,
    ) -> None:
        self._measure_index = measure_index
        self._measure_entry_index = measure_entry_index
        self._clefs = dict(clefs)
        self._key_signatures = dict(key_signatures)
        self._time_signatures = dict(time_signatures)
        self._multi_rest_counts = dict(multi_rest_counts)
        self._quarter_note_divisions = quarter_note_divisions
        self._stave_count = stave_count
        self._previous = previous
        self._attributes = attributes

    @classmethod
    def merge(
        cls,
        *,
        measure_index: int,
        measure_entry_index: int,
        previous: StaveSignature | None,
        attributes: musicxml.Attributes,
    ) -> StaveSignature:
        """Create a signature by overlaying ``attributes`` on ``previous``."""
        stave_count = attributes.stave_count

        # Keys, times and measure styles without a number apply to every stave.
        known_staves = set(previous._clefs) if previous is not None else set()
        all_staves = range(1, max([stave_count, *known_staves]) + 1)

        def targets(stave_number: int | None) -> list[int]:
            return list(all_staves) if stave_number is None else [stave_number]

        clefs = {clef.stave_number: Clef.from_musicxml(clef) for clef in attributes.clefs()}

        key_signatures: dict[int, KeySignature] = {}
        for key in attributes.keys():
            for stave_number in targets(key.stave_number):
                key_signatures[stave_number] = KeySignature(fifths=key.fifths, mode=key.mode)

        time_signatures: dict[int, TimeSignature] = {}
        for time in attributes.times():
            signatures = time.signatures()
            if time.is_senza_misura() or not signatures:
                continue
            beats, beat_value = signatures[0]
            for stave_number in targets(time.stave_number):
                time_signatures[stave_number] = TimeSignature(beats=beats, beat_value=beat_value, symbol=time.symbol)

        multi_rest_counts: dict[int, int] = {}
        for measure_style in attributes.measure_styles():
            for stave_number in targets(measure_style.stave_number):
                multi_rest_counts[stave_number] = measure_style.multiple_rest_count

        quarter_note_divisions = attributes.quarter_note_divisions
        if quarter_note_divisions is None:
            quarter_note_divisions = previous._quarter_note_divisions if previous is not None else 1

        return cls(
            measure_index=measure_index,
            measure_entry_index=measure_entry_index,
            clefs=_overlay(previous and previous._clefs, clefs),
            key_signatures=_overlay(previous and previous._key_signatures, key_signatures),
            time_signatures=_overlay(previous and previous._time_signatures, time_signatures),
            multi_rest_counts=_overlay(previous and previous._multi_rest_counts, multi_rest_counts),
            quarter_note_divisions=quarter_note_divisions,
            stave_count=stave_count,
            previous=previous,
            attributes=attributes,
        )

    @cached_property
    def changed_stave_modifiers(self) -> frozenset[StaveModifier]:
        """
        The stave modifiers that *meaningfully* changed from the predecessor.

        A stave absent from the predecessor counts as changed. The first
        signature in a chain reports every modifier.
        """
        previous = self._previous
        if previous is None:
            return ALL_STAVE_MODIFIERS
        return self.stave_modifiers_changed_since(previous)

    def stave_modifiers_changed_since(self, previous: StaveSignature) -> frozenset[StaveModifier]:
        """The stave modifiers whose value on some stave differs from ``previous``."""
        changed: set[StaveModifier] = set()
        comparisons: list[tuple[StaveModifier, Mapping[int, object], Mapping[int, object]]] = [
            (StaveModifier.CLEF, self._clefs, previous._clefs),
            (StaveModifier.KEY_SIGNATURE, self._key_signatures, previous._key_signatures),
            (StaveModifier.TIME_SIGNATURE, self._time_signatures, previous._time_signatures),
        ]
        for modifier, current_values, previous_values in comparisons:
            for stave_number, value in current_values.items():
                if previous_values.get(stave_number) != value:
                    changed.add(modifier)
                    break
        return frozenset(changed)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def measure_index(self) -> int:
        return self._measure_index

    @property
    def measure_entry_index(self) -> int:
        """Position of the originating <attributes> within its measure."""
        return self._measure_entry_index

    @property
    def previous(self) -> StaveSignature | None:
        return self._previous

    @property
    def attributes(self) -> musicxml.Attributes | None:
        return self._attributes

    @property
    def quarter_note_divisions(self) -> int:
        return self._quarter_note_divisions

    @property
    def stave_count(self) -> int:
        return self._stave_count

    @property
    def stave_numbers(self) -> list[int]:
        """Every stave with a clef or implied by the stave count."""
        return sorted(set(range(1, self._stave_count + 1)) | set(self._clefs))

    def clef(self, stave_number: int) -> Clef | None:
        return self._clefs.get(stave_number)

    def key_signature(self, stave_number: int) -> KeySignature | None:
        return self._key_signatures.get(stave_number)

    def time_signature(self, stave_number: int) -> TimeSignature | None:
        return self._time_signatures.get(stave_number)

    def multi_rest_count(self, stave_number: int) -> int:
        return self._multi_rest_counts.get(stave_number, 0)

    def specifies_multi_rest(self) -> bool:
        """Whether the originating <attributes> itself carries a <measure-style>."""
        return self._attributes is not None and len(self._attributes.measure_styles()) > 0

    def __repr__(self) -> str:
        return f"StaveSignature(measure={self._measure_index}, entry={self._measure_entry_index})"
