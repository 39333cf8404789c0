"""Division: exact rational time values measured in quarter notes."""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Final

from scoreflow.errors import UnrepresentableDurationError

#: Quarter-note length of each symbolic duration denominator.
DENOMINATOR_BEATS: Final[list[tuple[Fraction, str]]] = [
    (Fraction(8), "1/2"),
    (Fraction(4), "1"),
    (Fraction(2), "2"),
    (Fraction(1), "4"),
    (Fraction(1, 2), "8"),
    (Fraction(1, 4), "16"),
    (Fraction(1, 8), "32"),
    (Fraction(1, 16), "64"),
    (Fraction(1, 32), "128"),
    (Fraction(1, 64), "256"),
    (Fraction(1, 128), "512"),
    (Fraction(1, 256), "1024"),
]

#: MusicXML <type> values mapped to duration denominators.
NOTE_TYPE_DENOMINATORS: Final[dict[str, str]] = {
    "1024th": "1024",
    "512th": "512",
    "256th": "256",
    "128th": "128",
    "64th": "64",
    "32nd": "32",
    "16th": "16",
    "eighth": "8",
    "quarter": "4",
    "half": "2",
    "whole": "1",
    "breve": "1/2",
    "long": "1/2",
    "maxima": "",
}

# Dotted lengths relative to the undotted unit: 1 dot = 3/2, 2 dots = 7/4.
_DOT_FACTORS: Final[list[tuple[Fraction, int]]] = [
    (Fraction(3, 2), 1),
    (Fraction(7, 4), 2),
]


@dataclass(frozen=True)
class NoteDuration:
    """
    A displayable duration.

    Attributes:
        denominator: VexFlow duration denominator, e.g. "4" or "1/2". When
                     ``exact`` is False it holds the raw quarter-note fraction.
        dot_count:   Number of augmentation dots.
        exact:       False for the fraction fallback label.
    """

    denominator: str
    dot_count: int = 0
    exact: bool = True

    @classmethod
    def fallback(cls, division: Division) -> NoteDuration:
        """Explicit fraction label for durations with no symbolic name."""
        beats = division.to_beats()
        return cls(denominator=f"{beats.numerator}/{beats.denominator}", exact=False)

    @property
    def label(self) -> str:
        return self.denominator + "d" * self.dot_count


class Division:
    """
    An exact count of quarter-note subdivisions.

    MusicXML expresses durations as integer counts against a per-part
    ``<divisions>`` resolution. Values are kept as fractions of a quarter note
    so that arithmetic across resolutions never rounds. Rounding only happens
    in :meth:`to_note_duration`, where an exact symbolic match is required.
    """

    __slots__ = ("_beats",)

    def __init__(self, beats: Fraction) -> None:
        self._beats = Fraction(beats)

    @classmethod
    def of(cls, count: int, resolution: int) -> Division:
        """
        Build a Division from a raw count and a per-quarter-note resolution.

        Raises:
            ValueError: If ``resolution`` is not positive.
        """
        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got: {resolution}")
        return cls(Fraction(count, resolution))

    @classmethod
    def zero(cls) -> Division:
        return cls(Fraction(0))

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: Division) -> Division:
        return Division(self._beats + other._beats)

    def subtract(self, other: Division) -> Division:
        return Division(self._beats - other._beats)

    def __add__(self, other: Division) -> Division:
        return self.add(other)

    def __sub__(self, other: Division) -> Division:
        return self.subtract(other)

    def to_beats(self) -> Fraction:
        """Exact length in quarter notes."""
        return self._beats

    def is_zero(self) -> bool:
        return self._beats == 0

    def is_positive(self) -> bool:
        return self._beats > 0

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Division):
            return NotImplemented
        return self._beats == other._beats

    def __lt__(self, other: Division) -> bool:
        return self._beats < other._beats

    def __le__(self, other: Division) -> bool:
        return self._beats <= other._beats

    def __gt__(self, other: Division) -> bool:
        return self._beats > other._beats

    def __ge__(self, other: Division) -> bool:
        return self._beats >= other._beats

    def __hash__(self) -> int:
        return hash(self._beats)

    def __repr__(self) -> str:
        return f"Division({self._beats})"

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def to_note_duration(self) -> NoteDuration:
        """
        Map this value to a symbolic note duration.

        Plain binary fractions of a quarter note map directly. Exact 3/2 and
        7/4 overshoots of a unit map to the single and double dotted unit.

        Raises:
            UnrepresentableDurationError: If no exact symbolic match exists.
        """
        beats = self._beats
        for unit, denominator in DENOMINATOR_BEATS:
            if beats == unit:
                return NoteDuration(denominator=denominator)
        for unit, denominator in DENOMINATOR_BEATS:
            for factor, dot_count in _DOT_FACTORS:
                if beats == unit * factor:
                    return NoteDuration(denominator=denominator, dot_count=dot_count)
        raise UnrepresentableDurationError(f"no note duration for {beats} quarter notes")
