"""Unit tests for Division: exact rational time and note duration lookup."""

from fractions import Fraction

import pytest

from scoreflow.division import Division, NoteDuration
from scoreflow.errors import UnrepresentableDurationError


def test_of_keeps_exact_fraction() -> None:
    assert Division.of(1, 3).to_beats() == Fraction(1, 3)


def test_of_rejects_non_positive_resolution() -> None:
    with pytest.raises(ValueError):
        Division.of(1, 0)


def test_mixed_resolutions_add_exactly() -> None:
    total = Division.of(1, 3) + Division.of(1, 6) + Division.of(1, 2)
    assert total == Division.of(1, 1)


def test_add_then_subtract_is_identity() -> None:
    a = Division.of(7, 12)
    b = Division.of(5, 8)
    assert a.add(b).subtract(b) == a


def test_comparisons_and_zero() -> None:
    assert Division.zero().is_zero()
    assert Division.of(1, 4) < Division.of(1, 2)
    assert Division.of(2, 4) == Division.of(1, 2)
    assert (Division.of(1, 4) - Division.of(1, 2)) < Division.zero()
    assert not Division.zero().is_positive()


def test_equal_divisions_hash_alike() -> None:
    assert len({Division.of(2, 4), Division.of(1, 2)}) == 1


@pytest.mark.parametrize(
    ("count", "resolution", "denominator"),
    [
        (8, 1, "1/2"),
        (4, 1, "1"),
        (2, 1, "2"),
        (1, 1, "4"),
        (1, 2, "8"),
        (1, 4, "16"),
        (1, 8, "32"),
    ],
)
def test_to_note_duration_plain_units(count: int, resolution: int, denominator: str) -> None:
    assert Division.of(count, resolution).to_note_duration() == NoteDuration(denominator=denominator)


def test_to_note_duration_dotted() -> None:
    assert Division.of(3, 2).to_note_duration() == NoteDuration(denominator="4", dot_count=1)
    assert Division.of(3, 1).to_note_duration() == NoteDuration(denominator="2", dot_count=1)
    assert Division.of(7, 4).to_note_duration() == NoteDuration(denominator="4", dot_count=2)


def test_to_note_duration_raises_for_triplet_values() -> None:
    with pytest.raises(UnrepresentableDurationError):
        Division.of(1, 3).to_note_duration()


def test_unrepresentable_duration_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        Division.of(5, 1).to_note_duration()


def test_fallback_label_is_the_exact_fraction() -> None:
    fallback = NoteDuration.fallback(Division.of(2, 3))
    assert fallback.denominator == "2/3"
    assert not fallback.exact


def test_label_appends_dots() -> None:
    assert NoteDuration(denominator="8", dot_count=2).label == "8dd"
