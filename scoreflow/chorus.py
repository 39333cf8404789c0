"""Chorus: the simultaneous voices of one stave within one measure.

This is *not* the songwriting sense of chorus. A Chorus takes the flat,
interleaved event stream of a measure (notes, <backup>, <forward>,
directions) and rebuilds the independent voices it encodes:

1. **Placement** – a running time cursor assigns every top-level note or
   rest a start/end interval. <backup> rewinds the cursor to start a
   concurrent voice; <forward> skips time silently.

2. **Stem resolution** – when several voices share the stave, the voice
   whose first pitched note sits highest gets stems up, the lowest gets stems
   down and any voice in between gets no stems. Stems written explicitly in
   the document are never changed.

3. **Gap filling** – silent ghost notes cover any time a voice does not
   account for, so every voice spans the whole measure.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from functools import cached_property
from typing import Final, Sequence, Union

from scoreflow import musicxml
from scoreflow.config import Config
from scoreflow.division import NOTE_TYPE_DENOMINATORS, Division, NoteDuration
from scoreflow.errors import UnrepresentableDurationError
from scoreflow.logging_utils import get_logger
from scoreflow.stave_signature import Clef, KeySignature, StaveSignature, TimeSignature

logger = get_logger(__name__)

MeasureEntry = Union[StaveSignature, musicxml.Note, musicxml.Backup, musicxml.Forward, musicxml.Direction]

# Diatonic number of C4 in music21, used as staff line zero.
MIDDLE_C_DIATONIC: Final[int] = 29

_ALTER_SUFFIXES: Final[dict[float, str]] = {1.0: "#", -1.0: "b", 2.0: "##", -2.0: "bb"}

_ACCIDENTAL_CODES: Final[dict[str, str]] = {
    "sharp": "#",
    "flat": "b",
    "natural": "n",
    "double-sharp": "##",
    "sharp-sharp": "##",
    "flat-flat": "bb",
    "double-flat": "bb",
    "natural-sharp": "#",
    "natural-flat": "b",
}

_NOTEHEAD_SUFFIXES: Final[dict[str, str]] = {
    "x": "X",
    "cross": "X",
    "circle-x": "CX",
    "diamond": "D",
    "square": "S",
    "triangle": "T",
    "slash": "SLASH",
}

_LOW_REST_CLEFS: Final[frozenset[str]] = frozenset({"bass", "baritone-f", "subbass"})


class StemDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NONE = "none"
    AUTO = "auto"

    @classmethod
    def from_musicxml(cls, stem: str | None) -> StemDirection:
        if stem in ("up", "double"):
            return cls.UP
        if stem == "down":
            return cls.DOWN
        if stem == "none":
            return cls.NONE
        return cls.AUTO


class EntryKind(str, Enum):
    NOTE = "note"
    CHORD = "chord"
    REST = "rest"
    GHOST = "ghost"


@dataclass(frozen=True)
class Key:
    """One notehead position: a pitch plus its displayed accidental."""

    step: str
    octave: int
    alter: float = 0.0
    accidental: str | None = None
    notehead: str | None = None

    @classmethod
    def from_note(cls, note: musicxml.Note) -> Key:
        accidental = note.accidental
        return cls(
            step=note.step,
            octave=note.octave,
            alter=note.alter,
            accidental=_ACCIDENTAL_CODES.get(accidental) if accidental else None,
            notehead=note.notehead,
        )

    @property
    def vexflow_key(self) -> str:
        """VexFlow key string, e.g. ``f#/4`` or ``c/5/X``."""
        key = f"{self.step.lower()}{_ALTER_SUFFIXES.get(self.alter, '')}/{self.octave}"
        suffix = _NOTEHEAD_SUFFIXES.get(self.notehead or "")
        return f"{key}/{suffix}" if suffix else key


@dataclass(frozen=True)
class GraceNote:
    """A grace note attached to the main entry that follows it."""

    keys: tuple[Key, ...]
    duration: NoteDuration
    slash: bool = False


@dataclass(frozen=True)
class VoiceEntry:
    """
    A placed note, chord, rest or silent ghost note.

    Attributes:
        kind:         What the adapter should draw.
        start:        Offset from the start of the measure.
        end:          ``start`` plus the entry's sounding length.
        duration:     Displayed note length.
        keys:         Noteheads; rests carry one display position.
        stem:         Resolved stem direction.
        tokens:       Direction text attached to this entry.
        grace_notes:  Grace notes drawn before this entry.
        measure_rest: True for whole-measure rests.
    """

    kind: EntryKind
    start: Division
    end: Division
    duration: NoteDuration
    keys: tuple[Key, ...] = ()
    stem: StemDirection = StemDirection.AUTO
    tokens: tuple[str, ...] = ()
    grace_notes: tuple[GraceNote, ...] = ()
    measure_rest: bool = False

    @property
    def length(self) -> Division:
        return self.end - self.start

    @property
    def is_rest(self) -> bool:
        return self.kind in (EntryKind.REST, EntryKind.GHOST)


@dataclass
class VoiceEntryData:
    """Working record for one placed note. Only lives during voice construction."""

    voice_id: str
    note: musicxml.Note
    start: Division
    end: Division
    stem: StemDirection
    tokens: list[str] = field(default_factory=list)
    grace_notes: list[musicxml.Note] = field(default_factory=list)


@dataclass(frozen=True)
class Placement:
    """The voice and offset a note or direction was placed at."""

    element: Union[musicxml.Note, musicxml.Direction]
    voice_id: str
    start: Division


@dataclass(frozen=True)
class Voice:
    """One independent, gap-free line of entries within a chorus."""

    id: str
    entries: tuple[VoiceEntry, ...]
    time_signature: TimeSignature

    def duration(self) -> Division:
        total = Division.zero()
        for entry in self.entries:
            total = total + entry.length
        return total


def to_note_duration(division: Division) -> NoteDuration:
    """Symbolic duration for ``division``, or the fraction label when there is none."""
    try:
        return division.to_note_duration()
    except UnrepresentableDurationError:
        logger.warning("Unrepresentable duration %s; using fraction label", division)
        return NoteDuration.fallback(division)


def ghost_note(start: Division, end: Division) -> VoiceEntry:
    return VoiceEntry(kind=EntryKind.GHOST, start=start, end=end, duration=to_note_duration(end - start))


def fill_gaps(entries: Sequence[VoiceEntry], measure_duration: Division | None = None) -> list[VoiceEntry]:
    """
    Insert ghost notes wherever ``entries`` leave time unaccounted for.

    A gap is the distance from the end of the previous entry (or zero) to the
    start of the next one. Negative gaps, from overlapping entries, are
    treated as zero. When ``measure_duration`` is given the tail up to it is
    filled as well. Running this on its own output inserts nothing.
    """
    result: list[VoiceEntry] = []
    cursor = Division.zero()
    for entry in entries:
        gap = entry.start - cursor
        if gap.is_positive():
            result.append(ghost_note(cursor, entry.start))
        elif gap < Division.zero():
            logger.warning("Ignoring negative gap of %s before entry at %s", gap, entry.start)
        result.append(entry)
        cursor = entry.end

    if measure_duration is not None:
        if (measure_duration - cursor).is_positive():
            result.append(ghost_note(cursor, measure_duration))
        elif cursor > measure_duration:
            logger.warning("Voice runs to %s, past the measure length %s", cursor, measure_duration)
    return result


def voice_id_order(voice_id: str) -> tuple[int, int]:
    """Sort key for voice ids: integer-like ids ascend, others keep document order after them."""
    return (0, int(voice_id)) if voice_id.isdigit() else (1, 0)


def staff_line(keys: Sequence[Key], clef: Clef) -> float:
    """
    Staff line of the highest key, in half-spaces above middle C.

    Only the relative order matters; the clef's octave change is applied so
    transposing clefs rank voices by written position.
    """
    from music21 import pitch

    highest = max(
        pitch.Pitch(f"{key.step.upper()}{key.octave - clef.octave_change}").diatonicNoteNum for key in keys
    )
    return (highest - MIDDLE_C_DIATONIC) / 2


class Chorus:
    """
    The voices of one stave in one measure.

    Inputs are fixed at construction, so :attr:`voices` and
    :attr:`min_justify_width` are computed once and cached.
    """

    def __init__(
        self,
        *,
        config: Config,
        clef: Clef,
        time_signature: TimeSignature,
        key_signature: KeySignature | None = None,
        quarter_note_divisions: int = 1,
        measure_entries: Sequence[MeasureEntry] | None = None,
        stave_number: int | None = None,
        rest_entries: Sequence[MeasureEntry] = (),
    ) -> None:
        self.config = config
        self.clef = clef
        self.time_signature = time_signature
        self.key_signature = key_signature or KeySignature()
        self.quarter_note_divisions = quarter_note_divisions
        self.stave_number = stave_number
        self._measure_entries = tuple(measure_entries) if measure_entries is not None else None
        # Stream a whole-rest chorus still reads its directions from.
        self._rest_entries = tuple(rest_entries)

    @classmethod
    def whole_rest(
        cls,
        *,
        config: Config,
        clef: Clef,
        time_signature: TimeSignature,
        stave_number: int | None = None,
        quarter_note_divisions: int = 1,
        measure_entries: Sequence[MeasureEntry] = (),
    ) -> Chorus:
        """
        A chorus holding a single whole-measure rest.

        Directions in ``measure_entries`` are still placed, on voice "1".
        """
        return cls(
            config=config,
            clef=clef,
            time_signature=time_signature,
            quarter_note_divisions=quarter_note_divisions,
            stave_number=stave_number,
            rest_entries=measure_entries,
        )

    @classmethod
    def multi_voice(
        cls,
        *,
        config: Config,
        clef: Clef,
        time_signature: TimeSignature,
        key_signature: KeySignature,
        quarter_note_divisions: int,
        measure_entries: Sequence[MeasureEntry],
        stave_number: int | None = None,
    ) -> Chorus:
        """A chorus rebuilt from the measure's event stream."""
        return cls(
            config=config,
            clef=clef,
            time_signature=time_signature,
            key_signature=key_signature,
            quarter_note_divisions=quarter_note_divisions,
            measure_entries=measure_entries,
            stave_number=stave_number,
        )

    @classmethod
    def from_measure_entries(
        cls,
        *,
        config: Config,
        clef: Clef,
        time_signature: TimeSignature,
        key_signature: KeySignature,
        quarter_note_divisions: int,
        measure_entries: Sequence[MeasureEntry],
        stave_number: int | None = None,
    ) -> Chorus:
        """Multi-voice when the stave has notes, otherwise a whole-measure rest."""
        has_notes = any(
            isinstance(entry, musicxml.Note)
            and not entry.is_grace()
            and (stave_number is None or entry.staff == stave_number)
            for entry in measure_entries
        )
        if not has_notes:
            logger.debug("No notes on stave %s; using a whole-measure rest", stave_number)
            return cls.whole_rest(
                config=config,
                clef=clef,
                time_signature=time_signature,
                stave_number=stave_number,
                quarter_note_divisions=quarter_note_divisions,
                measure_entries=measure_entries,
            )
        return cls.multi_voice(
            config=config,
            clef=clef,
            time_signature=time_signature,
            key_signature=key_signature,
            quarter_note_divisions=quarter_note_divisions,
            measure_entries=measure_entries,
            stave_number=stave_number,
        )

    @property
    def is_whole_rest(self) -> bool:
        return self._measure_entries is None

    @cached_property
    def voices(self) -> tuple[Voice, ...]:
        if self._measure_entries is None:
            return (self._create_whole_rest(),)
        return tuple(self._create_multi_voice())

    @property
    def placements(self) -> list[Placement]:
        """Where each note and direction of this stave landed, in stream order."""
        if self._measure_entries is None:
            _, placed = self._compute_voice_entry_data(self._rest_entries)
            return [replace(placement, voice_id="1") for placement in placed]
        return list(self._placed[1])

    @cached_property
    def _placed(self) -> tuple[dict[str, list[VoiceEntryData]], list[Placement]]:
        return self._compute_voice_entry_data(self._measure_entries or ())

    @cached_property
    def min_justify_width(self) -> int:
        """Smallest width that fits the widest voice, padding included."""
        if not self.voices:
            return 0
        return max(self._voice_width(voice) for voice in self.voices) + self.config.voice_padding

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _voice_width(self, voice: Voice) -> int:
        config = self.config
        width = 0
        for entry in voice.entries:
            width += config.entry_width
            width += config.accidental_width * sum(1 for key in entry.keys if key.accidental)
            width += config.dot_width * entry.duration.dot_count
            width += config.grace_note_width * len(entry.grace_notes)
        return width

    def _default_rest_key(self) -> Key:
        if self.clef.name in _LOW_REST_CLEFS:
            return Key(step="D", octave=3)
        return Key(step="B", octave=4)

    def _create_whole_rest(self) -> Voice:
        measure_duration = self.time_signature.measure_duration()
        rest = VoiceEntry(
            kind=EntryKind.REST,
            start=Division.zero(),
            end=measure_duration,
            duration=NoteDuration(denominator="1"),
            keys=(self._default_rest_key(),),
            measure_rest=True,
        )
        return Voice(id="1", entries=(rest,), time_signature=self.time_signature)

    def _create_multi_voice(self) -> list[Voice]:
        voice_entry_data, _ = self._placed
        self._adjust_stems(voice_entry_data)
        return self._compute_fully_qualified_voices(voice_entry_data)

    def _on_stave(self, staff: int | None) -> bool:
        return self.stave_number is None or staff is None or staff == self.stave_number

    def _compute_voice_entry_data(
        self, measure_entries: Sequence[MeasureEntry]
    ) -> tuple[dict[str, list[VoiceEntryData]], list[Placement]]:
        result: dict[str, list[VoiceEntryData]] = {}
        placements: list[Placement] = []

        quarter_note_divisions = self.quarter_note_divisions
        cursor = Division.zero()
        tokens: list[str] = []
        grace_notes: list[musicxml.Note] = []
        pending_directions: list[tuple[musicxml.Direction, Division]] = []
        last_voice_id = "1"

        for entry in measure_entries:
            if isinstance(entry, StaveSignature):
                quarter_note_divisions = entry.quarter_note_divisions
            elif isinstance(entry, musicxml.Direction):
                # Directions without a <staff> belong to the first stave.
                if self._on_stave(entry.staff or 1):
                    tokens.extend(entry.tokens())
                    if entry.voice is not None:
                        placements.append(Placement(element=entry, voice_id=entry.voice, start=cursor))
                    else:
                        pending_directions.append((entry, cursor))
            elif isinstance(entry, musicxml.Backup):
                cursor = cursor - Division.of(entry.duration, quarter_note_divisions)
            elif isinstance(entry, musicxml.Forward):
                cursor = cursor + Division.of(entry.duration, quarter_note_divisions)
            elif isinstance(entry, musicxml.Note):
                if entry.is_chord_tail():
                    continue
                if not self._on_stave(entry.staff):
                    # Notes on other staves still move time forward.
                    if not entry.is_grace():
                        cursor = cursor + Division.of(entry.duration, quarter_note_divisions)
                    continue
                if entry.is_grace():
                    grace_notes.append(entry)
                    continue

                end = cursor + Division.of(entry.duration, quarter_note_divisions)
                result.setdefault(entry.voice, []).append(
                    VoiceEntryData(
                        voice_id=entry.voice,
                        note=entry,
                        start=cursor,
                        end=end,
                        stem=StemDirection.from_musicxml(entry.stem),
                        tokens=tokens,
                        grace_notes=grace_notes,
                    )
                )
                for direction, offset in pending_directions:
                    placements.append(Placement(element=direction, voice_id=entry.voice, start=offset))
                placements.append(Placement(element=entry, voice_id=entry.voice, start=cursor))
                last_voice_id = entry.voice
                cursor = end
                tokens = []
                grace_notes = []
                pending_directions = []

        for direction, offset in pending_directions:
            placements.append(Placement(element=direction, voice_id=last_voice_id, start=offset))

        ordered = {voice_id: result[voice_id] for voice_id in sorted(result, key=voice_id_order)}
        return ordered, placements

    def _adjust_stems(self, voice_entry_data: dict[str, list[VoiceEntryData]]) -> None:
        """
        Assign stems from the first pitched note of each voice, in place.

        Entries with an explicit stem in the document are left untouched.
        """
        first_pitched: list[VoiceEntryData] = []
        for entries in voice_entry_data.values():
            first = next((entry for entry in entries if not entry.note.is_rest()), None)
            if first is not None:
                first_pitched.append(first)
        if len(first_pitched) <= 1:
            return

        # Stable sort, so equal lines keep voice order.
        first_pitched.sort(key=lambda entry: -staff_line(self._keys_of(entry.note), self.clef))

        stems: dict[str, StemDirection] = {entry.voice_id: StemDirection.NONE for entry in first_pitched[1:-1]}
        stems[first_pitched[0].voice_id] = StemDirection.UP
        stems[first_pitched[-1].voice_id] = StemDirection.DOWN

        for voice_id, entries in voice_entry_data.items():
            stem = stems.get(voice_id)
            if stem is None:
                continue
            for entry in entries:
                if entry.stem is StemDirection.AUTO:
                    entry.stem = stem

    def _keys_of(self, note: musicxml.Note) -> tuple[Key, ...]:
        return tuple(Key.from_note(n) for n in [note, *note.chord_tail()])

    def _note_duration(self, note: musicxml.Note, division: Division) -> NoteDuration:
        if note.has_type():
            denominator = NOTE_TYPE_DENOMINATORS[note.type]
            if denominator:
                return NoteDuration(denominator=denominator, dot_count=note.dot_count)
        return to_note_duration(division)

    def _to_voice_entry(self, data: VoiceEntryData) -> VoiceEntry:
        note = data.note
        graces = tuple(
            GraceNote(
                keys=self._keys_of(grace),
                duration=NoteDuration(denominator=NOTE_TYPE_DENOMINATORS.get(grace.type) or "8"),
                slash=grace.has_grace_slash(),
            )
            for grace in data.grace_notes
        )
        common = dict(start=data.start, end=data.end, tokens=tuple(data.tokens), grace_notes=graces)

        if note.is_rest():
            display = note.rest_display_pitch()
            key = Key(step=display[0], octave=display[1]) if display else self._default_rest_key()
            if note.is_measure_rest():
                duration = NoteDuration(denominator="1")
            else:
                duration = self._note_duration(note, data.end - data.start)
            return VoiceEntry(
                kind=EntryKind.REST,
                duration=duration,
                keys=(key,),
                measure_rest=note.is_measure_rest(),
                **common,
            )

        keys = self._keys_of(note)
        return VoiceEntry(
            kind=EntryKind.CHORD if len(keys) > 1 else EntryKind.NOTE,
            duration=self._note_duration(note, data.end - data.start),
            keys=keys,
            stem=data.stem,
            **common,
        )

    def _compute_fully_qualified_voices(self, voice_entry_data: dict[str, list[VoiceEntryData]]) -> list[Voice]:
        measure_duration = self.time_signature.measure_duration()
        voices: list[Voice] = []
        for voice_id, entries in voice_entry_data.items():
            placed = [self._to_voice_entry(data) for data in entries]
            voices.append(
                Voice(
                    id=voice_id,
                    entries=tuple(fill_gaps(placed, measure_duration)),
                    time_signature=self.time_signature,
                )
            )
        return voices
