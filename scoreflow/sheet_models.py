"""Data models for the VexFlow score payload."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class VexflowGraceNote:
    """A grace note drawn before its main note."""

    keys: list[str]
    duration: str
    slash: bool = False


@dataclass(frozen=True)
class VexflowNote:
    """
    A single VexFlow note, chord, rest or ghost note token.

    ``kind`` is one of ``note``, ``chord``, ``rest`` or ``ghost``. Rest
    durations carry the VexFlow ``r`` suffix; ghost notes do not.
    """

    keys: list[str]
    duration: str
    accidentals: list[str | None]
    kind: str = "note"
    dots: int = 0
    stem: str = "auto"
    tokens: list[str] = field(default_factory=list)
    grace_notes: list[VexflowGraceNote] = field(default_factory=list)


@dataclass(frozen=True)
class VexflowVoice:
    """One voice of a stave, spanning the whole measure."""

    id: str
    num_beats: int
    beat_value: int
    notes: list[VexflowNote]


@dataclass(frozen=True)
class VexflowStave:
    """One stave of a measure with the modifiers drawn at its start."""

    number: int
    clef: str
    voices: list[VexflowVoice]
    clef_annotation: str | None = None
    key_signature: str | None = None
    time_signature: str | None = None
    multi_rest_count: int = 0


@dataclass(frozen=True)
class VexflowMeasure:
    """All staves of one part in one measure."""

    index: int
    number: str
    system: int
    width: int
    staves: list[VexflowStave]


@dataclass(frozen=True)
class VexflowPart:
    id: str
    name: str
    measures: list[VexflowMeasure]


@dataclass(frozen=True)
class VexflowNoteRef:
    """Locates a note in the payload: part, measure, stave, voice and note index."""

    part: int
    measure: int
    stave: int
    voice: int
    note: int


@dataclass(frozen=True)
class VexflowSpanner:
    """A decoration attached to two or more notes."""

    kind: str
    notes: list[VexflowNoteRef]
    options: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoreDocument:
    """Neutral score representation consumed by the renderers."""

    title: str
    system_count: int
    parts: list[VexflowPart]
    spanners: list[VexflowSpanner] = field(default_factory=list)
