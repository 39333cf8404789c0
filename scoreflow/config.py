"""Layout and default settings shared by the rendering pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Config:
    """
    Tunable constants for layout widths and score defaults.

    Widths are in VexFlow stave units (roughly pixels at scale 1).

    Attributes:
        voice_padding:        Extra width added to every chorus.
        entry_width:          Base width of a single note, rest or ghost note.
        accidental_width:     Extra width per accidental on an entry.
        dot_width:            Extra width per augmentation dot.
        grace_note_width:     Extra width per attached grace note.
        clef_width:           Width reserved for a clef modifier.
        key_accidental_width: Width per accidental of a key signature.
        time_signature_width: Width reserved for a time signature.
        measures_per_system:  Force a system break every N measures; None
                              only breaks where the document asks for it.
        default_clef:         Clef sign assumed before any <clef> appears.
        default_time:         (beats, beat value) assumed before any <time>.
    """

    voice_padding: int = 30
    entry_width: int = 28
    accidental_width: int = 10
    dot_width: int = 6
    grace_note_width: int = 14
    clef_width: int = 32
    key_accidental_width: int = 10
    time_signature_width: int = 24
    measures_per_system: int | None = 4
    default_clef: str = "G"
    default_time: tuple[int, int] = (4, 4)
