"""SheetExporter: converts MusicXML files to VexFlow Markdown or JSON payloads."""

from __future__ import annotations

from pathlib import Path
from typing import Final

from scoreflow.chorus import EntryKind, Voice, VoiceEntry
from scoreflow.config import Config
from scoreflow.logging_utils import get_logger
from scoreflow.musicxml import parse_musicxml
from scoreflow.score import MeasureRendering, Score, ScoreRendering, StaveRendering
from scoreflow.sheet_models import (
    ScoreDocument,
    VexflowGraceNote,
    VexflowMeasure,
    VexflowNote,
    VexflowNoteRef,
    VexflowPart,
    VexflowSpanner,
    VexflowStave,
    VexflowVoice,
)
from scoreflow.sheet_renderers import JsonRenderer, SheetRenderer, VexflowMarkdownRenderer
from scoreflow.spanners import Spanner, SpannerAnchor, SpannerKind
from scoreflow.stave_signature import StaveModifier

logger = get_logger(__name__)

SUPPORTED_FORMATS: Final[set[str]] = {"md-vexflow", "json"}

# Spanners VexFlow can only draw within a single stave of a single measure.
_LOCAL_SPANNER_KINDS: Final[frozenset[SpannerKind]] = frozenset({SpannerKind.BEAM, SpannerKind.TUPLET})

_VoiceKey = tuple[str, int, int, str]


class SheetExporter:
    """
    Convert a MusicXML file into sheet output via a pluggable renderer.

    Supported formats:
    - ``md-vexflow``: markdown file with embedded VexFlow JavaScript renderer.
    - ``json``: the VexFlow score payload on its own.
    """

    def __init__(self, title: str = "", output_format: str = "md-vexflow", config: Config | None = None) -> None:
        self.title = title
        normalized = output_format.strip().lower()
        if normalized not in SUPPORTED_FORMATS:
            supported = ", ".join(sorted(SUPPORTED_FORMATS))
            raise ValueError(f"Unsupported output format '{output_format}'. Use one of: {supported}.")
        self.output_format = normalized
        self.config = config or Config()
        self.renderer = self._build_renderer(normalized)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_renderer(self, output_format: str) -> SheetRenderer:
        if output_format == "json":
            return JsonRenderer()
        return VexflowMarkdownRenderer()

    def _vexflow_duration(self, entry: VoiceEntry) -> str:
        duration = entry.duration
        # VexFlow has no name for fraction fallbacks; the ghost or rest still keeps its slot.
        label = duration.label if duration.exact else "q"
        return f"{label}r" if entry.kind is EntryKind.REST else label

    def _entry_to_note(self, entry: VoiceEntry) -> VexflowNote:
        return VexflowNote(
            keys=[key.vexflow_key for key in entry.keys],
            duration=self._vexflow_duration(entry),
            accidentals=[key.accidental for key in entry.keys],
            kind=entry.kind.value,
            dots=entry.duration.dot_count,
            stem=entry.stem.value,
            tokens=list(entry.tokens),
            grace_notes=[
                VexflowGraceNote(
                    keys=[key.vexflow_key for key in grace.keys],
                    duration=grace.duration.label,
                    slash=grace.slash,
                )
                for grace in entry.grace_notes
            ],
        )

    def _voice_to_payload(self, voice: Voice) -> VexflowVoice:
        return VexflowVoice(
            id=voice.id,
            num_beats=voice.time_signature.beats,
            beat_value=voice.time_signature.beat_value,
            notes=[self._entry_to_note(entry) for entry in voice.entries],
        )

    def _stave_to_payload(self, stave: StaveRendering) -> VexflowStave:
        modifiers = stave.modifiers
        return VexflowStave(
            number=stave.stave_number,
            clef=stave.clef.name,
            voices=[self._voice_to_payload(voice) for voice in stave.chorus.voices],
            clef_annotation=stave.clef.annotation if StaveModifier.CLEF in modifiers else None,
            key_signature=stave.key_signature.vexflow_key if StaveModifier.KEY_SIGNATURE in modifiers else None,
            time_signature=stave.time_signature.vexflow_spec if StaveModifier.TIME_SIGNATURE in modifiers else None,
            multi_rest_count=stave.multi_rest_count,
        )

    def _measure_to_payload(self, measure: MeasureRendering) -> VexflowMeasure:
        return VexflowMeasure(
            index=measure.index,
            number=measure.number,
            system=measure.system_index,
            width=measure.min_justify_width,
            staves=[self._stave_to_payload(stave) for stave in measure.staves],
        )

    def _index_voices(self, rendering: ScoreRendering) -> dict[_VoiceKey, tuple[tuple[int, int, int, int], Voice]]:
        """Map (part id, measure index, stave number, voice id) to payload position and voice."""
        index: dict[_VoiceKey, tuple[tuple[int, int, int, int], Voice]] = {}
        for part_position, part in enumerate(rendering.parts):
            for measure_position, measure in enumerate(part.measures):
                for stave_position, stave in enumerate(measure.staves):
                    for voice_position, voice in enumerate(stave.chorus.voices):
                        key = (part.id, measure.index, stave.stave_number, voice.id)
                        index[key] = ((part_position, measure_position, stave_position, voice_position), voice)
        return index

    def _resolve_anchor(
        self, anchor: SpannerAnchor, index: dict[_VoiceKey, tuple[tuple[int, int, int, int], Voice]]
    ) -> VexflowNoteRef | None:
        found = index.get((anchor.part_id, anchor.measure_index, anchor.stave_number, anchor.voice_id))
        if found is None:
            return None
        (part, measure, stave, voice_position), voice = found
        entries = voice.entries

        note_index = next(
            (i for i, entry in enumerate(entries) if entry.start == anchor.offset and entry.kind is not EntryKind.GHOST),
            None,
        )
        if note_index is None:
            note_index = next(
                (i for i, entry in enumerate(entries) if entry.start <= anchor.offset < entry.end),
                len(entries) - 1,
            )
        return VexflowNoteRef(part=part, measure=measure, stave=stave, voice=voice_position, note=note_index)

    def _spanner_to_payload(
        self, spanner: Spanner, index: dict[_VoiceKey, tuple[tuple[int, int, int, int], Voice]]
    ) -> VexflowSpanner | None:
        refs: list[VexflowNoteRef] = []
        for anchor in spanner.anchors:
            ref = self._resolve_anchor(anchor, index)
            if ref is not None and (not refs or refs[-1] != ref):
                refs.append(ref)
        if len(refs) < 2:
            logger.debug("Dropping %s spanner that resolves to fewer than two notes", spanner.kind.value)
            return None
        if spanner.kind in _LOCAL_SPANNER_KINDS and len({(ref.part, ref.measure, ref.stave) for ref in refs}) > 1:
            logger.debug("Dropping %s spanner that crosses a measure or stave", spanner.kind.value)
            return None
        return VexflowSpanner(kind=spanner.kind.value, notes=refs, options=dict(spanner.payload))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_document(self, rendering: ScoreRendering, title: str = "") -> ScoreDocument:
        """Flatten a score rendering into the payload handed to the renderer."""
        index = self._index_voices(rendering)
        spanners = [self._spanner_to_payload(spanner, index) for spanner in rendering.spanners]
        return ScoreDocument(
            title=title,
            system_count=rendering.system_count,
            parts=[
                VexflowPart(
                    id=part.id,
                    name=part.name or "",
                    measures=[self._measure_to_payload(measure) for measure in part.measures],
                )
                for part in rendering.parts
            ],
            spanners=[spanner for spanner in spanners if spanner is not None],
        )

    def render_rendering(self, data: bytes) -> ScoreRendering:
        """
        Parse MusicXML bytes and walk them into a rendering.

        Raises:
            NotationImportError: If the data is not a readable partwise score.
        """
        return Score(parse_musicxml(data), self.config).render()

    def render_content(self, data: bytes) -> str:
        """Render MusicXML bytes into the selected output format."""
        rendering = self.render_rendering(data)
        title = self.title or rendering.title or ""
        return self.renderer.render(title=title, score_document=self.build_document(rendering, title))

    def export(self, musicxml_path: str, output_path: str) -> None:
        """
        Convert a MusicXML file into the selected sheet format and write it to disk.

        Raises:
            NotationImportError: If the input is not a readable partwise score.
            OSError: If the input cannot be read or the output file cannot be written.
        """
        content = self.render_content(Path(musicxml_path).read_bytes())

        with open(output_path, "w", encoding="utf-8") as fh:
            fh.write(content)
