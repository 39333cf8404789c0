"""Score: walks a partwise document and builds the rendering IR.

The walk runs part by part, measure by measure. For every measure it
threads the StaveSignature chain through the event stream, builds one
Chorus per stave and collects the spanner fragments found on the way.
The fragments are reconciled once the whole score has been walked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Iterator

from scoreflow import musicxml
from scoreflow.address import Address
from scoreflow.chorus import Chorus, MeasureEntry, Placement
from scoreflow.config import Config
from scoreflow.logging_utils import get_logger
from scoreflow.spanners import (
    SpannerAnchor,
    SpannerFragment,
    SpannerKind,
    SpannerPhase,
    Spanners,
    SpannersRendering,
)
from scoreflow.stave_signature import (
    ALL_STAVE_MODIFIERS,
    Clef,
    KeySignature,
    StaveModifier,
    StaveSignature,
    TimeSignature,
)

logger = get_logger(__name__)

_BEAM_PHASES: Final[dict[str, SpannerPhase]] = {
    "begin": SpannerPhase.START,
    "continue": SpannerPhase.CONTINUE,
    "end": SpannerPhase.STOP,
}

_START_STOP_CONTINUE_PHASES: Final[dict[str, SpannerPhase]] = {
    "start": SpannerPhase.START,
    "continue": SpannerPhase.CONTINUE,
    "stop": SpannerPhase.STOP,
}

_WEDGE_PHASES: Final[dict[str, SpannerPhase]] = {
    "crescendo": SpannerPhase.START,
    "diminuendo": SpannerPhase.START,
    "continue": SpannerPhase.CONTINUE,
    "stop": SpannerPhase.STOP,
}

_OCTAVE_SHIFT_PHASES: Final[dict[str, SpannerPhase]] = {
    "up": SpannerPhase.START,
    "down": SpannerPhase.START,
    "continue": SpannerPhase.CONTINUE,
    "stop": SpannerPhase.STOP,
}

_PEDAL_PHASES: Final[dict[str, SpannerPhase]] = {
    "start": SpannerPhase.START,
    "sostenuto": SpannerPhase.START,
    "resume": SpannerPhase.START,
    "change": SpannerPhase.CONTINUE,
    "continue": SpannerPhase.CONTINUE,
    "stop": SpannerPhase.STOP,
    "discontinue": SpannerPhase.STOP,
}

# size -> (superscript when shifted down, superscript when shifted up)
_OCTAVE_SHIFT_SUPERSCRIPTS: Final[dict[int, tuple[str, str]]] = {
    8: ("va", "vb"),
    15: ("ma", "mb"),
    22: ("ma", "mb"),
}


# ---------------------------------------------------------------------------
# Rendering IR
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StaveRendering:
    """One stave of one measure: its chorus plus the modifiers to draw."""

    stave_number: int
    address: Address
    chorus: Chorus
    clef: Clef
    key_signature: KeySignature
    time_signature: TimeSignature
    modifiers: frozenset[StaveModifier]
    multi_rest_count: int = 0

    @property
    def modifier_width(self) -> int:
        config = self.chorus.config
        width = 0
        if StaveModifier.CLEF in self.modifiers:
            width += config.clef_width
        if StaveModifier.KEY_SIGNATURE in self.modifiers:
            width += config.key_accidental_width * self.key_signature.accidental_count
        if StaveModifier.TIME_SIGNATURE in self.modifiers:
            width += config.time_signature_width
        return width


@dataclass(frozen=True)
class MeasureRendering:
    index: int
    number: str
    system_index: int
    address: Address
    staves: list[StaveRendering]

    @property
    def min_justify_width(self) -> int:
        """Widest chorus plus the widest run of stave modifiers."""
        if not self.staves:
            return 0
        return max(stave.chorus.min_justify_width for stave in self.staves) + max(
            stave.modifier_width for stave in self.staves
        )

    @property
    def multi_rest_count(self) -> int:
        return max((stave.multi_rest_count for stave in self.staves), default=0)


@dataclass(frozen=True)
class PartRendering:
    id: str
    name: str | None
    measures: list[MeasureRendering] = field(default_factory=list)


@dataclass(frozen=True)
class ScoreRendering:
    """Everything the drawing backend needs, in document order."""

    title: str | None
    system_count: int
    parts: list[PartRendering]
    spanners: SpannersRendering

    def iter_measures(self) -> Iterator[tuple[PartRendering, MeasureRendering]]:
        for part in self.parts:
            for measure in part.measures:
                yield part, measure


# ---------------------------------------------------------------------------
# Walker
# ---------------------------------------------------------------------------


@dataclass
class _PartSignatures:
    """The merged signature chain of one part, indexed by measure."""

    measure_entries: list[list[MeasureEntry]]
    # Signature in effect where each measure starts; later changes arrive in-stream.
    measure_signatures: list[StaveSignature]
    # Signatures first created in each measure.
    created: list[list[StaveSignature]]


def _default_signature() -> StaveSignature:
    return StaveSignature(
        measure_index=0,
        measure_entry_index=0,
        clefs={},
        key_signatures={},
        time_signatures={},
        multi_rest_counts={},
        quarter_note_divisions=1,
        stave_count=1,
        previous=None,
        attributes=None,
    )


def _build_signatures(part: musicxml.Part) -> _PartSignatures:
    """Merge the part's <attributes> strictly in measure-then-entry order."""
    signature: StaveSignature | None = None
    measure_entries: list[list[MeasureEntry]] = []
    measure_signatures: list[StaveSignature] = []
    created: list[list[StaveSignature]] = []

    for measure_index, measure in enumerate(part.measures()):
        entries: list[MeasureEntry] = []
        created_here: list[StaveSignature] = []
        opening = signature
        sounded = False
        for entry_index, entry in enumerate(measure.entries()):
            if isinstance(entry, musicxml.Attributes):
                signature = StaveSignature.merge(
                    measure_index=measure_index,
                    measure_entry_index=entry_index,
                    previous=signature,
                    attributes=entry,
                )
                created_here.append(signature)
                entries.append(signature)
                if not sounded:
                    opening = signature
            else:
                if isinstance(entry, (musicxml.Note, musicxml.Forward)):
                    sounded = True
                entries.append(entry)

        if signature is None:
            signature = _default_signature()
        if opening is None:
            # Notes came before the part's first <attributes>.
            opening = _default_signature() if created_here else signature
        measure_entries.append(entries)
        measure_signatures.append(opening)
        created.append(created_here)

    return _PartSignatures(measure_entries=measure_entries, measure_signatures=measure_signatures, created=created)


class Score:
    """
    Builds a :class:`ScoreRendering` from a parsed partwise document.

    Args:
        document: The parsed score.
        config:   Layout constants and defaults.
    """

    def __init__(self, document: musicxml.ScorePartwise, config: Config | None = None) -> None:
        self.document = document
        self.config = config or Config()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _system_starts(self, parts: list[musicxml.Part]) -> list[bool]:
        """Whether each measure index opens a new system."""
        measure_count = max((len(part.measures()) for part in parts), default=0)
        first_measures = parts[0].measures() if parts else []
        per_system = self.config.measures_per_system

        starts: list[bool] = []
        since_start = 0
        for index in range(measure_count):
            forced = False
            if index < len(first_measures):
                print_settings = first_measures[index].print_settings()
                forced = print_settings is not None and (print_settings.new_system or print_settings.new_page)
            is_start = index == 0 or forced or (per_system is not None and since_start >= per_system)
            if is_start:
                if index > 0:
                    logger.debug("System break before measure %d", index)
                since_start = 0
            starts.append(is_start)
            since_start += 1
        return starts

    def _multi_rest_skips(self, signatures: _PartSignatures) -> dict[int, int]:
        """Measure index -> multi-rest count, for measures that open a multi-measure rest."""
        result: dict[int, int] = {}
        skip_until = 0
        for index, created_here in enumerate(signatures.created):
            if index < skip_until:
                continue
            for signature in created_here:
                if signature.specifies_multi_rest():
                    count = signature.multi_rest_count(1)
                    if count > 0:
                        logger.debug("Multi-measure rest of %d at measure %d", count, index)
                        result[index] = count
                        skip_until = index + count
                    break
        return result

    def _stave_modifiers(
        self, signature: StaveSignature, previous: StaveSignature | None, system_start: bool
    ) -> frozenset[StaveModifier]:
        modifiers: set[StaveModifier] = set()
        if previous is None:
            modifiers |= ALL_STAVE_MODIFIERS
        elif signature is not previous:
            modifiers |= signature.stave_modifiers_changed_since(previous)
        if system_start:
            modifiers |= {StaveModifier.CLEF, StaveModifier.KEY_SIGNATURE}
        return frozenset(modifiers)

    def _fragments_for(
        self,
        placement: Placement,
        anchor: SpannerAnchor,
        address: Address,
        open_tuplets: dict[tuple[str, str], set[int]],
    ) -> list[SpannerFragment]:
        fragments: list[SpannerFragment] = []

        def add(kind: SpannerKind, phase: SpannerPhase, key: str = "1", **payload: object) -> None:
            fragments.append(
                SpannerFragment(kind=kind, phase=phase, address=address, anchor=anchor, key=key, payload=payload)
            )

        element = placement.element
        voice_id = placement.voice_id

        if isinstance(element, musicxml.Note):
            for beam in element.beams():
                # Only the primary beam level is drawn; VexFlow derives the rest.
                phase = _BEAM_PHASES.get(beam.value or "")
                if beam.number == 1 and phase is not None:
                    add(SpannerKind.BEAM, phase, key=f"{voice_id}/beam")

            for slur in element.slurs():
                phase = _START_STOP_CONTINUE_PHASES.get(slur.type or "")
                if phase is not None:
                    add(SpannerKind.SLUR, phase, key=f"slur/{slur.number}", placement=slur.placement)

            tuplet_key = (anchor.part_id, voice_id)
            touched: set[int] = set()
            for tuplet in element.tuplets():
                if tuplet.type == "start":
                    open_tuplets.setdefault(tuplet_key, set()).add(tuplet.number)
                    add(
                        SpannerKind.TUPLET,
                        SpannerPhase.START,
                        key=f"{voice_id}/tuplet/{tuplet.number}",
                        placement=tuplet.placement,
                        bracketed=tuplet.show_bracket,
                    )
                elif tuplet.type == "stop":
                    open_tuplets.get(tuplet_key, set()).discard(tuplet.number)
                    add(SpannerKind.TUPLET, SpannerPhase.STOP, key=f"{voice_id}/tuplet/{tuplet.number}")
                touched.add(tuplet.number)
            for number in sorted(open_tuplets.get(tuplet_key, set()) - touched):
                add(SpannerKind.TUPLET, SpannerPhase.CONTINUE, key=f"{voice_id}/tuplet/{number}")

            for wavy_line in element.wavy_lines():
                phase = _START_STOP_CONTINUE_PHASES.get(wavy_line.type or "")
                if phase is not None:
                    add(SpannerKind.VIBRATO, phase)
            return fragments

        for wedge in element.wedges():
            phase = _WEDGE_PHASES.get(wedge.type or "")
            if phase is SpannerPhase.START:
                add(SpannerKind.WEDGE, phase, type=wedge.type, placement=wedge.placement)
            elif phase is not None:
                add(SpannerKind.WEDGE, phase)

        for octave_shift in element.octave_shifts():
            phase = _OCTAVE_SHIFT_PHASES.get(octave_shift.type or "")
            if phase is SpannerPhase.START:
                size = octave_shift.size if octave_shift.size in _OCTAVE_SHIFT_SUPERSCRIPTS else 8
                down, up = _OCTAVE_SHIFT_SUPERSCRIPTS[size]
                shifted_down = octave_shift.type == "down"
                add(
                    SpannerKind.OCTAVE_SHIFT,
                    phase,
                    text=str(size),
                    superscript=down if shifted_down else up,
                    position="top" if shifted_down else "bottom",
                )
            elif phase is not None:
                add(SpannerKind.OCTAVE_SHIFT, phase)

        for pedal in element.pedals():
            phase = _PEDAL_PHASES.get(pedal.type or "")
            if phase is SpannerPhase.START:
                add(SpannerKind.PEDAL, phase, type=pedal.type, line=pedal.line, sign=pedal.sign)
            elif phase is not None:
                add(SpannerKind.PEDAL, phase, type=pedal.type)
        return fragments

    def _render_measure(
        self,
        part: musicxml.Part,
        measure: musicxml.Measure,
        measure_index: int,
        signatures: _PartSignatures,
        system_index: int,
        system_start: bool,
        part_address: Address,
        multi_rest_count: int,
        fragments: list[SpannerFragment],
        open_tuplets: dict[tuple[str, str], set[int]],
    ) -> MeasureRendering:
        config = self.config
        signature = signatures.measure_signatures[measure_index]
        previous = signatures.measure_signatures[measure_index - 1] if measure_index > 0 else None
        entries = signatures.measure_entries[measure_index]

        measure_address = part_address.measure()
        fragment_address = measure_address.measure_fragment()
        default_beats, default_beat_value = config.default_time

        staves: list[StaveRendering] = []
        for stave_number in signature.stave_numbers:
            clef = signature.clef(stave_number) or Clef(sign=config.default_clef)
            key_signature = signature.key_signature(stave_number) or KeySignature()
            time_signature = signature.time_signature(stave_number) or TimeSignature(
                beats=default_beats, beat_value=default_beat_value
            )

            stave_address = fragment_address.stave()
            chorus_address = stave_address.chorus()

            if multi_rest_count > 0:
                chorus = Chorus.whole_rest(
                    config=config, clef=clef, time_signature=time_signature, stave_number=stave_number
                )
            else:
                chorus = Chorus.from_measure_entries(
                    config=config,
                    clef=clef,
                    time_signature=time_signature,
                    key_signature=key_signature,
                    quarter_note_divisions=signature.quarter_note_divisions,
                    measure_entries=entries,
                    stave_number=stave_number,
                )

            voice_addresses: dict[str, Address] = {}
            for placement in chorus.placements:
                address = voice_addresses.get(placement.voice_id)
                if address is None:
                    address = voice_addresses[placement.voice_id] = chorus_address.voice()
                anchor = SpannerAnchor(
                    part_id=part.id,
                    measure_index=measure_index,
                    stave_number=stave_number,
                    voice_id=placement.voice_id,
                    offset=placement.start,
                )
                fragments.extend(self._fragments_for(placement, anchor, address, open_tuplets))

            staves.append(
                StaveRendering(
                    stave_number=stave_number,
                    address=stave_address,
                    chorus=chorus,
                    clef=clef,
                    key_signature=key_signature,
                    time_signature=time_signature,
                    modifiers=self._stave_modifiers(signature, previous, system_start),
                    multi_rest_count=multi_rest_count,
                )
            )

        return MeasureRendering(
            index=measure_index,
            number=measure.number,
            system_index=system_index,
            address=measure_address,
            staves=staves,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def render(self) -> ScoreRendering:
        parts = self.document.parts()
        system_starts = self._system_starts(parts)

        part_signatures = [_build_signatures(part) for part in parts]
        # Multi-measure rests are decided by the first part so that parts stay aligned.
        multi_rests = self._multi_rest_skips(part_signatures[0]) if parts else {}
        skipped: set[int] = set()
        for index, count in multi_rests.items():
            skipped.update(range(index + 1, index + count))

        system_addresses: list[Address] = []
        system_of: list[int] = []
        for is_start in system_starts:
            if is_start:
                system_addresses.append(Address.system())
            system_of.append(len(system_addresses) - 1)

        fragments: list[SpannerFragment] = []
        part_renderings: list[PartRendering] = []
        for part, signatures in zip(parts, part_signatures):
            open_tuplets: dict[tuple[str, str], set[int]] = {}
            part_addresses: dict[int, Address] = {}
            rendering = PartRendering(id=part.id, name=part.name)
            for measure_index, measure in enumerate(part.measures()):
                if measure_index in skipped:
                    continue
                system_index = system_of[measure_index]
                part_address = part_addresses.get(system_index)
                if part_address is None:
                    part_address = part_addresses[system_index] = system_addresses[system_index].part()
                rendering.measures.append(
                    self._render_measure(
                        part,
                        measure,
                        measure_index,
                        signatures,
                        system_index,
                        system_starts[measure_index],
                        part_address,
                        multi_rests.get(measure_index, 0),
                        fragments,
                        open_tuplets,
                    )
                )
            part_renderings.append(rendering)

        return ScoreRendering(
            title=self.document.title,
            system_count=len(system_addresses),
            parts=part_renderings,
            spanners=Spanners(fragments).render(),
        )
