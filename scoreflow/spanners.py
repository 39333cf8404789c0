"""Spanners: decorations that stretch across several notes.

MusicXML spreads a spanner over the notes it touches as directional
fragments (start, continue, stop). The classes here fold an ordered fragment
stream back into whole spanners so that callers never have to work out where
one spanner ends and the next begins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, Iterable, Iterator, Mapping, Sequence

from scoreflow.address import Address, AddressType
from scoreflow.division import Division
from scoreflow.logging_utils import get_logger

logger = get_logger(__name__)

#: A flush only yields a spanner when it holds at least this many fragments.
MIN_SPANNER_FRAGMENTS: Final[int] = 2


class SpannerKind(str, Enum):
    WEDGE = "wedge"
    OCTAVE_SHIFT = "octave_shift"
    PEDAL = "pedal"
    VIBRATO = "vibrato"
    SLUR = "slur"
    TUPLET = "tuplet"
    BEAM = "beam"


class SpannerPhase(str, Enum):
    START = "start"
    CONTINUE = "continue"
    STOP = "stop"


#: Kinds drawn as one segment per system. A continue on a new system splits them.
ADDRESS_SENSITIVE_KINDS: Final[frozenset[SpannerKind]] = frozenset({SpannerKind.WEDGE, SpannerKind.OCTAVE_SHIFT})

#: Kinds that only ever extend their current buffer.
ADDRESS_INSENSITIVE_KINDS: Final[frozenset[SpannerKind]] = frozenset({SpannerKind.PEDAL, SpannerKind.VIBRATO})

#: Kinds grouped by key within a single system.
GROUPED_KINDS: Final[frozenset[SpannerKind]] = frozenset({SpannerKind.BEAM, SpannerKind.TUPLET, SpannerKind.SLUR})


@dataclass(frozen=True)
class SpannerAnchor:
    """Where a fragment attaches: the entry starting at ``offset`` in a voice."""

    part_id: str
    measure_index: int
    stave_number: int
    voice_id: str
    offset: Division


@dataclass(frozen=True, eq=False)
class SpannerFragment:
    """
    One directional marker of a spanner.

    Attributes:
        kind:    Decoration kind.
        phase:   start, continue or stop.
        address: Voice-level address of the fragment in the containment tree.
        anchor:  The voice entry the fragment attaches to.
        key:     Distinguishes concurrent spanners of grouped kinds, such as
                 the slur number or the voice and beam level.
        payload: Kind-specific display data, e.g. wedge type or bracket text.
    """

    kind: SpannerKind
    phase: SpannerPhase
    address: Address
    anchor: SpannerAnchor
    key: str = "1"
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class Spanner:
    """A decoration rebuilt from two or more ordered fragments."""

    kind: SpannerKind
    fragments: tuple[SpannerFragment, ...]
    carried_payload: Mapping[str, Any] | None = None

    @property
    def payload(self) -> Mapping[str, Any]:
        """
        Display data.

        The opening fragment decides it, except for a segment re-opened on a
        later system, which keeps the payload of the start it continues.
        """
        if self.carried_payload is not None:
            return self.carried_payload
        return self.fragments[0].payload

    @property
    def anchors(self) -> list[SpannerAnchor]:
        return [fragment.anchor for fragment in self.fragments]


class _BufferState(Enum):
    EMPTY = "empty"
    BUFFERING = "buffering"


class _FragmentAccumulator:
    """Start/continue/stop state machine for one spanner kind."""

    def __init__(self, kind: SpannerKind) -> None:
        self.kind = kind
        self.address_sensitive = kind in ADDRESS_SENSITIVE_KINDS
        self.state = _BufferState.EMPTY
        self.buffer: list[SpannerFragment] = []
        self.anchor: Address | None = None
        self.payload: Mapping[str, Any] | None = None
        self.spanners: list[Spanner] = []

    def feed(self, fragment: SpannerFragment) -> None:
        if fragment.phase is SpannerPhase.START:
            if self.state is _BufferState.BUFFERING:
                self._flush()
            self._open(fragment)
        elif fragment.phase is SpannerPhase.CONTINUE:
            if self.state is _BufferState.EMPTY:
                self._open(fragment)
            elif self.address_sensitive and not fragment.address.is_member_of(AddressType.SYSTEM, self.anchor):
                # TODO: Check that a spanner continuing or stopping on a later system draws correctly; the
                # segment opened here may need a synthetic start fragment to satisfy the renderer.
                payload = self.payload
                self._flush()
                self._open(fragment, payload)
            else:
                self.buffer.append(fragment)
        else:
            self.buffer.append(fragment)
            self._flush()

    def finish(self) -> list[Spanner]:
        if self.state is _BufferState.BUFFERING:
            self._flush()
        return self.spanners

    def _open(self, fragment: SpannerFragment, payload: Mapping[str, Any] | None = None) -> None:
        self.state = _BufferState.BUFFERING
        self.anchor = fragment.address
        self.payload = fragment.payload if payload is None else payload
        self.buffer = [fragment]

    def _flush(self) -> None:
        # Underspecified spanners are dropped.
        if len(self.buffer) >= MIN_SPANNER_FRAGMENTS:
            self.spanners.append(Spanner(kind=self.kind, fragments=tuple(self.buffer), carried_payload=self.payload))
        elif self.buffer:
            logger.debug("Dropping underspecified %s spanner", self.kind.value)
        self.state = _BufferState.EMPTY
        self.anchor = None
        self.payload = None
        self.buffer = []


def reconcile(fragments: Iterable[SpannerFragment], kind: SpannerKind) -> list[Spanner]:
    """
    Fold the ``kind`` fragments of an ordered stream into spanners.

    Wedges and octave shifts split into a new spanner when a continue
    fragment lands on a different system than the one the buffer started on.
    Pedals and vibratos simply extend. A buffer holding a single fragment at
    flush time is discarded.
    """
    accumulator = _FragmentAccumulator(kind)
    for fragment in fragments:
        if fragment.kind is kind:
            accumulator.feed(fragment)
    return accumulator.finish()


def group_spanners(fragments: Iterable[SpannerFragment], kind: SpannerKind) -> list[Spanner]:
    """
    Single-pass grouping of beams, tuplets or slurs by fragment key.

    A start opens a group for its key (closing any group already open under
    that key), a continue extends it and a stop closes it. Continue and stop
    fragments with no open group are ignored. Groups are returned in the
    order they were opened.
    """
    open_groups: dict[tuple[str, str], tuple[int, list[SpannerFragment]]] = {}
    closed: list[tuple[int, list[SpannerFragment]]] = []
    opened = 0

    for fragment in fragments:
        if fragment.kind is not kind:
            continue
        group_key = (fragment.anchor.part_id, fragment.key)
        if fragment.phase is SpannerPhase.START:
            if group_key in open_groups:
                closed.append(open_groups.pop(group_key))
            open_groups[group_key] = (opened, [fragment])
            opened += 1
        elif group_key in open_groups:
            open_groups[group_key][1].append(fragment)
            if fragment.phase is SpannerPhase.STOP:
                closed.append(open_groups.pop(group_key))

    closed.extend(open_groups.values())
    closed.sort(key=lambda group: group[0])
    return [
        Spanner(kind=kind, fragments=tuple(group))
        for _, group in closed
        if len(group) >= MIN_SPANNER_FRAGMENTS
    ]


@dataclass(frozen=True)
class SpannersRendering:
    """Completed spanners grouped by kind, ready for the drawing backend."""

    beams: list[Spanner] = field(default_factory=list)
    tuplets: list[Spanner] = field(default_factory=list)
    slurs: list[Spanner] = field(default_factory=list)
    wedges: list[Spanner] = field(default_factory=list)
    pedals: list[Spanner] = field(default_factory=list)
    vibratos: list[Spanner] = field(default_factory=list)
    octave_shifts: list[Spanner] = field(default_factory=list)

    def __iter__(self) -> Iterator[Spanner]:
        for group in (
            self.beams,
            self.tuplets,
            self.slurs,
            self.wedges,
            self.pedals,
            self.vibratos,
            self.octave_shifts,
        ):
            yield from group

    def counts(self) -> dict[str, int]:
        return {
            "beams": len(self.beams),
            "tuplets": len(self.tuplets),
            "slurs": len(self.slurs),
            "wedges": len(self.wedges),
            "pedals": len(self.pedals),
            "vibratos": len(self.vibratos),
            "octave_shifts": len(self.octave_shifts),
        }


class Spanners:
    """
    Houses the spanners of a whole score.

    Intentionally plural: it turns a stream of fragments into *many*
    spanners. Fragments are reconciled per part so that decorations in
    parallel parts never interleave.
    """

    def __init__(self, fragments: Sequence[SpannerFragment]) -> None:
        self.fragments = list(fragments)

    def _by_part(self) -> list[list[SpannerFragment]]:
        parts: dict[str, list[SpannerFragment]] = {}
        for fragment in self.fragments:
            parts.setdefault(fragment.anchor.part_id, []).append(fragment)
        return list(parts.values())

    def render(self) -> SpannersRendering:
        rendering = SpannersRendering()
        for fragments in self._by_part():
            rendering.beams.extend(group_spanners(fragments, SpannerKind.BEAM))
            rendering.tuplets.extend(group_spanners(fragments, SpannerKind.TUPLET))
            rendering.slurs.extend(group_spanners(fragments, SpannerKind.SLUR))
            rendering.wedges.extend(reconcile(fragments, SpannerKind.WEDGE))
            rendering.octave_shifts.extend(reconcile(fragments, SpannerKind.OCTAVE_SHIFT))
            rendering.pedals.extend(reconcile(fragments, SpannerKind.PEDAL))
            rendering.vibratos.extend(reconcile(fragments, SpannerKind.VIBRATO))
        return rendering
