"""Typed, read-only query API over a MusicXML document.

The classes here wrap lxml elements and never mutate them. Accessors apply
MusicXML's documented defaults and validate enumerated values, returning
None (or the default) instead of raising on malformed input.

See https://www.w3.org/2021/06/musicxml40/musicxml-reference/
"""

from __future__ import annotations

import zipfile
from io import BytesIO
from typing import Final, Union, overload

from lxml import etree

from scoreflow.division import NOTE_TYPE_DENOMINATORS
from scoreflow.errors import NotationImportError

ZIP_CONTAINER_FILENAME: Final[str] = "META-INF/container.xml"

# ── Declared enumerations ───────────────────────────────────────────────────

STEMS: Final[frozenset[str]] = frozenset({"up", "down", "double", "none"})
NOTE_TYPES: Final[frozenset[str]] = frozenset(NOTE_TYPE_DENOMINATORS)
CLEF_SIGNS: Final[frozenset[str]] = frozenset({"G", "F", "C", "percussion", "TAB", "jianpu", "none"})
ABOVE_BELOW: Final[frozenset[str]] = frozenset({"above", "below"})
WEDGE_TYPES: Final[frozenset[str]] = frozenset({"crescendo", "diminuendo", "stop", "continue"})
OCTAVE_SHIFT_TYPES: Final[frozenset[str]] = frozenset({"up", "down", "stop", "continue"})
PEDAL_TYPES: Final[frozenset[str]] = frozenset(
    {"start", "stop", "sostenuto", "change", "continue", "discontinue", "resume"}
)
START_STOP: Final[frozenset[str]] = frozenset({"start", "stop"})
START_STOP_CONTINUE: Final[frozenset[str]] = frozenset({"start", "stop", "continue"})
BEAM_VALUES: Final[frozenset[str]] = frozenset({"begin", "continue", "end", "forward hook", "backward hook"})
YES_NO: Final[frozenset[str]] = frozenset({"yes", "no"})
ACCIDENTAL_TYPES: Final[frozenset[str]] = frozenset(
    {
        "sharp",
        "natural",
        "flat",
        "double-sharp",
        "sharp-sharp",
        "flat-flat",
        "natural-sharp",
        "natural-flat",
        "double-flat",
    }
)
NOTEHEADS: Final[frozenset[str]] = frozenset(
    {"normal", "x", "diamond", "square", "triangle", "slash", "circle-x", "cross", "none"}
)
DYNAMICS: Final[frozenset[str]] = frozenset(
    {"p", "pp", "ppp", "pppp", "f", "ff", "fff", "ffff", "mp", "mf", "sf", "sfz", "sfp", "fp", "rf", "rfz", "fz"}
)


class Value:
    """Raw attribute or text content with typed accessors."""

    __slots__ = ("_raw",)

    def __init__(self, raw: str | None) -> None:
        self._raw = raw.strip() if isinstance(raw, str) else None

    @overload
    def as_str(self, default: str) -> str: ...

    @overload
    def as_str(self, default: None = None) -> str | None: ...

    def as_str(self, default: str | None = None) -> str | None:
        return self._raw if self._raw else default

    @overload
    def as_int(self, default: int) -> int: ...

    @overload
    def as_int(self, default: None = None) -> int | None: ...

    def as_int(self, default: int | None = None) -> int | None:
        if not self._raw:
            return default
        try:
            return int(self._raw)
        except ValueError:
            try:
                # Some exporters write integral values as "2.0".
                number = float(self._raw)
            except ValueError:
                return default
            return int(number) if number.is_integer() else default

    @overload
    def as_float(self, default: float) -> float: ...

    @overload
    def as_float(self, default: None = None) -> float | None: ...

    def as_float(self, default: float | None = None) -> float | None:
        if not self._raw:
            return default
        try:
            return float(self._raw)
        except ValueError:
            return default

    @overload
    def as_enum(self, choices: frozenset[str], default: str) -> str: ...

    @overload
    def as_enum(self, choices: frozenset[str], default: None = None) -> str | None: ...

    def as_enum(self, choices: frozenset[str], default: str | None = None) -> str | None:
        if self._raw in choices:
            return self._raw
        return default


class NamedElement:
    """Thin wrapper over an lxml element exposing tag-based lookups."""

    __slots__ = ("element",)

    def __init__(self, element: etree._Element) -> None:
        self.element = element

    @property
    def name(self) -> str:
        return str(self.element.tag)

    def first(self, tag: str) -> NamedElement | None:
        child = self.element.find(tag)
        return NamedElement(child) if child is not None else None

    def all(self, tag: str) -> list[NamedElement]:
        return [NamedElement(child) for child in self.element.findall(tag)]

    def children(self) -> list[NamedElement]:
        return [NamedElement(child) for child in self.element if isinstance(child.tag, str)]

    def has(self, tag: str) -> bool:
        return self.element.find(tag) is not None

    def attr(self, name: str) -> Value:
        return Value(self.element.get(name))

    def content(self) -> Value:
        return Value(self.element.text)

    def child_content(self, tag: str) -> Value:
        child = self.element.find(tag)
        return Value(child.text if child is not None else None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NamedElement):
            return NotImplemented
        return self.element is other.element

    def __hash__(self) -> int:
        return id(self.element)


# ── Note-level elements ─────────────────────────────────────────────────────


class Beam:
    """<beam>: one beam level on a note."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def number(self) -> int:
        return self.element.attr("number").as_int(1)

    @property
    def value(self) -> str | None:
        return self.element.content().as_enum(BEAM_VALUES)


class Slur:
    """<slur> inside <notations>."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def type(self) -> str | None:
        return self.element.attr("type").as_enum(START_STOP_CONTINUE)

    @property
    def number(self) -> int:
        return self.element.attr("number").as_int(1)

    @property
    def placement(self) -> str | None:
        return self.element.attr("placement").as_enum(ABOVE_BELOW)


class Tuplet:
    """<tuplet> inside <notations>."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def type(self) -> str | None:
        return self.element.attr("type").as_enum(START_STOP)

    @property
    def number(self) -> int:
        return self.element.attr("number").as_int(1)

    @property
    def placement(self) -> str:
        return self.element.attr("placement").as_enum(ABOVE_BELOW, "above")

    @property
    def show_bracket(self) -> bool:
        return self.element.attr("bracket").as_enum(YES_NO, "yes") == "yes"


class WavyLine:
    """<wavy-line> inside <ornaments>."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def type(self) -> str | None:
        return self.element.attr("type").as_enum(START_STOP_CONTINUE)


class Notations:
    """Musical notations that apply to a specific note or chord."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    def slurs(self) -> list[Slur]:
        return [Slur(slur) for slur in self.element.all("slur")]

    def tuplets(self) -> list[Tuplet]:
        return [Tuplet(tuplet) for tuplet in self.element.all("tuplet")]

    def wavy_lines(self) -> list[WavyLine]:
        return [WavyLine(line) for ornaments in self.element.all("ornaments") for line in ornaments.all("wavy-line")]


class Note:
    """<note>: a pitched note, unpitched note or rest."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    def is_grace(self) -> bool:
        return self.element.has("grace")

    def has_grace_slash(self) -> bool:
        grace = self.element.first("grace")
        return grace is not None and grace.attr("slash").as_enum(YES_NO) == "yes"

    def is_chord_tail(self) -> bool:
        return self.element.has("chord")

    def chord_tail(self) -> list[Note]:
        """The <note chord> siblings that immediately follow this note."""
        tail: list[Note] = []
        for sibling in self.element.element.itersiblings():
            if not isinstance(sibling.tag, str):
                continue
            if sibling.tag != "note" or sibling.find("chord") is None:
                break
            tail.append(Note(NamedElement(sibling)))
        return tail

    def is_rest(self) -> bool:
        return self.element.has("rest")

    def is_measure_rest(self) -> bool:
        rest = self.element.first("rest")
        return rest is not None and rest.attr("measure").as_enum(YES_NO) == "yes"

    @property
    def step(self) -> str:
        pitch = self.element.first("pitch")
        if pitch is not None:
            return pitch.child_content("step").as_str("C")
        for tag in ("unpitched", "rest"):
            display = self.element.first(tag)
            if display is not None:
                return display.child_content("display-step").as_str("C")
        return "C"

    @property
    def octave(self) -> int:
        pitch = self.element.first("pitch")
        if pitch is not None:
            return pitch.child_content("octave").as_int(4)
        for tag in ("unpitched", "rest"):
            display = self.element.first(tag)
            if display is not None:
                return display.child_content("display-octave").as_int(4)
        return 4

    @property
    def alter(self) -> float:
        pitch = self.element.first("pitch")
        if pitch is None:
            return 0.0
        return pitch.child_content("alter").as_float(0.0)

    def rest_display_pitch(self) -> tuple[str, int] | None:
        rest = self.element.first("rest")
        if rest is None or not rest.has("display-step"):
            return None
        return rest.child_content("display-step").as_str("B"), rest.child_content("display-octave").as_int(4)

    @property
    def duration(self) -> int:
        return self.element.child_content("duration").as_int(0)

    @property
    def voice(self) -> str:
        return self.element.child_content("voice").as_str("1")

    @property
    def staff(self) -> int:
        return self.element.child_content("staff").as_int(1)

    @property
    def type(self) -> str:
        return self.element.child_content("type").as_enum(NOTE_TYPES, "whole")

    def has_type(self) -> bool:
        return self.element.child_content("type").as_enum(NOTE_TYPES) is not None

    @property
    def dot_count(self) -> int:
        return len(self.element.all("dot"))

    @property
    def stem(self) -> str | None:
        return self.element.child_content("stem").as_enum(STEMS)

    @property
    def notehead(self) -> str | None:
        return self.element.child_content("notehead").as_enum(NOTEHEADS)

    @property
    def accidental(self) -> str | None:
        return self.element.child_content("accidental").as_enum(ACCIDENTAL_TYPES)

    def beams(self) -> list[Beam]:
        return [Beam(beam) for beam in self.element.all("beam")]

    def notations(self) -> list[Notations]:
        return [Notations(notations) for notations in self.element.all("notations")]

    def slurs(self) -> list[Slur]:
        return [slur for notations in self.notations() for slur in notations.slurs()]

    def tuplets(self) -> list[Tuplet]:
        return [tuplet for notations in self.notations() for tuplet in notations.tuplets()]

    def wavy_lines(self) -> list[WavyLine]:
        return [line for notations in self.notations() for line in notations.wavy_lines()]


class Backup:
    """<backup>: moves the time cursor backwards."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def duration(self) -> int:
        return self.element.child_content("duration").as_int(0)


class Forward:
    """<forward>: moves the time cursor forward without sounding."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def duration(self) -> int:
        return self.element.child_content("duration").as_int(0)


# ── Attributes ──────────────────────────────────────────────────────────────


class Clef:
    """<clef>. Applies to staff 1 when no number is given."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def stave_number(self) -> int:
        return self.element.attr("number").as_int(1)

    @property
    def sign(self) -> str:
        return self.element.child_content("sign").as_enum(CLEF_SIGNS, "G")

    @property
    def line(self) -> int | None:
        return self.element.child_content("line").as_int()

    @property
    def octave_change(self) -> int:
        return self.element.child_content("clef-octave-change").as_int(0)


class Key:
    """<key>. Applies to every staff when no number is given."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def stave_number(self) -> int | None:
        return self.element.attr("number").as_int()

    @property
    def fifths(self) -> int:
        return self.element.child_content("fifths").as_int(0)

    @property
    def mode(self) -> str:
        return self.element.child_content("mode").as_str("major")


class Time:
    """<time>. Applies to every staff when no number is given."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def stave_number(self) -> int | None:
        return self.element.attr("number").as_int()

    def is_senza_misura(self) -> bool:
        return self.element.has("senza-misura")

    def signatures(self) -> list[tuple[int, int]]:
        """(beats, beat-type) pairs; extra unpaired elements are ignored."""
        beats = [value.content().as_str() for value in self.element.all("beats")]
        beat_types = [value.content().as_int() for value in self.element.all("beat-type")]
        result: list[tuple[int, int]] = []
        for raw_beats, beat_type in zip(beats, beat_types):
            if raw_beats is None or not beat_type:
                continue
            try:
                # Composite meters such as "3+2" add up.
                count = sum(int(part) for part in raw_beats.split("+"))
            except ValueError:
                continue
            result.append((count, beat_type))
        return result

    @property
    def symbol(self) -> str | None:
        return self.element.attr("symbol").as_enum(frozenset({"common", "cut", "single-number", "normal"}))


class MeasureStyle:
    """<measure-style>. Applies to every staff when no number is given."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def stave_number(self) -> int | None:
        return self.element.attr("number").as_int()

    @property
    def multiple_rest_count(self) -> int:
        return self.element.child_content("multiple-rest").as_int(0)


class Attributes:
    """<attributes>: clef, key, time, divisions and staff count changes."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def quarter_note_divisions(self) -> int | None:
        divisions = self.element.child_content("divisions").as_int()
        return divisions if divisions and divisions > 0 else None

    @property
    def stave_count(self) -> int:
        count = self.element.child_content("staves").as_int(1)
        return count if count and count > 0 else 1

    def clefs(self) -> list[Clef]:
        return [Clef(clef) for clef in self.element.all("clef")]

    def keys(self) -> list[Key]:
        return [Key(key) for key in self.element.all("key")]

    def times(self) -> list[Time]:
        return [Time(time) for time in self.element.all("time")]

    def measure_styles(self) -> list[MeasureStyle]:
        return [MeasureStyle(style) for style in self.element.all("measure-style")]


# ── Directions ──────────────────────────────────────────────────────────────


class Wedge:
    """<wedge> inside <direction-type>."""

    def __init__(self, element: NamedElement, placement: str) -> None:
        self.element = element
        self.placement = placement

    @property
    def type(self) -> str | None:
        return self.element.attr("type").as_enum(WEDGE_TYPES)


class OctaveShift:
    """<octave-shift> inside <direction-type>."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def type(self) -> str | None:
        return self.element.attr("type").as_enum(OCTAVE_SHIFT_TYPES)

    @property
    def size(self) -> int:
        return self.element.attr("size").as_int(8)


class Pedal:
    """<pedal> inside <direction-type>."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def type(self) -> str | None:
        return self.element.attr("type").as_enum(PEDAL_TYPES)

    @property
    def line(self) -> bool:
        return self.element.attr("line").as_enum(YES_NO, "no") == "yes"

    @property
    def sign(self) -> bool:
        default = "no" if self.line else "yes"
        return self.element.attr("sign").as_enum(YES_NO, default) == "yes"


class Direction:
    """<direction>: marks not attached to a specific note."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def placement(self) -> str:
        return self.element.attr("placement").as_enum(ABOVE_BELOW, "below")

    @property
    def staff(self) -> int | None:
        return self.element.child_content("staff").as_int()

    @property
    def voice(self) -> str | None:
        return self.element.child_content("voice").as_str()

    def _type_contents(self) -> list[NamedElement]:
        return [content for direction_type in self.element.all("direction-type") for content in direction_type.children()]

    def tokens(self) -> list[str]:
        """Text-bearing contents: words, rehearsal marks and dynamics."""
        result: list[str] = []
        for content in self._type_contents():
            if content.name in ("words", "rehearsal"):
                text = content.content().as_str()
                if text:
                    result.append(text)
            elif content.name == "dynamics":
                result.extend(mark.name for mark in content.children() if mark.name in DYNAMICS)
        return result

    def wedges(self) -> list[Wedge]:
        return [Wedge(content, self.placement) for content in self._type_contents() if content.name == "wedge"]

    def octave_shifts(self) -> list[OctaveShift]:
        return [OctaveShift(content) for content in self._type_contents() if content.name == "octave-shift"]

    def pedals(self) -> list[Pedal]:
        return [Pedal(content) for content in self._type_contents() if content.name == "pedal"]


class Print:
    """<print>: layout hints such as system and page breaks."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def new_system(self) -> bool:
        return self.element.attr("new-system").as_enum(YES_NO) == "yes"

    @property
    def new_page(self) -> bool:
        return self.element.attr("new-page").as_enum(YES_NO) == "yes"


# ── Document structure ──────────────────────────────────────────────────────

MeasureElement = Union[Note, Backup, Forward, Attributes, Direction]

_ENTRY_TYPES: Final[dict[str, type]] = {
    "note": Note,
    "backup": Backup,
    "forward": Forward,
    "attributes": Attributes,
    "direction": Direction,
}


class Measure:
    """<measure> within a part."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def number(self) -> str:
        return self.element.attr("number").as_str("")

    def entries(self) -> list[MeasureElement]:
        """Notes, backups, forwards, attributes and directions in document order."""
        result: list[MeasureElement] = []
        for child in self.element.children():
            entry_type = _ENTRY_TYPES.get(child.name)
            if entry_type is not None:
                result.append(entry_type(child))
        return result

    def print_settings(self) -> Print | None:
        element = self.element.first("print")
        return Print(element) if element is not None else None


class Part:
    """<part> of a partwise score."""

    def __init__(self, element: NamedElement, name: str | None = None) -> None:
        self.element = element
        self.name = name

    @property
    def id(self) -> str:
        return self.element.attr("id").as_str("")

    def measures(self) -> list[Measure]:
        return [Measure(measure) for measure in self.element.all("measure")]


class ScorePartwise:
    """<score-partwise>: the document root."""

    def __init__(self, element: NamedElement) -> None:
        self.element = element

    @property
    def title(self) -> str | None:
        work = self.element.first("work")
        if work is not None:
            title = work.child_content("work-title").as_str()
            if title:
                return title
        return self.element.child_content("movement-title").as_str()

    def part_names(self) -> dict[str, str]:
        part_list = self.element.first("part-list")
        if part_list is None:
            return {}
        names: dict[str, str] = {}
        for score_part in part_list.all("score-part"):
            part_id = score_part.attr("id").as_str()
            if part_id:
                names[part_id] = score_part.child_content("part-name").as_str("")
        return names

    def parts(self) -> list[Part]:
        names = self.part_names()
        parts = [Part(part) for part in self.element.all("part")]
        for part in parts:
            part.name = names.get(part.id)
        return parts


# ── Loading ─────────────────────────────────────────────────────────────────


def _read_compressed(fp: BytesIO, parser: etree.XMLParser) -> bytes:
    zip_obj = zipfile.ZipFile(fp, "r")
    try:
        container_data = zip_obj.read(ZIP_CONTAINER_FILENAME)
    except KeyError:
        raise NotationImportError(f"Zip file is missing {ZIP_CONTAINER_FILENAME}.") from None
    try:
        container_xml = etree.fromstring(container_data, parser)
    except etree.XMLSyntaxError:
        raise NotationImportError(f"XML syntax error when parsing {ZIP_CONTAINER_FILENAME}.") from None
    rootfile = container_xml.find(".//{*}rootfile")
    if rootfile is None:
        rootfile = container_xml.find(".//rootfile")
    if rootfile is None or not rootfile.get("full-path"):
        raise NotationImportError(f"Missing 'rootfile' element in {ZIP_CONTAINER_FILENAME}.")
    try:
        return zip_obj.read(rootfile.get("full-path"))
    except KeyError:
        raise NotationImportError("Missing MusicXML file within zip archive.") from None


def parse_musicxml(data: bytes) -> ScorePartwise:
    """
    Load plain or compressed MusicXML into a :class:`ScorePartwise`.

    Raises:
        NotationImportError: If the data is not a readable partwise score.
    """
    # resolve_entities=False prevents XXE attacks.
    parser = etree.XMLParser(resolve_entities=False, remove_comments=True)
    fp = BytesIO(data)
    if zipfile.is_zipfile(fp):
        data = _read_compressed(fp, parser)
    try:
        root = etree.fromstring(data, parser)
    except etree.XMLSyntaxError as exc:
        raise NotationImportError(f"XML syntax error: {exc}") from None
    if root.tag == "score-timewise":
        raise NotationImportError("score-timewise documents are not supported.")
    if root.tag != "score-partwise":
        raise NotationImportError(f"Expected a score-partwise root element, got: '{root.tag}'.")
    return ScorePartwise(NamedElement(root))
