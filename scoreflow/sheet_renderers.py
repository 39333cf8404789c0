"""Renderer implementations for sheet output formats."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import asdict

from scoreflow.sheet_models import ScoreDocument


def _escape_html(text: str) -> str:
    """Escape the three characters that are unsafe in HTML text content."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _document_json(score_document: ScoreDocument, **dump_options: object) -> str:
    return json.dumps(asdict(score_document), **dump_options)  # type: ignore[arg-type]


class SheetRenderer(ABC):
    """Abstract sheet renderer."""

    @property
    @abstractmethod
    def default_extension(self) -> str:
        """Default filename extension for this renderer."""

    @abstractmethod
    def render(self, *, title: str, score_document: ScoreDocument) -> str:
        """Render output into a file content string."""


class JsonRenderer(SheetRenderer):
    """Render the score payload alone, for drawing backends outside the browser."""

    @property
    def default_extension(self) -> str:
        return ".json"

    def render(self, *, title: str, score_document: ScoreDocument) -> str:
        return _document_json(score_document, indent=2) + "\n"


class VexflowMarkdownRenderer(SheetRenderer):
    """Render a score document into Markdown with an embedded VexFlow script."""

    @property
    def default_extension(self) -> str:
        return ".md"

    def render(self, *, title: str, score_document: ScoreDocument) -> str:
        title_safe = _escape_html(title)
        score_json = _document_json(score_document, separators=(",", ":"))
        score_json = score_json.replace("</", "<\\/")
        heading = f"# {title_safe}\n\n" if title else ""

        return f"""{heading}This Markdown uses embedded JavaScript + VexFlow. Open it in a Markdown viewer that allows script execution.

<style>
  #scoreflow-score {{
    border: 1px solid #d8d8d8;
    border-radius: 8px;
    background: #ffffff;
    margin-top: 1rem;
    padding: 0.5rem;
    overflow-x: auto;
  }}
</style>

<div id="scoreflow-score"></div>
<script id="scoreflow-score-data" type="application/json">{score_json}</script>
<script type="module">
  import {{
    Accidental,
    Annotation,
    Beam,
    Curve,
    Dot,
    Formatter,
    GhostNote,
    GraceNote,
    GraceNoteGroup,
    MultiMeasureRest,
    PedalMarking,
    Renderer,
    Stave,
    StaveConnector,
    StaveHairpin,
    StaveNote,
    TextBracket,
    Tuplet,
    VibratoBracket,
    Voice
  }} from "https://cdn.jsdelivr.net/npm/vexflow@4.2.3/build/esm/entry/vexflow.js";

  const host = document.getElementById("scoreflow-score");
  const payloadNode = document.getElementById("scoreflow-score-data");

  if (!host || !payloadNode) {{
    throw new Error("Missing VexFlow score container.");
  }}

  const payload = JSON.parse(payloadNode.textContent || "{{}}");
  const parts = Array.isArray(payload.parts) ? payload.parts : [];
  const spanners = Array.isArray(payload.spanners) ? payload.spanners : [];

  const STAVE_SPACING = 110;
  const SYSTEM_GAP = 50;
  const LEFT = 20;

  const refKey = (ref) => `${{ref.part}}/${{ref.measure}}/${{ref.stave}}/${{ref.voice}}/${{ref.note}}`;
  const tickables = new Map();

  const toTickable = (entry, clef) => {{
    if (entry.kind === "ghost") {{
      return new GhostNote({{ duration: entry.duration }});
    }}
    const staveNote = new StaveNote({{
      clef,
      keys: entry.keys.length > 0 ? entry.keys : ["b/4"],
      duration: entry.duration,
      auto_stem: entry.stem === "auto",
    }});
    if (entry.stem === "up") staveNote.setStemDirection(1);
    if (entry.stem === "down") staveNote.setStemDirection(-1);
    if (entry.stem === "none") staveNote.setStemStyle({{ strokeStyle: "transparent" }});

    entry.accidentals.forEach((symbol, index) => {{
      if (symbol) staveNote.addModifier(new Accidental(symbol), index);
    }});
    for (let dot = 0; dot < entry.dots; dot += 1) {{
      Dot.buildAndAttach([staveNote], {{ all: true }});
    }}
    entry.tokens.forEach((token) => {{
      staveNote.addModifier(new Annotation(token).setVerticalJustification(Annotation.VerticalJustify.BOTTOM), 0);
    }});
    if (entry.grace_notes.length > 0) {{
      const graces = entry.grace_notes.map((grace) => new GraceNote({{
        keys: grace.keys,
        duration: grace.duration,
        slash: grace.slash,
      }}));
      staveNote.addModifier(new GraceNoteGroup(graces, true).beamNotes(), 0);
    }}
    return staveNote;
  }};

  // Pass 1: build every note so spanners can find them by reference.
  const measureVoices = parts.map((part, partIndex) => part.measures.map((measure, measureIndex) =>
    measure.staves.map((stave, staveIndex) => stave.voices.map((voice, voiceIndex) => {{
      const notes = voice.notes.map((entry, noteIndex) => {{
        const tickable = toTickable(entry, stave.clef);
        tickables.set(refKey({{ part: partIndex, measure: measureIndex, stave: staveIndex, voice: voiceIndex, note: noteIndex }}), tickable);
        return tickable;
      }});
      return {{ voice, notes }};
    }}))
  ));

  const resolve = (spanner) => spanner.notes.map((ref) => tickables.get(refKey(ref))).filter(Boolean);

  // Pass 2: beams and tuplets change how notes format, so they come first.
  const drawables = [];
  spanners.forEach((spanner) => {{
    const notes = resolve(spanner);
    if (notes.length < 2) return;
    if (spanner.kind === "beam") {{
      drawables.push(new Beam(notes));
    }} else if (spanner.kind === "tuplet") {{
      drawables.push(new Tuplet(notes, {{
        bracketed: spanner.options.bracketed !== false,
        location: spanner.options.placement === "below" ? -1 : 1,
      }}));
    }}
  }});

  // Pass 3: lay out systems, staves and measures.
  const systemCount = Math.max(1, Number(payload.system_count) || 1);
  const systemWidths = new Array(systemCount).fill(0);
  const measureX = new Map();
  const measureWidth = new Map();
  parts.forEach((part) => part.measures.forEach((measure) => {{
    const current = measureWidth.get(measure.index) || 0;
    measureWidth.set(measure.index, Math.max(current, measure.width));
  }}));
  [...measureWidth.keys()].sort((a, b) => a - b).forEach((index) => {{
    const sample = parts.flatMap((part) => part.measures).find((measure) => measure.index === index);
    const system = sample ? sample.system : 0;
    measureX.set(index, LEFT + systemWidths[system]);
    systemWidths[system] += measureWidth.get(index);
  }});

  const stavesPerSystem = parts.reduce((total, part) => total + Math.max(1, ...part.measures.map((m) => m.staves.length)), 0);
  const systemHeight = stavesPerSystem * STAVE_SPACING + SYSTEM_GAP;

  const renderer = new Renderer(host, Renderer.Backends.SVG);
  renderer.resize(Math.max(...systemWidths, 200) + LEFT * 2, systemCount * systemHeight + 40);
  const context = renderer.getContext();

  parts.forEach((part, partIndex) => {{
    const staveOffset = parts.slice(0, partIndex)
      .reduce((total, other) => total + Math.max(1, ...other.measures.map((m) => m.staves.length)), 0);

    part.measures.forEach((measure, measureIndex) => {{
      const width = measureWidth.get(measure.index);
      const x = measureX.get(measure.index);
      const voices = [];
      const staves = measure.staves.map((staveData, staveIndex) => {{
        const y = 20 + measure.system * systemHeight + (staveOffset + staveIndex) * STAVE_SPACING;
        const stave = new Stave(x, y, width);
        if (staveData.clef) stave.addClef(staveData.clef, "default", staveData.clef_annotation || undefined);
        if (staveData.key_signature) stave.addKeySignature(staveData.key_signature);
        if (staveData.time_signature) stave.addTimeSignature(staveData.time_signature);
        stave.setContext(context).draw();

        if (staveData.multi_rest_count > 1) {{
          new MultiMeasureRest(staveData.multi_rest_count, {{ number_of_measures: staveData.multi_rest_count }})
            .setStave(stave).setContext(context).draw();
          return {{ stave, voices: [] }};
        }}

        const staveVoices = measureVoices[partIndex][measureIndex][staveIndex].map(({{ voice, notes }}) => {{
          const vfVoice = new Voice({{ num_beats: voice.num_beats, beat_value: voice.beat_value }});
          vfVoice.setMode(Voice.Mode.SOFT);
          vfVoice.addTickables(notes);
          voices.push(vfVoice);
          return vfVoice;
        }});
        return {{ stave, voices: staveVoices }};
      }});

      if (staves.length > 1) {{
        const connector = new StaveConnector(staves[0].stave, staves[staves.length - 1].stave);
        connector.setType(StaveConnector.type.SINGLE_LEFT);
        connector.setContext(context).draw();
      }}

      if (voices.length > 0) {{
        const formatter = new Formatter();
        staves.forEach(({{ voices: staveVoices }}) => {{
          if (staveVoices.length > 0) formatter.joinVoices(staveVoices);
        }});
        const noteStart = Math.max(...staves.map(({{ stave }}) => stave.getNoteStartX()));
        formatter.format(voices, Math.max(40, x + width - noteStart - 20));
        staves.forEach(({{ stave, voices: staveVoices }}) => staveVoices.forEach((v) => v.draw(context, stave)));
      }}
    }});
  }});

  // Pass 4: everything that spans notes.
  drawables.forEach((drawable) => drawable.setContext(context).draw());
  spanners.forEach((spanner) => {{
    const notes = resolve(spanner);
    if (notes.length < 2) return;
    const first = notes[0];
    const last = notes[notes.length - 1];
    if (spanner.kind === "slur") {{
      new Curve(first, last, {{ invert: spanner.options.placement === "below" }}).setContext(context).draw();
    }} else if (spanner.kind === "wedge") {{
      const type = spanner.options.type === "diminuendo" ? StaveHairpin.type.DECRESC : StaveHairpin.type.CRESC;
      new StaveHairpin({{ first_note: first, last_note: last }}, type).setContext(context).draw();
    }} else if (spanner.kind === "pedal") {{
      const marking = new PedalMarking(notes);
      marking.setType(spanner.options.line ? PedalMarking.type.BRACKET : PedalMarking.type.TEXT);
      marking.setContext(context).draw();
    }} else if (spanner.kind === "vibrato") {{
      new VibratoBracket({{ start: first, stop: last }}).setContext(context).draw();
    }} else if (spanner.kind === "octave_shift") {{
      new TextBracket({{
        start: first,
        stop: last,
        text: spanner.options.text || "8",
        superscript: spanner.options.superscript || "va",
        position: spanner.options.position || "top",
      }}).setContext(context).draw();
    }}
  }});
</script>
"""
