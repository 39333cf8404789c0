"""scoreflow CLI entry point."""

import dataclasses
import sys
from pathlib import Path

import click

from scoreflow import __version__
from scoreflow.config import Config
from scoreflow.errors import NotationImportError
from scoreflow.logging_utils import configure_logging
from scoreflow.sheet_exporter import SUPPORTED_FORMATS, SheetExporter


def _read_score(musicxml_file: str) -> bytes:
    try:
        return Path(musicxml_file).read_bytes()
    except OSError as exc:
        click.echo(f"  ERROR: Could not read input file — {exc}", err=True)
        sys.exit(1)


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="scoreflow")
@click.option("--verbose", "-v", is_flag=True, help="Log structural decisions at DEBUG level.")
def main(verbose: bool) -> None:
    """scoreflow — MusicXML to VexFlow sheet renderer."""
    configure_logging("DEBUG" if verbose else None)


# ── render subcommand ──────────────────────────────────────────────────────────

@main.command()
@click.argument("musicxml_file", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option(
    "--output",
    "-o",
    default=None,
    metavar="PATH",
    help="Destination sheet file path. Defaults to extension based on --format.",
)
@click.option(
    "--title",
    default=None,
    metavar="TEXT",
    help="Title shown in the output header. Defaults to the score's own title, then the filename stem.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(sorted(SUPPORTED_FORMATS), case_sensitive=False),
    default="md-vexflow",
    show_default=True,
    help="Sheet output format: Markdown with VexFlow script, or the bare JSON payload.",
)
@click.option(
    "--measures-per-system",
    type=click.IntRange(min=0),
    default=Config.measures_per_system,
    show_default=True,
    metavar="N",
    help="Start a new system every N measures. 0 only breaks where the score asks for it.",
)
def render(
    musicxml_file: str,
    output: str | None,
    title: str | None,
    output_format: str,
    measures_per_system: int,
) -> None:
    """
    Render a MusicXML file as sheet music output.

    MUSICXML_FILE is the path to an existing .musicxml, .xml or .mxl file.

    \b
    Examples:
      scoreflow render song.musicxml
      scoreflow render song.mxl -o score.md --title "My Song"
      scoreflow render song.musicxml --format json -o score.json
    """
    score_path = Path(musicxml_file)
    normalized_format = output_format.lower()
    config = dataclasses.replace(Config(), measures_per_system=measures_per_system or None)
    exporter = SheetExporter(title=title or "", output_format=normalized_format, config=config)
    resolved_output = (
        output if output is not None else str(score_path.with_suffix(exporter.renderer.default_extension))
    )

    click.echo(f"scoreflow v{__version__}")
    click.echo(f"  Input  : {musicxml_file}")
    click.echo(f"  Format : {normalized_format}")
    click.echo(f"  Output : {resolved_output}")
    click.echo()

    click.echo("[1/3] Parsing MusicXML...")
    data = _read_score(musicxml_file)
    try:
        rendering = exporter.render_rendering(data)
    except NotationImportError as exc:
        click.echo(f"  ERROR: Could not read score — {exc}", err=True)
        sys.exit(1)

    click.echo("[2/3] Building VexFlow score payload...")
    resolved_title = title or rendering.title or score_path.stem.replace("_", " ")
    content = exporter.renderer.render(
        title=resolved_title,
        score_document=exporter.build_document(rendering, resolved_title),
    )

    click.echo(f"[3/3] Writing {normalized_format} file...")
    try:
        with open(resolved_output, "w", encoding="utf-8") as fh:
            fh.write(content)
    except OSError as exc:
        click.echo(f"  ERROR: Could not write output file — {exc}", err=True)
        sys.exit(1)

    click.echo()
    if normalized_format == "json":
        click.echo(f"Done!  Wrote the VexFlow payload to '{resolved_output}'.")
    else:
        click.echo(
            f"Done!  Open '{resolved_output}' in a Markdown viewer that allows embedded JavaScript."
        )


# ── inspect subcommand ─────────────────────────────────────────────────────────

@main.command()
@click.argument("musicxml_file", type=click.Path(exists=True, dir_okay=False, readable=True))
def inspect(musicxml_file: str) -> None:
    """
    Print a per-measure summary of how a MusicXML file is interpreted.

    Shows staves, voices, entries and changed stave modifiers for every
    measure, then the number of spanners of each kind.
    """
    data = _read_score(musicxml_file)
    try:
        rendering = SheetExporter().render_rendering(data)
    except NotationImportError as exc:
        click.echo(f"  ERROR: Could not read score — {exc}", err=True)
        sys.exit(1)

    click.echo(f"Title   : {rendering.title or '(untitled)'}")
    click.echo(f"Systems : {rendering.system_count}")
    for part in rendering.parts:
        click.echo()
        click.echo(f"Part {part.id}" + (f" ({part.name})" if part.name else ""))
        for measure in part.measures:
            rest_note = f"  multi-rest x{measure.multi_rest_count}" if measure.multi_rest_count else ""
            click.echo(f"  Measure {measure.number or measure.index + 1}  [system {measure.system_index + 1}]{rest_note}")
            for stave in measure.staves:
                modifiers = ", ".join(sorted(modifier.value for modifier in stave.modifiers)) or "-"
                click.echo(f"    Stave {stave.stave_number}  clef={stave.clef.name}  modifiers={modifiers}")
                for voice in stave.chorus.voices:
                    entries = " ".join(
                        f"{entry.kind.value}:{entry.duration.label}" for entry in voice.entries
                    )
                    click.echo(f"      Voice {voice.id}: {entries}")

    click.echo()
    click.echo("Spanners:")
    for kind, count in rendering.spanners.counts().items():
        click.echo(f"  {kind:<14}{count}")
