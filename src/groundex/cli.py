"""Command-line tools for alignment and schema checks.

Usage:
    groundex align document.txt "Google Inc." "John Smith" --json
    groundex align document.txt "googel inc" --max-distance 3 --ignore-punctuation
    groundex schema schema.json
    groundex presets
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from .alignment import AlignmentOptions, AlignmentResult, TextAligner
from .engine.config import ENGINE_PRESETS
from .errors import AlignmentError
from .schema import BasicExtractionSchema
from .shared.logger import PipelineLogger


def _result_row(result: AlignmentResult) -> dict[str, Any]:
    return {
        "extraction_text": result.extracted_text,
        "status": result.status.value,
        "quality": round(result.quality, 2),
        "start": result.interval.start,
        "end": result.interval.end,
        "aligned_text": result.aligned_text,
        "method": result.method,
        "edit_distance": result.edit_distance,
    }


def _format_table(rows: list[dict[str, Any]]) -> str:
    lines = [
        "Status              Quality  Span           Text",
        "------              -------  ----           ----",
    ]
    for row in rows:
        span = f"[{row['start']}:{row['end']})"
        text = row["extraction_text"]
        if len(text) > 40:
            text = text[:37] + "..."
        lines.append(f"{row['status']:<20}{row['quality']:<9}{span:<15}{text}")
    return "\n".join(lines)


@click.group()
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Also write INFO logs here")
@click.option("--verbose", is_flag=True, help="Show DEBUG logs from groundex modules")
@click.pass_context
def main(ctx: click.Context, log_file: Path | None, verbose: bool) -> None:
    """Ground extracted text in source documents."""
    log = PipelineLogger(log_file=log_file, console=verbose, min_level="DEBUG" if verbose else "INFO")
    log.install_stdlib_bridge(root_logger="groundex", level=10 if verbose else 20)
    ctx.obj = log
    ctx.call_on_close(log.close)
    ctx.call_on_close(log.remove_stdlib_bridge)


@main.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("extractions", nargs=-1, required=True)
@click.option("--case-sensitive", is_flag=True, help="Do not fold case when normalising")
@click.option("--keep-whitespace", is_flag=True, help="Do not collapse whitespace when normalising")
@click.option("--ignore-punctuation", is_flag=True, help="Strip punctuation when normalising")
@click.option("--max-distance", default=5, type=int, show_default=True, help="Largest accepted edit distance")
@click.option("--min-confidence", default=0.7, type=float, show_default=True, help="Lowest accepted fuzzy confidence")
@click.option("--json", "json_output", is_flag=True, help="Output JSON instead of a table")
@click.pass_obj
def align(
    log: PipelineLogger,
    source: Path,
    extractions: tuple[str, ...],
    case_sensitive: bool,
    keep_whitespace: bool,
    ignore_punctuation: bool,
    max_distance: int,
    min_confidence: float,
    json_output: bool,
) -> None:
    """Locate EXTRACTIONS in the SOURCE text file, in order."""
    options = AlignmentOptions(
        case_sensitive=case_sensitive,
        ignore_whitespace=not keep_whitespace,
        ignore_punctuation=ignore_punctuation,
        max_distance=max_distance,
        min_confidence=min_confidence,
    )
    text = source.read_text(encoding="utf-8")
    try:
        aligner = TextAligner(options)
        with log.timer("align"):
            results = aligner.align_extractions(list(extractions), text)
    except AlignmentError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    rows = [_result_row(r) for r in results]
    log.metric("aligned", sum(1 for r in results if r.is_aligned()))
    if json_output:
        click.echo(json.dumps(rows, indent=2, ensure_ascii=False))
    else:
        click.echo(_format_table(rows))

    if not all(r.is_aligned() for r in results):
        sys.exit(1)


@main.command()
@click.argument("schema_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json-schema", "show_json_schema", is_flag=True, help="Print the derived JSON Schema")
def schema(schema_file: Path, show_json_schema: bool) -> None:
    """Validate an extraction SCHEMA_FILE and list its classes."""
    try:
        loaded = BasicExtractionSchema.from_json(schema_file.read_text(encoding="utf-8"))
    except (ValidationError, json.JSONDecodeError) as e:
        click.echo(f"Invalid schema: {e}", err=True)
        sys.exit(1)

    click.echo(f"Schema: {loaded.name}")
    if loaded.description:
        click.echo(f"  {loaded.description}")
    for c in loaded.classes:
        fields = ", ".join(f"{f.name}:{f.type}{'*' if f.required else ''}" for f in c.fields)
        click.echo(f"  - {c.name}" + (f" ({fields})" if fields else ""))
    if show_json_schema:
        click.echo(json.dumps(loaded.to_json_schema(), indent=2))


@main.command()
def presets() -> None:
    """List engine configuration presets."""
    for name, config in ENGINE_PRESETS.items():
        click.echo(
            f"{name:<10} multi_pass={config.enable_multi_pass} "
            f"threshold={config.confidence_threshold} "
            f"overlap={config.overlap_strategy.value} "
            f"max_distance={config.alignment.max_distance}"
        )


if __name__ == "__main__":
    main()
