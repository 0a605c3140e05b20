"""
CLI Interface
=============
Command-line interface for the docx exam parser.

Usage:
    python -m exam_parser parse <docx_path> [options]
    python -m exam_parser batch <directory> [options]
    python -m exam_parser validate <json_path>
    python -m exam_parser info <docx_path>
    python -m exam_parser serve [options]
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from .archive import DocxArchive, extract_media
from .engine import ParserConfig, ParserEngine
from .exceptions import InvalidInputError
from .extractor import ParagraphExtractor
from .models import ExamData
from .sections import detect_sections
from .validator import ValidationEngine

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="exam-parser")
def cli():
    """Docx Exam Parser — three-section exam extractor for Word documents."""
    pass


@cli.command()
@click.argument("docx_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    default="output",
    help="Output directory for parsed data",
)
@click.option(
    "--title", "-t",
    default="",
    help="Exam title (defaults to filename)",
)
@click.option(
    "--time-limit",
    default=90,
    type=click.IntRange(min=0),
    help="Time limit in minutes",
)
@click.option(
    "--exam-id",
    default=None,
    help="Custom exam ID for output file names",
)
@click.option(
    "--save-paragraphs",
    is_flag=True,
    default=False,
    help="Also save the extracted paragraph snapshot",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def parse(
    docx_path: str,
    output: str,
    title: str,
    time_limit: int,
    exam_id: str,
    save_paragraphs: bool,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Parse a single .docx file into a structured exam."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    config = ParserConfig(
        title=title,
        time_limit=time_limit,
        output_dir=None if json_output else output,
        exam_id=exam_id,
        save_paragraphs=save_paragraphs,
        log_level=log_level,
        log_file=log_file,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Docx Exam Parser v{__version__}[/]\n"
                f"[dim]Parsing: {os.path.basename(docx_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        engine = ParserEngine(config)
        result = engine.run(docx_path)
    except InvalidInputError as e:
        console.print(f"[red]Invalid document:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(
            result.model_dump(mode="json"),
            indent=2,
            ensure_ascii=False,
        ))
        return

    _display_results(result)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", default="output", help="Output directory")
@click.option("--time-limit", default=90, type=int, help="Time limit in minutes")
@click.option("--log-level", default="WARNING", help="Logging level")
def batch(directory: str, output: str, time_limit: int, log_level: str):
    """Batch parse all .docx files in a directory."""

    docx_files = sorted(
        p for p in Path(directory).glob("*.docx")
        if not p.name.startswith("~$")
    )

    if not docx_files:
        console.print(f"[yellow]No .docx files found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Exam Parser[/]\n"
            f"[dim]Found {len(docx_files)} documents in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    results = []
    errors = []
    engine = ParserEngine(ParserConfig(
        output_dir=output,
        time_limit=time_limit,
        log_level=log_level,
    ))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(
            "Processing documents...", total=len(docx_files)
        )

        for docx_file in docx_files:
            progress.update(task, description=f"Parsing: {docx_file.name}")
            try:
                results.append((docx_file.name, engine.run(str(docx_file))))
            except InvalidInputError as e:
                errors.append((docx_file.name, str(e)))
            progress.advance(task)

    _display_batch_summary(results, errors)


@cli.command()
@click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
def validate(json_path: str):
    """Re-validate a previously generated parse result JSON."""

    try:
        with open(json_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        console.print(f"[red]Invalid JSON:[/] {escape(str(e))}")
        sys.exit(1)

    if not isinstance(data, dict):
        console.print("[red]Not a parse result:[/] expected a JSON object")
        sys.exit(1)

    try:
        exam = ExamData.model_validate(data.get("exam", data))
    except ValidationError as e:
        console.print(f"[red]Not a parse result:[/] {escape(str(e))}")
        sys.exit(1)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Validation Report[/]\n"
            f"[dim]File: {json_path}[/]",
            border_style="cyan",
        )
    )

    report = ValidationEngine().validate(exam)
    _display_validation_table(report.model_dump())
    if not report.valid:
        sys.exit(2)


@cli.command()
@click.argument("docx_path", type=click.Path(exists=True, dir_okay=False))
def info(docx_path: str):
    """Display document container and section information."""

    try:
        with DocxArchive.from_bytes(Path(docx_path).read_bytes()) as archive:
            part_count = len(archive.names())
            catalog = extract_media(archive)
            paragraphs = ParagraphExtractor().extract(archive.main_document())
    except InvalidInputError as e:
        console.print(f"[red]Invalid document:[/] {e}")
        sys.exit(1)

    bounds = detect_sections(paragraphs)

    console.print()
    table = Table(title="Document Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(docx_path))
    table.add_row(
        "File Size",
        f"{os.path.getsize(docx_path) / 1024:.1f} KB",
    )
    table.add_row("Parts", str(part_count))
    table.add_row("Images", str(len(catalog)))
    table.add_row(
        "Linked Images",
        str(sum(1 for a in catalog.assets if a.relationship_id)),
    )
    table.add_row("Paragraphs", str(len(paragraphs)))
    for section, (start, end) in bounds.ranges().items():
        table.add_row(f"Section {section}", f"paragraphs {start}–{end} ({end - start})")

    console.print(table)
    console.print()


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP parsing microservice."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Exam Parser Microservice[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_results(result):
    """Display parse results in formatted tables."""
    console.print()

    exam = result.exam
    table = Table(title="Exam Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Title", exam.title or "(none)")
    table.add_row("Source", result.source.filename)
    table.add_row("Time Limit", f"{exam.time_limit} min")
    table.add_row("Paragraphs", str(result.source.paragraph_count))
    table.add_row("Images", str(len(exam.images)))
    table.add_row("File Hash", result.source.file_hash[:16] + "...")
    console.print(table)
    console.print()

    section_table = Table(title="Sections", border_style="cyan")
    section_table.add_column("Section", style="bold")
    section_table.add_column("Type")
    section_table.add_column("Questions", justify="right")
    section_table.add_column("Answered", justify="right")
    for section in exam.sections:
        answered = sum(1 for q in section.questions if q.correct_answer)
        section_table.add_row(
            section.name,
            section.section_type.value,
            str(len(section.questions)),
            str(answered),
        )
    console.print(section_table)
    console.print()

    _display_validation_table(result.validation.model_dump())

    pv = result.parse_version
    console.print(
        f"[dim]Parser v{pv.parser_version} | "
        f"Paragraphs: {pv.paragraph_count} | "
        f"Questions: {pv.question_count} | "
        f"Timestamp: {pv.parse_timestamp}[/]"
    )
    console.print()


def _display_validation_table(validation: dict):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    total = validation.get("total_questions", 0)
    table.add_row(
        "Total Questions",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )

    for section_type, count in sorted(validation.get("section_counts", {}).items()):
        table.add_row(f"  {section_type}", str(count), "")

    rate = validation.get("success_rate", 0)
    table.add_row(
        "Structured Successfully",
        f"{validation.get('structured_successfully', 0)} ({rate}%)",
        "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]",
    )

    without = validation.get("without_answer", 0)
    table.add_row(
        "Questions Without Answer",
        str(without),
        status_icon(without),
    )

    dupes = validation.get("duplicate_question_numbers", [])
    table.add_row(
        "Duplicate Question Numbers",
        str(len(dupes)),
        status_icon(len(dupes)),
    )

    missing = validation.get("missing_question_numbers", [])
    table.add_row(
        "Missing Question Numbers",
        str(len(missing)),
        status_icon(len(missing)),
    )

    errors = validation.get("errors", [])
    table.add_row("Errors", str(len(errors)), status_icon(len(errors)))

    console.print(table)
    console.print()

    for error in errors:
        console.print(f"  [red]•[/] {error}")
    if errors:
        console.print()


def _display_batch_summary(results, errors):
    """Display batch processing summary."""
    console.print()

    table = Table(title="Batch Processing Summary", border_style="cyan")
    table.add_column("Document", style="bold")
    table.add_column("Questions", justify="right")
    table.add_column("Answered", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Status", justify="center")

    total_questions = 0

    for name, result in results:
        validation = result.validation
        total_questions += validation.total_questions
        status = "[green]✓[/]" if validation.valid else "[yellow]⚠[/]"
        table.add_row(
            name,
            str(validation.total_questions),
            str(validation.with_answer),
            str(len(validation.errors)),
            status,
        )

    for name, error in errors:
        table.add_row(name, "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {total_questions} questions from "
        f"{len(results)} documents, {len(errors)} failures"
    )
    console.print()


# ─── Entry point (for python -m exam_parser.cli) ─────────────────────────────


if __name__ == "__main__":
    cli()
