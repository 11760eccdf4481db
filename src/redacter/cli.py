"""Command-line interface for the redacter copy tool.

Provides:
- `cp`: Copy files between storages, optionally redacting PII on the way.
- `ls`: List the files of a storage location with their resolved category.
"""

import dataclasses
from contextlib import closing
from typing import List, Optional

import typer
from rich import print
from rich.console import Console
from rich.table import Table as RichTable

from .config import RunConfig, parse_mime_override
from .content_type import ContentTypeResolver
from .convert import ContentConverter
from .engine import EngineOptions, RedactionEngine
from .enumerate import Enumerator, FileMatcher
from .errors import RedacterError, error_kind
from .pipeline import CopyPipeline, RunContext, RunSummary
from .redacters import REDACTERS, create_redacters
from .results import write_results
from .settings import Settings, get_settings
from .storage import open_storage
from .throttle import RateLimiter, Unlimited

app = typer.Typer(add_completion=False, help="Copy files and redact PII with external DLP services")
console = Console(stderr=True)


def _mime_overrides(values: Optional[List[str]]) -> list:
    try:
        return [parse_mime_override(v) for v in values or []]
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--mime-override")


def _settings_with(settings: Settings, **overrides) -> Settings:
    changes = {k: v for k, v in overrides.items() if v not in (None, [], ())}
    return dataclasses.replace(settings, **changes) if changes else settings


def _print_summary(summary: RunSummary) -> None:
    print(
        f"[green]Redacted:[/green] {summary.redacted}  "
        f"[cyan]Copied:[/cyan] {summary.passthrough_copied}  "
        f"[yellow]Skipped:[/yellow] {summary.skipped}  "
        f"[red]Failed:[/red] {summary.failed}  "
        f"Filtered: {summary.filtered}  Findings: {summary.findings}"
    )
    if summary.sampled:
        print(f"[yellow]Sampled items (only a prefix was inspected):[/yellow] {summary.sampled}")
    rows = [(f, "red") for f in summary.failures] + [(s, "yellow") for s in summary.skips]
    if not rows:
        return
    table = RichTable(title="Items not redacted")
    table.add_column("Path")
    table.add_column("Kind")
    table.add_column("Reason")
    for item, style in rows:
        table.add_row(item.path, item.kind, item.message, style=style)
    console.print(table)


def _fail(exc: RedacterError) -> None:
    console.print(f"[red]Error ({error_kind(exc)}):[/red] {exc}")
    raise typer.Exit(code=1)


@app.command()
def cp(
    source: str = typer.Argument(..., help="Source: path, s3://, gs://, zip:// or clipboard://"),
    destination: str = typer.Argument(..., help="Destination; add a trailing slash for directories"),
    max_size_limit: Optional[int] = typer.Option(
        None, "--max-size-limit", "-m", help="Skip files larger than this many bytes"
    ),
    max_files_limit: Optional[int] = typer.Option(
        None, "--max-files-limit", help="Stop after this many files"
    ),
    filename_filter: Optional[str] = typer.Option(
        None, "--filename-filter", "-f", help="Glob matched against relative path or name"
    ),
    redact: Optional[List[str]] = typer.Option(
        None, "--redact", "-d", help=f"Redacter to apply, in order ({', '.join(REDACTERS)})"
    ),
    gcp_project_id: Optional[str] = typer.Option(None, help="GCP project id for Cloud DLP"),
    gcp_dlp_built_in_info_type: Optional[List[str]] = typer.Option(
        None, help="Cloud DLP built-in info type (repeatable)"
    ),
    aws_region: Optional[str] = typer.Option(None, help="AWS region for Comprehend"),
    ms_presidio_text_analyze_url: Optional[str] = typer.Option(
        None, help="Presidio analyzer URL"
    ),
    ms_presidio_image_redact_url: Optional[str] = typer.Option(
        None, help="Presidio image redactor URL"
    ),
    gemini_api_key: Optional[str] = typer.Option(None, help="Gemini API key"),
    gemini_model: Optional[str] = typer.Option(None, help="Gemini model name"),
    open_ai_api_key: Optional[str] = typer.Option(None, help="OpenAI API key"),
    open_ai_model: Optional[str] = typer.Option(None, help="OpenAI model name"),
    allow_unsupported_copies: bool = typer.Option(
        False, "--allow-unsupported-copies", help="Copy items no redacter can handle as is"
    ),
    csv_headers_disable: bool = typer.Option(
        False, "--csv-headers-disable", help="CSV files have no header row"
    ),
    csv_delimiter: str = typer.Option(",", help="CSV delimiter"),
    sampling_size: Optional[int] = typer.Option(
        None, help="Only send the first N bytes of text or table content"
    ),
    sampling_tail: str = typer.Option("copy", help="Content past the sample: copy | drop"),
    limit_dlp_requests: Optional[str] = typer.Option(
        None, help="Limit DLP calls: N concurrent, Nrps or Nrpm"
    ),
    mime_override: Optional[List[str]] = typer.Option(
        None, help="Force a media type with MIME=GLOB (repeatable)"
    ),
    workers: Optional[int] = typer.Option(None, help="Concurrent workers"),
    pdf_dpi: int = typer.Option(200, help="Rasterization DPI for PDFs"),
    ocr_lang: str = typer.Option("eng", help="Tesseract language"),
    fail_on_skipped: bool = typer.Option(
        False, "--fail-on-skipped", help="Exit with status 1 when items were skipped"
    ),
    save_json_results: Optional[str] = typer.Option(
        None, help="Write per item results to this JSON file"
    ),
    progress: Optional[bool] = typer.Option(
        None, "--progress/--no-progress", help="Show a progress bar"
    ),
):
    """Copy SOURCE to DESTINATION, redacting content with the selected backends."""
    settings = _settings_with(
        get_settings(),
        gcp_project_id=gcp_project_id,
        gcp_dlp_info_types=gcp_dlp_built_in_info_type,
        aws_region=aws_region,
        ms_presidio_text_analyze_url=ms_presidio_text_analyze_url,
        ms_presidio_image_redact_url=ms_presidio_image_redact_url,
        gemini_api_key=gemini_api_key,
        gemini_model=gemini_model,
        open_ai_api_key=open_ai_api_key,
        open_ai_model=open_ai_model,
    )
    try:
        cfg = RunConfig(
            workers=workers or settings.workers,
            max_size_limit=max_size_limit,
            max_files_limit=max_files_limit,
            filename_filter=filename_filter,
            mime_overrides=_mime_overrides(mime_override),
            allow_unsupported_copies=allow_unsupported_copies,
            sampling_size=sampling_size,
            sampling_tail=sampling_tail,
            limit_dlp_requests=limit_dlp_requests,
            csv_headers_disable=csv_headers_disable,
            csv_delimiter=csv_delimiter,
            pdf_dpi=pdf_dpi,
            ocr_lang=ocr_lang,
            fail_on_skipped=fail_on_skipped,
            show_progress=settings.show_progress if progress is None else progress,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc))

    engine = None
    try:
        limiter = RateLimiter.parse(cfg.limit_dlp_requests) or Unlimited()
        if redact:
            converter = ContentConverter(
                pdf_dpi=cfg.pdf_dpi,
                ocr_lang=cfg.ocr_lang,
                csv_delimiter=cfg.csv_delimiter,
                csv_headers=not cfg.csv_headers_disable,
            )
            engine = RedactionEngine(
                create_redacters(redact, settings),
                converter,
                EngineOptions.from_config(cfg),
                limiter,
            )
        with open_storage(source, settings) as src, open_storage(destination, settings) as dst:
            pipeline = CopyPipeline(src, dst, cfg, engine, context=RunContext(limiter=limiter))
            summary = pipeline.run()
    except RedacterError as exc:
        _fail(exc)
    finally:
        if engine is not None:
            engine.close()

    _print_summary(summary)
    if save_json_results:
        path = write_results(
            save_json_results,
            source,
            destination,
            summary,
            cfg,
            redacters=redact,
            hmac_key=settings.hmac_key,
        )
        print(f"[green]Results:[/green] {path}")
    raise typer.Exit(code=summary.exit_code(cfg.fail_on_skipped))


@app.command()
def ls(
    source: str = typer.Argument(..., help="Source: path, s3://, gs://, zip:// or clipboard://"),
    max_size_limit: Optional[int] = typer.Option(
        None, "--max-size-limit", "-m", help="Skip files larger than this many bytes"
    ),
    max_files_limit: Optional[int] = typer.Option(
        None, "--max-files-limit", help="Stop after this many files"
    ),
    filename_filter: Optional[str] = typer.Option(
        None, "--filename-filter", "-f", help="Glob matched against relative path or name"
    ),
    mime_override: Optional[List[str]] = typer.Option(
        None, help="Force a media type with MIME=GLOB (repeatable)"
    ),
    sniff: bool = typer.Option(
        False, "--sniff/--no-sniff", help="Read each file's head to detect its format"
    ),
):
    """List the files of SOURCE with their size, media type and category."""
    resolver = ContentTypeResolver(_mime_overrides(mime_override))
    table = RichTable(title=source)
    table.add_column("Path")
    table.add_column("Size", justify="right")
    table.add_column("Media type")
    table.add_column("Category")
    try:
        with open_storage(source) as src:
            enumerator = Enumerator(
                src, FileMatcher(filename_filter, max_size_limit), max_files_limit
            )
            for entry in enumerator:
                head = None
                if sniff:
                    with closing(src.open_read(entry)) as fh:
                        head = fh.read(resolver.sniff_bytes)
                media_type, category = resolver.resolve(entry, head)
                size = "" if entry.size is None else str(entry.size)
                table.add_row(entry.path, size, media_type or "", category.value)
    except RedacterError as exc:
        _fail(exc)
    Console().print(table)
    print(f"{enumerator.yielded} files, {enumerator.skipped} filtered")


if __name__ == "__main__":
    app()
