from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from phdsync.archive import STORED, list_entries
from phdsync.auth import resolve_token
from phdsync.client import SwitchboardClient
from phdsync.config import PhdSyncConfig, config_path, load_config, normalize_base_url, save_config
from phdsync.container import ENTRY_NAMES, HEADER_ENTRY, read_json_entry
from phdsync.download import DownloadSummary, DriveSummary, download_drives
from phdsync.filters import build_document_filter
from phdsync.progress_ui import echo
from phdsync.state_db import load_downloads, load_uploads
from phdsync.upload import UploadSummary, upload_files


app = typer.Typer(help="Download and upload Powerhouse documents as .phd containers")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO; keep it for --verbose only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_config_or_exit() -> PhdSyncConfig:
    try:
        return load_config()
    except (ValueError, OSError) as exc:
        echo(console, (f"Invalid config {config_path()}: {exc}", "red"))
        raise typer.Exit(code=1)


def _client(endpoint: str, config: PhdSyncConfig, *, request_delay: float) -> SwitchboardClient:
    return SwitchboardClient(
        endpoint,
        token=resolve_token(config.token),
        page_size=config.page_size,
        request_delay=request_delay,
    )


def _render_reasons(title: str, rows: list[tuple[str, str, str]]) -> None:
    if not rows:
        return
    console.print(f"    {title}:")
    for name, identifier, reason in rows:
        echo(console, f'      - "{name}" ({identifier})')
        echo(console, f"        {reason}")


def _render_drive_summary(summary: DriveSummary) -> None:
    echo(console, f'\n  Summary for "{summary.drive_name}":')
    console.print(f"    Saved:           {len(summary.saved)}")
    console.print(f"    Skipped:         {len(summary.skipped)}")
    console.print(f"    Verified OK:     {len(summary.verified)}")
    console.print(f"    Verify failed:   {len(summary.verify_failures)}")
    console.print(f"    Empty stateJSON: {len(summary.empty_state)}")
    if summary.filtered:
        console.print(f"    Filtered out:    {len(summary.filtered)}")
    _render_reasons(
        "Reasons for skipped documents",
        [(failure.name, failure.id, failure.reason) for failure in summary.skipped],
    )
    _render_reasons(
        "Verification failures",
        [(doc.name, doc.id, doc.verify_reason or "") for doc in summary.verify_failures],
    )
    if summary.empty_state:
        console.print("    Documents with empty stateJSON:")
        for doc in summary.empty_state:
            echo(console, f'      - "{doc.name}" ({doc.id}) [{doc.document_type}]')


def _render_download_summary(summary: DownloadSummary) -> None:
    for drive in summary.drives:
        _render_drive_summary(drive)

    console.print(f"\n{'=' * 60}\nDONE\n{'=' * 60}")
    echo(console, f"  Output:           {summary.output_dir}")
    console.print(f"  Drives processed: {len(summary.drives)}")
    console.print(f"  Drives skipped:   {len(summary.drive_failures)}")
    console.print(f"  Documents saved:  {summary.saved_count}")
    console.print(f"  Documents skipped: {summary.skipped_count}")
    console.print(f"  Verified OK:      {summary.verified_count}")
    console.print(f"  Verify failed:    {summary.mismatch_count}")
    if summary.drive_failures:
        console.print("  Reasons for skipped drives:")
        for failure in summary.drive_failures:
            echo(console, f'    - "{failure.id}"')
            echo(console, f"      {failure.reason}")


async def _download_async(
    endpoint: str,
    drive_id: str | None,
    output: str | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
) -> int:
    config = _load_config_or_exit()
    output_base = Path(output).expanduser().resolve() if output else config.output_path
    echo(console, f"Switchboard: {normalize_base_url(endpoint)}")
    echo(console, f"Output dir:  {output_base}")

    try:
        async with _client(endpoint, config, request_delay=config.request_delay) as client:
            summary = await download_drives(
                client,
                drive_id,
                output_base,
                document_filter=build_document_filter(include, exclude),
                console=console,
                state_db_path=config.state_db_path,
            )
    except KeyboardInterrupt:
        console.print("[yellow]Download interrupted.[/yellow] Containers written so far are complete.")
        return 130
    except RuntimeError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1
    except Exception as exc:
        console.print(f"[red]Download failed:[/red] {escape(str(exc))}")
        return 1

    _render_download_summary(summary)
    return 0


@app.command()
def download(
    endpoint: str = typer.Argument(..., help="Switchboard URL, e.g. https://switchboard.example.com"),
    drive_id: str | None = typer.Argument(None, help="Only download this drive."),
    output: str | None = typer.Option(None, "--output", "-o", help="Output directory (default: ./downloads)."),
    include: list[str] | None = typer.Option(
        None,
        "--include",
        help="Include glob pattern(s) matched against folder/name or document type (repeatable).",
    ),
    exclude: list[str] | None = typer.Option(
        None,
        "--exclude",
        help="Exclude glob pattern(s) matched against folder/name or document type (repeatable).",
    ),
) -> None:
    """Download every document of one or all drives as verified .phd files."""
    raise typer.Exit(
        code=asyncio.run(
            _download_async(endpoint, drive_id, output, tuple(include or ()), tuple(exclude or ()))
        )
    )


def _render_upload_summary(summary: UploadSummary) -> None:
    console.print(f"\n{'=' * 60}\nDONE\n{'=' * 60}")
    echo(console, f"  Drive:     {summary.drive_id}")
    console.print(f"  Uploaded:  {len(summary.results)}")
    console.print(f"  Failed:    {len(summary.failures)}")
    for result in summary.results:
        icon = ("[OK]", "green") if result.state_match else ("[~]", "yellow")
        echo(
            console,
            "  ",
            icon,
            f" {result.name or result.file} ({result.document_type}) -> "
            f"{result.document_id} ({result.operations_pushed} ops)",
        )
    for failure in summary.failures:
        echo(console, "  ", ("[X]", "red"), f" {failure.file}: {failure.reason}")


async def _upload_async(endpoint: str, drive_id: str, files: tuple[str, ...]) -> int:
    config = _load_config_or_exit()
    echo(console, f"Switchboard: {normalize_base_url(endpoint)}")
    echo(console, f"Drive:       {drive_id}")

    try:
        async with _client(endpoint, config, request_delay=config.upload_delay) as client:
            summary = await upload_files(
                client,
                drive_id,
                files,
                batch_size=config.push_batch_size,
                delay=config.upload_delay,
                console=console,
                state_db_path=config.state_db_path,
            )
    except KeyboardInterrupt:
        console.print("[yellow]Upload interrupted.[/yellow] The current document may be partially replayed.")
        return 130
    except RuntimeError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1
    except Exception as exc:
        console.print(f"[red]Upload failed:[/red] {escape(str(exc))}")
        return 1

    _render_upload_summary(summary)
    return 1 if summary.failed else 0


@app.command()
def upload(
    endpoint: str = typer.Argument(..., help="Switchboard URL."),
    drive_id: str = typer.Argument(..., help="Drive that receives the new documents."),
    files: list[str] = typer.Argument(..., help=".phd files or directories containing them."),
) -> None:
    """Recreate documents from .phd files by replaying their operations."""
    raise typer.Exit(code=asyncio.run(_upload_async(endpoint, drive_id, tuple(files))))


@app.command()
def inspect(path: Path = typer.Argument(..., exists=True, dir_okay=False, help=".phd file to inspect.")) -> None:
    """List the entries of a .phd container and show its header."""
    buffer = path.read_bytes()
    try:
        entries = list_entries(buffer)
        header = read_json_entry(buffer, HEADER_ENTRY, str(path))
    except RuntimeError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)

    logical_names = {entry: logical for logical, entry in ENTRY_NAMES.items()}
    table = Table(title=str(path))
    table.add_column("Entry")
    table.add_column("Role")
    table.add_column("Method")
    table.add_column("CRC-32")
    table.add_column("Size", justify="right")
    table.add_column("Compressed", justify="right")
    table.add_column("Offset", justify="right")
    for entry in entries:
        table.add_row(
            entry.name,
            logical_names.get(entry.name, "-"),
            "stored" if entry.method == STORED else "deflate",
            f"{entry.crc32:08x}",
            str(entry.uncompressed_size),
            str(entry.compressed_size),
            str(entry.offset),
        )
    console.print(table)
    console.print(Text(json.dumps(header, indent=2, ensure_ascii=False)))


def _format_timestamp(value: int) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


async def _history_async(limit: int) -> int:
    config = _load_config_or_exit()
    downloads = await load_downloads(config.state_db_path, limit)
    uploads = await load_uploads(config.state_db_path, limit)
    if not downloads and not uploads:
        echo(console, (f"No runs recorded in {config.state_db_path}.", "green"))
        return 0

    if downloads:
        table = Table(title="Downloads")
        for column in ("When (UTC)", "Drive", "Document", "Type", "Rev", "Ops", "CRC-32", "Verified"):
            table.add_column(column)
        for entry in downloads:
            table.add_row(
                _format_timestamp(entry.recorded_at),
                entry.drive_id,
                entry.document_id,
                entry.document_type,
                str(entry.revision),
                str(entry.operations),
                f"{entry.checksum:08x}",
                "yes" if entry.verified else "NO",
            )
        console.print(table)

    if uploads:
        table = Table(title="Uploads")
        for column in ("When (UTC)", "File", "Drive", "New document", "Type", "Ops", "State match"):
            table.add_column(column)
        for entry in uploads:
            table.add_row(
                _format_timestamp(entry.recorded_at),
                entry.file,
                entry.drive_id,
                entry.document_id,
                entry.document_type,
                str(entry.operations_pushed),
                "yes" if entry.state_match else "no",
            )
        console.print(table)
    return 0


@app.command()
def history(limit: int = typer.Option(20, "--limit", "-n", min=1, help="Rows per table.")) -> None:
    """Show recently recorded downloads and uploads."""
    raise typer.Exit(code=asyncio.run(_history_async(limit)))


@app.command()
def init(
    token: str = typer.Option("", "--token", help="Bearer token stored in the config file."),
    output: str = typer.Option("downloads", "--output", "-o", help="Default download directory."),
) -> None:
    """Write a .phdsync.json with default settings in the current directory."""
    path = config_path()
    if path.exists():
        echo(console, ("Config already exists:", "yellow"), f" {path}")
        raise typer.Exit(code=1)
    save_config(PhdSyncConfig(token=token, output_dir=output))
    echo(console, ("Initialized phdsync", "green"), f" config at {path}")
