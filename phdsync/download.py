from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from rich.console import Console

from phdsync.client import SwitchboardClient
from phdsync.config import CONTAINER_EXTENSION
from phdsync.container import verify_container, write_container
from phdsync.errors import UNIT_ERRORS
from phdsync.filters import DocumentFilter
from phdsync.models import DriveInfo, FileNode, FolderNode, LedgerDownload
from phdsync.paths import FolderPathResolver, sanitize
from phdsync.progress_ui import RunProgressUI, echo
from phdsync.state_db import LEDGER_ERRORS, record_download


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class DocumentFailure:
    id: str
    name: str
    reason: str


@dataclass(slots=True, frozen=True)
class SavedDocument:
    id: str
    name: str
    document_type: str
    path: Path
    operations: int
    size: int
    verified: bool
    verify_reason: str | None = None
    empty_state: bool = False
    checksum: int = 0
    revision: int = 0


@dataclass(slots=True, frozen=True)
class DriveSummary:
    drive_id: str
    drive_name: str = ""
    saved: tuple[SavedDocument, ...] = ()
    skipped: tuple[DocumentFailure, ...] = ()
    filtered: tuple[str, ...] = ()

    def with_saved(self, document: SavedDocument) -> "DriveSummary":
        return replace(self, saved=(*self.saved, document))

    def with_skipped(self, failure: DocumentFailure) -> "DriveSummary":
        return replace(self, skipped=(*self.skipped, failure))

    def with_filtered(self, document_id: str) -> "DriveSummary":
        return replace(self, filtered=(*self.filtered, document_id))

    @property
    def attempted(self) -> int:
        return len(self.saved) + len(self.skipped)

    @property
    def verified(self) -> list[SavedDocument]:
        return [doc for doc in self.saved if doc.verified]

    @property
    def verify_failures(self) -> list[SavedDocument]:
        return [doc for doc in self.saved if not doc.verified]

    @property
    def empty_state(self) -> list[SavedDocument]:
        return [doc for doc in self.saved if doc.empty_state]


@dataclass(slots=True, frozen=True)
class DriveFailure:
    id: str
    reason: str


@dataclass(slots=True, frozen=True)
class DownloadSummary:
    output_dir: Path
    drives: tuple[DriveSummary, ...] = ()
    drive_failures: tuple[DriveFailure, ...] = ()

    def with_drive(self, summary: DriveSummary) -> "DownloadSummary":
        return replace(self, drives=(*self.drives, summary))

    def with_drive_failure(self, failure: DriveFailure) -> "DownloadSummary":
        return replace(self, drive_failures=(*self.drive_failures, failure))

    @property
    def saved_count(self) -> int:
        return sum(len(drive.saved) for drive in self.drives)

    @property
    def skipped_count(self) -> int:
        return sum(len(drive.skipped) for drive in self.drives)

    @property
    def verified_count(self) -> int:
        return sum(len(drive.verified) for drive in self.drives)

    @property
    def mismatch_count(self) -> int:
        return sum(len(drive.verify_failures) for drive in self.drives)


def _describe_drive(
    console: Console | None,
    drive: DriveInfo,
    folders: list[FolderNode],
    files: list[FileNode],
    resolver: FolderPathResolver,
) -> None:
    echo(console, f"  Name:  {drive.name}")
    echo(console, f"  Slug:  {drive.slug}")
    echo(console, f"  Icon:  {drive.icon or '(none)'}")
    echo(console, f"  Nodes: {len(folders) + len(files)} total ({len(files)} files, {len(folders)} folders)")
    if folders:
        echo(console, "  Folders:")
        for folder in folders:
            parent = f" (parent: {folder.parent_folder})" if folder.parent_folder else " (root)"
            echo(console, f"    /{resolver.resolve(folder.id) or sanitize(folder.name)}{parent}")
    if files:
        echo(console, "  Files:")
        for file in files:
            directory = resolver.node_directory(file)
            relative = f"{directory}/{file.name}" if directory else file.name
            echo(console, f"    {file.id} -> /{relative} ({file.document_type})")


async def download_document(
    client: SwitchboardClient,
    drive_id: str,
    node: FileNode,
    drive_dir: Path,
    resolver: FolderPathResolver,
) -> SavedDocument:
    """Fetch one document, write its container and verify the written file."""
    document = await client.fetch_document(drive_id, node.id)
    file_name = f"{sanitize(document.name or node.id)}{CONTAINER_EXTENSION}"
    target = drive_dir / resolver.node_directory(node) / file_name

    written = write_container(target, document)
    result = verify_container(target, document.state)
    return SavedDocument(
        id=document.id,
        name=node.name or document.name or node.id,
        document_type=document.document_type,
        path=written.path,
        operations=written.operations,
        size=written.size,
        verified=result.valid,
        verify_reason=result.reason,
        empty_state=document.state_is_empty,
        checksum=written.checksum,
        revision=document.revision,
    )


async def download_drive(
    client: SwitchboardClient,
    drive_id: str,
    output_base: Path,
    *,
    document_filter: DocumentFilter | None = None,
    console: Console | None = None,
    state_db_path: Path | None = None,
) -> DriveSummary:
    document_filter = document_filter or DocumentFilter()
    echo(console, f"\n{'=' * 60}\nDRIVE: {drive_id}\n{'=' * 60}")
    echo(console, f"  Endpoint: {client.drive_endpoint(drive_id)}")
    echo(console, "  Fetching drive info...")

    drive, nodes = await client.fetch_drive(drive_id)
    drive_dir = output_base / sanitize(drive.name or drive_id)
    resolver = FolderPathResolver(nodes)
    files = [node for node in nodes if isinstance(node, FileNode)]
    _describe_drive(console, drive, resolver.folders, files, resolver)

    for folder_path in resolver.resolve_all().values():
        (drive_dir / folder_path).mkdir(parents=True, exist_ok=True)

    summary = DriveSummary(drive_id=drive_id, drive_name=drive.name or drive_id)
    selected: list[FileNode] = []
    for node in files:
        directory = resolver.node_directory(node)
        relative = f"{directory}/{sanitize(node.name)}" if directory else sanitize(node.name)
        if document_filter.matches(relative, node.document_type):
            selected.append(node)
        else:
            summary = summary.with_filtered(node.id)

    echo(console, f"\n  Downloading {len(selected)} documents...")
    with RunProgressUI(console) as ui:
        handle = ui.add_task(action="GET", label=drive.name or drive_id, total=len(selected))
        for position, node in enumerate(selected, start=1):
            if summary.attempted > 0:
                await client.pause()
            label = node.name or node.id
            echo(console, f"    [{position}/{len(selected)}] Fetching \"{label}\" ({node.id})...")
            try:
                saved = await download_document(client, drive_id, node, drive_dir, resolver)
            except UNIT_ERRORS as exc:
                logger.debug("Document %s failed", node.id, exc_info=True)
                echo(console, "           ", (f"SKIP \"{label}\": {exc}", "red"))
                summary = summary.with_skipped(DocumentFailure(id=node.id, name=label, reason=str(exc)))
                ui.advance(handle)
                continue

            if saved.empty_state:
                echo(
                    console,
                    "           ",
                    (
                        f"WARNING: stateJSON is empty for \"{label}\" ({saved.document_type})"
                        " - the downloaded .phd will have an empty global state",
                        "yellow",
                    ),
                )
            relative_path = saved.path.relative_to(output_base) if saved.path.is_relative_to(output_base) else saved.path
            echo(
                console,
                f"           Saved {relative_path} ({saved.document_type}, {saved.operations} ops, "
                f"{saved.size / 1024:.1f} KB)",
            )
            if saved.verified:
                echo(console, "           ", ("Verified OK", "green"))
            else:
                echo(console, "           ", (f"VERIFY FAILED: {saved.verify_reason or ''}", "yellow"))

            if state_db_path is not None:
                try:
                    await record_download(
                        state_db_path,
                        LedgerDownload(
                            document_id=saved.id,
                            drive_id=drive_id,
                            path=str(saved.path),
                            document_type=saved.document_type,
                            revision=saved.revision,
                            operations=saved.operations,
                            checksum=saved.checksum,
                            verified=saved.verified,
                        ),
                    )
                except LEDGER_ERRORS as exc:
                    logger.warning("Could not record %s in %s: %s", saved.id, state_db_path, exc)
                    echo(console, "           ", (f"Ledger not updated: {exc}", "yellow"))
            summary = summary.with_saved(saved)
            ui.advance(handle)
        ui.complete(handle)

    return summary


async def download_drives(
    client: SwitchboardClient,
    drive_id: str | None,
    output_base: Path,
    *,
    document_filter: DocumentFilter | None = None,
    console: Console | None = None,
    state_db_path: Path | None = None,
) -> DownloadSummary:
    """Download one drive, or every drive the switchboard lists."""
    output_base = output_base.resolve()
    if drive_id:
        drive_ids = [drive_id]
    else:
        echo(console, "\nFetching drive list...")
        drive_ids = await client.list_drives()
    echo(console, f"Found {len(drive_ids)} drive(s): {', '.join(drive_ids)}")

    summary = DownloadSummary(output_dir=output_base)
    for index, current in enumerate(drive_ids):
        if index > 0:
            await client.pause()
        try:
            drive_summary = await download_drive(
                client,
                current,
                output_base,
                document_filter=document_filter,
                console=console,
                state_db_path=state_db_path,
            )
        except UNIT_ERRORS as exc:
            logger.debug("Drive %s failed", current, exc_info=True)
            echo(console, "\n", (f"DRIVE: {current} - FAILED", "red"), f"\n  Reason: {exc}")
            summary = summary.with_drive_failure(DriveFailure(id=current, reason=str(exc)))
            continue
        summary = summary.with_drive(drive_summary)
    return summary
