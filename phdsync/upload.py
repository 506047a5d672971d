from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterator, Sequence

from rich.console import Console

from phdsync.client import SwitchboardClient
from phdsync.compare import StateComparison, compare_states
from phdsync.config import CONTAINER_EXTENSION, DEFAULT_PUSH_BATCH_SIZE
from phdsync.container import load_container
from phdsync.errors import UNIT_ERRORS, MappingError, PushRejectedError
from phdsync.models import SCOPES, ChainedOperation, LedgerUpload
from phdsync.progress_ui import RunProgressUI, echo
from phdsync.scanner import expand_container_paths, sha256_file
from phdsync.state_db import LEDGER_ERRORS, record_upload


logger = logging.getLogger(__name__)

PUSH_SUCCESS = "SUCCESS"
DEFAULT_BRANCH = "main"
UNTITLED = "Untitled"


@dataclass(slots=True, frozen=True)
class UploadResult:
    file: str
    document_type: str
    document_id: str
    name: str
    operations_pushed: int
    state_match: bool
    comparison: StateComparison | None = None


@dataclass(slots=True, frozen=True)
class UploadFailure:
    file: str
    reason: str


@dataclass(slots=True, frozen=True)
class UploadSummary:
    drive_id: str
    document_types: tuple[str, ...] = ()
    results: tuple[UploadResult, ...] = ()
    failures: tuple[UploadFailure, ...] = ()

    def with_result(self, result: UploadResult) -> "UploadSummary":
        return replace(self, results=(*self.results, result))

    def with_failure(self, failure: UploadFailure) -> "UploadSummary":
        return replace(self, failures=(*self.failures, failure))

    @property
    def failed(self) -> bool:
        return bool(self.failures)

    @property
    def mismatches(self) -> list[UploadResult]:
        return [result for result in self.results if not result.state_match]


def iter_batches(operations: Sequence[ChainedOperation], size: int) -> Iterator[list[ChainedOperation]]:
    if size <= 0:
        raise ValueError("batch size must be > 0")
    for start in range(0, len(operations), size):
        yield list(operations[start : start + size])


def operation_input(operation: ChainedOperation) -> dict[str, Any]:
    """Shape one archived operation as an `InputOperationUpdate`."""
    return {
        "index": operation.index,
        "skip": operation.skip,
        "type": operation.action_type,
        "id": operation.id,
        "actionId": operation.action_id or operation.id,
        "input": json.dumps(operation.input, ensure_ascii=False),
        "hash": operation.hash,
        "timestampUtcMs": operation.timestamp_utc_ms,
        "error": operation.error,
    }


async def push_operations(
    client: SwitchboardClient,
    drive_id: str,
    document_id: str,
    document_type: str,
    operations: dict[str, list[ChainedOperation]],
    *,
    batch_size: int = DEFAULT_PUSH_BATCH_SIZE,
    delay: float | None = None,
    console: Console | None = None,
) -> int:
    """Replay every scope in order; stop at the first batch the switchboard rejects."""
    total_pushed = 0
    for scope in SCOPES:
        scope_ops = operations.get(scope) or []
        if not scope_ops:
            continue

        echo(console, f"    Pushing {len(scope_ops)} {scope} operations...")
        total_batches = -(-len(scope_ops) // batch_size)
        with RunProgressUI(console) as ui:
            handle = ui.add_task(action="PUSH", label=scope, total=len(scope_ops))
            for batch_number, batch in enumerate(iter_batches(scope_ops, batch_size), start=1):
                if batch_number > 1:
                    await client.pause(delay)
                strand = {
                    "driveId": drive_id,
                    "documentId": document_id,
                    "documentType": document_type,
                    "scope": scope,
                    "branch": DEFAULT_BRANCH,
                    "operations": [operation_input(op) for op in batch],
                }
                update = await client.push_updates(drive_id, strand)
                if update.get("status") != PUSH_SUCCESS:
                    ui.fail(handle)
                    raise PushRejectedError(
                        f"pushUpdates failed at batch {batch_number}: "
                        f"status={update.get('status')}, error={update.get('error')}"
                    )
                total_pushed += len(batch)
                ui.advance(handle, len(batch))
                echo(
                    console,
                    f"      [{batch_number}/{total_batches}] {len(batch)} ops -> revision {update.get('revision')}",
                )
            ui.complete(handle)
    return total_pushed


async def verify_remote_state(
    client: SwitchboardClient,
    drive_id: str,
    document_id: str,
    expected: Any,
) -> StateComparison:
    actual = await client.fetch_state(drive_id, document_id)
    return compare_states(expected, actual)


def _document_name(header_name: str, path: Path) -> str:
    if header_name:
        return header_name
    stem = path.name[: -len(CONTAINER_EXTENSION)] if path.name.endswith(CONTAINER_EXTENSION) else path.name
    return stem or UNTITLED


async def upload_container(
    client: SwitchboardClient,
    drive_id: str,
    path: Path,
    catalog: dict[str, str],
    *,
    batch_size: int = DEFAULT_PUSH_BATCH_SIZE,
    delay: float | None = None,
    console: Console | None = None,
) -> UploadResult:
    """Create a new remote document from `path` and replay its operations into it."""
    container = load_container(path)
    header = container.header
    document_type = header.document_type
    name = _document_name(header.name, path)

    echo(console, f"\n{'-' * 60}")
    echo(console, f"  File:     {path}")
    echo(console, f"  Type:     {document_type}")
    echo(console, f"  Name:     {name}")
    echo(console, f"  Ops:      {container.scope_count('global')} global, {container.scope_count('local')} local")

    mutation_prefix = catalog.get(document_type)
    if not mutation_prefix:
        raise MappingError(
            f'No _createDocument mutation found for type "{document_type}". '
            f"Available types: {', '.join(sorted(catalog))}"
        )

    echo(console, f"  Creating {mutation_prefix} document...")
    document_id = await client.create_document(mutation_prefix, name, drive_id)
    echo(console, f"  Created:  {document_id}")

    pushed = 0
    if container.operation_count > 0:
        await client.pause(delay)
        pushed = await push_operations(
            client,
            drive_id,
            document_id,
            document_type,
            container.operations,
            batch_size=batch_size,
            delay=delay,
            console=console,
        )
        echo(console, f"  Pushed:   {pushed} operations")
    else:
        echo(console, "  No operations to push")

    await client.pause(delay)
    echo(console, "  Verifying state...")
    comparison = await verify_remote_state(client, drive_id, document_id, container.current_state)
    if comparison.matches:
        echo(console, "  State:    ", ("EXACT MATCH", "green"))
    else:
        for line in comparison.describe():
            echo(console, f"      {line}")
        echo(console, "  State:    ", ("MISMATCH (may be expected with schema changes)", "yellow"))

    return UploadResult(
        file=str(path),
        document_type=document_type,
        document_id=document_id,
        name=name,
        operations_pushed=pushed,
        state_match=comparison.matches,
        comparison=comparison,
    )


async def upload_files(
    client: SwitchboardClient,
    drive_id: str,
    paths: Sequence[str | Path],
    *,
    batch_size: int = DEFAULT_PUSH_BATCH_SIZE,
    delay: float | None = None,
    console: Console | None = None,
    state_db_path: Path | None = None,
) -> UploadSummary:
    """Upload each container independently; one failing file never stops the rest."""
    files = expand_container_paths(paths)
    echo(console, f"Files:       {len(files)}")
    echo(console, "\nDiscovering document types...")
    catalog = await client.discover_document_types()
    echo(console, f"  Found {len(catalog)} types: {', '.join(catalog)}")

    summary = UploadSummary(drive_id=drive_id, document_types=tuple(catalog))
    for path in files:
        try:
            result = await upload_container(
                client,
                drive_id,
                path,
                catalog,
                batch_size=batch_size,
                delay=delay,
                console=console,
            )
        except UNIT_ERRORS as exc:
            logger.debug("Upload of %s failed", path, exc_info=True)
            echo(console, "\n  ", (f"FAILED: {path}", "red"), f"\n  Reason: {exc}")
            summary = summary.with_failure(UploadFailure(file=str(path), reason=str(exc)))
            continue

        if state_db_path is not None:
            try:
                await record_upload(
                    state_db_path,
                    LedgerUpload(
                        file=str(path.resolve()),
                        sha256=sha256_file(path),
                        drive_id=drive_id,
                        document_id=result.document_id,
                        document_type=result.document_type,
                        operations_pushed=result.operations_pushed,
                        state_match=result.state_match,
                    ),
                )
            except LEDGER_ERRORS as exc:
                logger.warning("Could not record upload of %s in %s: %s", path, state_db_path, exc)
                echo(console, "  ", (f"Ledger not updated: {exc}", "yellow"))
        summary = summary.with_result(result)
    return summary
