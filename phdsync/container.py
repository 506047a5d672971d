"""`.phd` containers: four JSON entries packed with the archive codec."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from phdsync.archive import DEFLATED, read_entry, write_archive
from phdsync.checksum import crc32
from phdsync.compare import StateComparison, compare_states
from phdsync.errors import ArchiveFormatError, EntryMissingError
from phdsync.models import SCOPES, ChainedOperation, DocumentHeader, RemoteDocument, RemoteOperation


HEADER_ENTRY = "header.json"
INITIAL_STATE_ENTRY = "state.json"
CURRENT_STATE_ENTRY = "current-state.json"
OPERATIONS_ENTRY = "operations.json"

ENTRY_NAMES = {
    "header": HEADER_ENTRY,
    "initial-state": INITIAL_STATE_ENTRY,
    "current-state": CURRENT_STATE_ENTRY,
    "operations": OPERATIONS_ENTRY,
}


def state_envelope(global_state: Any = None) -> dict[str, Any]:
    return {
        "auth": {},
        "document": {
            "version": 0,
            "hash": {"algorithm": "sha1", "encoding": "base64"},
        },
        "global": {} if global_state is None else global_state,
        "local": {},
    }


def _decode_input(input_text: str | None) -> Any:
    if not input_text:
        return {}
    try:
        return json.loads(input_text)
    except json.JSONDecodeError:
        return input_text


def chain_operation(operation: RemoteOperation, scope: str) -> ChainedOperation:
    return ChainedOperation(
        id=operation.id,
        index=operation.index,
        skip=operation.skip or 0,
        hash=operation.hash,
        timestamp_utc_ms=operation.timestamp_utc_ms,
        action_id=operation.id,
        action_type=operation.type,
        input=_decode_input(operation.input_text),
        scope=scope,
        error=operation.error,
    )


def document_header(document: RemoteDocument) -> DocumentHeader:
    return DocumentHeader(
        id=document.id,
        document_type=document.document_type,
        name=document.name,
        created_at_utc_iso=document.created_at_utc_iso,
        last_modified_at_utc_iso=document.last_modified_at_utc_iso,
        revision={"global": document.revision},
    )


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def container_files(document: RemoteDocument) -> dict[str, str]:
    """Entry name -> JSON text, in archive order."""
    operations = {"global": [chain_operation(op, "global").to_json() for op in document.operations]}
    return {
        HEADER_ENTRY: _dump(document_header(document).to_json()),
        INITIAL_STATE_ENTRY: _dump(state_envelope()),
        CURRENT_STATE_ENTRY: _dump(state_envelope(document.state)),
        OPERATIONS_ENTRY: _dump(operations),
    }


def create_container(document: RemoteDocument, *, method: int = DEFLATED) -> bytes:
    return write_archive(container_files(document), method=method)


@dataclass(slots=True)
class WrittenContainer:
    path: Path
    size: int
    checksum: int
    operations: int


def write_container(path: Path, document: RemoteDocument) -> WrittenContainer:
    data = create_container(document)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return WrittenContainer(path=path, size=len(data), checksum=crc32(data), operations=len(document.operations))


def read_json_entry(buffer: bytes, entry_name: str, source: str, *, required: bool = True) -> Any:
    raw = read_entry(buffer, entry_name)
    if raw is None:
        if required:
            raise EntryMissingError(entry_name, source)
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ArchiveFormatError(f"Failed to parse {entry_name} in {source}: {exc}") from exc


@dataclass(slots=True)
class VerifyResult:
    valid: bool
    reason: str | None = None
    comparison: StateComparison | None = None


def verify_container(path: Path, expected_state: Any) -> VerifyResult:
    """Re-open a written container and compare its current state with `expected_state`."""
    buffer = path.read_bytes()
    try:
        saved = read_json_entry(buffer, CURRENT_STATE_ENTRY, str(path))
    except EntryMissingError:
        return VerifyResult(valid=False, reason=f"{CURRENT_STATE_ENTRY} not found in .phd")
    except ArchiveFormatError as exc:
        return VerifyResult(valid=False, reason=str(exc))

    saved_global = saved.get("global") if isinstance(saved, dict) else None
    comparison = compare_states(expected_state or {}, saved_global or {})
    if comparison.matches:
        return VerifyResult(valid=True, comparison=comparison)
    return VerifyResult(
        valid=False,
        reason=f"State mismatch in {comparison.total_differences} top-level key(s)",
        comparison=comparison,
    )


@dataclass(slots=True)
class LoadedContainer:
    source: Path
    header: DocumentHeader
    operations: dict[str, list[ChainedOperation]] = field(default_factory=dict)
    current_state: Any = None

    @property
    def operation_count(self) -> int:
        return sum(len(ops) for ops in self.operations.values())

    def scope_count(self, scope: str) -> int:
        return len(self.operations.get(scope, []))


def load_container(path: Path) -> LoadedContainer:
    buffer = path.read_bytes()
    source = str(path)
    header_data = read_json_entry(buffer, HEADER_ENTRY, source)
    operations_data = read_json_entry(buffer, OPERATIONS_ENTRY, source)
    current = read_json_entry(buffer, CURRENT_STATE_ENTRY, source)
    if not isinstance(header_data, dict) or not isinstance(operations_data, dict):
        raise ArchiveFormatError(f"Unexpected header/operations layout in {source}")

    operations: dict[str, list[ChainedOperation]] = {}
    for scope in SCOPES:
        raw_ops = operations_data.get(scope) or []
        operations[scope] = [ChainedOperation.from_json(op, scope) for op in raw_ops]

    return LoadedContainer(
        source=path,
        header=DocumentHeader.from_json(header_data),
        operations=operations,
        current_state=(current.get("global") if isinstance(current, dict) else None) or {},
    )
