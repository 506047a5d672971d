from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


Scope = Literal["global", "local"]
SCOPES: tuple[Scope, ...] = ("global", "local")


@dataclass(slots=True)
class DriveInfo:
    id: str
    name: str
    slug: str
    icon: str | None = None


@dataclass(slots=True)
class FolderNode:
    id: str
    name: str
    parent_folder: str | None = None
    kind: str = "folder"


@dataclass(slots=True)
class FileNode:
    id: str
    name: str
    document_type: str
    parent_folder: str | None = None
    kind: str = "file"


DriveNode = FileNode | FolderNode


@dataclass(slots=True)
class RemoteOperation:
    """One operation as returned by the switchboard document query."""

    id: str
    type: str
    index: int
    timestamp_utc_ms: str
    hash: str
    skip: int | None = None
    input_text: str | None = None
    error: str | None = None


@dataclass(slots=True)
class RemoteDocument:
    id: str
    name: str
    document_type: str
    revision: int
    created_at_utc_iso: str
    last_modified_at_utc_iso: str
    operations: list[RemoteOperation]
    state: Any = None

    @property
    def state_is_empty(self) -> bool:
        return self.state is None or (isinstance(self.state, dict) and not self.state)


@dataclass(slots=True)
class DocumentHeader:
    id: str
    document_type: str
    name: str
    created_at_utc_iso: str = ""
    last_modified_at_utc_iso: str = ""
    branch: str = "main"
    revision: dict[str, int] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "DocumentHeader":
        revision = data.get("revision") or {}
        return cls(
            id=str(data.get("id", "")),
            document_type=str(data.get("documentType", "")),
            name=str(data.get("name") or ""),
            created_at_utc_iso=str(data.get("createdAtUtcIso") or ""),
            last_modified_at_utc_iso=str(data.get("lastModifiedAtUtcIso") or ""),
            branch=str(data.get("branch") or "main"),
            revision={str(k): int(v) for k, v in revision.items()} if isinstance(revision, dict) else {},
            meta=dict(data.get("meta") or {}),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sig": {"publicKey": {}, "nonce": ""},
            "documentType": self.document_type,
            "createdAtUtcIso": self.created_at_utc_iso,
            "slug": self.id,
            "name": self.name,
            "branch": self.branch,
            "revision": dict(self.revision),
            "lastModifiedAtUtcIso": self.last_modified_at_utc_iso,
            "meta": dict(self.meta),
        }


@dataclass(slots=True)
class ChainedOperation:
    """Operation in the archived shape: log bookkeeping plus the original action."""

    id: str
    index: int
    skip: int
    hash: str
    timestamp_utc_ms: str
    action_id: str
    action_type: str
    input: Any
    scope: str
    error: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any], scope: str) -> "ChainedOperation":
        action = data.get("action") or {}
        return cls(
            id=str(data.get("id", "")),
            index=int(data.get("index", 0)),
            skip=int(data.get("skip") or 0),
            hash=str(data.get("hash", "")),
            timestamp_utc_ms=str(data.get("timestampUtcMs", "")),
            action_id=str(action.get("id") or data.get("id", "")),
            action_type=str(action.get("type", "")),
            input=action.get("input"),
            scope=str(action.get("scope") or scope),
            error=data.get("error"),
        )

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "index": self.index,
            "skip": self.skip,
            "hash": self.hash,
            "timestampUtcMs": self.timestamp_utc_ms,
        }
        if self.error is not None:
            payload["error"] = self.error
        payload["action"] = {
            "id": self.action_id,
            "type": self.action_type,
            "timestampUtcMs": self.timestamp_utc_ms,
            "input": self.input,
            "scope": self.scope,
        }
        return payload


@dataclass(slots=True)
class LedgerDownload:
    document_id: str
    drive_id: str
    path: str
    document_type: str
    revision: int
    operations: int
    checksum: int
    verified: bool
    recorded_at: int = 0


@dataclass(slots=True)
class LedgerUpload:
    file: str
    sha256: str
    drive_id: str
    document_id: str
    document_type: str
    operations_pushed: int
    state_match: bool
    recorded_at: int = 0
