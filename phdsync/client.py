from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from phdsync.auth import auth_headers
from phdsync.config import DEFAULT_PAGE_SIZE, normalize_base_url
from phdsync.errors import TransportError
from phdsync.models import DriveInfo, DriveNode, FileNode, FolderNode, RemoteDocument, RemoteOperation


logger = logging.getLogger(__name__)

T = TypeVar("T")

CREATE_DOCUMENT_SUFFIX = "_createDocument"
DOCUMENT_TYPE_NAMESPACE = "powerhouse"
DEFAULT_TIMEOUT_SECONDS = 60.0

OPERATION_FIELDS = "id type index timestampUtcMs hash skip inputText error"

DRIVES_QUERY = "{ drives }"

DRIVE_QUERY = """{
  drive { id name slug icon }
  driveDocument {
    state {
      name icon
      nodes {
        ... on DocumentDrive_FileNode {
          id name kind documentType parentFolder
        }
        ... on DocumentDrive_FolderNode {
          id name kind parentFolder
        }
      }
    }
  }
}"""

DOCUMENT_QUERY = f"""query ($id: String!, $first: Int, $skip: Int) {{
  document(id: $id) {{
    id name documentType revision
    createdAtUtcIso lastModifiedAtUtcIso
    operations(first: $first, skip: $skip) {{
      {OPERATION_FIELDS}
    }}
    stateJSON
  }}
}}"""

OPERATIONS_PAGE_QUERY = f"""query ($id: String!, $first: Int, $skip: Int) {{
  document(id: $id) {{
    operations(first: $first, skip: $skip) {{
      {OPERATION_FIELDS}
    }}
  }}
}}"""

STATE_QUERY = "query ($id: String!) { document(id: $id) { stateJSON } }"

MUTATIONS_QUERY = "{ __schema { mutationType { fields { name } } } }"

PUSH_UPDATES_MUTATION = """mutation ($strands: [InputStrandUpdate!]) {
  pushUpdates(strands: $strands) { revision status error }
}"""


def _iter_exception_chain(exc: BaseException):
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _is_timeout_error(exc: BaseException) -> bool:
    for current in _iter_exception_chain(exc):
        if isinstance(current, (httpx.TimeoutException, TimeoutError)):
            return True
    return False


async def _retry_on_timeout(
    func: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int = 3,
    base_delay_seconds: float = 1.0,
) -> T:
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as exc:
            if attempt >= max_attempts or not _is_timeout_error(exc):
                raise
            sleep_seconds = base_delay_seconds * (2 ** (attempt - 1))
            logger.warning("%s timed out (attempt %d/%d), retrying in %.1fs", operation, attempt, max_attempts, sleep_seconds)
            await asyncio.sleep(sleep_seconds)
            attempt += 1


def mutation_prefix_to_document_type(prefix: str) -> str:
    """`ResourceTemplate` -> `powerhouse/resource-template`."""
    kebab = re.sub(r"([a-z])([A-Z])", r"\1-\2", prefix).lower()
    return f"{DOCUMENT_TYPE_NAMESPACE}/{kebab}"


def _parse_operation(data: dict[str, Any]) -> RemoteOperation:
    skip = data.get("skip")
    return RemoteOperation(
        id=str(data["id"]),
        type=str(data["type"]),
        index=int(data["index"]),
        timestamp_utc_ms=str(data.get("timestampUtcMs") or ""),
        hash=str(data.get("hash") or ""),
        skip=None if skip is None else int(skip),
        input_text=data.get("inputText"),
        error=data.get("error"),
    )


def _parse_node(data: dict[str, Any]) -> DriveNode | None:
    kind = data.get("kind")
    if kind == "folder":
        return FolderNode(id=str(data["id"]), name=str(data.get("name") or ""), parent_folder=data.get("parentFolder"))
    if kind == "file" and "documentType" in data:
        return FileNode(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            document_type=str(data["documentType"]),
            parent_folder=data.get("parentFolder"),
        )
    return None


class SwitchboardClient:
    """GraphQL client for a switchboard's global and per-drive endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        request_delay: float = 0.3,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.page_size = page_size
        self.request_delay = request_delay
        self.request_count = 0
        self._http = httpx.AsyncClient(
            headers={"Content-Type": "application/json", **auth_headers(token)},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SwitchboardClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def graphql_endpoint(self) -> str:
        return f"{self.base_url}/graphql"

    def drive_endpoint(self, drive_id: str) -> str:
        return f"{self.base_url}/d/{drive_id}"

    async def pause(self, seconds: float | None = None) -> None:
        delay = self.request_delay if seconds is None else seconds
        if delay > 0:
            await asyncio.sleep(delay)

    async def query(
        self,
        endpoint: str,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """POST one GraphQL document and return its `data` object."""

        async def _call() -> httpx.Response:
            return await self._http.post(endpoint, json={"query": query, "variables": variables})

        self.request_count += 1
        logger.debug("POST %s variables=%s", endpoint, variables)
        response = await _retry_on_timeout(_call, operation=f"POST {endpoint}")

        if not response.is_success:
            body = response.text or ""
            detail = f"\n  Response: {body[:500]}" if body else ""
            raise TransportError(
                f"GraphQL request failed: {response.status_code} {response.reason_phrase} ({endpoint}){detail}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TransportError(f"Malformed JSON response from {endpoint}: {exc}") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"Unexpected response shape from {endpoint}")

        errors = payload.get("errors") or []
        if errors:
            messages = "\n".join(f"  - {error.get('message', error)}" for error in errors)
            raise TransportError(f"GraphQL errors:\n{messages}")

        data = payload.get("data")
        if not data:
            raise TransportError(f"No data returned from GraphQL query ({endpoint})")
        return data

    async def list_drives(self) -> list[str]:
        data = await self.query(self.graphql_endpoint, DRIVES_QUERY)
        return [str(drive_id) for drive_id in data.get("drives") or []]

    async def fetch_drive(self, drive_id: str) -> tuple[DriveInfo, list[DriveNode]]:
        data = await self.query(self.drive_endpoint(drive_id), DRIVE_QUERY)
        try:
            drive = data["drive"]
            raw_nodes = data["driveDocument"]["state"]["nodes"]
        except (KeyError, TypeError) as exc:
            raise TransportError(f"Malformed drive response for {drive_id}: missing {exc}") from exc

        info = DriveInfo(
            id=str(drive.get("id") or drive_id),
            name=str(drive.get("name") or ""),
            slug=str(drive.get("slug") or ""),
            icon=drive.get("icon"),
        )
        nodes = [node for node in (_parse_node(raw) for raw in raw_nodes or []) if node is not None]
        return info, nodes

    async def fetch_document(self, drive_id: str, document_id: str) -> RemoteDocument:
        """Header, state and the complete operation log, paging while pages come back full."""
        endpoint = self.drive_endpoint(drive_id)
        data = await self.query(
            endpoint,
            DOCUMENT_QUERY,
            {"id": document_id, "first": self.page_size, "skip": 0},
        )
        raw = data.get("document")
        if not raw:
            raise TransportError(f"Document {document_id} not found in drive {drive_id}")

        page = raw.get("operations") or []
        operations = [_parse_operation(op) for op in page]
        while len(page) == self.page_size:
            await self.pause()
            page_data = await self.query(
                endpoint,
                OPERATIONS_PAGE_QUERY,
                {"id": document_id, "first": self.page_size, "skip": len(operations)},
            )
            page = (page_data.get("document") or {}).get("operations") or []
            logger.debug("Fetched %d more operations for %s (total %d)", len(page), document_id, len(operations) + len(page))
            operations.extend(_parse_operation(op) for op in page)

        return RemoteDocument(
            id=str(raw.get("id") or document_id),
            name=str(raw.get("name") or ""),
            document_type=str(raw.get("documentType") or ""),
            revision=int(raw.get("revision") or 0),
            created_at_utc_iso=str(raw.get("createdAtUtcIso") or ""),
            last_modified_at_utc_iso=str(raw.get("lastModifiedAtUtcIso") or ""),
            operations=operations,
            state=raw.get("stateJSON"),
        )

    async def fetch_state(self, drive_id: str, document_id: str) -> Any:
        data = await self.query(self.drive_endpoint(drive_id), STATE_QUERY, {"id": document_id})
        document = data.get("document")
        if document is None:
            raise TransportError(f"Document {document_id} not found in drive {drive_id}")
        return document.get("stateJSON")

    async def discover_document_types(self) -> dict[str, str]:
        """Map document type -> `_createDocument` mutation prefix."""
        data = await self.query(self.graphql_endpoint, MUTATIONS_QUERY)
        try:
            mutation_fields = data["__schema"]["mutationType"]["fields"]
        except (KeyError, TypeError) as exc:
            raise TransportError(f"Malformed schema introspection response: missing {exc}") from exc

        catalog: dict[str, str] = {}
        for mutation in mutation_fields or []:
            name = str(mutation.get("name", ""))
            if not name.endswith(CREATE_DOCUMENT_SUFFIX):
                continue
            prefix = name[: -len(CREATE_DOCUMENT_SUFFIX)]
            catalog[mutation_prefix_to_document_type(prefix)] = prefix
        return catalog

    async def create_document(self, mutation_prefix: str, name: str, drive_id: str) -> str:
        mutation_name = f"{mutation_prefix}{CREATE_DOCUMENT_SUFFIX}"
        data = await self.query(
            self.graphql_endpoint,
            f"mutation ($name: String!, $driveId: String) {{ {mutation_name}(name: $name, driveId: $driveId) }}",
            {"name": name, "driveId": drive_id},
        )
        document_id = data.get(mutation_name)
        if not document_id:
            raise TransportError(f"{mutation_name} returned no document id")
        return str(document_id)

    async def push_updates(self, drive_id: str, strand: dict[str, Any]) -> dict[str, Any]:
        data = await self.query(self.drive_endpoint(drive_id), PUSH_UPDATES_MUTATION, {"strands": [strand]})
        updates = data.get("pushUpdates") or []
        if not updates:
            raise TransportError("pushUpdates returned no strand results")
        return updates[0]
