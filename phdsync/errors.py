from __future__ import annotations

import httpx


class PhdSyncError(RuntimeError):
    """Base class for failures that abort a single document, file or drive."""


class TransportError(PhdSyncError):
    """Non-success response or malformed body from the switchboard."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PushRejectedError(TransportError):
    pass


class ArchiveFormatError(PhdSyncError):
    """Container bytes that cannot be decoded."""


class EntryMissingError(ArchiveFormatError):
    def __init__(self, entry_name: str, source: str) -> None:
        super().__init__(f"{entry_name} not found in {source}")
        self.entry_name = entry_name
        self.source = source


class MappingError(PhdSyncError):
    """Document type without a matching `_createDocument` mutation."""


# Failures that end one document, file or drive without ending the run.
UNIT_ERRORS = (PhdSyncError, httpx.HTTPError, OSError, ValueError)
