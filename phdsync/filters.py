from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import PurePosixPath
from typing import Iterable


def _clean(pattern: str) -> str:
    cleaned = pattern.strip().replace("\\", "/")
    if cleaned.startswith("./"):
        cleaned = cleaned[2:]
    if cleaned.endswith("/"):
        return cleaned
    return cleaned.strip("/")


def _matches_document(pattern: str, relative_path: str, document_type: str) -> bool:
    # Document types contain a slash too, so try them verbatim first.
    if fnmatchcase(document_type, pattern):
        return True
    if pattern.endswith("/"):
        return relative_path.startswith(pattern)
    candidate = PurePosixPath(relative_path)
    return candidate.match(pattern) or fnmatchcase(relative_path, pattern)


@dataclass(slots=True)
class DocumentFilter:
    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()

    def _any(self, patterns: tuple[str, ...], relative_path: str, document_type: str) -> bool:
        return any(_matches_document(pattern, relative_path, document_type) for pattern in patterns)

    def matches(self, path: str, document_type: str = "") -> bool:
        """`path` is the drive-relative `folder/name` of the document."""
        if self.include_patterns and not self._any(self.include_patterns, path, document_type):
            return False
        return not self._any(self.exclude_patterns, path, document_type)


def _clean_all(patterns: Iterable[str] | None) -> tuple[str, ...]:
    return tuple(cleaned for cleaned in (_clean(p) for p in patterns or ()) if cleaned)


def build_document_filter(
    include_patterns: Iterable[str] | None = None,
    exclude_patterns: Iterable[str] | None = None,
) -> DocumentFilter:
    return DocumentFilter(
        include_patterns=_clean_all(include_patterns),
        exclude_patterns=_clean_all(exclude_patterns),
    )
