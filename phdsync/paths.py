from __future__ import annotations

import re
from typing import Iterable

from phdsync.models import DriveNode, FolderNode


PATH_SEPARATOR = "/"
UNNAMED = "unnamed"
_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize(name: str | None) -> str:
    """Make a node name safe to use as a single path component."""
    cleaned = _ILLEGAL_CHARS.sub("_", name or "").strip()
    return cleaned or UNNAMED


class FolderPathResolver:
    """Resolve slash-delimited folder paths from a flat drive node listing.

    Results are memoized per folder id. A parent id that is unknown, or that
    is already being resolved higher up the same chain (a cycle), contributes
    an empty prefix.
    """

    def __init__(self, nodes: Iterable[DriveNode]) -> None:
        self._folders: dict[str, FolderNode] = {
            node.id: node for node in nodes if isinstance(node, FolderNode)
        }
        self._cache: dict[str, str] = {}

    @property
    def folders(self) -> list[FolderNode]:
        return list(self._folders.values())

    def resolve(self, folder_id: str) -> str:
        cached = self._cache.get(folder_id)
        if cached is not None:
            return cached
        if folder_id not in self._folders:
            return ""

        # Walk up to the first cached or root ancestor, then fill the cache
        # downwards so deep trees never recurse.
        chain: list[FolderNode] = []
        in_progress: set[str] = set()
        current: str | None = folder_id
        prefix = ""
        while current is not None:
            if current in self._cache:
                prefix = self._cache[current]
                break
            folder = self._folders.get(current)
            if folder is None or current in in_progress:
                break
            in_progress.add(current)
            chain.append(folder)
            current = folder.parent_folder

        for folder in reversed(chain):
            name = sanitize(folder.name)
            prefix = f"{prefix}{PATH_SEPARATOR}{name}" if prefix else name
            self._cache[folder.id] = prefix
        return self._cache[folder_id]

    def resolve_all(self) -> dict[str, str]:
        for folder_id in self._folders:
            self.resolve(folder_id)
        return dict(self._cache)

    def node_directory(self, node: DriveNode) -> str:
        """Directory (relative to the drive root) that holds `node`."""
        if not node.parent_folder:
            return ""
        return self.resolve(node.parent_folder)
