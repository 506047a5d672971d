from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable

from phdsync.config import CONTAINER_EXTENSION


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def expand_container_paths(paths: Iterable[str | Path]) -> list[Path]:
    """Expand directories into the `.phd` files beneath them, keeping argument order.

    Plain file arguments are kept as given (even without the extension) so a
    missing file surfaces as a per-file failure rather than vanishing.
    """
    expanded: list[Path] = []
    seen: set[Path] = set()
    for raw in paths:
        path = Path(raw).expanduser()
        if path.is_dir():
            candidates = sorted(
                candidate
                for candidate in path.rglob(f"*{CONTAINER_EXTENSION}")
                if candidate.is_file()
            )
        else:
            candidates = [path]
        for candidate in candidates:
            key = candidate.resolve()
            if key in seen:
                continue
            seen.add(key)
            expanded.append(candidate)
    return expanded
