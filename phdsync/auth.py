from __future__ import annotations

import os
from pathlib import Path


TOKEN_ENV_NAMES = ("PHD_TOKEN", "SWITCHBOARD_TOKEN")
TOKEN_FILE_PARTS = ("phdsync", "token")


def _token_file_candidates() -> list[Path]:
    config_roots: list[Path] = []
    xdg_config_home = os.getenv("XDG_CONFIG_HOME")
    if xdg_config_home:
        config_roots.append(Path(xdg_config_home))
    config_roots.append(Path.home() / ".config")
    return [root.joinpath(*TOKEN_FILE_PARTS) for root in config_roots]


def _read_token_file(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8").strip() or None
    except (FileNotFoundError, IsADirectoryError, PermissionError):
        return None


def resolve_token(config_token: str | None = None) -> str | None:
    """Bearer token from the environment, then the config file, then the token file."""
    for name in TOKEN_ENV_NAMES:
        value = os.getenv(name, "").strip()
        if value:
            return value
    if config_token and config_token.strip():
        return config_token.strip()
    for candidate in _token_file_candidates():
        token = _read_token_file(candidate)
        if token:
            return token
    return None


def auth_headers(token: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}
