from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path


CONFIG_FILENAME = ".phdsync.json"
STATE_DB_FILENAME = ".phd_state.db"
CONTAINER_EXTENSION = ".phd"

DEFAULT_OUTPUT_DIR = "downloads"
DEFAULT_REQUEST_DELAY_MS = 300
DEFAULT_UPLOAD_DELAY_MS = 200
DEFAULT_PAGE_SIZE = 100
DEFAULT_PUSH_BATCH_SIZE = 50


@dataclass(slots=True)
class PhdSyncConfig:
    token: str = ""
    output_dir: str = DEFAULT_OUTPUT_DIR
    state_db: str = STATE_DB_FILENAME
    request_delay_ms: int = DEFAULT_REQUEST_DELAY_MS
    upload_delay_ms: int = DEFAULT_UPLOAD_DELAY_MS
    page_size: int = DEFAULT_PAGE_SIZE
    push_batch_size: int = DEFAULT_PUSH_BATCH_SIZE

    def __post_init__(self) -> None:
        for name in ("request_delay_ms", "upload_delay_ms"):
            if int(getattr(self, name)) < 0:
                raise ValueError(f"{name} must be >= 0")
        for name in ("page_size", "push_batch_size"):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be > 0")

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir).expanduser().resolve()

    @property
    def state_db_path(self) -> Path:
        return Path(self.state_db).expanduser().resolve()

    @property
    def request_delay(self) -> float:
        return self.request_delay_ms / 1000

    @property
    def upload_delay(self) -> float:
        return self.upload_delay_ms / 1000


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def load_config(base_dir: Path | None = None) -> PhdSyncConfig:
    """Read `.phdsync.json` if present; every key is optional."""
    path = config_path(base_dir)
    if not path.exists():
        return PhdSyncConfig()

    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Config file must hold a JSON object: {path}")

    known = {f.name: f for f in fields(PhdSyncConfig)}
    values = {}
    for key, value in data.items():
        if key not in known:
            continue
        values[key] = int(value) if known[key].type == "int" else str(value)
    return PhdSyncConfig(**values)


def save_config(config: PhdSyncConfig, base_dir: Path | None = None) -> Path:
    path = config_path(base_dir)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(asdict(config), fh, indent=2)
        fh.write("\n")
    return path


def normalize_base_url(raw: str) -> str:
    """Accept both `https://sb.xyz` and `https://sb.xyz/graphql/`."""
    value = (raw or "").strip()
    value = re.sub(r"/+$", "", value)
    value = re.sub(r"/graphql$", "", value, flags=re.IGNORECASE)
    return re.sub(r"/+$", "", value)
