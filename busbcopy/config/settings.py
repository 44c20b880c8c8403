"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "BUSBCOPY_SETTINGS_PATH",
        Path.home() / ".config" / "busbcopy" / "settings.json",
    )
)

# Any device larger than this (in MiB) is never considered a copy target.
DEFAULT_SAFETY_CUTOFF_MIB = 10240
DEFAULT_DD_MAX_RETRY = 3
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_BY_ID_DIR = "/dev/disk/by-id"
DEFAULT_DD_BLOCK_SIZE = "4M"

DEFAULT_SETTINGS: dict[str, Any] = {
    "safety_cutoff_mib": DEFAULT_SAFETY_CUTOFF_MIB,
    "dd_max_retry": DEFAULT_DD_MAX_RETRY,
    "poll_interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
    "by_id_dir": DEFAULT_BY_ID_DIR,
    "dd_block_size": DEFAULT_DD_BLOCK_SIZE,
    "log_dir": None,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_float(key: str, default: float = 0.0) -> float:
    try:
        return float(get_setting(key, default))
    except (TypeError, ValueError):
        return default


load_settings()
