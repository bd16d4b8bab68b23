from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Number of decoded values kept in memory per store (0 disables)
    cache_size: int

    # Debug
    log_lock_events: bool

    # Codec
    json_indent: int


def get_settings(env_file: str | None = None) -> Settings:
    if env_file is not None:
        load_dotenv(env_file)

    cache_size = max(0, _env_int("PERSISTENT_MAP_CACHE_SIZE", 128))
    log_lock_events = _env_bool("PERSISTENT_MAP_LOG_LOCK_EVENTS", False)
    json_indent = _env_int("PERSISTENT_MAP_JSON_INDENT", 2)

    return Settings(
        cache_size=cache_size,
        log_lock_events=log_lock_events,
        json_indent=json_indent,
    )
