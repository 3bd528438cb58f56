from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

DEFAULT_NOTIFY_FRESHNESS_MS = 1000


@dataclass(frozen=True)
class Settings:
    ping_interval_s: int = 30
    ping_miss_limit: int = 2
    max_msg_size: int = 1_048_576
    db_path: str | None = None
    notify_freshness_ms: int = DEFAULT_NOTIFY_FRESHNESS_MS
    log_level: str = "INFO"


def _parse_non_negative_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ValueError(f"{name} must be non-negative")
    return parsed


def _parse_log_level(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    level = raw.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"{name} must be a logging level name")
    return level


def load_settings_from_env(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env
    db_path = env.get("CHATSYNC_DB_PATH") or None
    return Settings(
        ping_interval_s=max(1, _parse_non_negative_int(env, "CHATSYNC_PING_INTERVAL_S", 30)),
        ping_miss_limit=_parse_non_negative_int(env, "CHATSYNC_PING_MISS_LIMIT", 2),
        max_msg_size=max(1024, _parse_non_negative_int(env, "CHATSYNC_MAX_MSG_SIZE", 1_048_576)),
        db_path=db_path,
        notify_freshness_ms=_parse_non_negative_int(
            env, "CHATSYNC_NOTIFY_FRESHNESS_MS", DEFAULT_NOTIFY_FRESHNESS_MS
        ),
        log_level=_parse_log_level(env, "CHATSYNC_LOG_LEVEL", "INFO"),
    )
