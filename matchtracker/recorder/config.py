"""Configuration helpers for recorder runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_NEUTRAL_KILLERS = (
    "juggernaut",
    "glitch",
    "werewolf",
    "pestilence",
    "arsonist",
    "soulcollector",
    "vampire",
    "inquisitor",
)


@dataclass(frozen=True)
class RecorderSettings:
    storage_dir: Path
    collector_url: str
    host: str
    port: int
    request_timeout: float
    upload_delay: float
    retry_delay: float
    max_attempts: int
    backlog_limit: int
    backlog_delay: float
    proximity_threshold: float
    neutral_killer_roles: tuple[str, ...]
    extension: str | None
    log_level: str


def _split_roles(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().lower().replace(" ", "") for part in raw.split(",") if part.strip())


def default_storage_dir() -> Path:
    return Path.home() / "Documents" / "MatchSummaries"


def load_settings() -> RecorderSettings:
    storage_raw = os.getenv("MATCHTRACKER_STORAGE_DIR")
    roles_raw = os.getenv("MATCHTRACKER_NEUTRAL_KILLERS")
    return RecorderSettings(
        storage_dir=Path(storage_raw) if storage_raw else default_storage_dir(),
        collector_url=os.getenv("MATCHTRACKER_COLLECTOR_URL", "http://127.0.0.1:8080/api/stats"),
        host=os.getenv("MATCHTRACKER_HOST", "127.0.0.1"),
        port=int(os.getenv("MATCHTRACKER_PORT", "8765")),
        request_timeout=float(os.getenv("MATCHTRACKER_REQUEST_TIMEOUT", "15")),
        upload_delay=float(os.getenv("MATCHTRACKER_UPLOAD_DELAY", "1")),
        retry_delay=float(os.getenv("MATCHTRACKER_RETRY_DELAY", "3")),
        max_attempts=int(os.getenv("MATCHTRACKER_MAX_ATTEMPTS", "3")),
        backlog_limit=int(os.getenv("MATCHTRACKER_BACKLOG_LIMIT", "50")),
        backlog_delay=float(os.getenv("MATCHTRACKER_BACKLOG_DELAY", "10")),
        proximity_threshold=float(os.getenv("MATCHTRACKER_PROXIMITY_THRESHOLD", "5.0")),
        neutral_killer_roles=_split_roles(roles_raw) if roles_raw is not None else DEFAULT_NEUTRAL_KILLERS,
        extension=os.getenv("MATCHTRACKER_EXTENSION") or None,
        log_level=os.getenv("MATCHTRACKER_LOG_LEVEL", "INFO").upper(),
    )
