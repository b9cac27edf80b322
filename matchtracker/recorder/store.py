"""Persistence interfaces and implementations for finished session records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Callable, Protocol

from matchtracker.recorder.schema import SessionDocument

logger = logging.getLogger(__name__)

RECORD_PREFIX = "MatchSummary_"
RECORD_SUFFIX = ".json"
DELIVERED_MARKER = "-up"


def record_file_name(session_id: str, created_at: datetime) -> str:
    """Name records by creation time and id prefix so listings sort chronologically."""
    stamp = created_at.strftime("%Y%m%d_%H%M%S")
    return f"{RECORD_PREFIX}{stamp}_{session_id[:8]}{RECORD_SUFFIX}"


def is_delivered(path: Path) -> bool:
    return path.name.endswith(f"{DELIVERED_MARKER}{RECORD_SUFFIX}")


def delivered_path_for(path: Path) -> Path:
    if is_delivered(path):
        return path
    return path.with_name(f"{path.name[: -len(RECORD_SUFFIX)]}{DELIVERED_MARKER}{RECORD_SUFFIX}")


class RecordStore(Protocol):
    def save(self, document: dict[str, Any]) -> Path | None:
        """Persist a finished record once and return its identity, or None on failure."""

    def load_record(self, path: Path) -> dict[str, Any]:
        """Return the raw stored document."""

    def pending_records(self) -> list[Path]:
        """Return undelivered records, oldest first."""

    def delivered_records(self) -> list[Path]:
        """Return delivered records, oldest first."""

    def mark_delivered(self, path: Path) -> Path:
        """Mark a record delivered and return its new identity."""


def read_document(raw: dict[str, Any]) -> SessionDocument:
    """Parse a stored document, defaulting any absent fields."""
    return SessionDocument.model_validate(raw)


@dataclass
class FileRecordStore:
    storage_dir: Path
    clock: Callable[[], datetime] = datetime.now

    def save(self, document: dict[str, Any]) -> Path | None:
        session_id = str(document.get("sessionId", ""))
        target = self.storage_dir / record_file_name(session_id, self.clock())
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(document, indent=2, ensure_ascii=False)
            fd, tmp_name = tempfile.mkstemp(dir=self.storage_dir, prefix=".pending-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError):
            logger.exception("Could not save session %s", session_id)
            return None
        logger.info("Session record saved: %s", target)
        return target

    def load_record(self, path: Path) -> dict[str, Any]:
        return json.loads(path.read_text(encoding="utf-8"))

    def _records(self) -> list[Path]:
        if not self.storage_dir.is_dir():
            return []
        return sorted(
            path
            for path in self.storage_dir.glob(f"{RECORD_PREFIX}*{RECORD_SUFFIX}")
            if path.is_file()
        )

    def pending_records(self) -> list[Path]:
        return [path for path in self._records() if not is_delivered(path)]

    def delivered_records(self) -> list[Path]:
        return [path for path in self._records() if is_delivered(path)]

    def mark_delivered(self, path: Path) -> Path:
        target = delivered_path_for(path)
        if target != path:
            os.replace(path, target)
        return target


@dataclass
class InMemoryRecordStore:
    clock: Callable[[], datetime] = datetime.now

    def __post_init__(self) -> None:
        self._records: dict[Path, dict[str, Any]] = {}

    def save(self, document: dict[str, Any]) -> Path | None:
        path = Path(record_file_name(str(document.get("sessionId", "")), self.clock()))
        self._records[path] = json.loads(json.dumps(document))
        return path

    def load_record(self, path: Path) -> dict[str, Any]:
        try:
            return json.loads(json.dumps(self._records[path]))
        except KeyError:
            raise FileNotFoundError(str(path)) from None

    def pending_records(self) -> list[Path]:
        return sorted(path for path in self._records if not is_delivered(path))

    def delivered_records(self) -> list[Path]:
        return sorted(path for path in self._records if is_delivered(path))

    def mark_delivered(self, path: Path) -> Path:
        target = delivered_path_for(path)
        if target != path:
            self._records[target] = self._records.pop(path)
        return target


def create_store(storage_dir: Path | None) -> RecordStore:
    if storage_dir is not None:
        return FileRecordStore(storage_dir=storage_dir)
    return InMemoryRecordStore()
