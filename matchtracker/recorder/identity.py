"""Identity helpers for sessions and the local installation."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

INSTALLATION_ID_FILE = "installation_id.txt"


def generate_session_id() -> str:
    """Generate an opaque, unique session identity."""
    return uuid.uuid4().hex


def load_or_create_installation_id(storage_dir: Path | None) -> str:
    """Return the persisted installation id, creating it on first use.

    Falls back to an ephemeral id when the storage directory is unusable.
    """
    if storage_dir is None:
        return str(uuid.uuid4())

    id_path = storage_dir / INSTALLATION_ID_FILE
    try:
        if id_path.exists():
            existing = id_path.read_text(encoding="utf-8").strip()
            if existing:
                return existing
        storage_dir.mkdir(parents=True, exist_ok=True)
        installation_id = str(uuid.uuid4())
        id_path.write_text(installation_id, encoding="utf-8")
        logger.info("Generated new installation id %s", installation_id)
        return installation_id
    except OSError:
        logger.exception("Could not persist installation id under %s", storage_dir)
        return str(uuid.uuid4())
