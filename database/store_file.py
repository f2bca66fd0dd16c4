"""
FileQueueStore — JSON file-backed store with persistence across restarts.

Data layout:
  {path}            e.g. ./queue.json
    {"messages": [...], "pairings": {...}}

Features:
  - Survives process restarts
  - No external dependencies (no database server)
  - Every write goes to a temp file in the same directory, is fsynced, then
    renamed over the target, so a concurrent load() sees either the old or
    the new image, never a partial one
  - A missing or corrupt file loads as the empty state
  - Single-process only (no cross-process locking)
"""
from __future__ import annotations

import asyncio
import json
import os
import structlog
import tempfile
from pathlib import Path

from pydantic import ValidationError as SchemaError

from core.errors import PersistenceError
from database.store_base import BaseQueueStore
from models.schemas import QueueState

logger = structlog.get_logger()


class FileQueueStore(BaseQueueStore):
    """
    Queue store persisted as a single JSON document.

    On init: creates the file with an empty state if it does not exist.
    On every mutation: rewrites the whole document atomically.
    """

    def __init__(self, path: str = "./queue.json"):
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._write(QueueState())
        logger.info("file_store_initialized", path=str(self._path))

    @property
    def path(self) -> Path:
        return self._path

    # ── Load / Save ───────────────────────────────────────

    async def load(self) -> QueueState:
        return await asyncio.to_thread(self._read)

    async def save(self, state: QueueState) -> None:
        await asyncio.to_thread(self._write, state)

    def _read(self) -> QueueState:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return QueueState.model_validate(raw)
        except FileNotFoundError:
            logger.warning("file_store_missing", path=str(self._path))
        except (OSError, json.JSONDecodeError, SchemaError) as e:
            logger.warning("file_store_load_error", path=str(self._path), error=str(e))
        return QueueState()

    def _write(self, state: QueueState) -> None:
        data = state.to_json()
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)  # atomic on POSIX
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            logger.error("file_store_write_failed", path=str(self._path), error=str(e))
            raise PersistenceError(f"Failed to write queue file: {e}", str(self._path)) from e
