"""
Abstract Queue Store — Interface for all storage backends.

Implementations:
  - FileQueueStore     (one JSON file on disk, durable, atomic replace)
  - InMemoryQueueStore (dict-based, single-process, no persistence)

The store is the single source of truth. Nothing outside it keeps a record
across an operation boundary: every read re-fetches the full image and every
write replaces it. The mutation helpers below are all load-mutate-save and are
serialised by one in-process lock, so the store has exactly one writer at a
time inside the process. No cross-process locking is attempted.
"""
from __future__ import annotations

import asyncio
import structlog
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from models.schemas import MessageRecord, PairingRecord, QueueState, parse_iso

logger = structlog.get_logger()

MessageMutator = Callable[[MessageRecord], Optional[MessageRecord]]


class BaseQueueStore(ABC):
    """Interface that all queue store backends must implement."""

    def __init__(self):
        self._write_lock = asyncio.Lock()

    # ── Whole-image I/O ───────────────────────────────────────

    @abstractmethod
    async def load(self) -> QueueState:
        """Return the full persisted state; empty state if absent or unreadable."""
        ...

    @abstractmethod
    async def save(self, state: QueueState) -> None:
        """Atomically replace the full persisted image. Raises PersistenceError."""
        ...

    # ── Messages ──────────────────────────────────────────────

    async def append_message(self, record: MessageRecord) -> MessageRecord:
        async with self._write_lock:
            state = await self.load()
            state.messages.append(record)
            await self.save(state)
        return record

    async def update_message(self, message_id: str, mutator: MessageMutator) -> Optional[MessageRecord]:
        """
        Apply `mutator` to the record with `message_id` and persist.

        Returns the updated record, or None when the id is no longer in the
        store (e.g. the queue was cleared concurrently); nothing is written then.
        """
        async with self._write_lock:
            state = await self.load()
            for i, record in enumerate(state.messages):
                if record.id == message_id:
                    updated = mutator(record) or record
                    state.messages[i] = updated
                    await self.save(state)
                    return updated
        logger.debug("store_update_missing", id=message_id)
        return None

    async def get_message(self, message_id: str) -> Optional[MessageRecord]:
        state = await self.load()
        return state.find(message_id)

    async def list_messages(self) -> list[MessageRecord]:
        state = await self.load()
        return state.messages

    async def clear_messages(self) -> int:
        async with self._write_lock:
            state = await self.load()
            count = len(state.messages)
            state.messages = []
            await self.save(state)
        logger.info("store_messages_cleared", count=count)
        return count

    # ── Pairings ──────────────────────────────────────────────

    async def add_pairing(self, code: str) -> PairingRecord:
        async with self._write_lock:
            state = await self.load()
            pairing = PairingRecord()
            state.pairings[code] = pairing
            await self.save(state)
        return pairing

    async def has_pairing(self, code: str) -> bool:
        state = await self.load()
        return code in state.pairings

    async def get_pairing(self, code: str) -> Optional[PairingRecord]:
        state = await self.load()
        return state.pairings.get(code)

    async def prune_pairings(self, max_age_s: float = 0, max_count: int = 0) -> int:
        """
        Drop pairings older than `max_age_s` and then the oldest beyond
        `max_count`. A bound of 0 disables it. Returns how many were removed.
        """
        if max_age_s <= 0 and max_count <= 0:
            return 0
        async with self._write_lock:
            state = await self.load()
            before = len(state.pairings)
            items = sorted(state.pairings.items(), key=lambda kv: kv[1].created_at)
            if max_age_s > 0:
                cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_s)
                items = [(c, p) for c, p in items if parse_iso(p.created_at) >= cutoff]
            if max_count > 0 and len(items) > max_count:
                items = items[-max_count:]
            removed = before - len(items)
            if removed:
                state.pairings = dict(items)
                await self.save(state)
        if removed:
            logger.info("pairings_pruned", removed=removed, remaining=before - removed)
        return removed

    async def close(self) -> None:
        pass
