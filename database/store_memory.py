"""
InMemoryQueueStore — dict-backed store for development and tests.

Keeps the state as its JSON image and rebuilds models on every load, so a
caller never holds a live reference into the store.
"""
from __future__ import annotations

import structlog

from database.store_base import BaseQueueStore
from models.schemas import QueueState

logger = structlog.get_logger()


class InMemoryQueueStore(BaseQueueStore):
    """Process-local queue store. Lost on restart."""

    def __init__(self, initial: QueueState = None):
        super().__init__()
        self._image: dict = (initial or QueueState()).to_json()
        self.save_count = 0

    async def load(self) -> QueueState:
        return QueueState.model_validate(self._image)

    async def save(self, state: QueueState) -> None:
        self._image = state.to_json()
        self.save_count += 1
