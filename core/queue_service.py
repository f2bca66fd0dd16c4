"""
Queue Service — the operations the request surface performs on the store.

    submit(thread_target, text, sender_name?)  → message id
    list_all()                                 → snapshot of every message
    generate_pairing_code()                    → new code, recorded with its time
    clear_all()                                → drop every message, keep pairings

Message records are only ever created here; the dispatch worker is the only
thing that changes them afterwards.
"""
from __future__ import annotations

import secrets
import string
import structlog
from typing import Optional

from core.errors import ValidationError
from database.store_base import BaseQueueStore
from models.schemas import MessageRecord, PairingRecord

logger = structlog.get_logger()

PAIRING_ALPHABET = string.ascii_uppercase + string.digits
PAIRING_CODE_LENGTH = 6


def new_pairing_code(length: int = PAIRING_CODE_LENGTH) -> str:
    return "".join(secrets.choice(PAIRING_ALPHABET) for _ in range(length))


class QueueService:
    def __init__(
        self,
        store: BaseQueueStore,
        pairing_ttl_seconds: float = 0,
        pairing_max_count: int = 0,
    ):
        self.store = store
        self.pairing_ttl_seconds = pairing_ttl_seconds
        self.pairing_max_count = pairing_max_count

    # ── Messages ──────────────────────────────────────────────

    async def submit(self, thread_target: str, text: str, sender_name: Optional[str] = None) -> str:
        if not thread_target or not str(thread_target).strip():
            raise ValidationError("threadTarget and text required", field="thread_target")
        if not text or not str(text).strip():
            raise ValidationError("threadTarget and text required", field="text")

        record = MessageRecord(
            thread_target=str(thread_target),
            text=text,
            sender_name=sender_name or None,
        )
        await self.store.append_message(record)
        logger.info("message_queued", id=record.id, to=record.thread_target)
        return record.id

    async def list_all(self) -> list[MessageRecord]:
        return await self.store.list_messages()

    async def get_message(self, message_id: str) -> Optional[MessageRecord]:
        return await self.store.get_message(message_id)

    async def clear_all(self) -> int:
        cleared = await self.store.clear_messages()
        logger.info("queue_cleared", cleared=cleared)
        return cleared

    async def counts(self) -> dict[str, int]:
        state = await self.store.load()
        return state.count_by_status()

    # ── Pairings ──────────────────────────────────────────────

    async def generate_pairing_code(self) -> str:
        code = new_pairing_code()
        # Collisions are improbable; regenerate a few times rather than overwrite.
        for _ in range(5):
            if not await self.store.has_pairing(code):
                break
            code = new_pairing_code()
        await self.store.add_pairing(code)
        logger.info("pairing_code_issued", code=code)
        await self.store.prune_pairings(self.pairing_ttl_seconds, self.pairing_max_count)
        return code

    async def get_pairing(self, code: str) -> Optional[PairingRecord]:
        return await self.store.get_pairing(code)
