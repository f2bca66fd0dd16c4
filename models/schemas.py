"""
Core data models for the Thread Relay queue.
These are the universal types shared across all modules.

Persisted JSON uses camelCase keys (threadTarget, createdAt, ...) so the
queue image stays readable by the web UI; Python code uses snake_case.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class MessageStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


# ──────────────────────────────────────────────────────────────
#  Records
# ──────────────────────────────────────────────────────────────

class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class MessageRecord(_Record):
    """An outbound message waiting for, or done with, delivery."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    thread_target: str = Field(
        validation_alias=AliasChoices("threadTarget", "toThreadId", "thread_target"),
    )
    text: str
    sender_name: Optional[str] = None
    status: MessageStatus = MessageStatus.QUEUED
    created_at: str = Field(default_factory=utc_now_iso)
    sent_at: Optional[str] = None
    attempted_at: Optional[str] = None
    last_error: Optional[str] = None
    attempts: int = 0

    @field_validator("thread_target", mode="before")
    @classmethod
    def _numeric_thread_id(cls, v):
        # Older images and clients send bare numeric thread ids.
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def is_queued(self) -> bool:
        return self.status == MessageStatus.QUEUED


class PairingRecord(_Record):
    created_at: str = Field(default_factory=utc_now_iso)


class QueueState(_Record):
    """The full persisted image: every message and every pairing."""
    messages: list[MessageRecord] = []
    pairings: dict[str, PairingRecord] = {}

    def find(self, message_id: str) -> Optional[MessageRecord]:
        return next((m for m in self.messages if m.id == message_id), None)

    def queued(self) -> list[MessageRecord]:
        return [m for m in self.messages if m.status == MessageStatus.QUEUED]

    def count_by_status(self) -> dict[str, int]:
        counts = {s.value: 0 for s in MessageStatus}
        for m in self.messages:
            counts[m.status.value] += 1
        return counts
