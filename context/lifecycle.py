"""
Message Lifecycle — the state machine behind MessageRecord.status.

    queued ──deliver ok──▶ sent     (terminal, sets sent_at)
       │
       └──deliver error──▶ failed   (terminal, sets attempted_at + last_error)

failed → queued exists only for a configured retry policy (job_queue/retry.py);
with the default policy a failed message stays failed until an operator
submits a new one.

Usage:
    record = mark_sent(record)
    record = mark_failed(record, exc)
"""
from __future__ import annotations

import structlog
from typing import Optional

from models.schemas import MessageRecord, MessageStatus, utc_now_iso

logger = structlog.get_logger()


class InvalidTransitionError(ValueError):
    def __init__(self, message_id: str, from_status: MessageStatus, to_status: MessageStatus):
        self.message_id = message_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for message {message_id}: "
            f"{from_status.value} → {to_status.value}"
        )


# Allowed (from, to) pairs.
_TRANSITIONS: set[tuple[MessageStatus, MessageStatus]] = {
    (MessageStatus.QUEUED, MessageStatus.SENT),
    (MessageStatus.QUEUED, MessageStatus.FAILED),
    (MessageStatus.FAILED, MessageStatus.QUEUED),
}


def can_transition(from_status: MessageStatus, to_status: MessageStatus) -> bool:
    return (from_status, to_status) in _TRANSITIONS


def _check(record: MessageRecord, to_status: MessageStatus) -> None:
    if not can_transition(record.status, to_status):
        raise InvalidTransitionError(record.id, record.status, to_status)


def is_actionable(record: MessageRecord) -> bool:
    """Only queued records are picked up by a dispatch cycle."""
    return record.status == MessageStatus.QUEUED


def mark_sent(record: MessageRecord, now: Optional[str] = None) -> MessageRecord:
    _check(record, MessageStatus.SENT)
    record.status = MessageStatus.SENT
    record.sent_at = now or utc_now_iso()
    record.attempts += 1
    return record


def mark_failed(record: MessageRecord, error: BaseException | str, now: Optional[str] = None) -> MessageRecord:
    _check(record, MessageStatus.FAILED)
    record.status = MessageStatus.FAILED
    record.attempted_at = now or utc_now_iso()
    record.last_error = describe_error(error)
    record.attempts += 1
    return record


def requeue(record: MessageRecord) -> MessageRecord:
    """failed → queued. last_error is kept until the next attempt overwrites it."""
    _check(record, MessageStatus.QUEUED)
    record.status = MessageStatus.QUEUED
    record.attempted_at = None
    logger.info("message_requeued", id=record.id, attempts=record.attempts)
    return record


def describe_error(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)
