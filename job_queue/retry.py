"""
Retry policies for failed messages.

The relay is one-shot by default: a failed message stays failed and the
operator decides whether to submit it again. A BoundedRetryPolicy can be
switched on through `retry.max_attempts` in settings; the dispatch worker then
re-queues eligible failed records at the start of each cycle.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

from models.schemas import MessageRecord, MessageStatus, parse_iso


class RetryPolicy(ABC):
    @abstractmethod
    def should_retry(self, record: MessageRecord, now: Optional[datetime] = None) -> bool:
        ...


class NoRetryPolicy(RetryPolicy):
    """Failed is terminal."""

    def should_retry(self, record: MessageRecord, now: Optional[datetime] = None) -> bool:
        return False


class BoundedRetryPolicy(RetryPolicy):
    """
    Retry a failed message until it has been attempted `max_attempts` times,
    waiting backoff_seconds * 2**(attempts - 1) after each failure.
    """

    def __init__(self, max_attempts: int = 3, backoff_seconds: float = 60.0):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def next_attempt_at(self, record: MessageRecord) -> Optional[datetime]:
        if not record.attempted_at:
            return None
        delay = self.backoff_seconds * (2 ** max(record.attempts - 1, 0))
        return parse_iso(record.attempted_at) + timedelta(seconds=delay)

    def should_retry(self, record: MessageRecord, now: Optional[datetime] = None) -> bool:
        if record.status != MessageStatus.FAILED:
            return False
        if record.attempts >= self.max_attempts:
            return False
        due = self.next_attempt_at(record)
        if due is None:
            return False
        return (now or datetime.now(timezone.utc)) >= due


def create_retry_policy(max_attempts: int = 0, backoff_seconds: float = 60.0) -> RetryPolicy:
    if max_attempts and max_attempts > 1:
        return BoundedRetryPolicy(max_attempts=max_attempts, backoff_seconds=backoff_seconds)
    return NoRetryPolicy()
