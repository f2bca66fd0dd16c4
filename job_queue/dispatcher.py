"""
Dispatch Worker — drains queued messages through the remote session.

Runs as a background task inside the FastAPI lifespan (or standalone).

Cycle:
    Store → queued subset (insertion order)
      → empty? stop here, the session is never touched
      → session.ensure_ready()          (launched once per process)
      → session.is_authenticated()      (once per cycle; false aborts the cycle)
      → for each message: deliver, re-read the store, write sent/failed back

Failure handling:
  - a single delivery failure marks that message failed; the cycle goes on
  - a session-level failure aborts the cycle; no message changes status
  - any other exception is logged; the schedule keeps running

Cycles never overlap: a cycle requested while another is running is skipped.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass, asdict
from typing import Any, Optional

from channels.base import RemoteSession
from context.lifecycle import describe_error, is_actionable, mark_failed, mark_sent, requeue
from core.errors import PersistenceError, SessionUnavailableError
from database.store_base import BaseQueueStore
from job_queue.retry import NoRetryPolicy, RetryPolicy
from models.schemas import MessageRecord

logger = structlog.get_logger()


@dataclass
class CycleResult:
    """Outcome of one dispatch cycle."""
    queued: int = 0
    sent: int = 0
    failed: int = 0
    requeued: int = 0
    skipped_missing: int = 0
    aborted: bool = False
    skipped: bool = False
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DispatchWorker:
    """
    Periodically sends queued messages, one at a time, through one session.

    Usage:
        worker = DispatchWorker(store, session, poll_interval_s=15)
        await worker.start()        # immediate cycle, then every poll_interval_s
        await worker.run_cycle()    # single cycle (tests, admin trigger)
        await worker.stop()         # cancels the loop, tears the session down
    """

    def __init__(
        self,
        store: BaseQueueStore,
        session: RemoteSession,
        poll_interval_s: float = 15.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.session = session
        self.poll_interval_s = poll_interval_s
        self.retry_policy = retry_policy or NoRetryPolicy()
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.cycles_run = 0
        self.last_result: Optional[CycleResult] = None

    @property
    def running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    # ── Schedule ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start the polling loop as a background task. A second call is a no-op."""
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop(), name="dispatch_worker")
        logger.info("dispatch_worker_started", interval_s=self.poll_interval_s)

    async def stop(self) -> None:
        """Stop the loop and release the session."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        await self.session.shutdown()
        logger.info("dispatch_worker_stopped")

    async def _poll_loop(self) -> None:
        """Main loop — first cycle runs immediately, then one per interval."""
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("dispatch_cycle_crashed", error=str(e))

            await asyncio.sleep(self.poll_interval_s)

    # ── Cycle ─────────────────────────────────────────────────

    async def run_cycle(self) -> CycleResult:
        if self._cycle_lock.locked():
            logger.warning("dispatch_cycle_skipped", reason="previous cycle still running")
            return CycleResult(skipped=True, reason="cycle_in_progress")

        async with self._cycle_lock:
            try:
                result = await self._run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("dispatch_cycle_error", error=str(e))
                result = CycleResult(aborted=True, reason=describe_error(e))
            self.cycles_run += 1
            self.last_result = result
            if result.sent or result.failed or result.aborted:
                logger.info("dispatch_cycle_complete", **result.to_dict())
            return result

    async def _run_cycle(self) -> CycleResult:
        result = CycleResult()
        result.requeued = await self._apply_retry_policy()

        state = await self.store.load()
        batch = [m for m in state.messages if is_actionable(m)]
        result.queued = len(batch)
        if not batch:
            return result

        try:
            await self.session.ensure_ready()
        except SessionUnavailableError as e:
            logger.warning("session_unavailable", error=str(e), queued=len(batch))
            result.aborted = True
            result.reason = describe_error(e)
            return result

        if not await self.session.is_authenticated():
            logger.warning(
                "session_not_authenticated",
                queued=len(batch),
                hint="Provide COOKIES_BASE64 or log in manually with HEADLESS=false",
            )
            result.aborted = True
            result.reason = "not_authenticated"
            return result

        for message in batch:
            try:
                outcome = await self._dispatch_one(message)
            except SessionUnavailableError as e:
                logger.warning("session_lost_mid_cycle", id=message.id, error=str(e))
                result.aborted = True
                result.reason = describe_error(e)
                break
            if outcome == "sent":
                result.sent += 1
            elif outcome == "failed":
                result.failed += 1
            else:
                result.skipped_missing += 1

        return result

    async def _dispatch_one(self, message: MessageRecord) -> str:
        """
        Deliver one message and persist its outcome straight away.

        Returns "sent" or "failed", or "missing" when the record vanished
        (or stopped being queued) while the delivery was in flight.
        """
        error: Optional[BaseException] = None
        try:
            await self.session.deliver(message.thread_target, message.text)
        except SessionUnavailableError:
            raise
        except Exception as e:
            error = e

        if error is None:
            logger.info("message_sent", id=message.id, to=message.thread_target)
            applied = await self._write_back(message.id, mark_sent)
            return "sent" if applied else "missing"

        logger.error("message_send_failed", id=message.id, to=message.thread_target,
                     error=describe_error(error))
        applied = await self._write_back(message.id, lambda r: mark_failed(r, error))
        return "failed" if applied else "missing"

    async def _write_back(self, message_id: str, transition) -> bool:
        applied = False

        def apply(record: MessageRecord) -> MessageRecord:
            nonlocal applied
            # Another writer may have changed it since the cycle read it.
            if not is_actionable(record):
                logger.warning("message_no_longer_queued", id=record.id, status=record.status.value)
                return record
            applied = True
            return transition(record)

        try:
            updated = await self.store.update_message(message_id, apply)
        except PersistenceError as e:
            logger.error("message_status_write_failed", id=message_id, error=str(e))
            raise
        if updated is None:
            logger.info("message_missing_on_write_back", id=message_id)
        return applied

    async def _apply_retry_policy(self) -> int:
        if isinstance(self.retry_policy, NoRetryPolicy):
            return 0
        state = await self.store.load()
        due = [m.id for m in state.messages if self.retry_policy.should_retry(m)]
        requeued = 0

        def apply(record: MessageRecord) -> MessageRecord:
            nonlocal requeued
            # Re-checked against the fresh record; it may have moved on.
            if not self.retry_policy.should_retry(record):
                return record
            requeued += 1
            return requeue(record)

        for message_id in due:
            await self.store.update_message(message_id, apply)
        return requeued

    async def health_check(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "cycle_in_progress": self.cycle_in_progress,
            "cycles_run": self.cycles_run,
            "poll_interval_s": self.poll_interval_s,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
