"""
Remote Session — the capability set the dispatch worker needs from a
browser automation backend.

The worker only ever calls these four methods, so the backend is swappable:

  ensure_ready()         idempotent; launch once, reuse afterwards
  is_authenticated()     cheap, side-effect free login check
  deliver(target, text)  open the thread, find the composer, type, submit
  shutdown()             release the browser on process exit

Provides:
- RemoteSession: abstract base with launch-once bookkeeping and metrics
- SessionMetrics: per-session delivery counters
- decode_cookie_blob: base64 credential blob → cookie list
"""
from __future__ import annotations

import abc
import asyncio
import base64
import binascii
import json
import time
import structlog
from typing import Any, Optional

from core.errors import DeliveryError, SessionUnavailableError

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  CREDENTIAL BLOB
# ══════════════════════════════════════════════════════════════

def decode_cookie_blob(blob: str) -> list[dict[str, Any]]:
    """
    Decode a base64-encoded JSON array of browser cookies.

    Returns [] (and logs) for an empty or malformed blob; a bad blob must not
    stop the session from starting, it only means the user is not logged in.
    """
    if not blob:
        return []
    try:
        cookies = json.loads(base64.b64decode(blob).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("cookie_blob_invalid", error=str(e))
        return []
    if not isinstance(cookies, list):
        logger.error("cookie_blob_invalid", error="expected a JSON array of cookies")
        return []
    return [c for c in cookies if isinstance(c, dict) and c.get("name")]


# ══════════════════════════════════════════════════════════════
#  SESSION METRICS
# ══════════════════════════════════════════════════════════════

class SessionMetrics:
    """Tracks delivery counts and latency for one session."""

    def __init__(self):
        self.launches: int = 0
        self.delivered: int = 0
        self.failed: int = 0
        self._latencies: list[float] = []
        self._errors: list[str] = []

    def record_delivery(self, latency_ms: float = 0.0):
        self.delivered += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.failed += 1
        if error:
            self._errors.append(error)

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "launches": self.launches,
            "delivered": self.delivered,
            "failed": self.failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "recent_errors": self._errors[-10:],
        }


# ══════════════════════════════════════════════════════════════
#  REMOTE SESSION — Abstract Base
# ══════════════════════════════════════════════════════════════

class RemoteSession(abc.ABC):
    """
    Base class for remote session backends.

    Subclasses implement _launch, _check_authenticated, _do_deliver and
    _close. The base class makes ensure_ready launch-once, maps launch
    failures to SessionUnavailableError and unexpected delivery exceptions to
    DeliveryError, and keeps metrics.
    """

    name: str = "remote"

    def __init__(self):
        self._ready = False
        self._launch_lock = asyncio.Lock()
        self.last_authenticated: Optional[bool] = None
        self.metrics = SessionMetrics()

    @property
    def is_ready(self) -> bool:
        return self._ready

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def _launch(self) -> None:
        ...

    @abc.abstractmethod
    async def _check_authenticated(self) -> bool:
        ...

    @abc.abstractmethod
    async def _do_deliver(self, thread_target: str, text: str) -> None:
        ...

    @abc.abstractmethod
    async def _close(self) -> None:
        ...

    # ── Public API ────────────────────────────────────────────

    async def ensure_ready(self) -> None:
        if self._ready:
            return
        async with self._launch_lock:
            if self._ready:
                return
            try:
                await self._launch()
            except SessionUnavailableError:
                raise
            except Exception as e:
                logger.error("session_launch_failed", session=self.name, error=str(e))
                await self._safe_close()
                raise SessionUnavailableError(f"Session launch failed: {e}") from e
            self._ready = True
            self.metrics.launches += 1
            logger.info("session_ready", session=self.name)

    async def is_authenticated(self) -> bool:
        if not self._ready:
            return False
        try:
            authenticated = bool(await self._check_authenticated())
        except Exception as e:
            logger.warning("session_auth_check_failed", session=self.name, error=str(e))
            authenticated = False
        self.last_authenticated = authenticated
        return authenticated

    async def deliver(self, thread_target: str, text: str) -> None:
        if not self._ready:
            raise SessionUnavailableError("Session is not ready")
        start = time.monotonic()
        try:
            await self._do_deliver(thread_target, text)
        except DeliveryError as e:
            self.metrics.record_failure(str(e))
            raise
        except Exception as e:
            self.metrics.record_failure(str(e))
            raise DeliveryError(str(e) or type(e).__name__, thread_target) from e
        self.metrics.record_delivery((time.monotonic() - start) * 1000)

    async def shutdown(self) -> None:
        await self._safe_close()
        self._ready = False
        self.last_authenticated = None
        logger.info("session_shutdown", session=self.name)

    async def health_check(self) -> dict[str, Any]:
        """Report cached state only; the page belongs to the dispatch worker."""
        return {
            "session": self.name,
            "ready": self._ready,
            "authenticated": self.last_authenticated,
            "metrics": self.metrics.to_dict(),
        }

    async def _safe_close(self) -> None:
        try:
            await self._close()
        except Exception as e:
            logger.warning("session_close_failed", session=self.name, error=str(e))
