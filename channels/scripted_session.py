"""
Scripted Session — an in-process RemoteSession with no browser.

Records every delivery instead of sending it. Behaviour can be scripted:
  - authenticated=False       → is_authenticated() reports logged out
  - launch_error="..."        → ensure_ready() fails
  - fail_targets={"t": "..."} → deliver() to that thread raises DeliveryError
  - delay_s=0.1               → each delivery takes that long

Selected with `session.backend: scripted` for local development without a
Messenger account, and used throughout the test suite.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass, field
from typing import Any, Optional

from channels.base import RemoteSession
from core.errors import DeliveryError
from models.schemas import utc_now_iso

logger = structlog.get_logger()


@dataclass
class DeliveredMessage:
    thread_target: str
    text: str
    delivered_at: str = field(default_factory=utc_now_iso)


class ScriptedSession(RemoteSession):
    name = "scripted"

    def __init__(
        self,
        authenticated: bool = True,
        launch_error: str = "",
        fail_targets: Optional[dict[str, str]] = None,
        delay_s: float = 0.0,
    ):
        super().__init__()
        self.authenticated = authenticated
        self.launch_error = launch_error
        self.fail_targets: dict[str, str] = dict(fail_targets or {})
        self.delay_s = delay_s
        self.delivered: list[DeliveredMessage] = []
        self.launch_attempts = 0
        self.closed = False

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ScriptedSession:
        return cls(
            authenticated=config.get("authenticated", True),
            fail_targets=config.get("fail_targets") or {},
        )

    async def _launch(self) -> None:
        self.launch_attempts += 1
        if self.launch_error:
            raise RuntimeError(self.launch_error)
        self.closed = False

    async def _check_authenticated(self) -> bool:
        return self.authenticated

    async def _do_deliver(self, thread_target: str, text: str) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if thread_target in self.fail_targets:
            raise DeliveryError(self.fail_targets[thread_target], thread_target)
        self.delivered.append(DeliveredMessage(thread_target, text))
        logger.info("scripted_delivery", thread=thread_target, chars=len(text))

    async def _close(self) -> None:
        self.closed = True
