"""
Session Factory — build the configured RemoteSession backend.

Configuration in settings.yaml:
    session:
      backend: "messenger"       # "messenger" (Playwright) | "scripted"
      headless: true
      cookies_base64: "${COOKIES_BASE64}"

Usage:
    from channels.factory import create_session
    session = create_session(settings.session)
"""
from __future__ import annotations

import dataclasses
import structlog
from typing import Any

from channels.base import RemoteSession

logger = structlog.get_logger()

SESSION_BACKENDS = ("messenger", "scripted")


def create_session(config: Any = None) -> RemoteSession:
    """
    Factory: create a remote session from a SessionConfig or plain dict.

    Raises ValueError for an unknown backend name.
    """
    if dataclasses.is_dataclass(config):
        config = dataclasses.asdict(config)
    config = dict(config or {})
    backend = (config.get("backend") or "messenger").lower()

    if backend == "scripted":
        from channels.scripted_session import ScriptedSession
        session = ScriptedSession.from_config(config)
    elif backend == "messenger":
        from channels.messenger_session import MessengerSession
        session = MessengerSession.from_config(config)
    else:
        raise ValueError(
            f"Unknown session backend '{backend}'. Supported: {', '.join(SESSION_BACKENDS)}"
        )

    logger.info("session_created", backend=backend, headless=config.get("headless", True))
    return session
