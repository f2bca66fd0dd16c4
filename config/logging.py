"""
structlog setup. Every module logs with `structlog.get_logger()` and
snake_case event names; this only decides level and rendering.
"""
from __future__ import annotations

import logging

import structlog

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def resolve_level(level: str) -> int:
    return _LEVELS.get((level or "info").strip().lower(), logging.INFO)


def configure_logging(level: str = "info", json_output: bool = True) -> None:
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level)),
        cache_logger_on_first_use=False,
    )
