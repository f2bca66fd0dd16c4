"""
Store Factory — Create the right queue store backend from configuration.

Configuration in settings.yaml:
    store:
      # "file"   — JSON file on disk (default, durable)
      # "memory" — in-process only (development, testing)
      backend: "file"
      path: "./queue.json"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseQueueStore

logger = structlog.get_logger()

_instance: Optional[BaseQueueStore] = None


def create_store(config: dict = None) -> BaseQueueStore:
    """
    Factory: create the appropriate queue store backend.

    Args:
        config: dict with keys:
            backend: "file" | "memory"  (default: "file")
            path: str (for file backend, default: "./queue.json")
    """
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = config.get("backend", "file")

    if backend == "memory":
        from database.store_memory import InMemoryQueueStore
        _instance = InMemoryQueueStore()
        logger.info("store_created", backend="memory")

    else:  # "file" or default
        from database.store_file import FileQueueStore
        path = config.get("path", "./queue.json")
        _instance = FileQueueStore(path=path)
        logger.info("store_created", backend="file", path=path)

    return _instance


def get_store() -> BaseQueueStore:
    """Return the singleton store instance, creating a file store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
