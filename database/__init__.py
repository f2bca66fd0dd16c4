"""
Database layer — durable queue persistence.

Backends:
  - File (single JSON document, atomic replace)
  - In-memory (for development/testing)

Quick start:
  from database import create_store
  store = create_store({"backend": "file", "path": "./queue.json"})
  state = await store.load()
"""
from database.store_base import BaseQueueStore
from database.store_memory import InMemoryQueueStore
from database.store_file import FileQueueStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    "BaseQueueStore",
    "InMemoryQueueStore", "FileQueueStore",
    "create_store", "get_store", "reset_store",
]
