"""
Error taxonomy for the relay.

  ValidationError          — malformed submit request, never enters the queue
  PersistenceError         — store write failure (reads degrade to empty state)
  SessionUnavailableError  — remote session not ready / not logged in; aborts a cycle
  DeliveryError            — a single message could not be delivered; recorded on it
"""
from __future__ import annotations


class RelayError(Exception):
    """Base exception for all relay operations."""


class ValidationError(RelayError, ValueError):
    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(message)


class PersistenceError(RelayError):
    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)


class SessionUnavailableError(RelayError):
    pass


class DeliveryError(RelayError):
    def __init__(self, message: str, thread_target: str = ""):
        self.thread_target = thread_target
        super().__init__(message)


class ComposerNotFoundError(DeliveryError):
    def __init__(self, thread_target: str = ""):
        super().__init__("Composer not found on thread page", thread_target)


class NavigationTimeoutError(DeliveryError):
    pass
