from __future__ import annotations


class MemsyncError(Exception):
    """Base class for errors raised by the memory store and sync engine."""


class NotFound(MemsyncError):
    """Entry is absent, or its tombstone state does not allow the operation."""

    def __init__(self, scope: str, key: str, message: str = "key not found") -> None:
        super().__init__(f"{scope}/{key}: {message}")
        self.scope = scope
        self.key = key


class Malformed(MemsyncError, ValueError):
    """Caller supplied an invalid scope, key, value or remote path."""


class RemoteUnavailable(MemsyncError):
    """Remote store could not be reached, timed out, or refused the request."""
