from __future__ import annotations

from ._store import MemoryStore
from .types import AuditLogEntry, DeviceCursor, MemoryEntry, SyncOutboxItem

__all__ = [
    "AuditLogEntry",
    "DeviceCursor",
    "MemoryEntry",
    "MemoryStore",
    "SyncOutboxItem",
]
