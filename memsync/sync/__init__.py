from __future__ import annotations

from .engine import SyncEngine, sync_status
from .remote import InMemoryRemoteStore, RemoteDocument, RemoteStore

__all__ = [
    "InMemoryRemoteStore",
    "RemoteDocument",
    "RemoteStore",
    "SyncEngine",
    "sync_status",
]
