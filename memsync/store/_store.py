from __future__ import annotations

import contextlib
import os
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from uuid import uuid4

from .. import db
from . import audit as store_audit
from . import devices as store_devices
from . import entries as store_entries
from . import outbox as store_outbox
from . import utils as store_utils
from .types import AuditLogEntry, DeviceCursor, MemoryEntry, SyncOutboxItem


class MemoryStore:
    DEAD_LETTER_THRESHOLD = store_outbox.DEAD_LETTER_THRESHOLD

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        device_id: str | None = None,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)
        # Serializes local mutations against pull's compare-and-apply.
        self.lock = threading.RLock()
        self.device_id = device_id or os.getenv("MEMSYNC_DEVICE_ID", "")
        if not self.device_id:
            self.device_id = self._ensure_device_id()

    def _ensure_device_id(self) -> str:
        row = self.conn.execute("SELECT device_id FROM sync_device LIMIT 1").fetchone()
        if row:
            return str(row["device_id"])
        device_id = str(uuid4())
        with self.conn:
            self.conn.execute(
                "INSERT INTO sync_device(device_id, created_at) VALUES (?, ?)",
                (device_id, store_utils.now_iso()),
            )
        return device_id

    @contextlib.contextmanager
    def write_transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the store lock and an IMMEDIATE transaction; nested calls join the outer one."""

        with self.lock:
            if self.conn.in_transaction:
                yield self.conn
                return
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # Entries

    def set_entry(
        self,
        scope: str,
        key: str,
        value: Any,
        *,
        actor: str | None,
        device_id: str | None = None,
    ) -> int:
        return store_entries.set_entry(
            self, scope, key, value, actor=actor, device_id=device_id
        )

    def tombstone_entry(
        self,
        scope: str,
        key: str,
        *,
        actor: str | None,
        reason: str | None = None,
        infection_id: str | None = None,
        device_id: str | None = None,
    ) -> int:
        return store_entries.tombstone_entry(
            self,
            scope,
            key,
            actor=actor,
            reason=reason,
            infection_id=infection_id,
            device_id=device_id,
        )

    def restore_entry(
        self,
        scope: str,
        key: str,
        *,
        actor: str | None,
        device_id: str | None = None,
    ) -> int:
        return store_entries.restore_entry(self, scope, key, actor=actor, device_id=device_id)

    def get_entry(self, scope: str, key: str, include_deleted: bool = False) -> MemoryEntry:
        return store_entries.get_entry(self, scope, key, include_deleted=include_deleted)

    def find_entry(self, scope: str, key: str) -> MemoryEntry | None:
        return store_entries.find_entry(self, scope, key)

    def list_entries(self, scope: str, include_deleted: bool = False) -> list[MemoryEntry]:
        return store_entries.list_entries(self, scope, include_deleted=include_deleted)

    def list_scopes(self) -> list[str]:
        return store_entries.list_scopes(self)

    def entries_by_infection(self, infection_id: str) -> list[MemoryEntry]:
        return store_entries.entries_by_infection(self, infection_id)

    def apply_remote_entry(self, scope: str, key: str, document: dict[str, Any]) -> MemoryEntry:
        return store_entries.apply_remote_entry(self, scope, key, document)

    # Outbox

    def enqueue(
        self,
        collection: str,
        doc_path: str,
        operation: str,
        payload: dict[str, Any] | None = None,
    ) -> int:
        return store_outbox.enqueue(self, collection, doc_path, operation, payload)

    def outbox_item(self, item_id: int) -> SyncOutboxItem | None:
        return store_outbox.get_item(self, item_id)

    def pending(self, limit: int | None = None) -> list[SyncOutboxItem]:
        return store_outbox.pending(self, limit)

    def dead_letters(self, limit: int | None = None) -> list[SyncOutboxItem]:
        return store_outbox.dead_letters(self, limit)

    def mark_synced(self, item_id: int) -> None:
        store_outbox.mark_synced(self, item_id)

    def mark_failed(self, item_id: int, error: str) -> SyncOutboxItem | None:
        return store_outbox.mark_failed(self, item_id, error)

    def outbox_counts(self) -> dict[str, int]:
        return store_outbox.counts(self)

    # Devices

    def get_cursor(self, device_id: str) -> str:
        return store_devices.get_cursor(self, device_id)

    def set_cursor(self, device_id: str, last_sync: str, *, status: str = "online") -> None:
        store_devices.set_cursor(self, device_id, last_sync, status=status)

    def register_device(
        self,
        device_id: str,
        *,
        name: str | None = None,
        platform: str | None = None,
        status: str = "online",
    ) -> None:
        store_devices.register_device(
            self, device_id, name=name, platform=platform, status=status
        )

    def set_device_status(self, device_id: str, status: str) -> None:
        store_devices.set_device_status(self, device_id, status)

    def list_devices(self) -> list[DeviceCursor]:
        return store_devices.list_devices(self)

    # Audit

    def log_audit(
        self,
        action: str,
        collection: str,
        doc_path: str,
        actor_uid: str | None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        return store_audit.log_audit(self, action, collection, doc_path, actor_uid, details)

    def recent_audit(self, limit: int = 50) -> list[AuditLogEntry]:
        return store_audit.recent_audit(self, limit)

    def audit_for_path(self, collection: str, doc_path: str) -> list[AuditLogEntry]:
        return store_audit.audit_for_path(self, collection, doc_path)
