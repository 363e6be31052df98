from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, dataclass
from typing import Any, TypedDict


@dataclass
class MemoryEntry:
    scope: str
    key: str
    value: Any
    revision: int
    updated_at: str
    updated_by: str | None = None
    source_device_id: str | None = None
    deleted: bool = False
    deleted_at: str | None = None
    deleted_by: str | None = None
    delete_reason: str | None = None
    infection_id: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row | dict[str, Any]) -> MemoryEntry:
        data = dict(row)
        raw_value = data.get("value_json")
        value = json.loads(raw_value) if raw_value is not None else None
        return cls(
            scope=str(data["scope"]),
            key=str(data["key"]),
            value=value,
            revision=int(data.get("revision") or 0),
            updated_at=str(data.get("updated_at") or ""),
            updated_by=data.get("updated_by"),
            source_device_id=data.get("source_device_id"),
            deleted=bool(data.get("deleted")),
            deleted_at=data.get("deleted_at"),
            deleted_by=data.get("deleted_by"),
            delete_reason=data.get("delete_reason"),
            infection_id=data.get("infection_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SyncOutboxItem:
    id: int
    collection: str
    doc_path: str
    operation: str
    payload: dict[str, Any] | None
    created_at: str
    synced: bool = False
    retry_count: int = 0
    last_error: str | None = None
    dead_letter: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row | dict[str, Any]) -> SyncOutboxItem:
        data = dict(row)
        payload_json = data.get("payload_json")
        payload = json.loads(payload_json) if payload_json else None
        return cls(
            id=int(data["id"]),
            collection=str(data["collection"]),
            doc_path=str(data["doc_path"]),
            operation=str(data["operation"]),
            payload=payload if isinstance(payload, dict) else None,
            created_at=str(data.get("created_at") or ""),
            synced=bool(data.get("synced")),
            retry_count=int(data.get("retry_count") or 0),
            last_error=data.get("last_error"),
            dead_letter=bool(data.get("dead_letter")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DeviceCursor(TypedDict):
    device_id: str
    device_name: str | None
    last_sync: str | None
    status: str
    platform: str | None
    updated_at: str | None


class AuditLogEntry(TypedDict):
    id: int
    action: str
    collection: str
    doc_path: str
    actor_uid: str | None
    details: dict[str, Any]
    timestamp: str
