from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from .. import db
from ..errors import Malformed
from . import utils as store_utils
from .types import AuditLogEntry

if TYPE_CHECKING:
    from ._store import MemoryStore

AUDIT_ACTIONS = ("SET", "DELETE", "RESTORE")


def log_audit(
    store: MemoryStore,
    action: str,
    collection: str,
    doc_path: str,
    actor_uid: str | None,
    details: dict[str, Any] | None = None,
) -> AuditLogEntry:
    if action not in AUDIT_ACTIONS:
        raise Malformed(f"unknown audit action: {action!r}")
    timestamp = store_utils.now_iso()
    details = dict(details or {})
    with store.write_transaction() as conn:
        cur = conn.execute(
            """
            INSERT INTO audit_log(action, collection, doc_path, actor_uid, details_json, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (action, collection, doc_path, actor_uid, db.to_json(details), timestamp),
        )
    return AuditLogEntry(
        id=int(cur.lastrowid or 0),
        action=action,
        collection=collection,
        doc_path=doc_path,
        actor_uid=actor_uid,
        details=details,
        timestamp=timestamp,
    )


def recent_audit(store: MemoryStore, limit: int = 50) -> list[AuditLogEntry]:
    rows = store.conn.execute(
        """
        SELECT id, action, collection, doc_path, actor_uid, details_json, timestamp
        FROM audit_log
        ORDER BY timestamp DESC, id DESC
        LIMIT ?
        """,
        (int(limit),),
    ).fetchall()
    return [
        AuditLogEntry(
            id=int(row["id"]),
            action=str(row["action"]),
            collection=str(row["collection"]),
            doc_path=str(row["doc_path"]),
            actor_uid=row["actor_uid"],
            details=db.from_json(row["details_json"]),
            timestamp=str(row["timestamp"]),
        )
        for row in rows
    ]


def audit_for_path(store: MemoryStore, collection: str, doc_path: str) -> list[AuditLogEntry]:
    rows = store.conn.execute(
        """
        SELECT id, action, collection, doc_path, actor_uid, details_json, timestamp
        FROM audit_log
        WHERE collection = ? AND doc_path = ?
        ORDER BY id ASC
        """,
        (collection, doc_path),
    ).fetchall()
    return [
        AuditLogEntry(
            id=int(row["id"]),
            action=str(row["action"]),
            collection=str(row["collection"]),
            doc_path=str(row["doc_path"]),
            actor_uid=row["actor_uid"],
            details=db.from_json(row["details_json"]),
            timestamp=str(row["timestamp"]),
        )
        for row in rows
    ]


def remote_record(entry: AuditLogEntry) -> dict[str, Any]:
    """Shape of an audit row when mirrored to the remote log collection."""

    return {
        "action": entry["action"],
        "collection": entry["collection"],
        "doc_path": entry["doc_path"],
        "actor_uid": entry["actor_uid"],
        "details": json.loads(json.dumps(entry["details"], default=str)),
        "timestamp": entry["timestamp"],
    }
