from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from ..errors import Malformed
from . import utils as store_utils
from .types import SyncOutboxItem

if TYPE_CHECKING:
    from ._store import MemoryStore

DEAD_LETTER_THRESHOLD = 5
OPERATIONS = ("SET", "TOMBSTONE", "DELETE")


def enqueue(
    store: MemoryStore,
    collection: str,
    doc_path: str,
    operation: str,
    payload: dict[str, Any] | None = None,
) -> int:
    op = operation.upper()
    if op not in OPERATIONS:
        raise Malformed(f"unknown outbox operation: {operation!r}")
    payload_json = json.dumps(payload, ensure_ascii=False) if payload is not None else None
    with store.write_transaction() as conn:
        cur = conn.execute(
            """
            INSERT INTO sync_outbox(collection, doc_path, operation, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (collection, doc_path, op, payload_json, store_utils.now_iso()),
        )
    return int(cur.lastrowid or 0)


def get_item(store: MemoryStore, item_id: int) -> SyncOutboxItem | None:
    row = store.conn.execute("SELECT * FROM sync_outbox WHERE id = ?", (item_id,)).fetchone()
    return SyncOutboxItem.from_row(row) if row else None


def pending(store: MemoryStore, limit: int | None = None) -> list[SyncOutboxItem]:
    """Unsynced, non-dead items, oldest first."""

    sql = """
        SELECT * FROM sync_outbox
        WHERE synced = 0 AND dead_letter = 0
        ORDER BY created_at ASC, id ASC
    """
    params: tuple[Any, ...] = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (int(limit),)
    rows = store.conn.execute(sql, params).fetchall()
    return [SyncOutboxItem.from_row(row) for row in rows]


def dead_letters(store: MemoryStore, limit: int | None = None) -> list[SyncOutboxItem]:
    sql = """
        SELECT * FROM sync_outbox
        WHERE synced = 0 AND dead_letter = 1
        ORDER BY created_at ASC, id ASC
    """
    params: tuple[Any, ...] = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (int(limit),)
    rows = store.conn.execute(sql, params).fetchall()
    return [SyncOutboxItem.from_row(row) for row in rows]


def mark_synced(store: MemoryStore, item_id: int) -> None:
    with store.write_transaction() as conn:
        conn.execute(
            """
            UPDATE sync_outbox
            SET synced = 1, dead_letter = 0, last_error = NULL
            WHERE id = ?
            """,
            (item_id,),
        )


def mark_failed(store: MemoryStore, item_id: int, error: str) -> SyncOutboxItem | None:
    """Count a failed attempt; the item turns dead once it reaches the threshold."""

    with store.write_transaction() as conn:
        conn.execute(
            """
            UPDATE sync_outbox
            SET retry_count = retry_count + 1,
                last_error = ?,
                dead_letter = CASE WHEN retry_count + 1 >= ? THEN 1 ELSE dead_letter END
            WHERE id = ? AND synced = 0
            """,
            (error, DEAD_LETTER_THRESHOLD, item_id),
        )
    return get_item(store, item_id)


def counts(store: MemoryStore) -> dict[str, int]:
    row = store.conn.execute(
        """
        SELECT
            COALESCE(SUM(CASE WHEN synced = 0 AND dead_letter = 0 THEN 1 ELSE 0 END), 0)
                AS pending,
            COALESCE(SUM(CASE WHEN synced = 0 AND dead_letter = 1 THEN 1 ELSE 0 END), 0)
                AS dead_letters
        FROM sync_outbox
        """
    ).fetchone()
    return {"pending": int(row["pending"]), "dead_letters": int(row["dead_letters"])}
