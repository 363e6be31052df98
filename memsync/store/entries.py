from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..errors import NotFound
from . import utils as store_utils
from .types import MemoryEntry

if TYPE_CHECKING:
    from ._store import MemoryStore


def _current_revision(store: MemoryStore, scope: str, key: str) -> tuple[int, bool] | None:
    row = store.conn.execute(
        "SELECT revision, deleted FROM memory_entries WHERE scope = ? AND key = ?",
        (scope, key),
    ).fetchone()
    if row is None:
        return None
    return int(row["revision"] or 0), bool(row["deleted"])


def find_entry(store: MemoryStore, scope: str, key: str) -> MemoryEntry | None:
    row = store.conn.execute(
        "SELECT * FROM memory_entries WHERE scope = ? AND key = ?",
        (scope, key),
    ).fetchone()
    if row is None:
        return None
    return MemoryEntry.from_row(row)


def set_entry(
    store: MemoryStore,
    scope: str,
    key: str,
    value: Any,
    *,
    actor: str | None,
    device_id: str | None = None,
) -> int:
    scope = store_utils.validate_scope(scope)
    key = store_utils.validate_key(key)
    value_json = store_utils.dump_value(value)
    now = store_utils.now_iso()
    with store.write_transaction() as conn:
        current = _current_revision(store, scope, key)
        revision = (current[0] if current else 0) + 1
        conn.execute(
            """
            INSERT INTO memory_entries(
                scope,
                key,
                value_json,
                revision,
                updated_at,
                updated_by,
                source_device_id,
                deleted,
                deleted_at,
                deleted_by,
                delete_reason,
                infection_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, 0, NULL, NULL, NULL, NULL)
            ON CONFLICT(scope, key) DO UPDATE SET
                value_json = excluded.value_json,
                revision = excluded.revision,
                updated_at = excluded.updated_at,
                updated_by = excluded.updated_by,
                source_device_id = excluded.source_device_id,
                deleted = 0,
                deleted_at = NULL,
                deleted_by = NULL,
                delete_reason = NULL,
                infection_id = NULL
            """,
            (scope, key, value_json, revision, now, actor, device_id or store.device_id),
        )
    return revision


def tombstone_entry(
    store: MemoryStore,
    scope: str,
    key: str,
    *,
    actor: str | None,
    reason: str | None = None,
    infection_id: str | None = None,
    device_id: str | None = None,
) -> int:
    """Mark an entry deleted without discarding its value."""

    scope = store_utils.validate_scope(scope)
    key = store_utils.validate_key(key)
    now = store_utils.now_iso()
    with store.write_transaction() as conn:
        current = _current_revision(store, scope, key)
        if current is None:
            raise NotFound(scope, key)
        revision = current[0] + 1
        conn.execute(
            """
            UPDATE memory_entries
            SET revision = ?,
                updated_at = ?,
                updated_by = ?,
                source_device_id = ?,
                deleted = 1,
                deleted_at = ?,
                deleted_by = ?,
                delete_reason = ?,
                infection_id = ?
            WHERE scope = ? AND key = ?
            """,
            (
                revision,
                now,
                actor,
                device_id or store.device_id,
                now,
                actor,
                reason or "Manual delete",
                infection_id,
                scope,
                key,
            ),
        )
    return revision


def restore_entry(
    store: MemoryStore,
    scope: str,
    key: str,
    *,
    actor: str | None,
    device_id: str | None = None,
) -> int:
    scope = store_utils.validate_scope(scope)
    key = store_utils.validate_key(key)
    now = store_utils.now_iso()
    with store.write_transaction() as conn:
        current = _current_revision(store, scope, key)
        if current is None or not current[1]:
            raise NotFound(scope, key, "key not found or not deleted")
        revision = current[0] + 1
        conn.execute(
            """
            UPDATE memory_entries
            SET revision = ?,
                updated_at = ?,
                updated_by = ?,
                source_device_id = ?,
                deleted = 0,
                deleted_at = NULL,
                deleted_by = NULL,
                delete_reason = NULL,
                infection_id = NULL
            WHERE scope = ? AND key = ?
            """,
            (revision, now, actor, device_id or store.device_id, scope, key),
        )
    return revision


def get_entry(
    store: MemoryStore, scope: str, key: str, *, include_deleted: bool = False
) -> MemoryEntry:
    scope = store_utils.validate_scope(scope)
    key = store_utils.validate_key(key)
    entry = find_entry(store, scope, key)
    if entry is None or (entry.deleted and not include_deleted):
        raise NotFound(scope, key)
    return entry


def list_entries(
    store: MemoryStore, scope: str, *, include_deleted: bool = False
) -> list[MemoryEntry]:
    scope = store_utils.validate_scope(scope)
    where = "WHERE scope = ?"
    if not include_deleted:
        where += " AND deleted = 0"
    rows = store.conn.execute(
        f"SELECT * FROM memory_entries {where} ORDER BY key ASC",
        (scope,),
    ).fetchall()
    return [MemoryEntry.from_row(row) for row in rows]


def list_scopes(store: MemoryStore) -> list[str]:
    rows = store.conn.execute(
        "SELECT DISTINCT scope FROM memory_entries ORDER BY scope ASC"
    ).fetchall()
    return [str(row["scope"]) for row in rows]


def entries_by_infection(store: MemoryStore, infection_id: str) -> list[MemoryEntry]:
    rows = store.conn.execute(
        "SELECT * FROM memory_entries WHERE infection_id = ? ORDER BY scope ASC, key ASC",
        (infection_id,),
    ).fetchall()
    return [MemoryEntry.from_row(row) for row in rows]


def apply_remote_entry(
    store: MemoryStore, scope: str, key: str, document: dict[str, Any]
) -> MemoryEntry:
    """Overwrite the local record with a remote snapshot, keeping its revision.

    Callers decide whether the snapshot wins. A snapshot older than the stored
    revision is never written; the stored row is returned unchanged.
    """

    scope = store_utils.validate_scope(scope)
    key = store_utils.validate_key(key)
    deleted = bool(document.get("deleted"))
    value_json = store_utils.dump_value(document.get("value"))
    revision = int(document.get("revision") or 0)
    updated_at = store_utils.normalize_timestamp(
        document.get("updated_at"), default=store_utils.now_iso()
    )
    deletion: tuple[Any, ...] = (None, None, None, None)
    if deleted:
        deletion = (
            document.get("deleted_at") or updated_at,
            document.get("deleted_by"),
            document.get("delete_reason"),
            document.get("infection_id"),
        )
    with store.write_transaction() as conn:
        conn.execute(
            """
            INSERT INTO memory_entries(
                scope,
                key,
                value_json,
                revision,
                updated_at,
                updated_by,
                source_device_id,
                deleted,
                deleted_at,
                deleted_by,
                delete_reason,
                infection_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(scope, key) DO UPDATE SET
                value_json = excluded.value_json,
                revision = excluded.revision,
                updated_at = excluded.updated_at,
                updated_by = excluded.updated_by,
                source_device_id = excluded.source_device_id,
                deleted = excluded.deleted,
                deleted_at = excluded.deleted_at,
                deleted_by = excluded.deleted_by,
                delete_reason = excluded.delete_reason,
                infection_id = excluded.infection_id
            WHERE excluded.revision >= memory_entries.revision
            """,
            (
                scope,
                key,
                value_json,
                revision,
                updated_at,
                document.get("updated_by"),
                document.get("source_device_id"),
                1 if deleted else 0,
                *deletion,
            ),
        )
    entry = find_entry(store, scope, key)
    assert entry is not None
    return entry
