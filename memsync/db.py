from __future__ import annotations

import json
import os
import sqlite3
from pathlib import Path
from typing import Any

DEFAULT_DB_PATH = Path.home() / ".memsync.sqlite"


def resolve_db_path(db_path: Path | str | None = None) -> Path:
    candidate = db_path or os.environ.get("MEMSYNC_DB") or DEFAULT_DB_PATH
    return Path(candidate).expanduser()


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sync_device (
            device_id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS memory_entries (
            scope TEXT NOT NULL,
            key TEXT NOT NULL,
            value_json TEXT,
            revision INTEGER NOT NULL,
            updated_at TEXT NOT NULL,
            updated_by TEXT,
            source_device_id TEXT,
            deleted INTEGER NOT NULL DEFAULT 0,
            deleted_at TEXT,
            deleted_by TEXT,
            delete_reason TEXT,
            infection_id TEXT,
            PRIMARY KEY (scope, key)
        );
        CREATE INDEX IF NOT EXISTS idx_memory_entries_scope_deleted ON memory_entries(scope, deleted);

        CREATE TABLE IF NOT EXISTS sync_outbox (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            collection TEXT NOT NULL,
            doc_path TEXT NOT NULL,
            operation TEXT NOT NULL CHECK(operation IN ('SET', 'TOMBSTONE', 'DELETE')),
            payload_json TEXT,
            created_at TEXT NOT NULL,
            synced INTEGER NOT NULL DEFAULT 0,
            retry_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            dead_letter INTEGER NOT NULL DEFAULT 0
        );
        CREATE INDEX IF NOT EXISTS idx_sync_outbox_pending ON sync_outbox(synced, dead_letter, created_at);

        CREATE TABLE IF NOT EXISTS devices (
            device_id TEXT PRIMARY KEY,
            device_name TEXT,
            last_sync TEXT,
            status TEXT DEFAULT 'offline',
            platform TEXT,
            updated_at TEXT
        );

        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            collection TEXT NOT NULL,
            doc_path TEXT NOT NULL,
            actor_uid TEXT,
            details_json TEXT,
            timestamp TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp DESC);
        """
    )
    _ensure_column(conn, "memory_entries", "infection_id", "TEXT")
    _ensure_column(conn, "sync_outbox", "retry_count", "INTEGER NOT NULL DEFAULT 0")
    _ensure_column(conn, "sync_outbox", "last_error", "TEXT")
    _ensure_column(conn, "sync_outbox", "dead_letter", "INTEGER NOT NULL DEFAULT 0")
    _ensure_column(conn, "devices", "platform", "TEXT")
    _ensure_column(conn, "devices", "updated_at", "TEXT")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_memory_entries_infection ON memory_entries(infection_id)"
    )
    conn.commit()


def initialize_remote_schema(conn: sqlite3.Connection) -> None:
    """Tables backing the reference remote document server."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS remote_documents (
            collection TEXT NOT NULL,
            doc_path TEXT NOT NULL,
            data_json TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (collection, doc_path)
        );
        CREATE INDEX IF NOT EXISTS idx_remote_documents_updated ON remote_documents(collection, updated_at);

        CREATE TABLE IF NOT EXISTS remote_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            record_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
        """
    )
    conn.commit()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {}
