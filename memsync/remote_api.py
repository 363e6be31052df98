from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

from . import db
from .addresses import COLLECTIONS, address_from_path
from .errors import Malformed
from .store import utils as store_utils
from .sync.remote import RemoteDocument, merge_fields, sort_updated_since

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_DB_PATH = Path.home() / ".memsync-remote.sqlite"


def _safe_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


MAX_BODY_BYTES = _safe_int_env("MEMSYNC_REMOTE_MAX_BODY_BYTES", 1048576)


def connect_remote(db_path: Path | str) -> sqlite3.Connection:
    conn = db.connect(db_path, check_same_thread=False)
    db.initialize_remote_schema(conn)
    return conn


def read_document(conn: sqlite3.Connection, collection: str, doc_path: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT data_json FROM remote_documents WHERE collection = ? AND doc_path = ?",
        (collection, doc_path),
    ).fetchone()
    if row is None:
        return None
    return db.from_json(row["data_json"])


def merge_document(
    conn: sqlite3.Connection, collection: str, doc_path: str, fields: dict[str, Any]
) -> dict[str, Any]:
    with conn:
        conn.execute("BEGIN IMMEDIATE")
        merged = merge_fields(read_document(conn, collection, doc_path), fields)
        conn.execute(
            """
            INSERT INTO remote_documents(collection, doc_path, data_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, doc_path) DO UPDATE SET
                data_json = excluded.data_json,
                updated_at = excluded.updated_at
            """,
            (collection, doc_path, db.to_json(merged), merged["updated_at"]),
        )
    return merged


def delete_document(conn: sqlite3.Connection, collection: str, doc_path: str) -> bool:
    with conn:
        cur = conn.execute(
            "DELETE FROM remote_documents WHERE collection = ? AND doc_path = ?",
            (collection, doc_path),
        )
    return cur.rowcount > 0


def query_documents(conn: sqlite3.Connection, collection: str, since: str) -> list[RemoteDocument]:
    rows = conn.execute(
        "SELECT doc_path, data_json FROM remote_documents WHERE collection = ?",
        (collection,),
    ).fetchall()
    documents = [
        RemoteDocument(collection, str(row["doc_path"]), db.from_json(row["data_json"]))
        for row in rows
    ]
    return sort_updated_since(documents, since)


def append_log_record(conn: sqlite3.Connection, record: dict[str, Any]) -> int:
    with conn:
        cur = conn.execute(
            "INSERT INTO remote_logs(record_json, created_at) VALUES (?, ?)",
            (db.to_json(record), store_utils.now_iso()),
        )
    return int(cur.lastrowid or 0)


def _read_body(handler: BaseHTTPRequestHandler) -> bytes:
    length = int(handler.headers.get("Content-Length", "0") or 0)
    if length <= 0:
        return b""
    if length > MAX_BODY_BYTES:
        raise ValueError("payload_too_large")
    return handler.rfile.read(length)


def _parse_json_body(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _send_json(handler: BaseHTTPRequestHandler, payload: dict[str, Any], status: int = 200) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _split_doc_route(path: str) -> tuple[str, str] | None:
    """`/v1/docs/<collection>[/<doc_path>]` -> (collection, doc_path)."""

    prefix = "/v1/docs/"
    if not path.startswith(prefix):
        return None
    parts = [unquote(part) for part in path[len(prefix) :].split("/") if part]
    if not parts:
        return None
    return parts[0], "/".join(parts[1:])


def build_remote_handler(db_path: Path | str | None = None, *, token: str | None = None):
    resolved_db = Path(db_path or os.environ.get("MEMSYNC_REMOTE_DB") or DEFAULT_REMOTE_DB_PATH)
    required_token = token if token is not None else os.environ.get("MEMSYNC_REMOTE_TOKEN")
    db_lock = threading.Lock()

    class RemoteHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            logger.debug("%s - %s", self.address_string(), format % args)

        def _connect(self) -> sqlite3.Connection:
            return connect_remote(resolved_db)

        def _authorized(self) -> bool:
            if not required_token:
                return True
            if self.headers.get("Authorization") == f"Bearer {required_token}":
                return True
            _send_json(self, {"error": "unauthorized"}, status=401)
            return False

        def _route(self) -> tuple[str, str] | None:
            parsed = urlparse(self.path)
            route = _split_doc_route(parsed.path)
            if route is None or route[0] not in COLLECTIONS:
                _send_json(self, {"error": "not_found"}, status=404)
                return None
            return route

        def _address_or_400(self, collection: str, doc_path: str):
            try:
                return address_from_path(collection, doc_path)
            except Malformed as exc:
                _send_json(self, {"error": str(exc)}, status=400)
                return None

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path == "/v1/health":
                _send_json(self, {"ok": True})
                return
            if not self._authorized():
                return
            route = self._route()
            if route is None:
                return
            collection, doc_path = route
            conn = self._connect()
            try:
                if not doc_path:
                    params = parse_qs(parsed.query)
                    since = params.get("updated_since", [store_utils.EPOCH])[0]
                    documents = query_documents(conn, collection, since)
                    _send_json(self, {"documents": [doc.to_dict() for doc in documents]})
                    return
                address = self._address_or_400(collection, doc_path)
                if address is None:
                    return
                data = read_document(conn, collection, address.doc_path)
                if data is None:
                    _send_json(self, {"error": "not_found"}, status=404)
                    return
                _send_json(
                    self, {"collection": collection, "doc_path": address.doc_path, "data": data}
                )
            except sqlite3.Error:
                logger.exception("remote read failed")
                _send_json(self, {"error": "internal_error"}, status=500)
            finally:
                conn.close()

        def do_PATCH(self) -> None:  # noqa: N802
            if not self._authorized():
                return
            route = self._route()
            if route is None:
                return
            collection, doc_path = route
            address = self._address_or_400(collection, doc_path)
            if address is None:
                return
            try:
                raw = _read_body(self)
            except ValueError:
                _send_json(self, {"error": "payload_too_large"}, status=413)
                return
            fields = _parse_json_body(raw)
            if fields is None:
                _send_json(self, {"error": "invalid_json"}, status=400)
                return
            conn = self._connect()
            try:
                with db_lock:
                    merged = merge_document(conn, collection, address.doc_path, fields)
                _send_json(self, {"ok": True, "data": merged})
            except sqlite3.Error:
                logger.exception("remote merge failed")
                _send_json(self, {"error": "internal_error"}, status=500)
            finally:
                conn.close()

        def do_DELETE(self) -> None:  # noqa: N802
            if not self._authorized():
                return
            route = self._route()
            if route is None:
                return
            collection, doc_path = route
            address = self._address_or_400(collection, doc_path)
            if address is None:
                return
            conn = self._connect()
            try:
                with db_lock:
                    removed = delete_document(conn, collection, address.doc_path)
                if not removed:
                    _send_json(self, {"error": "not_found"}, status=404)
                    return
                _send_json(self, {"ok": True})
            except sqlite3.Error:
                logger.exception("remote delete failed")
                _send_json(self, {"error": "internal_error"}, status=500)
            finally:
                conn.close()

        def do_POST(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path != "/v1/logs":
                _send_json(self, {"error": "not_found"}, status=404)
                return
            if not self._authorized():
                return
            try:
                raw = _read_body(self)
            except ValueError:
                _send_json(self, {"error": "payload_too_large"}, status=413)
                return
            record = _parse_json_body(raw)
            if record is None:
                _send_json(self, {"error": "invalid_json"}, status=400)
                return
            conn = self._connect()
            try:
                log_id = append_log_record(conn, record)
                _send_json(self, {"ok": True, "id": log_id})
            except sqlite3.Error:
                logger.exception("remote log append failed")
                _send_json(self, {"error": "internal_error"}, status=500)
            finally:
                conn.close()

    return RemoteHandler


def run_remote_server(
    host: str,
    port: int,
    *,
    db_path: Path | str | None = None,
    token: str | None = None,
) -> None:
    handler = build_remote_handler(db_path, token=token)
    server = ThreadingHTTPServer((host, port), handler)
    logger.info("remote document server listening on %s:%s", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("remote document server stopping")
    finally:
        server.server_close()
