from __future__ import annotations

import json

from rich import print, print_json
from rich.markup import escape

from ..addresses import address_for
from ..errors import Malformed, NotFound
from ..service import Queued, WriteResult
from .common import fail, parse_value, resolve_actor


def _print_write(result: WriteResult) -> None:
    target = escape(f"{result.scope}/{result.key}")
    if isinstance(result, Queued):
        print(
            f"[yellow]{result.status}[/yellow] {target} r{result.revision} ({escape(result.reason)})"
        )
        return
    print(f"[green]{result.status}[/green] {target} r{result.revision}")


def init_db_cmd(*, store_from_path, db_path: str | None) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    store = store_from_path(db_path)
    try:
        print(f"Initialized database at {store.db_path} (device {store.device_id})")
    finally:
        store.close()


def set_cmd(
    *,
    service_from_path,
    db_path: str | None,
    scope: str,
    key: str,
    value: str,
    actor: str | None,
) -> None:
    """Write a value; it is pushed now or queued for the next sync."""

    service = service_from_path(db_path)
    try:
        result = service.set_entry(scope, key, parse_value(value), resolve_actor(actor))
    except Malformed as exc:
        fail(str(exc))
    finally:
        service.close()
    _print_write(result)


def get_cmd(
    *,
    store_from_path,
    db_path: str | None,
    scope: str,
    key: str,
    include_deleted: bool,
) -> None:
    """Print an entry as JSON."""

    store = store_from_path(db_path)
    try:
        entry = store.get_entry(scope, key, include_deleted=include_deleted)
    except (NotFound, Malformed) as exc:
        fail(str(exc))
    finally:
        store.close()
    print_json(data=entry.to_dict())


def delete_cmd(
    *,
    service_from_path,
    db_path: str | None,
    scope: str,
    key: str,
    reason: str | None,
    infection_id: str | None,
    actor: str | None,
) -> None:
    """Tombstone an entry."""

    service = service_from_path(db_path)
    try:
        result = service.delete_entry(
            scope, key, reason, resolve_actor(actor), infection_id=infection_id
        )
    except (NotFound, Malformed) as exc:
        fail(str(exc))
    finally:
        service.close()
    _print_write(result)


def restore_cmd(
    *,
    service_from_path,
    db_path: str | None,
    scope: str,
    key: str,
    actor: str | None,
) -> None:
    """Clear the tombstone on an entry."""

    service = service_from_path(db_path)
    try:
        result = service.restore_entry(scope, key, resolve_actor(actor))
    except (NotFound, Malformed) as exc:
        fail(str(exc))
    finally:
        service.close()
    _print_write(result)


def list_cmd(
    *,
    store_from_path,
    db_path: str | None,
    scope: str | None,
    include_deleted: bool,
) -> None:
    """List entries in a scope, or the known scopes when none is given."""

    store = store_from_path(db_path)
    try:
        if scope is None:
            for name in store.list_scopes():
                print(escape(name))
            return
        entries = store.list_entries(scope, include_deleted=include_deleted)
    except Malformed as exc:
        fail(str(exc))
    finally:
        store.close()
    for entry in entries:
        marker = " [red](deleted)[/red]" if entry.deleted else ""
        value = json.dumps(entry.value, ensure_ascii=False)
        print(f"{escape(entry.key)} r{entry.revision}{marker} {escape(value)}")


def sweep_cmd(
    *,
    service_from_path,
    db_path: str | None,
    scope: str,
    keys: list[str],
    reason: str,
    actor: str | None,
) -> None:
    """Tombstone several keys under one infection id."""

    service = service_from_path(db_path)
    try:
        result = service.sweep(scope, keys, reason, resolve_actor(actor))
    except Malformed as exc:
        fail(str(exc))
    finally:
        service.close()
    print(f"infection_id={result.infection_id}")
    for write in result.results:
        _print_write(write)
    for key in result.missing:
        print(f"[red]missing[/red] {escape(scope)}/{escape(key)}")


def audit_cmd(
    *,
    store_from_path,
    db_path: str | None,
    limit: int,
    scope: str | None = None,
    key: str | None = None,
) -> None:
    """Show recent audit rows, newest first, or the full history of one entry."""

    if (scope is None) != (key is None):
        fail("--scope and --key must be given together")
    store = store_from_path(db_path)
    try:
        if scope is not None and key is not None:
            address = address_for(scope, key)
            rows = store.audit_for_path(address.collection, address.doc_path)
        else:
            rows = store.recent_audit(limit)
    except Malformed as exc:
        fail(str(exc))
    finally:
        store.close()
    for row in rows:
        details = json.dumps(row["details"], ensure_ascii=False, sort_keys=True)
        print(
            escape(
                f"{row['timestamp']} {row['action']} {row['collection']}/{row['doc_path']} "
                f"{row['actor_uid'] or '-'} {details}"
            )
        )
