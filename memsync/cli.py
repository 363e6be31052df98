from __future__ import annotations

import logging

import typer
from rich import print

from . import __version__
from .commands.common import service_from_path, store_from_path
from .commands.memory_cmds import (
    audit_cmd,
    delete_cmd,
    get_cmd,
    init_db_cmd,
    list_cmd,
    restore_cmd,
    set_cmd,
    sweep_cmd,
)
from .commands.sync_cmds import (
    devices_cmd,
    serve_remote_cmd,
    sync_agent_cmd,
    sync_pull_cmd,
    sync_push_cmd,
    sync_retry_cmd,
    sync_status_cmd,
)
from .config import load_config
from .remote_api import run_remote_server
from .sync.daemon import run_sync_agent

app = typer.Typer(help="memsync: offline-first key-value memory with tombstone-aware sync")
sync_app = typer.Typer(help="Push, pull and inspect the sync outbox")
app.add_typer(sync_app, name="sync")


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log sync activity to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def init_db(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    init_db_cmd(store_from_path=store_from_path, db_path=db_path)


@app.command("set")
def set_(
    scope: str,
    key: str,
    value: str = typer.Argument(..., help="JSON value; non-JSON text is stored as a string"),
    actor: str = typer.Option(None, help="Actor recorded on the entry"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Write a value under SCOPE/KEY."""
    set_cmd(
        service_from_path=service_from_path,
        db_path=db_path,
        scope=scope,
        key=key,
        value=value,
        actor=actor,
    )


@app.command()
def get(
    scope: str,
    key: str,
    include_deleted: bool = typer.Option(False, help="Show tombstoned entries too"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Print an entry as JSON."""
    get_cmd(
        store_from_path=store_from_path,
        db_path=db_path,
        scope=scope,
        key=key,
        include_deleted=include_deleted,
    )


@app.command()
def delete(
    scope: str,
    key: str,
    reason: str = typer.Option(None, help="Why the entry is removed"),
    infection_id: str = typer.Option(None, help="Group id for a cleanup batch"),
    actor: str = typer.Option(None, help="Actor recorded on the tombstone"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Tombstone an entry (the value is kept)."""
    delete_cmd(
        service_from_path=service_from_path,
        db_path=db_path,
        scope=scope,
        key=key,
        reason=reason,
        infection_id=infection_id,
        actor=actor,
    )


@app.command()
def restore(
    scope: str,
    key: str,
    actor: str = typer.Option(None, help="Actor recorded on the entry"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Restore a tombstoned entry."""
    restore_cmd(
        service_from_path=service_from_path,
        db_path=db_path,
        scope=scope,
        key=key,
        actor=actor,
    )


@app.command("list")
def list_(
    scope: str = typer.Argument(None, help="Scope to list; omit to list scopes"),
    include_deleted: bool = typer.Option(False, help="Include tombstoned entries"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """List entries in a scope."""
    list_cmd(
        store_from_path=store_from_path,
        db_path=db_path,
        scope=scope,
        include_deleted=include_deleted,
    )


@app.command()
def sweep(
    scope: str,
    keys: list[str],
    reason: str = typer.Option(..., help="Why these entries are removed"),
    actor: str = typer.Option(None, help="Actor recorded on the tombstones"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Tombstone several keys under one infection id."""
    sweep_cmd(
        service_from_path=service_from_path,
        db_path=db_path,
        scope=scope,
        keys=keys,
        reason=reason,
        actor=actor,
    )


@app.command()
def audit(
    limit: int = typer.Option(50, help="Max rows"),
    scope: str = typer.Option(None, help="Show every row for one entry (with --key)"),
    key: str = typer.Option(None, help="Entry key (with --scope)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show recent audit rows."""
    audit_cmd(
        store_from_path=store_from_path,
        db_path=db_path,
        limit=limit,
        scope=scope,
        key=key,
    )


@app.command()
def devices(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """List devices and their pull cursors."""
    devices_cmd(store_from_path=store_from_path, db_path=db_path)


@app.command("serve-remote")
def serve_remote(
    host: str = typer.Option(None, help="Bind host (defaults to remote_host)"),
    port: int = typer.Option(None, help="Bind port (defaults to remote_port)"),
    db_path: str = typer.Option(None, help="Path to the remote store SQLite file"),
) -> None:
    """Run the reference remote document store."""
    serve_remote_cmd(
        run_remote_server=run_remote_server,
        load_config=load_config,
        host=host,
        port=port,
        db_path=db_path,
    )


@sync_app.command("push")
def sync_push(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Drain the outbox to the remote store."""
    sync_push_cmd(service_from_path=service_from_path, db_path=db_path)


@sync_app.command("pull")
def sync_pull(
    device_id: str = typer.Option(None, help="Device cursor to advance (defaults to this device)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Pull remote changes since the device cursor."""
    sync_pull_cmd(service_from_path=service_from_path, db_path=db_path, device_id=device_id)


@sync_app.command("status")
def sync_status(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Show pending and dead-lettered outbox items."""
    sync_status_cmd(service_from_path=service_from_path, db_path=db_path)


@sync_app.command("retry-dead-letters")
def sync_retry_dead_letters(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Retry every dead-lettered outbox item once."""
    sync_retry_cmd(service_from_path=service_from_path, db_path=db_path)


@sync_app.command("agent")
def sync_agent(
    interval_s: int = typer.Option(None, "--interval", help="Seconds between sync cycles"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Run the periodic push + pull agent."""
    sync_agent_cmd(
        run_sync_agent=run_sync_agent,
        load_config=load_config,
        db_path=db_path,
        interval_s=interval_s,
    )


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()
