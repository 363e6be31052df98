from __future__ import annotations

from rich import print, print_json
from rich.markup import escape

from .common import fail

REMOTE_HINT = "Remote not configured (set remote_url or MEMSYNC_REMOTE_URL)"


def sync_push_cmd(*, service_from_path, db_path: str | None) -> None:
    """Drain the outbox to the remote store."""

    service = service_from_path(db_path)
    try:
        if service.engine is None:
            fail(REMOTE_HINT)
        result = service.trigger_push()
    finally:
        service.close()
    print(
        f"synced={result['synced']} failed={result['failed']} remaining={result['remaining']}"
    )


def sync_pull_cmd(*, service_from_path, db_path: str | None, device_id: str | None) -> None:
    """Pull remote changes since this device's cursor."""

    service = service_from_path(db_path)
    try:
        if service.engine is None:
            fail(REMOTE_HINT)
        result = service.trigger_pull(device_id)
    finally:
        service.close()
    if not result.get("ok"):
        fail(f"Pull failed for {result['device_id']}: {result.get('error')}")
    print(
        f"pulled={result['pulled']} skipped={result['skipped']} device={escape(result['device_id'])}"
    )


def sync_status_cmd(*, service_from_path, db_path: str | None) -> None:
    """Show outbox counts with a sample of pending and dead-lettered items."""

    service = service_from_path(db_path)
    try:
        status = service.get_sync_status()
    finally:
        service.close()
    print_json(data=status)


def sync_retry_cmd(*, service_from_path, db_path: str | None) -> None:
    """Give every dead-lettered item one more attempt."""

    service = service_from_path(db_path)
    try:
        if service.engine is None:
            fail(REMOTE_HINT)
        result = service.retry_dead_letters()
    finally:
        service.close()
    print(f"retried={result['retried']} total={result['total']} failed={result['failed']}")


def sync_agent_cmd(
    *,
    run_sync_agent,
    load_config,
    db_path: str | None,
    interval_s: int | None,
) -> None:
    """Run push then pull on a fixed interval until interrupted."""

    cfg = load_config()
    if not cfg.remote_url:
        fail(REMOTE_HINT)
    interval = interval_s or cfg.sync_interval_s
    print(f"[green]Sync agent running every {interval}s[/green]")
    try:
        run_sync_agent(interval, db_path=db_path)
    except KeyboardInterrupt:
        print("Sync agent stopped")


def devices_cmd(*, store_from_path, db_path: str | None) -> None:
    """List known devices with their pull cursor and status."""

    store = store_from_path(db_path)
    try:
        devices = store.list_devices()
        local_device = store.device_id
    finally:
        store.close()
    if not devices:
        print(f"No devices yet (this device: {escape(local_device)})")
        return
    for device in devices:
        marker = " (this device)" if device["device_id"] == local_device else ""
        print(
            escape(
                f"{device['device_id']}|{device['status']}|"
                f"last_sync={device['last_sync'] or '-'}|{device['device_name'] or '-'}"
            )
            + marker
        )


def serve_remote_cmd(
    *,
    run_remote_server,
    load_config,
    host: str | None,
    port: int | None,
    db_path: str | None,
) -> None:
    """Serve the document API backed by a local SQLite file."""

    cfg = load_config()
    bind_host = host or cfg.remote_host
    bind_port = port or cfg.remote_port
    print(f"[green]Remote store listening on http://{bind_host}:{bind_port}[/green]")
    run_remote_server(bind_host, bind_port, db_path=db_path, token=cfg.remote_token)
