from __future__ import annotations

import platform as platform_mod
from typing import TYPE_CHECKING

from ..errors import Malformed
from . import utils as store_utils
from .types import DeviceCursor

if TYPE_CHECKING:
    from ._store import MemoryStore

DEVICE_STATUSES = ("online", "offline", "error")


def _check_status(status: str) -> str:
    if status not in DEVICE_STATUSES:
        raise Malformed(f"invalid device status: {status!r}")
    return status


def get_cursor(store: MemoryStore, device_id: str) -> str:
    """Last successful pull time for a device, or the epoch when it never pulled."""

    row = store.conn.execute(
        "SELECT last_sync FROM devices WHERE device_id = ?",
        (device_id,),
    ).fetchone()
    if row is None or not row["last_sync"]:
        return store_utils.EPOCH
    return store_utils.normalize_timestamp(row["last_sync"])


def register_device(
    store: MemoryStore,
    device_id: str,
    *,
    name: str | None = None,
    platform: str | None = None,
    status: str = "online",
) -> None:
    _check_status(status)
    now = store_utils.now_iso()
    with store.write_transaction() as conn:
        conn.execute(
            """
            INSERT INTO devices(device_id, device_name, last_sync, status, platform, updated_at)
            VALUES (?, ?, NULL, ?, ?, ?)
            ON CONFLICT(device_id) DO UPDATE SET
                device_name = COALESCE(excluded.device_name, devices.device_name),
                status = excluded.status,
                platform = COALESCE(excluded.platform, devices.platform),
                updated_at = excluded.updated_at
            """,
            (device_id, name, status, platform or platform_mod.system().lower(), now),
        )


def set_cursor(
    store: MemoryStore, device_id: str, last_sync: str, *, status: str = "online"
) -> None:
    _check_status(status)
    now = store_utils.now_iso()
    with store.write_transaction() as conn:
        conn.execute(
            """
            INSERT INTO devices(device_id, last_sync, status, platform, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(device_id) DO UPDATE SET
                last_sync = excluded.last_sync,
                status = excluded.status,
                updated_at = excluded.updated_at
            """,
            (device_id, last_sync, status, platform_mod.system().lower(), now),
        )


def set_device_status(store: MemoryStore, device_id: str, status: str) -> None:
    _check_status(status)
    now = store_utils.now_iso()
    with store.write_transaction() as conn:
        conn.execute(
            """
            INSERT INTO devices(device_id, status, platform, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(device_id) DO UPDATE SET
                status = excluded.status,
                updated_at = excluded.updated_at
            """,
            (device_id, status, platform_mod.system().lower(), now),
        )


def list_devices(store: MemoryStore) -> list[DeviceCursor]:
    rows = store.conn.execute(
        """
        SELECT device_id, device_name, last_sync, status, platform, updated_at
        FROM devices
        ORDER BY device_id ASC
        """
    ).fetchall()
    return [
        DeviceCursor(
            device_id=str(row["device_id"]),
            device_name=row["device_name"],
            last_sync=row["last_sync"],
            status=str(row["status"] or "offline"),
            platform=row["platform"],
            updated_at=row["updated_at"],
        )
        for row in rows
    ]
