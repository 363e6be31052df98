from __future__ import annotations

import datetime as dt
import logging
import threading
import traceback
from pathlib import Path
from typing import Any

from .. import db
from ..config import load_config
from ..store import MemoryStore
from .engine import SyncEngine
from .http_client import remote_from_config
from .remote import RemoteStore

logger = logging.getLogger(__name__)


def sync_agent_tick(
    store: MemoryStore, remote: RemoteStore, *, device_id: str | None = None
) -> dict[str, Any]:
    """One agent cycle: drain the outbox, then pull remote changes."""

    engine = SyncEngine(store, remote)
    pushed = engine.push()
    pulled = engine.pull(device_id)
    return {"push": pushed, "pull": pulled}


def run_sync_agent(
    interval_s: int,
    *,
    db_path: Path | str | None = None,
    stop_event: threading.Event | None = None,
    remote: RemoteStore | None = None,
    device_id: str | None = None,
) -> None:
    cfg = load_config()
    if remote is None:
        remote = remote_from_config(cfg)
    if remote is None:
        raise ValueError("remote_url is not configured")
    path = db.resolve_db_path(db_path)
    setup = MemoryStore(path, device_id=device_id or cfg.device_id, check_same_thread=False)
    try:
        device_id = setup.device_id
        setup.register_device(device_id, name=cfg.device_name, status="online")
    finally:
        setup.close()
    logger.info("sync agent started for device %s every %ss", device_id, interval_s)
    stop = stop_event or threading.Event()
    while True:
        store = MemoryStore(path, device_id=device_id, check_same_thread=False)
        try:
            result = sync_agent_tick(store, remote, device_id=device_id)
            if not result["pull"].get("ok"):
                _append_sync_agent_log(f"pull failed: {result['pull'].get('error')}")
        except Exception:
            logger.exception("sync agent tick failed")
            _append_sync_agent_log(traceback.format_exc())
        finally:
            store.close()
        if stop.wait(interval_s):
            break
    logger.info("sync agent stopped")


def _append_sync_agent_log(message: str) -> None:
    try:
        log_dir = Path.home() / ".memsync"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "sync-agent.log"
        ts = dt.datetime.now(dt.UTC).isoformat()
        with log_path.open("a", encoding="utf-8", errors="ignore") as handle:
            handle.write(f"\n[{ts}]\n{message}\n")
    except OSError:
        logger.debug("could not write sync agent log", exc_info=True)
