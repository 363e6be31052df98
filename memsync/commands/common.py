from __future__ import annotations

import getpass
import json
import socket
from typing import Any, NoReturn

import typer
from rich import print
from rich.markup import escape

from ..config import MemsyncConfig, load_config
from ..db import resolve_db_path
from ..service import MemoryService
from ..store import MemoryStore
from ..sync.http_client import remote_from_config


def store_from_path(db_path: str | None) -> MemoryStore:
    cfg = load_config()
    return MemoryStore(resolve_db_path(db_path), device_id=cfg.device_id)


def service_from_path(db_path: str | None) -> MemoryService:
    cfg = load_config()
    store = MemoryStore(resolve_db_path(db_path), device_id=cfg.device_id)
    return MemoryService(
        store,
        remote_from_config(cfg),
        status_sample_limit=cfg.status_sample_limit,
    )


def resolve_actor(actor: str | None, cfg: MemsyncConfig | None = None) -> str:
    if actor:
        return actor
    cfg = cfg or load_config()
    if cfg.actor:
        return cfg.actor
    return getpass.getuser()


def resolve_device_name(cfg: MemsyncConfig) -> str:
    return cfg.device_name or socket.gethostname()


def parse_value(raw: str) -> Any:
    """CLI values are JSON when they parse as JSON, plain strings otherwise."""

    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def fail(message: str) -> NoReturn:
    print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(code=1)
