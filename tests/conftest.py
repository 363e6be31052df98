from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from memsync.config import CONFIG_ENV_OVERRIDES
from memsync.store import MemoryStore
from memsync.sync.remote import InMemoryRemoteStore


@pytest.fixture(autouse=True)
def _isolate_memsync_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv("MEMSYNC_DB", raising=False)
    monkeypatch.delenv("MEMSYNC_REMOTE_DB", raising=False)
    monkeypatch.setenv("MEMSYNC_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def store(tmp_path: Path) -> Iterator[MemoryStore]:
    store = MemoryStore(tmp_path / "mem.sqlite", device_id="device-a")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()
