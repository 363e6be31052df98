from pathlib import Path

import pytest

from memsync.addresses import GlobalAddress, ProjectAddress, address_for
from memsync.errors import NotFound
from memsync.store import MemoryStore
from memsync.store import utils as store_utils
from memsync.sync.engine import SyncEngine, is_stale_write, should_apply_remote
from memsync.sync.remote import InMemoryRemoteStore


def _snapshot(store: MemoryStore, scope: str, key: str) -> dict:
    entry = store.find_entry(scope, key)
    assert entry is not None
    return entry.to_dict()


def _enqueue_snapshot(store: MemoryStore, scope: str, key: str, operation: str = "SET") -> int:
    address = address_for(scope, key)
    return store.enqueue(
        address.collection, address.doc_path, operation, _snapshot(store, scope, key)
    )


def test_push_writes_pending_items_in_order(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    store.set_entry("global", "a", 1, actor=None)
    _enqueue_snapshot(store, "global", "a")
    store.set_entry("proj", "b", 2, actor=None)
    _enqueue_snapshot(store, "proj", "b")

    result = SyncEngine(store, remote).push()

    assert result == {"synced": 2, "failed": 0, "remaining": 0}
    assert remote.documents[("global_memory", "a")]["value"] == 1
    doc = remote.documents[("project_memory", "proj/entries/b")]
    assert doc["value"] == 2
    assert doc["revision"] == 1
    writes = [target for op, target in remote.calls if op == "merge_write"]
    assert writes == ["a", "proj/entries/b"]


def test_push_failure_counts_retry_and_keeps_item(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    store.set_entry("global", "a", 1, actor=None)
    item_id = _enqueue_snapshot(store, "global", "a")
    remote.offline = True

    result = SyncEngine(store, remote).push()

    assert result == {"synced": 0, "failed": 1, "remaining": 1}
    item = store.outbox_item(item_id)
    assert item is not None
    assert item.retry_count == 1
    assert "unavailable" in (item.last_error or "")


def test_scenario_dead_letter_then_retry(store: MemoryStore, remote: InMemoryRemoteStore) -> None:
    for value in ("v1", "v2", "v3"):
        store.set_entry("global", "k", value, actor=None)
    _enqueue_snapshot(store, "global", "k")
    engine = SyncEngine(store, remote)

    remote.offline = True
    for _ in range(5):
        engine.push()

    status = engine.status()
    assert status["dead_letters"] == 1
    assert status["pending"] == 0
    assert status["dead_letter_items"][0]["retry_count"] == 5

    remote.offline = False
    retried = engine.retry_dead_letters()

    assert retried == {"retried": 1, "total": 1, "failed": 0}
    assert engine.status()["dead_letters"] == 0
    assert remote.documents[("global_memory", "k")]["revision"] == 3
    assert remote.documents[("global_memory", "k")]["value"] == "v3"


def test_retry_dead_letters_failure_stays_dead(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    store.set_entry("global", "k", "v", actor=None)
    item_id = _enqueue_snapshot(store, "global", "k")
    for _ in range(5):
        store.mark_failed(item_id, "offline")
    remote.offline = True

    result = SyncEngine(store, remote).retry_dead_letters()

    assert result == {"retried": 0, "total": 1, "failed": 1}
    item = store.outbox_item(item_id)
    assert item is not None
    assert item.dead_letter is True
    assert item.retry_count == 6


def test_push_skips_when_remote_is_newer(store: MemoryStore, remote: InMemoryRemoteStore) -> None:
    store.set_entry("global", "k", "old", actor=None)
    item_id = _enqueue_snapshot(store, "global", "k")
    remote.put(GlobalAddress("k"), {"value": "newer", "revision": 5, "deleted": False})

    result = SyncEngine(store, remote).push()

    assert result["synced"] == 1
    assert remote.documents[("global_memory", "k")]["value"] == "newer"
    assert not [call for call in remote.calls if call[0] == "merge_write"]
    item = store.outbox_item(item_id)
    assert item is not None and item.synced is True


def test_push_never_revives_remote_tombstone_at_same_revision(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    store.set_entry("global", "k", "live", actor=None)
    _enqueue_snapshot(store, "global", "k")
    remote.put(GlobalAddress("k"), {"value": "live", "revision": 1, "deleted": True})

    SyncEngine(store, remote).push()

    assert remote.documents[("global_memory", "k")]["deleted"] is True


def test_push_replay_is_idempotent(store: MemoryStore, remote: InMemoryRemoteStore) -> None:
    store.set_entry("global", "k", {"a": 1}, actor=None)
    _enqueue_snapshot(store, "global", "k")
    _enqueue_snapshot(store, "global", "k")
    engine = SyncEngine(store, remote)

    assert engine.push() == {"synced": 2, "failed": 0, "remaining": 0}
    doc = remote.documents[("global_memory", "k")]
    assert doc["value"] == {"a": 1}
    assert doc["revision"] == 1
    assert engine.push() == {"synced": 0, "failed": 0, "remaining": 0}


def test_push_delete_operation_removes_document(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    remote.put(ProjectAddress("proj", "k"), {"value": "x", "revision": 1})
    store.enqueue("project_memory", "proj/entries/k", "DELETE", None)

    result = SyncEngine(store, remote).push()

    assert result["synced"] == 1
    assert ("project_memory", "proj/entries/k") not in remote.documents


def test_push_stamps_updated_at(store: MemoryStore, remote: InMemoryRemoteStore) -> None:
    store.set_entry("global", "k", "v", actor=None)
    queued_at = store.get_entry("global", "k").updated_at
    _enqueue_snapshot(store, "global", "k")

    SyncEngine(store, remote).push()

    pushed_at = remote.documents[("global_memory", "k")]["updated_at"]
    parsed_pushed = store_utils.parse_iso8601(pushed_at)
    parsed_queued = store_utils.parse_iso8601(queued_at)
    assert parsed_pushed is not None and parsed_queued is not None
    assert parsed_pushed >= parsed_queued


def test_scenario_pull_creates_local_tombstone(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    remote.put(
        GlobalAddress("k"),
        {
            "scope": "global",
            "key": "k",
            "value": "poisoned",
            "revision": 4,
            "deleted": True,
            "delete_reason": "infected",
        },
    )

    result = SyncEngine(store, remote).pull("device-a")

    assert result["ok"] is True
    assert result["pulled"] == 1
    with pytest.raises(NotFound):
        store.get_entry("global", "k")
    entry = store.get_entry("global", "k", include_deleted=True)
    assert entry.revision == 4
    assert entry.deleted is True


def test_scenario_two_devices_converge(tmp_path: Path, remote: InMemoryRemoteStore) -> None:
    store_a = MemoryStore(tmp_path / "a.sqlite", device_id="device-a")
    store_b = MemoryStore(tmp_path / "b.sqlite", device_id="device-b")
    try:
        for store in (store_a, store_b):
            store.set_entry("proj", "k", "one", actor=None)
            store.set_entry("proj", "k", "two", actor=None)
        engine_a = SyncEngine(store_a, remote)
        engine_b = SyncEngine(store_b, remote)

        store_a.set_entry("proj", "k", "from-a", actor=None)
        _enqueue_snapshot(store_a, "proj", "k")
        engine_a.push()

        first = engine_b.pull("device-b")
        entry = store_b.get_entry("proj", "k")
        assert first["pulled"] == 1
        assert entry.revision == 3
        assert entry.value == "from-a"

        second = engine_b.pull("device-b")
        assert second["ok"] is True
        assert second["pulled"] == 0
    finally:
        store_a.close()
        store_b.close()


def test_pull_does_not_regress_newer_local(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    for value in range(5):
        store.set_entry("global", "k", value, actor=None)
    remote.put(GlobalAddress("k"), {"value": "stale", "revision": 4, "deleted": False})

    result = SyncEngine(store, remote).pull()

    assert result["skipped"] == 1
    entry = store.get_entry("global", "k")
    assert entry.revision == 5
    assert entry.value == 4


def test_pull_never_resurrects_local_tombstone(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    store.set_entry("global", "k", "v", actor=None)
    store.set_entry("global", "k", "v2", actor=None)
    store.tombstone_entry("global", "k", actor=None, reason="bad")
    remote.put(GlobalAddress("k"), {"value": "revived", "revision": 3, "deleted": False})

    SyncEngine(store, remote).pull()

    entry = store.get_entry("global", "k", include_deleted=True)
    assert entry.deleted is True
    assert entry.value == "v2"


def test_pull_applies_newer_remote_restore(store: MemoryStore, remote: InMemoryRemoteStore) -> None:
    store.set_entry("global", "k", "v", actor=None)
    store.tombstone_entry("global", "k", actor=None, reason="bad")
    remote.put(GlobalAddress("k"), {"value": "restored", "revision": 3, "deleted": False})

    SyncEngine(store, remote).pull()

    entry = store.get_entry("global", "k")
    assert entry.revision == 3
    assert entry.value == "restored"


def test_pull_failure_leaves_cursor(store: MemoryStore, remote: InMemoryRemoteStore) -> None:
    remote.put(GlobalAddress("k"), {"value": "v", "revision": 1})
    remote.failing = {"query_updated_since"}

    result = SyncEngine(store, remote).pull("device-a")

    assert result["ok"] is False
    assert "unavailable" in result["error"]
    assert result["device_id"] == "device-a"
    assert store.get_cursor("device-a") == store_utils.EPOCH
    devices = {device["device_id"]: device for device in store.list_devices()}
    assert devices["device-a"]["status"] == "error"
    assert store.find_entry("global", "k") is None


def test_pull_advances_cursor_and_marks_online(
    store: MemoryStore, remote: InMemoryRemoteStore
) -> None:
    remote.put(ProjectAddress("proj", "k"), {"value": "v", "revision": 1})

    result = SyncEngine(store, remote).pull("device-a")

    assert result == {"ok": True, "pulled": 1, "skipped": 0, "device_id": "device-a"}
    assert store.get_cursor("device-a") != store_utils.EPOCH
    devices = {device["device_id"]: device for device in store.list_devices()}
    assert devices["device-a"]["status"] == "online"
    assert store.get_entry("proj", "k").value == "v"


def test_pull_skips_unparseable_document(store: MemoryStore, remote: InMemoryRemoteStore) -> None:
    remote.documents[("project_memory", "a/b/c/d")] = {
        "value": "x",
        "revision": 1,
        "updated_at": store_utils.now_iso(),
    }

    result = SyncEngine(store, remote).pull()

    assert result["ok"] is True
    assert result["skipped"] == 1


def test_conflict_rules() -> None:
    assert should_apply_remote(None, {"revision": 1}) is True
    assert is_stale_write(None, {"revision": 1}) is False
    assert is_stale_write({"revision": 2}, {"revision": 1}) is True
    assert is_stale_write({"revision": 1, "deleted": True}, {"revision": 1}) is True
    assert is_stale_write({"revision": 1}, {"revision": 1, "deleted": True}) is False
    assert is_stale_write({"revision": 1}, {"revision": 2}) is False


class _ResettingRemote(InMemoryRemoteStore):
    def read(self, address):
        raise ConnectionError("connection reset by peer")


def test_push_records_failures_outside_the_error_hierarchy(store: MemoryStore) -> None:
    store.set_entry("global", "a", 1, actor=None)
    first = _enqueue_snapshot(store, "global", "a")
    store.set_entry("global", "b", 2, actor=None)
    second = _enqueue_snapshot(store, "global", "b")
    engine = SyncEngine(store, _ResettingRemote())

    result = engine.push()

    assert result == {"synced": 0, "failed": 2, "remaining": 2}
    for item_id in (first, second):
        item = store.outbox_item(item_id)
        assert item is not None
        assert item.retry_count == 1
        assert "connection reset" in (item.last_error or "")

    for _ in range(4):
        engine.push()
    assert engine.status()["dead_letters"] == 2
    assert engine.retry_dead_letters() == {"retried": 0, "total": 2, "failed": 2}


def test_pull_compares_inside_write_transaction(
    store: MemoryStore, remote: InMemoryRemoteStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    store.set_entry("global", "k", "local", actor=None)
    remote.put(GlobalAddress("k"), {"value": "remote", "revision": 2, "deleted": False})
    seen: list[bool] = []
    find_entry = store.find_entry

    def recording_find_entry(scope: str, key: str):
        seen.append(store.conn.in_transaction)
        return find_entry(scope, key)

    monkeypatch.setattr(store, "find_entry", recording_find_entry)

    assert SyncEngine(store, remote).pull()["pulled"] == 1
    assert seen == [True]
    assert store.conn.in_transaction is False


def test_remote_snapshot_never_lowers_revision_written_by_other_connection(
    tmp_path: Path,
) -> None:
    path = tmp_path / "shared.sqlite"
    puller = MemoryStore(path, device_id="device-a")
    writer = MemoryStore(path, device_id="device-a")
    try:
        for value in ("v1", "v2", "v3"):
            puller.set_entry("global", "k", value, actor=None)
        writer.set_entry("global", "k", "foreground", actor="alice")

        entry = puller.apply_remote_entry(
            "global", "k", {"value": "remote", "revision": 3, "deleted": False}
        )

        assert entry.revision == 4
        assert entry.value == "foreground"
        assert writer.get_entry("global", "k").value == "foreground"
    finally:
        puller.close()
        writer.close()
