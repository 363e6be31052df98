from __future__ import annotations

import logging
from typing import Any

from ..addresses import COLLECTIONS, Address, address_from_path
from ..errors import MemsyncError
from ..store import MemoryEntry, MemoryStore, SyncOutboxItem
from ..store import utils as store_utils
from .remote import RemoteStore

logger = logging.getLogger(__name__)


def _revision(data: dict[str, Any] | None) -> int:
    if not data:
        return 0
    try:
        return int(data.get("revision") or 0)
    except (TypeError, ValueError):
        return 0


def is_stale_write(remote: dict[str, Any] | None, payload: dict[str, Any]) -> bool:
    """True when the remote already holds something this payload must not overwrite."""

    if remote is None:
        return False
    remote_rev = _revision(remote)
    local_rev = _revision(payload)
    if remote_rev > local_rev:
        return True
    return remote_rev == local_rev and bool(remote.get("deleted")) and not payload.get("deleted")


def should_apply_remote(local: MemoryEntry | None, remote: dict[str, Any]) -> bool:
    """Revision comparison for one pulled document.

    A higher local revision always wins. A remote tombstone wins ties. A live
    remote value never overwrites a local tombstone at the same or a higher
    revision.
    """

    if local is None:
        return True
    remote_rev = _revision(remote)
    if local.revision > remote_rev:
        return False
    if remote.get("deleted"):
        return True
    if local.deleted and local.revision >= remote_rev:
        return False
    return True


def _error_text(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


class SyncEngine:
    def __init__(
        self,
        store: MemoryStore,
        remote: RemoteStore,
        *,
        status_sample_limit: int = 20,
    ) -> None:
        self.store = store
        self.remote = remote
        self.status_sample_limit = status_sample_limit

    def write_through(self, address: Address, payload: dict[str, Any]) -> bool:
        """Merge-write one entry snapshot unless the remote already has a newer one.

        Returns False when the write was skipped as stale. Remote failures
        propagate to the caller.
        """

        if is_stale_write(self.remote.read(address), payload):
            logger.info(
                "remote already ahead for %s/%s (revision %s)",
                address.collection,
                address.doc_path,
                payload.get("revision"),
            )
            return False
        fields = dict(payload)
        fields["updated_at"] = store_utils.now_iso()
        self.remote.merge_write(address, fields)
        return True

    def _push_item(self, item: SyncOutboxItem) -> None:
        address = address_from_path(item.collection, item.doc_path)
        if item.operation == "DELETE":
            self.remote.delete(address)
            return
        if item.payload is None:
            raise MemsyncError(f"outbox item {item.id} has no payload")
        self.write_through(address, item.payload)

    def push(self) -> dict[str, int]:
        synced = 0
        failed = 0
        for item in self.store.pending():
            try:
                self._push_item(item)
            except Exception as exc:
                failed += 1
                updated = self.store.mark_failed(item.id, _error_text(exc))
                logger.warning(
                    "push failed for %s/%s (attempt %s): %s",
                    item.collection,
                    item.doc_path,
                    updated.retry_count if updated else "?",
                    exc,
                )
                if updated is not None and updated.dead_letter:
                    logger.warning("outbox item %s moved to dead letters", item.id)
                continue
            self.store.mark_synced(item.id)
            synced += 1
        remaining = self.store.outbox_counts()["pending"]
        logger.info("push: synced=%s failed=%s remaining=%s", synced, failed, remaining)
        return {"synced": synced, "failed": failed, "remaining": remaining}

    def _apply_document(self, collection: str, doc_path: str, data: dict[str, Any]) -> bool:
        address = address_from_path(collection, doc_path)
        # Compare and write in one IMMEDIATE transaction so writers in other
        # processes cannot land between them.
        with self.store.write_transaction():
            local = self.store.find_entry(address.scope, address.key)
            if not should_apply_remote(local, data):
                return False
            self.store.apply_remote_entry(address.scope, address.key, data)
        return True

    def pull(self, device_id: str | None = None) -> dict[str, Any]:
        device_id = device_id or self.store.device_id
        since = self.store.get_cursor(device_id)
        # Captured before querying so writes landing mid-cycle are seen next time.
        cycle_started = store_utils.now_iso()
        pulled = 0
        skipped = 0
        try:
            for collection in COLLECTIONS:
                for document in self.remote.query_updated_since(collection, since):
                    try:
                        applied = self._apply_document(collection, document.doc_path, document.data)
                    except MemsyncError as exc:
                        logger.warning(
                            "skipping remote document %s/%s: %s",
                            collection,
                            document.doc_path,
                            exc,
                        )
                        skipped += 1
                        continue
                    if applied:
                        pulled += 1
                    else:
                        skipped += 1
        except Exception as exc:
            error = _error_text(exc)
            logger.warning("pull failed for device %s: %s", device_id, error)
            self.store.set_device_status(device_id, "error")
            return {
                "ok": False,
                "error": error,
                "pulled": pulled,
                "skipped": skipped,
                "device_id": device_id,
            }
        self.store.set_cursor(device_id, cycle_started, status="online")
        logger.info("pull: device=%s pulled=%s skipped=%s", device_id, pulled, skipped)
        return {"ok": True, "pulled": pulled, "skipped": skipped, "device_id": device_id}

    def status(self, sample_limit: int | None = None) -> dict[str, Any]:
        limit = self.status_sample_limit if sample_limit is None else sample_limit
        return sync_status(self.store, limit)

    def retry_dead_letters(self) -> dict[str, int]:
        items = self.store.dead_letters()
        retried = 0
        failed = 0
        for item in items:
            try:
                self._push_item(item)
            except Exception as exc:
                failed += 1
                self.store.mark_failed(item.id, _error_text(exc))
                logger.warning("dead letter %s retry failed: %s", item.id, exc)
                continue
            self.store.mark_synced(item.id)
            retried += 1
        logger.info("retry dead letters: retried=%s total=%s", retried, len(items))
        return {"retried": retried, "total": len(items), "failed": failed}


def sync_status(store: MemoryStore, sample_limit: int = 20) -> dict[str, Any]:
    """Outbox summary; reads only, so it works without a remote."""

    counts = store.outbox_counts()
    return {
        "pending": counts["pending"],
        "dead_letters": counts["dead_letters"],
        "pending_items": [item.to_dict() for item in store.pending(sample_limit)],
        "dead_letter_items": [item.to_dict() for item in store.dead_letters(sample_limit)],
    }
