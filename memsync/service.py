from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any
from uuid import uuid4

from .addresses import Address, address_for
from .errors import NotFound, RemoteUnavailable
from .store import MemoryEntry, MemoryStore
from .store import utils as store_utils
from .store.audit import remote_record
from .sync.engine import SyncEngine, sync_status
from .sync.remote import RemoteStore

logger = logging.getLogger(__name__)

OP_SET = "set"
OP_DELETE = "delete"
OP_RESTORE = "restore"

_SYNCED_STATUS = {OP_SET: "synced", OP_DELETE: "deleted", OP_RESTORE: "restored"}
_QUEUED_STATUS = {OP_SET: "queued", OP_DELETE: "queued-delete", OP_RESTORE: "queued-restore"}
_OUTBOX_OPERATION = {OP_SET: "SET", OP_DELETE: "TOMBSTONE", OP_RESTORE: "SET"}
_AUDIT_ACTION = {OP_SET: "SET", OP_DELETE: "DELETE", OP_RESTORE: "RESTORE"}

REMOTE_NOT_CONFIGURED = "remote not configured"


@dataclass(frozen=True)
class Synced:
    scope: str
    key: str
    revision: int
    operation: str

    @property
    def status(self) -> str:
        return _SYNCED_STATUS[self.operation]

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "status": self.status}


@dataclass(frozen=True)
class Queued:
    scope: str
    key: str
    revision: int
    operation: str
    reason: str

    @property
    def status(self) -> str:
        return _QUEUED_STATUS[self.operation]

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "status": self.status}


WriteResult = Synced | Queued


@dataclass
class SweepResult:
    infection_id: str
    results: list[WriteResult] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "infection_id": self.infection_id,
            "results": [result.to_dict() for result in self.results],
            "missing": list(self.missing),
        }


class MemoryService:
    """Caller-facing operations: local write first, then remote or outbox."""

    def __init__(
        self,
        store: MemoryStore,
        remote: RemoteStore | None = None,
        engine: SyncEngine | None = None,
        *,
        status_sample_limit: int = 20,
    ) -> None:
        self.store = store
        if engine is None and remote is not None:
            engine = SyncEngine(store, remote, status_sample_limit=status_sample_limit)
        self.engine = engine
        self.remote = remote if remote is not None else (engine.remote if engine else None)
        self.status_sample_limit = status_sample_limit

    def _require_engine(self) -> SyncEngine:
        if self.engine is None:
            raise RemoteUnavailable(REMOTE_NOT_CONFIGURED)
        return self.engine

    def _propagate(
        self, address: Address, operation: str, revision: int, actor: str | None
    ) -> WriteResult:
        entry = self.store.find_entry(address.scope, address.key)
        assert entry is not None
        payload = entry.to_dict()
        reason: str | None = None
        if self.engine is None:
            reason = REMOTE_NOT_CONFIGURED
        else:
            try:
                self.engine.write_through(address, payload)
            except Exception as exc:
                reason = str(exc).strip() or exc.__class__.__name__
                logger.warning(
                    "remote write failed for %s/%s, queued: %s",
                    address.collection,
                    address.doc_path,
                    reason,
                )
        result: WriteResult
        if reason is None:
            result = Synced(address.scope, address.key, revision, operation)
        else:
            self.store.enqueue(
                address.collection, address.doc_path, _OUTBOX_OPERATION[operation], payload
            )
            result = Queued(address.scope, address.key, revision, operation, reason)
        self._audit(address, operation, actor, entry, result)
        return result

    def _audit(
        self,
        address: Address,
        operation: str,
        actor: str | None,
        entry: MemoryEntry,
        result: WriteResult,
    ) -> None:
        details: dict[str, Any] = {"revision": entry.revision, "status": result.status}
        if operation == OP_DELETE:
            details["reason"] = entry.delete_reason
            if entry.infection_id:
                details["infection_id"] = entry.infection_id
        record = self.store.log_audit(
            _AUDIT_ACTION[operation], address.collection, address.doc_path, actor, details
        )
        if self.remote is None:
            return
        try:
            self.remote.append_log(remote_record(record))
        except Exception as exc:
            logger.warning("audit mirror failed for %s: %s", address.doc_path, exc)

    def set_entry(self, scope: str, key: str, value: Any, actor: str | None) -> WriteResult:
        address = address_for(scope, key)
        store_utils.dump_value(value)
        revision = self.store.set_entry(address.scope, address.key, value, actor=actor)
        return self._propagate(address, OP_SET, revision, actor)

    def delete_entry(
        self,
        scope: str,
        key: str,
        reason: str | None,
        actor: str | None,
        infection_id: str | None = None,
    ) -> WriteResult:
        address = address_for(scope, key)
        revision = self.store.tombstone_entry(
            address.scope,
            address.key,
            actor=actor,
            reason=reason,
            infection_id=infection_id,
        )
        return self._propagate(address, OP_DELETE, revision, actor)

    def restore_entry(self, scope: str, key: str, actor: str | None) -> WriteResult:
        address = address_for(scope, key)
        revision = self.store.restore_entry(address.scope, address.key, actor=actor)
        return self._propagate(address, OP_RESTORE, revision, actor)

    def get_entry(self, scope: str, key: str, include_deleted: bool = False) -> MemoryEntry:
        return self.store.get_entry(scope, key, include_deleted=include_deleted)

    def list_entries(self, scope: str, include_deleted: bool = False) -> list[MemoryEntry]:
        return self.store.list_entries(scope, include_deleted=include_deleted)

    def sweep(
        self, scope: str, keys: Iterable[str], reason: str | None, actor: str | None
    ) -> SweepResult:
        """Tombstone a batch of keys under one shared infection id."""

        addresses = [address_for(scope, key) for key in keys]
        result = SweepResult(infection_id=str(uuid4()))
        for address in addresses:
            try:
                write = self.delete_entry(
                    address.scope,
                    address.key,
                    reason,
                    actor,
                    infection_id=result.infection_id,
                )
            except NotFound:
                result.missing.append(address.key)
                continue
            result.results.append(write)
        return result

    def trigger_push(self) -> dict[str, int]:
        return self._require_engine().push()

    def trigger_pull(self, device_id: str | None = None) -> dict[str, Any]:
        return self._require_engine().pull(device_id)

    def get_sync_status(self) -> dict[str, Any]:
        if self.engine is not None:
            return self.engine.status()
        return sync_status(self.store, self.status_sample_limit)

    def retry_dead_letters(self) -> dict[str, int]:
        return self._require_engine().retry_dead_letters()

    def close(self) -> None:
        close_remote = getattr(self.remote, "close", None)
        if callable(close_remote):
            close_remote()
        self.store.close()
