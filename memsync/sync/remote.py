from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..addresses import Address
from ..errors import RemoteUnavailable
from ..store import utils as store_utils

LOGS_COLLECTION = "logs"


@dataclass
class RemoteDocument:
    collection: str
    doc_path: str
    data: dict[str, Any]

    @property
    def updated_at(self) -> str:
        return store_utils.normalize_timestamp(self.data.get("updated_at"))

    def to_dict(self) -> dict[str, Any]:
        return {"collection": self.collection, "doc_path": self.doc_path, "data": self.data}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RemoteDocument:
        data = payload.get("data")
        return cls(
            collection=str(payload.get("collection") or ""),
            doc_path=str(payload.get("doc_path") or ""),
            data=dict(data) if isinstance(data, dict) else {},
        )


class RemoteStore(Protocol):
    """Authoritative document store shared by all devices."""

    def merge_write(self, address: Address, fields: dict[str, Any]) -> None: ...

    def read(self, address: Address) -> dict[str, Any] | None: ...

    def query_updated_since(self, collection: str, since: str) -> list[RemoteDocument]: ...

    def delete(self, address: Address) -> None: ...

    def append_log(self, record: dict[str, Any]) -> None: ...


def merge_fields(existing: dict[str, Any] | None, fields: dict[str, Any]) -> dict[str, Any]:
    merged = dict(existing or {})
    merged.update(fields)
    merged["updated_at"] = store_utils.normalize_timestamp(
        fields.get("updated_at"), default=store_utils.now_iso()
    )
    return merged


def sort_updated_since(documents: Iterable[RemoteDocument], since: str) -> list[RemoteDocument]:
    """Documents strictly newer than `since`, oldest first."""

    since_dt = store_utils.parse_iso8601(since) or store_utils.parse_iso8601(store_utils.EPOCH)
    assert since_dt is not None
    selected = []
    for doc in documents:
        updated = store_utils.parse_iso8601(doc.updated_at)
        if updated is None or updated <= since_dt:
            continue
        selected.append((updated, doc.doc_path, doc))
    selected.sort(key=lambda item: (item[0], item[1]))
    return [doc for _, _, doc in selected]


@dataclass
class InMemoryRemoteStore:
    """Process-local remote, used by tests and for trying the engine without a server.

    Set `offline` to make every call fail, or list operation names in
    `failing` to make only those fail.
    """

    documents: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    logs: list[dict[str, Any]] = field(default_factory=list)
    offline: bool = False
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _check(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        if self.offline or operation in self.failing:
            raise RemoteUnavailable(f"remote unavailable: {operation} {target}")

    def merge_write(self, address: Address, fields: dict[str, Any]) -> None:
        self._check("merge_write", address.doc_path)
        key = (address.collection, address.doc_path)
        with self._lock:
            self.documents[key] = merge_fields(self.documents.get(key), copy.deepcopy(fields))

    def read(self, address: Address) -> dict[str, Any] | None:
        self._check("read", address.doc_path)
        with self._lock:
            doc = self.documents.get((address.collection, address.doc_path))
            return copy.deepcopy(doc) if doc is not None else None

    def query_updated_since(self, collection: str, since: str) -> list[RemoteDocument]:
        self._check("query_updated_since", collection)
        with self._lock:
            docs = [
                RemoteDocument(coll, path, copy.deepcopy(data))
                for (coll, path), data in self.documents.items()
                if coll == collection
            ]
        return sort_updated_since(docs, since)

    def delete(self, address: Address) -> None:
        self._check("delete", address.doc_path)
        with self._lock:
            self.documents.pop((address.collection, address.doc_path), None)

    def append_log(self, record: dict[str, Any]) -> None:
        self._check("append_log", LOGS_COLLECTION)
        with self._lock:
            self.logs.append(copy.deepcopy(record))

    def put(self, address: Address, data: dict[str, Any]) -> None:
        """Replace a document outright, bypassing failure injection."""

        with self._lock:
            self.documents[(address.collection, address.doc_path)] = merge_fields(
                None, copy.deepcopy(data)
            )
