from __future__ import annotations

from dataclasses import dataclass

from .errors import Malformed
from .store.utils import GLOBAL_SCOPE, validate_key, validate_scope

GLOBAL_COLLECTION = "global_memory"
PROJECT_COLLECTION = "project_memory"
PROJECT_ENTRIES = "entries"
COLLECTIONS = (GLOBAL_COLLECTION, PROJECT_COLLECTION)


@dataclass(frozen=True)
class GlobalAddress:
    key: str

    @property
    def scope(self) -> str:
        return GLOBAL_SCOPE

    @property
    def collection(self) -> str:
        return GLOBAL_COLLECTION

    @property
    def doc_path(self) -> str:
        return self.key


@dataclass(frozen=True)
class ProjectAddress:
    project_id: str
    key: str

    @property
    def scope(self) -> str:
        return self.project_id

    @property
    def collection(self) -> str:
        return PROJECT_COLLECTION

    @property
    def doc_path(self) -> str:
        return f"{self.project_id}/{PROJECT_ENTRIES}/{self.key}"


Address = GlobalAddress | ProjectAddress


def address_for(scope: str, key: str) -> Address:
    scope = validate_scope(scope)
    key = validate_key(key)
    if scope == GLOBAL_SCOPE:
        return GlobalAddress(key)
    return ProjectAddress(scope, key)


def address_from_path(collection: str, doc_path: str) -> Address:
    """Parse a stored (collection, doc_path) pair back into an address.

    Project paths are `project/entries/key`; the older `project/key` form
    written by audit rows is accepted too.
    """

    parts = [part for part in doc_path.split("/") if part]
    if collection == GLOBAL_COLLECTION:
        if len(parts) != 1:
            raise Malformed(f"invalid global doc path: {doc_path!r}")
        return GlobalAddress(validate_key(parts[0]))
    if collection == PROJECT_COLLECTION:
        if parts and parts[0] == GLOBAL_SCOPE:
            raise Malformed(f"project id cannot be {GLOBAL_SCOPE!r}")
        if len(parts) == 3 and parts[1] == PROJECT_ENTRIES:
            return ProjectAddress(validate_scope(parts[0]), validate_key(parts[2]))
        if len(parts) == 2:
            return ProjectAddress(validate_scope(parts[0]), validate_key(parts[1]))
        raise Malformed(f"invalid project doc path: {doc_path!r}")
    raise Malformed(f"unknown collection: {collection!r}")
