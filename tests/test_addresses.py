import pytest

from memsync.addresses import (
    GlobalAddress,
    ProjectAddress,
    address_for,
    address_from_path,
)
from memsync.errors import Malformed


def test_global_scope_maps_to_global_collection() -> None:
    address = address_for("global", "theme")

    assert address == GlobalAddress("theme")
    assert address.collection == "global_memory"
    assert address.doc_path == "theme"
    assert address.scope == "global"


def test_project_scope_maps_to_entries_subcollection() -> None:
    address = address_for("my-app", "db-url")

    assert address == ProjectAddress("my-app", "db-url")
    assert address.collection == "project_memory"
    assert address.doc_path == "my-app/entries/db-url"
    assert address.scope == "my-app"


def test_address_from_path_round_trips_and_accepts_legacy_paths() -> None:
    assert address_from_path("global_memory", "theme") == GlobalAddress("theme")
    assert address_from_path("project_memory", "my-app/entries/k") == ProjectAddress("my-app", "k")
    assert address_from_path("project_memory", "my-app/k") == ProjectAddress("my-app", "k")


@pytest.mark.parametrize(
    ("collection", "doc_path"),
    [
        ("global_memory", "a/b"),
        ("global_memory", ""),
        ("project_memory", "only-project"),
        ("project_memory", "p/other/k"),
        ("project_memory", "global/entries/k"),
        ("logs", "x"),
    ],
)
def test_address_from_path_rejects_bad_paths(collection: str, doc_path: str) -> None:
    with pytest.raises(Malformed):
        address_from_path(collection, doc_path)
