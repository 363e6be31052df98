import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from memsync import __version__
from memsync.cli import app
from memsync.store import MemoryStore

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "mem.sqlite"
    monkeypatch.setenv("MEMSYNC_DB", str(path))
    monkeypatch.setenv("MEMSYNC_DEVICE_ID", "device-cli")
    monkeypatch.setenv("MEMSYNC_ACTOR", "tester")
    return path


def test_init_db_creates_database(db_path: Path) -> None:
    result = runner.invoke(app, ["init-db"])

    assert result.exit_code == 0
    assert "Initialized database" in result.stdout
    assert db_path.exists()


def test_set_and_get(db_path: Path) -> None:
    result = runner.invoke(app, ["set", "global", "prefs", '{"theme": "dark"}'])
    assert result.exit_code == 0
    assert "queued" in result.stdout

    result = runner.invoke(app, ["get", "global", "prefs"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["value"] == {"theme": "dark"}
    assert payload["revision"] == 1
    assert payload["updated_by"] == "tester"
    assert payload["source_device_id"] == "device-cli"


def test_set_plain_text_value(db_path: Path) -> None:
    runner.invoke(app, ["set", "proj", "note", "remember the milk"])

    store = MemoryStore(db_path)
    try:
        assert store.get_entry("proj", "note").value == "remember the milk"
    finally:
        store.close()


def test_delete_and_restore(db_path: Path) -> None:
    runner.invoke(app, ["set", "proj", "k", "1"])

    result = runner.invoke(app, ["delete", "proj", "k", "--reason", "cleanup"])
    assert result.exit_code == 0
    assert "queued-delete" in result.stdout

    result = runner.invoke(app, ["get", "proj", "k"])
    assert result.exit_code == 1
    assert "not found" in result.stdout

    result = runner.invoke(app, ["get", "proj", "k", "--include-deleted"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["deleted"] is True

    result = runner.invoke(app, ["restore", "proj", "k"])
    assert result.exit_code == 0
    assert "queued-restore" in result.stdout
    assert "r3" in result.stdout


def test_delete_unknown_key_fails(db_path: Path) -> None:
    result = runner.invoke(app, ["delete", "proj", "ghost"])

    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_invalid_key_fails(db_path: Path) -> None:
    result = runner.invoke(app, ["set", "global", "a/b", "1"])

    assert result.exit_code == 1
    assert "invalid key" in result.stdout


def test_list_entries_and_scopes(db_path: Path) -> None:
    runner.invoke(app, ["set", "proj", "b", "2"])
    runner.invoke(app, ["set", "proj", "a", "1"])
    runner.invoke(app, ["set", "global", "g", "0"])
    runner.invoke(app, ["delete", "proj", "b"])

    result = runner.invoke(app, ["list", "proj"])
    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert lines == ["a r1 1"]

    result = runner.invoke(app, ["list", "proj", "--include-deleted"])
    assert "(deleted)" in result.stdout

    result = runner.invoke(app, ["list"])
    assert result.stdout.split() == ["global", "proj"]


def test_sweep(db_path: Path) -> None:
    runner.invoke(app, ["set", "proj", "a", "1"])
    runner.invoke(app, ["set", "proj", "b", "2"])

    result = runner.invoke(app, ["sweep", "proj", "a", "b", "ghost", "--reason", "injection"])

    assert result.exit_code == 0
    assert "infection_id=" in result.stdout
    assert result.stdout.count("queued-delete") == 2
    assert "missing" in result.stdout


def test_audit_lists_recent_actions(db_path: Path) -> None:
    runner.invoke(app, ["set", "proj", "a", "1"])
    runner.invoke(app, ["delete", "proj", "a", "--reason", "cleanup"])

    result = runner.invoke(app, ["audit", "--limit", "1"])

    assert result.exit_code == 0
    assert "DELETE" in result.stdout
    assert "SET" not in result.stdout


def test_audit_history_for_one_entry(db_path: Path) -> None:
    runner.invoke(app, ["set", "proj", "a", "1"])
    runner.invoke(app, ["set", "proj", "b", "2"])
    runner.invoke(app, ["delete", "proj", "a", "--reason", "cleanup"])

    result = runner.invoke(app, ["audit", "--scope", "proj", "--key", "a"])

    assert result.exit_code == 0
    assert result.stdout.count("project_memory/proj/entries/a") == 2
    assert result.stdout.index(" SET ") < result.stdout.index(" DELETE ")
    assert "proj/entries/b" not in result.stdout


def test_audit_filter_needs_scope_and_key(db_path: Path) -> None:
    result = runner.invoke(app, ["audit", "--scope", "proj"])

    assert result.exit_code == 1
    assert "--scope and --key" in result.stdout


def test_version() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout
