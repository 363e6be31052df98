import json
from pathlib import Path

import pytest

from memsync.config import (
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    empty = tmp_path / "empty.json"
    empty.write_text("  \n")
    assert read_config_file(empty) == {}


def test_write_config_file_creates_parent(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    written = write_config_file({"remote_url": "http://remote"}, config_path)

    assert written == config_path
    assert json.loads(config_path.read_text()) == {"remote_url": "http://remote"}


def test_get_config_path_honors_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMSYNC_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_load_config_defaults() -> None:
    cfg = load_config()

    assert cfg.remote_url is None
    assert cfg.remote_timeout_s == 5.0
    assert cfg.sync_interval_s == 60
    assert cfg.status_sample_limit == 20
    assert cfg.remote_host == "127.0.0.1"
    assert cfg.remote_port == 4000


def test_load_config_reads_file_then_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "remote_url": "http://from-file",
                "device_name": "laptop",
                "sync_interval_s": 30,
                "remote_timeout_s": "2.5",
                "unknown_key": True,
            }
        )
    )
    monkeypatch.setenv("MEMSYNC_REMOTE_URL", "http://from-env")
    monkeypatch.setenv("MEMSYNC_STATUS_SAMPLE_LIMIT", "5")

    cfg = load_config(config_path)

    assert cfg.remote_url == "http://from-env"
    assert cfg.device_name == "laptop"
    assert cfg.sync_interval_s == 30
    assert cfg.remote_timeout_s == 2.5
    assert cfg.status_sample_limit == 5
    assert not hasattr(cfg, "unknown_key")


def test_invalid_numbers_warn_and_keep_default(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("MEMSYNC_SYNC_INTERVAL_S", "soon")
    monkeypatch.setenv("MEMSYNC_REMOTE_TIMEOUT_S", "-1")

    with pytest.warns(RuntimeWarning):
        cfg = load_config(tmp_path / "missing.json")

    assert cfg.sync_interval_s == 60
    assert cfg.remote_timeout_s == 5.0


def test_blank_strings_are_treated_as_unset(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"remote_url": "   ", "actor": ""}))

    cfg = load_config(config_path)

    assert cfg.remote_url is None
    assert cfg.actor is None


def test_get_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMSYNC_DEVICE_ID", "desk")
    monkeypatch.setenv("MEMSYNC_REMOTE_PORT", "4100")

    assert get_env_overrides() == {"device_id": "desk", "remote_port": "4100"}
