from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/memsync/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "device_id": "MEMSYNC_DEVICE_ID",
    "device_name": "MEMSYNC_DEVICE_NAME",
    "actor": "MEMSYNC_ACTOR",
    "remote_url": "MEMSYNC_REMOTE_URL",
    "remote_token": "MEMSYNC_REMOTE_TOKEN",
    "remote_timeout_s": "MEMSYNC_REMOTE_TIMEOUT_S",
    "sync_interval_s": "MEMSYNC_SYNC_INTERVAL_S",
    "status_sample_limit": "MEMSYNC_STATUS_SAMPLE_LIMIT",
    "remote_host": "MEMSYNC_REMOTE_HOST",
    "remote_port": "MEMSYNC_REMOTE_PORT",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MEMSYNC_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MemsyncConfig:
    device_id: str | None = None
    device_name: str | None = None
    actor: str | None = None
    # No remote configured means every write is queued until one is set.
    remote_url: str | None = None
    remote_token: str | None = None
    remote_timeout_s: float = 5.0
    sync_interval_s: int = 60
    status_sample_limit: int = 20
    remote_host: str = "127.0.0.1"
    remote_port: int = 4000


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed <= 0:
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def load_config(path: Path | None = None) -> MemsyncConfig:
    cfg = MemsyncConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: MemsyncConfig, data: dict[str, Any]) -> MemsyncConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in {"sync_interval_s", "status_sample_limit", "remote_port"}:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key == "remote_timeout_s":
            cfg.remote_timeout_s = _parse_float(value, cfg.remote_timeout_s, key=key)
            continue
        if key in {"device_id", "device_name", "actor", "remote_url", "remote_token"}:
            setattr(cfg, key, _coerce_optional_str(value))
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: MemsyncConfig) -> MemsyncConfig:
    cfg.device_id = _coerce_optional_str(os.getenv("MEMSYNC_DEVICE_ID")) or cfg.device_id
    cfg.device_name = _coerce_optional_str(os.getenv("MEMSYNC_DEVICE_NAME")) or cfg.device_name
    cfg.actor = _coerce_optional_str(os.getenv("MEMSYNC_ACTOR")) or cfg.actor
    cfg.remote_url = _coerce_optional_str(os.getenv("MEMSYNC_REMOTE_URL")) or cfg.remote_url
    cfg.remote_token = _coerce_optional_str(os.getenv("MEMSYNC_REMOTE_TOKEN")) or cfg.remote_token
    cfg.remote_timeout_s = _parse_float(
        os.getenv("MEMSYNC_REMOTE_TIMEOUT_S"), cfg.remote_timeout_s, key="remote_timeout_s"
    )
    cfg.sync_interval_s = _parse_int(
        os.getenv("MEMSYNC_SYNC_INTERVAL_S"), cfg.sync_interval_s, key="sync_interval_s"
    )
    cfg.status_sample_limit = _parse_int(
        os.getenv("MEMSYNC_STATUS_SAMPLE_LIMIT"),
        cfg.status_sample_limit,
        key="status_sample_limit",
    )
    cfg.remote_host = os.getenv("MEMSYNC_REMOTE_HOST", cfg.remote_host)
    cfg.remote_port = _parse_int(
        os.getenv("MEMSYNC_REMOTE_PORT"), cfg.remote_port, key="remote_port"
    )
    return cfg
