from __future__ import annotations

import datetime as dt
import json
import re
from typing import Any

from ..errors import Malformed

GLOBAL_SCOPE = "global"
EPOCH = "1970-01-01T00:00:00+00:00"

# Scopes and keys become remote path segments, so slashes and dot segments
# are not allowed.
_SEGMENT_RE = re.compile(r"^[^/\s][^/]{0,255}$")
_DOT_SEGMENTS = frozenset({".", ".."})


def _is_segment(value: str) -> bool:
    return bool(_SEGMENT_RE.match(value)) and value not in _DOT_SEGMENTS


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def normalize_timestamp(value: str | None, default: str = EPOCH) -> str:
    """Return an ISO-8601 UTC string comparable with now_iso() output."""

    parsed = parse_iso8601(value or "")
    if parsed is None:
        return default
    return parsed.isoformat()


def validate_scope(scope: object) -> str:
    if not isinstance(scope, str) or not _is_segment(scope.strip()):
        raise Malformed(f"invalid scope: {scope!r}")
    return scope.strip()


def validate_key(key: object) -> str:
    if not isinstance(key, str) or not _is_segment(key.strip()):
        raise Malformed(f"invalid key: {key!r}")
    return key.strip()


def dump_value(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise Malformed(f"value is not JSON serializable: {exc}") from exc
