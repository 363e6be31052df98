from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlparse

import httpx

from ..addresses import Address
from ..config import MemsyncConfig
from ..errors import MemsyncError, RemoteUnavailable
from .remote import RemoteDocument

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = {401, 403}


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def doc_url(collection: str, doc_path: str = "") -> str:
    parts = [quote(collection, safe="")]
    parts.extend(quote(part, safe="") for part in doc_path.split("/") if part)
    return "/v1/docs/" + "/".join(parts)


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        snippet = response.text[:240].strip()
        return snippet or "non_json_response"
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return "unexpected response"


class HttpRemoteStore:
    """Remote store client for the `/v1/docs` document API."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout_s: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = build_base_url(base_url)
        if not self.base_url:
            raise ValueError("remote url is required")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    def __enter__(self) -> HttpRemoteStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> dict[str, Any] | None:
        try:
            response = self._client.request(method, path, params=params, json=body)
        except httpx.TimeoutException as exc:
            raise RemoteUnavailable(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise RemoteUnavailable(f"{method} {path} failed: {exc}") from exc
        status = response.status_code
        if status == 404 and allow_missing:
            return None
        if status >= 500 or status in UNAVAILABLE_STATUSES:
            raise RemoteUnavailable(f"{method} {path} returned {status}: {_error_detail(response)}")
        if status >= 400:
            raise MemsyncError(f"{method} {path} rejected ({status}): {_error_detail(response)}")
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise MemsyncError(f"{method} {path} returned non-json response") from exc
        if not isinstance(payload, dict):
            raise MemsyncError(f"{method} {path} returned {type(payload).__name__}")
        return payload

    def health(self) -> bool:
        payload = self._request("GET", "/v1/health")
        return bool(payload and payload.get("ok"))

    def merge_write(self, address: Address, fields: dict[str, Any]) -> None:
        self._request("PATCH", doc_url(address.collection, address.doc_path), body=fields)

    def read(self, address: Address) -> dict[str, Any] | None:
        payload = self._request(
            "GET", doc_url(address.collection, address.doc_path), allow_missing=True
        )
        if payload is None:
            return None
        data = payload.get("data")
        return dict(data) if isinstance(data, dict) else None

    def query_updated_since(self, collection: str, since: str) -> list[RemoteDocument]:
        payload = self._request("GET", doc_url(collection), params={"updated_since": since})
        items = (payload or {}).get("documents")
        if not isinstance(items, list):
            raise MemsyncError(f"query {collection} returned no documents list")
        documents = [RemoteDocument.from_dict(item) for item in items if isinstance(item, dict)]
        logger.debug("remote query %s since %s: %s documents", collection, since, len(documents))
        return documents

    def delete(self, address: Address) -> None:
        self._request(
            "DELETE", doc_url(address.collection, address.doc_path), allow_missing=True
        )

    def append_log(self, record: dict[str, Any]) -> None:
        self._request("POST", "/v1/logs", body=record)


def remote_from_config(cfg: MemsyncConfig) -> HttpRemoteStore | None:
    if not cfg.remote_url:
        return None
    return HttpRemoteStore(
        cfg.remote_url, token=cfg.remote_token, timeout_s=cfg.remote_timeout_s
    )
