"""JSON over loopback HTTP, used to reach a running worker daemon."""

from __future__ import annotations

import json
from http.client import HTTPConnection, HTTPSConnection
from typing import Any
from urllib.parse import SplitResult, urlsplit

DEFAULT_WORKER_PORT = 7341
_SNIPPET_BYTES = 240


def build_base_url(address: str, *, default_port: int = DEFAULT_WORKER_PORT) -> str:
    """Normalize ``host``, ``host:port`` or a full URL to a base URL without a trailing slash."""
    address = address.strip().rstrip("/")
    if not address:
        return ""
    if "://" in address:
        return address
    if ":" not in address.rsplit("]", 1)[-1]:
        address = f"{address}:{default_port}"
    return f"http://{address}"


def _open(target: SplitResult, timeout_s: float) -> HTTPConnection:
    if not target.hostname:
        raise ValueError("missing hostname")
    if target.scheme == "https":
        return HTTPSConnection(target.hostname, target.port or 443, timeout=timeout_s)
    return HTTPConnection(target.hostname, target.port or 80, timeout=timeout_s)


def _decode(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        snippet = raw[:_SNIPPET_BYTES].decode("utf-8", errors="replace").strip()
        return {"error": f"non_json_response: {snippet}" if snippet else "non_json_response"}
    if isinstance(payload, dict):
        return payload
    return {"error": f"unexpected_json_type: {type(payload).__name__}"}


def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: dict[str, Any] | None = None,
    timeout_s: float = 5.0,
) -> tuple[int, dict[str, Any] | None]:
    """Send one request and return ``(status, decoded body)``."""
    target = urlsplit(url)
    conn = _open(target, timeout_s)
    path = target.path or "/"
    if target.query:
        path = f"{path}?{target.query}"
    encoded = None if body is None else json.dumps(body, ensure_ascii=False).encode("utf-8")
    sent_headers = {"Accept": "application/json"}
    if encoded is not None:
        sent_headers.update({"Content-Type": "application/json", "Content-Length": str(len(encoded))})
    sent_headers.update(headers or {})
    try:
        conn.request(method, path, body=encoded, headers=sent_headers)
        response = conn.getresponse()
        return int(response.status), _decode(response.read())
    finally:
        conn.close()


def post_message(
    base_url: str,
    message: dict[str, Any],
    *,
    origin: str | None = None,
    timeout_s: float = 5.0,
) -> tuple[int, dict[str, Any] | None]:
    """Deliver a runtime message; with ``origin`` it goes through the external endpoint."""
    if origin:
        return request_json(
            "POST",
            f"{base_url}/v1/messages",
            headers={"Origin": origin},
            body={"message": message},
            timeout_s=timeout_s,
        )
    return request_json(
        "POST", f"{base_url}/v1/runtime", body={"message": message}, timeout_s=timeout_s
    )
