"""HTTP surface of the background worker.

``/v1/runtime`` stands in for ``chrome.runtime.sendMessage`` and only accepts
loopback clients. ``/v1/messages`` is the externally connectable channel and
checks the ``Origin`` header against the configured allow list.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import urlsplit

from .messages import MessageType, fail
from .worker.dispatcher import UNAUTHORIZED_ORIGIN, BackgroundWorker, Sender

logger = logging.getLogger(__name__)

RUNTIME_PATH = "/v1/runtime"
EXTERNAL_PATH = "/v1/messages"
STATUS_PATH = "/v1/status"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


MAX_BODY_BYTES = _env_int("MATA_BRIDGE_MAX_BODY_BYTES", 1 << 20)
LOOPBACK_HOSTS = {"127.0.0.1", "::1", "::ffff:127.0.0.1", "localhost"}

Listener = Callable[[dict[str, Any], Sender, Callable[[dict[str, Any]], None]], bool]


class _Rejected(Exception):
    def __init__(self, status: int, payload: dict[str, Any]) -> None:
        super().__init__(status)
        self.status = status
        self.payload = payload


def _write_json(handler: BaseHTTPRequestHandler, status: int, payload: dict[str, Any]) -> None:
    encoded = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(encoded)))
    handler.end_headers()
    handler.wfile.write(encoded)


def _take_body(handler: BaseHTTPRequestHandler) -> bytes:
    try:
        declared = int(handler.headers.get("Content-Length") or 0)
    except ValueError as exc:
        raise _Rejected(400, {"error": "invalid_content_length"}) from exc
    if declared > MAX_BODY_BYTES:
        raise _Rejected(413, {"error": "payload_too_large"})
    return handler.rfile.read(declared) if declared > 0 else b""


def _decode_envelope(raw: bytes) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a request body into ``(message, envelope)``.

    Clients either wrap the message as ``{"message": {...}, "sender": {...}}``
    or post the bare message object.
    """
    try:
        envelope = json.loads(raw.decode("utf-8")) if raw else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        envelope = None
    if not isinstance(envelope, dict):
        raise _Rejected(400, {"error": "invalid_json"})
    message = envelope.get("message")
    return (message if isinstance(message, dict) else envelope), envelope


def _sender_from(envelope: dict[str, Any], *, origin: str | None = None) -> Sender:
    described = envelope.get("sender")
    if not isinstance(described, dict):
        described = {}
    tab_id = described.get("tabId")
    url = described.get("url")
    return Sender(
        kind=str(described.get("kind") or ("external" if origin else "extension")),
        tab_id=tab_id if isinstance(tab_id, int) else None,
        url=url if isinstance(url, str) else None,
        origin=origin,
    )


def _await_reply(
    listener: Listener, message: dict[str, Any], sender: Sender, timeout_s: float
) -> dict[str, Any] | None:
    answered = threading.Event()
    replies: list[dict[str, Any]] = []

    def _respond(response: dict[str, Any]) -> None:
        replies.append(response)
        answered.set()

    listener(message, sender, _respond)
    return replies[0] if answered.wait(timeout_s) else None


def build_worker_handler(worker: BackgroundWorker):
    def _route(handler: BaseHTTPRequestHandler, path: str) -> tuple[Listener, Sender, dict]:
        raw = _take_body(handler)
        origin = handler.headers.get("Origin") or ""
        if path == EXTERNAL_PATH and origin not in worker.config.allowed_origins:
            logger.warning("rejected http message from %s", origin or "unknown origin")
            raise _Rejected(403, fail(UNAUTHORIZED_ORIGIN))
        if path == RUNTIME_PATH and handler.client_address[0] not in LOOPBACK_HOSTS:
            raise _Rejected(403, {"error": "forbidden"})
        message, envelope = _decode_envelope(raw)
        if path == EXTERNAL_PATH:
            return worker.on_message_external, _sender_from(envelope, origin=origin), message
        return worker.on_message, _sender_from(envelope), message

    class WorkerHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            if os.environ.get("MATA_BRIDGE_HTTP_LOGS") == "1":
                super().log_message(format, *args)

        def do_GET(self) -> None:  # noqa: N802
            if urlsplit(self.path).path != STATUS_PATH:
                _write_json(self, 404, {"error": "not_found"})
                return
            _write_json(self, 200, worker.handle({"type": str(MessageType.CHECK_EXTENSION)}))

        def do_POST(self) -> None:  # noqa: N802
            path = urlsplit(self.path).path
            if path not in (RUNTIME_PATH, EXTERNAL_PATH):
                _write_json(self, 404, {"error": "not_found"})
                return
            try:
                listener, sender, message = _route(self, path)
            except _Rejected as rejected:
                _write_json(self, rejected.status, rejected.payload)
                return
            reply = _await_reply(listener, message, sender, worker.config.message_timeout_s)
            if reply is None:
                _write_json(self, 504, fail("worker did not respond in time"))
                return
            _write_json(self, 200, reply)

    return WorkerHandler
