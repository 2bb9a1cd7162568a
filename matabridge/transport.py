"""Runtime messaging between the content script and the background worker.

Failures are classified exactly once, here, into an :class:`ErrorKind`; callers
branch on the kind and never re-inspect error text.
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from . import http_client

if TYPE_CHECKING:
    from .worker.dispatcher import BackgroundWorker, Sender

logger = logging.getLogger(__name__)

CONTEXT_INVALIDATED_MESSAGE = "Extension context invalidated."
NO_RECEIVER_MESSAGE = "Could not establish connection. Receiving end does not exist."


class ErrorKind(StrEnum):
    CONTEXT_INVALIDATED = "CONTEXT_INVALIDATED"
    RUNTIME_UNAVAILABLE = "RUNTIME_UNAVAILABLE"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    SEND_ERROR = "SEND_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    TIMEOUT = "TIMEOUT"

    @property
    def permanent(self) -> bool:
        return self is ErrorKind.CONTEXT_INVALIDATED


class TransportError(Exception):
    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


def classify_error(exc: BaseException) -> TransportError:
    if isinstance(exc, TransportError):
        return exc
    text = str(exc).strip() or exc.__class__.__name__
    if "context invalidated" in text.lower():
        return TransportError(ErrorKind.CONTEXT_INVALIDATED, text)
    if isinstance(exc, TimeoutError):
        return TransportError(ErrorKind.TIMEOUT, text)
    if isinstance(exc, ConnectionRefusedError):
        return TransportError(ErrorKind.RUNTIME_UNAVAILABLE, text)
    return TransportError(ErrorKind.SEND_ERROR, text)


class ExtensionRuntime(Protocol):
    extension_id: str
    version: str

    def available(self) -> bool: ...

    def send_message(self, message: dict[str, Any]) -> dict[str, Any]: ...


class InProcessRuntime:
    """Runtime bound to a worker living in the same interpreter."""

    def __init__(
        self,
        worker: BackgroundWorker,
        sender: Sender,
        *,
        timeout_s: float = 5.0,
    ) -> None:
        self.worker = worker
        self.sender = sender
        self.timeout_s = timeout_s
        self.extension_id = worker.config.extension_id
        self.version = worker.config.extension_version
        self._invalidated = False
        self._lock = threading.Lock()

    def invalidate(self) -> None:
        with self._lock:
            self._invalidated = True

    def restore(self) -> None:
        with self._lock:
            self._invalidated = False

    def available(self) -> bool:
        with self._lock:
            return not self._invalidated

    def send_message(self, message: dict[str, Any]) -> dict[str, Any]:
        if not self.available():
            raise TransportError(ErrorKind.CONTEXT_INVALIDATED, CONTEXT_INVALIDATED_MESSAGE)
        if not self.worker.running:
            raise TransportError(ErrorKind.RUNTIME_ERROR, NO_RECEIVER_MESSAGE)
        done = threading.Event()
        box: dict[str, Any] = {}

        def _respond(response: dict[str, Any]) -> None:
            box["response"] = response
            done.set()

        try:
            self.worker.on_message(message, self.sender, _respond)
        except Exception as exc:
            raise classify_error(exc) from exc
        if not done.wait(self.timeout_s):
            raise TransportError(
                ErrorKind.TIMEOUT,
                f"no response within {self.timeout_s:g} seconds",
            )
        return box["response"]


class HttpRuntime:
    """Runtime that reaches a worker daemon over loopback HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        extension_id: str,
        version: str,
        timeout_s: float = 5.0,
        origin: str | None = None,
    ) -> None:
        self.base_url = http_client.build_base_url(base_url)
        self.extension_id = extension_id
        self.version = version
        self.timeout_s = timeout_s
        self.origin = origin

    def available(self) -> bool:
        return bool(self.base_url)

    def send_message(self, message: dict[str, Any]) -> dict[str, Any]:
        if not self.available():
            raise TransportError(ErrorKind.RUNTIME_UNAVAILABLE, "worker address not configured")
        try:
            status, payload = http_client.post_message(
                self.base_url, message, origin=self.origin, timeout_s=self.timeout_s
            )
        except Exception as exc:
            error = classify_error(exc)
            logger.warning("runtime send failed", extra={"kind": str(error.kind)})
            raise error from exc
        if payload is None:
            raise TransportError(ErrorKind.RUNTIME_ERROR, f"empty response ({status})")
        if status >= 500:
            raise TransportError(
                ErrorKind.RUNTIME_ERROR, str(payload.get("error") or f"worker error ({status})")
            )
        return payload
