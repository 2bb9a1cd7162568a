"""The background worker: owns extension storage and answers messages by type."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ..config import BridgeConfig
from ..keys import ACTIVE_USER_KEY
from ..messages import Message, MessageError, MessageType, fail, parse_message
from ..redaction import redact
from ..storage.extension import ExtensionStorage
from ..utils import call_with_timeout
from .tabs import TabRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

SendResponse = Callable[[dict[str, Any]], None]
Handler = Callable[["BackgroundWorker", Message, "Sender"], dict[str, Any]]

UNAUTHORIZED_ORIGIN = "Unauthorized origin"


@dataclass(frozen=True)
class Sender:
    kind: str = "extension"
    tab_id: int | None = None
    url: str | None = None
    origin: str | None = None


@dataclass(frozen=True)
class HandlerSpec:
    handler: Handler
    sync: bool = False
    external: bool = False


class _ResponseOnce:
    def __init__(self, send_response: SendResponse, label: str) -> None:
        self._send = send_response
        self._label = label
        self._lock = threading.Lock()
        self._sent = False

    def __call__(self, response: dict[str, Any]) -> None:
        with self._lock:
            if self._sent:
                logger.warning("duplicate response dropped for %s", self._label)
                return
            self._sent = True
        try:
            self._send(response)
        except Exception:
            logger.exception("response callback failed for %s", self._label)


class BackgroundWorker:
    def __init__(
        self,
        storage: ExtensionStorage,
        config: BridgeConfig | None = None,
        *,
        tabs: TabRegistry | None = None,
        registry: dict[MessageType, HandlerSpec] | None = None,
        max_workers: int = 4,
    ) -> None:
        from .handlers import default_registry

        self.storage = storage
        self.config = config or BridgeConfig()
        self.tabs = tabs or TabRegistry()
        self.registry: dict[MessageType, HandlerSpec] = dict(registry or default_registry())
        self._max_workers = max_workers
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def start(self) -> BackgroundWorker:
        with self._lock:
            if not self._running:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="matabridge-worker"
                )
                self._running = True
        return self

    def stop(self) -> None:
        with self._lock:
            executor = self._executor
            self._executor = None
            self._running = False
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> BackgroundWorker:
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def register(
        self,
        kind: MessageType,
        handler: Handler,
        *,
        sync: bool = False,
        external: bool = False,
    ) -> None:
        self.registry[kind] = HandlerSpec(handler=handler, sync=sync, external=external)

    def storage_call(self, fn: Callable[[], T], label: str) -> T:
        """Run one storage step under the configured timeout."""
        return call_with_timeout(fn, self.config.storage_timeout_s, label=label)

    def active_user(self) -> str | None:
        value = self.storage.get_value(ACTIVE_USER_KEY)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def handle(self, message: Any, sender: Sender | None = None) -> dict[str, Any]:
        """Validate and run one message to completion; never raises."""
        sender = sender or Sender()
        try:
            parsed = parse_message(message)
        except MessageError as exc:
            logger.warning("rejected message: %s", exc)
            return fail(str(exc))
        spec = self.registry.get(parsed.type)
        if spec is None:
            return fail(f"Unknown message type: {parsed.type}")
        return self._run(spec, parsed, sender)

    def on_message(self, message: Any, sender: Sender, send_response: SendResponse) -> bool:
        """Runtime listener. Returns True when the response will arrive later."""
        try:
            parsed = parse_message(message)
        except MessageError as exc:
            logger.warning("rejected message: %s", exc)
            send_response(fail(str(exc)))
            return False
        spec = self.registry.get(parsed.type)
        if spec is None:
            send_response(fail(f"Unknown message type: {parsed.type}"))
            return False
        respond = _ResponseOnce(send_response, str(parsed.type))
        if spec.sync:
            respond(self._run(spec, parsed, sender))
            return False
        with self._lock:
            executor = self._executor
        if executor is None:
            respond(self._run(spec, parsed, sender))
            return False
        try:
            executor.submit(self._run_and_respond, spec, parsed, sender, respond)
        except RuntimeError:
            # Pool shut down between the check and the submit.
            respond(self._run(spec, parsed, sender))
            return False
        return True

    def on_message_external(
        self, message: Any, sender: Sender, send_response: SendResponse
    ) -> bool:
        origin = sender.origin or ""
        if origin not in self.config.allowed_origins:
            logger.warning("rejected external message from %s", origin or "unknown origin")
            send_response(fail(UNAUTHORIZED_ORIGIN))
            return False
        kind = message.get("type") if isinstance(message, dict) else None
        try:
            spec = self.registry.get(MessageType(kind)) if isinstance(kind, str) else None
        except ValueError:
            spec = None
        if spec is not None and not spec.external:
            send_response(fail(f"Message type not available externally: {kind}"))
            return False
        return self.on_message(message, sender, send_response)

    def _run_and_respond(
        self, spec: HandlerSpec, message: Message, sender: Sender, respond: SendResponse
    ) -> None:
        respond(self._run(spec, message, sender))

    def _run(self, spec: HandlerSpec, message: Message, sender: Sender) -> dict[str, Any]:
        try:
            response = spec.handler(self, message, sender)
        except Exception as exc:
            logger.warning("%s failed: %s", message.type, redact(str(exc)))
            logger.debug("handler traceback", exc_info=True)
            response = fail(
                str(exc) or exc.__class__.__name__, error_source=f"background:{message.type}"
            )
        if not isinstance(response, dict):
            response = fail("handler returned no response", error_source=f"background:{message.type}")
        if message.request_id is not None and "requestId" not in response:
            response = {**response, "requestId": message.request_id}
        return response
