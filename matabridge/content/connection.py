"""Connection tracking between the content script and the worker."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from .. import keys as K
from ..config import BridgeConfig
from ..messages import EXTENSION_READY, EXTENSION_RESPONSE_EVENT, MessageType, now_ms
from ..scheduler import Scheduler
from ..transport import ErrorKind, ExtensionRuntime, TransportError, classify_error
from ..utils import iso_now
from .page import CustomEvent, Page

logger = logging.getLogger(__name__)


class ConnectionMonitor:
    """Heartbeat, context checks and the ``EXTENSION_READY`` announcement.

    ``request_sweep(delay_s)`` is called whenever the connection comes back and
    the worker should be brought up to date.
    """

    def __init__(
        self,
        runtime: ExtensionRuntime,
        page: Page,
        scheduler: Scheduler,
        config: BridgeConfig,
        *,
        request_sweep: Callable[[float], None],
    ) -> None:
        self.runtime = runtime
        self.page = page
        self.scheduler = scheduler
        self.config = config
        self.request_sweep = request_sweep
        self.connected = False
        self.recovery_attempts = 0
        self.last_error: TransportError | None = None
        self.last_heartbeat_ms: int | None = None
        self._lock = threading.Lock()

    def _set_connected(self, value: bool) -> bool:
        with self._lock:
            previous = self.connected
            self.connected = value
        return previous

    def _breadcrumb(self, key: str, value: str) -> None:
        try:
            self.page.local_storage.set_item(key, value)
        except Exception as exc:
            logger.debug("breadcrumb %s not written: %s", key, exc)

    def heartbeat(self) -> bool:
        message = {
            "type": str(MessageType.HEARTBEAT),
            "timestamp": now_ms(),
            "url": self.page.url,
            "connectionStatus": self.connected,
        }
        try:
            response = self.runtime.send_message(message)
        except Exception as exc:
            self.record_failure(classify_error(exc))
            return False
        if not response.get("success"):
            reason = str(response.get("error") or "heartbeat rejected")
            self.record_failure(TransportError(ErrorKind.RUNTIME_ERROR, reason))
            return False
        was_connected = self._set_connected(True)
        self.last_heartbeat_ms = now_ms()
        self._breadcrumb(K.CONNECTED_FLAG_KEY, "true")
        self._breadcrumb(K.CONNECTED_TIMESTAMP_KEY, str(self.last_heartbeat_ms))
        self.page.local_storage.remove_item(K.LAST_ERROR_KEY)
        if not was_connected:
            logger.info("connection restored, scheduling sweep")
            self.request_sweep(self.config.reconnect_delay_s)
        return True

    def record_failure(self, error: TransportError) -> None:
        self.last_error = error
        self._set_connected(False)
        self._breadcrumb(K.CONNECTED_FLAG_KEY, "false")
        self._breadcrumb(K.LAST_ERROR_KEY, error.message)
        self._breadcrumb(K.ERROR_TIMESTAMP_KEY, str(now_ms()))
        if error.kind.permanent:
            logger.warning("extension context invalidated, reconnecting")
            self.scheduler.call_later(self.config.reconnect_delay_s, self.dispatch_ready)
        else:
            logger.warning("worker unreachable (%s)", error.kind)
            self.dispatch_ready()

    def check_context(self) -> None:
        if not self.runtime.available():
            if self._set_connected(False):
                logger.warning("runtime context lost")
            return
        if not self.connected:
            logger.info("runtime context valid again")
            self.dispatch_ready()

    def ready_detail(self) -> dict[str, Any]:
        return {
            "type": EXTENSION_READY,
            "success": True,
            "data": {
                "version": self.runtime.version,
                "id": self.runtime.extension_id,
                "timestamp": iso_now(),
                "url": self.page.url,
                "recoveryAttempt": self.recovery_attempts,
            },
        }

    def dispatch_ready(self) -> bool:
        if not self.runtime.available():
            self._set_connected(False)
            self._breadcrumb(K.CONNECTED_FLAG_KEY, "false")
            self._breadcrumb(K.LAST_ERROR_KEY, "Runtime not available during ready event")
            logger.warning("ready event skipped, runtime not available")
            return False
        detail = self.ready_detail()
        with self._lock:
            self.recovery_attempts += 1
            attempts = self.recovery_attempts
        self.page.dispatch_event(CustomEvent(EXTENSION_RESPONSE_EVENT, detail))
        self._set_connected(True)
        self._breadcrumb(K.CONNECTED_FLAG_KEY, "true")
        self._breadcrumb(K.CONNECTED_TIMESTAMP_KEY, str(now_ms()))
        self._breadcrumb(K.RECOVERY_ATTEMPTS_KEY, str(attempts))
        self.request_sweep(self.config.resync_delay_s)
        return True
