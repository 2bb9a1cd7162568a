"""The content script: relays page events to the worker and answers the worker's tab messages."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .. import keys as K
from ..config import BridgeConfig
from ..messages import (
    APP_EVENT,
    EXTENSION_AVAILABLE_EVENT,
    EXTENSION_RESPONSE_EVENT,
    MessageType,
    new_request_id,
    now_ms,
)
from ..scheduler import Scheduler, ThreadingScheduler, TimerHandle
from ..transport import (
    ErrorKind,
    ExtensionRuntime,
    InProcessRuntime,
    TransportError,
    classify_error,
)
from .backup import IndexedDBBackup
from .cache import KeyCache, Source
from .connection import ConnectionMonitor
from .page import CustomEvent, Element, Page
from .sweep import CriticalFileSweep, SweepResult

if TYPE_CHECKING:
    from ..worker.dispatcher import BackgroundWorker

logger = logging.getLogger(__name__)

MARKER_ID = "mata-extension-marker"


class ContentScript:
    def __init__(
        self,
        page: Page,
        runtime: ExtensionRuntime,
        *,
        config: BridgeConfig | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.page = page
        self.runtime = runtime
        self.config = config or BridgeConfig()
        self.scheduler = scheduler or ThreadingScheduler()
        self.cache = KeyCache()
        self.sweep = CriticalFileSweep(
            runtime, page.local_storage, self.cache, batch_size=self.config.sweep_batch_size
        )
        self.backup = IndexedDBBackup(runtime, page.indexeddb, self.config)
        self.connection = ConnectionMonitor(
            runtime, page, self.scheduler, self.config, request_sweep=self.request_sweep
        )
        self.marker: Element | None = None
        self.started = False
        self._timers: list[TimerHandle] = []
        self._history_originals: dict[str, Callable[..., Any]] = {}
        self._marker_waiting = False
        self._marker_timer: TimerHandle | None = None

    # Lifecycle

    def start(self) -> ContentScript:
        if self.started:
            return self
        self.started = True
        self.page.add_event_listener(APP_EVENT, self.on_app_event)
        self.page.add_event_listener("popstate", self._on_popstate)
        self._wrap_history()
        self.cache.refresh_from(self.page.local_storage)
        self.inject_marker()
        self.sweep.listen()
        self.run_sweep()
        self.connection.dispatch_ready()
        self._timers = [
            self.scheduler.every(self.config.heartbeat_interval_s, self.connection.heartbeat),
            self.scheduler.every(
                self.config.context_check_interval_s, self.connection.check_context
            ),
            self.scheduler.every(self.config.sweep_interval_s, self.run_sweep),
        ]
        logger.info("content script started on %s", self.page.url)
        return self

    def stop(self) -> None:
        if not self.started:
            return
        self.started = False
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        if self._marker_timer is not None:
            self._marker_timer.cancel()
            self._marker_timer = None
        self._marker_waiting = False
        self.page.remove_event_listener(APP_EVENT, self.on_app_event)
        self.page.remove_event_listener("popstate", self._on_popstate)
        for name, original in self._history_originals.items():
            setattr(self.page.history, name, original)
        self._history_originals.clear()
        self.sweep.close()

    # Sweep and navigation

    def run_sweep(self) -> SweepResult:
        result = self.sweep.run()
        try:
            identifiers = K.identifiers_from_keys(self.page.local_storage.keys())
            active = self.page.local_storage.get_item(K.ACTIVE_USER_KEY)
            if identifiers or active:
                self.backup.run(identifiers, active)
        except Exception:
            logger.exception("indexeddb backup pass failed")
        return result

    def request_sweep(self, delay_s: float) -> None:
        self.scheduler.call_later(delay_s, self.run_sweep)

    def on_navigation(self) -> None:
        logger.debug("navigation to %s, resyncing", self.page.url)
        self.cache.invalidate()
        self.run_sweep()

    def _on_popstate(self, event: CustomEvent) -> None:
        self.on_navigation()

    def _wrap_history(self) -> None:
        history = self.page.history
        for name in ("push_state", "replace_state"):
            original = getattr(history, name)
            self._history_originals[name] = original

            def wrapped(*args: Any, _original: Callable[..., Any] = original, **kwargs: Any) -> Any:
                result = _original(*args, **kwargs)
                self.on_navigation()
                return result

            setattr(history, name, wrapped)

    # Marker

    def inject_marker(self) -> Element | None:
        document = self.page.document
        existing = document.get_element_by_id(MARKER_ID)
        if existing is not None:
            self.marker = existing
            return existing
        if document.body is None:
            self._wait_for_body()
            return None
        marker = document.create_element("div")
        marker.id = MARKER_ID
        marker.style["display"] = "none"
        marker.set_attribute("data-extension-id", self.runtime.extension_id)
        marker.set_attribute("data-extension-version", self.runtime.version)
        marker.set_attribute("data-timestamp", now_ms())
        document.append_to_body(marker)
        self.marker = marker
        self.page.dispatch_event(
            CustomEvent(
                EXTENSION_AVAILABLE_EVENT,
                {"id": self.runtime.extension_id, "version": self.runtime.version},
            )
        )
        return marker

    def _wait_for_body(self) -> None:
        if self._marker_waiting:
            return
        self._marker_waiting = True
        if self.page.document.ready_state == "loading":
            self.page.document.add_event_listener("DOMContentLoaded", self._retry_marker)
            self.page.add_event_listener("load", self._retry_marker)
        else:
            self._schedule_marker_retry()

    def _schedule_marker_retry(self) -> None:
        if self._marker_timer is None:
            self._marker_timer = self.scheduler.call_later(
                self.config.reconnect_delay_s, self._on_marker_timer
            )

    def _on_marker_timer(self) -> None:
        self._marker_timer = None
        self._retry_marker()

    def _retry_marker(self, _event: CustomEvent | None = None) -> None:
        if not self._marker_waiting or self.marker is not None:
            return
        if self.page.document.body is None:
            # Polls until the page gains a body or the script stops.
            self._schedule_marker_retry()
            return
        self._marker_waiting = False
        self.inject_marker()

    # Page relay

    def respond(self, detail: dict[str, Any]) -> None:
        self.page.dispatch_event(CustomEvent(EXTENSION_RESPONSE_EVENT, detail))

    def on_app_event(self, event: CustomEvent) -> None:
        detail = event.detail
        if not isinstance(detail, dict) or not detail.get("type"):
            logger.warning("app event without a type ignored")
            return
        self.page.local_storage.set_item(K.LAST_ACTIVE_KEY, str(now_ms()))
        request_id = detail.get("requestId") or new_request_id()
        try:
            self._handle_app_message(detail, request_id)
        except Exception as exc:
            logger.exception("app event %s failed", detail.get("type"))
            self.respond(
                {
                    "requestId": request_id,
                    "success": False,
                    "error": str(exc),
                    "errorCode": str(ErrorKind.PROCESSING_ERROR),
                    "errorSource": "content_script",
                }
            )

    def _handle_app_message(self, detail: dict[str, Any], request_id: str) -> None:
        kind = detail["type"]
        data = detail.get("data") if isinstance(detail.get("data"), dict) else {}
        if kind == MessageType.GET_KEYS:
            self._get_keys(detail, data, request_id)
            return
        if kind == MessageType.GET_LOCAL_STORAGE_VALUE:
            answer = self._local_value(detail, data)
            if answer is not None:
                self.respond({"requestId": request_id, "success": True, **answer})
                return
        if kind == MessageType.STORE_KEYS:
            self._store_keys(detail, data, request_id)
            return
        self._forward(detail, request_id)

    def _get_keys(self, detail: dict[str, Any], data: dict[str, Any], request_id: str) -> None:
        identifier = data.get("email") or detail.get("email") or self.cache.active_user
        if not identifier:
            identifier = self.page.local_storage.get_item(K.ACTIVE_USER_KEY)
        if not identifier:
            self._forward(detail, request_id)
            return
        canonical = K.sanitize_identifier(identifier)
        found = self._lookup_canonical(identifier)
        if found is not None:
            keys, source = found
            self.respond({"requestId": request_id, "success": True, "keys": keys, "source": source})
            return
        response = self._send(detail, request_id)
        if response.get("success"):
            self._cache_fetched(canonical, response.get("keys"))
            self.respond(response)
            return
        alternate = self._lookup_alternates(identifier)
        if alternate is not None:
            keys, source = alternate
            self.respond({"requestId": request_id, "success": True, "keys": keys, "source": source})
            return
        self.respond(response)

    def _with_salt(self, bundle: Any, form: str) -> Any:
        if not isinstance(bundle, dict) or "salt" in bundle:
            return bundle
        salt_name = f"{K.SALT_PREFIX}{form}"
        cached = self.cache.get(salt_name)
        salt = cached.value if cached is not None else self.page.local_storage.get_item(salt_name)
        if salt is None:
            return bundle
        return {**bundle, "salt": salt}

    def _lookup_canonical(self, identifier: str) -> tuple[Any, str] | None:
        form = K.sanitize_identifier(identifier)
        keys_name = f"{K.KEYS_PREFIX}{form}"
        record = self.cache.get(keys_name)
        if record is not None:
            return self._with_salt(record.value, form), "direct_content_script"
        raw = self.page.local_storage.get_item(keys_name)
        if raw is None:
            return None
        bundle = K.decode_value(raw)
        self.cache.put(keys_name, bundle, Source.PAGE_LOCAL)
        salt = self.page.local_storage.get_item(f"{K.SALT_PREFIX}{form}")
        if salt is not None:
            self.cache.put(f"{K.SALT_PREFIX}{form}", salt, Source.PAGE_LOCAL)
        return self._with_salt(bundle, form), "direct_localStorage"

    def _lookup_alternates(self, identifier: str) -> tuple[Any, str] | None:
        for form in K.alternate_identifier_forms(identifier):
            keys_name = f"{K.KEYS_PREFIX}{form}"
            record = self.cache.get(keys_name)
            if record is not None:
                return self._with_salt(record.value, form), "alternate_format_cache"
            raw = self.page.local_storage.get_item(keys_name)
            if raw is not None:
                bundle = K.decode_value(raw)
                self.cache.put(keys_name, bundle, Source.PAGE_LOCAL)
                return self._with_salt(bundle, form), "alternate_format_localStorage"
        return None

    def _cache_fetched(self, form: str, keys: Any) -> None:
        if keys is not None:
            self.cache.put(f"{K.KEYS_PREFIX}{form}", keys, Source.FETCHED)

    def _local_value(self, detail: dict[str, Any], data: dict[str, Any]) -> dict[str, Any] | None:
        message_data = detail.get("messageData")
        key = None
        if isinstance(message_data, dict):
            key = message_data.get("key")
        key = key or data.get("key") or detail.get("key")
        if not isinstance(key, str) or not key:
            return None
        record = self.cache.get(key)
        if record is not None:
            value = record.value
            if not isinstance(value, str):
                value = json.dumps(value, ensure_ascii=False)
            return {"value": value, "source": "direct_access"}
        stored = self.page.local_storage.get_item(key)
        if stored is not None:
            return {"value": stored, "source": "direct_localStorage"}
        return None

    def _store_keys(self, detail: dict[str, Any], data: dict[str, Any], request_id: str) -> None:
        nested = data.get("keys")
        identifier = None
        if isinstance(nested, dict) and nested.get("email"):
            identifier = nested["email"]
        identifier = identifier or data.get("email") or detail.get("email")
        message = dict(detail)
        if identifier:
            message["email"] = identifier
            bundle = nested if isinstance(nested, dict) else {
                k: v for k, v in data.items() if k != "setActive"
            }
            self.cache.store_bundle(identifier, bundle, data.get("salt"))
            if data.get("setActive"):
                self.cache.put(K.ACTIVE_USER_KEY, identifier, Source.STORED)
        response = self._send(message, request_id)
        if not response.get("success") and "errorCode" in response:
            response["cached"] = bool(identifier)
        self.respond(response)

    def _forward(self, detail: dict[str, Any], request_id: str) -> None:
        self.respond(self._send(detail, request_id))

    def _send(self, detail: dict[str, Any], request_id: str) -> dict[str, Any]:
        message = {**detail, "requestId": request_id}
        try:
            response = self.runtime.send_message(message)
        except Exception as exc:
            error = classify_error(exc)
            return self._transport_failure(error, request_id)
        return {**response, "requestId": request_id}

    def _transport_failure(self, error: TransportError, request_id: str) -> dict[str, Any]:
        logger.warning("relay to worker failed (%s)", error.kind)
        if error.kind.permanent:
            self.connection.record_failure(error)
        return {
            "requestId": request_id,
            "success": False,
            "error": error.message,
            "errorCode": str(error.kind),
            "errorSource": "content_script",
        }

    # Tab messages from the worker

    def on_tab_message(self, message: dict[str, Any]) -> dict[str, Any]:
        action = message.get("action") or message.get("type")
        storage = self.page.local_storage
        key = message.get("key")
        try:
            if action in ("getLocalStorage", "GET_LOCAL_STORAGE_VALUE"):
                value = storage.get_item(str(key))
                return {
                    "success": True,
                    "value": value,
                    "valueExists": value is not None,
                    "timestamp": now_ms(),
                }
            if action in ("setLocalStorage", "SET_LOCAL_STORAGE_VALUE"):
                storage.set_item(str(key), K.encode_value(message.get("value")))
                return {"success": True, "timestamp": now_ms()}
            if action == "removeLocalStorage":
                storage.remove_item(str(key))
                return {"success": True, "timestamp": now_ms()}
            if action == "getAllLocalStorage":
                return {"success": True, "storage": storage.items(), "timestamp": now_ms()}
            if action == "GET_LOCAL_STORAGE_KEYS":
                return {"success": True, "keys": storage.keys(), "timestamp": now_ms()}
            if action == "findAllUserEmails":
                sanitized = K.identifiers_from_keys(storage.keys())
                return {
                    "success": True,
                    "users": [K.unsanitize_identifier(user) for user in sanitized],
                    "sanitizedUsers": sanitized,
                    "timestamp": now_ms(),
                }
            if action == "triggerCriticalSync":
                self.request_sweep(0)
                return {"success": True, "message": "Sync initiated", "timestamp": now_ms()}
        except Exception as exc:
            logger.warning("tab message %s failed: %s", action, exc)
            return {"success": False, "error": str(exc), "timestamp": now_ms()}
        return {"success": False, "error": f"Unknown action: {action}", "timestamp": now_ms()}


def open_tab(
    worker: BackgroundWorker,
    page: Page,
    *,
    scheduler: Scheduler | None = None,
    title: str = "MATA",
) -> tuple[ContentScript, InProcessRuntime]:
    """Register ``page`` as a worker tab and start a content script in it."""
    from ..worker.dispatcher import Sender

    script: ContentScript | None = None

    def _tab_handler(message: dict[str, Any]) -> dict[str, Any]:
        if script is None:
            return {"success": False, "error": "content script not ready"}
        return script.on_tab_message(message)

    tab = worker.tabs.register(page.url, _tab_handler, title=title)
    sender = Sender(kind="content_script", tab_id=tab.tab_id, url=page.url)
    runtime = InProcessRuntime(worker, sender, timeout_s=worker.config.message_timeout_s)
    script = ContentScript(page, runtime, config=worker.config, scheduler=scheduler)
    script.start()
    return script, runtime
