"""Liveness and storage diagnostics."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .. import keys as K
from ..messages import Message, now_ms, ok
from ..storage.extension import StorageError
from ..utils import iso_now

if TYPE_CHECKING:
    from .dispatcher import BackgroundWorker, Sender

logger = logging.getLogger(__name__)


def check_extension(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    try:
        active_user = worker.active_user()
    except StorageError:
        active_user = None
    return ok(
        installed=True,
        version=worker.config.extension_version,
        id=worker.config.extension_id,
        timestamp=now_ms(),
        hasActiveUser=active_user is not None,
    )


def connection_check(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    return ok(
        timestamp=iso_now(),
        id=worker.config.extension_id,
        version=worker.config.extension_version,
    )


def heartbeat(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    timestamp = now_ms()
    try:
        worker.storage.set({K.LAST_HEARTBEAT_KEY: timestamp})
    except StorageError as exc:
        logger.warning("could not record heartbeat: %s", exc)
    return ok(
        timestamp=timestamp,
        serviceWorkerStatus="active",
        version=worker.config.extension_version,
    )


def storage_self_test(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    """Write, read back and enumerate extension storage.

    The worker always answers (``acknowledged``); ``success`` reports whether
    any of the write or read steps actually worked.
    """
    storage = worker.storage
    test_data = message.get("testData", "test_data")
    diagnostics: dict[str, Any] = {
        "storageType": "extension.storage.local",
        "backend": type(storage).__name__,
        "extensionId": worker.config.extension_id,
        "extensionVersion": worker.config.extension_version,
        "timestamp": now_ms(),
        "originalTestData": test_data,
        "storageApiAvailable": storage.available,
    }
    if not storage.available:
        logger.warning("storage test: storage api unavailable")
        return {
            "success": False,
            "acknowledged": True,
            "error": "Extension storage API not available",
            "message": "Storage test failed - extension storage API not available",
            "storageAccessible": False,
            "diagnostics": diagnostics,
        }

    steps: dict[str, dict[str, Any]] = {}

    def _step(name: str, fn: Callable[[], Any]) -> Any:
        try:
            result = worker.storage_call(fn, label=f"storage {name}")
        except Exception as exc:
            logger.warning("storage test step %s failed: %s", name, exc)
            steps[name] = {"success": False, "error": str(exc)}
            return None
        steps[name] = {"success": True}
        return result

    _step("simple", lambda: storage.set({"mata_simple_test": "simple_test_value"}))
    _step(
        "set",
        lambda: storage.set(
            {
                "mata_test_data": test_data,
                "mata_test_timestamp": diagnostics["timestamp"],
                "mata_test_diagnostics": diagnostics,
            }
        ),
    )
    retrieved = _step("get", lambda: storage.get(["mata_test_data", "mata_test_timestamp"]))
    all_items = _step("enumerate", storage.get_all)

    success = any(steps[name]["success"] for name in ("simple", "set", "get"))
    total = len(all_items) if isinstance(all_items, dict) else 0
    return {
        "success": success,
        "acknowledged": True,
        "storageAccessible": success,
        "steps": steps,
        "testData": (retrieved or {}).get("mata_test_data"),
        "totalStoredItems": total,
        "diagnostics": {**diagnostics, "steps": steps},
        "message": (
            "Storage test completed with some success"
            if success
            else "Storage test failed but diagnostic data available"
        ),
    }
