"""Mirroring between page localStorage (through a tab) and extension storage."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from .. import keys as K
from ..messages import Message, now_ms, ok
from ..storage.extension import StorageError
from ..utils import OperationTimeout
from .accounts import list_public_accounts
from .tabs import Tab

if TYPE_CHECKING:
    from .dispatcher import BackgroundWorker, Sender

logger = logging.getLogger(__name__)

NO_TABS_ERROR = "No MATA web app tabs found. Please open the web app first."
STORAGE_ACCESS_PHASE = "chrome_storage_access"


def first_app_tab(worker: BackgroundWorker) -> Tab | None:
    tabs = worker.tabs.query(worker.config.tab_url_patterns)
    return tabs[0] if tabs else None


def _ask_tab(worker: BackgroundWorker, tab: Tab, message: dict[str, Any]) -> dict[str, Any]:
    response = worker.tabs.send_message(
        tab.tab_id, message, timeout_s=worker.config.storage_timeout_s
    )
    if not response.get("success"):
        raise RuntimeError(str(response.get("error") or f"{message.get('action')} failed"))
    return response


def sync_storage(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    started = time.monotonic()
    tab = first_app_tab(worker)
    if tab is None:
        raise LookupError(NO_TABS_ERROR)
    listing = _ask_tab(worker, tab, {"action": "GET_LOCAL_STORAGE_KEYS"})
    page_keys = [key for key in listing.get("keys") or [] if isinstance(key, str)]
    page_key_set = set(page_keys)
    errors: list[dict[str, str]] = []

    synced_to_extension = 0
    for key in page_keys:
        if not K.is_mata_related_key(key):
            continue
        try:
            response = _ask_tab(worker, tab, {"action": "GET_LOCAL_STORAGE_VALUE", "key": key})
            value = K.decode_value(response.get("value"), structured_only=True)
            worker.storage_call(
                lambda key=key, value=value: worker.storage.set({key: value}),
                label=f"store {key}",
            )
            synced_to_extension += 1
        except Exception as exc:
            logger.warning("page to extension sync failed for %s: %s", key, exc)
            errors.append({"key": key, "direction": "toExtension", "error": str(exc)})

    synced_to_page = 0
    try:
        extension_items = worker.storage_call(worker.storage.get_all, label="enumerate storage")
    except (StorageError, OperationTimeout) as exc:
        logger.warning("extension storage enumeration failed: %s", exc)
        errors.append({"phase": STORAGE_ACCESS_PHASE, "error": str(exc)})
        extension_items = {}
    for key, value in extension_items.items():
        if key in page_key_set or not K.is_mata_related_key(key) or K.is_worker_private_key(key):
            continue
        try:
            _ask_tab(
                worker,
                tab,
                {"action": "SET_LOCAL_STORAGE_VALUE", "key": key, "value": K.encode_value(value)},
            )
            synced_to_page += 1
        except Exception as exc:
            logger.warning("extension to page sync failed for %s: %s", key, exc)
            errors.append({"key": key, "direction": "toPage", "error": str(exc)})

    success = (synced_to_extension + synced_to_page) > 0 or not errors
    record = {
        "timestamp": now_ms(),
        "success": success,
        "keysCount": synced_to_extension,
        "syncedToPage": synced_to_page,
        "errorCount": len(errors),
    }
    try:
        worker.storage_call(
            lambda: worker.storage.set({K.STORAGE_SYNC_KEY: record}), label="record storage sync"
        )
    except (StorageError, OperationTimeout) as exc:
        logger.warning("could not record storage sync: %s", exc)
        errors.append({"phase": STORAGE_ACCESS_PHASE, "error": str(exc)})
    logger.info(
        "storage sync done: %s to extension, %s to page, %s errors",
        synced_to_extension,
        synced_to_page,
        len(errors),
    )
    return {
        "success": success,
        "syncedCount": synced_to_extension,
        "syncedToPage": synced_to_page,
        "errors": errors,
        "errorCount": len(errors),
        "tabId": tab.tab_id,
        "duration": int((time.monotonic() - started) * 1000),
    }


def sync_critical_files(
    worker: BackgroundWorker, message: Message, sender: Sender
) -> dict[str, Any]:
    files = message.get("files")
    if not isinstance(files, dict):
        raise ValueError("files must be an object")
    critical = {key: value for key, value in files.items() if K.is_critical_key(key)}
    batch = {"batch": message.get("batch"), "totalBatches": message.get("totalBatches")}
    if not critical:
        return ok(syncedCount=0, message="No critical files matched criteria for sync", **batch)
    writes: dict[str, Any] = {}
    removals: list[str] = []
    for key, value in critical.items():
        if key == K.ACTIVE_USER_KEY:
            continue
        if value is None:
            removals.append(key)
        else:
            writes[key] = K.decode_value(value, structured_only=True)
    storage = worker.storage
    with storage.locked():
        storage.set(writes)
        storage.remove(removals)
        if K.ACTIVE_USER_KEY in critical:
            active = critical[K.ACTIVE_USER_KEY]
            if active is None:
                storage.remove(K.ACTIVE_USER_KEY)
            else:
                storage.set({K.ACTIVE_USER_KEY: K.decode_value(active, structured_only=True)})
    synced = len(critical)
    logger.info("synced %s critical files", synced)
    return ok(syncedCount=synced, message=f"Successfully synced {synced} files", **batch)


def check_sync_status(
    worker: BackgroundWorker, message: Message, sender: Sender
) -> dict[str, Any]:
    last = worker.storage.get_value(K.LAST_SYNC_KEY)
    if not isinstance(last, dict):
        last = {"timestamp": 0, "success": False}
    timestamp = int(last.get("timestamp") or 0)
    window_ms = worker.config.sync_recent_window_s * 1000
    recent = (now_ms() - timestamp) < window_ms
    return ok(
        synced=bool(recent and last.get("success")),
        lastSyncTime=timestamp,
        lastSyncSuccess=bool(last.get("success")),
        storageSync=worker.storage.get_value(K.STORAGE_SYNC_KEY),
    )


def sync_all_data(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    accounts = list_public_accounts(worker)
    if not accounts:
        return ok(synced=False, message="No accounts to sync", accountCount=0)
    result = {"timestamp": now_ms(), "success": True, "accountCount": len(accounts)}
    worker.storage.set({K.LAST_SYNC_KEY: result})
    return ok(
        synced=True,
        message=f"Successfully synced data for {len(accounts)} accounts",
        timestamp=result["timestamp"],
        accountCount=len(accounts),
    )


def _message_key(message: Message) -> str:
    key = message.get("key")
    if not isinstance(key, str) or not key:
        raise ValueError("key is required")
    return key


def get_local_storage_value(
    worker: BackgroundWorker, message: Message, sender: Sender
) -> dict[str, Any]:
    key = _message_key(message)
    tab = first_app_tab(worker)
    if tab is not None:
        try:
            response = _ask_tab(worker, tab, {"action": "getLocalStorage", "key": key})
            if response.get("value") is not None:
                return ok(key=key, value=response["value"], source="localStorage")
        except Exception as exc:
            logger.info("tab read of %s failed, using extension storage: %s", key, exc)
    stored = worker.storage.get(key)
    if key in stored:
        return ok(key=key, value=stored[key], source="extension")
    raise LookupError(f"Key not found: {key}")


def set_local_storage_value(
    worker: BackgroundWorker, message: Message, sender: Sender
) -> dict[str, Any]:
    key = _message_key(message)
    value = message.get("value")
    if value is None:
        worker.storage.remove(key)
    else:
        worker.storage.set({key: value})
    return ok(key=key)


def find_all_users(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    users = K.identifiers_from_keys(worker.storage.get_all())
    tab = first_app_tab(worker)
    if tab is not None:
        try:
            response = _ask_tab(worker, tab, {"action": "findAllUserEmails"})
            for user in [*(response.get("users") or []), *(response.get("sanitizedUsers") or [])]:
                if isinstance(user, str) and user and user not in users:
                    users.append(user)
        except Exception as exc:
            logger.warning("could not read users from tab: %s", exc)
    payload: dict[str, Any] = {"users": users, "count": len(users)}
    if message.get("includeDiagnostics"):
        tabs = worker.tabs.query(worker.config.tab_url_patterns)
        payload["diagnostics"] = {
            "storage": {
                "bytesInUse": worker.storage.bytes_in_use(),
                "quotaBytes": worker.config.storage_quota_bytes,
            },
            "tabs": {"count": len(tabs), "urls": [t.url for t in tabs]},
            "activeUser": worker.active_user(),
        }
    return ok(**payload)


def find_mata_tabs(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    tabs = worker.tabs.query(worker.config.tab_url_patterns)
    return ok(tabs=[tab.to_dict() for tab in tabs], count=len(tabs))
