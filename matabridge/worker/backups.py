"""IndexedDB snapshot storage with a per-user size budget."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from .. import keys as K
from ..messages import Message, ok

if TYPE_CHECKING:
    from .dispatcher import BackgroundWorker, Sender

logger = logging.getLogger(__name__)

PRIORITY_STORES = {"keys", "metadata", "auth", "sessions", "settings", "config"}
MAX_RECORDS_WHEN_REDUCED = 10


def payload_size(data: Any) -> int:
    return len(json.dumps(data, ensure_ascii=False).encode("utf-8"))


def _stub(record: dict[str, Any]) -> dict[str, Any]:
    wrapped = "key" in record and "value" in record
    value = record["value"] if wrapped else record
    if not isinstance(value, dict):
        value = {}
    stub = {"id": value.get("id"), "name": value.get("name"), "type": value.get("type"), "metadata": True}
    return {"key": record["key"], "value": stub} if wrapped else stub


def reduce_backup(data: dict[str, Any]) -> dict[str, Any]:
    """Keep priority stores whole and a few id/name/type stubs of every other store."""
    reduced: dict[str, Any] = {}
    for db_name, db_data in data.items():
        if not isinstance(db_data, dict):
            continue
        stores = db_data.get("stores") or {}
        kept: dict[str, Any] = {}
        for store_name, store_data in stores.items():
            if store_name.lower() in PRIORITY_STORES:
                kept[store_name] = store_data
                continue
            store_data = store_data or {}
            records = list(store_data.get("records") or [])
            entry: dict[str, Any] = {
                name: store_data[name]
                for name in ("keyPath", "autoIncrement", "indices")
                if name in store_data
            }
            entry["records"] = [
                _stub(record) for record in records[:MAX_RECORDS_WHEN_REDUCED] if isinstance(record, dict)
            ]
            if len(records) > MAX_RECORDS_WHEN_REDUCED:
                entry["truncated"] = True
                entry["totalRecords"] = len(records)
            kept[store_name] = entry
        reduced[db_name] = {
            "version": db_data.get("version"),
            "objectStores": db_data.get("objectStores"),
            "stores": kept,
        }
    return reduced


def backup_indexeddb(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    backup = message.get("backup")
    if not isinstance(backup, dict) or not isinstance(backup.get("data"), dict):
        raise ValueError("No backup data provided")
    user = backup.get("user")
    if not isinstance(user, str) or not user:
        raise ValueError("No user email specified for backup")
    timestamp = backup.get("timestamp")
    data = backup["data"]
    size = payload_size(data)
    limit = worker.config.backup_max_bytes_per_user
    warning = None
    if size > limit:
        data = reduce_backup(data)
        reduced_size = payload_size(data)
        warning = (
            f"Backup size reduced from {size / 1048576:.2f}MB to "
            f"{reduced_size / 1048576:.2f}MB for user {user} to fit within storage limits."
        )
        logger.warning("backup over budget, reduced from %s to %s bytes", size, reduced_size)
        size = reduced_size
    storage = worker.storage
    with storage.locked():
        index = storage.get_value(K.BACKUP_INDEX_KEY)
        if not isinstance(index, dict):
            index = {}
        index[user] = {"timestamp": timestamp, "size": size}
        storage.set(
            {
                K.backup_key(user): {
                    "timestamp": timestamp,
                    "user": user,
                    "size": size,
                    "data": data,
                },
                K.BACKUP_INDEX_KEY: index,
            }
        )
    logger.info("stored indexeddb backup (%s bytes)", size)
    response = ok(
        message=f"Successfully backed up IndexedDB data for user {user}",
        timestamp=timestamp,
        backupSize=size,
    )
    if warning:
        response["warning"] = warning
    return response


def get_indexeddb_backup(
    worker: BackgroundWorker, message: Message, sender: Sender
) -> dict[str, Any]:
    user = message.get("user")
    if not isinstance(user, str) or not user:
        raise ValueError("No user email specified for retrieving backup")
    backup = None
    for candidate in dict.fromkeys([user, K.sanitize_identifier(user)]):
        backup = worker.storage_call(
            lambda candidate=candidate: worker.storage.get_value(K.backup_key(candidate)),
            label="read backup",
        )
        if isinstance(backup, dict):
            break
    if not isinstance(backup, dict):
        raise LookupError(f"No IndexedDB backup found for user {user}")
    return ok(
        message=f"Successfully retrieved IndexedDB backup for user {user}",
        data=backup.get("data"),
        timestamp=backup.get("timestamp"),
        size=backup.get("size"),
    )
