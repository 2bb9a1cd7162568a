"""Per-user snapshots of the page's IndexedDB databases."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .. import keys as K
from ..config import BridgeConfig
from ..messages import MessageType, now_ms
from ..storage.indexeddb import IndexedDB, IndexedDBError, ObjectStore
from ..transport import ExtensionRuntime, TransportError, classify_error

logger = logging.getLogger(__name__)

CRITICAL_STORE_PATTERNS = ("keys", "metadata", "users", "auth", "sessions", "config", "settings", "salt")
METADATA_ONLY_PATTERNS = (
    "bank_accounts",
    "contacts",
    "transactions",
    "passwords",
    "documents",
    "files",
    "images",
    "attachments",
)
MULTI_USER_PATTERNS = ("users", "accounts", "sessions", "global", "config")
OWNER_FIELDS = ("email", "user", "userId", "userEmail", "owner", "ownerId")
ID_FIELDS = ("id", "key", "uuid")
METADATA_ID_FIELDS = ("id", "key", "uuid", "email", "name", "type")
TIMESTAMP_MARKERS = ("time", "date", "created", "updated")
SECRET_MARKERS = ("password", "key", "token")

METADATA_RECORD_LIMIT = 25
RECORD_LIMIT = 100


def is_critical_object_store(store_name: str) -> bool:
    lowered = store_name.lower()
    return any(pattern in lowered for pattern in CRITICAL_STORE_PATTERNS)


def is_metadata_only_store(store_name: str) -> bool:
    lowered = store_name.lower()
    return any(pattern in lowered for pattern in METADATA_ONLY_PATTERNS)


def is_multi_user_store(store_name: str) -> bool:
    lowered = store_name.lower()
    return any(pattern in lowered for pattern in MULTI_USER_PATTERNS)


def is_critical_for_all_users(db_name: str, store_name: str) -> bool:
    return (
        (db_name == "mata-keys" and store_name == "keys")
        or (db_name == "mata-identity" and store_name == "metadata")
        or store_name in {"settings", "config"}
    )


def record_belongs_to_user(record: Any, user: str, db_name: str, store_name: str) -> bool:
    if not isinstance(record, dict):
        return False
    normalized = user.lower()
    sanitized = K.sanitize_identifier(user)
    for name in OWNER_FIELDS:
        value = record.get(name)
        if value and str(value).lower() in (normalized, sanitized):
            return True
    for name in ID_FIELDS:
        value = record.get(name)
        if value and (normalized in str(value) or sanitized in str(value)):
            return True
    namespace = record.get("namespace")
    if db_name == "mata-vault" and isinstance(namespace, str):
        if namespace.startswith(f"user_{sanitized}_") or normalized in namespace:
            return True
    return is_critical_for_all_users(db_name, store_name)


def extract_metadata(record: Any) -> Any:
    """Drop bulky and secret fields, keeping identifiers and timestamps."""
    if not isinstance(record, dict):
        return record
    metadata: dict[str, Any] = {}
    for name in METADATA_ID_FIELDS:
        if name in record:
            metadata[name] = record[name]
    if isinstance(record.get("metadata"), dict):
        metadata["metadata"] = record["metadata"]
    for name, value in record.items():
        if any(marker in name for marker in TIMESTAMP_MARKERS):
            metadata[name] = value
        if (
            value is not None
            and not isinstance(value, (dict, list))
            and not any(marker in name for marker in SECRET_MARKERS)
        ):
            metadata[name] = value
    return metadata


class IndexedDBBackup:
    def __init__(
        self,
        runtime: ExtensionRuntime,
        indexeddb: IndexedDB,
        config: BridgeConfig,
    ) -> None:
        self.runtime = runtime
        self.indexeddb = indexeddb
        self.config = config
        self.completed: set[str] = set()

    def backup_queue(self, identifiers: Iterable[str], active_user: str | None) -> list[str]:
        """Users still to back up on this page load, active user first."""
        queue: list[str] = []
        active_sanitized = K.sanitize_identifier(active_user) if active_user else None
        if active_user:
            queue.append(active_user)
        for identifier in identifiers:
            # Suffixes are queued as found; sanitizing is not reversible.
            if identifier != active_sanitized and identifier not in queue:
                queue.append(identifier)
        return [user for user in queue if user not in self.completed]

    def run(self, identifiers: Iterable[str], active_user: str | None = None) -> list[str]:
        done = []
        for user in self.backup_queue(identifiers, active_user):
            # Marked before the attempt so a failing user is not retried every sweep.
            self.completed.add(user)
            try:
                snapshot = self.snapshot(user)
                self.send(user, snapshot)
                done.append(user)
            except Exception:
                logger.exception("indexeddb backup failed for one user")
        return done

    def snapshot(self, user: str) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for db_name in self.config.indexeddb_databases:
            try:
                database = self.indexeddb.open(db_name)
            except IndexedDBError as exc:
                logger.warning("could not open %s: %s", db_name, exc)
                continue
            entry: dict[str, Any] = {
                "version": database.version,
                "objectStores": database.object_store_names,
                "stores": {},
            }
            for store_name in database.object_store_names:
                if not is_critical_object_store(store_name):
                    continue
                try:
                    entry["stores"][store_name] = self._snapshot_store(
                        database.object_store(store_name), user, db_name, store_name
                    )
                except IndexedDBError as exc:
                    logger.warning("could not read %s/%s: %s", db_name, store_name, exc)
            data[db_name] = entry
        return data

    def _snapshot_store(
        self, store: ObjectStore, user: str, db_name: str, store_name: str
    ) -> dict[str, Any]:
        metadata_only = is_metadata_only_store(store_name)
        limit = METADATA_RECORD_LIMIT if metadata_only else RECORD_LIMIT
        filter_owner = is_multi_user_store(store_name)
        kept: list[dict[str, Any]] = []
        for key, record in store.entries():
            if len(kept) >= limit:
                break
            if filter_owner and not record_belongs_to_user(record, user, db_name, store_name):
                continue
            kept.append({"key": key, "value": extract_metadata(record) if metadata_only else record})
        return {
            "records": kept,
            "recordCount": len(kept),
            "metadataOnly": metadata_only,
            **store.schema(),
        }

    def send(self, user: str, data: dict[str, Any]) -> dict[str, Any] | None:
        message = {
            "type": str(MessageType.BACKUP_INDEXEDDB),
            "backup": {"timestamp": now_ms(), "user": user, "data": data},
        }
        try:
            response = self.runtime.send_message(message)
        except TransportError as exc:
            logger.warning("backup send failed (%s): %s", exc.kind, exc.message)
            return None
        except Exception as exc:
            error = classify_error(exc)
            logger.warning("backup send failed (%s): %s", error.kind, error.message)
            return None
        if not response.get("success"):
            logger.warning("backup rejected: %s", response.get("error", "unknown error"))
        elif response.get("warning"):
            logger.info("backup stored with warning: %s", response["warning"])
        return response
