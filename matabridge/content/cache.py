"""Per-page cache of key bundles, salts and the active user."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .. import keys as K
from ..storage.local import LocalStorage


class Source(StrEnum):
    PAGE_LOCAL = "page_local"
    EXTENSION_LOCAL = "extension_local"
    FETCHED = "fetched"
    STORED = "stored"


@dataclass(frozen=True)
class SyncRecord:
    key: str
    value: Any
    source: Source


class KeyCache:
    """Owned by one content script; dropped on navigation and storage events."""

    def __init__(self) -> None:
        self._records: dict[str, SyncRecord] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> SyncRecord | None:
        with self._lock:
            return self._records.get(key)

    def put(self, key: str, value: Any, source: Source) -> SyncRecord:
        record = SyncRecord(key=key, value=value, source=source)
        with self._lock:
            self._records[key] = record
        return record

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._records.clear()
            else:
                self._records.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def active_user(self) -> str | None:
        record = self.get(K.ACTIVE_USER_KEY)
        if record is None or not isinstance(record.value, str):
            return None
        return record.value or None

    def store_bundle(self, identifier: str, bundle: Any, salt: Any = None) -> None:
        self.put(K.keys_key(identifier), bundle, Source.STORED)
        if salt:
            self.put(K.salt_key(identifier), salt, Source.STORED)

    def refresh_from(self, local_storage: LocalStorage) -> int:
        """Load every critical key currently in page storage."""
        loaded = 0
        for key, raw in local_storage.items().items():
            if not K.is_critical_key(key):
                continue
            value = raw if key == K.ACTIVE_USER_KEY else K.decode_value(raw)
            self.put(key, value, Source.PAGE_LOCAL)
            loaded += 1
        return loaded
