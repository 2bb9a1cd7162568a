"""Page ``localStorage``: synchronous, string-only, insertion ordered."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageEvent:
    key: str | None
    old_value: str | None
    new_value: str | None


StorageListener = Callable[[StorageEvent], None]


class LocalStorage:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._items: dict[str, str] = {}
        self._listeners: list[StorageListener] = []
        self._lock = threading.RLock()
        for key, value in (initial or {}).items():
            self._items[key] = str(value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def key(self, index: int) -> str | None:
        with self._lock:
            keys = list(self._items)
        if 0 <= index < len(keys):
            return keys[index]
        return None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def items(self) -> dict[str, str]:
        with self._lock:
            return dict(self._items)

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: Any) -> None:
        text = value if isinstance(value, str) else str(value)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = text
        if old != text:
            self._notify(StorageEvent(key, old, text))

    def remove_item(self, key: str) -> None:
        with self._lock:
            old = self._items.pop(key, None)
        if old is not None:
            self._notify(StorageEvent(key, old, None))

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
        self._notify(StorageEvent(None, None, None))

    def add_listener(self, listener: StorageListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: StorageListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _notify(self, event: StorageEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("storage listener failed", extra={"key": event.key})
