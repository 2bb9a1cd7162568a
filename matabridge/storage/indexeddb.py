"""Minimal page IndexedDB: named databases holding object stores of records."""

from __future__ import annotations

import copy
import threading
from typing import Any


class IndexedDBError(RuntimeError):
    pass


class ObjectStore:
    """Records addressed by key.

    With a ``key_path`` the key is read from the record (in-line keys);
    otherwise the caller passes ``key`` or the store numbers records itself.
    """

    def __init__(
        self,
        name: str,
        records: list[dict[str, Any]] | None = None,
        *,
        key_path: str | None = None,
        auto_increment: bool = False,
    ) -> None:
        self.name = name
        self.key_path = key_path
        self.auto_increment = auto_increment
        self.indices: list[dict[str, Any]] = []
        self._entries: list[tuple[Any, dict[str, Any]]] = []
        self._next_key = 1
        self._lock = threading.Lock()
        for record in records or []:
            self.add(record)

    def _key_for(self, record: dict[str, Any], key: Any) -> Any:
        if self.key_path is not None and self.key_path in record:
            return record[self.key_path]
        if key is not None:
            return key
        if self.key_path is not None and not self.auto_increment:
            raise IndexedDBError(f"{self.name}: record has no {self.key_path!r}")
        generated = self._next_key
        self._next_key += 1
        return generated

    def add(self, record: dict[str, Any], key: Any = None) -> Any:
        if not isinstance(record, dict):
            raise IndexedDBError(f"{self.name}: records must be objects")
        with self._lock:
            record_key = self._key_for(record, key)
            if any(existing == record_key for existing, _ in self._entries):
                raise IndexedDBError(f"{self.name}: key already exists: {record_key!r}")
            self._entries.append((record_key, dict(record)))
            return record_key

    def create_index(self, name: str, key_path: str, *, unique: bool = False) -> None:
        with self._lock:
            self.indices.append({"name": name, "keyPath": key_path, "unique": unique})

    def schema(self) -> dict[str, Any]:
        return {
            "keyPath": self.key_path,
            "autoIncrement": self.auto_increment,
            "indices": copy.deepcopy(self.indices),
        }

    def entries(self, count: int | None = None) -> list[tuple[Any, dict[str, Any]]]:
        with self._lock:
            selected = self._entries if count is None else self._entries[: max(count, 0)]
            return copy.deepcopy(selected)

    def get_all(self, count: int | None = None) -> list[dict[str, Any]]:
        return [value for _, value in self.entries(count)]

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class Database:
    def __init__(self, name: str, version: int = 1) -> None:
        self.name = name
        self.version = version
        self._stores: dict[str, ObjectStore] = {}

    @property
    def object_store_names(self) -> list[str]:
        return list(self._stores)

    def create_object_store(
        self,
        name: str,
        records: list[dict[str, Any]] | None = None,
        *,
        key_path: str | None = None,
        auto_increment: bool = False,
    ) -> ObjectStore:
        if name in self._stores:
            raise IndexedDBError(f"object store already exists: {name}")
        store = ObjectStore(name, records, key_path=key_path, auto_increment=auto_increment)
        self._stores[name] = store
        return store

    def object_store(self, name: str) -> ObjectStore:
        store = self._stores.get(name)
        if store is None:
            raise IndexedDBError(f"object store not found: {name}")
        return store

    def close(self) -> None:
        return None


class IndexedDB:
    """Factory for page databases.

    ``open`` creates an empty database on first use, as browsers do. ``fail``
    makes subsequent opens of a database raise, for pages whose storage is
    blocked or corrupt.
    """

    def __init__(self) -> None:
        self._databases: dict[str, Database] = {}
        self._failures: dict[str, str] = {}
        self._lock = threading.Lock()

    def open(self, name: str) -> Database:
        with self._lock:
            reason = self._failures.get(name)
            if reason is not None:
                raise IndexedDBError(f"{name}: {reason}")
            database = self._databases.get(name)
            if database is None:
                database = Database(name)
                self._databases[name] = database
            return database

    def fail(self, name: str, reason: str = "open blocked") -> None:
        with self._lock:
            self._failures[name] = reason

    def recover(self, name: str) -> None:
        with self._lock:
            self._failures.pop(name, None)
