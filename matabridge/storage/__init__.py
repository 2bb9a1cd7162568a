from __future__ import annotations

from .extension import (
    ExtensionStorage,
    MemoryExtensionStorage,
    SqliteExtensionStorage,
    StorageError,
)
from .indexeddb import Database, IndexedDB, IndexedDBError, ObjectStore
from .local import LocalStorage, StorageEvent

__all__ = [
    "Database",
    "ExtensionStorage",
    "IndexedDB",
    "IndexedDBError",
    "LocalStorage",
    "MemoryExtensionStorage",
    "ObjectStore",
    "SqliteExtensionStorage",
    "StorageError",
    "StorageEvent",
]
