"""Extension-local storage: the worker's private JSON key-value area."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .. import db
from ..utils import iso_now

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


def _normalize_keys(keys: str | Iterable[str] | None) -> list[str] | None:
    if keys is None:
        return None
    if isinstance(keys, str):
        return [keys]
    return list(keys)


class ExtensionStorage:
    """Base class; subclasses provide the ``_read``/``_write``/``_delete`` primitives.

    ``write_lock`` serializes read-modify-write sequences (account list upserts,
    backup index updates) so concurrent writers cannot drop each other's
    changes.
    """

    def __init__(self) -> None:
        self.write_lock = threading.RLock()
        self.available = True

    @contextmanager
    def locked(self) -> Iterator[ExtensionStorage]:
        with self.write_lock:
            yield self

    def _require_available(self) -> None:
        if not self.available:
            raise StorageError("extension storage API unavailable")

    def get(self, keys: str | Iterable[str] | None = None) -> dict[str, Any]:
        self._require_available()
        wanted = _normalize_keys(keys)
        return self._read(wanted)

    def get_value(self, key: str, default: Any = None) -> Any:
        return self.get(key).get(key, default)

    def set(self, items: dict[str, Any]) -> None:
        self._require_available()
        if not items:
            return
        for key in items:
            if not isinstance(key, str) or not key:
                raise StorageError(f"invalid storage key: {key!r}")
        with self.write_lock:
            self._write(items)

    def remove(self, keys: str | Iterable[str]) -> None:
        self._require_available()
        wanted = _normalize_keys(keys) or []
        if not wanted:
            return
        with self.write_lock:
            self._delete(wanted)

    def get_all(self) -> dict[str, Any]:
        self._require_available()
        return self._read(None)

    def bytes_in_use(self) -> int:
        total = 0
        for key, value in self.get_all().items():
            total += len(key.encode("utf-8"))
            total += len(json.dumps(value, ensure_ascii=False).encode("utf-8"))
        return total

    def close(self) -> None:
        return None

    def _read(self, keys: list[str] | None) -> dict[str, Any]:
        raise NotImplementedError

    def _write(self, items: dict[str, Any]) -> None:
        raise NotImplementedError

    def _delete(self, keys: list[str]) -> None:
        raise NotImplementedError


class MemoryExtensionStorage(ExtensionStorage):
    def __init__(self, initial: dict[str, Any] | None = None, *, available: bool = True) -> None:
        super().__init__()
        self._items: dict[str, str] = {}
        if initial:
            self._write(initial)
        self.available = available

    def _read(self, keys: list[str] | None) -> dict[str, Any]:
        with self.write_lock:
            snapshot = dict(self._items)
        if keys is None:
            return {key: json.loads(raw) for key, raw in snapshot.items()}
        return {key: json.loads(snapshot[key]) for key in keys if key in snapshot}

    def _write(self, items: dict[str, Any]) -> None:
        encoded = {key: _encode(key, value) for key, value in items.items()}
        self._items.update(encoded)

    def _delete(self, keys: list[str]) -> None:
        for key in keys:
            self._items.pop(key, None)


class SqliteExtensionStorage(ExtensionStorage):
    def __init__(self, db_path: Path | str) -> None:
        super().__init__()
        self.db_path = db_path
        self.conn = db.connect(db_path, check_same_thread=False)
        db.initialize_schema(self.conn)

    def _read(self, keys: list[str] | None) -> dict[str, Any]:
        with self.write_lock:
            try:
                if keys is None:
                    rows = self.conn.execute(
                        "SELECT key, value_json FROM extension_storage ORDER BY key"
                    ).fetchall()
                elif not keys:
                    rows = []
                else:
                    placeholders = ",".join(["?"] * len(keys))
                    rows = self.conn.execute(
                        f"SELECT key, value_json FROM extension_storage WHERE key IN ({placeholders})",
                        keys,
                    ).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"storage read failed: {exc}") from exc
        items: dict[str, Any] = {}
        for row in rows:
            try:
                items[str(row["key"])] = json.loads(row["value_json"])
            except json.JSONDecodeError:
                logger.warning("corrupt storage value skipped", extra={"key": row["key"]})
        return items

    def _write(self, items: dict[str, Any]) -> None:
        updated_at = iso_now()
        rows = [(key, _encode(key, value), updated_at) for key, value in items.items()]
        try:
            self.conn.executemany(
                """
                INSERT INTO extension_storage(key, value_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json = excluded.value_json,
                    updated_at = excluded.updated_at
                """,
                rows,
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise StorageError(f"storage write failed: {exc}") from exc

    def _delete(self, keys: list[str]) -> None:
        placeholders = ",".join(["?"] * len(keys))
        try:
            self.conn.execute(f"DELETE FROM extension_storage WHERE key IN ({placeholders})", keys)
            self.conn.commit()
        except sqlite3.Error as exc:
            self.conn.rollback()
            raise StorageError(f"storage delete failed: {exc}") from exc

    def close(self) -> None:
        with self.write_lock:
            self.conn.close()


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise StorageError(f"value for {key} is not JSON serializable") from exc
