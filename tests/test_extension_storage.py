import threading
from pathlib import Path

import pytest

from matabridge.storage.extension import (
    ExtensionStorage,
    MemoryExtensionStorage,
    SqliteExtensionStorage,
    StorageError,
)


@pytest.fixture(params=["memory", "sqlite"])
def any_storage(request: pytest.FixtureRequest, tmp_path: Path) -> ExtensionStorage:
    if request.param == "memory":
        return MemoryExtensionStorage()
    storage = SqliteExtensionStorage(tmp_path / "extension.sqlite")
    request.addfinalizer(storage.close)
    return storage


def test_set_get_remove(any_storage: ExtensionStorage) -> None:
    any_storage.set({"mata_keys_a_b_com": {"publicKey": "pk"}, "mata_active_user": "a@b.com"})

    assert any_storage.get("mata_active_user") == {"mata_active_user": "a@b.com"}
    assert any_storage.get(["mata_keys_a_b_com", "missing"]) == {
        "mata_keys_a_b_com": {"publicKey": "pk"}
    }
    assert any_storage.get_value("missing", "fallback") == "fallback"

    any_storage.remove("mata_active_user")
    assert set(any_storage.get_all()) == {"mata_keys_a_b_com"}
    assert any_storage.bytes_in_use() > 0


def test_set_rejects_unserializable_values(any_storage: ExtensionStorage) -> None:
    with pytest.raises(StorageError, match="not JSON serializable"):
        any_storage.set({"bad": object()})


def test_set_rejects_empty_keys(any_storage: ExtensionStorage) -> None:
    with pytest.raises(StorageError, match="invalid storage key"):
        any_storage.set({"": 1})


def test_unavailable_storage_raises() -> None:
    storage = MemoryExtensionStorage({"a": 1}, available=False)
    with pytest.raises(StorageError, match="unavailable"):
        storage.get_all()
    with pytest.raises(StorageError):
        storage.set({"b": 2})


def test_sqlite_storage_persists_between_connections(tmp_path: Path) -> None:
    db_path = tmp_path / "extension.sqlite"
    first = SqliteExtensionStorage(db_path)
    try:
        first.set({"mata_settings": {"autoLockMinutes": 10}})
    finally:
        first.close()

    second = SqliteExtensionStorage(db_path)
    try:
        assert second.get_value("mata_settings") == {"autoLockMinutes": 10}
    finally:
        second.close()


def test_locked_serializes_read_modify_write() -> None:
    storage = MemoryExtensionStorage({"counter": 0})

    def _bump() -> None:
        for _ in range(50):
            with storage.locked():
                value = storage.get_value("counter")
                storage.set({"counter": value + 1})

    threads = [threading.Thread(target=_bump) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert storage.get_value("counter") == 400
