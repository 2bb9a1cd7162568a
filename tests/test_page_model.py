from typing import Any

import pytest

from matabridge.content.page import CustomEvent, Page
from matabridge.scheduler import ManualScheduler
from matabridge.storage.indexeddb import IndexedDB, IndexedDBError
from matabridge.storage.local import LocalStorage, StorageEvent


def test_local_storage_is_string_only_and_ordered() -> None:
    storage = LocalStorage({"b": 1})
    storage.set_item("a", {"x": 1})

    assert storage.keys() == ["b", "a"]
    assert storage.get_item("b") == "1"
    assert storage.key(1) == "a"
    assert storage.key(5) is None
    assert "a" in storage and len(storage) == 2


def test_local_storage_notifies_changes_only() -> None:
    storage = LocalStorage()
    events: list[StorageEvent] = []
    storage.add_listener(events.append)
    storage.add_listener(events.append)

    storage.set_item("k", "v")
    storage.set_item("k", "v")
    storage.remove_item("k")
    storage.remove_item("k")
    storage.clear()

    assert storage.listener_count == 1
    assert events == [
        StorageEvent("k", None, "v"),
        StorageEvent("k", "v", None),
        StorageEvent(None, None, None),
    ]


def test_local_storage_listener_errors_do_not_propagate() -> None:
    storage = LocalStorage()

    def _boom(event: StorageEvent) -> None:
        raise RuntimeError("listener failed")

    storage.add_listener(_boom)
    storage.set_item("k", "v")
    assert storage.get_item("k") == "v"


def test_indexeddb_open_creates_and_fail_blocks() -> None:
    indexeddb = IndexedDB()
    database = indexeddb.open("mata-keys")
    store = database.create_object_store("keys", [{"id": "a"}])
    store.add({"id": "b"})

    assert indexeddb.open("mata-keys").object_store("keys").count() == 2
    assert store.get_all(1) == [{"id": "a"}]
    with pytest.raises(IndexedDBError):
        database.create_object_store("keys")
    with pytest.raises(IndexedDBError):
        database.object_store("missing")

    indexeddb.fail("mata-keys")
    with pytest.raises(IndexedDBError, match="open blocked"):
        indexeddb.open("mata-keys")
    indexeddb.recover("mata-keys")
    assert indexeddb.open("mata-keys") is database


def test_history_navigation_updates_url_and_fires_popstate() -> None:
    page = Page("https://app.mata-app.com/")
    states: list[Any] = []
    page.add_event_listener("popstate", lambda event: states.append(event.detail))

    page.history.push_state({"view": "vault"}, "", "https://app.mata-app.com/vault")
    assert page.url == "https://app.mata-app.com/vault"
    page.history.back()

    assert page.url == "https://app.mata-app.com/"
    assert states == [None]


def test_page_without_body_gets_one_when_loaded() -> None:
    page = Page(has_body=False)
    seen: list[str] = []
    page.document.add_event_listener("DOMContentLoaded", lambda e: seen.append(e.type))
    page.add_event_listener("load", lambda e: seen.append(e.type))

    with pytest.raises(RuntimeError):
        page.document.append_to_body(page.document.create_element("div"))
    page.finish_loading()

    assert page.document.body is not None
    assert seen == ["DOMContentLoaded", "load"]


def test_event_listener_failures_are_isolated() -> None:
    page = Page()
    seen: list[Any] = []

    def _boom(event: CustomEvent) -> None:
        raise ValueError("bad listener")

    page.add_event_listener("x", _boom)
    page.add_event_listener("x", lambda event: seen.append(event.detail))
    page.dispatch_event(CustomEvent("x", 1))

    assert seen == [1]


def test_manual_scheduler_runs_due_callbacks_in_order() -> None:
    scheduler = ManualScheduler()
    calls: list[str] = []
    scheduler.call_later(1.0, lambda: calls.append("once"))
    ticker = scheduler.every(0.5, lambda: calls.append("tick"))

    scheduler.advance(1.0)
    assert calls == ["tick", "once", "tick"]

    ticker.cancel()
    scheduler.advance(5)
    assert calls == ["tick", "once", "tick"]
    assert scheduler.pending == 0
