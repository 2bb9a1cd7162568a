"""The host page as the content script sees it: window events, DOM, history."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..storage.indexeddb import IndexedDB
from ..storage.local import LocalStorage

logger = logging.getLogger(__name__)


@dataclass
class CustomEvent:
    type: str
    detail: Any = None


Listener = Callable[[CustomEvent], None]


class EventTarget:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._listener_lock = threading.Lock()

    def add_event_listener(self, event_type: str, listener: Listener) -> None:
        with self._listener_lock:
            listeners = self._listeners.setdefault(event_type, [])
            if listener not in listeners:
                listeners.append(listener)

    def remove_event_listener(self, event_type: str, listener: Listener) -> None:
        with self._listener_lock:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

    def listener_count(self, event_type: str) -> int:
        with self._listener_lock:
            return len(self._listeners.get(event_type, []))

    def dispatch_event(self, event: CustomEvent) -> None:
        with self._listener_lock:
            listeners = list(self._listeners.get(event.type, []))
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("%s listener failed", event.type)


@dataclass
class Element:
    tag: str
    id: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    style: dict[str, str] = field(default_factory=dict)

    def set_attribute(self, name: str, value: Any) -> None:
        self.attributes[name] = str(value)

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)


class Document(EventTarget):
    def __init__(self, *, has_body: bool = True) -> None:
        super().__init__()
        self.ready_state = "complete" if has_body else "loading"
        self.body: Element | None = Element("body") if has_body else None
        self._elements: dict[str, Element] = {}

    def create_element(self, tag: str) -> Element:
        return Element(tag)

    def get_element_by_id(self, element_id: str) -> Element | None:
        return self._elements.get(element_id)

    def append_to_body(self, element: Element) -> None:
        if self.body is None:
            raise RuntimeError("document.body is not available")
        if element.id:
            self._elements[element.id] = element

    def elements(self) -> list[Element]:
        return list(self._elements.values())


class History:
    def __init__(self, page: Page) -> None:
        self._page = page
        self._entries: list[tuple[Any, str]] = [(None, page.url)]
        self._index = 0

    def push_state(self, state: Any, title: str, url: str | None = None) -> None:
        target = url or self._page.url
        del self._entries[self._index + 1 :]
        self._entries.append((state, target))
        self._index += 1
        self._page.url = target

    def replace_state(self, state: Any, title: str, url: str | None = None) -> None:
        target = url or self._page.url
        self._entries[self._index] = (state, target)
        self._page.url = target

    def back(self) -> None:
        if self._index == 0:
            return
        self._index -= 1
        state, url = self._entries[self._index]
        self._page.url = url
        self._page.dispatch_event(CustomEvent("popstate", state))


class Page(EventTarget):
    """A browser tab's window: storage, document, history and custom events."""

    def __init__(
        self,
        url: str = "https://app.mata-app.com/",
        *,
        local_storage: LocalStorage | None = None,
        indexeddb: IndexedDB | None = None,
        has_body: bool = True,
    ) -> None:
        super().__init__()
        self.url = url
        self.local_storage = local_storage if local_storage is not None else LocalStorage()
        self.indexeddb = indexeddb if indexeddb is not None else IndexedDB()
        self.document = Document(has_body=has_body)
        self.history = History(self)

    def finish_loading(self) -> None:
        """Attach the body and fire ``DOMContentLoaded`` then ``load``."""
        if self.document.body is None:
            self.document.body = Element("body")
        self.document.ready_state = "interactive"
        self.document.dispatch_event(CustomEvent("DOMContentLoaded"))
        self.document.ready_state = "complete"
        self.dispatch_event(CustomEvent("load"))
