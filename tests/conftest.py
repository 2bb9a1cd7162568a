from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from matabridge.content.page import CustomEvent, Page
from matabridge.messages import EXTENSION_RESPONSE_EVENT
from matabridge.scheduler import ManualScheduler
from matabridge.storage.extension import MemoryExtensionStorage
from matabridge.transport import CONTEXT_INVALIDATED_MESSAGE, ErrorKind, TransportError
from matabridge.worker.dispatcher import BackgroundWorker


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MATA_BRIDGE_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("MATA_BRIDGE_DB", str(tmp_path / "extension.sqlite"))


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def storage() -> MemoryExtensionStorage:
    return MemoryExtensionStorage()


@pytest.fixture
def worker(storage: MemoryExtensionStorage) -> Iterator[BackgroundWorker]:
    with BackgroundWorker(storage) as running:
        yield running


@pytest.fixture
def page() -> Page:
    return Page("https://app.mata-app.com/vault")


@pytest.fixture
def responses(page: Page) -> list[dict[str, Any]]:
    """Every ``MATA_EXTENSION_RESPONSE`` detail the page receives."""
    received: list[dict[str, Any]] = []

    def _collect(event: CustomEvent) -> None:
        received.append(event.detail)

    page.add_event_listener(EXTENSION_RESPONSE_EVENT, _collect)
    return received


class FakeRuntime:
    """Records every message sent; answers through ``responders`` keyed by type."""

    extension_id = "test-extension"
    version = "9.9.9"

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.responders: dict[str, Any] = {}
        self.valid = True

    def available(self) -> bool:
        return self.valid

    def send_message(self, message: dict[str, Any]) -> dict[str, Any]:
        if not self.valid:
            raise TransportError(ErrorKind.CONTEXT_INVALIDATED, CONTEXT_INVALIDATED_MESSAGE)
        self.sent.append(message)
        responder = self.responders.get(message.get("type", ""))
        if responder is not None:
            return responder(message)
        return {"success": True}

    def sent_of(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()
