"""Open page tabs as seen by the worker, and URL match patterns."""

from __future__ import annotations

import itertools
import logging
import re
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from ..utils import call_with_timeout

logger = logging.getLogger(__name__)

TabHandler = Callable[[dict[str, Any]], dict[str, Any]]

_PATTERN_RE = re.compile(r"^(\*|https?|file)://([^/]*)(/.*)$")


class TabError(RuntimeError):
    pass


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    match = _PATTERN_RE.match(pattern)
    if not match:
        raise ValueError(f"invalid match pattern: {pattern}")
    scheme, host, path = match.groups()
    scheme_re = "https?" if scheme == "*" else re.escape(scheme)
    if host == "*":
        host_re = "[^/]*"
    elif host.startswith("*."):
        host_re = r"(?:[^/]*\.)?" + re.escape(host[2:]).replace(r"\*", "[^/]*")
    else:
        host_re = re.escape(host).replace(r"\*", "[^/]*")
    path_re = re.escape(path).replace(r"\*", ".*")
    return re.compile(f"^{scheme_re}://{host_re}{path_re}$")


def url_matches(url: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        try:
            if _compile_pattern(pattern).match(url):
                return True
        except ValueError:
            logger.warning("skipping invalid match pattern %s", pattern)
    return False


@dataclass
class Tab:
    tab_id: int
    url: str
    handler: TabHandler
    title: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.tab_id, "url": self.url, "title": self.title}


class TabRegistry:
    def __init__(self) -> None:
        self._tabs: dict[int, Tab] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, url: str, handler: TabHandler, *, title: str = "") -> Tab:
        tab = Tab(tab_id=next(self._ids), url=url, handler=handler, title=title)
        with self._lock:
            self._tabs[tab.tab_id] = tab
        return tab

    def update_url(self, tab_id: int, url: str) -> None:
        with self._lock:
            tab = self._tabs.get(tab_id)
            if tab is not None:
                tab.url = url

    def close(self, tab_id: int) -> None:
        with self._lock:
            self._tabs.pop(tab_id, None)

    def all(self) -> list[Tab]:
        with self._lock:
            return list(self._tabs.values())

    def query(self, patterns: Iterable[str]) -> list[Tab]:
        wanted = list(patterns)
        return [tab for tab in self.all() if url_matches(tab.url, wanted)]

    def send_message(
        self, tab_id: int, message: dict[str, Any], *, timeout_s: float = 5.0
    ) -> dict[str, Any]:
        with self._lock:
            tab = self._tabs.get(tab_id)
        if tab is None:
            raise TabError(f"no tab with id {tab_id}")
        label = str(message.get("action") or message.get("type") or "tab message")
        response = call_with_timeout(lambda: tab.handler(dict(message)), timeout_s, label=label)
        if not isinstance(response, dict):
            raise TabError(f"{label}: tab returned no response")
        return response
