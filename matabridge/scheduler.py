"""Timers for the content script.

``ThreadingScheduler`` runs callbacks on ``threading.Timer`` threads.
``ManualScheduler`` only runs them when ``advance`` moves its clock, which
keeps heartbeat and sweep behavior deterministic.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callback) -> TimerHandle: ...

    def every(self, interval_s: float, callback: Callback) -> TimerHandle: ...


def _run_safely(callback: Callback) -> None:
    try:
        callback()
    except Exception:
        logger.exception("scheduled callback failed")


class _ThreadingHandle:
    def __init__(self) -> None:
        self._timer: threading.Timer | None = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class ThreadingScheduler:
    def call_later(self, delay_s: float, callback: Callback) -> _ThreadingHandle:
        handle = _ThreadingHandle()

        def _fire() -> None:
            if not handle.cancelled:
                _run_safely(callback)

        self._arm(handle, delay_s, _fire)
        return handle

    def every(self, interval_s: float, callback: Callback) -> _ThreadingHandle:
        handle = _ThreadingHandle()

        def _fire() -> None:
            if handle.cancelled:
                return
            _run_safely(callback)
            if not handle.cancelled:
                self._arm(handle, interval_s, _fire)

        self._arm(handle, interval_s, _fire)
        return handle

    def _arm(self, handle: _ThreadingHandle, delay_s: float, fire: Callback) -> None:
        timer = threading.Timer(max(delay_s, 0.0), fire)
        timer.daemon = True
        handle._timer = timer
        timer.start()


class _ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self) -> None:
        self.now = 0.0
        self._queue: list[tuple[float, int, _ManualHandle, Callback, float | None]] = []
        self._seq = itertools.count()

    def call_later(self, delay_s: float, callback: Callback) -> _ManualHandle:
        handle = _ManualHandle()
        self._push(self.now + max(delay_s, 0.0), handle, callback, None)
        return handle

    def every(self, interval_s: float, callback: Callback) -> _ManualHandle:
        handle = _ManualHandle()
        self._push(self.now + interval_s, handle, callback, interval_s)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, interval = heapq.heappop(self._queue)
            self.now = due
            if handle.cancelled:
                continue
            _run_safely(callback)
            if interval is not None and not handle.cancelled:
                self._push(due + interval, handle, callback, interval)
        self.now = target

    def _push(
        self, due: float, handle: _ManualHandle, callback: Callback, interval: float | None
    ) -> None:
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback, interval))
