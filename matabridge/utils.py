from __future__ import annotations

import concurrent.futures
import datetime as dt
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

_TIMEOUT_POOL = concurrent.futures.ThreadPoolExecutor(
    max_workers=8, thread_name_prefix="matabridge-timeout"
)


class OperationTimeout(TimeoutError):
    pass


def call_with_timeout(fn: Callable[[], T], timeout_s: float, *, label: str) -> T:
    """Run ``fn`` and give up after ``timeout_s`` seconds.

    The underlying call is not cancelled; if it finishes later its result is
    discarded.
    """
    future = _TIMEOUT_POOL.submit(fn)
    try:
        return future.result(timeout=timeout_s)
    except concurrent.futures.TimeoutError as exc:
        raise OperationTimeout(f"{label} timed out after {timeout_s:g} seconds") from exc


def iso_now() -> str:
    return dt.datetime.now(dt.UTC).isoformat()
