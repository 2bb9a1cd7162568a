"""Resynchronization sweep: push critical page keys to the worker in batches."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any

from .. import keys as K
from ..messages import MessageType
from ..storage.local import LocalStorage, StorageEvent
from ..transport import ExtensionRuntime, TransportError, classify_error
from .cache import KeyCache

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    files: dict[str, str] = field(default_factory=dict)
    batches: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.files)


def collect_critical_files(local_storage: LocalStorage) -> dict[str, str]:
    """Active user first, then keys and salts in page storage order."""
    files: dict[str, str] = {}
    snapshot = local_storage.items()
    active = snapshot.get(K.ACTIVE_USER_KEY)
    if active:
        files[K.ACTIVE_USER_KEY] = active
    for key, value in snapshot.items():
        if key.startswith((K.SALT_PREFIX, K.KEYS_PREFIX)):
            files[key] = value
    return files


def build_batches(files: dict[str, str], batch_size: int) -> list[dict[str, Any]]:
    names = list(files)
    size = max(batch_size, 1)
    total = math.ceil(len(names) / size)
    batches = []
    for number, start in enumerate(range(0, len(names), size), start=1):
        chunk = {name: files[name] for name in names[start : start + size]}
        batches.append(
            {
                "type": str(MessageType.SYNC_CRITICAL_FILES),
                "files": chunk,
                "count": len(chunk),
                "batch": number,
                "totalBatches": total,
            }
        )
    return batches


class CriticalFileSweep:
    def __init__(
        self,
        runtime: ExtensionRuntime,
        local_storage: LocalStorage,
        cache: KeyCache,
        *,
        batch_size: int = 3,
    ) -> None:
        self.runtime = runtime
        self.local_storage = local_storage
        self.cache = cache
        self.batch_size = batch_size
        self.runs = 0
        self._lock = threading.Lock()
        self._listening = False

    def run(self) -> SweepResult:
        with self._lock:
            self.runs += 1
        files = collect_critical_files(self.local_storage)
        self.cache.refresh_from(self.local_storage)
        result = SweepResult(files=files)
        if not files:
            logger.debug("sweep found no critical files")
            return result
        for batch in build_batches(files, self.batch_size):
            result.batches.append(batch)
            error = self._send(batch)
            if error:
                result.errors.append(error)
        logger.info(
            "sweep pushed %s critical files in %s batches", result.count, len(result.batches)
        )
        return result

    def listen(self) -> None:
        """Push single critical keys as page storage changes. Idempotent."""
        with self._lock:
            if self._listening:
                return
            self._listening = True
        self.local_storage.add_listener(self.on_storage_event)

    def close(self) -> None:
        with self._lock:
            listening, self._listening = self._listening, False
        if listening:
            self.local_storage.remove_listener(self.on_storage_event)

    def on_storage_event(self, event: StorageEvent) -> None:
        if event.key is None:
            self.cache.invalidate()
            return
        if not K.is_critical_key(event.key):
            return
        self.cache.invalidate(event.key)
        self._send(
            {
                "type": str(MessageType.SYNC_CRITICAL_FILES),
                "files": {event.key: event.new_value},
                "count": 1,
            }
        )

    def _send(self, message: dict[str, Any]) -> str | None:
        try:
            response = self.runtime.send_message(message)
        except TransportError as exc:
            logger.warning("critical file batch not delivered (%s)", exc.kind)
            return exc.message
        except Exception as exc:
            error = classify_error(exc)
            logger.warning("critical file batch not delivered (%s)", error.kind)
            return error.message
        if not response.get("success"):
            error_text = str(response.get("error") or "unknown error")
            logger.warning("critical file batch rejected: %s", error_text)
            return error_text
        return None
