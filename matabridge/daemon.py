"""Long running worker process: HTTP surface plus the keep-alive heartbeat."""

from __future__ import annotations

import logging
import socket
import threading
import time
import traceback
from http.server import ThreadingHTTPServer
from pathlib import Path

from .config import BridgeConfig
from .keys import SERVICE_WORKER_HEARTBEAT_KEY
from .messages import now_ms
from .storage.extension import ExtensionStorage, SqliteExtensionStorage
from .worker.dispatcher import BackgroundWorker
from .worker_http import build_worker_handler

logger = logging.getLogger(__name__)


def keep_alive_tick(worker: BackgroundWorker) -> int:
    """Write the service worker heartbeat timestamp; returns it."""
    stamp = now_ms()
    worker.storage_call(
        lambda: worker.storage.set({SERVICE_WORKER_HEARTBEAT_KEY: stamp}),
        label="keep-alive",
    )
    return stamp


class WorkerServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], handler) -> None:
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(address, handler)

    def server_bind(self) -> None:
        # Accept IPv4 clients on an IPv6 listener where the platform allows it.
        if self.address_family == socket.AF_INET6:
            try:
                self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            except OSError:
                logger.debug("dual-stack listener unavailable")
        super().server_bind()


def build_server(host: str, port: int, worker: BackgroundWorker) -> WorkerServer:
    return WorkerServer((host, port), build_worker_handler(worker))


def _record_failure(log_path: str | None) -> None:
    logger.warning("keep-alive tick failed")
    if not log_path:
        return
    stamp = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    entry = f"\n[{stamp}] keep-alive\n{traceback.format_exc()}\n"
    path = Path(log_path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8", errors="replace") as log_file:
            log_file.write(entry)
    except OSError as exc:
        logger.debug("could not write %s: %s", path, exc)


def run_worker_daemon(
    config: BridgeConfig,
    *,
    storage: ExtensionStorage | None = None,
    stop_event: threading.Event | None = None,
) -> None:
    """Serve the worker until ``stop_event`` is set, ticking the heartbeat meanwhile."""
    storage = storage or SqliteExtensionStorage(config.db_path)
    worker = BackgroundWorker(storage, config).start()
    server = build_server(config.worker_host, config.worker_port, worker)
    threading.Thread(target=server.serve_forever, name="worker-http", daemon=True).start()
    logger.info("worker listening on %s:%s", config.worker_host, server.server_address[1])
    stop = stop_event if stop_event is not None else threading.Event()
    try:
        while True:
            try:
                keep_alive_tick(worker)
            except Exception:
                _record_failure(config.log_path)
            if stop.wait(config.keep_alive_interval_s):
                break
    finally:
        server.shutdown()
        server.server_close()
        worker.stop()
        storage.close()
