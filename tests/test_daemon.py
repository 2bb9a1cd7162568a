import threading
from pathlib import Path

from matabridge.config import BridgeConfig
from matabridge.daemon import build_server, keep_alive_tick, run_worker_daemon
from matabridge.http_client import request_json
from matabridge.keys import SERVICE_WORKER_HEARTBEAT_KEY
from matabridge.storage.extension import MemoryExtensionStorage


def test_keep_alive_tick_writes_heartbeat(worker, storage) -> None:
    stamp = keep_alive_tick(worker)

    assert storage.get_value(SERVICE_WORKER_HEARTBEAT_KEY) == stamp


def test_build_server_serves_status(worker) -> None:
    server = build_server("127.0.0.1", 0, worker)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        status, payload = request_json(
            "GET", f"http://127.0.0.1:{server.server_address[1]}/v1/status"
        )
    finally:
        server.shutdown()
        server.server_close()

    assert status == 200
    assert payload is not None and payload["installed"] is True


def test_daemon_ticks_then_stops(tmp_path: Path) -> None:
    storage = MemoryExtensionStorage()
    config = BridgeConfig(worker_port=0, log_path=str(tmp_path / "worker.log"))
    stop = threading.Event()
    stop.set()

    run_worker_daemon(config, storage=storage, stop_event=stop)

    assert storage.get_value(SERVICE_WORKER_HEARTBEAT_KEY) is not None
    assert not (tmp_path / "worker.log").exists()


def test_daemon_logs_failed_tick(tmp_path: Path) -> None:
    storage = MemoryExtensionStorage(available=False)
    log_path = tmp_path / "logs" / "worker.log"
    config = BridgeConfig(worker_port=0, log_path=str(log_path))
    stop = threading.Event()
    stop.set()

    run_worker_daemon(config, storage=storage, stop_event=stop)

    text = log_path.read_text()
    assert "StorageError" in text
    assert "Traceback" in text
