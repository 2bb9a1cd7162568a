import pytest

from matabridge.storage.extension import MemoryExtensionStorage
from matabridge.transport import (
    ErrorKind,
    HttpRuntime,
    InProcessRuntime,
    TransportError,
    classify_error,
)
from matabridge.utils import OperationTimeout
from matabridge.worker.dispatcher import BackgroundWorker, Sender


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (RuntimeError("Extension context invalidated."), ErrorKind.CONTEXT_INVALIDATED),
        (OperationTimeout("step timed out"), ErrorKind.TIMEOUT),
        (TimeoutError(), ErrorKind.TIMEOUT),
        (ConnectionRefusedError("refused"), ErrorKind.RUNTIME_UNAVAILABLE),
        (ValueError("bad"), ErrorKind.SEND_ERROR),
    ],
)
def test_classify_error(exc: BaseException, kind: ErrorKind) -> None:
    assert classify_error(exc).kind is kind


def test_classify_error_passes_transport_errors_through() -> None:
    error = TransportError(ErrorKind.PROCESSING_ERROR, "x")
    assert classify_error(error) is error


def test_only_context_invalidation_is_permanent() -> None:
    assert ErrorKind.CONTEXT_INVALIDATED.permanent
    assert not any(kind.permanent for kind in ErrorKind if kind is not ErrorKind.CONTEXT_INVALIDATED)


def test_in_process_runtime_requires_running_worker() -> None:
    worker = BackgroundWorker(MemoryExtensionStorage())
    runtime = InProcessRuntime(worker, Sender(kind="content_script"))

    with pytest.raises(TransportError) as excinfo:
        runtime.send_message({"type": "HEARTBEAT"})

    assert excinfo.value.kind is ErrorKind.RUNTIME_ERROR


def test_in_process_runtime_invalidation(worker: BackgroundWorker) -> None:
    runtime = InProcessRuntime(worker, Sender(kind="content_script"))
    assert runtime.send_message({"type": "HEARTBEAT"})["success"] is True

    runtime.invalidate()
    assert not runtime.available()
    with pytest.raises(TransportError) as excinfo:
        runtime.send_message({"type": "HEARTBEAT"})
    assert excinfo.value.kind is ErrorKind.CONTEXT_INVALIDATED

    runtime.restore()
    assert runtime.send_message({"type": "CHECK_EXTENSION"})["installed"] is True


def test_in_process_runtime_waits_for_async_kinds(worker: BackgroundWorker) -> None:
    runtime = InProcessRuntime(worker, Sender(kind="content_script"))
    response = runtime.send_message({"type": "LIST_ACCOUNTS", "requestId": "req_x"})
    assert response == {"success": True, "accounts": [], "requestId": "req_x"}


def test_http_runtime_without_address_is_unavailable() -> None:
    runtime = HttpRuntime("  ", extension_id="id", version="1")
    assert not runtime.available()
    with pytest.raises(TransportError) as excinfo:
        runtime.send_message({"type": "HEARTBEAT"})
    assert excinfo.value.kind is ErrorKind.RUNTIME_UNAVAILABLE
