from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator
from typing import Any

import typer
from rich import print

from ..config import BridgeConfig, read_config_file, write_config_file
from ..storage.extension import SqliteExtensionStorage
from ..transport import HttpRuntime
from ..worker.dispatcher import BackgroundWorker, Sender

Send = Callable[[dict[str, Any]], dict[str, Any]]


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def write_config_or_exit(data: dict[str, Any]) -> None:
    try:
        write_config_file(data)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@contextlib.contextmanager
def worker_client(
    config: BridgeConfig,
    *,
    db_path: str | None = None,
    url: str | None = None,
    origin: str | None = None,
) -> Iterator[Send]:
    """Yield a send function bound to a daemon (``url``) or an in-process worker."""
    if url:
        runtime = HttpRuntime(
            url,
            extension_id=config.extension_id,
            version=config.extension_version,
            timeout_s=config.message_timeout_s,
            origin=origin,
        )
        yield runtime.send_message
        return
    storage = SqliteExtensionStorage(db_path or config.db_path)
    worker = BackgroundWorker(storage, config)
    sender = Sender(kind="external" if origin else "popup", origin=origin)
    try:
        if origin:

            def _send_external(message: dict[str, Any]) -> dict[str, Any]:
                # The worker is not started, so the response arrives inline.
                responses: list[dict[str, Any]] = []
                worker.on_message_external(message, sender, responses.append)
                return responses[0]

            yield _send_external
        else:
            yield lambda message: worker.handle(message, sender)
    finally:
        storage.close()


def print_failure(response: dict[str, Any]) -> None:
    print(f"[red]{response.get('error') or 'request failed'}[/red]")
