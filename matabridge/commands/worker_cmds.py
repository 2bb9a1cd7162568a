from __future__ import annotations

import json
import threading
from typing import Any

import typer
from rich import print
from rich.console import Console
from rich.table import Table

from ..config import BridgeConfig
from ..daemon import run_worker_daemon
from ..messages import MessageType
from ..popup import load_popup, print_popup
from ..redaction import describe_bundle
from .common import print_failure, worker_client


def serve_cmd(config: BridgeConfig, *, host: str | None, port: int | None) -> None:
    if host:
        config.worker_host = host
    if port is not None:
        config.worker_port = port
    print(
        f"[green]matabridge worker on http://{config.worker_host}:{config.worker_port}[/green]"
    )
    stop = threading.Event()
    try:
        run_worker_daemon(config, stop_event=stop)
    except KeyboardInterrupt:
        stop.set()
    except OSError as exc:
        print(f"[red]Could not start worker: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _parse_data(data: str | None) -> dict[str, Any]:
    if not data:
        return {}
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        print(f"[red]--data is not valid JSON: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not isinstance(parsed, dict):
        print("[red]--data must be a JSON object[/red]")
        raise typer.Exit(code=1)
    return parsed


def send_cmd(
    config: BridgeConfig,
    *,
    message_type: str,
    data: str | None,
    email: str | None,
    db_path: str | None,
    url: str | None,
    origin: str | None,
) -> None:
    try:
        kind = MessageType(message_type.upper())
    except ValueError as exc:
        print(f"[red]Unknown message type: {message_type}[/red]")
        raise typer.Exit(code=1) from exc
    message: dict[str, Any] = {"type": str(kind)}
    payload = _parse_data(data)
    if payload:
        message["data"] = payload
    if email:
        message["email"] = email
    with worker_client(config, db_path=db_path, url=url, origin=origin) as send:
        response = send(message)
    if kind in {MessageType.GET_KEYS, MessageType.STORE_KEYS} and "keys" in response:
        response = {**response, "keys": describe_bundle(response["keys"])}
    print(json.dumps(response, indent=2, ensure_ascii=False))
    if not response.get("success"):
        raise typer.Exit(code=1)


def accounts_cmd(config: BridgeConfig, *, db_path: str | None, url: str | None) -> None:
    with worker_client(config, db_path=db_path, url=url) as send:
        response = send({"type": str(MessageType.LIST_ACCOUNTS)})
    if not response.get("success"):
        print_failure(response)
        raise typer.Exit(code=1)
    accounts = response.get("accounts") or []
    if not accounts:
        print("[yellow]No accounts stored[/yellow]")
        return
    table = Table(title="Accounts")
    table.add_column("email")
    table.add_column("first name")
    table.add_column("created")
    table.add_column("public key")
    for account in accounts:
        table.add_row(
            str(account.get("email") or ""),
            str(account.get("firstName") or ""),
            str(account.get("created") or ""),
            "yes" if account.get("publicKey") else "no",
        )
    Console().print(table)


def keys_cmd(
    config: BridgeConfig, *, email: str, db_path: str | None, url: str | None
) -> None:
    with worker_client(config, db_path=db_path, url=url) as send:
        response = send({"type": str(MessageType.GET_KEYS), "email": email})
    if not response.get("success"):
        print_failure(response)
        raise typer.Exit(code=1)
    flags = describe_bundle(response.get("keys"))
    print(f"[bold]{email}[/bold] (source: {response.get('source', 'unknown')})")
    for name in ("hasPublicKey", "hasPrivateKey", "hasSalt"):
        if name in flags:
            print(f"- {name}: {flags[name]}")
    if flags.get("fields"):
        print(f"- fields: {', '.join(flags['fields'])}")


def storage_check_cmd(config: BridgeConfig, *, db_path: str | None, url: str | None) -> None:
    with worker_client(config, db_path=db_path, url=url) as send:
        response = send({"type": str(MessageType.TEST_STORAGE)})
    steps = response.get("steps") or {}
    table = Table(title="Storage self-test")
    table.add_column("step")
    table.add_column("result")
    for name, step in steps.items():
        passed = isinstance(step, dict) and step.get("success")
        table.add_row(name, "[green]ok[/green]" if passed else "[red]failed[/red]")
    Console().print(table)
    print(f"storage accessible: {response.get('storageAccessible')}")
    print(f"items stored: {response.get('totalStoredItems', 0)}")
    if not response.get("success"):
        raise typer.Exit(code=1)


def sync_status_cmd(config: BridgeConfig, *, db_path: str | None, url: str | None) -> None:
    with worker_client(config, db_path=db_path, url=url) as send:
        response = send({"type": str(MessageType.CHECK_SYNC_STATUS)})
    if not response.get("success"):
        print_failure(response)
        raise typer.Exit(code=1)
    state = "[green]synced[/green]" if response.get("synced") else "[yellow]not synced[/yellow]"
    print(f"- status: {state}")
    print(f"- last sync: {response.get('lastSyncTime') or 'never'}")
    storage_sync = response.get("storageSync")
    if isinstance(storage_sync, dict):
        print(
            f"- storage sync: {storage_sync.get('keysCount', 0)} keys, "
            f"{storage_sync.get('errorCount', 0)} errors"
        )


def popup_cmd(config: BridgeConfig, *, db_path: str | None, url: str | None) -> None:
    with worker_client(config, db_path=db_path, url=url) as send:
        view = load_popup(send)
    print_popup(view)
