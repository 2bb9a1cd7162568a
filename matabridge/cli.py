from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.common import configure_logging
from .commands.config_cmds import config_path_cmd, config_set_cmd, config_show_cmd
from .commands.worker_cmds import (
    accounts_cmd,
    keys_cmd,
    popup_cmd,
    send_cmd,
    serve_cmd,
    storage_check_cmd,
    sync_status_cmd,
)
from .config import load_config

app = typer.Typer(help="matabridge: MATA extension storage sync and message relay")
config_app = typer.Typer(help="Inspect and edit matabridge configuration")
app.add_typer(config_app, name="config")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose)


@app.command()
def serve(
    host: str = typer.Option(None, help="Address to bind"),
    port: int = typer.Option(None, help="Port to bind"),
) -> None:
    """Run the background worker daemon."""

    serve_cmd(load_config(), host=host, port=port)


@app.command()
def send(
    message_type: str = typer.Argument(..., help="Message type, e.g. GET_KEYS"),
    data: str = typer.Option(None, help="JSON object sent as the message data"),
    email: str = typer.Option(None, help="Top-level email field"),
    origin: str = typer.Option(None, help="Send as an external message from this origin"),
    url: str = typer.Option(None, help="Worker daemon address; in-process when omitted"),
    db_path: str = typer.Option(None, help="Path to the extension storage database"),
) -> None:
    """Send one message to the worker and print the response."""

    send_cmd(
        load_config(),
        message_type=message_type,
        data=data,
        email=email,
        db_path=db_path,
        url=url,
        origin=origin,
    )


@app.command()
def accounts(
    url: str = typer.Option(None, help="Worker daemon address"),
    db_path: str = typer.Option(None, help="Path to the extension storage database"),
) -> None:
    """List stored accounts."""

    accounts_cmd(load_config(), db_path=db_path, url=url)


@app.command()
def keys(
    email: str = typer.Argument(..., help="Account email"),
    url: str = typer.Option(None, help="Worker daemon address"),
    db_path: str = typer.Option(None, help="Path to the extension storage database"),
) -> None:
    """Show which key material is stored for an account (never the keys)."""

    keys_cmd(load_config(), email=email, db_path=db_path, url=url)


@app.command("test-storage")
def storage_test(
    url: str = typer.Option(None, help="Worker daemon address"),
    db_path: str = typer.Option(None, help="Path to the extension storage database"),
) -> None:
    """Run the extension storage self-test."""

    storage_check_cmd(load_config(), db_path=db_path, url=url)


@app.command("sync-status")
def sync_status(
    url: str = typer.Option(None, help="Worker daemon address"),
    db_path: str = typer.Option(None, help="Path to the extension storage database"),
) -> None:
    """Show the last sync result."""

    sync_status_cmd(load_config(), db_path=db_path, url=url)


@app.command()
def popup(
    url: str = typer.Option(None, help="Worker daemon address"),
    db_path: str = typer.Option(None, help="Path to the extension storage database"),
) -> None:
    """Render the popup view for the active user."""

    popup_cmd(load_config(), db_path=db_path, url=url)


@config_app.command("show")
def config_show(
    effective: bool = typer.Option(False, help="Show defaults and env overrides applied"),
) -> None:
    """Print the config file."""

    config_show_cmd(effective=effective)


@config_app.command("path")
def config_path() -> None:
    """Print the config file path."""

    config_path_cmd()


@config_app.command("set")
def config_set(
    key: str = typer.Argument(...),
    value: str = typer.Argument(..., help="JSON value, or a plain string"),
) -> None:
    """Set one config value in the config file."""

    config_set_cmd(key=key, value=value)


@app.command("version")
def version() -> None:
    """Print the matabridge version."""

    print(__version__)
