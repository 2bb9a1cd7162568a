from __future__ import annotations

import json

import typer
from rich import print

from ..config import get_config_path, load_config
from .common import read_config_or_exit, write_config_or_exit


def config_show_cmd(*, effective: bool) -> None:
    if effective:
        print(json.dumps(load_config().to_dict(), indent=2, ensure_ascii=False))
        return
    print(json.dumps(read_config_or_exit(), indent=2, ensure_ascii=False))


def config_path_cmd() -> None:
    print(str(get_config_path()))


def config_set_cmd(*, key: str, value: str) -> None:
    data = read_config_or_exit()
    defaults = load_config().to_dict()
    if key not in defaults:
        print(f"[red]Unknown config key: {key}[/red]")
        raise typer.Exit(code=1)
    try:
        data[key] = json.loads(value)
    except json.JSONDecodeError:
        data[key] = value
    write_config_or_exit(data)
    print(f"[green]{key} updated[/green]")
