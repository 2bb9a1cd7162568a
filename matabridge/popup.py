"""The popup: a read-only view of what the worker knows about the active user."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import keys as K
from .messages import MessageType

logger = logging.getLogger(__name__)

NO_USER_MESSAGE = "Please log in to MATA web application first"

Send = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass
class PopupView:
    user: str | None = None
    first_name: str = ""
    bank_accounts: list[Any] = field(default_factory=list)
    passwords: list[Any] = field(default_factory=list)
    contacts: list[Any] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    dashboard: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def logged_in(self) -> bool:
        return bool(self.user)


def _request(send: Send, view: PopupView, message: dict[str, Any]) -> dict[str, Any]:
    try:
        response = send(message)
    except Exception as exc:
        logger.warning("popup request %s failed: %s", message.get("type"), exc)
        view.errors.append(str(exc))
        return {"success": False, "error": str(exc)}
    if not response.get("success"):
        logger.debug("popup request %s unsuccessful: %s", message.get("type"), response.get("error"))
    return response


def resolve_active_user(send: Send, view: PopupView) -> tuple[str | None, list[dict[str, Any]]]:
    response = _request(
        send,
        view,
        {"type": str(MessageType.GET_LOCAL_STORAGE_VALUE), "key": K.ACTIVE_USER_KEY},
    )
    accounts_response = _request(send, view, {"type": str(MessageType.LIST_ACCOUNTS)})
    accounts = accounts_response.get("accounts") or []
    value = response.get("value") if response.get("success") else None
    user = K.decode_value(value) if isinstance(value, str) else value
    if isinstance(user, str) and user.strip():
        return user.strip(), accounts
    for account in accounts:
        if isinstance(account, dict) and account.get("email"):
            return str(account["email"]), accounts
    return None, accounts


def load_popup(send: Send) -> PopupView:
    view = PopupView()
    user, accounts = resolve_active_user(send, view)
    settings = _request(send, view, {"type": str(MessageType.GET_SETTINGS)})
    view.settings = settings.get("settings") or {}
    if not user:
        return view
    view.user = user
    for account in accounts:
        if isinstance(account, dict) and account.get("email") == user:
            view.first_name = str(account.get("firstName") or "")
    view.bank_accounts = _request(
        send, view, {"type": str(MessageType.GET_BANK_ACCOUNTS), "email": user}
    ).get("bankAccounts") or []
    view.passwords = _request(
        send, view, {"type": str(MessageType.GET_PASSWORDS), "email": user}
    ).get("passwords") or []
    view.contacts = _request(
        send, view, {"type": str(MessageType.GET_CONTACTS), "email": user}
    ).get("contacts") or []
    view.dashboard = _request(
        send, view, {"type": str(MessageType.GET_DASHBOARD_DATA), "email": user}
    ).get("data") or {}
    return view


def _item_table(title: str, items: list[Any], columns: tuple[str, ...]) -> Table:
    table = Table(title=title, show_lines=False)
    for column in columns:
        table.add_column(column)
    for item in items:
        if not isinstance(item, dict):
            continue
        table.add_row(*(str(item.get(column, "")) for column in columns))
    if not items:
        table.caption = "No entries"
    return table


def render_popup(view: PopupView) -> Panel:
    if not view.logged_in:
        return Panel(Text(NO_USER_MESSAGE, style="yellow"), title="MATA")
    greeting = Text(f"Set Yourself Free, {view.first_name or 'User'}", style="bold")
    summary = Text(
        f"{view.user}  ·  total balance {view.dashboard.get('totalBalance', 0)}",
        style="dim",
    )
    settings = Table(title="Settings")
    settings.add_column("setting")
    settings.add_column("value")
    for name, value in view.settings.items():
        settings.add_row(name, str(value))
    return Panel(
        Group(
            greeting,
            summary,
            _item_table("Bank accounts", view.bank_accounts, ("name", "type", "balance")),
            _item_table("Passwords", view.passwords, ("name", "username", "url")),
            _item_table("Contacts", view.contacts, ("name", "email", "phone")),
            settings,
        ),
        title="MATA",
    )


def print_popup(view: PopupView, console: Console | None = None) -> None:
    (console or Console()).print(render_popup(view))
