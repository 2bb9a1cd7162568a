from typing import Any

from rich.console import Console

from matabridge import keys as K
from matabridge.popup import NO_USER_MESSAGE, PopupView, load_popup, print_popup


def _render(view: PopupView) -> str:
    console = Console(record=True, width=120)
    print_popup(view, console)
    return console.export_text()


def test_no_user_shows_login_hint(worker) -> None:
    view = load_popup(worker.handle)

    assert view.logged_in is False
    assert view.settings["autoLockMinutes"] == 5
    assert NO_USER_MESSAGE in _render(view)


def test_active_user_view(worker, storage) -> None:
    worker.handle({"type": "STORE_KEYS", "email": "ada@example.com", "data": {"firstName": "Ada"}})
    storage.set(
        {
            K.ACTIVE_USER_KEY: "ada@example.com",
            K.user_data_key("bank_accounts", "ada@example.com"): [
                {"name": "Checking", "type": "debit", "balance": 100.25},
                {"name": "Savings", "type": "savings", "balance": 50},
            ],
            K.user_data_key("passwords", "ada@example.com"): [{"name": "mail"}],
        }
    )

    view = load_popup(worker.handle)

    assert view.user == "ada@example.com"
    assert view.first_name == "Ada"
    assert len(view.bank_accounts) == 2
    assert view.contacts == []
    assert view.dashboard["totalBalance"] == 150.25
    text = _render(view)
    assert "Set Yourself Free, Ada" in text
    assert "Checking" in text


def test_first_account_used_when_no_active_user(worker) -> None:
    worker.handle({"type": "STORE_KEYS", "email": "first@example.com", "data": {}})

    view = load_popup(worker.handle)

    assert view.user == "first@example.com"
    assert "Set Yourself Free, User" in _render(view)


def test_unreachable_worker_recorded() -> None:
    def _send(message: dict[str, Any]) -> dict[str, Any]:
        raise ConnectionRefusedError("worker down")

    view = load_popup(_send)

    assert view.logged_in is False
    assert "worker down" in view.errors
