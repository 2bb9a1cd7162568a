"""Account, key bundle, user data and settings handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .. import keys as K
from ..messages import Message, now_ms, ok
from ..redaction import describe_bundle

if TYPE_CHECKING:
    from .dispatcher import BackgroundWorker, Sender

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, Any] = {
    "autoLockMinutes": 5,
    "requirePassword": True,
    "dataSync": True,
}

PUBLIC_ACCOUNT_FIELDS = ("email", "firstName", "created", "lastUpdated", "publicKey")

_CONTROL_FIELDS = {"setActive"}


def _resolve_identifier(worker: BackgroundWorker, message: Message) -> str:
    identifier = message.get("email")
    if isinstance(identifier, str) and identifier.strip():
        return identifier.strip()
    active = worker.active_user()
    if active:
        return active
    raise ValueError("Email is required")


def _bundle_from(data: dict[str, Any]) -> tuple[Any, Any]:
    nested = data.get("keys")
    if isinstance(nested, dict):
        bundle: Any = {k: v for k, v in nested.items() if k != "salt"}
        salt = nested.get("salt", data.get("salt"))
    elif isinstance(nested, str) and nested:
        bundle = K.decode_value(nested)
        salt = data.get("salt")
    else:
        bundle = {k: v for k, v in data.items() if k not in _CONTROL_FIELDS and k != "salt"}
        salt = data.get("salt")
    return bundle, salt


def store_keys(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    email = message.email
    if not email:
        raise ValueError("Invalid user data: missing required fields")
    data = {k: v for k, v in message.data.items() if k not in _CONTROL_FIELDS}
    record = {**data, "email": email}
    bundle, salt = _bundle_from(message.data)
    storage = worker.storage
    now = now_ms()

    def _upsert() -> bool:
        with storage.locked():
            accounts = storage.get_value(K.ACCOUNTS_KEY) or []
            if not isinstance(accounts, list):
                logger.warning("account list was not a list; resetting")
                accounts = []
            for index, account in enumerate(accounts):
                if isinstance(account, dict) and account.get("email") == email:
                    accounts[index] = {**account, **record, "lastUpdated": now}
                    created = False
                    break
            else:
                accounts.append({**record, "created": now, "lastUpdated": now})
                created = True
            items: dict[str, Any] = {
                K.ACCOUNTS_KEY: accounts,
                K.account_key(email): {**record, "lastUpdated": now},
                K.keys_key(email): bundle,
            }
            if salt:
                items[K.salt_key(email)] = salt
            if message.get("setActive"):
                items[K.ACTIVE_USER_KEY] = email
            storage.set(items)
        return created

    # The lock is taken on the storage thread so the timeout covers waiting for it.
    created = worker.storage_call(_upsert, label="store keys")
    logger.info(
        "stored keys (%s account) %s",
        "new" if created else "existing",
        describe_bundle(bundle),
    )
    return ok(result={"success": True, "message": f"Successfully stored keys for {email}"})


def find_mirrored_bundle(worker: BackgroundWorker, identifier: str) -> dict[str, Any] | None:
    for form in K.lookup_formats(identifier):
        keys_name = f"{K.KEYS_PREFIX}{form}"
        salt_name = f"{K.SALT_PREFIX}{form}"
        found = worker.storage.get([keys_name, salt_name])
        if keys_name not in found:
            continue
        bundle = K.decode_value(found[keys_name])
        if isinstance(bundle, dict):
            bundle = dict(bundle)
            if salt_name in found and "salt" not in bundle:
                bundle["salt"] = found[salt_name]
        return {"keys": bundle, "format": form}
    tried = {f"{K.KEYS_PREFIX}{form}" for form in K.lookup_formats(identifier)}
    legacy = [name for name in K.legacy_key_formats(identifier, K.KEYS_PREFIX) if name not in tried]
    found = worker.storage.get(legacy)
    for name in legacy:
        if name in found:
            return {"keys": K.decode_value(found[name]), "format": name}
    return None


def get_keys(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    identifier = _resolve_identifier(worker, message)
    record = worker.storage.get_value(K.account_key(identifier))
    if record is not None:
        return ok(keys=record, source="account")
    mirrored = find_mirrored_bundle(worker, identifier)
    if mirrored is not None:
        return ok(keys=mirrored["keys"], source="mirror", format=mirrored["format"])
    logger.info("no keys found for requested account")
    raise LookupError("No keys found for this account")


def list_public_accounts(worker: BackgroundWorker) -> list[dict[str, Any]]:
    accounts = worker.storage.get_value(K.ACCOUNTS_KEY) or []
    listed = []
    for account in accounts if isinstance(accounts, list) else []:
        if not isinstance(account, dict):
            continue
        entry = {name: account.get(name) for name in PUBLIC_ACCOUNT_FIELDS}
        entry["firstName"] = entry["firstName"] or ""
        listed.append(entry)
    return listed


def list_accounts(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    return ok(accounts=list_public_accounts(worker))


def _read_user_list(worker: BackgroundWorker, data_type: str, identifier: str) -> list[Any]:
    value = K.decode_value(worker.storage.get_value(K.user_data_key(data_type, identifier)))
    return value if isinstance(value, list) else []


def _user_list_handler(data_type: str, response_field: str):
    def handler(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
        identifier = _resolve_identifier(worker, message)
        return ok(**{response_field: _read_user_list(worker, data_type, identifier)})

    handler.__name__ = f"get_{data_type}"
    return handler


get_bank_accounts = _user_list_handler("bank_accounts", "bankAccounts")
get_passwords = _user_list_handler("passwords", "passwords")
get_contacts = _user_list_handler("contacts", "contacts")


def get_user_data(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    data_type = str(message.get("dataType") or "")
    identifier = _resolve_identifier(worker, message)
    return ok(data=_read_user_list(worker, data_type, identifier), dataType=data_type)


def save_user_data(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    data_type = str(message.get("dataType") or "")
    identifier = _resolve_identifier(worker, message)
    items = message.get("items", [])
    if not isinstance(items, list):
        raise ValueError("items must be a list")
    worker.storage.set({K.user_data_key(data_type, identifier): items})
    return ok(dataType=data_type, count=len(items))


def _balance(item: Any) -> float:
    if not isinstance(item, dict):
        return 0.0
    try:
        return float(item.get("balance") or 0)
    except (TypeError, ValueError):
        return 0.0


def get_dashboard_data(
    worker: BackgroundWorker, message: Message, sender: Sender
) -> dict[str, Any]:
    try:
        identifier = _resolve_identifier(worker, message)
    except ValueError:
        identifier = None
    if identifier is None:
        bank_accounts: list[Any] = []
        passwords: list[Any] = []
        contacts: list[Any] = []
    else:
        bank_accounts = _read_user_list(worker, "bank_accounts", identifier)
        passwords = _read_user_list(worker, "passwords", identifier)
        contacts = _read_user_list(worker, "contacts", identifier)
    return ok(
        data={
            "user": identifier,
            "passwordCount": len(passwords),
            "bankAccountsCount": len(bank_accounts),
            "contactsCount": len(contacts),
            "totalBalance": round(sum(_balance(item) for item in bank_accounts), 2),
        }
    )


def read_settings(worker: BackgroundWorker) -> dict[str, Any]:
    stored = worker.storage.get_value(K.SETTINGS_KEY)
    settings = dict(DEFAULT_SETTINGS)
    if isinstance(stored, dict):
        settings.update(stored)
    return settings


def get_settings(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    return ok(settings=read_settings(worker))


def save_settings(worker: BackgroundWorker, message: Message, sender: Sender) -> dict[str, Any]:
    incoming = message.get("settings")
    if not isinstance(incoming, dict):
        raise ValueError("settings must be an object")
    with worker.storage.locked():
        merged = {**read_settings(worker), **incoming}
        worker.storage.set({K.SETTINGS_KEY: merged})
    return ok(settings=merged)
