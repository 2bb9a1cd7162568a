"""Message envelopes exchanged between page, content script, worker and popup."""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

APP_EVENT = "MATA_APP_EVENT"
EXTENSION_RESPONSE_EVENT = "MATA_EXTENSION_RESPONSE"
EXTENSION_AVAILABLE_EVENT = "mata_extension_available"
EXTENSION_READY = "EXTENSION_READY"


class MessageType(StrEnum):
    STORE_KEYS = "STORE_KEYS"
    GET_KEYS = "GET_KEYS"
    LIST_ACCOUNTS = "LIST_ACCOUNTS"
    GET_BANK_ACCOUNTS = "GET_BANK_ACCOUNTS"
    GET_PASSWORDS = "GET_PASSWORDS"
    GET_CONTACTS = "GET_CONTACTS"
    CHECK_SYNC_STATUS = "CHECK_SYNC_STATUS"
    SYNC_ALL_DATA = "SYNC_ALL_DATA"
    SYNC_STORAGE = "SYNC_STORAGE"
    TEST_CONNECTION = "TEST_CONNECTION"
    TEST_STORAGE = "TEST_STORAGE"
    HEARTBEAT = "HEARTBEAT"
    SYNC_CRITICAL_FILES = "SYNC_CRITICAL_FILES"
    BACKUP_INDEXEDDB = "BACKUP_INDEXEDDB"
    GET_INDEXEDDB_BACKUP = "GET_INDEXEDDB_BACKUP"
    CHECK_EXTENSION = "CHECK_EXTENSION"
    GET_LOCAL_STORAGE_VALUE = "GET_LOCAL_STORAGE_VALUE"
    SET_LOCAL_STORAGE_VALUE = "SET_LOCAL_STORAGE_VALUE"
    FIND_ALL_USERS = "FIND_ALL_USERS"
    FIND_MATA_TABS = "FIND_MATA_TABS"
    GET_SETTINGS = "GET_SETTINGS"
    SAVE_SETTINGS = "SAVE_SETTINGS"
    GET_USER_DATA = "GET_USER_DATA"
    SAVE_USER_DATA = "SAVE_USER_DATA"
    GET_DASHBOARD_DATA = "GET_DASHBOARD_DATA"


class MessageError(ValueError):
    pass


@dataclass(frozen=True)
class Message:
    type: MessageType
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        """Top-level field first, then the ``data`` payload."""
        if self.fields.get(name) is not None:
            return self.fields[name]
        value = self.data.get(name)
        return default if value is None else value

    @property
    def email(self) -> str | None:
        value = self.fields.get("email")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.fields)
        payload["type"] = str(self.type)
        if self.data:
            payload["data"] = self.data
        if self.request_id is not None:
            payload["requestId"] = self.request_id
        return payload


def parse_message(raw: Any) -> Message:
    if isinstance(raw, Message):
        return raw
    if not isinstance(raw, dict):
        raise MessageError("message must be an object")
    type_value = raw.get("type")
    if not isinstance(type_value, str) or not type_value:
        raise MessageError("message type missing")
    try:
        message_type = MessageType(type_value)
    except ValueError as exc:
        raise MessageError(f"Unknown message type: {type_value}") from exc
    data = raw.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MessageError("message data must be an object")
    request_id = raw.get("requestId")
    if request_id is not None and not isinstance(request_id, str):
        request_id = str(request_id)
    fields = {k: v for k, v in raw.items() if k not in {"type", "data", "requestId"}}
    return Message(type=message_type, data=data, request_id=request_id, fields=fields)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_request_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"req_{now_ms()}_{suffix}"


def ok(**payload: Any) -> dict[str, Any]:
    return {"success": True, **payload}


def fail(error: str, *, error_source: str | None = None, **payload: Any) -> dict[str, Any]:
    response: dict[str, Any] = {"success": False, "error": error, **payload}
    if error_source:
        response["errorSource"] = error_source
    return response
