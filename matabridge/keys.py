"""Storage key naming.

Every key the bridge reads or writes is built here. Page and extension storage
share the same names so that a value can be mirrored between the two without
translation.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any

ACTIVE_USER_KEY = "mata_active_user"
KEYS_PREFIX = "mata_keys_"
SALT_PREFIX = "mata_salt_"

ACCOUNTS_KEY = "mata_accounts"
ACCOUNT_PREFIX = "mata_account_"
BANK_ACCOUNTS_PREFIX = "mata_bank_accounts_"
PASSWORDS_PREFIX = "mata_passwords_"
CONTACTS_PREFIX = "mata_contacts_"
SETTINGS_KEY = "mata_settings"
LAST_SYNC_KEY = "mata_last_sync"
STORAGE_SYNC_KEY = "mata_storage_sync"
LAST_HEARTBEAT_KEY = "mata_last_heartbeat"
SERVICE_WORKER_HEARTBEAT_KEY = "mata_service_worker_heartbeat"
BACKUP_PREFIX = "mata_indexeddb_backup_"
BACKUP_INDEX_KEY = "mata_indexeddb_backups"

# Breadcrumbs the content script leaves in page localStorage.
CONNECTED_FLAG_KEY = "mata_extension_connected"
CONNECTED_TIMESTAMP_KEY = "mata_extension_timestamp"
LAST_ERROR_KEY = "mata_extension_last_error"
ERROR_TIMESTAMP_KEY = "mata_extension_error_timestamp"
RECOVERY_ATTEMPTS_KEY = "mata_extension_recovery_attempts"
LAST_ACTIVE_KEY = "extension_last_active"

TEST_KEYS = ("mata_simple_test", "mata_test_data", "mata_test_timestamp", "mata_test_diagnostics")

# Worker bookkeeping that never leaves extension storage.
_WORKER_PRIVATE_KEYS = {
    ACCOUNTS_KEY,
    SETTINGS_KEY,
    LAST_SYNC_KEY,
    STORAGE_SYNC_KEY,
    LAST_HEARTBEAT_KEY,
    SERVICE_WORKER_HEARTBEAT_KEY,
    BACKUP_INDEX_KEY,
    *TEST_KEYS,
}
_WORKER_PRIVATE_PREFIXES = (ACCOUNT_PREFIX, BACKUP_PREFIX)

USER_DATA_PREFIXES = {
    "bank_accounts": BANK_ACCOUNTS_PREFIX,
    "passwords": PASSWORDS_PREFIX,
    "contacts": CONTACTS_PREFIX,
}

_SANITIZE_RE = re.compile(r"[@.]")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")
_MATA_RELATED_MARKERS = ("_vault_", "keys_", "_masterKeys", "salt_")


def sanitize_identifier(identifier: str | None) -> str:
    if not identifier:
        return ""
    return _SANITIZE_RE.sub("_", identifier.strip().lower())


def keys_key(identifier: str) -> str:
    return f"{KEYS_PREFIX}{sanitize_identifier(identifier)}"


def salt_key(identifier: str) -> str:
    return f"{SALT_PREFIX}{sanitize_identifier(identifier)}"


def account_key(identifier: str) -> str:
    return f"{ACCOUNT_PREFIX}{identifier}"


def backup_key(identifier: str) -> str:
    return f"{BACKUP_PREFIX}{identifier}"


def user_data_key(data_type: str, identifier: str) -> str:
    prefix = USER_DATA_PREFIXES.get(data_type)
    if prefix is None:
        raise ValueError(f"unknown data type: {data_type}")
    return f"{prefix}{identifier}"


def alternate_identifier_forms(identifier: str) -> list[str]:
    """Legacy spellings of an identifier, excluding the canonical sanitized one.

    Order matters: raw identifier, every non-alphanumeric replaced, then the
    lowercased and trimmed identifier.
    """
    canonical = sanitize_identifier(identifier)
    forms: list[str] = []
    for candidate in (
        identifier,
        _NON_ALNUM_RE.sub("_", identifier),
        identifier.lower().strip(),
    ):
        if not candidate or candidate == canonical or candidate in forms:
            continue
        forms.append(candidate)
    return forms


def lookup_formats(identifier: str) -> list[str]:
    return [sanitize_identifier(identifier), *alternate_identifier_forms(identifier)]


def legacy_key_formats(identifier: str, prefix: str) -> list[str]:
    if not identifier or not prefix:
        return []
    sanitized = sanitize_identifier(identifier)
    formats = [f"{prefix}{sanitized}"]
    if prefix in {KEYS_PREFIX, SALT_PREFIX}:
        formats.append(f"{prefix}{identifier}")
        formats.extend(
            [
                f"user_{sanitized}_keys",
                f"{sanitized}_keys",
                f"{identifier}_keys",
            ]
        )
    return formats


def is_critical_key(key: str | None) -> bool:
    if not key:
        return False
    return key == ACTIVE_USER_KEY or key.startswith(KEYS_PREFIX) or key.startswith(SALT_PREFIX)


def is_mata_related_key(key: str) -> bool:
    if key.startswith("mata_"):
        return True
    return any(marker in key for marker in _MATA_RELATED_MARKERS)


def is_worker_private_key(key: str) -> bool:
    return key in _WORKER_PRIVATE_KEYS or key.startswith(_WORKER_PRIVATE_PREFIXES)


def identifiers_from_keys(keys: Iterable[str]) -> list[str]:
    found: list[str] = []
    seen: set[str] = set()
    for key in keys:
        for prefix in (KEYS_PREFIX, SALT_PREFIX):
            if key.startswith(prefix) and len(key) > len(prefix):
                suffix = key[len(prefix) :]
                if suffix not in seen:
                    seen.add(suffix)
                    found.append(suffix)
                break
    return found


def unsanitize_identifier(sanitized: str) -> str:
    if "_" not in sanitized:
        return sanitized
    parts = sanitized.split("_")
    if len(parts) < 3:
        return sanitized
    email = parts[0] + "@" + parts[1] + "".join(f".{part}" for part in parts[2:])
    if "@" in email and "." in email:
        return email
    return sanitized


def decode_value(value: Any, *, structured_only: bool = False) -> Any:
    """Parse a stored value as JSON, falling back to the raw value.

    With ``structured_only`` only strings that look like an object or an array
    are parsed; everything else is kept as the producer wrote it.
    """
    if not isinstance(value, str):
        return value
    if structured_only:
        stripped = value.strip()
        looks_structured = (stripped.startswith("{") and stripped.endswith("}")) or (
            stripped.startswith("[") and stripped.endswith("]")
        )
        if not looks_structured:
            return value
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        return value


def encode_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
