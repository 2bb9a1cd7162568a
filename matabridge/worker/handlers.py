from __future__ import annotations

from ..messages import MessageType as T
from . import accounts, backups, diagnostics, storage_sync
from .dispatcher import HandlerSpec

# Kinds that web pages on allow-listed origins may send directly.
EXTERNAL_KINDS = {
    T.STORE_KEYS,
    T.GET_KEYS,
    T.CHECK_EXTENSION,
    T.GET_BANK_ACCOUNTS,
    T.GET_PASSWORDS,
    T.GET_CONTACTS,
    T.CHECK_SYNC_STATUS,
    T.SYNC_ALL_DATA,
}

SYNC_KINDS = {T.CHECK_EXTENSION, T.TEST_CONNECTION, T.HEARTBEAT}

_HANDLERS = {
    T.STORE_KEYS: accounts.store_keys,
    T.GET_KEYS: accounts.get_keys,
    T.LIST_ACCOUNTS: accounts.list_accounts,
    T.GET_BANK_ACCOUNTS: accounts.get_bank_accounts,
    T.GET_PASSWORDS: accounts.get_passwords,
    T.GET_CONTACTS: accounts.get_contacts,
    T.GET_USER_DATA: accounts.get_user_data,
    T.SAVE_USER_DATA: accounts.save_user_data,
    T.GET_DASHBOARD_DATA: accounts.get_dashboard_data,
    T.GET_SETTINGS: accounts.get_settings,
    T.SAVE_SETTINGS: accounts.save_settings,
    T.CHECK_SYNC_STATUS: storage_sync.check_sync_status,
    T.SYNC_ALL_DATA: storage_sync.sync_all_data,
    T.SYNC_STORAGE: storage_sync.sync_storage,
    T.SYNC_CRITICAL_FILES: storage_sync.sync_critical_files,
    T.GET_LOCAL_STORAGE_VALUE: storage_sync.get_local_storage_value,
    T.SET_LOCAL_STORAGE_VALUE: storage_sync.set_local_storage_value,
    T.FIND_ALL_USERS: storage_sync.find_all_users,
    T.FIND_MATA_TABS: storage_sync.find_mata_tabs,
    T.BACKUP_INDEXEDDB: backups.backup_indexeddb,
    T.GET_INDEXEDDB_BACKUP: backups.get_indexeddb_backup,
    T.TEST_STORAGE: diagnostics.storage_self_test,
    T.TEST_CONNECTION: diagnostics.connection_check,
    T.HEARTBEAT: diagnostics.heartbeat,
    T.CHECK_EXTENSION: diagnostics.check_extension,
}


def default_registry() -> dict[T, HandlerSpec]:
    return {
        kind: HandlerSpec(
            handler=handler,
            sync=kind in SYNC_KINDS,
            external=kind in EXTERNAL_KINDS,
        )
        for kind, handler in _HANDLERS.items()
    }
