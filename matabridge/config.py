from __future__ import annotations

import json
import os
import warnings
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from . import __version__

DEFAULT_CONFIG_PATH = Path("~/.config/matabridge/config.json").expanduser()
DEFAULT_DB_PATH = Path("~/.matabridge/extension-storage.sqlite").expanduser()

DEFAULT_ALLOWED_ORIGINS = [
    "https://matav3.replit.app",
    "https://mat-av-20-timalmond.replit.app",
    "https://mata-app.com",
    "https://app.mata-app.com",
]

DEFAULT_TAB_URL_PATTERNS = [
    "https://*.replit.app/*",
    "http://*.replit.app/*",
    "https://*.vercel.app/*",
    "http://*.vercel.app/*",
    "https://*.netlify.app/*",
    "http://*.netlify.app/*",
    "https://mata-app.com/*",
    "https://app.mata-app.com/*",
    "http://localhost:*/*",
]

DEFAULT_INDEXEDDB_DATABASES = ["mata-vault", "mata-identity", "mata-keys"]

CONFIG_ENV_OVERRIDES = {
    "extension_id": "MATA_BRIDGE_EXTENSION_ID",
    "extension_version": "MATA_BRIDGE_EXTENSION_VERSION",
    "db_path": "MATA_BRIDGE_DB",
    "worker_host": "MATA_BRIDGE_WORKER_HOST",
    "worker_port": "MATA_BRIDGE_WORKER_PORT",
    "heartbeat_interval_s": "MATA_BRIDGE_HEARTBEAT_INTERVAL_S",
    "context_check_interval_s": "MATA_BRIDGE_CONTEXT_CHECK_INTERVAL_S",
    "sweep_interval_s": "MATA_BRIDGE_SWEEP_INTERVAL_S",
    "sweep_batch_size": "MATA_BRIDGE_SWEEP_BATCH_SIZE",
    "storage_timeout_s": "MATA_BRIDGE_STORAGE_TIMEOUT_S",
    "message_timeout_s": "MATA_BRIDGE_MESSAGE_TIMEOUT_S",
    "keep_alive_interval_s": "MATA_BRIDGE_KEEP_ALIVE_INTERVAL_S",
    "allowed_origins": "MATA_BRIDGE_ALLOWED_ORIGINS",
    "tab_url_patterns": "MATA_BRIDGE_TAB_URL_PATTERNS",
    "log_path": "MATA_BRIDGE_LOG",
}


def get_config_path(path: Path | None = None) -> Path:
    if path is not None:
        return path.expanduser()
    return Path(os.environ.get("MATA_BRIDGE_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    """Return the stored settings object; a missing or blank file reads as empty."""
    config_path = get_config_path(path)
    try:
        raw = config_path.read_text()
    except FileNotFoundError:
        return {}
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    return {
        key: os.environ[env_var]
        for key, env_var in CONFIG_ENV_OVERRIDES.items()
        if env_var in os.environ
    }


@dataclass
class BridgeConfig:
    extension_id: str = "mata-key-manager"
    extension_version: str = __version__
    db_path: str = str(DEFAULT_DB_PATH)
    worker_host: str = "127.0.0.1"
    worker_port: int = 7341

    # Content script timers.
    heartbeat_interval_s: float = 15.0
    context_check_interval_s: float = 10.0
    sweep_interval_s: float = 30.0
    sweep_batch_size: int = 3
    reconnect_delay_s: float = 0.5
    resync_delay_s: float = 1.0

    # Worker timers and limits.
    storage_timeout_s: float = 5.0
    message_timeout_s: float = 5.0
    keep_alive_interval_s: float = 20.0
    sync_recent_window_s: float = 24 * 60 * 60
    backup_max_bytes_per_user: int = 3 * 1024 * 1024
    storage_quota_bytes: int = 5 * 1024 * 1024

    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    tab_url_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_TAB_URL_PATTERNS))
    indexeddb_databases: list[str] = field(
        default_factory=lambda: list(DEFAULT_INDEXEDDB_DATABASES)
    )
    log_path: str | None = "~/.matabridge/worker.log"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class _Rejected(Exception):
    pass


def _as_count(value: object) -> int:
    if isinstance(value, bool):
        raise _Rejected
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise _Rejected from exc


def _as_seconds(value: object) -> float:
    if isinstance(value, bool):
        raise _Rejected
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise _Rejected from exc
    if seconds < 0:
        raise _Rejected
    return seconds


def _as_list(value: object) -> list[str]:
    # Env vars carry lists as comma separated text.
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        raise _Rejected
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _as_text(value: object) -> str | None:
    if value is not None and not isinstance(value, str):
        raise _Rejected
    return value


_COERCERS = {int: _as_count, float: _as_seconds, list: _as_list}


def _apply_dict(cfg: BridgeConfig, data: dict[str, Any]) -> BridgeConfig:
    for spec in fields(cfg):
        if spec.name not in data:
            continue
        value = data[spec.name]
        current = getattr(cfg, spec.name)
        coerce = _COERCERS.get(type(current), _as_text)
        if value is None and coerce is not _as_text:
            continue
        try:
            setattr(cfg, spec.name, coerce(value))
        except _Rejected:
            warnings.warn(
                f"Ignoring {spec.name}={value!r}; keeping {current!r}",
                RuntimeWarning,
                stacklevel=3,
            )
    return cfg


def load_config(path: Path | None = None) -> BridgeConfig:
    """Defaults, then the config file, then ``MATA_BRIDGE_*`` environment variables."""
    try:
        stored = read_config_file(path)
    except ValueError as exc:
        warnings.warn(f"Ignoring config file: {exc}", RuntimeWarning, stacklevel=2)
        stored = {}
    return _apply_dict(_apply_dict(BridgeConfig(), stored), get_env_overrides())
