import json
from pathlib import Path

import pytest

from matabridge.config import (
    BridgeConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_defaults_match_extension_timers() -> None:
    cfg = BridgeConfig()
    assert cfg.heartbeat_interval_s == 15.0
    assert cfg.context_check_interval_s == 10.0
    assert cfg.sweep_interval_s == 30.0
    assert cfg.sweep_batch_size == 3
    assert cfg.storage_timeout_s == 5.0
    assert cfg.backup_max_bytes_per_user == 3 * 1024 * 1024
    assert "https://app.mata-app.com" in cfg.allowed_origins
    assert cfg.indexeddb_databases == ["mata-vault", "mata-identity", "mata-keys"]


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_blank(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_write_config_file_creates_parents(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "config.json"
    write_config_file({"worker_port": 9000}, target)
    assert json.loads(target.read_text()) == {"worker_port": 9000}


def test_config_path_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MATA_BRIDGE_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_load_config_applies_file_then_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"worker_port": 9001, "sweep_interval_s": 12, "allowed_origins": ["https://a"]})
    )
    monkeypatch.setenv("MATA_BRIDGE_WORKER_PORT", "9002")
    monkeypatch.setenv("MATA_BRIDGE_TAB_URL_PATTERNS", "https://a/*, https://b/*")

    cfg = load_config(config_path)

    assert cfg.worker_port == 9002
    assert cfg.sweep_interval_s == 12.0
    assert cfg.allowed_origins == ["https://a"]
    assert cfg.tab_url_patterns == ["https://a/*", "https://b/*"]
    assert get_env_overrides()["worker_port"] == "9002"


def test_invalid_values_warn_and_keep_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "worker_port": "not-a-port",
                "heartbeat_interval_s": -1,
                "storage_timeout_s": True,
                "extension_id": 42,
            }
        )
    )

    with pytest.warns(RuntimeWarning):
        cfg = load_config(config_path)

    assert cfg.worker_port == 7341
    assert cfg.heartbeat_interval_s == 15.0
    assert cfg.storage_timeout_s == 5.0
    assert cfg.extension_id == "mata-key-manager"


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"no_such_setting": 1}))
    cfg = load_config(config_path)
    assert not hasattr(cfg, "no_such_setting")
    assert cfg.worker_port == 7341
