"""Tests for lumensync/config.py."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from lumensync.config import (
    LumensyncConfig,
    configure_logging,
    get_default_config_path,
    load_config,
    save_config,
    validate_config,
)
from lumensync.exceptions import ConfigInvalidError

# ── load_config ───────────────────────────────────────────────────────────────


def test_load_config_returns_defaults_when_no_file(tmp_path: Path) -> None:
    """load_config should return defaults when config file doesn't exist."""
    config = load_config(str(tmp_path / "nonexistent.toml"))
    assert isinstance(config, LumensyncConfig)
    assert config.chain.base_denom == "ulmn"
    assert config.chain.address_prefix == "lmn"
    assert config.chain.decimals == 6
    assert config.scanner.heartbeat_depth == 20
    assert config.scanner.forced_depth == 100
    assert config.scanner.large_gap_threshold == 1000
    assert config.scanner.gap_sync_limit == 50
    assert config.database.history_limit == 100
    assert config.output.default_format == "json"


def test_load_config_from_valid_toml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("""
[chain]
rpc_url = "https://rpc.example"
rest_url = "https://rest.example"
address_prefix = "cosmos"

[scanner]
heartbeat_depth = 30
interval_seconds = 2.5

[database]
path = "/tmp/test_history.db"
history_limit = 250

[output]
default_format = "table"

[logging]
level = "debug"
""")
    config = load_config(str(config_file))
    assert config.chain.rpc_url == "https://rpc.example"
    assert config.chain.address_prefix == "cosmos"
    assert config.chain.base_denom == "ulmn"
    assert config.scanner.heartbeat_depth == 30
    assert config.scanner.interval_seconds == 2.5
    assert config.scanner.forced_depth == 100
    assert config.database.history_limit == 250
    assert config.output.default_format == "table"
    assert config.logging.level == "DEBUG"


def test_load_config_invalid_toml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("this is not valid toml = [broken")
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


@pytest.mark.parametrize(
    "body",
    [
        "[scanner]\nheartbeat_depth = 0",
        "[scanner]\ninterval_seconds = -1",
        "[scanner]\nforced_depth = \"deep\"",
        "[database]\nhistory_limit = -5",
        "[chain]\ndecimals = -1",
        "[chain]\naddress_prefix = \"\"",
        "[output]\ndefault_format = \"xml\"",
        "[logging]\nlevel = \"LOUD\"",
    ],
)
def test_load_config_invalid_values(tmp_path: Path, body: str) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(body)
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


def test_load_config_path_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_file = tmp_path / "elsewhere.toml"
    config_file.write_text("[scanner]\ngap_sync_limit = 7")
    monkeypatch.setenv("LUMENSYNC_CONFIG_PATH", str(config_file))
    assert load_config().scanner.gap_sync_limit == 7


# ── Environment variable overrides ───────────────────────────────────────────


def test_env_override_rpc_url(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """LUMENSYNC_RPC_URL env var overrides config file value."""
    config_file = tmp_path / "config.toml"
    config_file.write_text('[chain]\nrpc_url = "https://file.example"')

    monkeypatch.setenv("LUMENSYNC_RPC_URL", "https://env.example")
    config = load_config(str(config_file))
    assert config.chain.rpc_url == "https://env.example"


def test_env_override_numeric(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("")

    monkeypatch.setenv("LUMENSYNC_HEARTBEAT_DEPTH", "40")
    monkeypatch.setenv("LUMENSYNC_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("LUMENSYNC_DB_PATH", "/tmp/env.db")
    config = load_config(str(config_file))
    assert config.scanner.heartbeat_depth == 40
    assert config.scanner.interval_seconds == 0.5
    assert config.database.path == "/tmp/env.db"


def test_env_override_invalid_type(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Invalid env var type should raise ConfigInvalidError."""
    config_file = tmp_path / "config.toml"
    config_file.write_text("")

    monkeypatch.setenv("LUMENSYNC_FORCED_DEPTH", "not_a_number")
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


def test_env_override_is_validated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("")

    monkeypatch.setenv("LUMENSYNC_OUTPUT_FORMAT", "yaml")
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


def test_env_log_level_is_uppercased(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("")

    monkeypatch.setenv("LUMENSYNC_LOG_LEVEL", "info")
    assert load_config(str(config_file)).logging.level == "INFO"


def test_env_no_color(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("")

    monkeypatch.setenv("LUMENSYNC_NO_COLOR", "1")
    assert load_config(str(config_file)).output.color is False


def test_validate_config_accepts_defaults() -> None:
    validate_config(LumensyncConfig())


def test_validate_config_rejects_negative_depth() -> None:
    config = LumensyncConfig()
    config.scanner.heartbeat_depth = -5
    with pytest.raises(ConfigInvalidError, match="scanner.heartbeat_depth"):
        validate_config(config)


# ── save_config ───────────────────────────────────────────────────────────────


def test_save_config_roundtrip(tmp_path: Path) -> None:
    config = LumensyncConfig()
    config.chain.rest_url = "https://saved.example"
    config.scanner.large_gap_threshold = 5000
    config.output.color = False

    config_path = tmp_path / "config.toml"
    save_config(config, str(config_path))

    loaded = load_config(str(config_path))
    assert loaded.chain.rest_url == "https://saved.example"
    assert loaded.scanner.large_gap_threshold == 5000
    assert loaded.output.color is False


def test_save_config_creates_dir(tmp_path: Path) -> None:
    nested = tmp_path / "a" / "b" / "config.toml"
    assert save_config(LumensyncConfig(), str(nested)) == nested
    assert nested.exists()


def test_get_default_config_path() -> None:
    path = get_default_config_path()
    assert ".lumensync" in str(path)
    assert path.name == "config.toml"


# ── configure_logging ─────────────────────────────────────────────────────────


def test_configure_logging_installs_one_handler() -> None:
    logger = logging.getLogger("lumensync")
    before = list(logger.handlers)
    try:
        configure_logging("info")
        configure_logging("DEBUG")
        ours = [h for h in logger.handlers if getattr(h, "_lumensync", False)]
        assert len(ours) == 1
        assert logger.level == logging.DEBUG
    finally:
        for handler in logger.handlers[:]:
            if handler not in before:
                logger.removeHandler(handler)
