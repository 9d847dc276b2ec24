"""
Config loading for lumensync.

Sources (in precedence order, highest first):
  1. Environment variables (LUMENSYNC_*)
  2. ~/.lumensync/config.toml
  3. Built-in defaults

Usage:
    from lumensync.config import load_config
    config = load_config()
    print(config.chain.rpc_url)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import toml

from lumensync.exceptions import ConfigInvalidError

# Default config directory and file
DEFAULT_CONFIG_DIR = Path.home() / ".lumensync"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
_ENV_OVERRIDES: list[tuple[str, str, type]] = [
    ("LUMENSYNC_RPC_URL", "chain.rpc_url", str),
    ("LUMENSYNC_REST_URL", "chain.rest_url", str),
    ("LUMENSYNC_REQUEST_TIMEOUT", "chain.request_timeout", float),
    ("LUMENSYNC_HEARTBEAT_DEPTH", "scanner.heartbeat_depth", int),
    ("LUMENSYNC_FORCED_DEPTH", "scanner.forced_depth", int),
    ("LUMENSYNC_LARGE_GAP_THRESHOLD", "scanner.large_gap_threshold", int),
    ("LUMENSYNC_INTERVAL_SECONDS", "scanner.interval_seconds", float),
    ("LUMENSYNC_GAP_SYNC_LIMIT", "scanner.gap_sync_limit", int),
    ("LUMENSYNC_DB_PATH", "database.path", str),
    ("LUMENSYNC_HISTORY_LIMIT", "database.history_limit", int),
    ("LUMENSYNC_OUTPUT_FORMAT", "output.default_format", str),
    ("LUMENSYNC_LOG_LEVEL", "logging.level", str),
]

VALID_FORMATS = {"json", "jsonl", "table", "csv"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class ChainConfig:
    """Chain endpoints and denomination parameters."""

    rpc_url: str = "https://rpc-lumen.winnode.xyz"
    rest_url: str = "https://api-lumen.winnode.xyz"
    base_denom: str = "ulmn"            # on-chain base unit
    display_denom: str = "LMN"          # denom written to history records
    address_prefix: str = "lmn"         # bech32 human-readable part
    decimals: int = 6                   # base units per display unit = 10**decimals
    request_timeout: float = 15.0


@dataclass
class ScannerConfig:
    """Heartbeat, forced-rescan and gap-sync tuning."""

    heartbeat_depth: int = 20
    forced_depth: int = 100
    large_gap_threshold: int = 1000     # blocks behind head before the checkpoint is stale
    interval_seconds: float = 6.0
    gap_sync_limit: int = 50
    max_concurrency: int = 10           # concurrent per-height fetches


@dataclass
class DatabaseConfig:
    """SQLite history store configuration."""

    path: str = str(DEFAULT_CONFIG_DIR / "history.db")
    history_limit: int = 100


@dataclass
class OutputConfig:
    """Output formatting defaults."""

    default_format: str = "json"        # json | jsonl | table | csv
    color: bool = True


@dataclass
class LoggingConfig:
    """Log level for the stderr handler."""

    level: str = "WARNING"


@dataclass
class LumensyncConfig:
    """Full configuration object. Passed via Click context to all commands."""

    chain: ChainConfig = field(default_factory=ChainConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | None = None) -> LumensyncConfig:
    """
    Load configuration from TOML file + environment variable overrides.

    Args:
        path: Override config file path. If None, uses LUMENSYNC_CONFIG_PATH
              env var or default (~/.lumensync/config.toml).

    Returns:
        LumensyncConfig with all values resolved. A missing file is not an
        error; built-in defaults apply.

    Raises:
        ConfigInvalidError: Config file exists but is invalid TOML or values.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        config = _dict_to_config(raw)
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid value in {config_path}: {e}") from e
    _apply_env_overrides(config)
    validate_config(config)

    return config


def save_config(config: LumensyncConfig, path: str | None = None) -> Path:
    """
    Serialize LumensyncConfig to TOML and write to disk.

    Returns the path where config was written.
    """
    config_path = _resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "chain": {
            "rpc_url": config.chain.rpc_url,
            "rest_url": config.chain.rest_url,
            "base_denom": config.chain.base_denom,
            "display_denom": config.chain.display_denom,
            "address_prefix": config.chain.address_prefix,
            "decimals": config.chain.decimals,
            "request_timeout": config.chain.request_timeout,
        },
        "scanner": {
            "heartbeat_depth": config.scanner.heartbeat_depth,
            "forced_depth": config.scanner.forced_depth,
            "large_gap_threshold": config.scanner.large_gap_threshold,
            "interval_seconds": config.scanner.interval_seconds,
            "gap_sync_limit": config.scanner.gap_sync_limit,
            "max_concurrency": config.scanner.max_concurrency,
        },
        "database": {
            "path": config.database.path,
            "history_limit": config.database.history_limit,
        },
        "output": {
            "default_format": config.output.default_format,
            "color": config.output.color,
        },
        "logging": {
            "level": config.logging.level,
        },
    }

    with open(config_path, "w") as f:
        toml.dump(data, f)

    return config_path


def get_default_config_path() -> Path:
    """Return the default config file path."""
    return DEFAULT_CONFIG_PATH


def validate_config(config: LumensyncConfig) -> None:
    """Validate config values. Raises ConfigInvalidError on invalid values."""
    positives = {
        "scanner.heartbeat_depth": config.scanner.heartbeat_depth,
        "scanner.forced_depth": config.scanner.forced_depth,
        "scanner.large_gap_threshold": config.scanner.large_gap_threshold,
        "scanner.gap_sync_limit": config.scanner.gap_sync_limit,
        "scanner.max_concurrency": config.scanner.max_concurrency,
        "database.history_limit": config.database.history_limit,
    }
    for key, value in positives.items():
        if value <= 0:
            raise ConfigInvalidError(f"{key} must be positive, got {value}")

    if config.scanner.interval_seconds <= 0:
        raise ConfigInvalidError(
            f"scanner.interval_seconds must be positive, got {config.scanner.interval_seconds}"
        )
    if config.chain.decimals < 0:
        raise ConfigInvalidError(
            f"chain.decimals must be non-negative, got {config.chain.decimals}"
        )
    if not config.chain.base_denom or not config.chain.address_prefix:
        raise ConfigInvalidError("chain.base_denom and chain.address_prefix must be set")
    if config.output.default_format not in VALID_FORMATS:
        raise ConfigInvalidError(
            f"output.default_format must be one of {VALID_FORMATS}, "
            f"got {config.output.default_format!r}"
        )
    if config.logging.level not in VALID_LOG_LEVELS:
        raise ConfigInvalidError(
            f"logging.level must be one of {sorted(VALID_LOG_LEVELS)}, "
            f"got {config.logging.level!r}"
        )


def configure_logging(level: str) -> None:
    """Install a single stderr handler on the `lumensync` logger."""
    logger = logging.getLogger("lumensync")
    logger.setLevel(level.upper())
    if not any(getattr(h, "_lumensync", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler._lumensync = True  # type: ignore[attr-defined]
        logger.addHandler(handler)


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("LUMENSYNC_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _dict_to_config(raw: dict) -> LumensyncConfig:
    """Build LumensyncConfig from raw TOML dict, applying defaults for missing keys."""
    config = LumensyncConfig()

    chain = raw.get("chain", {})
    config.chain.rpc_url = chain.get("rpc_url", config.chain.rpc_url)
    config.chain.rest_url = chain.get("rest_url", config.chain.rest_url)
    config.chain.base_denom = chain.get("base_denom", config.chain.base_denom)
    config.chain.display_denom = chain.get("display_denom", config.chain.display_denom)
    config.chain.address_prefix = chain.get("address_prefix", config.chain.address_prefix)
    config.chain.decimals = int(chain.get("decimals", config.chain.decimals))
    config.chain.request_timeout = float(chain.get("request_timeout", config.chain.request_timeout))

    scanner = raw.get("scanner", {})
    config.scanner.heartbeat_depth = int(scanner.get("heartbeat_depth", 20))
    config.scanner.forced_depth = int(scanner.get("forced_depth", 100))
    config.scanner.large_gap_threshold = int(scanner.get("large_gap_threshold", 1000))
    config.scanner.interval_seconds = float(scanner.get("interval_seconds", 6.0))
    config.scanner.gap_sync_limit = int(scanner.get("gap_sync_limit", 50))
    config.scanner.max_concurrency = int(scanner.get("max_concurrency", 10))

    db = raw.get("database", {})
    config.database.path = db.get("path", str(DEFAULT_CONFIG_DIR / "history.db"))
    config.database.history_limit = int(db.get("history_limit", 100))

    output = raw.get("output", {})
    config.output.default_format = output.get("default_format", "json")
    config.output.color = bool(output.get("color", True))

    log = raw.get("logging", {})
    config.logging.level = str(log.get("level", "WARNING")).upper()

    return config


def _apply_env_overrides(config: LumensyncConfig) -> None:
    """Apply environment variable overrides to a loaded config."""
    if os.environ.get("LUMENSYNC_NO_COLOR"):
        config.output.color = False

    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None:
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e

    config.logging.level = config.logging.level.upper()
