"""Click CLI entry point for lumensync.

All commands are thin orchestration wrappers — business logic lives in
config, db, fetchers, scanner, gap, engine, output, and stream modules.

Exit codes:
  0 — success
  1 — generic error / bad input file
  2 — API error
  3 — network error, or a sync that could not reach the chain
  4 — data error (invalid address, undecodable record)
  5 — config error
  6 — database error
  130 — watch ended (SIGINT / cancel)
"""

from __future__ import annotations

import asyncio
import json
import shutil
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import click

from lumensync import __version__
from lumensync.config import (
    LumensyncConfig,
    configure_logging,
    get_default_config_path,
    load_config,
    save_config,
    validate_config,
)
from lumensync.db import Database
from lumensync.engine import HistorySync
from lumensync.exceptions import (
    ConfigInvalidError,
    ConfigMissingError,
    DataError,
    InvalidAddressError,
    LumensyncError,
)
from lumensync.fetchers import get_chain_source
from lumensync.models import Transaction
from lumensync.output import format_output

FORMATS = ["json", "jsonl", "table", "csv"]
BECH32_CHARSET = set("qpzry9x8gf2tvdw0s3jn54khce6mua7l")

# report statuses that mean the chain could not be reached
_OFFLINE_STATUSES = {"offline", "failed"}


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: LumensyncError | Exception) -> None:
    """Write error JSON to stderr."""
    if isinstance(err, LumensyncError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "unknown_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


def _db_from_config(config: LumensyncConfig) -> Database:
    """Create a Database instance from config."""
    db_path = config.database.path
    if db_path and db_path != ":memory:":
        db_path = str(Path(db_path).expanduser())
    return Database(db_path, history_limit=config.database.history_limit)


@asynccontextmanager
async def _engine_from_config(config: LumensyncConfig) -> AsyncIterator[HistorySync]:
    """Open the database and the chain client, yield a wired engine, close both."""
    try:
        source = get_chain_source(config)
    except ValueError as e:
        raise ConfigMissingError(str(e)) from e

    try:
        async with _db_from_config(config) as db:
            yield HistorySync.from_config(config, source, db)
    finally:
        await source.close()


def _validate_address(address: str, prefix: str) -> str:
    """Check that `address` is bech32-shaped with the chain's human-readable prefix."""
    hrp = f"{prefix}1"
    data = address[len(hrp):]
    if (
        not address.startswith(hrp)
        or address != address.lower()
        or len(data) < 6
        or not set(data) <= BECH32_CHARSET
    ):
        raise InvalidAddressError(
            f"Invalid address {address!r}: expected a bech32 address starting with {hrp!r}",
            details={"address": address, "prefix": prefix},
        )
    return address


def _echo_report(report: dict[str, Any], fmt: str, color: bool = False) -> None:
    click.echo(format_output(report, fmt, color=color))
    if report.get("status") in _OFFLINE_STATUSES:
        sys.exit(3)


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="LUMENSYNC_CONFIG",
    default=None,
    help="Config file path (default: ~/.lumensync/config.toml)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(FORMATS),
    default=None,
    help="Output format (overrides config default)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level for stderr diagnostics (overrides config)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    output_format: str | None,
    log_level: str | None,
) -> None:
    """Lumen wallet history sync — reconstructs an address's history from chain RPC."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except LumensyncError:
        # On config errors, use defaults (so config init still works)
        config = LumensyncConfig()

    configure_logging(log_level or config.logging.level)

    ctx.obj["config"] = config
    ctx.obj["format"] = output_format or config.output.default_format
    # styles only when writing to a terminal
    ctx.obj["color"] = config.output.color and sys.stdout.isatty()
    ctx.obj["config_path"] = config_path


# ── History ───────────────────────────────────────────────────────────────────


@cli.command("history")
@click.argument("address")
@click.option("--limit", default=None, type=click.IntRange(1), help="Max records to show")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.pass_context
def history_command(ctx: click.Context, address: str, limit: int | None, fmt: str | None) -> None:
    """Show the cached history for ADDRESS, newest first."""
    config: LumensyncConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _run() -> None:
        _validate_address(address, config.chain.address_prefix)
        async with _db_from_config(config) as db:
            txs = await db.history.get(address, limit=limit)
            checkpoint = await db.checkpoints.get(address)
        result = {
            "address": address,
            "checkpoint": checkpoint,
            "count": len(txs),
            "transactions": [tx.to_dict() for tx in txs],
        }
        click.echo(format_output(result, fmt, color=ctx.obj["color"]))

    try:
        asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)


# ── Sync commands ─────────────────────────────────────────────────────────────


@cli.group("sync")
def sync_group() -> None:
    """Run one sync step against the chain."""


@sync_group.command("gap")
@click.argument("address")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.pass_context
def sync_gap(ctx: click.Context, address: str, fmt: str | None) -> None:
    """Backfill recent transfers to ADDRESS with one indexed search."""
    config: LumensyncConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _run() -> dict[str, Any]:
        _validate_address(address, config.chain.address_prefix)
        async with _engine_from_config(config) as engine:
            report = await engine.sync_gap(address)
        return report.to_dict()

    try:
        result = asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)
    else:
        _echo_report(result, fmt, ctx.obj["color"])


@sync_group.command("heartbeat")
@click.argument("address")
@click.option("--force", is_flag=True, help="Deep rescan; leaves the checkpoint untouched")
@click.option("--depth", default=None, type=click.IntRange(1), help="Blocks to scan")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.pass_context
def sync_heartbeat(
    ctx: click.Context,
    address: str,
    force: bool,
    depth: int | None,
    fmt: str | None,
) -> None:
    """Run one incremental block scan for ADDRESS."""
    config: LumensyncConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _run() -> dict[str, Any]:
        _validate_address(address, config.chain.address_prefix)
        async with _engine_from_config(config) as engine:
            if depth is None and not force:
                report = await engine.sync_heartbeat(address)
            else:
                report = await engine.scanner.scan(address, depth=depth, force=force)
        return report.to_dict()

    try:
        result = asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)
    else:
        _echo_report(result, fmt, ctx.obj["color"])


@sync_group.command("rescan")
@click.argument("address")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.pass_context
def sync_rescan(ctx: click.Context, address: str, fmt: str | None) -> None:
    """Force a deep rescan for ADDRESS, as after an unexplained balance increase."""
    config: LumensyncConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _run() -> dict[str, Any]:
        _validate_address(address, config.chain.address_prefix)
        async with _engine_from_config(config) as engine:
            report = await engine.on_possible_credit(address)
        return report.to_dict()

    try:
        result = asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)
    else:
        _echo_report(result, fmt, ctx.obj["color"])


# ── Watch ─────────────────────────────────────────────────────────────────────


@cli.command("watch")
@click.argument("address")
@click.option("--interval", default=None, type=click.FloatRange(min=0.1), help="Seconds between heartbeats")
@click.option("--cycles", default=None, type=click.IntRange(1), help="Stop after N heartbeats")
@click.pass_context
def watch_command(
    ctx: click.Context,
    address: str,
    interval: float | None,
    cycles: int | None,
) -> None:
    """Gap-sync ADDRESS once, then stream heartbeat results as JSONL to stdout."""
    from lumensync.stream import run_watch

    config: LumensyncConfig = ctx.obj["config"]
    interval = interval or config.scanner.interval_seconds

    async def _run() -> None:
        _validate_address(address, config.chain.address_prefix)
        async with _engine_from_config(config) as engine:
            await run_watch(engine, address, interval, max_cycles=cycles)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except LumensyncError as e:
        _output_error(e)
    if cycles is None:
        sys.exit(130)  # watch ended (normal exit via SIGINT/cancel)


# ── Record ────────────────────────────────────────────────────────────────────


@cli.command("record")
@click.argument("address")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def record_command(ctx: click.Context, address: str, file_path: str) -> None:
    """
    Import locally-known transactions for ADDRESS from a JSON file.

    The file holds a list of transaction objects, or {"transactions": [...]}.
    Records already present (same hash) are skipped.
    """
    config: LumensyncConfig = ctx.obj["config"]

    async def _run() -> dict[str, Any]:
        _validate_address(address, config.chain.address_prefix)
        txs = _load_transactions(file_path)
        async with _db_from_config(config) as db:
            inserted = await db.history.put_many(address, txs)
            total = await db.history.count(address)
        return {
            "status": "recorded",
            "address": address,
            "submitted": len(txs),
            "inserted": inserted,
            "total": total,
        }

    try:
        result = asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)
    else:
        click.echo(format_output(result, "json"))


def _load_transactions(file_path: str) -> list[Transaction]:
    try:
        with open(file_path) as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DataError(f"Cannot read {file_path}: {e}", details={"file": file_path}) from e

    if isinstance(raw, dict):
        raw = raw.get("transactions", [])
    if not isinstance(raw, list):
        raise DataError(f"{file_path} must contain a list of transactions")

    txs: list[Transaction] = []
    for index, item in enumerate(raw):
        try:
            txs.append(Transaction.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            raise DataError(
                f"Invalid transaction at index {index}: {e}",
                details={"file": file_path, "index": index},
            ) from e
    return txs


# ── Checkpoint commands ───────────────────────────────────────────────────────


@cli.group("checkpoint")
def checkpoint_group() -> None:
    """Inspect or reset the scan watermark."""


@checkpoint_group.command("show")
@click.argument("address")
@click.pass_context
def checkpoint_show(ctx: click.Context, address: str) -> None:
    """Show the last fully scanned height for ADDRESS (0 if never scanned)."""
    config: LumensyncConfig = ctx.obj["config"]

    async def _run() -> dict[str, Any]:
        _validate_address(address, config.chain.address_prefix)
        async with _db_from_config(config) as db:
            return {"address": address, "checkpoint": await db.checkpoints.get(address)}

    try:
        result = asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)
    else:
        click.echo(format_output(result, "json"))


@checkpoint_group.command("set")
@click.argument("address")
@click.argument("height", type=click.IntRange(0))
@click.pass_context
def checkpoint_set(ctx: click.Context, address: str, height: int) -> None:
    """Overwrite the checkpoint for ADDRESS. Moving it backward triggers a re-scan."""
    config: LumensyncConfig = ctx.obj["config"]

    async def _run() -> dict[str, Any]:
        _validate_address(address, config.chain.address_prefix)
        async with _db_from_config(config) as db:
            previous = await db.checkpoints.get(address)
            await db.checkpoints.set(address, height)
        return {"status": "updated", "address": address, "previous": previous, "checkpoint": height}

    try:
        result = asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)
    else:
        click.echo(format_output(result, "json"))


# ── Forget ────────────────────────────────────────────────────────────────────


@cli.command("forget")
@click.argument("address")
@click.pass_context
def forget_command(ctx: click.Context, address: str) -> None:
    """Delete the cached history and checkpoint of ADDRESS."""
    config: LumensyncConfig = ctx.obj["config"]

    async def _run() -> dict[str, Any]:
        _validate_address(address, config.chain.address_prefix)
        async with _db_from_config(config) as db:
            return await db.forget_address(address)

    try:
        result = asyncio.run(_run())
    except LumensyncError as e:
        _output_error(e)
    else:
        click.echo(format_output(result, "json"))


# ── Config commands ───────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Manage lumensync configuration."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Initialize default config at ~/.lumensync/config.toml."""
    provided = ctx.obj.get("config_path")
    config_path = Path(provided) if provided else get_default_config_path()

    if config_path.exists() and not force:
        click.echo(
            json.dumps(
                {
                    "status": "already_exists",
                    "config_path": str(config_path),
                    "hint": "Use --force to reinitialize",
                }
            )
        )
        return

    status = "initialized"
    backup = None

    if config_path.exists() and force:
        backup = str(config_path) + ".bak"
        shutil.copy2(config_path, backup)
        status = "reinitialized"

    save_config(LumensyncConfig(), str(config_path))

    result: dict[str, Any] = {
        "status": status,
        "config_path": str(config_path),
    }
    if backup:
        result["backup"] = backup
    click.echo(json.dumps(result))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a config value by dotted key path (e.g. scanner.heartbeat_depth)."""
    config_path = ctx.obj.get("config_path")
    config: LumensyncConfig = ctx.obj["config"]

    try:
        typed_value = _set_config_value(config, key, value)
        validate_config(config)
    except LumensyncError as e:
        _output_error(e)
        return

    save_config(config, config_path)
    click.echo(json.dumps({"status": "updated", "key": key, "value": typed_value}))


def _set_config_value(config: LumensyncConfig, key: str, value: str) -> Any:
    parts = key.split(".", 1)
    if len(parts) != 2:
        raise LumensyncError(f"Key must be in form section.key, got: {key!r}")

    section_name, field_name = parts
    section = getattr(config, section_name, None)
    if section is None or section_name.startswith("_"):
        raise ConfigInvalidError(f"Unknown config section: {section_name!r}")
    if field_name.startswith("_") or not hasattr(section, field_name):
        raise ConfigInvalidError(f"Unknown config key: {key!r}")

    # Type-coerce
    current = getattr(section, field_name)
    try:
        if isinstance(current, bool):
            typed_value: Any = value.lower() in ("1", "true", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        else:
            typed_value = value
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid value for {key}: {e}") from e

    setattr(section, field_name, typed_value)
    return typed_value


@config_group.command("show")
@click.option("--format", "fmt", type=click.Choice(["json", "table"]), default=None)
@click.pass_context
def config_show(ctx: click.Context, fmt: str | None) -> None:
    """Show current configuration."""
    config: LumensyncConfig = ctx.obj["config"]
    provided = ctx.obj.get("config_path")
    fmt = fmt if fmt in ("json", "table") else "json"

    result = {
        "config_path": str(Path(provided) if provided else get_default_config_path()),
        "chain": vars(config.chain),
        "scanner": vars(config.scanner),
        "database": vars(config.database),
        "output": vars(config.output),
        "logging": vars(config.logging),
    }

    click.echo(format_output(result, fmt, color=ctx.obj["color"]))


if __name__ == "__main__":
    cli()
