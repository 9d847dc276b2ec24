"""JSONL event loop for `lumensync watch`.

Implements the recurring task: gap sync once on activation, then a heartbeat
cycle every `interval` seconds. Emits one JSON object per line to stdout,
designed for agent/pipe consumers.

Event types emitted:
  watch_start       — loop begins
  gap_sync          — result of the one-off catch-up on activation
  heartbeat         — one scan cycle finished (even with nothing new)
  new_transactions  — records stored by the last cycle, newest first
  watch_error       — a cycle raised; chain errors never reach here, store errors do
  watch_end         — SIGINT / cancellation → clean exit 130

stdout is flushed after each write (critical for pipe consumers).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from lumensync.engine import HistorySync
from lumensync.exceptions import DatabaseError, LumensyncError
from lumensync.models import Transaction, now_iso

logger = logging.getLogger(__name__)


def emit_event(event: dict[str, Any]) -> None:
    """
    Write a single JSONL event to stdout and flush.

    Never use print() — buffered output breaks pipe consumers.
    """
    sys.stdout.write(json.dumps(event) + "\n")
    sys.stdout.flush()


async def run_watch(
    engine: HistorySync,
    address: str,
    interval_seconds: float,
    max_cycles: int | None = None,
) -> None:
    """
    Main watch loop. Runs until cancelled, or for `max_cycles` heartbeats.

    A DatabaseError ends the loop after a non-recoverable watch_error event
    and is re-raised to the caller; every other cycle failure is reported and
    the loop carries on.
    """
    cycle = 0
    total_found = 0

    emit_event({
        "type": "watch_start",
        "timestamp": now_iso(),
        "address": address,
        "interval_secs": interval_seconds,
    })

    try:
        gap = await engine.sync_gap(address)
        total_found += gap.found
        emit_event({"type": "gap_sync", "timestamp": now_iso(), **gap.to_dict()})
        if gap.records:
            _emit_new(address, gap.records, cycle)

        while max_cycles is None or cycle < max_cycles:
            cycle += 1
            try:
                report = await engine.sync_heartbeat(address)
            except DatabaseError as e:
                _emit_error(e, cycle, recoverable=False)
                raise
            except LumensyncError as e:
                _emit_error(e, cycle, recoverable=True)
            else:
                total_found += report.found
                emit_event({
                    "type": "heartbeat",
                    "timestamp": now_iso(),
                    "cycle": cycle,
                    **report.to_dict(),
                })
                if report.records:
                    _emit_new(address, report.records, cycle)

            if max_cycles is None or cycle < max_cycles:
                await asyncio.sleep(interval_seconds)

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Watch of %s cancelled after %d cycles", address, cycle)
    finally:
        emit_event({
            "type": "watch_end",
            "timestamp": now_iso(),
            "address": address,
            "cycles_completed": cycle,
            "total_found": total_found,
        })
        # Caller (CLI) is responsible for sys.exit(130)


def _emit_new(address: str, records: list[Transaction], cycle: int) -> None:
    emit_event({
        "type": "new_transactions",
        "timestamp": now_iso(),
        "address": address,
        "cycle": cycle,
        "count": len(records),
        "transactions": [tx.to_dict() for tx in sorted(records, key=Transaction.epoch, reverse=True)],
    })


def _emit_error(error: LumensyncError, cycle: int, recoverable: bool) -> None:
    logger.warning("Watch cycle %d failed: %s", cycle, error)
    emit_event({
        "type": "watch_error",
        "timestamp": now_iso(),
        "error_code": error.error_code,
        "message": str(error),
        "recoverable": recoverable,
        "cycle": cycle,
    })
