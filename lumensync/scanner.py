"""
Heartbeat scanner — bounded incremental block scan for one address.

One invocation runs: determine head → determine window → scan window →
advance checkpoint.

Per height, two strategies:
  A. Event-based (preferred): `block_results` events, both protocol-level
     (system) and per-transaction. Catches block rewards and other transfers
     that have no transaction of their own.
  B. Raw-block fallback: decode each tx's messages from the block body and
     match bank sends and staking messages. Runs only when A failed for
     that height.

Failures are contained per height: a height whose strategies both fail is
reported and skipped, and the rest of the window continues. The checkpoint
moves only after every height has been attempted, and never on forced scans.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from lumensync.db import CheckpointTracker, TransactionStore
from lumensync.exceptions import DatabaseError, DecodeError, LumensyncError
from lumensync.fetchers.base import ChainSource
from lumensync.models import Transaction, normalize_timestamp
from lumensync.parser import (
    ChainParams,
    compute_tx_hash,
    decode_tx_bytes,
    find_transfers_to,
    format_base_units,
    synthetic_hash,
)
from lumensync.proto import (
    MSG_DELEGATE,
    MSG_SEND,
    MSG_UNDELEGATE,
    MSG_WITHDRAW_REWARD,
    decode_msg_send,
    decode_staking_msg,
    decode_tx_messages,
    staking_amount,
)

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 20
DEFAULT_FORCED_DEPTH = 100
DEFAULT_LARGE_GAP_THRESHOLD = 1000

_STAKING_TYPES = {
    MSG_DELEGATE: "stake",
    MSG_UNDELEGATE: "unstake",
    MSG_WITHDRAW_REWARD: "claim",
}


@dataclass
class ScanWindow:
    """Heights (start, end] to scan; `start` is exclusive."""

    start: int
    end: int
    head: int
    forced: bool = False
    reset: bool = False         # start was moved to head - depth

    def heights(self) -> range:
        return range(self.start + 1, self.end + 1)


@dataclass
class ScanReport:
    """Outcome of one scan invocation."""

    address: str
    status: str                 # "ok" | "idle" | "offline"
    forced: bool = False
    head: int | None = None
    start: int | None = None
    end: int | None = None
    heights_scanned: int = 0
    heights_failed: list[int] = field(default_factory=list)
    strategy_a: int = 0         # heights served by block_results
    strategy_b: int = 0         # heights served by the raw-block fallback
    found: int = 0              # new records stored
    checkpoint_before: int = 0
    checkpoint_after: int = 0
    records: list[Transaction] = field(default_factory=list)   # inserted this call, not in to_dict()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        del data["records"]
        return data


def compute_window(
    checkpoint: int,
    head: int,
    depth: int,
    forced: bool = False,
    large_gap_threshold: int = DEFAULT_LARGE_GAP_THRESHOLD,
) -> ScanWindow | None:
    """
    Decide which heights a cycle scans. Returns None when there is nothing to do.

    A forced scan, a never-scanned address, or a checkpoint more than
    `large_gap_threshold` blocks behind head restarts at `head - depth`;
    older history is left to gap sync.
    """
    start = checkpoint
    reset = forced or start == 0 or (head - start) > large_gap_threshold
    if reset:
        start = max(head - depth, 0)

    if not forced and start >= head:
        return None

    end = min(start + depth, head)
    if end <= start:
        return None
    return ScanWindow(start=start, end=end, head=head, forced=forced, reset=reset)


def record_from_raw_tx(
    address: str,
    height: int,
    timestamp: str,
    tx_b64: str,
    params: ChainParams,
) -> Transaction | None:
    """
    Match one raw transaction's messages against `address`.

    Returns the record for the first relevant message, or None. A tx hash is
    unique per address, so one tx never yields more than one record.
    Raises DecodeError for undecodable bytes.
    """
    tx_bytes = decode_tx_bytes(tx_b64)
    tx_hash = compute_tx_hash(tx_bytes)

    for msg in decode_tx_messages(tx_bytes):
        if msg.type_url == MSG_SEND:
            send = decode_msg_send(msg.value)
            if send.to_address == address:
                tx_type, counterparty = "receive", send.from_address
            elif send.from_address == address:
                tx_type, counterparty = "send", send.to_address
            else:
                continue
            coin = next((c for c in send.amount if c.denom == params.base_denom), None)
        elif msg.type_url in _STAKING_TYPES:
            staking = decode_staking_msg(msg.type_url, msg.value)
            if staking.delegator_address != address:
                continue
            tx_type = _STAKING_TYPES[msg.type_url]
            counterparty = staking.validator_address
            coin = staking_amount(staking)
        else:
            continue

        amount = (
            format_base_units(coin.amount, params)
            if coin is not None and coin.denom == params.base_denom
            else "0"
        )
        return Transaction(
            hash=tx_hash,
            height=str(height),
            timestamp=timestamp,
            type=tx_type,
            amount=amount,
            denom=params.display_denom,
            counterparty=counterparty or "Unknown",
            status="success",
        )
    return None


class HeartbeatScanner:
    """
    Incremental scanner bound to explicit store and checkpoint handles.

    Usage:
        scanner = HeartbeatScanner(source, db.history, db.checkpoints, params)
        report = await scanner.scan(address)
    """

    def __init__(
        self,
        source: ChainSource,
        history: TransactionStore,
        checkpoints: CheckpointTracker,
        params: ChainParams | None = None,
        depth: int = DEFAULT_DEPTH,
        forced_depth: int = DEFAULT_FORCED_DEPTH,
        large_gap_threshold: int = DEFAULT_LARGE_GAP_THRESHOLD,
        max_concurrency: int = 10,
    ) -> None:
        self.source = source
        self.history = history
        self.checkpoints = checkpoints
        self.params = params or ChainParams()
        self.depth = depth
        self.forced_depth = forced_depth
        self.large_gap_threshold = large_gap_threshold
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def scan(self, address: str, depth: int | None = None, force: bool = False) -> ScanReport:
        """
        Run one heartbeat cycle (or a forced deep rescan when `force`).

        Network failures never escape; they show up in the report.
        Raises DatabaseError if the store rejects a write.
        """
        if depth is None:
            depth = self.forced_depth if force else self.depth

        checkpoint = await self.checkpoints.get(address)
        report = ScanReport(
            address=address,
            status="ok",
            forced=force,
            checkpoint_before=checkpoint,
            checkpoint_after=checkpoint,
        )

        try:
            head = await self.source.get_chain_head()
        except LumensyncError as e:
            logger.warning("Chain head unavailable, skipping cycle for %s: %s", address, e)
            report.status = "offline"
            return report
        report.head = head

        window = compute_window(checkpoint, head, depth, force, self.large_gap_threshold)
        if window is None:
            report.status = "idle"
            return report

        report.start, report.end = window.start, window.end
        logger.info(
            "Scanning %s heights %d..%d (forced=%s, head=%d)",
            address, window.start + 1, window.end, force, head,
        )

        heights = list(window.heights())
        outcomes = await asyncio.gather(
            *(self._scan_height(address, h) for h in heights),
            return_exceptions=True,
        )

        db_error: DatabaseError | None = None
        for height, outcome in zip(heights, outcomes):
            report.heights_scanned += 1
            if isinstance(outcome, DatabaseError):
                db_error = db_error or outcome
                report.heights_failed.append(height)
            elif isinstance(outcome, BaseException):
                logger.debug("Height %d skipped for %s: %s", height, address, outcome)
                report.heights_failed.append(height)
            else:
                strategy, new = outcome
                if strategy == "A":
                    report.strategy_a += 1
                else:
                    report.strategy_b += 1
                report.records.extend(new)
                report.found += len(new)

        if db_error is not None:
            raise db_error

        if not force:
            report.checkpoint_after = await self.checkpoints.advance(address, window.end)

        logger.info(
            "Scan of %s done: %d new, %d/%d heights failed",
            address, report.found, len(report.heights_failed), report.heights_scanned,
        )
        return report

    # ──────────────────────────────────────────────────────────────
    # Per-height strategies
    # ──────────────────────────────────────────────────────────────

    async def _scan_height(self, address: str, height: int) -> tuple[str, list[Transaction]]:
        """Returns (strategy, inserted records). Raises if both strategies fail."""
        async with self._semaphore:
            try:
                return "A", await self._scan_events(address, height)
            except DatabaseError:
                raise
            except LumensyncError as e:
                logger.debug("block_results unavailable at %d, using raw block: %s", height, e)
            return "B", await self._scan_raw_block(address, height)

    async def _scan_events(self, address: str, height: int) -> list[Transaction]:
        results = await self.source.get_block_results(height)

        # (source label, tx index or None, event index, transfer)
        matches = [
            ("sys", None, index, fact)
            for index, fact in self._transfers_to(results.system_events, address, height)
        ]
        for tx_index, events in enumerate(results.tx_events):
            found = self._transfers_to(events, address, height)
            if found:
                event_index, fact = found[0]
                matches.append(("tx", tx_index, event_index, fact))

        if not matches:
            return []

        block = await self.source.get_block(height)
        timestamp = normalize_timestamp(block.time)

        records: list[Transaction] = []
        for source, tx_index, event_index, fact in matches:
            logger.info("Transfer to %s found at %d (%s)", address, height, source)
            tx_hash = None
            if tx_index is not None and tx_index < len(block.txs):
                try:
                    tx_hash = compute_tx_hash(block.txs[tx_index])
                except DecodeError as e:
                    logger.debug("Cannot hash tx %d at %d: %s", tx_index, height, e)
            if tx_hash is None:
                label = tx_index if tx_index is not None else f"{source}{event_index}"
                tx_hash = synthetic_hash(height, label, fact.attributes)

            failed = (
                tx_index is not None
                and tx_index < len(results.tx_codes)
                and results.tx_codes[tx_index] != 0
            )
            records.append(
                Transaction(
                    hash=tx_hash,
                    height=str(height),
                    timestamp=timestamp,
                    type="receive",
                    amount=fact.amount,
                    denom=fact.denom,
                    counterparty=fact.sender,
                    status="failed" if failed else "success",
                )
            )
        return await self.history.insert_many(address, records)

    def _transfers_to(self, events: list, address: str, height: int) -> list:
        try:
            return find_transfers_to(events, address, self.params)
        except (AttributeError, TypeError, ValueError) as e:
            logger.debug("Skipping malformed events at %d: %s", height, e)
            return []

    async def _scan_raw_block(self, address: str, height: int) -> list[Transaction]:
        block = await self.source.get_block_raw(height)
        timestamp = normalize_timestamp(block.time)

        records: list[Transaction] = []
        for tx_b64 in block.txs:
            try:
                record = record_from_raw_tx(address, height, timestamp, tx_b64, self.params)
            except DecodeError as e:
                logger.debug("Skipping undecodable tx at %d: %s", height, e)
                continue
            if record is not None:
                records.append(record)

        if not records:
            return []
        return await self.history.insert_many(address, records)
