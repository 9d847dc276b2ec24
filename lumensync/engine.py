"""
HistorySync — the public surface of the sync engine.

Wires one ChainSource and one Database into the heartbeat scanner, the gap
syncer and the rescan trigger, and exposes the operations collaborators use:

  read   get_history(address)
  write  save_transaction(address, tx) / save_batch(address, txs)
         (the send flow records locally-originated transactions immediately)
  sync   sync_gap(address), sync_heartbeat(address), on_possible_credit(address)

The three sync entry points are background operations: chain and network
failures are absorbed and reported, never raised. Only DatabaseError
propagates.
"""

from __future__ import annotations

from typing import Iterable

from lumensync.config import LumensyncConfig
from lumensync.db import Database
from lumensync.fetchers.base import ChainSource
from lumensync.gap import GapSyncer, GapSyncReport
from lumensync.models import Transaction
from lumensync.parser import ChainParams
from lumensync.rescan import RescanTrigger
from lumensync.scanner import HeartbeatScanner, ScanReport


class HistorySync:
    """
    Sync engine for any number of addresses sharing one chain and one store.

    Usage:
        async with Database(path) as db:
            engine = HistorySync.from_config(config, source, db)
            await engine.sync_gap(address)
            await engine.sync_heartbeat(address)
            history = await engine.get_history(address)
    """

    def __init__(
        self,
        source: ChainSource,
        db: Database,
        params: ChainParams | None = None,
        heartbeat_depth: int = 20,
        forced_depth: int = 100,
        large_gap_threshold: int = 1000,
        gap_sync_limit: int = 50,
        max_concurrency: int = 10,
    ) -> None:
        self.source = source
        self.db = db
        self.params = params or ChainParams()
        self.scanner = HeartbeatScanner(
            source,
            db.history,
            db.checkpoints,
            self.params,
            depth=heartbeat_depth,
            forced_depth=forced_depth,
            large_gap_threshold=large_gap_threshold,
            max_concurrency=max_concurrency,
        )
        self.gap = GapSyncer(source, db.history, db.checkpoints, self.params, limit=gap_sync_limit)
        self.rescan = RescanTrigger(self.scanner, depth=forced_depth)

    @classmethod
    def from_config(cls, config: LumensyncConfig, source: ChainSource, db: Database) -> HistorySync:
        return cls(
            source,
            db,
            params=ChainParams.from_config(config.chain),
            heartbeat_depth=config.scanner.heartbeat_depth,
            forced_depth=config.scanner.forced_depth,
            large_gap_threshold=config.scanner.large_gap_threshold,
            gap_sync_limit=config.scanner.gap_sync_limit,
            max_concurrency=config.scanner.max_concurrency,
        )

    # ── Store access ──────────────────────────────────────────────────────────

    async def get_history(self, address: str, limit: int | None = None) -> list[Transaction]:
        return await self.db.history.get(address, limit=limit)

    async def save_transaction(self, address: str, tx: Transaction) -> bool:
        return await self.db.history.put(address, tx)

    async def save_batch(self, address: str, txs: Iterable[Transaction]) -> int:
        return await self.db.history.put_many(address, txs)

    async def get_checkpoint(self, address: str) -> int:
        return await self.db.checkpoints.get(address)

    # ── Sync entry points ─────────────────────────────────────────────────────

    async def sync_gap(self, address: str) -> GapSyncReport:
        return await self.gap.sync_gap(address)

    async def sync_heartbeat(self, address: str) -> ScanReport:
        return await self.scanner.scan(address)

    async def on_possible_credit(self, address: str) -> ScanReport:
        return await self.rescan.on_possible_credit(address)
