"""Forced deep rescan, invoked when a balance observer sees an unexplained credit."""

from __future__ import annotations

import logging

from lumensync.scanner import HeartbeatScanner, ScanReport

logger = logging.getLogger(__name__)


class RescanTrigger:
    """
    Hook for an external balance observer.

    Balance changes can be visible before the matching transfer has been
    picked up by the heartbeat. `on_possible_credit` rescans the last
    `depth` blocks regardless of the checkpoint and leaves the checkpoint
    untouched, so the same blocks stay eligible for incremental scanning.
    """

    def __init__(self, scanner: HeartbeatScanner, depth: int | None = None) -> None:
        self.scanner = scanner
        self.depth = depth if depth is not None else scanner.forced_depth

    async def on_possible_credit(self, address: str) -> ScanReport:
        logger.info("Possible credit for %s, forcing rescan of last %d blocks", address, self.depth)
        return await self.scanner.scan(address, depth=self.depth, force=True)
