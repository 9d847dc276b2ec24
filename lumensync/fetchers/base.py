"""Chain source protocol and the raw data shapes it returns."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class BlockResults:
    """
    Execution results for one block (CometBFT `block_results`).

    `system_events` holds protocol-level events (finalize_block_events, or
    begin/end block events on older nodes) in a stable order.
    `tx_events[i]` are the events of the i-th transaction in the block.
    """

    height: int
    system_events: list[dict[str, Any]] = field(default_factory=list)
    tx_events: list[list[dict[str, Any]]] = field(default_factory=list)
    tx_codes: list[int] = field(default_factory=list)


@dataclass
class RawBlock:
    """Block header time plus base64-encoded raw transaction bytes."""

    height: int
    time: str | None
    txs: list[str] = field(default_factory=list)


@dataclass
class SearchHit:
    """One indexed-search result (CometBFT `tx_search`)."""

    height: int
    hash: str | None = None
    tx: str | None = None       # base64 TxRaw bytes
    events: list[dict[str, Any]] = field(default_factory=list)
    code: int = 0


@runtime_checkable
class ChainSource(Protocol):
    """
    Read-only access to a Cosmos SDK chain's RPC and REST endpoints.

    Implementations raise lumensync.exceptions.APIError / NetworkError
    subclasses on failure; the sync components decide what to skip.
    """

    async def get_chain_head(self) -> int:
        """Latest block height. REST first, RPC status as fallback."""
        ...

    async def get_block_results(self, height: int) -> BlockResults:
        """Events for the finalized block and each included transaction."""
        ...

    async def get_block(self, height: int) -> RawBlock:
        """Block header time and tx bytes from the RPC `block` endpoint."""
        ...

    async def get_block_raw(self, height: int) -> RawBlock:
        """Block header time and tx bytes from REST, falling back to RPC."""
        ...

    async def search_transfers_to(
        self, address: str, limit: int, order: str = "desc"
    ) -> list[SearchHit]:
        """Indexed search for transactions with a transfer to `address`."""
        ...

    async def close(self) -> None:
        ...
