"""
Lumen chain client — CometBFT RPC + Cosmos REST.

Endpoints used:
  REST  /cosmos/base/tendermint/v1beta1/blocks/latest   chain head
  REST  /cosmos/base/tendermint/v1beta1/blocks/{h}      raw block (fallback scan)
  RPC   /status                                         chain head fallback
  RPC   /block_results?height=h                         events (preferred scan)
  RPC   /block?height=h                                 header time + tx bytes
  RPC   /tx_search?query=...                            gap sync

Design decisions:
- Uses async httpx for all HTTP calls, one AsyncClient per instance.
- Every transport or payload problem becomes a lumensync exception; callers
  never see httpx errors.
- No retries here. A failed unit of work is retried by the next sync cycle.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from lumensync.exceptions import (
    APIError,
    ConnectionFailedError,
    EndpointUnavailableError,
    NetworkError,
    NetworkTimeoutError,
)
from lumensync.fetchers.base import BlockResults, RawBlock, SearchHit

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://rpc-lumen.winnode.xyz"
DEFAULT_REST_URL = "https://api-lumen.winnode.xyz"

REST_BLOCKS = "/cosmos/base/tendermint/v1beta1/blocks"

# CometBFT caps tx_search page size at 100
MAX_SEARCH_PAGE = 100


class LumenClient:
    """Async client for a Lumen node's RPC and REST interfaces."""

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        rest_url: str = DEFAULT_REST_URL,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url.rstrip("/")
        self.rest_url = rest_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def get_chain_head(self) -> int:
        """Latest height from REST; RPC `status` if REST fails."""
        try:
            data = await self._get_json(f"{self.rest_url}{REST_BLOCKS}/latest")
            block = data.get("block") or data.get("sdk_block") or {}
            return int(block["header"]["height"])
        except (APIError, NetworkError, KeyError, TypeError, ValueError) as e:
            logger.debug("REST head unavailable, trying RPC status: %s", e)

        data = await self._get_rpc("status")
        try:
            return int(data["sync_info"]["latest_block_height"])
        except (KeyError, TypeError, ValueError) as e:
            raise EndpointUnavailableError(f"Malformed RPC status response: {e}") from e

    async def get_block_results(self, height: int) -> BlockResults:
        result = await self._get_rpc("block_results", {"height": str(height)})
        system_events: list[dict[str, Any]] = []
        for key in ("finalize_block_events", "begin_block_events", "end_block_events"):
            system_events.extend(result.get(key) or [])
        tx_results = result.get("txs_results") or []
        return BlockResults(
            height=height,
            system_events=system_events,
            tx_events=[(r or {}).get("events") or [] for r in tx_results],
            tx_codes=[int((r or {}).get("code") or 0) for r in tx_results],
        )

    async def get_block(self, height: int) -> RawBlock:
        result = await self._get_rpc("block", {"height": str(height)})
        block = result.get("block") or {}
        return RawBlock(
            height=height,
            time=(block.get("header") or {}).get("time"),
            txs=list((block.get("data") or {}).get("txs") or []),
        )

    async def get_block_raw(self, height: int) -> RawBlock:
        """REST block body; the RPC `block` endpoint if REST is unavailable."""
        try:
            data = await self._get_json(f"{self.rest_url}{REST_BLOCKS}/{height}")
        except (APIError, NetworkError):
            return await self.get_block(height)

        block = data.get("block") or data.get("sdk_block")
        if not block:
            raise EndpointUnavailableError(f"REST block {height} has no block body")
        return RawBlock(
            height=height,
            time=(block.get("header") or {}).get("time"),
            txs=list((block.get("data") or {}).get("txs") or []),
        )

    async def search_transfers_to(
        self, address: str, limit: int, order: str = "desc"
    ) -> list[SearchHit]:
        result = await self._get_rpc(
            "tx_search",
            {
                "query": f"\"transfer.recipient='{address}'\"",
                "prove": "false",
                "page": "1",
                "per_page": str(min(limit, MAX_SEARCH_PAGE)),
                "order_by": f'"{order}"',
            },
        )
        hits: list[SearchHit] = []
        for tx in result.get("txs") or []:
            try:
                tx_result = tx.get("tx_result") or {}
                hits.append(
                    SearchHit(
                        height=int(tx["height"]),
                        hash=tx.get("hash") or None,
                        tx=tx.get("tx") or None,
                        events=tx_result.get("events") or [],
                        code=int(tx_result.get("code") or 0),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        return hits[:limit]

    async def close(self) -> None:
        await self._client.aclose()

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    async def _get_rpc(self, method: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """GET an RPC URI endpoint and unwrap the JSON-RPC `result`."""
        data = await self._get_json(f"{self.rpc_url}/{method}", params)
        if data.get("error"):
            raise EndpointUnavailableError(f"RPC {method} error: {data['error']}")
        result = data.get("result")
        if not isinstance(result, dict):
            raise EndpointUnavailableError(f"RPC {method} returned no result")
        return result

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        try:
            resp = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(f"Timeout requesting {url}: {e}") from e
        except httpx.ConnectError as e:
            raise ConnectionFailedError(f"Cannot connect to {url}: {e}") from e
        except httpx.HTTPError as e:
            raise ConnectionFailedError(f"HTTP error requesting {url}: {e}") from e

        if resp.status_code >= 400:
            raise EndpointUnavailableError(
                f"{url} returned HTTP {resp.status_code}", status_code=resp.status_code
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise APIError(f"{url} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise APIError(f"{url} returned unexpected payload type {type(data).__name__}")
        return data
