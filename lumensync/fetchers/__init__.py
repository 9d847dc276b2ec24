"""
Chain access layer for lumensync.

Provides a factory `get_chain_source()` that returns a configured client
implementing the ChainSource protocol.

Usage:
    from lumensync.fetchers import get_chain_source
    source = get_chain_source(config)
    head = await source.get_chain_head()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from lumensync.fetchers.base import BlockResults, ChainSource, RawBlock, SearchHit

if TYPE_CHECKING:
    from lumensync.config import LumensyncConfig

__all__ = [
    "BlockResults",
    "ChainSource",
    "RawBlock",
    "SearchHit",
    "get_chain_source",
]


def get_chain_source(config: LumensyncConfig) -> ChainSource:
    """
    Factory: return a chain client for the configured endpoints.

    Raises:
        ValueError: RPC or REST URL is not configured
    """
    if not config.chain.rpc_url or not config.chain.rest_url:
        raise ValueError("chain.rpc_url and chain.rest_url must both be configured")

    from lumensync.fetchers.lumen import LumenClient

    return LumenClient(
        rpc_url=config.chain.rpc_url,
        rest_url=config.chain.rest_url,
        timeout=config.chain.request_timeout,
    )
