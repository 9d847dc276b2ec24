"""Pytest fixtures shared across all lumensync tests."""

from __future__ import annotations

import base64
from datetime import UTC, datetime, timedelta

import pytest
from cosmpy.protos.cosmos.bank.v1beta1.tx_pb2 import MsgSend
from cosmpy.protos.cosmos.base.v1beta1.coin_pb2 import Coin
from cosmpy.protos.cosmos.distribution.v1beta1.tx_pb2 import MsgWithdrawDelegatorReward
from cosmpy.protos.cosmos.staking.v1beta1.tx_pb2 import MsgDelegate, MsgUndelegate
from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import TxBody, TxRaw
from google.protobuf.any_pb2 import Any as AnyMessage

from lumensync.config import (
    ChainConfig,
    DatabaseConfig,
    LoggingConfig,
    LumensyncConfig,
    OutputConfig,
    ScannerConfig,
)
from lumensync.db import Database
from lumensync.exceptions import EndpointUnavailableError, NetworkTimeoutError
from lumensync.fetchers.base import BlockResults, RawBlock, SearchHit
from lumensync.models import Transaction
from lumensync.parser import ChainParams
from lumensync.proto import MSG_DELEGATE, MSG_SEND, MSG_UNDELEGATE, MSG_WITHDRAW_REWARD

ADDR = "lmn1qyqszqgpqyqszqgpqyqszqgpqyqszqgp5wxzt0"
OTHER = "lmn1zgp5wxzt0qyqszqgpqyqszqgpqyqszqgpz3cd7m"
FEE_COLLECTOR = "lmn17xpfvakm2amg962yls6f84z3kell8c5lfzp9cq"
VALIDATOR = "lmnvaloper1qyqszqgpqyqszqgpqyqszqgpqyqszqgpvalxyz"

GENESIS = datetime(2024, 1, 1, tzinfo=UTC)
BLOCK_SECONDS = 6

PARAMS = ChainParams()


# ── Config fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def sample_config() -> LumensyncConfig:
    """Minimal valid LumensyncConfig for tests."""
    return LumensyncConfig(
        chain=ChainConfig(rpc_url="https://rpc.test", rest_url="https://rest.test"),
        scanner=ScannerConfig(),
        database=DatabaseConfig(path=":memory:", history_limit=100),
        output=OutputConfig(default_format="json", color=False),
        logging=LoggingConfig(level="WARNING"),
    )


# ── DB fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture
async def in_memory_db() -> Database:
    """In-memory SQLite DB with schema applied."""
    db = Database(":memory:")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def small_db() -> Database:
    """In-memory DB that keeps only 5 records per address."""
    db = Database(":memory:", history_limit=5)
    await db.connect()
    yield db
    await db.close()


# ── Chain fixtures ────────────────────────────────────────────────────────────


@pytest.fixture
def chain() -> FakeChainSource:
    return FakeChainSource(head=0)


def block_time(height: int) -> str:
    """Deterministic RFC3339 block time with nanoseconds, as CometBFT reports it."""
    ts = GENESIS + timedelta(seconds=height * BLOCK_SECONDS)
    return ts.strftime("%Y-%m-%dT%H:%M:%S") + ".123456789Z"


class FakeChainSource:
    """
    In-memory ChainSource.

    Unknown heights return empty block results and an empty block with a
    deterministic time. Heights in the *_errors sets raise.
    """

    def __init__(self, head: int = 0) -> None:
        self.head = head
        self.head_error: Exception | None = None
        self.results: dict[int, BlockResults] = {}
        self.blocks: dict[int, RawBlock] = {}
        self.results_errors: set[int] = set()
        self.block_errors: set[int] = set()
        self.raw_errors: set[int] = set()
        self.hits: list[SearchHit] = []
        self.search_error: Exception | None = None
        self.calls: list[tuple[str, object]] = []
        self.closed = False

    async def get_chain_head(self) -> int:
        self.calls.append(("head", None))
        if self.head_error is not None:
            raise self.head_error
        return self.head

    async def get_block_results(self, height: int) -> BlockResults:
        self.calls.append(("block_results", height))
        if height in self.results_errors:
            raise EndpointUnavailableError(f"block_results {height} unavailable", status_code=500)
        return self.results.get(height, BlockResults(height=height))

    async def get_block(self, height: int) -> RawBlock:
        self.calls.append(("block", height))
        if height in self.block_errors:
            raise NetworkTimeoutError(f"block {height} timed out")
        return self.blocks.get(height, RawBlock(height=height, time=block_time(height)))

    async def get_block_raw(self, height: int) -> RawBlock:
        self.calls.append(("block_raw", height))
        if height in self.raw_errors:
            raise EndpointUnavailableError(f"raw block {height} unavailable", status_code=500)
        return self.blocks.get(height, RawBlock(height=height, time=block_time(height)))

    async def search_transfers_to(self, address: str, limit: int, order: str = "desc") -> list[SearchHit]:
        self.calls.append(("search", (address, limit, order)))
        if self.search_error is not None:
            raise self.search_error
        return self.hits[:limit]

    async def close(self) -> None:
        self.closed = True

    def heights_called(self, kind: str) -> list[int]:
        return sorted(arg for name, arg in self.calls if name == kind)


# ── Event / tx builders ───────────────────────────────────────────────────────


def _encode(text: str, encoding: str) -> str:
    if encoding == "b64":
        return base64.b64encode(text.encode()).decode()
    if encoding == "hex":
        return text.encode().hex()
    return text


def transfer_event(
    recipient: str,
    amount: str,
    sender: str = OTHER,
    encoding: str = "plain",
) -> dict:
    """A `transfer` event with keys and values in the given encoding."""
    attrs = [("recipient", recipient), ("sender", sender), ("amount", amount), ("msg_index", "0")]
    return {
        "type": "transfer",
        "attributes": [
            {"key": _encode(k, encoding), "value": _encode(v, encoding), "index": True}
            for k, v in attrs
        ],
    }


def fee_event(sender: str = ADDR, amount: str = "5000ulmn") -> dict:
    return transfer_event(FEE_COLLECTOR, amount, sender=sender)


def send_message(from_addr: str, to_addr: str, amount: str, denom: str = "ulmn") -> AnyMessage:
    msg = MsgSend(
        from_address=from_addr,
        to_address=to_addr,
        amount=[Coin(denom=denom, amount=amount)],
    )
    return AnyMessage(type_url=MSG_SEND, value=msg.SerializeToString())


def delegate_message(delegator: str, amount: str, type_url: str = MSG_DELEGATE) -> AnyMessage:
    cls = MsgUndelegate if type_url == MSG_UNDELEGATE else MsgDelegate
    msg = cls(
        delegator_address=delegator,
        validator_address=VALIDATOR,
        amount=Coin(denom="ulmn", amount=amount),
    )
    return AnyMessage(type_url=type_url, value=msg.SerializeToString())


def claim_message(delegator: str) -> AnyMessage:
    msg = MsgWithdrawDelegatorReward(delegator_address=delegator, validator_address=VALIDATOR)
    return AnyMessage(type_url=MSG_WITHDRAW_REWARD, value=msg.SerializeToString())


def tx_bytes(*messages: AnyMessage, memo: str = "") -> bytes:
    body = TxBody(messages=list(messages), memo=memo)
    raw = TxRaw(body_bytes=body.SerializeToString(), auth_info_bytes=b"", signatures=[b""])
    return raw.SerializeToString()


def tx_b64(*messages: AnyMessage, memo: str = "") -> str:
    return base64.b64encode(tx_bytes(*messages, memo=memo)).decode()


def make_tx(
    hash: str = "ABC123",
    height: int = 100,
    seconds: int = 0,
    type: str = "receive",
    amount: str = "1.000000",
) -> Transaction:
    """History record with a timestamp `seconds` after genesis."""
    ts = (GENESIS + timedelta(seconds=seconds)).isoformat(timespec="microseconds")
    return Transaction(
        hash=hash,
        height=str(height),
        timestamp=ts,
        type=type,
        amount=amount,
        denom="LMN",
        counterparty=OTHER,
    )
