"""
Cosmos SDK transaction decoding for the raw-block fallback.

Decoding goes TxRaw → TxBody → Any messages with the generated protobuf
types shipped by cosmpy. Only the message types the history cares about are
unpacked:

    /cosmos.bank.v1beta1.MsgSend
    /cosmos.staking.v1beta1.MsgDelegate
    /cosmos.staking.v1beta1.MsgUndelegate
    /cosmos.distribution.v1beta1.MsgWithdrawDelegatorReward

Protobuf parse failures surface as lumensync DecodeError.
"""

from __future__ import annotations

from typing import TypeVar, Union

from cosmpy.protos.cosmos.bank.v1beta1.tx_pb2 import MsgSend
from cosmpy.protos.cosmos.base.v1beta1.coin_pb2 import Coin
from cosmpy.protos.cosmos.distribution.v1beta1.tx_pb2 import MsgWithdrawDelegatorReward
from cosmpy.protos.cosmos.staking.v1beta1.tx_pb2 import MsgDelegate, MsgUndelegate
from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import TxBody, TxRaw
from google.protobuf import message as protobuf_message
from google.protobuf.any_pb2 import Any as AnyMessage

from lumensync.exceptions import DecodeError

MSG_SEND = "/cosmos.bank.v1beta1.MsgSend"
MSG_DELEGATE = "/cosmos.staking.v1beta1.MsgDelegate"
MSG_UNDELEGATE = "/cosmos.staking.v1beta1.MsgUndelegate"
MSG_WITHDRAW_REWARD = "/cosmos.distribution.v1beta1.MsgWithdrawDelegatorReward"

StakingMsg = Union[MsgDelegate, MsgUndelegate, MsgWithdrawDelegatorReward]

_STAKING_CLASSES: dict[str, type[StakingMsg]] = {
    MSG_DELEGATE: MsgDelegate,
    MSG_UNDELEGATE: MsgUndelegate,
    MSG_WITHDRAW_REWARD: MsgWithdrawDelegatorReward,
}

M = TypeVar("M", bound=protobuf_message.Message)


def _parse(cls: type[M], data: bytes) -> M:
    msg = cls()
    try:
        msg.ParseFromString(data)
    except protobuf_message.DecodeError as e:
        raise DecodeError(f"Cannot decode {cls.__name__}: {e}") from e
    return msg


def decode_tx_messages(tx_bytes: bytes) -> list[AnyMessage]:
    """Decode TxRaw bytes to the body's list of Any messages."""
    raw = _parse(TxRaw, tx_bytes)
    if not raw.body_bytes:
        raise DecodeError("TxRaw has no body_bytes")
    return list(_parse(TxBody, raw.body_bytes).messages)


def decode_msg_send(value: bytes) -> MsgSend:
    return _parse(MsgSend, value)


def decode_staking_msg(type_url: str, value: bytes) -> StakingMsg:
    """Decode MsgDelegate, MsgUndelegate or MsgWithdrawDelegatorReward by type URL."""
    try:
        cls = _STAKING_CLASSES[type_url]
    except KeyError:
        raise DecodeError(f"Not a staking message: {type_url}") from None
    return _parse(cls, value)


def staking_amount(msg: StakingMsg) -> Coin | None:
    """The delegated coin, or None for reward withdrawals (amount not in the message)."""
    if isinstance(msg, MsgWithdrawDelegatorReward) or not msg.HasField("amount"):
        return None
    return msg.amount
