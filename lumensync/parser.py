"""
Event and attribute normalization.

The two chain data sources disagree on attribute encoding: `block_results`
and `tx_search` on older CometBFT nodes return base64-encoded keys and
values, newer nodes return plain strings, and some gateways hex-encode.
There is no envelope flag saying which, so decoding is heuristic.

Decoding precedence for a value (`decode_value`):
  1. the value as given, if it already passes the key's plain-text check
  2. base64-decoded, if that passes the check
  3. hex-decoded, if that passes the check
  4. the value as given (nothing better was found)

Plain-text checks (`looks_plain`):
  - sender / recipient / spender / receiver: starts with the address prefix
  - amount: contains the base denomination
  - anything else: printable text
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from lumensync.exceptions import DecodeError
from lumensync.models import UNKNOWN_COUNTERPARTY, TransferFact

ADDRESS_KEYS = {"sender", "recipient", "spender", "receiver"}

_COIN_RE = re.compile(r"^(\d+)([a-zA-Z][a-zA-Z0-9/:._-]*)$")
_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{2})+$")
_KEY_RE = re.compile(r"^[a-z][a-z_.]*$")


@dataclass(frozen=True)
class ChainParams:
    """The chain constants the parser needs."""

    base_denom: str = "ulmn"
    display_denom: str = "LMN"
    address_prefix: str = "lmn"
    decimals: int = 6

    @classmethod
    def from_config(cls, chain: Any) -> ChainParams:
        return cls(
            base_denom=chain.base_denom,
            display_denom=chain.display_denom,
            address_prefix=chain.address_prefix,
            decimals=chain.decimals,
        )


# ──────────────────────────────────────────────────────────────
# Attribute decoding
# ──────────────────────────────────────────────────────────────


def looks_plain(key: str, value: str, params: ChainParams) -> bool:
    """Return True if `value` already reads as the plain form expected for `key`."""
    if not value:
        return False
    if key in ADDRESS_KEYS:
        return value.startswith(params.address_prefix)
    if key == "amount":
        return params.base_denom in value
    return value.isprintable()


def _b64(value: str) -> str | None:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def _hex(value: str) -> str | None:
    if not _HEX_RE.match(value):
        return None
    try:
        return bytes.fromhex(value).decode("utf-8")
    except ValueError:
        return None


def decode_value(key: str, value: str | None, params: ChainParams) -> str | None:
    """Decode an attribute value following the documented precedence."""
    if value is None:
        return None
    value = str(value)
    if looks_plain(key, value, params):
        return value
    for decoder in (_b64, _hex):
        decoded = decoder(value)
        if decoded is not None and looks_plain(key, decoded, params):
            return decoded
    return value


def key_matches(raw_key: str | None, name: str) -> bool:
    """Match an attribute key given plain, base64 or hex encoded."""
    if raw_key is None:
        return False
    if raw_key == name:
        return True
    encoded = name.encode("utf-8")
    return raw_key == base64.b64encode(encoded).decode("ascii") or raw_key.lower() == encoded.hex()


def find_attribute(event: dict[str, Any], name: str, params: ChainParams) -> str | None:
    """Return the decoded value of the first attribute named `name`, or None."""
    for attr in event.get("attributes") or []:
        if not isinstance(attr, dict):
            continue
        if key_matches(attr.get("key"), name):
            return decode_value(name, attr.get("value"), params)
    return None


def decode_key(raw_key: str) -> str:
    """Decode an attribute key. Plain keys are lowercase words such as `msg_index`."""
    if _KEY_RE.match(raw_key):
        return raw_key
    for decoder in (_b64, _hex):
        decoded = decoder(raw_key)
        if decoded is not None and _KEY_RE.match(decoded):
            return decoded
    return raw_key


def decode_attributes(event: dict[str, Any], params: ChainParams) -> dict[str, str]:
    """Decode every attribute of an event into a plain {key: value} map."""
    out: dict[str, str] = {}
    for attr in event.get("attributes") or []:
        if not isinstance(attr, dict) or attr.get("key") is None:
            continue
        key = decode_key(str(attr["key"]))
        value = decode_value(key, attr.get("value"), params)
        if value is not None and key not in out:
            out[key] = value
    return out


# ──────────────────────────────────────────────────────────────
# Amounts
# ──────────────────────────────────────────────────────────────


def parse_amount(raw: str | None, params: ChainParams) -> str | None:
    """
    Convert a coin string to a display-unit decimal string.

    Only the native base denomination is accepted. "5000000ulmn" → "5.000000".
    Multi-coin strings ("10uatom,5000000ulmn") yield the native coin.
    Returns None when no native coin is present.
    """
    if not raw:
        return None
    for part in str(raw).split(","):
        match = _COIN_RE.match(part.strip())
        if match and match.group(2) == params.base_denom:
            return format_base_units(match.group(1), params)
    return None


def format_base_units(amount: str | int, params: ChainParams) -> str:
    """
    Integer base units → display string with `decimals` places.

    Raises DecodeError if `amount` is not an integer.
    """
    try:
        units = int(amount)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Invalid base-unit amount {amount!r}") from e
    value = Decimal(units) / Decimal(10) ** params.decimals
    return f"{value:.{params.decimals}f}"


# ──────────────────────────────────────────────────────────────
# Transfers
# ──────────────────────────────────────────────────────────────


def transfer_events(events: list[dict[str, Any]] | None) -> list[tuple[int, dict[str, Any]]]:
    """Return (index, event) for every `transfer` event in the list."""
    return [
        (i, e)
        for i, e in enumerate(events or [])
        if isinstance(e, dict) and e.get("type") == "transfer"
    ]


def to_transfer(event: dict[str, Any], params: ChainParams) -> TransferFact:
    """Normalize one transfer event. Undecodable sender becomes "Unknown"."""
    sender = find_attribute(event, "sender", params)
    recipient = find_attribute(event, "recipient", params) or ""
    amount = parse_amount(find_attribute(event, "amount", params), params)
    if not sender or not sender.startswith(params.address_prefix):
        sender = UNKNOWN_COUNTERPARTY
    return TransferFact(
        sender=sender,
        recipient=recipient,
        amount=amount if amount is not None else "0",
        denom=params.display_denom,
        attributes=decode_attributes(event, params),
    )


def find_transfers_to(
    events: list[dict[str, Any]] | None,
    address: str,
    params: ChainParams,
) -> list[tuple[int, TransferFact]]:
    """
    Return (event_index, transfer) for every transfer whose recipient is `address`.

    All transfer events are checked, not only the first: in a user transaction
    the first transfer is normally the fee payment to the fee collector.
    """
    found: list[tuple[int, TransferFact]] = []
    for index, event in transfer_events(events):
        if find_attribute(event, "recipient", params) != address:
            continue
        found.append((index, to_transfer(event, params)))
    return found


# ──────────────────────────────────────────────────────────────
# Hashes
# ──────────────────────────────────────────────────────────────


def compute_tx_hash(tx_bytes: bytes | str) -> str:
    """
    Canonical Cosmos tx hash: uppercase hex SHA-256 of the raw TxRaw bytes.

    Accepts the bytes or their base64 form as returned by the RPC.
    Raises DecodeError for invalid base64.
    """
    if isinstance(tx_bytes, str):
        tx_bytes = decode_tx_bytes(tx_bytes)
    return hashlib.sha256(tx_bytes).hexdigest().upper()


def decode_tx_bytes(tx_b64: str) -> bytes:
    try:
        return base64.b64decode(tx_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 transaction bytes: {e}") from e


def synthetic_hash(height: int | str, source: int | str, attributes: dict[str, str]) -> str:
    """
    Identifier for a transfer without transaction bytes (protocol-level events).

    Derived from height, event index/source and the normalized attributes, so
    re-scanning the same height yields the same id and the store dedups it.
    """
    digest = hashlib.sha256(
        json.dumps(
            {"height": str(height), "source": str(source), "attributes": attributes},
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
    ).hexdigest()
    return f"detected-{height}-{source}-{digest[:12]}"
