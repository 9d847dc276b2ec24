"""
Shared data models for lumensync.

These dataclasses are the canonical data shapes used across all modules:
the parser and scanners produce them, the store persists them, output
renders them. Using dataclasses for zero-overhead in hot paths.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

TX_TYPES = ("send", "receive", "stake", "unstake", "claim")
TX_STATUSES = ("success", "failed")

UNKNOWN_COUNTERPARTY = "Unknown"


@dataclass(frozen=True)
class Transaction:
    """A single history record for one address. Immutable once stored."""

    hash: str                   # canonical uppercase hex, or a synthetic "detected-..." id
    height: str                 # block height, kept as a decimal string
    timestamp: str              # ISO8601 UTC, microsecond precision
    type: str                   # "send" | "receive" | "stake" | "unstake" | "claim"
    amount: str                 # display-unit decimal string, e.g. "5.000000"
    denom: str                  # display denom, e.g. "LMN"
    counterparty: str = UNKNOWN_COUNTERPARTY
    status: str = "success"     # "success" | "failed"

    def __post_init__(self) -> None:
        if self.type not in TX_TYPES:
            raise ValueError(f"Unknown transaction type {self.type!r}")
        if self.status not in TX_STATUSES:
            raise ValueError(f"Unknown transaction status {self.status!r}")
        if not self.hash:
            raise ValueError("Transaction hash must not be empty")

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        """Build a record from a dict (store row, JSON import). Extra keys are ignored."""
        return cls(
            hash=str(data["hash"]),
            height=str(data.get("height", "0")),
            timestamp=normalize_timestamp(data.get("timestamp")),
            type=str(data.get("type", "receive")),
            amount=str(data.get("amount", "0")),
            denom=str(data.get("denom", "")),
            counterparty=str(data.get("counterparty") or UNKNOWN_COUNTERPARTY),
            status=str(data.get("status", "success")),
        )

    def epoch(self) -> float:
        """Timestamp as Unix seconds, used for ordering."""
        return datetime.fromisoformat(self.timestamp).timestamp()


@dataclass
class TransferFact:
    """Normalized transfer extracted from an event or a decoded message."""

    sender: str
    recipient: str
    amount: str                 # display-unit decimal string ("0" if not native)
    denom: str
    attributes: dict[str, str] = field(default_factory=dict)  # decoded attribute map


def now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="microseconds")


def normalize_timestamp(value: str | None) -> str:
    """
    Normalize an RFC3339 / ISO8601 timestamp to UTC with microsecond precision.

    CometBFT block times carry nanoseconds ("2024-05-01T12:00:00.123456789Z");
    the fraction is truncated to six digits. Missing or unparsable values fall
    back to the current time.
    """
    if not value:
        return now_iso()
    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        i = 0
        while i < len(rest) and rest[i].isdigit():
            digits += rest[i]
            i += 1
        text = f"{head}.{(digits + '000000')[:6]}{rest[i:]}"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return now_iso()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")
