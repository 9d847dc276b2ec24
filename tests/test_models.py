"""Tests for lumensync/models.py — history record and timestamp handling."""

from __future__ import annotations

import dataclasses

import pytest

from lumensync.models import Transaction, normalize_timestamp

# ── Transaction ───────────────────────────────────────────────────────────────


def _tx(**overrides) -> Transaction:
    fields = {
        "hash": "AB12",
        "height": "10",
        "timestamp": "2024-01-01T00:00:00.000000+00:00",
        "type": "receive",
        "amount": "1.000000",
        "denom": "LMN",
    }
    fields.update(overrides)
    return Transaction(**fields)


def test_transaction_defaults() -> None:
    """counterparty defaults to Unknown, status to success."""
    tx = _tx()
    assert tx.counterparty == "Unknown"
    assert tx.status == "success"


def test_transaction_is_immutable() -> None:
    tx = _tx()
    with pytest.raises(dataclasses.FrozenInstanceError):
        tx.amount = "2.000000"  # type: ignore[misc]


def test_transaction_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        _tx(type="swap")


def test_transaction_rejects_unknown_status() -> None:
    with pytest.raises(ValueError):
        _tx(status="pending")


def test_transaction_rejects_empty_hash() -> None:
    with pytest.raises(ValueError):
        _tx(hash="")


def test_to_dict_has_all_fields() -> None:
    d = _tx().to_dict()
    assert set(d) == {
        "hash", "height", "timestamp", "type", "amount", "denom", "counterparty", "status",
    }


def test_from_dict_normalizes_and_stringifies() -> None:
    """from_dict accepts an integer height and a Z timestamp, ignores extra keys."""
    tx = Transaction.from_dict({
        "hash": "FF00",
        "height": 42,
        "timestamp": "2024-05-01T12:00:00Z",
        "type": "send",
        "amount": "3.5",
        "denom": "LMN",
        "counterparty": None,
        "memo": "ignored",
    })
    assert tx.height == "42"
    assert tx.timestamp == "2024-05-01T12:00:00.000000+00:00"
    assert tx.counterparty == "Unknown"


def test_from_dict_requires_hash() -> None:
    with pytest.raises(KeyError):
        Transaction.from_dict({"type": "send"})


def test_epoch_orders_by_time() -> None:
    early = _tx(timestamp="2024-01-01T00:00:00.000000+00:00")
    late = _tx(timestamp="2024-01-01T00:00:06.000000+00:00")
    assert late.epoch() - early.epoch() == pytest.approx(6.0)


# ── normalize_timestamp ───────────────────────────────────────────────────────


def test_normalize_truncates_nanoseconds() -> None:
    """CometBFT nanosecond times are cut to microseconds."""
    assert (
        normalize_timestamp("2024-05-01T12:00:00.123456789Z")
        == "2024-05-01T12:00:00.123456+00:00"
    )


def test_normalize_pads_short_fraction() -> None:
    assert normalize_timestamp("2024-05-01T12:00:00.5Z") == "2024-05-01T12:00:00.500000+00:00"


def test_normalize_converts_offset_to_utc() -> None:
    assert (
        normalize_timestamp("2024-05-01T14:00:00+02:00")
        == "2024-05-01T12:00:00.000000+00:00"
    )


def test_normalize_naive_is_utc() -> None:
    assert normalize_timestamp("2024-05-01T12:00:00") == "2024-05-01T12:00:00.000000+00:00"


@pytest.mark.parametrize("value", [None, "", "not a time"])
def test_normalize_falls_back_to_now(value) -> None:
    """Missing or garbage timestamps become the current UTC time."""
    result = normalize_timestamp(value)
    assert result.endswith("+00:00")
    assert result.startswith("20")
