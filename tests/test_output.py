"""Tests for lumensync/output.py — output formatting."""

from __future__ import annotations

import csv
import io
import json
from typing import Any

import pytest

from conftest import ADDR, OTHER
from lumensync.output import (
    TX_COLUMNS,
    format_csv,
    format_json,
    format_jsonl,
    format_output,
    format_table,
)

# ── Fixtures ──────────────────────────────────────────────────────────────────


def make_history() -> dict[str, Any]:
    """History result as produced by `lumensync history`."""
    return {
        "address": ADDR,
        "checkpoint": 105,
        "count": 2,
        "transactions": [
            {
                "hash": "A" * 64,
                "height": "103",
                "timestamp": "2024-01-01T00:10:18.123456+00:00",
                "type": "receive",
                "amount": "1.500000",
                "denom": "LMN",
                "counterparty": OTHER,
                "status": "success",
            },
            {
                "hash": "detected-101-sys0-0123456789ab",
                "height": "101",
                "timestamp": "2024-01-01T00:10:06.123456+00:00",
                "type": "send",
                "amount": "0.250000",
                "denom": "LMN",
                "counterparty": OTHER,
                "status": "failed",
            },
        ],
    }


def make_report() -> dict[str, Any]:
    """Heartbeat scan report."""
    return {
        "address": ADDR,
        "status": "ok",
        "forced": False,
        "head": 105,
        "start": 100,
        "end": 105,
        "heights_scanned": 5,
        "heights_failed": [102],
        "strategy_a": 3,
        "strategy_b": 1,
        "found": 2,
        "checkpoint_before": 100,
        "checkpoint_after": 105,
    }


# ── JSON ──────────────────────────────────────────────────────────────────────


def test_format_json_is_valid_json() -> None:
    assert json.loads(format_json(make_history())) == make_history()


def test_format_json_indented() -> None:
    assert "\n  " in format_json(make_report())



# ── JSONL ─────────────────────────────────────────────────────────────────────


def test_format_jsonl_history_one_line_per_tx() -> None:
    lines = format_jsonl(make_history()).splitlines()
    assert len(lines) == 2
    records = [json.loads(line) for line in lines]
    assert all(r["address"] == ADDR for r in records)
    assert [r["height"] for r in records] == ["103", "101"]


def test_format_jsonl_empty_history() -> None:
    data = {**make_history(), "count": 0, "transactions": []}
    assert format_jsonl(data) == ""


def test_format_jsonl_report_single_line() -> None:
    lines = format_jsonl(make_report()).splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["found"] == 2


def test_format_jsonl_list_input() -> None:
    lines = format_jsonl([{"a": 1}, {"b": 2}]).splitlines()
    assert [json.loads(line) for line in lines] == [{"a": 1}, {"b": 2}]


# ── Table ─────────────────────────────────────────────────────────────────────


def test_format_table_history() -> None:
    out = format_table(make_history())
    assert "103" in out
    assert "1.500000 LMN" in out
    assert "receive" in out
    assert "Total" in out


def test_format_table_report_lists_fields() -> None:
    out = format_table(make_report())
    assert "heights_scanned" in out
    assert "checkpoint_after" in out
    assert "102" in out


def test_format_table_nested_falls_back_to_json() -> None:
    out = format_table({"chain": {"rpc_url": "https://rpc.test"}})
    assert "rpc_url" in out


def test_format_table_plain_by_default() -> None:
    assert "\x1b[" not in format_table(make_history())


def test_format_table_color() -> None:
    out = format_table(make_history(), color=True)
    assert "\x1b[" in out
    assert "receive" in out


def test_format_output_passes_color_to_table() -> None:
    assert "\x1b[" in format_output(make_history(), "table", color=True)
    assert "\x1b[" not in format_output(make_history(), "json", color=True)


# ── CSV ───────────────────────────────────────────────────────────────────────


def test_format_csv_history_columns() -> None:
    rows = list(csv.reader(io.StringIO(format_csv(make_history()))))
    assert rows[0] == TX_COLUMNS
    assert len(rows) == 3
    assert rows[1][TX_COLUMNS.index("amount")] == "1.500000"
    assert rows[2][TX_COLUMNS.index("status")] == "failed"


def test_format_csv_empty_history_keeps_header() -> None:
    data = {**make_history(), "count": 0, "transactions": []}
    rows = list(csv.reader(io.StringIO(format_csv(data))))
    assert rows == [TX_COLUMNS]


def test_format_csv_report_flattens() -> None:
    rows = list(csv.DictReader(io.StringIO(format_csv(make_report()))))
    assert len(rows) == 1
    assert rows[0]["found"] == "2"
    assert json.loads(rows[0]["heights_failed"]) == [102]


def test_format_csv_nested_dict() -> None:
    rows = list(csv.DictReader(io.StringIO(format_csv({"chain": {"rpc_url": "x"}}))))
    assert rows[0]["chain.rpc_url"] == "x"


def test_format_csv_scalar() -> None:
    rows = list(csv.reader(io.StringIO(format_csv(42))))
    assert rows == [["value"], ["42"]]


# ── format_output routing ─────────────────────────────────────────────────────


@pytest.mark.parametrize("fmt", ["json", "jsonl", "table", "csv"])
def test_format_output_all_formats(fmt: str) -> None:
    out = format_output(make_history(), fmt)
    assert isinstance(out, str)
    assert out


def test_format_output_case_insensitive() -> None:
    assert format_output(make_report(), "JSON") == format_json(make_report())


def test_format_output_unknown_format() -> None:
    with pytest.raises(ValueError):
        format_output(make_report(), "xml")
