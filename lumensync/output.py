"""Output format routing for lumensync.

Converts result dicts to the requested format: json, jsonl, table, csv.

Design rules:
- JSON: 2-space indent, deterministic key order, utf-8
- JSONL: one JSON object per line, one line per transaction for history results
- Table: Rich-formatted, green=receive, red=send, failed rows dimmed; styles only when color is on
- CSV: RFC 4180, header row always present

All functions return strings. The caller writes to stdout.
"""

from __future__ import annotations

import csv
import io
import json
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

VALID_FORMATS = {"json", "jsonl", "table", "csv"}

TX_COLUMNS = ["hash", "height", "timestamp", "type", "amount", "denom", "counterparty", "status"]


def format_output(data: Any, fmt: str, color: bool = False) -> str:
    """
    Format data for stdout output.

    Args:
        data: Result dict, list, or any JSON-serialisable value.
        fmt: "json" | "jsonl" | "table" | "csv"
        color: Emit ANSI styles in table output.

    Returns:
        Formatted string ready to write to stdout.

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")

    if fmt == "jsonl":
        return format_jsonl(data)
    elif fmt == "table":
        return format_table(data, color=color)
    elif fmt == "csv":
        return format_csv(data)
    return format_json(data)


# ── JSON ─────────────────────────────────────────────────────────────────────


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent)."""
    return json.dumps(data, indent=2, ensure_ascii=False)


# ── JSONL ────────────────────────────────────────────────────────────────────


def format_jsonl(data: Any) -> str:
    """
    Format as JSONL (one object per line).

    A history result ({"transactions": [...]}) becomes one line per record,
    each tagged with the address. Lists become one line per item; anything
    else is a single line.
    """
    lines: list[str] = []

    if isinstance(data, dict) and isinstance(data.get("transactions"), list):
        address = data.get("address", "")
        for tx in data["transactions"]:
            lines.append(json.dumps({"address": address, **tx}))
    elif isinstance(data, list):
        for item in data:
            lines.append(json.dumps(item))
    else:
        lines.append(json.dumps(data))

    return "\n".join(lines)


# ── Table ────────────────────────────────────────────────────────────────────


def format_table(data: Any, color: bool = False) -> str:
    """
    Format as a Rich terminal table.

    Handles:
    - History results (dict with 'transactions')
    - Scan / gap sync reports and other flat dicts (key / value table)
    - Anything else: pretty JSON
    """
    buf = io.StringIO()
    console = Console(
        file=buf,
        highlight=False,
        markup=True,
        width=140,
        force_terminal=color,
        no_color=not color,
    )

    if isinstance(data, dict) and isinstance(data.get("transactions"), list):
        _render_history_table(console, data)
    elif isinstance(data, dict) and data and all(not isinstance(v, dict) for v in data.values()):
        _render_kv_table(console, data)
    else:
        console.print_json(json.dumps(data))

    return buf.getvalue()


def _type_color(tx_type: str) -> str:
    if tx_type == "receive":
        return "green"
    elif tx_type == "send":
        return "red"
    elif tx_type == "claim":
        return "cyan"
    return "yellow"


def _short(value: str, head: int = 10, tail: int = 6) -> str:
    return f"{value[:head]}…{value[-tail:]}" if len(value) > head + tail + 2 else value


def _render_history_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(
        title=f"History — {_short(data.get('address', ''), 12, 6)}",
        show_header=True,
        header_style="bold blue",
    )
    table.add_column("Height", justify="right")
    table.add_column("Time")
    table.add_column("Type", justify="center")
    table.add_column("Amount", justify="right")
    table.add_column("Counterparty", style="cyan", no_wrap=True)
    table.add_column("Hash", no_wrap=True)
    table.add_column("Status", justify="center")

    for tx in data["transactions"]:
        failed = tx.get("status") == "failed"
        table.add_row(
            str(tx.get("height", "")),
            str(tx.get("timestamp", ""))[:19],
            Text(tx.get("type", ""), style=_type_color(tx.get("type", ""))),
            f"{tx.get('amount', '')} {tx.get('denom', '')}",
            _short(tx.get("counterparty", "")),
            _short(tx.get("hash", ""), 8, 4),
            Text(tx.get("status", ""), style="bold red" if failed else "dim"),
            style="dim" if failed else None,
        )

    console.print(table)
    console.print(f"Total: [bold]{data.get('count', len(data['transactions']))}[/bold] transactions")


def _render_kv_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value) or "—"
        elif value is None:
            value = "—"
        table.add_row(key, str(value))
    console.print(table)


# ── CSV ──────────────────────────────────────────────────────────────────────


def format_csv(data: Any) -> str:
    """
    Format as CSV with a header row.

    History results use a fixed column order; other dicts become one row.
    """
    buf = io.StringIO()
    writer = csv.writer(buf)

    if isinstance(data, dict) and isinstance(data.get("transactions"), list):
        writer.writerow(TX_COLUMNS)
        for tx in data["transactions"]:
            writer.writerow([tx.get(col, "") for col in TX_COLUMNS])
        return buf.getvalue()

    if isinstance(data, list):
        rows = [_flatten_dict(r) for r in data if isinstance(r, dict)]
    elif isinstance(data, dict):
        rows = [_flatten_dict(data)]
    else:
        rows = []

    if not rows:
        writer.writerow(["value"])
        writer.writerow([json.dumps(data)])
        return buf.getvalue()

    headers = list(rows[0].keys())
    writer.writerow(headers)
    for row in rows:
        writer.writerow([row.get(h, "") for h in headers])
    return buf.getvalue()


def _flatten_dict(d: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten a nested dict for CSV output."""
    result: dict[str, Any] = {}
    for k, v in d.items():
        full_key = f"{prefix}.{k}" if prefix else k
        if isinstance(v, dict):
            result.update(_flatten_dict(v, full_key))
        elif isinstance(v, (list, tuple)):
            result[full_key] = json.dumps(v)
        else:
            result[full_key] = v
    return result
