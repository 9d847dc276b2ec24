"""SQLite state management for lumensync.

Holds the two pieces of per-address state the sync engine owns:

  - transactions: capped, deduplicated history list per address
  - checkpoints:  last fully scanned block height per address

All database operations are async (aiosqlite). `Database` owns the
connection; the sync components never touch it directly and instead receive
the `TransactionStore` and `CheckpointTracker` handles it hands out.
Every write is committed before the call returns, so a read in the same
process always sees the previous write.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

from lumensync.exceptions import DatabaseError
from lumensync.models import Transaction

DEFAULT_DB_PATH = Path.home() / ".lumensync" / "history.db"

# Matches the original wallet's retained history length.
DEFAULT_HISTORY_LIMIT = 100

# SQL schema, applied on connect if tables don't exist
_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS transactions (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    address      TEXT NOT NULL,
    hash         TEXT NOT NULL,
    height       TEXT NOT NULL,
    timestamp    TEXT NOT NULL,
    ts_epoch     REAL NOT NULL,
    type         TEXT NOT NULL CHECK (type IN ('send', 'receive', 'stake', 'unstake', 'claim')),
    amount       TEXT NOT NULL,
    denom        TEXT NOT NULL,
    counterparty TEXT NOT NULL,
    status       TEXT NOT NULL CHECK (status IN ('success', 'failed')),
    UNIQUE(address, hash)
);

CREATE TABLE IF NOT EXISTS checkpoints (
    address      TEXT PRIMARY KEY,
    height       INTEGER NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_addr_ts ON transactions(address, ts_epoch);
"""

SCHEMA_VERSION = 1

_ORDER = "ORDER BY ts_epoch DESC, CAST(height AS INTEGER) DESC, id DESC"


class Database:
    """
    Async SQLite database manager for lumensync.

    Usage:
        db = Database(":memory:")
        await db.connect()
        history = await db.history.get(address)
        await db.close()

    Or as async context manager:
        async with Database(path) as db:
            ...
    """

    def __init__(
        self,
        db_path: str = str(DEFAULT_DB_PATH),
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.db_path = db_path
        self.history_limit = history_limit
        self._conn: aiosqlite.Connection | None = None
        self._history: TransactionStore | None = None
        self._checkpoints: CheckpointTracker | None = None

    async def connect(self) -> None:
        """Open DB connection and run schema migrations."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._apply_schema()
        except Exception as e:
            raise DatabaseError(f"Failed to connect to database: {e}") from e

        self._history = TransactionStore(self._conn, self.history_limit)
        self._checkpoints = CheckpointTracker(self._conn)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            self._history = None
            self._checkpoints = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def history(self) -> TransactionStore:
        if self._history is None:
            raise DatabaseError("Database is not connected")
        return self._history

    @property
    def checkpoints(self) -> CheckpointTracker:
        if self._checkpoints is None:
            raise DatabaseError("Database is not connected")
        return self._checkpoints

    async def forget_address(self, address: str) -> dict[str, Any]:
        """Drop all history and the checkpoint for an address (full wallet removal)."""
        deleted = await self.history.clear(address)
        had_checkpoint = await self.checkpoints.clear(address)
        return {
            "status": "removed",
            "address": address,
            "transactions_deleted": deleted,
            "checkpoint_deleted": had_checkpoint,
        }

    # ──────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────

    async def _apply_schema(self) -> None:
        """Apply schema migrations idempotently."""
        assert self._conn is not None
        await self._conn.executescript(_SCHEMA)
        await self._conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await self._conn.commit()


class TransactionStore:
    """
    Per-address, size-bounded, hash-deduplicated transaction history.

    Records are returned newest first. Inserting a hash that already exists
    for the address is a silent no-op. After each insert the list is
    re-ordered by timestamp and trimmed to `limit`, evicting the oldest.
    """

    def __init__(self, conn: aiosqlite.Connection, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._conn = conn
        self.limit = limit

    async def get(self, address: str, limit: int | None = None) -> list[Transaction]:
        """Return the address's records, descending by timestamp. Empty for unknown addresses."""
        query = f"SELECT * FROM transactions WHERE address = ? {_ORDER}"
        params: list[Any] = [address]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows: list[Transaction] = []
        try:
            async with self._conn.execute(query, params) as cursor:
                async for row in cursor:
                    rows.append(_row_to_tx(row))
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to read history: {e}") from e
        return rows

    async def put(self, address: str, tx: Transaction) -> bool:
        """
        Insert one record.

        Returns True if the record was new, False if its hash was already present.
        """
        return await self.put_many(address, [tx]) == 1

    async def put_many(self, address: str, txs: Iterable[Transaction]) -> int:
        """Insert a batch. Returns the number of records actually inserted."""
        return len(await self.insert_many(address, txs))

    async def insert_many(self, address: str, txs: Iterable[Transaction]) -> list[Transaction]:
        """
        Insert a batch with one dedup pass and a single trim.

        Duplicate hashes within the batch collapse to the first occurrence.
        Returns the records that were new, in batch order. A failed batch is
        rolled back as a whole.
        """
        seen: set[str] = set()
        batch: list[Transaction] = []
        for tx in txs:
            if tx.hash in seen:
                continue
            seen.add(tx.hash)
            batch.append(tx)
        if not batch:
            return []

        inserted: list[Transaction] = []
        try:
            for tx in batch:
                async with self._conn.execute(
                    """
                    INSERT OR IGNORE INTO transactions
                    (address, hash, height, timestamp, ts_epoch, type,
                     amount, denom, counterparty, status)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        address,
                        tx.hash,
                        str(tx.height),
                        tx.timestamp,
                        tx.epoch(),
                        tx.type,
                        tx.amount,
                        tx.denom,
                        tx.counterparty,
                        tx.status,
                    ),
                ) as cursor:
                    if cursor.rowcount:
                        inserted.append(tx)
            if inserted:
                await self._trim(address)
            await self._conn.commit()
        except aiosqlite.Error as e:
            await self._conn.rollback()
            raise DatabaseError(f"Failed to save transactions: {e}") from e

        return inserted

    async def count(self, address: str) -> int:
        async with self._conn.execute(
            "SELECT COUNT(*) AS cnt FROM transactions WHERE address = ?", (address,)
        ) as cursor:
            row = await cursor.fetchone()
        return int(row["cnt"]) if row else 0

    async def has(self, address: str, tx_hash: str) -> bool:
        async with self._conn.execute(
            "SELECT 1 FROM transactions WHERE address = ? AND hash = ?",
            (address, tx_hash),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def clear(self, address: str) -> int:
        """Delete all records for an address. Returns number deleted."""
        try:
            async with self._conn.execute(
                "DELETE FROM transactions WHERE address = ?", (address,)
            ) as cursor:
                deleted = cursor.rowcount
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to clear history: {e}") from e
        return deleted

    async def _trim(self, address: str) -> None:
        await self._conn.execute(
            f"""
            DELETE FROM transactions
            WHERE address = ?
            AND id NOT IN (
                SELECT id FROM transactions WHERE address = ? {_ORDER} LIMIT ?
            )
            """,
            (address, address, self.limit),
        )


class CheckpointTracker:
    """
    Per-address scan watermark.

    `set` is an unconditional overwrite; monotonicity is the caller's job.
    `advance` is the forward-only form used by the sync paths.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get(self, address: str) -> int:
        """Last scanned height, 0 if never scanned."""
        try:
            async with self._conn.execute(
                "SELECT height FROM checkpoints WHERE address = ?", (address,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to read checkpoint: {e}") from e
        return int(row["height"]) if row else 0

    async def set(self, address: str, height: int) -> None:
        try:
            await self._conn.execute(
                """
                INSERT INTO checkpoints (address, height, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                    height = excluded.height,
                    updated_at = excluded.updated_at
                """,
                (address, int(height), datetime.now(tz=UTC).isoformat()),
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to save checkpoint: {e}") from e

    async def advance(self, address: str, height: int) -> int:
        """Move the checkpoint to `height` only if that is forward. Returns the stored value."""
        try:
            # single statement so interleaved cycles cannot regress the value
            await self._conn.execute(
                """
                INSERT INTO checkpoints (address, height, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                    height = MAX(checkpoints.height, excluded.height),
                    updated_at = excluded.updated_at
                """,
                (address, int(height), datetime.now(tz=UTC).isoformat()),
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to advance checkpoint: {e}") from e
        return await self.get(address)

    async def clear(self, address: str) -> bool:
        try:
            async with self._conn.execute(
                "DELETE FROM checkpoints WHERE address = ?", (address,)
            ) as cursor:
                deleted = cursor.rowcount
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to clear checkpoint: {e}") from e
        return deleted > 0


def _row_to_tx(row: aiosqlite.Row) -> Transaction:
    return Transaction(
        hash=row["hash"],
        height=row["height"],
        timestamp=row["timestamp"],
        type=row["type"],
        amount=row["amount"],
        denom=row["denom"],
        counterparty=row["counterparty"],
        status=row["status"],
    )
