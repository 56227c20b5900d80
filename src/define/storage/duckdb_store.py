"""
duckdb_store.py
---------------

DuckDB-backed ledger and APR period repositories.

- One DuckDB database (file or `:memory:`) holds both tables.
- Every integer that may exceed 64 bits is stored as VARCHAR (see `codec`).
- Blocking DuckDB calls run in worker threads via `asyncio.to_thread`.
- Write transactions are serialized through a single asyncio lock; each one
  runs on its own cursor between BEGIN and COMMIT/ROLLBACK.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

import duckdb

from define.core.interfaces import IAprPeriodRepository
from define.core.models import AprPeriod, BlockCoordinate, LedgerEvent
from define.storage.base import LedgerRepositoryBase, LedgerWriterBase
from define.storage.codec import (
    APR_COLUMNS,
    LEDGER_COLUMNS,
    apr_period_to_row,
    event_to_row,
    row_to_apr_period,
    row_to_event,
)

T = TypeVar("T")


# =====================================================================
# Connection & schema
# =====================================================================

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS ledger_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS ledger_events (
        seq               BIGINT NOT NULL,
        id                VARCHAR PRIMARY KEY,
        position_id       VARCHAR NOT NULL,
        previous_id       VARCHAR,
        protocol          VARCHAR NOT NULL,
        input_hash        VARCHAR NOT NULL,
        event_type        VARCHAR NOT NULL,
        timestamp_us      BIGINT NOT NULL,
        block_number      BIGINT NOT NULL,
        transaction_index INTEGER NOT NULL,
        log_index         INTEGER NOT NULL,
        transaction_hash  VARCHAR NOT NULL,
        pool_price        VARCHAR NOT NULL,
        token0_amount     VARCHAR NOT NULL,
        token1_amount     VARCHAR NOT NULL,
        token_value       VARCHAR NOT NULL,
        rewards           VARCHAR NOT NULL,
        delta_cost_basis  VARCHAR NOT NULL,
        cost_basis_after  VARCHAR NOT NULL,
        delta_pnl         VARCHAR NOT NULL,
        pnl_after         VARCHAR NOT NULL,
        config            VARCHAR NOT NULL,
        state             VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS apr_periods (
        position_id         VARCHAR NOT NULL,
        start_event_id      VARCHAR NOT NULL,
        end_event_id        VARCHAR NOT NULL,
        start_us            BIGINT NOT NULL,
        end_us              BIGINT NOT NULL,
        duration_seconds    BIGINT NOT NULL,
        cost_basis          VARCHAR NOT NULL,
        collected_fee_value VARCHAR NOT NULL,
        apr_bps             BIGINT NOT NULL,
        event_count         INTEGER NOT NULL
    )
    """,
]


def connect(path: str | Path = ":memory:", *, threads: int = 4, memory_limit: str = "1GB") -> duckdb.DuckDBPyConnection:
    """Open a DuckDB database, apply PRAGMAs and make sure the schema exists."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    con = duckdb.connect(str(path))
    con.execute(f"PRAGMA threads={threads}")
    con.execute(f"PRAGMA memory_limit='{memory_limit}'")
    for statement in _SCHEMA:
        con.execute(statement)
    return con


def _fetch_dicts(cur: duckdb.DuckDBPyConnection, sql: str, params: list[Any]) -> list[dict[str, Any]]:
    cur.execute(sql, params)
    names = [d[0] for d in cur.description]
    return [dict(zip(names, row)) for row in cur.fetchall()]


_SELECT_EVENTS = f"SELECT {', '.join(LEDGER_COLUMNS)} FROM ledger_events"

_TAIL_PREDICATE = """
    position_id = ? AND (
        block_number > ?
        OR (block_number = ? AND transaction_index > ?)
        OR (block_number = ? AND transaction_index = ? AND log_index >= ?)
    )
"""


# =====================================================================
# Ledger
# =====================================================================


class _DuckDBLedgerWriter(LedgerWriterBase):
    def __init__(self, cur: duckdb.DuckDBPyConnection, position_id: str) -> None:
        super().__init__(position_id)
        self._cur = cur

    async def _run(self, fn: Callable[[], T]) -> T:
        return await asyncio.to_thread(fn)

    async def _get(self, event_id: str) -> LedgerEvent | None:
        rows = await self._run(lambda: _fetch_dicts(self._cur, f"{_SELECT_EVENTS} WHERE id = ?", [event_id]))
        return row_to_event(rows[0]) if rows else None

    async def _hash_exists(self, input_hash: str) -> bool:
        def _q() -> bool:
            self._cur.execute(
                "SELECT 1 FROM ledger_events WHERE position_id = ? AND input_hash = ? LIMIT 1",
                [self.position_id, input_hash],
            )
            return self._cur.fetchone() is not None

        return await self._run(_q)

    async def _insert(self, event: LedgerEvent) -> None:
        row = event_to_row(event)
        placeholders = ", ".join("?" for _ in LEDGER_COLUMNS)
        sql = (
            f"INSERT INTO ledger_events (seq, {', '.join(LEDGER_COLUMNS)}) "
            f"VALUES (nextval('ledger_seq'), {placeholders})"
        )
        await self._run(lambda: self._cur.execute(sql, [row[c] for c in LEDGER_COLUMNS]))

    async def latest(self) -> LedgerEvent | None:
        rows = await self._run(
            lambda: _fetch_dicts(
                self._cur,
                f"{_SELECT_EVENTS} WHERE position_id = ? ORDER BY seq DESC LIMIT 1",
                [self.position_id],
            )
        )
        return row_to_event(rows[0]) if rows else None

    async def delete_tail(self, from_coordinate: BlockCoordinate) -> int:
        b, t, log = from_coordinate.block_number, from_coordinate.transaction_index, from_coordinate.log_index
        params = [self.position_id, b, b, t, b, t, log]

        def _q() -> int:
            self._cur.execute(f"SELECT COUNT(*) FROM ledger_events WHERE {_TAIL_PREDICATE}", params)
            (count,) = self._cur.fetchone()
            if count:
                self._cur.execute(f"DELETE FROM ledger_events WHERE {_TAIL_PREDICATE}", params)
            return int(count)

        return await self._run(_q)

    async def delete_all(self) -> int:
        def _q() -> int:
            self._cur.execute("SELECT COUNT(*) FROM ledger_events WHERE position_id = ?", [self.position_id])
            (count,) = self._cur.fetchone()
            if count:
                self._cur.execute("DELETE FROM ledger_events WHERE position_id = ?", [self.position_id])
            return int(count)

        return await self._run(_q)


class DuckDBLedgerRepository(LedgerRepositoryBase):
    """Ledger chain persisted in the `ledger_events` table."""

    def __init__(self, con: duckdb.DuckDBPyConnection) -> None:
        self._con = con
        self._write_lock = asyncio.Lock()

    @classmethod
    def open(cls, path: str | Path = ":memory:") -> DuckDBLedgerRepository:
        return cls(connect(path))

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        return self._con

    @asynccontextmanager
    async def transaction(self, position_id: str) -> AsyncIterator[_DuckDBLedgerWriter]:
        async with self._write_lock:
            cur = self._con.cursor()
            try:
                await asyncio.to_thread(cur.execute, "BEGIN TRANSACTION")
                try:
                    yield _DuckDBLedgerWriter(cur, position_id)
                except BaseException:
                    await asyncio.to_thread(cur.execute, "ROLLBACK")
                    raise
                await asyncio.to_thread(cur.execute, "COMMIT")
            finally:
                cur.close()

    async def list_descending(self, position_id: str) -> list[LedgerEvent]:
        def _q() -> list[dict[str, Any]]:
            cur = self._con.cursor()
            try:
                return _fetch_dicts(
                    cur,
                    f"{_SELECT_EVENTS} WHERE position_id = ? ORDER BY timestamp_us DESC, seq DESC",
                    [position_id],
                )
            finally:
                cur.close()

        rows = await asyncio.to_thread(_q)
        return [row_to_event(r) for r in rows]

    def close(self) -> None:
        self._con.close()


# =====================================================================
# APR periods
# =====================================================================


class DuckDBAprPeriodRepository(IAprPeriodRepository):
    """APR periods in the `apr_periods` table; replaced wholesale per position."""

    def __init__(self, con: duckdb.DuckDBPyConnection) -> None:
        self._con = con
        self._lock = asyncio.Lock()

    async def replace(self, position_id: str, periods: list[AprPeriod]) -> None:
        rows = [apr_period_to_row(p) for p in periods]
        placeholders = ", ".join("?" for _ in APR_COLUMNS)
        insert_sql = f"INSERT INTO apr_periods ({', '.join(APR_COLUMNS)}) VALUES ({placeholders})"

        def _q() -> None:
            cur = self._con.cursor()
            try:
                cur.execute("BEGIN TRANSACTION")
                try:
                    cur.execute("DELETE FROM apr_periods WHERE position_id = ?", [position_id])
                    for row in rows:
                        cur.execute(insert_sql, [row[c] for c in APR_COLUMNS])
                except Exception:
                    cur.execute("ROLLBACK")
                    raise
                cur.execute("COMMIT")
            finally:
                cur.close()

        async with self._lock:
            await asyncio.to_thread(_q)

    async def list_descending(self, position_id: str) -> list[AprPeriod]:
        def _q() -> list[dict[str, Any]]:
            cur = self._con.cursor()
            try:
                return _fetch_dicts(
                    cur,
                    f"SELECT {', '.join(APR_COLUMNS)} FROM apr_periods WHERE position_id = ? ORDER BY start_us DESC",
                    [position_id],
                )
            finally:
                cur.close()

        return [row_to_apr_period(r) for r in await asyncio.to_thread(_q)]

    async def delete_all(self, position_id: str) -> int:
        def _q() -> int:
            cur = self._con.cursor()
            try:
                cur.execute("SELECT COUNT(*) FROM apr_periods WHERE position_id = ?", [position_id])
                (count,) = cur.fetchone()
                cur.execute("DELETE FROM apr_periods WHERE position_id = ?", [position_id])
                return int(count)
            finally:
                cur.close()

        async with self._lock:
            return await asyncio.to_thread(_q)
