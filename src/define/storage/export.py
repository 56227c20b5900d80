"""Parquet export of a position's ledger.

Columns mirror the DuckDB row layout: monetary fields stay decimal strings
so uint256-sized values survive any reader, coordinates are typed integers.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq

from define.core.models import LedgerEvent
from define.storage.codec import LEDGER_COLUMNS, event_to_row, row_to_event

_INT_COLUMNS: dict[str, pa.DataType] = {
    "timestamp_us": pa.int64(),
    "block_number": pa.int64(),
    "transaction_index": pa.int32(),
    "log_index": pa.int32(),
}

LEDGER_SCHEMA = pa.schema([(name, _INT_COLUMNS.get(name, pa.string())) for name in LEDGER_COLUMNS])


def ledger_to_table(events: Sequence[LedgerEvent]) -> pa.Table:
    """Arrow table of `events` in chain (ascending coordinate) order."""
    rows = [event_to_row(e) for e in sorted(events, key=lambda e: e.coordinate)]
    return pa.Table.from_pylist(rows, schema=LEDGER_SCHEMA)


def export_ledger_parquet(events: Sequence[LedgerEvent], out_path: Path, *, codec: str = "zstd") -> Path:
    """Write `events` to `out_path` atomically (tmp + replace)."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = out_path.with_suffix(".tmp")
    pq.write_table(ledger_to_table(events), tmp, compression=codec)
    os.replace(tmp, out_path)
    return out_path


def read_ledger_parquet(path: Path) -> list[LedgerEvent]:
    return [row_to_event(row) for row in pq.read_table(path).to_pylist()]
