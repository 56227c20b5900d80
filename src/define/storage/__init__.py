from define.storage.duckdb_store import DuckDBAprPeriodRepository, DuckDBLedgerRepository, connect
from define.storage.export import export_ledger_parquet, read_ledger_parquet
from define.storage.memory import (
    InMemoryAprPeriodRepository,
    InMemoryLedgerRepository,
    InMemoryPositionStore,
    InMemorySyncStateStore,
)
from define.storage.positions import JsonPositionStore
from define.storage.sync_state import JsonSyncStateStore

__all__ = [
    "DuckDBAprPeriodRepository",
    "DuckDBLedgerRepository",
    "connect",
    "export_ledger_parquet",
    "read_ledger_parquet",
    "InMemoryAprPeriodRepository",
    "InMemoryLedgerRepository",
    "InMemoryPositionStore",
    "InMemorySyncStateStore",
    "JsonPositionStore",
    "JsonSyncStateStore",
]
