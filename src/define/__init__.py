"""
Define - position ledger and PnL/APR engine for concentrated-liquidity positions.

Core modules:
- domain: fixed-point financial primitives and APR calculators
- adapters: protocol-specific event processors (Uniswap V3)
- ledger: chain integrity rules and raw-event reconciliation
- core: models, collaborator interfaces and use cases (sync, APR, snapshot)
- clients / decoding: JSON-RPC access and NFPM log decoding
- storage: in-memory, DuckDB, JSON and parquet persistence
"""

__version__ = "0.2.0"
__author__ = "youssefGha98"

from define.core.use_cases import LedgerSyncService, PositionAprService, PositionSnapshotService
from define.errors import DefineError, InvalidArgument, ProtocolError, SequenceError, SyncError

__all__ = [
    "LedgerSyncService",
    "PositionAprService",
    "PositionSnapshotService",
    "DefineError",
    "InvalidArgument",
    "ProtocolError",
    "SequenceError",
    "SyncError",
]
