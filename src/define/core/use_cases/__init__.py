from define.core.use_cases.position_apr import PositionAprService, build_period, split_periods, summarize
from define.core.use_cases.position_summary import (
    PositionSnapshotService,
    compute_snapshot,
    ledger_summary,
    unclaimed_fees,
)
from define.core.use_cases.sync_ledger import LedgerSyncService, plan_from_block

__all__ = [
    "PositionAprService",
    "build_period",
    "split_periods",
    "summarize",
    "PositionSnapshotService",
    "compute_snapshot",
    "ledger_summary",
    "unclaimed_fees",
    "LedgerSyncService",
    "plan_from_block",
]
