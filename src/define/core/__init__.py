"""Core models, collaborator interfaces and configuration.

This package provides:
- Domain models (RawPositionEvent, LedgerEvent, PositionRecord, AprPeriod, ...)
- Collaborator protocols (`define.core.interfaces`)
- `SyncConfig`
"""

from define.core.config import SyncConfig
from define.core.models import (
    AprPeriod,
    BlockCoordinate,
    EventLog,
    LedgerEvent,
    LedgerEventType,
    PositionRecord,
    ProcessedEvent,
    RawEventType,
    RawPositionEvent,
    SyncResult,
    SyncState,
)

__all__ = [
    "SyncConfig",
    "AprPeriod",
    "BlockCoordinate",
    "EventLog",
    "LedgerEvent",
    "LedgerEventType",
    "PositionRecord",
    "ProcessedEvent",
    "RawEventType",
    "RawPositionEvent",
    "SyncResult",
    "SyncState",
]
