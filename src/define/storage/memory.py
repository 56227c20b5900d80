"""In-memory implementations of the storage interfaces.

Useful for tests and one-shot scripts. Transactions stage writes on a copy
of the position's chain and swap it in on success.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace

from define.core.interfaces import IAprPeriodRepository, IPositionStore, ISyncStateStore
from define.core.locks import KeyedLocks
from define.core.models import (
    AprPeriod,
    BlockCoordinate,
    LedgerEvent,
    PositionRecord,
    PositionSnapshot,
    SyncState,
)
from define.storage.base import LedgerRepositoryBase, LedgerWriterBase


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class _MemoryLedgerWriter(LedgerWriterBase):
    def __init__(self, repo: InMemoryLedgerRepository, position_id: str, staged: list[LedgerEvent]) -> None:
        super().__init__(position_id)
        self._repo = repo
        self._staged = staged

    async def _get(self, event_id: str) -> LedgerEvent | None:
        for event in self._staged:
            if event.id == event_id:
                return event
        return self._repo._find(event_id, exclude_position=self.position_id)

    async def _hash_exists(self, input_hash: str) -> bool:
        return any(e.input_hash == input_hash for e in self._staged)

    async def _insert(self, event: LedgerEvent) -> None:
        self._staged.append(event)

    async def latest(self) -> LedgerEvent | None:
        return self._staged[-1] if self._staged else None

    async def delete_tail(self, from_coordinate: BlockCoordinate) -> int:
        kept = [e for e in self._staged if e.coordinate < from_coordinate]
        removed = len(self._staged) - len(kept)
        self._staged[:] = kept
        return removed

    async def delete_all(self) -> int:
        removed = len(self._staged)
        self._staged.clear()
        return removed


class InMemoryLedgerRepository(LedgerRepositoryBase):
    """Per-position event lists kept in insertion order."""

    def __init__(self) -> None:
        self._events: dict[str, list[LedgerEvent]] = {}
        self._locks = KeyedLocks()

    def _find(self, event_id: str, *, exclude_position: str | None = None) -> LedgerEvent | None:
        for position_id, events in self._events.items():
            if position_id == exclude_position:
                continue
            for event in events:
                if event.id == event_id:
                    return event
        return None

    @asynccontextmanager
    async def transaction(self, position_id: str) -> AsyncIterator[_MemoryLedgerWriter]:
        async with self._locks.hold(position_id):
            staged = list(self._events.get(position_id, []))
            yield _MemoryLedgerWriter(self, position_id, staged)
            if staged:
                self._events[position_id] = staged
            else:
                self._events.pop(position_id, None)

    async def list_descending(self, position_id: str) -> list[LedgerEvent]:
        indexed = list(enumerate(self._events.get(position_id, [])))
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [event for _, event in indexed]


# ---------------------------------------------------------------------------
# APR periods
# ---------------------------------------------------------------------------


class InMemoryAprPeriodRepository(IAprPeriodRepository):
    def __init__(self) -> None:
        self._periods: dict[str, list[AprPeriod]] = {}

    async def replace(self, position_id: str, periods: list[AprPeriod]) -> None:
        self._periods[position_id] = list(periods)

    async def list_descending(self, position_id: str) -> list[AprPeriod]:
        return sorted(self._periods.get(position_id, []), key=lambda p: p.start_timestamp, reverse=True)

    async def delete_all(self, position_id: str) -> int:
        return len(self._periods.pop(position_id, []))


# ---------------------------------------------------------------------------
# Sync state & positions
# ---------------------------------------------------------------------------


class InMemorySyncStateStore(ISyncStateStore):
    def __init__(self) -> None:
        self._states: dict[str, SyncState] = {}

    async def get(self, position_id: str) -> SyncState:
        return self._states.get(position_id, SyncState())

    async def save(self, position_id: str, state: SyncState) -> None:
        self._states[position_id] = state


class InMemoryPositionStore(IPositionStore):
    def __init__(self, positions: list[PositionRecord] | None = None) -> None:
        self._positions = {p.id: p for p in positions or []}

    async def get(self, position_id: str) -> PositionRecord | None:
        return self._positions.get(position_id)

    async def save_snapshot(self, position_id: str, snapshot: PositionSnapshot) -> None:
        self._positions[position_id] = replace(self._positions[position_id], snapshot=snapshot)
