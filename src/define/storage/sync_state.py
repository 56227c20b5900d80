from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from define.core.interfaces import ISyncStateStore
from define.core.models import RawEventType, RawPositionEvent, SyncState
from define.storage.files import atomic_write_text, read_text_or_none


class MissingEventModel(BaseModel):
    """On-disk form of a buffered secondary-source event (big ints as strings)."""

    event_type: RawEventType
    chain_id: int
    token_id: str
    block_number: int
    transaction_index: int
    log_index: int
    transaction_hash: str
    timestamp: datetime
    amount0: str
    amount1: str
    liquidity: str | None = None
    recipient: str | None = None

    @classmethod
    def from_event(cls, e: RawPositionEvent) -> MissingEventModel:
        return cls(
            event_type=e.event_type,
            chain_id=e.chain_id,
            token_id=str(e.token_id),
            block_number=e.block_number,
            transaction_index=e.transaction_index,
            log_index=e.log_index,
            transaction_hash=e.transaction_hash,
            timestamp=e.timestamp,
            amount0=str(e.amount0),
            amount1=str(e.amount1),
            liquidity=None if e.liquidity is None else str(e.liquidity),
            recipient=e.recipient,
        )

    def to_event(self) -> RawPositionEvent:
        return RawPositionEvent(
            event_type=self.event_type,
            chain_id=self.chain_id,
            token_id=int(self.token_id),
            block_number=self.block_number,
            transaction_index=self.transaction_index,
            log_index=self.log_index,
            transaction_hash=self.transaction_hash,
            timestamp=self.timestamp,
            amount0=int(self.amount0),
            amount1=int(self.amount1),
            liquidity=None if self.liquidity is None else int(self.liquidity),
            recipient=self.recipient,
        )


class SyncStateModel(BaseModel):
    last_sync_at: datetime | None = None
    last_sync_by: str | None = None
    missing_events: list[MissingEventModel] = []

    @classmethod
    def from_state(cls, state: SyncState) -> SyncStateModel:
        return cls(
            last_sync_at=state.last_sync_at,
            last_sync_by=state.last_sync_by,
            missing_events=[MissingEventModel.from_event(e) for e in state.missing_events],
        )

    def to_state(self) -> SyncState:
        return SyncState(
            last_sync_at=self.last_sync_at,
            last_sync_by=self.last_sync_by,
            missing_events=tuple(m.to_event() for m in self.missing_events),
        )


class JsonSyncStateStore(ISyncStateStore):
    """One JSON document per position under `directory`.

    Writes go to a temporary file which is fsynced and renamed over the
    target, so readers never observe a half-written document.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, position_id: str) -> Path:
        return self.directory / f"{position_id}.json"

    async def get(self, position_id: str) -> SyncState:
        path = self._path(position_id)
        text = await asyncio.to_thread(read_text_or_none, path)
        if text is None:
            return SyncState()
        return SyncStateModel.model_validate_json(text).to_state()

    async def save(self, position_id: str, state: SyncState) -> None:
        payload = SyncStateModel.from_state(state).model_dump_json(indent=2)
        async with self._lock:
            await asyncio.to_thread(atomic_write_text, self._path(position_id), payload)

