from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from define.constants import UNISWAPV3_PROTOCOL
from define.core.interfaces import IPositionStore
from define.core.models import PositionRecord, PositionSnapshot, TokenInfo
from define.storage.files import atomic_write_text, read_text_or_none


class TokenModel(BaseModel):
    address: str
    symbol: str
    decimals: int


class SnapshotModel(BaseModel):
    current_value: str
    current_cost_basis: str
    realized_pnl: str
    unrealized_pnl: str
    collected_fees: str
    unclaimed_fees: str
    price_range_lower: str
    price_range_upper: str
    is_active: bool
    last_fees_collected_at: datetime | None = None
    updated_at: datetime

    @classmethod
    def from_snapshot(cls, s: PositionSnapshot) -> SnapshotModel:
        return cls(
            current_value=str(s.current_value),
            current_cost_basis=str(s.current_cost_basis),
            realized_pnl=str(s.realized_pnl),
            unrealized_pnl=str(s.unrealized_pnl),
            collected_fees=str(s.collected_fees),
            unclaimed_fees=str(s.unclaimed_fees),
            price_range_lower=str(s.price_range_lower),
            price_range_upper=str(s.price_range_upper),
            is_active=s.is_active,
            last_fees_collected_at=s.last_fees_collected_at,
            updated_at=s.updated_at,
        )

    def to_snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(
            current_value=int(self.current_value),
            current_cost_basis=int(self.current_cost_basis),
            realized_pnl=int(self.realized_pnl),
            unrealized_pnl=int(self.unrealized_pnl),
            collected_fees=int(self.collected_fees),
            unclaimed_fees=int(self.unclaimed_fees),
            price_range_lower=int(self.price_range_lower),
            price_range_upper=int(self.price_range_upper),
            is_active=self.is_active,
            last_fees_collected_at=self.last_fees_collected_at,
            updated_at=self.updated_at,
        )


class PositionModel(BaseModel):
    id: str
    protocol: str = UNISWAPV3_PROTOCOL
    chain_id: int
    nft_id: int
    pool_address: str
    token0: TokenModel
    token1: TokenModel
    is_token0_quote: bool
    tick_lower: int
    tick_upper: int
    snapshot: SnapshotModel | None = None

    def to_record(self) -> PositionRecord:
        return PositionRecord(
            id=self.id,
            protocol=self.protocol,
            chain_id=self.chain_id,
            nft_id=self.nft_id,
            pool_address=self.pool_address,
            token0=TokenInfo(**self.token0.model_dump()),
            token1=TokenInfo(**self.token1.model_dump()),
            is_token0_quote=self.is_token0_quote,
            tick_lower=self.tick_lower,
            tick_upper=self.tick_upper,
            snapshot=self.snapshot.to_snapshot() if self.snapshot else None,
        )


class PositionsFile(BaseModel):
    positions: list[PositionModel] = []


class JsonPositionStore(IPositionStore):
    """Tracked positions kept in a single JSON file.

    Example
    -------
    {"positions": [{"id": "eth-usdc-1", "chain_id": 1, "nft_id": 123,
      "pool_address": "0x...", "token0": {...}, "token1": {...},
      "is_token0_quote": true, "tick_lower": -887220, "tick_upper": 887220}]}
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def _load(self) -> PositionsFile:
        text = await asyncio.to_thread(read_text_or_none, self.path)
        if text is None:
            return PositionsFile()
        return PositionsFile.model_validate_json(text)

    async def list_ids(self) -> list[str]:
        return [p.id for p in (await self._load()).positions]

    async def get(self, position_id: str) -> PositionRecord | None:
        for p in (await self._load()).positions:
            if p.id == position_id:
                return p.to_record()
        return None

    async def save_snapshot(self, position_id: str, snapshot: PositionSnapshot) -> None:
        async with self._lock:
            data = await self._load()
            for p in data.positions:
                if p.id == position_id:
                    p.snapshot = SnapshotModel.from_snapshot(snapshot)
                    break
            else:
                raise KeyError(position_id)
            await asyncio.to_thread(atomic_write_text, self.path, data.model_dump_json(indent=2))
