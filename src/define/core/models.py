"""Core domain models for the position ledger.

This module defines:
- `BlockCoordinate`: total order of on-chain events (block, tx index, log index).
- `RawPositionEvent`: one validated NFPM event as supplied by an event source.
- `ProcessedEvent` / `LedgerEvent`: processor output and its persisted form.
- `RunningState`: cumulative figures carried from one ledger event to the next.
- Position, sync-state and APR records exchanged with collaborators.

Design notes
------------
- Every monetary or liquidity figure is a Python `int` in the smallest unit of
  its token. Floats never appear in stored fields.
- Timestamps are timezone-aware UTC `datetime` objects.
- Protocol payloads (`config` / `state`) are typed per protocol and treated as
  opaque by the generic ledger engine.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any


# === Event classification ===


class LedgerEventType(str, Enum):
    INCREASE_POSITION = "INCREASE_POSITION"
    DECREASE_POSITION = "DECREASE_POSITION"
    COLLECT = "COLLECT"


class RawEventType(str, Enum):
    INCREASE_LIQUIDITY = "INCREASE_LIQUIDITY"
    DECREASE_LIQUIDITY = "DECREASE_LIQUIDITY"
    COLLECT = "COLLECT"

    @property
    def ledger_type(self) -> LedgerEventType:
        return _RAW_TO_LEDGER[self]


_RAW_TO_LEDGER = {
    RawEventType.INCREASE_LIQUIDITY: LedgerEventType.INCREASE_POSITION,
    RawEventType.DECREASE_LIQUIDITY: LedgerEventType.DECREASE_POSITION,
    RawEventType.COLLECT: LedgerEventType.COLLECT,
}


# === Ordering ===


@dataclass(frozen=True, order=True, slots=True)
class BlockCoordinate:
    """Canonical position of a log on chain; compares lexicographically."""

    block_number: int
    transaction_index: int
    log_index: int

    @classmethod
    def at_block(cls, block_number: int) -> BlockCoordinate:
        """Return the first coordinate inside `block_number`."""
        return cls(block_number, 0, 0)

    def __str__(self) -> str:
        return f"block={self.block_number} tx={self.transaction_index} log={self.log_index}"


# === Raw chain input ===


@dataclass(frozen=True, slots=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True, kw_only=True)
class RawPositionEvent:
    """A liquidity/collect event for one NFT position, as fetched from chain.

    `liquidity` is None for COLLECT events; `recipient` is set only for COLLECT.
    """

    event_type: RawEventType
    chain_id: int
    token_id: int
    block_number: int
    transaction_index: int
    log_index: int
    transaction_hash: str
    timestamp: datetime
    amount0: int
    amount1: int
    liquidity: int | None = None
    recipient: str | None = None

    @property
    def coordinate(self) -> BlockCoordinate:
        return BlockCoordinate(self.block_number, self.transaction_index, self.log_index)


@dataclass(frozen=True, slots=True)
class HistoricPrice:
    """Pool square-root price observed at a given block."""

    sqrt_price_x96: int
    timestamp: datetime
    block_number: int


@dataclass(frozen=True, slots=True)
class PoolMetadata:
    """What processors need to know about the pool to value token amounts."""

    pool_address: str
    token0: TokenInfo
    token1: TokenInfo
    is_token0_quote: bool

    @property
    def quote_token(self) -> TokenInfo:
        return self.token0 if self.is_token0_quote else self.token1

    @property
    def base_token(self) -> TokenInfo:
        return self.token1 if self.is_token0_quote else self.token0


# === Ledger records ===


@dataclass(frozen=True, slots=True)
class Reward:
    """Fee income of one token collected by a COLLECT event, valued in quote units."""

    token_id: str
    token_amount: int
    token_value: int


@dataclass(frozen=True, kw_only=True)
class RunningState:
    """Cumulative position figures after the latest processed event."""

    liquidity: int = 0
    cost_basis: int = 0
    pnl: int = 0
    uncollected_principal0: int = 0
    uncollected_principal1: int = 0


ZERO_STATE = RunningState()


@dataclass(frozen=True, kw_only=True)
class ProcessedEvent:
    """Output of an event processor: one ledger entry minus its chain identity."""

    event_type: LedgerEventType
    timestamp: datetime
    block_number: int
    transaction_index: int
    log_index: int
    transaction_hash: str
    pool_price: int
    token0_amount: int
    token1_amount: int
    token_value: int
    delta_cost_basis: int
    cost_basis_after: int
    delta_pnl: int
    pnl_after: int
    config: Any
    state: Any
    rewards: tuple[Reward, ...] = ()

    @property
    def coordinate(self) -> BlockCoordinate:
        return BlockCoordinate(self.block_number, self.transaction_index, self.log_index)


@dataclass(frozen=True, kw_only=True)
class LedgerEvent(ProcessedEvent):
    """Persisted, immutable ledger entry linked to its predecessor by `previous_id`."""

    id: str
    position_id: str
    previous_id: str | None
    protocol: str
    input_hash: str

    @classmethod
    def from_processed(
        cls,
        processed: ProcessedEvent,
        *,
        id: str,
        position_id: str,
        previous_id: str | None,
        protocol: str,
        input_hash: str,
    ) -> LedgerEvent:
        values = {f.name: getattr(processed, f.name) for f in fields(ProcessedEvent)}
        return cls(
            id=id,
            position_id=position_id,
            previous_id=previous_id,
            protocol=protocol,
            input_hash=input_hash,
            **values,
        )

    @property
    def rewards_value(self) -> int:
        return sum(r.token_value for r in self.rewards)


# === Orchestration results ===


@dataclass(frozen=True, kw_only=True)
class SyncResult:
    events_added: int
    from_block: int
    finalized_block: int


@dataclass(frozen=True, kw_only=True)
class SyncRequest:
    position_id: str
    chain_id: int
    protocol_position_id: int
    force_full_resync: bool = False


@dataclass(frozen=True, kw_only=True)
class SyncState:
    """Per-position sync bookkeeping plus the buffer of secondary-source events."""

    last_sync_at: datetime | None = None
    last_sync_by: str | None = None
    missing_events: tuple[RawPositionEvent, ...] = ()


# === APR ===


@dataclass(frozen=True, kw_only=True)
class AprPeriod:
    """APR over a window of ledger events, usually delimited by COLLECT events."""

    position_id: str
    start_event_id: str
    end_event_id: str
    start_timestamp: datetime
    end_timestamp: datetime
    duration_seconds: int
    cost_basis: int
    collected_fee_value: int
    apr_bps: int
    event_count: int


@dataclass(frozen=True, kw_only=True)
class AprSummary:
    current_apr_bps: int
    average_apr_bps: int
    period_count: int


# === Positions ===


@dataclass(frozen=True, kw_only=True)
class PositionSnapshot:
    """Denormalized current view of a position, recomputed after each sync."""

    current_value: int
    current_cost_basis: int
    realized_pnl: int
    unrealized_pnl: int
    collected_fees: int
    unclaimed_fees: int
    price_range_lower: int
    price_range_upper: int
    is_active: bool
    last_fees_collected_at: datetime | None
    updated_at: datetime


@dataclass(frozen=True, kw_only=True)
class PositionRecord:
    """A tracked NFT position and the pool metadata needed to value it."""

    id: str
    protocol: str
    chain_id: int
    nft_id: int
    pool_address: str
    token0: TokenInfo
    token1: TokenInfo
    is_token0_quote: bool
    tick_lower: int
    tick_upper: int
    snapshot: PositionSnapshot | None = None

    @property
    def pool(self) -> PoolMetadata:
        return PoolMetadata(
            pool_address=self.pool_address,
            token0=self.token0,
            token1=self.token1,
            is_token0_quote=self.is_token0_quote,
        )


@dataclass(frozen=True, kw_only=True)
class PositionChainState:
    """Fresh on-chain reads needed for value and unclaimed-fee computation."""

    liquidity: int
    tokens_owed0: int
    tokens_owed1: int
    fee_growth_inside0_last_x128: int
    fee_growth_inside1_last_x128: int
    sqrt_price_x96: int
    tick: int
    fee_growth_global0_x128: int
    fee_growth_global1_x128: int
    lower_fee_growth_outside0_x128: int
    lower_fee_growth_outside1_x128: int
    upper_fee_growth_outside0_x128: int
    upper_fee_growth_outside1_x128: int


@dataclass(frozen=True, kw_only=True)
class LedgerSummary:
    """Cumulative figures read off a position's ledger."""

    cost_basis: int = 0
    realized_pnl: int = 0
    collected_fees: int = 0
    last_fees_collected_at: datetime | None = None
    uncollected_principal0: int = 0
    uncollected_principal1: int = 0
    event_count: int = 0


# === RPC record ===


@dataclass(slots=True, frozen=True)
class EventLog:
    """Raw log as fetched from RPC, minimally normalized."""

    address: str  # lowercased 0x...
    topics: tuple[str, ...]  # lowercased 0x...
    data_hex: str  # "0x..."
    block_number: int
    transaction_index: int
    tx_hash: str  # lowercased 0x...
    log_index: int
    block_timestamp: int | None = None
