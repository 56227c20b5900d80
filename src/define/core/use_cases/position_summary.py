"""Position snapshot: ledger totals combined with live on-chain state.

Cumulative figures (cost basis, realized PnL, collected fees) come from the
ledger. Current value, unclaimed fees and unrealized PnL need a fresh read
of the position and its pool.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from define.adapters import get_adapter
from define.core.interfaces import ILedgerRepository, IPositionStateReader, IPositionStore
from define.core.models import (
    LedgerEvent,
    LedgerEventType,
    LedgerSummary,
    PositionChainState,
    PositionRecord,
    PositionSnapshot,
)
from define.domain.math import (
    fee_growth_inside_x128,
    incremental_fees,
    position_value_in_quote,
    tick_to_price,
    token_pair_value_in_quote,
)
from define.errors import SyncError

logger = logging.getLogger(__name__)


def ledger_summary(events_desc: Sequence[LedgerEvent]) -> LedgerSummary:
    """Totals from a ledger listed newest first."""
    if not events_desc:
        return LedgerSummary()

    latest = events_desc[0]
    running = get_adapter(latest.protocol).running_state(latest)
    collected = 0
    last_collected_at: datetime | None = None
    for event in events_desc:
        if event.event_type is LedgerEventType.COLLECT and event.rewards:
            collected += event.rewards_value
            if last_collected_at is None or event.timestamp > last_collected_at:
                last_collected_at = event.timestamp

    return LedgerSummary(
        cost_basis=latest.cost_basis_after,
        realized_pnl=latest.pnl_after,
        collected_fees=collected,
        last_fees_collected_at=last_collected_at,
        uncollected_principal0=running.uncollected_principal0,
        uncollected_principal1=running.uncollected_principal1,
        event_count=len(events_desc),
    )


def unclaimed_fees(
    state: PositionChainState,
    summary: LedgerSummary,
    position: PositionRecord,
) -> tuple[int, int, int]:
    """Claimable fees as (amount0, amount1, value in quote).

    `tokensOwed` also holds principal released by DECREASE but not yet
    collected; that part is not fee income.
    """
    inside0 = fee_growth_inside_x128(
        state.tick,
        state.fee_growth_global0_x128,
        state.lower_fee_growth_outside0_x128,
        state.upper_fee_growth_outside0_x128,
        position.tick_lower,
        position.tick_upper,
    )
    inside1 = fee_growth_inside_x128(
        state.tick,
        state.fee_growth_global1_x128,
        state.lower_fee_growth_outside1_x128,
        state.upper_fee_growth_outside1_x128,
        position.tick_lower,
        position.tick_upper,
    )
    fees0 = max(state.tokens_owed0 - summary.uncollected_principal0, 0) + incremental_fees(
        inside0, state.fee_growth_inside0_last_x128, state.liquidity
    )
    fees1 = max(state.tokens_owed1 - summary.uncollected_principal1, 0) + incremental_fees(
        inside1, state.fee_growth_inside1_last_x128, state.liquidity
    )
    value = token_pair_value_in_quote(
        fees0,
        fees1,
        state.sqrt_price_x96,
        position.is_token0_quote,
        position.token0.decimals,
        position.token1.decimals,
    )
    return fees0, fees1, value


def compute_snapshot(
    position: PositionRecord,
    state: PositionChainState,
    summary: LedgerSummary,
    *,
    now: datetime | None = None,
) -> PositionSnapshot:
    dec0, dec1 = position.token0.decimals, position.token1.decimals
    quote0 = position.is_token0_quote
    current_value = position_value_in_quote(
        state.liquidity, state.sqrt_price_x96, position.tick_lower, position.tick_upper, quote0, dec0, dec1
    )
    _, _, unclaimed = unclaimed_fees(state, summary, position)
    lower = tick_to_price(position.tick_lower, quote0, dec0, dec1)
    upper = tick_to_price(position.tick_upper, quote0, dec0, dec1)

    return PositionSnapshot(
        current_value=current_value,
        current_cost_basis=summary.cost_basis,
        realized_pnl=summary.realized_pnl,
        unrealized_pnl=current_value - summary.cost_basis,
        collected_fees=summary.collected_fees,
        unclaimed_fees=unclaimed,
        # quote=token0 inverts the tick order
        price_range_lower=min(lower, upper),
        price_range_upper=max(lower, upper),
        is_active=state.liquidity > 0,
        last_fees_collected_at=summary.last_fees_collected_at,
        updated_at=now or datetime.now(UTC),
    )


class PositionSnapshotService:
    """Recomputes the stored snapshot of a position after its ledger changed."""

    def __init__(
        self,
        ledger: ILedgerRepository,
        positions: IPositionStore,
        reader: IPositionStateReader,
    ) -> None:
        self._ledger = ledger
        self._positions = positions
        self._reader = reader

    async def refresh(self, position_id: str) -> PositionSnapshot:
        position = await self._positions.get(position_id)
        if position is None:
            raise SyncError(f"Unknown position {position_id}")

        summary = ledger_summary(await self._ledger.list_descending(position_id))
        state = await self._reader.read(position)
        snapshot = compute_snapshot(position, state, summary)
        await self._positions.save_snapshot(position_id, snapshot)
        logger.info(
            "snapshot %s: value=%d cost_basis=%d unclaimed=%d",
            position_id, snapshot.current_value, snapshot.current_cost_basis, snapshot.unclaimed_fees,
        )
        return snapshot
