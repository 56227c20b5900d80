"""Event processors for Uniswap V3 NFT positions.

Each processor is a pure function of
`(previous RunningState, raw event, historic price, pool metadata)` and
returns one `ProcessedEvent`. Replaying the same inputs in the same order
always yields the same ledger.

- INCREASE: capital enters; cost basis grows by the deposited value.
- DECREASE: capital exits; the proportional cost basis is released and the
  difference to the withdrawn value is realized as PnL. Withdrawn tokens sit
  in the NFPM as uncollected principal until collected.
- COLLECT: tokens leave the NFPM; principal is paid out first, the remainder
  is fee income recorded as rewards. Cost basis and PnL are unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass

from define.adapters.uniswapv3.models import UniswapV3LedgerConfig, UniswapV3LedgerState
from define.core.models import (
    HistoricPrice,
    LedgerEventType,
    PoolMetadata,
    ProcessedEvent,
    RawEventType,
    RawPositionEvent,
    Reward,
    RunningState,
)
from define.domain.math import (
    pool_price_in_quote,
    proportional_cost_basis,
    separate_fees_from_principal,
    token_pair_value_in_quote,
    update_uncollected_principal,
)
from define.errors import InvalidArgument


@dataclass(frozen=True, slots=True)
class _Valuation:
    """Price context shared by every processor."""

    pool: PoolMetadata
    sqrt_price_x96: int

    @property
    def pool_price(self) -> int:
        return pool_price_in_quote(
            self.sqrt_price_x96,
            self.pool.is_token0_quote,
            self.pool.token0.decimals,
            self.pool.token1.decimals,
        )

    def value(self, amount0: int, amount1: int) -> int:
        return token_pair_value_in_quote(
            amount0,
            amount1,
            self.sqrt_price_x96,
            self.pool.is_token0_quote,
            self.pool.token0.decimals,
            self.pool.token1.decimals,
        )


def _config_for(raw: RawPositionEvent, pool: PoolMetadata) -> UniswapV3LedgerConfig:
    return UniswapV3LedgerConfig(
        chain_id=raw.chain_id,
        nft_id=raw.token_id,
        pool_address=pool.pool_address,
        block_number=raw.block_number,
        tx_index=raw.transaction_index,
        log_index=raw.log_index,
        tx_hash=raw.transaction_hash,
    )


def _build(
    raw: RawPositionEvent,
    valuation: _Valuation,
    *,
    token_value: int,
    delta_cost_basis: int,
    cost_basis_after: int,
    delta_pnl: int,
    pnl_after: int,
    state: UniswapV3LedgerState,
    rewards: tuple[Reward, ...] = (),
) -> ProcessedEvent:
    return ProcessedEvent(
        event_type=raw.event_type.ledger_type,
        timestamp=raw.timestamp,
        block_number=raw.block_number,
        transaction_index=raw.transaction_index,
        log_index=raw.log_index,
        transaction_hash=raw.transaction_hash,
        pool_price=valuation.pool_price,
        token0_amount=raw.amount0,
        token1_amount=raw.amount1,
        token_value=token_value,
        rewards=rewards,
        delta_cost_basis=delta_cost_basis,
        cost_basis_after=cost_basis_after,
        delta_pnl=delta_pnl,
        pnl_after=pnl_after,
        config=_config_for(raw, valuation.pool),
        state=state,
    )


def _require_liquidity(raw: RawPositionEvent) -> int:
    if raw.liquidity is None or raw.liquidity < 0:
        raise InvalidArgument(
            f"{raw.event_type.value} event at {raw.coordinate} needs a non-negative liquidity delta"
        )
    return raw.liquidity


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


def process_increase(
    previous: RunningState,
    raw: RawPositionEvent,
    price: HistoricPrice,
    pool: PoolMetadata,
) -> ProcessedEvent:
    delta_l = _require_liquidity(raw)
    valuation = _Valuation(pool, price.sqrt_price_x96)
    token_value = valuation.value(raw.amount0, raw.amount1)

    state = UniswapV3LedgerState(
        delta_l=delta_l,
        liquidity_after=previous.liquidity + delta_l,
        sqrt_price_x96=price.sqrt_price_x96,
        uncollected_principal0_after=previous.uncollected_principal0,
        uncollected_principal1_after=previous.uncollected_principal1,
    )
    return _build(
        raw,
        valuation,
        token_value=token_value,
        delta_cost_basis=token_value,
        cost_basis_after=previous.cost_basis + token_value,
        delta_pnl=0,
        pnl_after=previous.pnl,
        state=state,
    )


def process_decrease(
    previous: RunningState,
    raw: RawPositionEvent,
    price: HistoricPrice,
    pool: PoolMetadata,
) -> ProcessedEvent:
    delta_l = _require_liquidity(raw)
    valuation = _Valuation(pool, price.sqrt_price_x96)
    token_value = valuation.value(raw.amount0, raw.amount1)

    released = proportional_cost_basis(previous.cost_basis, delta_l, previous.liquidity)
    delta_pnl = token_value - released
    principal0, principal1 = update_uncollected_principal(
        previous.uncollected_principal0,
        previous.uncollected_principal1,
        LedgerEventType.DECREASE_POSITION,
        raw.amount0,
        raw.amount1,
    )

    state = UniswapV3LedgerState(
        delta_l=delta_l,
        liquidity_after=previous.liquidity - delta_l,
        sqrt_price_x96=price.sqrt_price_x96,
        uncollected_principal0_after=principal0,
        uncollected_principal1_after=principal1,
    )
    return _build(
        raw,
        valuation,
        token_value=token_value,
        delta_cost_basis=-released,
        cost_basis_after=previous.cost_basis - released,
        delta_pnl=delta_pnl,
        pnl_after=previous.pnl + delta_pnl,
        state=state,
    )


def process_collect(
    previous: RunningState,
    raw: RawPositionEvent,
    price: HistoricPrice,
    pool: PoolMetadata,
) -> ProcessedEvent:
    valuation = _Valuation(pool, price.sqrt_price_x96)
    token_value = valuation.value(raw.amount0, raw.amount1)

    split = separate_fees_from_principal(
        raw.amount0,
        raw.amount1,
        previous.uncollected_principal0,
        previous.uncollected_principal1,
    )
    principal0, principal1 = update_uncollected_principal(
        previous.uncollected_principal0,
        previous.uncollected_principal1,
        LedgerEventType.COLLECT,
        principal_collected0=split.principal0,
        principal_collected1=split.principal1,
    )

    rewards: list[Reward] = []
    if split.fee0 > 0:
        rewards.append(Reward(pool.token0.address, split.fee0, valuation.value(split.fee0, 0)))
    if split.fee1 > 0:
        rewards.append(Reward(pool.token1.address, split.fee1, valuation.value(0, split.fee1)))

    state = UniswapV3LedgerState(
        delta_l=0,
        liquidity_after=previous.liquidity,
        sqrt_price_x96=price.sqrt_price_x96,
        fees_collected0=split.fee0,
        fees_collected1=split.fee1,
        uncollected_principal0_after=principal0,
        uncollected_principal1_after=principal1,
        recipient=raw.recipient,
    )
    return _build(
        raw,
        valuation,
        token_value=token_value,
        delta_cost_basis=0,
        cost_basis_after=previous.cost_basis,
        delta_pnl=0,
        pnl_after=previous.pnl,
        state=state,
        rewards=tuple(rewards),
    )


def process_event(
    previous: RunningState,
    raw: RawPositionEvent,
    price: HistoricPrice,
    pool: PoolMetadata,
) -> ProcessedEvent:
    """Dispatch `raw` to the processor for its event type."""
    match raw.event_type:
        case RawEventType.INCREASE_LIQUIDITY:
            return process_increase(previous, raw, price, pool)
        case RawEventType.DECREASE_LIQUIDITY:
            return process_decrease(previous, raw, price, pool)
        case RawEventType.COLLECT:
            return process_collect(previous, raw, price, pool)
    raise InvalidArgument(f"Unsupported raw event type {raw.event_type!r}")
