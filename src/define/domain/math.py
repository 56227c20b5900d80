"""Fixed-point financial primitives and concentrated-liquidity math.

Everything here is pure integer arithmetic on Python ints: prices, token
values, proportional cost basis, principal/fee separation and the Uniswap V3
tick / liquidity / fee-growth formulas. No floats are involved in any value
that ends up in a ledger record.

Conventions
-----------
- `sqrt_price_x96` is the pool's Q64.96 square-root price (token1 per token0, raw units).
- Token amounts are raw (smallest unit). Quote values are raw quote-token units.
- Divisions floor. Within one formula they come after all multiplications;
  token values use the already-floored quote price.
"""

from __future__ import annotations

from dataclasses import dataclass

from define.constants import MAX_TICK, MIN_TICK, Q96, Q128, Q192, UINT256_MOD
from define.core.models import LedgerEventType
from define.errors import InvalidArgument


# =====================================================================
# Prices and token values
# =====================================================================


def _require_sqrt_price(sqrt_price_x96: int) -> None:
    if sqrt_price_x96 <= 0:
        raise InvalidArgument(f"sqrt price must be positive, got {sqrt_price_x96}")


def price_per_token0_in_token1(sqrt_price_x96: int, decimals0: int) -> int:
    """Raw token1 units per one whole token0."""
    _require_sqrt_price(sqrt_price_x96)
    return sqrt_price_x96 * sqrt_price_x96 * 10**decimals0 // Q192


def price_per_token1_in_token0(sqrt_price_x96: int, decimals1: int) -> int:
    """Raw token0 units per one whole token1."""
    _require_sqrt_price(sqrt_price_x96)
    return Q192 * 10**decimals1 // (sqrt_price_x96 * sqrt_price_x96)


def pool_price_in_quote(
    sqrt_price_x96: int,
    quote_is_token0: bool,
    decimals0: int,
    decimals1: int,
) -> int:
    """Quote-token units per one whole base token.

    Parameters
    ----------
    sqrt_price_x96 : int
        Pool square-root price in Q64.96.
    quote_is_token0 : bool
        True when token0 is the quote token (base is token1).
    decimals0, decimals1 : int
        Token decimals; only the base token's scale affects the result.
    """
    if quote_is_token0:
        return price_per_token1_in_token0(sqrt_price_x96, decimals1)
    return price_per_token0_in_token1(sqrt_price_x96, decimals0)


def token_pair_value_in_quote(
    amount0: int,
    amount1: int,
    sqrt_price_x96: int,
    quote_is_token0: bool,
    decimals0: int,
    decimals1: int,
) -> int:
    """Value of (amount0, amount1) in raw quote-token units.

    The base amount is converted at `pool_price_in_quote` and divided by its
    own decimal scale (`amount * price // 10**decimals_base`), then added to
    the quote amount.
    """
    if amount0 < 0 or amount1 < 0:
        raise InvalidArgument(f"token amounts must be non-negative, got ({amount0}, {amount1})")
    price = pool_price_in_quote(sqrt_price_x96, quote_is_token0, decimals0, decimals1)
    if quote_is_token0:
        return amount0 + amount1 * price // 10**decimals1
    return amount1 + amount0 * price // 10**decimals0


# =====================================================================
# Cost basis and principal bookkeeping
# =====================================================================


def proportional_cost_basis(cost_basis: int, delta_liquidity: int, current_liquidity: int) -> int:
    """Cost basis attributable to `delta_liquidity` out of `current_liquidity` (floored)."""
    if current_liquidity == 0:
        raise InvalidArgument("Cannot compute proportional cost basis with zero current liquidity")
    if delta_liquidity < 0:
        raise InvalidArgument(f"Delta liquidity cannot be negative, got {delta_liquidity}")
    if delta_liquidity > current_liquidity:
        raise InvalidArgument(
            f"Delta liquidity {delta_liquidity} exceeds current liquidity {current_liquidity}"
        )
    if delta_liquidity == 0:
        return 0
    return cost_basis * delta_liquidity // current_liquidity


@dataclass(frozen=True, slots=True)
class FeeSeparation:
    fee0: int
    fee1: int
    principal0: int
    principal1: int


def separate_fees_from_principal(
    collected0: int,
    collected1: int,
    uncollected_principal0: int,
    uncollected_principal1: int,
) -> FeeSeparation:
    """Split collected amounts into returned principal and pure fees.

    Principal is paid out first: `principal = min(collected, uncollected)`.
    """
    for name, value in (
        ("collected0", collected0),
        ("collected1", collected1),
        ("uncollected_principal0", uncollected_principal0),
        ("uncollected_principal1", uncollected_principal1),
    ):
        if value < 0:
            raise InvalidArgument(f"{name} cannot be negative, got {value}")

    principal0 = min(collected0, uncollected_principal0)
    principal1 = min(collected1, uncollected_principal1)
    return FeeSeparation(
        fee0=collected0 - principal0,
        fee1=collected1 - principal1,
        principal0=principal0,
        principal1=principal1,
    )


def update_uncollected_principal(
    prev0: int,
    prev1: int,
    event_type: LedgerEventType,
    amount0: int = 0,
    amount1: int = 0,
    principal_collected0: int = 0,
    principal_collected1: int = 0,
) -> tuple[int, int]:
    """Carry the uncollected-principal pool across one event.

    INCREASE leaves it unchanged, DECREASE adds the withdrawn amounts and
    COLLECT removes the principal portion that was paid out.
    """
    if prev0 < 0 or prev1 < 0:
        raise InvalidArgument(f"Previous uncollected principal cannot be negative, got ({prev0}, {prev1})")

    match event_type:
        case LedgerEventType.INCREASE_POSITION:
            return prev0, prev1
        case LedgerEventType.DECREASE_POSITION:
            if amount0 < 0 or amount1 < 0:
                raise InvalidArgument(f"Decreased amounts cannot be negative, got ({amount0}, {amount1})")
            return prev0 + amount0, prev1 + amount1
        case LedgerEventType.COLLECT:
            if principal_collected0 < 0 or principal_collected1 < 0:
                raise InvalidArgument("Collected principal cannot be negative")
            if principal_collected0 > prev0 or principal_collected1 > prev1:
                raise InvalidArgument(
                    "Collected principal exceeds uncollected principal "
                    f"({principal_collected0}, {principal_collected1}) > ({prev0}, {prev1})"
                )
            return prev0 - principal_collected0, prev1 - principal_collected1
    raise InvalidArgument(f"Unsupported event type {event_type!r}")


# =====================================================================
# Concentrated-liquidity math (TickMath / LiquidityAmounts)
# =====================================================================

_TICK_RATIO_FACTORS = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)


def sqrt_ratio_at_tick(tick: int) -> int:
    """Exact Q64.96 square-root price at `tick` (same rounding as TickMath)."""
    if tick < MIN_TICK or tick > MAX_TICK:
        raise InvalidArgument(f"tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]")
    abs_tick = abs(tick)
    ratio = 0xFFFCB933BD6FAD37AA2D162D1A594001 if abs_tick & 0x1 else 1 << 128
    for mask, factor in _TICK_RATIO_FACTORS:
        if abs_tick & mask:
            ratio = (ratio * factor) >> 128
    if tick > 0:
        ratio = (UINT256_MOD - 1) // ratio
    # Q128.128 -> Q64.96, rounding up
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def _amount0_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    return (liquidity << 96) * (sqrt_b - sqrt_a) // sqrt_b // sqrt_a


def _amount1_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    return liquidity * (sqrt_b - sqrt_a) // Q96


def amounts_from_liquidity(
    liquidity: int,
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
) -> tuple[int, int]:
    """Token amounts represented by `liquidity` in [tick_lower, tick_upper] at the current price."""
    if liquidity < 0:
        raise InvalidArgument(f"liquidity cannot be negative, got {liquidity}")
    _require_sqrt_price(sqrt_price_x96)
    sqrt_a = sqrt_ratio_at_tick(tick_lower)
    sqrt_b = sqrt_ratio_at_tick(tick_upper)
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a

    if sqrt_price_x96 <= sqrt_a:
        return _amount0_for_liquidity(sqrt_a, sqrt_b, liquidity), 0
    if sqrt_price_x96 < sqrt_b:
        return (
            _amount0_for_liquidity(sqrt_price_x96, sqrt_b, liquidity),
            _amount1_for_liquidity(sqrt_a, sqrt_price_x96, liquidity),
        )
    return 0, _amount1_for_liquidity(sqrt_a, sqrt_b, liquidity)


def position_value_in_quote(
    liquidity: int,
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    quote_is_token0: bool,
    decimals0: int,
    decimals1: int,
) -> int:
    """Current value of a range position, in raw quote-token units."""
    if liquidity == 0:
        return 0
    amount0, amount1 = amounts_from_liquidity(liquidity, sqrt_price_x96, tick_lower, tick_upper)
    return token_pair_value_in_quote(
        amount0, amount1, sqrt_price_x96, quote_is_token0, decimals0, decimals1
    )


def tick_to_price(tick: int, quote_is_token0: bool, decimals0: int, decimals1: int) -> int:
    """Quote units per whole base token at `tick`."""
    return pool_price_in_quote(sqrt_ratio_at_tick(tick), quote_is_token0, decimals0, decimals1)


def fee_growth_inside_x128(
    current_tick: int,
    fee_growth_global_x128: int,
    lower_fee_growth_outside_x128: int,
    upper_fee_growth_outside_x128: int,
    tick_lower: int,
    tick_upper: int,
) -> int:
    """Fee growth per unit of liquidity inside the range (uint256 wrap-around semantics)."""
    if current_tick >= tick_lower:
        below = lower_fee_growth_outside_x128
    else:
        below = fee_growth_global_x128 - lower_fee_growth_outside_x128
    if current_tick < tick_upper:
        above = upper_fee_growth_outside_x128
    else:
        above = fee_growth_global_x128 - upper_fee_growth_outside_x128
    return (fee_growth_global_x128 - below - above) % UINT256_MOD


def incremental_fees(fee_growth_inside_now_x128: int, fee_growth_inside_last_x128: int, liquidity: int) -> int:
    """Fees earned since the position's last on-chain checkpoint."""
    delta = (fee_growth_inside_now_x128 - fee_growth_inside_last_x128) % UINT256_MOD
    return delta * liquidity // Q128
