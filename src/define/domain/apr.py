"""APR and time calculators.

Pure functions turning fee income, cost basis and wall-clock duration into
annualized basis-point returns. Percent values are display-only floats and
never feed back into stored figures.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from define.constants import BASIS_POINTS_MULTIPLIER, SECONDS_PER_YEAR
from define.errors import InvalidArgument

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


class CostBasisPoint(Protocol):
    """Anything carrying a timestamp and the cost basis in force from that moment."""

    @property
    def timestamp(self) -> datetime: ...

    @property
    def cost_basis_after(self) -> int: ...


def _epoch_ms(ts: datetime) -> int:
    return (ts - _EPOCH) // _ONE_MS


def duration_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two instants (millisecond delta floored to seconds)."""
    delta_ms = _epoch_ms(end) - _epoch_ms(start)
    if delta_ms < 0:
        raise InvalidArgument("End timestamp must not be before start timestamp")
    return delta_ms // 1000


def apr_bps(collected_fee_value: int, cost_basis: int, duration: int) -> int:
    """Annualized fee return in basis points (floored)."""
    if cost_basis == 0:
        raise InvalidArgument("Cost basis cannot be zero")
    if duration <= 0:
        raise InvalidArgument("Duration must be positive")
    if collected_fee_value < 0:
        raise InvalidArgument("Collected fee value cannot be negative")
    if collected_fee_value == 0:
        return 0
    return (collected_fee_value * SECONDS_PER_YEAR * BASIS_POINTS_MULTIPLIER) // (cost_basis * duration)


def average_cost_basis(values: Sequence[int]) -> int:
    if not values:
        raise InvalidArgument("Cannot calculate average of empty array")
    return sum(values) // len(values)


def time_weighted_cost_basis(events: Sequence[CostBasisPoint]) -> int:
    """Cost basis averaged over time, each value weighted until the next event.

    The last event only marks the end of the window. Events sharing a
    timestamp are accepted; going backwards in time is not.
    """
    if not events:
        raise InvalidArgument("Cannot calculate time-weighted average from empty array")
    if len(events) == 1:
        return events[0].cost_basis_after

    weighted_sum = 0
    total_ms = 0
    for current, nxt in zip(events, events[1:]):
        span_ms = _epoch_ms(nxt.timestamp) - _epoch_ms(current.timestamp)
        if span_ms < 0:
            raise InvalidArgument("Events must be in chronological order")
        weighted_sum += current.cost_basis_after * span_ms
        total_ms += span_ms

    if total_ms == 0:
        raise InvalidArgument("Events must span non-zero time for time-weighted average")
    return weighted_sum // total_ms


def apr_bps_to_percent(bps: int) -> float:
    return bps / 100


def apr_percent_to_bps(percent: float) -> int:
    # half-up, so 26.095 -> 2610 rather than banker's rounding
    return int((Decimal(str(percent)) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def seconds_to_days(seconds: int) -> float:
    return seconds / 86_400
