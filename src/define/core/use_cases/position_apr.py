"""APR periods derived from a position's ledger.

A period runs from one COLLECT to the next: fees realized at a COLLECT were
earned over the stretch that ends there. The closing COLLECT also opens the
following period, so each period's time-weighted cost basis starts from the
state the previous period left behind.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from define.core.interfaces import IAprPeriodRepository, ILedgerRepository
from define.core.models import AprPeriod, AprSummary, LedgerEvent, LedgerEventType
from define.domain.apr import apr_bps, duration_seconds, time_weighted_cost_basis
from define.errors import InvalidArgument

logger = logging.getLogger(__name__)


def split_periods(events: Sequence[LedgerEvent]) -> list[list[LedgerEvent]]:
    """Split ascending `events` at COLLECT boundaries.

    A trailing period made of only the last boundary COLLECT is dropped.
    """
    periods: list[list[LedgerEvent]] = []
    current: list[LedgerEvent] = []
    for event in events:
        current.append(event)
        if event.event_type is LedgerEventType.COLLECT:
            periods.append(current)
            current = [event]

    if current:
        ended_on_collect = bool(periods) and periods[-1][-1].event_type is LedgerEventType.COLLECT
        if not ended_on_collect or len(current) > 1:
            periods.append(current)
    return periods


def _collected_fee_value(period: Sequence[LedgerEvent], *, opens_on_boundary: bool) -> int:
    # the opening COLLECT's fees belong to the previous period
    counted = period[1:] if opens_on_boundary else period
    return sum(e.rewards_value for e in counted if e.event_type is LedgerEventType.COLLECT)


def build_period(position_id: str, period: Sequence[LedgerEvent], *, opens_on_boundary: bool) -> AprPeriod:
    """Compute one `AprPeriod`.

    Raises InvalidArgument when the period's cost basis cannot be averaged.
    APR and duration fall back to 0 when they cannot be computed.
    """
    start, end = period[0], period[-1]
    cost_basis = time_weighted_cost_basis(period)
    fees = _collected_fee_value(period, opens_on_boundary=opens_on_boundary)
    try:
        duration = duration_seconds(start.timestamp, end.timestamp)
        bps = apr_bps(fees, cost_basis, duration)
    except InvalidArgument as e:
        logger.warning(
            "APR for %s (%s..%s) defaulted to 0: %s", position_id, start.id, end.id, e, exc_info=True
        )
        duration, bps = 0, 0

    return AprPeriod(
        position_id=position_id,
        start_event_id=start.id,
        end_event_id=end.id,
        start_timestamp=start.timestamp,
        end_timestamp=end.timestamp,
        duration_seconds=duration,
        cost_basis=cost_basis,
        collected_fee_value=fees,
        apr_bps=bps,
        event_count=len(period),
    )


def summarize(periods: Sequence[AprPeriod]) -> AprSummary | None:
    """Current (newest period) and average APR; None without periods."""
    if not periods:
        return None
    newest = max(periods, key=lambda p: p.start_timestamp)
    total, n = sum(p.apr_bps for p in periods), len(periods)
    # half-up: floor(total / n + 1/2), so an average of 2.5 bps becomes 3
    average = (2 * total + n) // (2 * n)
    return AprSummary(current_apr_bps=newest.apr_bps, average_apr_bps=average, period_count=len(periods))


class PositionAprService:
    """Recomputes and stores a position's APR periods from its ledger."""

    def __init__(self, ledger: ILedgerRepository, periods: IAprPeriodRepository) -> None:
        self._ledger = ledger
        self._periods = periods

    async def refresh(self, position_id: str) -> list[AprPeriod]:
        """Replace the stored periods; returns them newest first."""
        events = list(reversed(await self._ledger.list_descending(position_id)))

        out: list[AprPeriod] = []
        for i, period in enumerate(split_periods(events)):
            try:
                out.append(build_period(position_id, period, opens_on_boundary=i > 0))
            except InvalidArgument as e:
                logger.warning("skipping APR period of %s starting at %s: %s", position_id, period[0].id, e)

        out.sort(key=lambda p: p.start_timestamp, reverse=True)
        await self._periods.replace(position_id, out)
        logger.info("APR refreshed for %s: %d periods from %d events", position_id, len(out), len(events))
        return out

    async def periods(self, position_id: str) -> list[AprPeriod]:
        return await self._periods.list_descending(position_id)

    async def summary(self, position_id: str) -> AprSummary | None:
        return summarize(await self._periods.list_descending(position_id))

    async def clear(self, position_id: str) -> int:
        return await self._periods.delete_all(position_id)
