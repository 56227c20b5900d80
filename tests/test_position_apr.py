from dataclasses import replace
from datetime import timedelta

import pytest

from define.core.models import AprPeriod, LedgerEvent, Reward
from define.core.use_cases import PositionAprService, build_period, split_periods, summarize
from define.errors import InvalidArgument
from define.storage import InMemoryAprPeriodRepository

from conftest import T0, USDC


class StubLedger:
    def __init__(self, events: list[LedgerEvent]) -> None:
        self.events = events

    async def list_descending(self, position_id: str) -> list[LedgerEvent]:
        return list(reversed(self.events))


def _second_collect(chain: list[LedgerEvent], fee: int = 10_000_000) -> LedgerEvent:
    """A later COLLECT of pure fee income, ten days after the scenario's."""
    last = chain[-1]
    return replace(
        last,
        id="e3",
        previous_id=last.id,
        timestamp=last.timestamp + timedelta(days=10),
        block_number=400,
        input_hash="h3",
        rewards=(Reward(USDC.address, fee, fee),),
    )


class TestSplitPeriods:
    def test_trailing_boundary_collect_dropped(self, chain):
        periods = split_periods(chain)
        assert [[e.id for e in p] for p in periods] == [["e0", "e1", "e2"]]

    def test_collect_opens_next_period(self, chain):
        periods = split_periods([*chain, _second_collect(chain)])
        assert [[e.id for e in p] for p in periods] == [["e0", "e1", "e2"], ["e2", "e3"]]

    def test_open_period_without_collect(self, chain):
        assert [[e.id for e in p] for p in split_periods(chain[:2])] == [["e0", "e1"]]

    def test_empty(self):
        assert split_periods([]) == []


class TestBuildPeriod:
    def test_scenario_period(self, chain):
        period = build_period("pos-1", chain, opens_on_boundary=False)
        assert period.start_event_id == "e0"
        assert period.end_event_id == "e2"
        assert period.cost_basis == 1_500_000_000
        assert period.duration_seconds == 1_728_000
        assert period.collected_fee_value == 20_000_000
        assert period.apr_bps == 2435
        assert period.event_count == 3

    def test_opening_collect_fees_not_counted_again(self, chain):
        period = build_period("pos-1", [chain[-1], _second_collect(chain)], opens_on_boundary=True)
        assert period.collected_fee_value == 10_000_000
        assert period.cost_basis == 1_000_000_000
        assert period.apr_bps == 3652

    def test_single_event_period_defaults_to_zero(self, chain, caplog):
        with caplog.at_level("WARNING"):
            period = build_period("pos-1", chain[:1], opens_on_boundary=False)
        assert (period.duration_seconds, period.apr_bps) == (0, 0)
        assert period.cost_basis == 2_000_000_000
        assert "defaulted to 0" in caplog.text

    def test_zero_span_raises(self, chain):
        same_time = [chain[0], replace(chain[1], timestamp=chain[0].timestamp)]
        with pytest.raises(InvalidArgument):
            build_period("pos-1", same_time, opens_on_boundary=False)


def _period(day: int, apr: int) -> AprPeriod:
    return AprPeriod(
        position_id="pos-1",
        start_event_id=f"s{day}",
        end_event_id=f"e{day}",
        start_timestamp=T0 + timedelta(days=day),
        end_timestamp=T0 + timedelta(days=day + 1),
        duration_seconds=86_400,
        cost_basis=1,
        collected_fee_value=0,
        apr_bps=apr,
        event_count=2,
    )


class TestSummarize:
    def test_empty(self):
        assert summarize([]) is None

    def test_current_is_newest(self):
        summary = summarize([_period(0, 100), _period(5, 301), _period(3, 200)])
        assert summary.current_apr_bps == 301
        assert summary.average_apr_bps == 200
        assert summary.period_count == 3

    def test_average_rounds_half_up(self):
        assert summarize([_period(0, 2), _period(1, 3)]).average_apr_bps == 3
        assert summarize([_period(0, 2), _period(1, 2), _period(2, 3)]).average_apr_bps == 2


class TestPositionAprService:
    @pytest.mark.asyncio
    async def test_refresh_replaces_periods(self, chain):
        repo = InMemoryAprPeriodRepository()
        service = PositionAprService(StubLedger([*chain, _second_collect(chain)]), repo)

        periods = await service.refresh("pos-1")

        assert [p.start_event_id for p in periods] == ["e2", "e0"]
        assert await service.periods("pos-1") == periods
        summary = await service.summary("pos-1")
        assert summary.current_apr_bps == 3652
        assert summary.period_count == 2

    @pytest.mark.asyncio
    async def test_unaverageable_period_skipped(self, chain, caplog):
        # second period collapses to zero elapsed time
        broken = replace(_second_collect(chain), timestamp=chain[-1].timestamp)
        service = PositionAprService(StubLedger([*chain, broken]), InMemoryAprPeriodRepository())

        with caplog.at_level("WARNING"):
            periods = await service.refresh("pos-1")

        assert [p.start_event_id for p in periods] == ["e0"]
        assert "skipping APR period" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_ledger(self):
        service = PositionAprService(StubLedger([]), InMemoryAprPeriodRepository())
        assert await service.refresh("pos-1") == []
        assert await service.summary("pos-1") is None

    @pytest.mark.asyncio
    async def test_clear(self, chain):
        service = PositionAprService(StubLedger(chain), InMemoryAprPeriodRepository())
        await service.refresh("pos-1")
        assert await service.clear("pos-1") == 1
        assert await service.periods("pos-1") == []
