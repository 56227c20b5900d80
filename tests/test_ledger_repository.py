"""Ledger storage contract, run against every backend."""

from dataclasses import replace
from datetime import timedelta

import pytest

from define.adapters.uniswapv3 import UniswapV3Adapter
from define.constants import Q96
from define.core.models import AprPeriod, BlockCoordinate, HistoricPrice, ZERO_STATE
from define.errors import DuplicateEventError, SequenceError
from define.ledger import verify_chain
from define.storage import (
    DuckDBAprPeriodRepository,
    DuckDBLedgerRepository,
    InMemoryAprPeriodRepository,
    InMemoryLedgerRepository,
    connect,
)

from conftest import T0

ADAPTER = UniswapV3Adapter()
PRICE = HistoricPrice(sqrt_price_x96=Q96, timestamp=T0, block_number=0)
PROTOCOL = ADAPTER.protocol


@pytest.fixture(params=["memory", "duckdb"])
def repo(request):
    if request.param == "memory":
        yield InMemoryLedgerRepository()
    else:
        r = DuckDBLedgerRepository.open(":memory:")
        yield r
        r.close()


@pytest.fixture
def processed(scenario, pool):
    out = []
    running = ZERO_STATE
    for raw in scenario:
        p = ADAPTER.process_event(running, raw, PRICE, pool)
        out.append(p)
        running = replace(
            running,
            liquidity=p.state.liquidity_after,
            cost_basis=p.cost_basis_after,
            pnl=p.pnl_after,
            uncollected_principal0=p.state.uncollected_principal0_after,
            uncollected_principal1=p.state.uncollected_principal1_after,
        )
    return out


async def _append_all(repo, position_id, events):
    previous_id = None
    stored = []
    for p in events:
        e = await repo.append(position_id, p, protocol=PROTOCOL, previous_id=previous_id)
        previous_id = e.id
        stored.append(e)
    return stored


class TestAppend:
    @pytest.mark.asyncio
    async def test_chain_round_trip(self, repo, processed):
        stored = await _append_all(repo, "p1", processed)

        listed = await repo.list_descending("p1")
        assert [e.id for e in listed] == [e.id for e in reversed(stored)]
        assert listed[-1].previous_id is None
        assert listed[0].previous_id == stored[1].id
        assert listed == list(reversed(stored))
        assert verify_chain(listed) == 3
        assert (await repo.latest("p1")).id == stored[-1].id

    @pytest.mark.asyncio
    async def test_second_root_rejected(self, repo, processed):
        await repo.append("p1", processed[0], protocol=PROTOCOL, previous_id=None)
        with pytest.raises(SequenceError):
            await repo.append("p1", processed[1], protocol=PROTOCOL, previous_id=None)

    @pytest.mark.asyncio
    async def test_unknown_previous(self, repo, processed):
        await repo.append("p1", processed[0], protocol=PROTOCOL, previous_id=None)
        with pytest.raises(SequenceError, match="not found"):
            await repo.append("p1", processed[1], protocol=PROTOCOL, previous_id="nope")

    @pytest.mark.asyncio
    async def test_previous_from_other_position(self, repo, processed):
        other = await repo.append("p2", processed[0], protocol=PROTOCOL, previous_id=None)
        await repo.append("p1", processed[0], protocol=PROTOCOL, previous_id=None)
        with pytest.raises(SequenceError, match="belongs to position"):
            await repo.append("p1", processed[1], protocol=PROTOCOL, previous_id=other.id)

    @pytest.mark.asyncio
    async def test_previous_must_be_tail(self, repo, processed):
        first, _ = await _append_all(repo, "p1", processed[:2])
        with pytest.raises(SequenceError, match="tail"):
            await repo.append("p1", processed[2], protocol=PROTOCOL, previous_id=first.id)

    @pytest.mark.asyncio
    async def test_coordinate_must_increase(self, repo, processed):
        first = await repo.append("p1", processed[1], protocol=PROTOCOL, previous_id=None)
        with pytest.raises(SequenceError) as exc:
            await repo.append("p1", processed[0], protocol=PROTOCOL, previous_id=first.id)
        assert exc.value.coordinate == processed[0].coordinate

    @pytest.mark.asyncio
    async def test_duplicate_input_hash(self, repo, processed):
        first = await repo.append("p1", processed[0], protocol=PROTOCOL, previous_id=None)
        with pytest.raises(DuplicateEventError):
            await repo.append("p1", processed[0], protocol=PROTOCOL, previous_id=first.id)

    @pytest.mark.asyncio
    async def test_protocol_mismatch(self, repo, processed):
        with pytest.raises(SequenceError):
            await repo.append("p1", processed[0], protocol="aerodrome", previous_id=None)


class TestTruncation:
    @pytest.mark.asyncio
    async def test_delete_tail(self, repo, processed):
        await _append_all(repo, "p1", processed)
        removed = await repo.delete_tail("p1", BlockCoordinate.at_block(200))
        assert removed == 2
        remaining = await repo.list_descending("p1")
        assert [e.block_number for e in remaining] == [100]

    @pytest.mark.asyncio
    async def test_delete_all_is_idempotent(self, repo, processed):
        await _append_all(repo, "p1", processed)
        await _append_all(repo, "p2", processed)
        assert await repo.delete_all("p1") == 3
        assert await repo.delete_all("p1") == 0
        assert await repo.list_descending("p1") == []
        assert len(await repo.list_descending("p2")) == 3

    @pytest.mark.asyncio
    async def test_delete_and_reappend_in_one_transaction(self, repo, processed):
        stored = await _append_all(repo, "p1", processed)
        async with repo.transaction("p1") as tx:
            await tx.delete_tail(BlockCoordinate.at_block(300))
            tail = await tx.latest()
            again = await tx.append(processed[2], protocol=PROTOCOL, previous_id=tail.id)
        assert again.input_hash == stored[2].input_hash
        assert again.id != stored[2].id
        assert verify_chain(await repo.list_descending("p1")) == 3

    @pytest.mark.asyncio
    async def test_failed_transaction_rolls_back(self, repo, processed):
        await _append_all(repo, "p1", processed)
        with pytest.raises(SequenceError):
            async with repo.transaction("p1") as tx:
                await tx.delete_all()
                await tx.append(processed[0], protocol=PROTOCOL, previous_id=None)
                await tx.append(processed[1], protocol=PROTOCOL, previous_id=None)
        assert len(await repo.list_descending("p1")) == 3


# ---------- APR periods ----------


@pytest.fixture(params=["memory", "duckdb"])
def apr_repo(request):
    if request.param == "memory":
        yield InMemoryAprPeriodRepository()
    else:
        con = connect(":memory:")
        yield DuckDBAprPeriodRepository(con)
        con.close()


def _period(position_id: str, day: int, apr: int) -> AprPeriod:
    start = T0 + timedelta(days=day)
    return AprPeriod(
        position_id=position_id,
        start_event_id=f"start-{day}",
        end_event_id=f"end-{day}",
        start_timestamp=start,
        end_timestamp=start + timedelta(days=7),
        duration_seconds=7 * 86_400,
        cost_basis=10**30,
        collected_fee_value=5 * 10**21,
        apr_bps=apr,
        event_count=3,
    )


class TestAprPeriods:
    @pytest.mark.asyncio
    async def test_replace_and_list_newest_first(self, apr_repo):
        periods = [_period("p1", 0, 100), _period("p1", 14, 300), _period("p1", 7, 200)]
        await apr_repo.replace("p1", periods)

        listed = await apr_repo.list_descending("p1")
        assert [p.apr_bps for p in listed] == [300, 200, 100]
        assert listed[0] == periods[1]

    @pytest.mark.asyncio
    async def test_replace_is_wholesale(self, apr_repo):
        await apr_repo.replace("p1", [_period("p1", 0, 100), _period("p1", 7, 200)])
        await apr_repo.replace("p2", [_period("p2", 0, 900)])
        await apr_repo.replace("p1", [_period("p1", 21, 400)])

        assert [p.apr_bps for p in await apr_repo.list_descending("p1")] == [400]
        assert [p.apr_bps for p in await apr_repo.list_descending("p2")] == [900]

    @pytest.mark.asyncio
    async def test_delete_all(self, apr_repo):
        await apr_repo.replace("p1", [_period("p1", 0, 100), _period("p1", 7, 200)])
        assert await apr_repo.delete_all("p1") == 2
        assert await apr_repo.delete_all("p1") == 0
        assert await apr_repo.list_descending("p1") == []
