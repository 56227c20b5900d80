"""Uniswap V3 processors replayed over the three-event scenario."""

import hashlib

import pytest

from define.adapters.uniswapv3 import UniswapV3Adapter
from define.adapters.uniswapv3.processors import process_collect, process_decrease, process_event, process_increase
from define.constants import Q96
from define.core.models import HistoricPrice, LedgerEventType, PoolMetadata, RawEventType, RunningState, TokenInfo, ZERO_STATE
from define.errors import InvalidArgument, ProtocolError

from conftest import T0, USDC, USDT

PRICE = HistoricPrice(sqrt_price_x96=Q96, timestamp=T0, block_number=0)
ADAPTER = UniswapV3Adapter()


def _replay(raws, pool):
    out = []
    running = ZERO_STATE
    for raw in raws:
        processed = process_event(running, raw, PRICE, pool)
        running = RunningState(
            liquidity=processed.state.liquidity_after,
            cost_basis=processed.cost_basis_after,
            pnl=processed.pnl_after,
            uncollected_principal0=processed.state.uncollected_principal0_after,
            uncollected_principal1=processed.state.uncollected_principal1_after,
        )
        out.append(processed)
    return out


class TestScenario:
    def test_increase(self, scenario, pool):
        inc = _replay(scenario[:1], pool)[0]
        assert inc.event_type is LedgerEventType.INCREASE_POSITION
        assert inc.token_value == 2_000_000_000
        assert inc.delta_cost_basis == inc.cost_basis_after == 2_000_000_000
        assert inc.delta_pnl == inc.pnl_after == 0
        assert inc.state.liquidity_after == 10**18
        assert inc.pool_price == 10**6
        assert inc.rewards == ()

    def test_decrease_realizes_pnl(self, scenario, pool):
        _, dec = _replay(scenario[:2], pool)
        assert dec.token_value == 1_100_000_000
        assert dec.delta_cost_basis == -1_000_000_000
        assert dec.cost_basis_after == 1_000_000_000
        assert dec.delta_pnl == 100_000_000
        assert dec.pnl_after == 100_000_000
        assert dec.state.liquidity_after == 5 * 10**17
        assert dec.state.uncollected_principal0_after == 550_000_000
        assert dec.state.uncollected_principal1_after == 550_000_000

    def test_collect_separates_fees(self, scenario, pool):
        *_, col = _replay(scenario, pool)
        assert col.event_type is LedgerEventType.COLLECT
        assert col.delta_pnl == 0
        assert col.pnl_after == 100_000_000
        assert col.delta_cost_basis == 0
        assert col.cost_basis_after == 1_000_000_000
        assert sum(r.token_value for r in col.rewards) == 20_000_000
        assert [(r.token_id, r.token_amount) for r in col.rewards] == [
            (USDC.address, 10_000_000),
            (USDT.address, 10_000_000),
        ]
        assert col.state.fees_collected0 == col.state.fees_collected1 == 10_000_000
        assert col.state.uncollected_principal0_after == 0
        assert col.state.uncollected_principal1_after == 0
        assert col.state.recipient is not None

    def test_conservation(self, scenario, pool):
        events = _replay(scenario, pool)
        for prior, current in zip(events, events[1:]):
            assert current.cost_basis_after == prior.cost_basis_after + current.delta_cost_basis
            assert current.pnl_after == prior.pnl_after + current.delta_pnl

    def test_deterministic(self, scenario, pool):
        assert _replay(scenario, pool) == _replay(scenario, pool)


class TestProcessorEdges:
    def test_collect_only_fees_with_zero_side_omitted(self, raw_event, pool):
        raw = raw_event(RawEventType.COLLECT, 10, amount0=5, amount1=0)
        processed = process_collect(ZERO_STATE, raw, PRICE, pool)
        assert len(processed.rewards) == 1
        assert processed.rewards[0].token_amount == 5

    def test_decrease_without_liquidity_fails(self, raw_event, pool):
        raw = raw_event(RawEventType.DECREASE_LIQUIDITY, 10, liquidity=1, amount0=1)
        with pytest.raises(InvalidArgument):
            process_decrease(ZERO_STATE, raw, PRICE, pool)

    def test_decrease_more_than_held_fails(self, raw_event, pool):
        raw = raw_event(RawEventType.DECREASE_LIQUIDITY, 10, liquidity=11)
        with pytest.raises(InvalidArgument):
            process_decrease(RunningState(liquidity=10, cost_basis=100), raw, PRICE, pool)

    def test_increase_requires_liquidity(self, raw_event, pool):
        raw = raw_event(RawEventType.INCREASE_LIQUIDITY, 10, liquidity=None)
        with pytest.raises(InvalidArgument):
            process_increase(ZERO_STATE, raw, PRICE, pool)

    def test_increase_keeps_uncollected_principal(self, raw_event, pool):
        previous = RunningState(liquidity=5, cost_basis=10, uncollected_principal0=3, uncollected_principal1=4)
        raw = raw_event(RawEventType.INCREASE_LIQUIDITY, 10, liquidity=5, amount0=1, amount1=1)
        processed = process_increase(previous, raw, PRICE, pool)
        assert processed.state.uncollected_principal0_after == 3
        assert processed.state.uncollected_principal1_after == 4

    def test_increase_values_base_at_floored_pool_price(self, raw_event):
        weth = TokenInfo("0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2", "WETH", 18)
        pool = PoolMetadata(pool_address="0x" + "11" * 20, token0=weth, token1=USDC, is_token0_quote=False)
        price = HistoricPrice(sqrt_price_x96=3543509188752787245289015, timestamp=T0, block_number=0)
        raw = raw_event(RawEventType.INCREASE_LIQUIDITY, 10, liquidity=10**18, amount0=123456789012345678901)
        processed = process_increase(ZERO_STATE, raw, price, pool)
        assert processed.pool_price == 2_000_359_066
        assert processed.cost_basis_after == 123456789012345678901 * 2_000_359_066 // 10**18


class TestAdapter:
    def test_input_hash(self, scenario, pool):
        processed = ADAPTER.process_event(ZERO_STATE, scenario[0], PRICE, pool)
        assert ADAPTER.compute_input_hash(processed) == hashlib.md5(b"100-0-0").hexdigest()

    def test_payload_round_trip_large_ints(self, scenario, pool):
        processed = ADAPTER.process_event(ZERO_STATE, scenario[0], PRICE, pool)
        state = processed.state.__class__(delta_l=2**255, liquidity_after=2**255, sqrt_price_x96=Q96 * 10**30)
        payload = ADAPTER.serialize_state(state)
        assert payload["delta_l"] == str(2**255)
        assert ADAPTER.parse_state(payload) == state
        assert ADAPTER.parse_config(ADAPTER.serialize_config(processed.config)) == processed.config

    def test_wrong_protocol_tag(self):
        with pytest.raises(ProtocolError):
            ADAPTER.parse_state({"protocol": "aerodrome", "delta_l": "1", "liquidity_after": "1", "sqrt_price_x96": "1"})

    def test_malformed_payload(self):
        with pytest.raises(ProtocolError):
            ADAPTER.parse_config({"protocol": "uniswapv3", "chain_id": 1})

    def test_running_state_of_none(self):
        assert ADAPTER.running_state(None) == ZERO_STATE
