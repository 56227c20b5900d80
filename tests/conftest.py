from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from define.adapters import get_adapter
from define.constants import Q96, UNISWAPV3_PROTOCOL
from define.core.config import SyncConfig
from define.core.models import (
    HistoricPrice,
    LedgerEvent,
    PoolMetadata,
    PositionChainState,
    PositionRecord,
    RawEventType,
    RawPositionEvent,
    TokenInfo,
)
from define.core.use_cases import LedgerSyncService, PositionAprService, PositionSnapshotService
from define.storage import (
    InMemoryAprPeriodRepository,
    InMemoryLedgerRepository,
    InMemoryPositionStore,
    InMemorySyncStateStore,
)

T0 = datetime(2024, 1, 1, tzinfo=UTC)
USDC = TokenInfo("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", "USDC", 6)
USDT = TokenInfo("0xdac17f958d2ee523a2206206994597c13d831ec7", "USDT", 6)
POOL_ADDRESS = "0x3416cf6c708da44db2624d63ea0aaef7113527c6"
TOKEN_ID = 42
CHAIN_ID = 1


def make_raw_event(
    event_type: RawEventType,
    block: int,
    *,
    day: float = 0,
    amount0: int = 0,
    amount1: int = 0,
    liquidity: int | None = None,
    tx_index: int = 0,
    log_index: int = 0,
    token_id: int = TOKEN_ID,
    tx_hash: str | None = None,
) -> RawPositionEvent:
    is_collect = event_type is RawEventType.COLLECT
    return RawPositionEvent(
        event_type=event_type,
        chain_id=CHAIN_ID,
        token_id=token_id,
        block_number=block,
        transaction_index=tx_index,
        log_index=log_index,
        transaction_hash=tx_hash or f"0x{block:064x}",
        timestamp=T0 + timedelta(days=day),
        amount0=amount0,
        amount1=amount1,
        liquidity=None if is_collect else liquidity,
        recipient="0x000000000000000000000000000000000000beef" if is_collect else None,
    )


# ---------- collaborators ----------


class ScriptedEventSource:
    """Returns a fixed event list, filtered like a real source would."""

    def __init__(self, events: list[RawPositionEvent] | None = None) -> None:
        self.events = list(events or [])
        self.calls: list[tuple[int, int, int, int]] = []
        self.error: Exception | None = None

    async def fetch_events(self, chain_id: int, token_id: int, *, from_block: int, to_block: int):
        self.calls.append((chain_id, token_id, from_block, to_block))
        if self.error is not None:
            raise self.error
        # reversed on purpose: callers must not rely on source order
        return [
            e
            for e in reversed(self.events)
            if e.token_id == token_id and from_block <= e.block_number <= to_block
        ]


class FixedPriceProvider:
    def __init__(self, sqrt_price_x96: int = Q96) -> None:
        self.sqrt_price_x96 = sqrt_price_x96
        self.overrides: dict[int, int] = {}
        self.calls: list[int] = []

    async def price_at(self, chain_id: int, pool_address: str, block_number: int) -> HistoricPrice:
        self.calls.append(block_number)
        sqrt = self.overrides.get(block_number, self.sqrt_price_x96)
        return HistoricPrice(sqrt_price_x96=sqrt, timestamp=T0, block_number=block_number)


class FixedFinalizedBlock:
    def __init__(self, block: int | None = 1_000) -> None:
        self.block = block

    async def last_finalized_block(self, chain_id: int) -> int | None:
        return self.block


class StaticStateReader:
    def __init__(self, state: PositionChainState) -> None:
        self.state = state

    async def read(self, position: PositionRecord) -> PositionChainState:
        return self.state


@dataclass
class LedgerEnv:
    """In-memory wiring of every collaborator `LedgerSyncService` needs."""

    position: PositionRecord
    events: ScriptedEventSource
    prices: FixedPriceProvider = field(default_factory=FixedPriceProvider)
    finalized: FixedFinalizedBlock = field(default_factory=FixedFinalizedBlock)
    ledger: InMemoryLedgerRepository = field(default_factory=InMemoryLedgerRepository)
    apr_periods: InMemoryAprPeriodRepository = field(default_factory=InMemoryAprPeriodRepository)
    sync_state: InMemorySyncStateStore = field(default_factory=InMemorySyncStateStore)
    positions: InMemoryPositionStore = field(init=False)

    def __post_init__(self) -> None:
        self.positions = InMemoryPositionStore([self.position])

    def service(self, *, reader=None, concurrency: int = 4) -> LedgerSyncService:
        apr = PositionAprService(self.ledger, self.apr_periods)
        snapshots = PositionSnapshotService(self.ledger, self.positions, reader) if reader else None
        return LedgerSyncService(
            events=self.events,
            prices=self.prices,
            finalized=self.finalized,
            ledger=self.ledger,
            positions=self.positions,
            sync_state=self.sync_state,
            apr=apr,
            snapshots=snapshots,
            config=SyncConfig(deployment_blocks={CHAIN_ID: 50}, concurrency=concurrency, sync_by="tests"),
        )


# ---------- fixtures ----------


@pytest.fixture
def mock_rpc():
    rpc = AsyncMock()
    rpc.get_logs = AsyncMock(return_value=[])
    rpc.latest_block = AsyncMock(return_value=1_000)
    rpc.finalized_block = AsyncMock(return_value=990)
    rpc.block_timestamp = AsyncMock(return_value=int(T0.timestamp()))
    rpc.aclose = AsyncMock()
    return rpc


@pytest.fixture
def raw_event() -> Callable[..., RawPositionEvent]:
    return make_raw_event


@pytest.fixture
def pool() -> PoolMetadata:
    """USDC/USDT at sqrtP = 2**96: one raw unit of each token is worth one of the other."""
    return PoolMetadata(pool_address=POOL_ADDRESS, token0=USDC, token1=USDT, is_token0_quote=True)


@pytest.fixture
def position() -> PositionRecord:
    return PositionRecord(
        id="pos-1",
        protocol=UNISWAPV3_PROTOCOL,
        chain_id=CHAIN_ID,
        nft_id=TOKEN_ID,
        pool_address=POOL_ADDRESS,
        token0=USDC,
        token1=USDT,
        is_token0_quote=True,
        tick_lower=-600,
        tick_upper=600,
    )


@pytest.fixture
def scenario() -> list[RawPositionEvent]:
    """INCREASE 2000, DECREASE half for 1100, COLLECT principal plus 20 of fees."""
    return [
        make_raw_event(
            RawEventType.INCREASE_LIQUIDITY, 100, day=0,
            liquidity=10**18, amount0=1_000_000_000, amount1=1_000_000_000,
        ),
        make_raw_event(
            RawEventType.DECREASE_LIQUIDITY, 200, day=10,
            liquidity=5 * 10**17, amount0=550_000_000, amount1=550_000_000,
        ),
        make_raw_event(RawEventType.COLLECT, 300, day=20, amount0=560_000_000, amount1=560_000_000),
    ]


@pytest.fixture
def env(position: PositionRecord, scenario: list[RawPositionEvent]) -> LedgerEnv:
    return LedgerEnv(position=position, events=ScriptedEventSource(scenario))


@pytest.fixture
def chain(scenario: list[RawPositionEvent], pool: PoolMetadata) -> list[LedgerEvent]:
    """The scenario replayed into linked ledger events, oldest first."""
    adapter = get_adapter(UNISWAPV3_PROTOCOL)
    price = HistoricPrice(sqrt_price_x96=Q96, timestamp=T0, block_number=0)
    out: list[LedgerEvent] = []
    previous: LedgerEvent | None = None
    for i, raw in enumerate(scenario):
        processed = adapter.process_event(adapter.running_state(previous), raw, price, pool)
        previous = LedgerEvent.from_processed(
            processed,
            id=f"e{i}",
            position_id="pos-1",
            previous_id=previous.id if previous else None,
            protocol=adapter.protocol,
            input_hash=adapter.compute_input_hash(processed),
        )
        out.append(previous)
    return out
