from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol, runtime_checkable

from define.core.models import (
    AprPeriod,
    BlockCoordinate,
    HistoricPrice,
    LedgerEvent,
    PoolMetadata,
    PositionChainState,
    PositionRecord,
    PositionSnapshot,
    ProcessedEvent,
    RawPositionEvent,
    RunningState,
    SyncState,
)


# ---------------------------------------------------------------------------
# IChainEventSource
# ---------------------------------------------------------------------------

@runtime_checkable
class IChainEventSource(Protocol):
    """
    Provider of validated raw liquidity / collect events for one NFT position.

    Domain expectations:
    - Events carry full blockchain coordinates and a UTC timestamp.
    - Returned order is NOT guaranteed; the sync engine sorts before replay.
    - Transient failures (rate limits, timeouts) are retried by the provider;
      anything that escapes is fatal for the current sync.
    """

    async def fetch_events(
        self,
        chain_id: int,
        token_id: int,
        *,
        from_block: int,
        to_block: int,
    ) -> list[RawPositionEvent]:
        """
        Return every event for `token_id` in the inclusive block range.

        Implementations:
        - NFPM log reader over JSON-RPC (`NfpmEventSource`)
        - Explorer / indexer API client
        - Scripted in-memory source for testing
        """
        ...


# ---------------------------------------------------------------------------
# IHistoricPriceProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class IHistoricPriceProvider(Protocol):
    """
    Point-in-time pool price lookup.

    Domain expectations:
    - The price is the pool's sqrt price as of the END of `block_number`.
    - Caching is an implementation concern.
    """

    async def price_at(self, chain_id: int, pool_address: str, block_number: int) -> HistoricPrice:
        ...


# ---------------------------------------------------------------------------
# IFinalizedBlockResolver
# ---------------------------------------------------------------------------

@runtime_checkable
class IFinalizedBlockResolver(Protocol):
    """
    Resolves the latest block considered safe from reorganization.

    Returns None when the chain is unknown or the value is unavailable.
    """

    async def last_finalized_block(self, chain_id: int) -> int | None:
        ...


# ---------------------------------------------------------------------------
# IPositionStore
# ---------------------------------------------------------------------------

@runtime_checkable
class IPositionStore(Protocol):
    """
    Position metadata (pool, tokens, quote orientation) and its current snapshot.

    Domain expectations:
    - Positions are owned elsewhere; this core only reads them and writes
      back the recomputed snapshot after a sync.
    """

    async def get(self, position_id: str) -> PositionRecord | None:
        ...

    async def save_snapshot(self, position_id: str, snapshot: PositionSnapshot) -> None:
        ...


# ---------------------------------------------------------------------------
# ISyncStateStore
# ---------------------------------------------------------------------------

@runtime_checkable
class ISyncStateStore(Protocol):
    """Per-position sync bookkeeping (`lastSyncAt`, `lastSyncBy`, missing events)."""

    async def get(self, position_id: str) -> SyncState:
        """Return the stored state, or an empty `SyncState` if none exists."""
        ...

    async def save(self, position_id: str, state: SyncState) -> None:
        ...


# ---------------------------------------------------------------------------
# IPositionStateReader
# ---------------------------------------------------------------------------

@runtime_checkable
class IPositionStateReader(Protocol):
    """Reads fresh on-chain position and pool state for snapshot computation."""

    async def read(self, position: PositionRecord) -> PositionChainState:
        ...


# ---------------------------------------------------------------------------
# Ledger storage contract
# ---------------------------------------------------------------------------

@runtime_checkable
class ILedgerWriter(Protocol):
    """
    Write side of the ledger, bound to one position and one transaction.

    Domain expectations:
    - `append` validates chain linkage and assigns the input hash.
    - `delete_tail` removes every event at or after `from_coordinate`.
    - Nothing is visible to readers until the surrounding transaction commits.
    """

    async def append(
        self,
        processed: ProcessedEvent,
        *,
        protocol: str,
        previous_id: str | None,
    ) -> LedgerEvent:
        ...

    async def delete_tail(self, from_coordinate: BlockCoordinate) -> int:
        ...

    async def delete_all(self) -> int:
        ...

    async def latest(self) -> LedgerEvent | None:
        ...


@runtime_checkable
class ILedgerRepository(Protocol):
    """
    Append-only, hash-linked event chain per position.

    Domain expectations:
    - Events are never updated in place; only appended or truncated.
    - Exactly one root (previous_id is None) per non-empty position.
    - `list_descending` is the canonical read path: newest first by
      timestamp, ties broken by insertion order.
    - Writes for one position are serialized.

    Implementations:
    - InMemoryLedgerRepository (tests, scripting)
    - DuckDBLedgerRepository (file-backed)
    """

    async def append(
        self,
        position_id: str,
        processed: ProcessedEvent,
        *,
        protocol: str,
        previous_id: str | None,
    ) -> LedgerEvent:
        ...

    async def list_descending(self, position_id: str) -> list[LedgerEvent]:
        ...

    async def latest(self, position_id: str) -> LedgerEvent | None:
        ...

    async def delete_tail(self, position_id: str, from_coordinate: BlockCoordinate) -> int:
        ...

    async def delete_all(self, position_id: str) -> int:
        ...

    def transaction(self, position_id: str) -> AbstractAsyncContextManager[ILedgerWriter]:
        """
        Open an atomic unit of work for one position.

        Everything done through the yielded writer commits together when the
        block exits normally and is discarded if it raises.
        """
        ...


# ---------------------------------------------------------------------------
# IAprPeriodRepository
# ---------------------------------------------------------------------------

@runtime_checkable
class IAprPeriodRepository(Protocol):
    """Derived APR periods; always replaced wholesale for a position."""

    async def replace(self, position_id: str, periods: list[AprPeriod]) -> None:
        ...

    async def list_descending(self, position_id: str) -> list[AprPeriod]:
        ...

    async def delete_all(self, position_id: str) -> int:
        ...


# ---------------------------------------------------------------------------
# IProtocolAdapter
# ---------------------------------------------------------------------------

@runtime_checkable
class IProtocolAdapter(Protocol):
    """
    Protocol-specific half of the ledger engine.

    Domain expectations:
    - `config` / `state` payloads are tagged types owned by the adapter; the
      generic engine never looks inside them.
    - `serialize_*` produce JSON-safe dicts with big integers as decimal
      strings; `parse_*` invert them exactly.
    - `process_event` is pure: same inputs, same output.
    """

    protocol: str

    def parse_config(self, payload: dict[str, Any]) -> Any:
        ...

    def serialize_config(self, config: Any) -> dict[str, Any]:
        ...

    def parse_state(self, payload: dict[str, Any]) -> Any:
        ...

    def serialize_state(self, state: Any) -> dict[str, Any]:
        ...

    def compute_input_hash(self, processed: ProcessedEvent) -> str:
        ...

    def process_event(
        self,
        previous: RunningState,
        raw: RawPositionEvent,
        price: HistoricPrice,
        pool: PoolMetadata,
    ) -> ProcessedEvent:
        ...

    def running_state(self, event: LedgerEvent | None) -> RunningState:
        """Running totals left behind by `event` (zero state for None)."""
        ...
