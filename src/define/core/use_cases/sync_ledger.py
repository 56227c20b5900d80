from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime

from define.adapters import get_adapter
from define.core.config import SyncConfig
from define.core.interfaces import (
    IChainEventSource,
    IFinalizedBlockResolver,
    IHistoricPriceProvider,
    ILedgerRepository,
    IPositionStore,
    ISyncStateStore,
)
from define.core.locks import KeyedLocks
from define.core.models import (
    BlockCoordinate,
    HistoricPrice,
    LedgerEvent,
    PositionRecord,
    RawPositionEvent,
    SyncRequest,
    SyncResult,
)
from define.core.use_cases.position_apr import PositionAprService
from define.core.use_cases.position_summary import PositionSnapshotService
from define.errors import InvalidArgument, SyncError
from define.ledger.events import confirmed_missing_tx_hashes, merge_events, prune_missing

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Block range
# ---------------------------------------------------------------------------


def plan_from_block(
    *,
    force_full_resync: bool,
    latest: LedgerEvent | None,
    deployment_block: int,
    finalized_block: int,
) -> int:
    """First block whose events are (re)processed.

    Without a forced resync the latest event's block is re-fetched, which
    picks up events that landed later in that same block.
    """
    if force_full_resync:
        return deployment_block
    if latest is not None:
        return latest.block_number
    return min(deployment_block, finalized_block)


# ---------------------------------------------------------------------------
# Domain service: LedgerSyncService
# ---------------------------------------------------------------------------


class LedgerSyncService:
    """
    Brings a position's ledger in line with finalized chain history.

    A sync truncates the ledger from `from_block` and replays every event in
    `[from_block, finalized_block]` through the position's protocol adapter.
    Fetching and price lookups happen first; truncation and replay then run
    in one repository transaction, so a failed sync leaves the previous
    chain untouched.

    APR periods are recomputed after every successful sync. Saving the sync
    state and refreshing the snapshot are non-critical: failures are logged
    and do not fail the sync.
    """

    def __init__(
        self,
        *,
        events: IChainEventSource,
        prices: IHistoricPriceProvider,
        finalized: IFinalizedBlockResolver,
        ledger: ILedgerRepository,
        positions: IPositionStore,
        sync_state: ISyncStateStore,
        apr: PositionAprService,
        snapshots: PositionSnapshotService | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        self._events = events
        self._prices = prices
        self._finalized = finalized
        self._ledger = ledger
        self._positions = positions
        self._sync_state = sync_state
        self._apr = apr
        self._snapshots = snapshots
        self.config = config or SyncConfig()
        self._locks = KeyedLocks()

    # --- collaborators (errors become SyncError) ---

    async def _position(self, position_id: str, chain_id: int) -> PositionRecord:
        position = await self._positions.get(position_id)
        if position is None:
            raise SyncError(f"Unknown position {position_id}")
        if position.chain_id != chain_id:
            raise SyncError(f"Position {position_id} is on chain {position.chain_id}, not {chain_id}")
        return position

    async def _finalized_block(self, chain_id: int) -> int:
        try:
            block = await self._finalized.last_finalized_block(chain_id)
        except Exception as e:
            raise SyncError(f"Finalized block lookup failed for chain {chain_id}") from e
        if block is None:
            raise SyncError(f"No finalized block available for chain {chain_id}")
        return block

    async def _fetch(self, chain_id: int, token_id: int, from_block: int, to_block: int) -> list[RawPositionEvent]:
        try:
            return await self._events.fetch_events(chain_id, token_id, from_block=from_block, to_block=to_block)
        except Exception as e:
            raise SyncError(
                f"Event source failed for token {token_id} on chain {chain_id} ({from_block}-{to_block})"
            ) from e

    async def _prices_for(
        self, chain_id: int, pool_address: str, events: Sequence[RawPositionEvent]
    ) -> dict[int, HistoricPrice]:
        prices: dict[int, HistoricPrice] = {}
        for event in events:
            if event.block_number in prices:
                continue
            try:
                prices[event.block_number] = await self._prices.price_at(chain_id, pool_address, event.block_number)
            except Exception as e:
                raise SyncError(f"Price lookup failed for {pool_address} at block {event.block_number}") from e
        return prices

    # --- sync ---

    async def sync(
        self,
        position_id: str,
        chain_id: int,
        protocol_position_id: int,
        *,
        force_full_resync: bool = False,
    ) -> SyncResult:
        async with self._locks.hold(position_id):
            return await self._sync_locked(position_id, chain_id, protocol_position_id, force_full_resync)

    async def _sync_locked(
        self,
        position_id: str,
        chain_id: int,
        token_id: int,
        force_full_resync: bool,
    ) -> SyncResult:
        position = await self._position(position_id, chain_id)
        adapter = get_adapter(position.protocol)
        pool = position.pool

        # 1) finalized head
        finalized_block = await self._finalized_block(chain_id)

        # 2) starting point
        from_block = plan_from_block(
            force_full_resync=force_full_resync,
            latest=await self._ledger.latest(position_id),
            deployment_block=self.config.deployment_block(chain_id),
            finalized_block=finalized_block,
        )
        logger.info(
            "sync %s (token %d, chain %d): blocks %d-%d%s",
            position_id, token_id, chain_id, from_block, finalized_block,
            " [full resync]" if force_full_resync else "",
        )

        # 3) inputs: primary source + buffered missing events, then prices
        fetched = await self._fetch(chain_id, token_id, from_block, finalized_block)
        sync_state = await self._sync_state.get(position_id)
        raw_events = [
            e
            for e in merge_events(fetched, sync_state.missing_events)
            if e.token_id == token_id
            and e.chain_id == chain_id
            and from_block <= e.block_number <= finalized_block
        ]
        prices = await self._prices_for(chain_id, pool.pool_address, raw_events)

        # 4) truncate + replay, atomically
        async with self._ledger.transaction(position_id) as tx:
            removed = await tx.delete_tail(BlockCoordinate.at_block(from_block))
            previous = await tx.latest()
            running = adapter.running_state(previous)
            for raw in raw_events:
                processed = adapter.process_event(running, raw, prices[raw.block_number], pool)
                previous = await tx.append(
                    processed,
                    protocol=adapter.protocol,
                    previous_id=previous.id if previous else None,
                )
                running = adapter.running_state(previous)
                logger.debug(
                    "%s %s at %s: cost_basis=%d pnl=%d",
                    position_id, processed.event_type.value, processed.coordinate,
                    processed.cost_basis_after, processed.pnl_after,
                )

        # 5) APR periods depend on elapsed time, so always recompute
        await self._apr.refresh(position_id)

        # 6) non-critical bookkeeping
        await self._save_sync_state(position_id, fetched)
        await self._refresh_snapshot(position_id)

        logger.info(
            "sync %s done: removed=%d added=%d finalized=%d",
            position_id, removed, len(raw_events), finalized_block,
        )
        return SyncResult(events_added=len(raw_events), from_block=from_block, finalized_block=finalized_block)

    async def _save_sync_state(self, position_id: str, fetched: Sequence[RawPositionEvent]) -> None:
        try:
            state = await self._sync_state.get(position_id)
            confirmed = confirmed_missing_tx_hashes(state.missing_events, fetched)
            if confirmed:
                logger.info("%d missing events of %s now confirmed by the event source", len(confirmed), position_id)
            await self._sync_state.save(
                position_id,
                replace(
                    state,
                    last_sync_at=datetime.now(UTC),
                    last_sync_by=self.config.sync_by,
                    missing_events=prune_missing(state.missing_events, confirmed),
                ),
            )
        except Exception:
            logger.warning("failed to save sync state for %s", position_id, exc_info=True)

    async def _refresh_snapshot(self, position_id: str) -> None:
        if self._snapshots is None:
            return
        try:
            await self._snapshots.refresh(position_id)
        except Exception:
            logger.warning("snapshot refresh failed for %s; keeping previous snapshot", position_id, exc_info=True)

    async def sync_many(self, requests: Sequence[SyncRequest]) -> list[SyncResult | BaseException]:
        """Sync several positions concurrently; results (or errors) follow `requests` order."""
        sem = asyncio.Semaphore(self.config.concurrency)

        async def one(req: SyncRequest) -> SyncResult:
            async with sem:
                return await self.sync(
                    req.position_id,
                    req.chain_id,
                    req.protocol_position_id,
                    force_full_resync=req.force_full_resync,
                )

        results = await asyncio.gather(*(one(r) for r in requests), return_exceptions=True)
        for req, res in zip(requests, results):
            if isinstance(res, BaseException):
                logger.error("sync %s failed: %s", req.position_id, res)
        return list(results)

    # --- ledger access ---

    async def list_ledger(self, position_id: str) -> list[LedgerEvent]:
        """Ledger events, newest first."""
        return await self._ledger.list_descending(position_id)

    async def delete_ledger(self, position_id: str) -> int:
        """Remove the ledger and its APR periods; a no-op when nothing is stored."""
        async with self._locks.hold(position_id):
            removed = await self._ledger.delete_all(position_id)
            await self._apr.clear(position_id)
        logger.info("deleted %d ledger events of %s", removed, position_id)
        return removed

    async def add_missing_event(self, position_id: str, event: RawPositionEvent) -> bool:
        """Buffer an event reported by a secondary source; False if already buffered.

        Raises `InvalidArgument` when the event belongs to another token or chain.
        """
        position = await self._positions.get(position_id)
        if position is None:
            raise SyncError(f"Unknown position {position_id}")
        if (event.chain_id, event.token_id) != (position.chain_id, position.nft_id):
            raise InvalidArgument(
                f"Event for token {event.token_id} on chain {event.chain_id} does not belong to "
                f"{position_id} (token {position.nft_id} on chain {position.chain_id})"
            )
        async with self._locks.hold(position_id):
            state = await self._sync_state.get(position_id)
            if any(e.coordinate == event.coordinate for e in state.missing_events):
                return False
            await self._sync_state.save(
                position_id, replace(state, missing_events=(*state.missing_events, event))
            )
        logger.info("buffered missing %s event for %s at %s", event.event_type.value, position_id, event.coordinate)
        return True
