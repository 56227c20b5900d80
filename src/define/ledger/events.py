"""Raw event ordering, deduplication and missing-event reconciliation."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from define.core.models import BlockCoordinate, RawPositionEvent

logger = logging.getLogger(__name__)


def sort_events(events: Iterable[RawPositionEvent]) -> list[RawPositionEvent]:
    """Ascending by (block number, transaction index, log index)."""
    return sorted(events, key=lambda e: e.coordinate)


def merge_events(
    primary: Sequence[RawPositionEvent],
    missing: Sequence[RawPositionEvent],
) -> list[RawPositionEvent]:
    """Union of both sources, deduplicated by coordinate, sorted ascending.

    The first event seen for a coordinate wins, and the primary source is
    read first. Conflicting payloads for one coordinate are logged.
    """
    by_coordinate: dict[BlockCoordinate, RawPositionEvent] = {}
    for event in (*primary, *missing):
        kept = by_coordinate.get(event.coordinate)
        if kept is None:
            by_coordinate[event.coordinate] = event
        elif kept != event:
            logger.warning(
                "Conflicting events at %s (tx %s); keeping first-seen %s",
                event.coordinate,
                event.transaction_hash,
                kept.event_type.value,
            )
    return sort_events(by_coordinate.values())


def confirmed_missing_tx_hashes(
    missing: Sequence[RawPositionEvent],
    fetched: Sequence[RawPositionEvent],
) -> set[str]:
    """Transaction hashes of missing events the primary source now returns.

    Matching is on (block number, transaction index); log indexes may differ
    between sources for the same transaction.
    """
    fetched_keys = {(e.block_number, e.transaction_index) for e in fetched}
    return {
        e.transaction_hash
        for e in missing
        if (e.block_number, e.transaction_index) in fetched_keys
    }


def prune_missing(
    missing: Sequence[RawPositionEvent],
    confirmed_tx_hashes: set[str],
) -> tuple[RawPositionEvent, ...]:
    return tuple(e for e in missing if e.transaction_hash not in confirmed_tx_hashes)
