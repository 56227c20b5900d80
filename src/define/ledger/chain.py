"""Ledger chain integrity rules.

`validate_append` is enforced by every repository before a write;
`verify_chain` audits a whole persisted chain after the fact.
"""

from __future__ import annotations

from collections.abc import Iterable

from define.core.models import LedgerEvent, ProcessedEvent
from define.errors import DuplicateEventError, SequenceError


def validate_append(
    *,
    position_id: str,
    protocol: str,
    processed: ProcessedEvent,
    previous_id: str | None,
    previous: LedgerEvent | None,
    tail: LedgerEvent | None,
    input_hash: str,
    hash_exists: bool,
) -> None:
    """Raise `SequenceError` unless `processed` may be linked after `previous_id`.

    `previous` is the stored event with id `previous_id` (None if absent or
    not requested), `tail` the position's current newest event.
    """
    coordinate = processed.coordinate

    if hash_exists:
        raise DuplicateEventError(
            f"Event with input hash {input_hash} already exists for position {position_id}",
            coordinate=coordinate,
        )

    if previous_id is None:
        if tail is not None:
            raise SequenceError(
                f"Position {position_id} already has a chain root; previous_id is required",
                coordinate=coordinate,
            )
        return

    if previous is None:
        raise SequenceError(f"Previous event {previous_id} not found", coordinate=coordinate)
    if previous.position_id != position_id:
        raise SequenceError(
            f"Previous event {previous_id} belongs to position {previous.position_id}, not {position_id}",
            coordinate=coordinate,
        )
    if previous.protocol != protocol:
        raise SequenceError(
            f"Previous event {previous_id} has protocol {previous.protocol}, expected {protocol}",
            coordinate=coordinate,
        )
    if tail is None or tail.id != previous_id:
        raise SequenceError(
            f"Previous event {previous_id} is not the tail of position {position_id}",
            coordinate=coordinate,
        )
    if coordinate <= previous.coordinate:
        raise SequenceError(
            f"Event does not come after previous event at {previous.coordinate}",
            coordinate=coordinate,
        )


def verify_chain(events: Iterable[LedgerEvent]) -> int:
    """Check linkage, ordering and running-total conservation of one position's chain.

    Returns the number of events checked.
    """
    ordered = sorted(events, key=lambda e: e.coordinate)
    seen_hashes: set[str] = set()
    prior: LedgerEvent | None = None

    for event in ordered:
        if event.input_hash in seen_hashes:
            raise DuplicateEventError(f"Duplicate input hash {event.input_hash}", coordinate=event.coordinate)
        seen_hashes.add(event.input_hash)

        if prior is None:
            if event.previous_id is not None:
                raise SequenceError("Chain root must not have a previous event", coordinate=event.coordinate)
            if event.delta_cost_basis != event.cost_basis_after or event.delta_pnl != event.pnl_after:
                raise SequenceError("Chain root running totals must equal its deltas", coordinate=event.coordinate)
        else:
            if event.previous_id != prior.id:
                raise SequenceError(
                    f"Broken link: expected previous {prior.id}, got {event.previous_id}",
                    coordinate=event.coordinate,
                )
            if event.position_id != prior.position_id or event.protocol != prior.protocol:
                raise SequenceError("Cross-position or cross-protocol link", coordinate=event.coordinate)
            if event.coordinate <= prior.coordinate:
                raise SequenceError("Coordinates are not strictly increasing", coordinate=event.coordinate)
            if event.cost_basis_after != prior.cost_basis_after + event.delta_cost_basis:
                raise SequenceError("Cost basis is not conserved", coordinate=event.coordinate)
            if event.pnl_after != prior.pnl_after + event.delta_pnl:
                raise SequenceError("PnL is not conserved", coordinate=event.coordinate)
        prior = event

    return len(ordered)
