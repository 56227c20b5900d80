"""Shared append / truncate logic for ledger repositories.

Concrete repositories only provide row-level primitives; chain validation
and input-hash assignment live here so every backend enforces the same rules.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager

from define.adapters import get_adapter
from define.core.interfaces import ILedgerRepository, ILedgerWriter
from define.core.models import BlockCoordinate, LedgerEvent, ProcessedEvent
from define.errors import SequenceError
from define.ledger.chain import validate_append


class LedgerWriterBase(ILedgerWriter, ABC):
    """Write operations for one position inside one open transaction."""

    def __init__(self, position_id: str) -> None:
        self.position_id = position_id

    # --- backend primitives ---

    @abstractmethod
    async def _get(self, event_id: str) -> LedgerEvent | None:
        """Look up any event by id, across positions."""

    @abstractmethod
    async def _hash_exists(self, input_hash: str) -> bool:
        ...

    @abstractmethod
    async def _insert(self, event: LedgerEvent) -> None:
        ...

    # --- ILedgerWriter ---

    async def append(
        self,
        processed: ProcessedEvent,
        *,
        protocol: str,
        previous_id: str | None,
    ) -> LedgerEvent:
        payload_protocol = getattr(processed.config, "protocol", protocol)
        if payload_protocol != protocol:
            raise SequenceError(
                f"Event payload protocol {payload_protocol} does not match {protocol}",
                coordinate=processed.coordinate,
            )

        input_hash = get_adapter(protocol).compute_input_hash(processed)
        previous = await self._get(previous_id) if previous_id is not None else None
        validate_append(
            position_id=self.position_id,
            protocol=protocol,
            processed=processed,
            previous_id=previous_id,
            previous=previous,
            tail=await self.latest(),
            input_hash=input_hash,
            hash_exists=await self._hash_exists(input_hash),
        )

        event = LedgerEvent.from_processed(
            processed,
            id=uuid.uuid4().hex,
            position_id=self.position_id,
            previous_id=previous_id,
            protocol=protocol,
            input_hash=input_hash,
        )
        await self._insert(event)
        return event


class LedgerRepositoryBase(ILedgerRepository, ABC):
    """Single-operation conveniences expressed through `transaction`."""

    @abstractmethod
    def transaction(self, position_id: str) -> AbstractAsyncContextManager[ILedgerWriter]:
        ...

    @abstractmethod
    async def list_descending(self, position_id: str) -> list[LedgerEvent]:
        ...

    async def latest(self, position_id: str) -> LedgerEvent | None:
        events = await self.list_descending(position_id)
        return events[0] if events else None

    async def append(
        self,
        position_id: str,
        processed: ProcessedEvent,
        *,
        protocol: str,
        previous_id: str | None,
    ) -> LedgerEvent:
        async with self.transaction(position_id) as tx:
            return await tx.append(processed, protocol=protocol, previous_id=previous_id)

    async def delete_tail(self, position_id: str, from_coordinate: BlockCoordinate) -> int:
        async with self.transaction(position_id) as tx:
            return await tx.delete_tail(from_coordinate)

    async def delete_all(self, position_id: str) -> int:
        async with self.transaction(position_id) as tx:
            return await tx.delete_all()
