"""Error hierarchy for the ledger engine.

- `InvalidArgument`: bad input to a pure financial primitive. Never retried.
- `SequenceError`: ledger chain integrity violation (fatal for the sync).
- `SyncError`: finalized block unavailable or a collaborator failed.
- `ProtocolError`: unknown protocol tag or malformed protocol payload.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from define.core.models import BlockCoordinate


class DefineError(Exception):
    """Base class for all errors raised by this package."""


class InvalidArgument(DefineError, ValueError):
    """Malformed or out-of-range input to a financial primitive."""


class SequenceError(DefineError):
    """Ledger chain integrity violation.

    `coordinate` is the blockchain coordinate of the offending event when known.
    """

    def __init__(self, message: str, *, coordinate: BlockCoordinate | None = None) -> None:
        if coordinate is not None:
            message = f"{message} (at {coordinate})"
        super().__init__(message)
        self.coordinate = coordinate


class DuplicateEventError(SequenceError):
    """An event with the same input hash already exists for the position."""


class SyncError(DefineError):
    """A position sync could not complete."""


class ProtocolError(DefineError):
    """Unknown protocol or unparseable protocol-specific payload."""
