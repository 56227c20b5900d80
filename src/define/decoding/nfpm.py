"""NonfungiblePositionManager log → `RawPositionEvent` mapping."""

from __future__ import annotations

from datetime import datetime

from define.constants import NFPM_EVENT_SIGNATURES
from define.core.models import RawEventType, RawPositionEvent
from define.decoding.decoder import DecodedLog
from define.decoding.signatures import make_registry
from define.decoding.specs import EventRegistry

_EVENT_TYPES: dict[str, RawEventType] = {
    "IncreaseLiquidity": RawEventType.INCREASE_LIQUIDITY,
    "DecreaseLiquidity": RawEventType.DECREASE_LIQUIDITY,
    "Collect": RawEventType.COLLECT,
}


def make_nfpm_registry() -> EventRegistry:
    return make_registry(NFPM_EVENT_SIGNATURES)


def to_raw_event(decoded: DecodedLog, *, chain_id: int, timestamp: datetime) -> RawPositionEvent:
    """Build a `RawPositionEvent` from a decoded NFPM log.

    Raises ValueError for events outside the NFPM set.
    """
    event_type = _EVENT_TYPES.get(decoded.name)
    if event_type is None:
        raise ValueError(f"Unsupported NFPM event: {decoded.name}")

    v = decoded.values
    log = decoded.log
    is_collect = event_type is RawEventType.COLLECT
    return RawPositionEvent(
        event_type=event_type,
        chain_id=chain_id,
        token_id=int(v["tokenId"]),
        block_number=log.block_number,
        transaction_index=log.transaction_index,
        log_index=log.log_index,
        transaction_hash=log.tx_hash,
        timestamp=timestamp,
        amount0=int(v["amount0"]),
        amount1=int(v["amount1"]),
        liquidity=None if is_collect else int(v["liquidity"]),
        recipient=v["recipient"] if is_collect else None,
    )
