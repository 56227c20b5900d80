"""Row codec: LedgerEvent / AprPeriod <-> flat storage rows.

This is the only place where integers become decimal strings and back.
Timestamps are stored as integer epoch microseconds (UTC).
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from define.adapters import get_adapter
from define.core.models import AprPeriod, LedgerEvent, LedgerEventType, Reward

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_US = timedelta(microseconds=1)

# === Column layouts ===

LEDGER_COLUMNS: list[str] = [
    "id",
    "position_id",
    "previous_id",
    "protocol",
    "input_hash",
    "event_type",
    "timestamp_us",
    "block_number",
    "transaction_index",
    "log_index",
    "transaction_hash",
    "pool_price",
    "token0_amount",
    "token1_amount",
    "token_value",
    "rewards",
    "delta_cost_basis",
    "cost_basis_after",
    "delta_pnl",
    "pnl_after",
    "config",
    "state",
]

APR_COLUMNS: list[str] = [
    "position_id",
    "start_event_id",
    "end_event_id",
    "start_us",
    "end_us",
    "duration_seconds",
    "cost_basis",
    "collected_fee_value",
    "apr_bps",
    "event_count",
]


# === Scalars ===


def to_epoch_us(ts: datetime) -> int:
    return (ts - _EPOCH) // _ONE_US


def from_epoch_us(us: int) -> datetime:
    return _EPOCH + timedelta(microseconds=us)


def encode_int(value: int) -> str:
    return str(value)


def decode_int(value: str | int) -> int:
    return int(value)


# === Ledger events ===


def rewards_to_json(rewards: tuple[Reward, ...]) -> str:
    return json.dumps(
        [
            {"token_id": r.token_id, "token_amount": encode_int(r.token_amount), "token_value": encode_int(r.token_value)}
            for r in rewards
        ],
        separators=(",", ":"),
    )


def rewards_from_json(raw: str) -> tuple[Reward, ...]:
    return tuple(
        Reward(r["token_id"], decode_int(r["token_amount"]), decode_int(r["token_value"]))
        for r in json.loads(raw)
    )


def event_to_row(event: LedgerEvent) -> dict[str, Any]:
    adapter = get_adapter(event.protocol)
    return {
        "id": event.id,
        "position_id": event.position_id,
        "previous_id": event.previous_id,
        "protocol": event.protocol,
        "input_hash": event.input_hash,
        "event_type": event.event_type.value,
        "timestamp_us": to_epoch_us(event.timestamp),
        "block_number": event.block_number,
        "transaction_index": event.transaction_index,
        "log_index": event.log_index,
        "transaction_hash": event.transaction_hash,
        "pool_price": encode_int(event.pool_price),
        "token0_amount": encode_int(event.token0_amount),
        "token1_amount": encode_int(event.token1_amount),
        "token_value": encode_int(event.token_value),
        "rewards": rewards_to_json(event.rewards),
        "delta_cost_basis": encode_int(event.delta_cost_basis),
        "cost_basis_after": encode_int(event.cost_basis_after),
        "delta_pnl": encode_int(event.delta_pnl),
        "pnl_after": encode_int(event.pnl_after),
        "config": json.dumps(adapter.serialize_config(event.config), separators=(",", ":")),
        "state": json.dumps(adapter.serialize_state(event.state), separators=(",", ":")),
    }


def row_to_event(row: Mapping[str, Any]) -> LedgerEvent:
    adapter = get_adapter(row["protocol"])
    return LedgerEvent(
        id=row["id"],
        position_id=row["position_id"],
        previous_id=row["previous_id"],
        protocol=row["protocol"],
        input_hash=row["input_hash"],
        event_type=LedgerEventType(row["event_type"]),
        timestamp=from_epoch_us(int(row["timestamp_us"])),
        block_number=int(row["block_number"]),
        transaction_index=int(row["transaction_index"]),
        log_index=int(row["log_index"]),
        transaction_hash=row["transaction_hash"],
        pool_price=decode_int(row["pool_price"]),
        token0_amount=decode_int(row["token0_amount"]),
        token1_amount=decode_int(row["token1_amount"]),
        token_value=decode_int(row["token_value"]),
        rewards=rewards_from_json(row["rewards"]),
        delta_cost_basis=decode_int(row["delta_cost_basis"]),
        cost_basis_after=decode_int(row["cost_basis_after"]),
        delta_pnl=decode_int(row["delta_pnl"]),
        pnl_after=decode_int(row["pnl_after"]),
        config=adapter.parse_config(json.loads(row["config"])),
        state=adapter.parse_state(json.loads(row["state"])),
    )


# === APR periods ===


def apr_period_to_row(period: AprPeriod) -> dict[str, Any]:
    return {
        "position_id": period.position_id,
        "start_event_id": period.start_event_id,
        "end_event_id": period.end_event_id,
        "start_us": to_epoch_us(period.start_timestamp),
        "end_us": to_epoch_us(period.end_timestamp),
        "duration_seconds": period.duration_seconds,
        "cost_basis": encode_int(period.cost_basis),
        "collected_fee_value": encode_int(period.collected_fee_value),
        "apr_bps": period.apr_bps,
        "event_count": period.event_count,
    }


def row_to_apr_period(row: Mapping[str, Any]) -> AprPeriod:
    return AprPeriod(
        position_id=row["position_id"],
        start_event_id=row["start_event_id"],
        end_event_id=row["end_event_id"],
        start_timestamp=from_epoch_us(int(row["start_us"])),
        end_timestamp=from_epoch_us(int(row["end_us"])),
        duration_seconds=int(row["duration_seconds"]),
        cost_basis=decode_int(row["cost_basis"]),
        collected_fee_value=decode_int(row["collected_fee_value"]),
        apr_bps=int(row["apr_bps"]),
        event_count=int(row["event_count"]),
    )
