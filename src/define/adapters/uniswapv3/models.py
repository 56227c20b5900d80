"""Uniswap V3 ledger payloads.

`UniswapV3LedgerConfig` identifies the on-chain event that produced a ledger
entry; `UniswapV3LedgerState` records the position state right after it.
Both are tagged with `protocol` so persisted rows can be dispatched back to
this adapter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from pydantic import BaseModel, ConfigDict

from define.constants import UNISWAPV3_PROTOCOL


@dataclass(frozen=True, kw_only=True)
class UniswapV3LedgerConfig:
    protocol: ClassVar[str] = UNISWAPV3_PROTOCOL

    chain_id: int
    nft_id: int
    pool_address: str
    block_number: int
    tx_index: int
    log_index: int
    tx_hash: str


@dataclass(frozen=True, kw_only=True)
class UniswapV3LedgerState:
    protocol: ClassVar[str] = UNISWAPV3_PROTOCOL

    delta_l: int
    liquidity_after: int
    sqrt_price_x96: int
    fees_collected0: int = 0
    fees_collected1: int = 0
    uncollected_principal0_after: int = 0
    uncollected_principal1_after: int = 0
    recipient: str | None = None


# === Wire schemas (validated on parse) ===


class ConfigPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    protocol: str = UNISWAPV3_PROTOCOL
    chain_id: int
    nft_id: int
    pool_address: str
    block_number: int
    tx_index: int
    log_index: int
    tx_hash: str


class StatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    protocol: str = UNISWAPV3_PROTOCOL
    delta_l: int
    liquidity_after: int
    sqrt_price_x96: int
    fees_collected0: int = 0
    fees_collected1: int = 0
    uncollected_principal0_after: int = 0
    uncollected_principal1_after: int = 0
    recipient: str | None = None
