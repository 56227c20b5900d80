from __future__ import annotations

import hashlib
from typing import Any

from pydantic import ValidationError

from define.adapters.uniswapv3.models import (
    ConfigPayload,
    StatePayload,
    UniswapV3LedgerConfig,
    UniswapV3LedgerState,
)
from define.adapters.uniswapv3.processors import process_event
from define.constants import UNISWAPV3_PROTOCOL
from define.core.interfaces import IProtocolAdapter
from define.core.models import (
    HistoricPrice,
    LedgerEvent,
    PoolMetadata,
    ProcessedEvent,
    RawPositionEvent,
    RunningState,
    ZERO_STATE,
)
from define.errors import ProtocolError


class UniswapV3Adapter(IProtocolAdapter):
    """
    Ledger adapter for Uniswap V3 NonfungiblePositionManager positions.

    Serialized payloads keep every integer that can exceed 64 bits as a
    decimal string; parsing goes through pydantic so malformed rows fail
    loudly with `ProtocolError`.
    """

    protocol = UNISWAPV3_PROTOCOL

    # --- config ---

    def parse_config(self, payload: dict[str, Any]) -> UniswapV3LedgerConfig:
        model = _validate(ConfigPayload, payload, self.protocol)
        return UniswapV3LedgerConfig(**model.model_dump(exclude={"protocol"}))

    def serialize_config(self, config: UniswapV3LedgerConfig) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "chain_id": config.chain_id,
            "nft_id": str(config.nft_id),
            "pool_address": config.pool_address,
            "block_number": config.block_number,
            "tx_index": config.tx_index,
            "log_index": config.log_index,
            "tx_hash": config.tx_hash,
        }

    # --- state ---

    def parse_state(self, payload: dict[str, Any]) -> UniswapV3LedgerState:
        model = _validate(StatePayload, payload, self.protocol)
        return UniswapV3LedgerState(**model.model_dump(exclude={"protocol"}))

    def serialize_state(self, state: UniswapV3LedgerState) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "delta_l": str(state.delta_l),
            "liquidity_after": str(state.liquidity_after),
            "sqrt_price_x96": str(state.sqrt_price_x96),
            "fees_collected0": str(state.fees_collected0),
            "fees_collected1": str(state.fees_collected1),
            "uncollected_principal0_after": str(state.uncollected_principal0_after),
            "uncollected_principal1_after": str(state.uncollected_principal1_after),
            "recipient": state.recipient,
        }

    # --- ledger hooks ---

    def compute_input_hash(self, processed: ProcessedEvent) -> str:
        key = f"{processed.block_number}-{processed.transaction_index}-{processed.log_index}"
        return hashlib.md5(key.encode()).hexdigest()

    def process_event(
        self,
        previous: RunningState,
        raw: RawPositionEvent,
        price: HistoricPrice,
        pool: PoolMetadata,
    ) -> ProcessedEvent:
        return process_event(previous, raw, price, pool)

    def running_state(self, event: LedgerEvent | None) -> RunningState:
        if event is None:
            return ZERO_STATE
        state = event.state
        if not isinstance(state, UniswapV3LedgerState):
            raise ProtocolError(f"Ledger event {event.id} does not carry a {self.protocol} state")
        return RunningState(
            liquidity=state.liquidity_after,
            cost_basis=event.cost_basis_after,
            pnl=event.pnl_after,
            uncollected_principal0=state.uncollected_principal0_after,
            uncollected_principal1=state.uncollected_principal1_after,
        )


def _validate(model_cls, payload: dict[str, Any], protocol: str):
    tag = payload.get("protocol", protocol)
    if tag != protocol:
        raise ProtocolError(f"Expected {protocol} payload, got {tag!r}")
    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        raise ProtocolError(f"Malformed {protocol} payload: {e}") from e
