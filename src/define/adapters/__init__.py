"""Protocol adapter registry.

The ledger engine is protocol-agnostic; everything protocol-specific is
reached through `get_adapter(protocol)`.
"""

from __future__ import annotations

from define.adapters.uniswapv3 import UniswapV3Adapter
from define.core.interfaces import IProtocolAdapter
from define.errors import ProtocolError

_ADAPTERS: dict[str, IProtocolAdapter] = {
    UniswapV3Adapter.protocol: UniswapV3Adapter(),
}


def get_adapter(protocol: str) -> IProtocolAdapter:
    try:
        return _ADAPTERS[protocol]
    except KeyError:
        raise ProtocolError(f"No ledger adapter registered for protocol {protocol!r}") from None
