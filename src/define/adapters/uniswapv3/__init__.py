from define.adapters.uniswapv3.adapter import UniswapV3Adapter
from define.adapters.uniswapv3.models import UniswapV3LedgerConfig, UniswapV3LedgerState
from define.adapters.uniswapv3.processors import (
    process_collect,
    process_decrease,
    process_event,
    process_increase,
)

__all__ = [
    "UniswapV3Adapter",
    "UniswapV3LedgerConfig",
    "UniswapV3LedgerState",
    "process_collect",
    "process_decrease",
    "process_event",
    "process_increase",
]
