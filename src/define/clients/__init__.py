from define.clients.nfpm import (
    NfpmEventSource,
    RpcFinalizedBlockResolver,
    RpcPoolPriceProvider,
    RpcPositionStateReader,
    selector,
)
from define.clients.rpc import RPC, RpcError, iter_chunks, topics_param, uint_topic

__all__ = [
    "NfpmEventSource",
    "RpcFinalizedBlockResolver",
    "RpcPoolPriceProvider",
    "RpcPositionStateReader",
    "selector",
    "RPC",
    "RpcError",
    "iter_chunks",
    "topics_param",
    "uint_topic",
]
