"""JSON-RPC implementations of the chain-facing collaborators.

- `NfpmEventSource`: NFPM IncreaseLiquidity / DecreaseLiquidity / Collect logs
  for one token id, fetched in block chunks with split-on-failure retry.
- `RpcFinalizedBlockResolver`: the node's `finalized` block tag.
- `RpcPoolPriceProvider`: pool `slot0()` at a historic block.
- `RpcPositionStateReader`: NFPM `positions()` plus pool fee-growth state.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Hashable, Mapping
from datetime import UTC, datetime
from typing import Generic, TypeVar

import httpx
from eth_utils import keccak

from define.clients.rpc import RPC, RpcError, iter_chunks, uint_topic
from define.constants import NFPM_ADDRESSES
from define.core.interfaces import (
    IChainEventSource,
    IFinalizedBlockResolver,
    IHistoricPriceProvider,
    IPositionStateReader,
)
from define.core.models import EventLog, HistoricPrice, PositionChainState, PositionRecord, RawPositionEvent
from define.decoding import decode_log, make_nfpm_registry, registry_topic0s, to_raw_event, word_at
from define.decoding.decoder import parse_data_word

logger = logging.getLogger(__name__)


def selector(signature: str) -> str:
    """0x-prefixed 4-byte function selector."""
    return "0x" + keccak(text=signature)[:4].hex()


_SLOT0 = selector("slot0()")
_POSITIONS = selector("positions(uint256)")
_FEE_GROWTH_GLOBAL0 = selector("feeGrowthGlobal0X128()")
_FEE_GROWTH_GLOBAL1 = selector("feeGrowthGlobal1X128()")
_TICKS = selector("ticks(int24)")


def _encode_int(value: int) -> str:
    return (value % (1 << 256)).to_bytes(32, "big").hex()


def _rpc_for(rpcs: Mapping[int, RPC], chain_id: int) -> RPC:
    rpc = rpcs.get(chain_id)
    if rpc is None:
        raise RpcError(f"No RPC endpoint configured for chain {chain_id}")
    return rpc


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_CACHE_SIZE = 10_000


class LruCache(Generic[K, V]):
    """Dict-like cache that evicts the least recently used entry past `maxsize`."""

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self._data: OrderedDict[K, V] = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: K) -> V | None:
        value = self._data.get(key)
        if value is not None:
            self._data.move_to_end(key)
        return value

    def put(self, key: K, value: V) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.maxsize:
            self._data.popitem(last=False)


class _BlockTimestamps:
    """Per-chain block → UTC datetime cache."""

    def __init__(self, rpcs: Mapping[int, RPC], *, cache_size: int = DEFAULT_CACHE_SIZE) -> None:
        self._rpcs = rpcs
        self._cache: LruCache[tuple[int, int], datetime] = LruCache(cache_size)

    def remember(self, chain_id: int, block_number: int, ts: int) -> datetime:
        dt = datetime.fromtimestamp(ts, tz=UTC)
        self._cache.put((chain_id, block_number), dt)
        return dt

    async def get(self, chain_id: int, block_number: int) -> datetime:
        key = (chain_id, block_number)
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        ts = await _rpc_for(self._rpcs, chain_id).block_timestamp(block_number)
        return self.remember(chain_id, block_number, ts)


# ---------- events ----------


class NfpmEventSource(IChainEventSource):
    """Reads one position's NFPM events with `eth_getLogs`.

    Ranges are fetched `step` blocks at a time. A failing range is split in
    half and retried until it is narrower than `min_split_span`, at which
    point the error propagates.
    """

    def __init__(
        self,
        rpcs: Mapping[int, RPC],
        *,
        step: int = 5_000,
        min_split_span: int = 100,
        nfpm_addresses: Mapping[int, str] = NFPM_ADDRESSES,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self.rpcs = rpcs
        self.step = step
        self.min_split_span = min_split_span
        self.nfpm_addresses = nfpm_addresses
        self.registry = make_nfpm_registry()
        self._timestamps = _BlockTimestamps(rpcs, cache_size=cache_size)

    async def _logs_in_range(self, rpc: RPC, address: str, token_id: int, a: int, b: int) -> list[EventLog]:
        out: list[EventLog] = []
        stack = [(a, b)]
        while stack:
            start, end = stack.pop()
            try:
                logs = await rpc.get_logs(
                    address=address,
                    topic0s=registry_topic0s(self.registry),
                    from_block=start,
                    to_block=end,
                    topics=(uint_topic(token_id),),
                )
            except (RpcError, httpx.HTTPError) as e:
                if end - start + 1 <= self.min_split_span:
                    raise
                mid = (start + end) // 2
                logger.warning("getLogs %d-%d failed (%s); splitting", start, end, e)
                stack.extend([(mid + 1, end), (start, mid)])
                continue
            out.extend(logs)
        return out

    async def fetch_events(
        self,
        chain_id: int,
        token_id: int,
        *,
        from_block: int,
        to_block: int,
    ) -> list[RawPositionEvent]:
        address = self.nfpm_addresses.get(chain_id)
        if address is None:
            raise RpcError(f"No NFPM deployment known for chain {chain_id}")
        rpc = _rpc_for(self.rpcs, chain_id)

        events: list[RawPositionEvent] = []
        for a, b in iter_chunks(from_block, to_block, self.step):
            for log in await self._logs_in_range(rpc, address, token_id, a, b):
                decoded = decode_log(log, self.registry)
                if decoded is None:
                    logger.debug("skipping undecodable log %s:%d", log.tx_hash, log.log_index)
                    continue
                if log.block_timestamp is not None:
                    ts = self._timestamps.remember(chain_id, log.block_number, log.block_timestamp)
                else:
                    ts = await self._timestamps.get(chain_id, log.block_number)
                event = to_raw_event(decoded, chain_id=chain_id, timestamp=ts)
                if event.token_id == token_id:
                    events.append(event)
        logger.info(
            "fetched %d NFPM events for token %d on chain %d (%d-%d)",
            len(events), token_id, chain_id, from_block, to_block,
        )
        return events


# ---------- finality ----------


class RpcFinalizedBlockResolver(IFinalizedBlockResolver):
    def __init__(self, rpcs: Mapping[int, RPC]) -> None:
        self.rpcs = rpcs

    async def last_finalized_block(self, chain_id: int) -> int | None:
        rpc = self.rpcs.get(chain_id)
        if rpc is None:
            logger.warning("no RPC endpoint configured for chain %d", chain_id)
            return None
        try:
            return await rpc.finalized_block()
        except (RpcError, httpx.HTTPError) as e:
            logger.warning("finalized block lookup failed on chain %d: %s", chain_id, e)
            return None


# ---------- prices ----------


class RpcPoolPriceProvider(IHistoricPriceProvider):
    """`slot0().sqrtPriceX96` as of a given block, cached per (chain, pool, block)."""

    def __init__(self, rpcs: Mapping[int, RPC], *, cache_size: int = DEFAULT_CACHE_SIZE) -> None:
        self.rpcs = rpcs
        self._timestamps = _BlockTimestamps(rpcs, cache_size=cache_size)
        self._cache: LruCache[tuple[int, str, int], HistoricPrice] = LruCache(cache_size)

    async def price_at(self, chain_id: int, pool_address: str, block_number: int) -> HistoricPrice:
        key = (chain_id, pool_address.lower(), block_number)
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        rpc = _rpc_for(self.rpcs, chain_id)
        raw = await rpc.eth_call(to=pool_address, data=_SLOT0, block=block_number)
        price = HistoricPrice(
            sqrt_price_x96=parse_data_word(word_at(raw, 0), "uint160"),
            timestamp=await self._timestamps.get(chain_id, block_number),
            block_number=block_number,
        )
        self._cache.put(key, price)
        return price


# ---------- position state ----------


class RpcPositionStateReader(IPositionStateReader):
    """Latest on-chain state needed to value a position and its unclaimed fees."""

    def __init__(self, rpcs: Mapping[int, RPC], *, nfpm_addresses: Mapping[int, str] = NFPM_ADDRESSES) -> None:
        self.rpcs = rpcs
        self.nfpm_addresses = nfpm_addresses

    async def read(self, position: PositionRecord) -> PositionChainState:
        rpc = _rpc_for(self.rpcs, position.chain_id)
        nfpm = self.nfpm_addresses.get(position.chain_id)
        if nfpm is None:
            raise RpcError(f"No NFPM deployment known for chain {position.chain_id}")
        pool = position.pool_address

        pos = await rpc.eth_call(to=nfpm, data=_POSITIONS + _encode_int(position.nft_id))
        slot0 = await rpc.eth_call(to=pool, data=_SLOT0)
        fg0 = await rpc.eth_call(to=pool, data=_FEE_GROWTH_GLOBAL0)
        fg1 = await rpc.eth_call(to=pool, data=_FEE_GROWTH_GLOBAL1)
        lower = await rpc.eth_call(to=pool, data=_TICKS + _encode_int(position.tick_lower))
        upper = await rpc.eth_call(to=pool, data=_TICKS + _encode_int(position.tick_upper))

        # positions(): nonce, operator, token0, token1, fee, tickLower, tickUpper,
        # liquidity, feeGrowthInside0LastX128, feeGrowthInside1LastX128, tokensOwed0, tokensOwed1
        def u(raw: bytes, i: int) -> int:
            return parse_data_word(word_at(raw, i), "uint256")

        return PositionChainState(
            liquidity=u(pos, 7),
            tokens_owed0=u(pos, 10),
            tokens_owed1=u(pos, 11),
            fee_growth_inside0_last_x128=u(pos, 8),
            fee_growth_inside1_last_x128=u(pos, 9),
            sqrt_price_x96=u(slot0, 0),
            tick=parse_data_word(word_at(slot0, 1), "int24"),
            fee_growth_global0_x128=u(fg0, 0),
            fee_growth_global1_x128=u(fg1, 0),
            # ticks(): liquidityGross, liquidityNet, feeGrowthOutside0X128, feeGrowthOutside1X128, ...
            lower_fee_growth_outside0_x128=u(lower, 2),
            lower_fee_growth_outside1_x128=u(lower, 3),
            upper_fee_growth_outside0_x128=u(upper, 2),
            upper_fee_growth_outside1_x128=u(upper, 3),
        )
