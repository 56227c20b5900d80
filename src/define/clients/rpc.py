"""Lightweight JSON-RPC client for Ethereum-compatible nodes.

This module provides:
- `RPC`: an async client with sane timeouts/connection limits
- Helper utilities to format block numbers, topics and block ranges

It returns `EventLog` records ready for downstream decoding.
"""

from __future__ import annotations

from collections.abc import Generator, Sequence
from typing import Any

import httpx

from define.core.models import EventLog


class RpcError(RuntimeError):
    """JSON-RPC error object or malformed response from the node."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


def to_hex_block(x: int) -> str:
    """Return a 0x-prefixed hex block number."""
    return hex(x)


def topics_param(topic0s: Sequence[str], *extra: str | None) -> list[list[str] | str | None]:
    """Format an eth_getLogs topics filter: any-of `topic0s`, then positional topics."""
    out: list[list[str] | str | None] = [[t.lower() for t in topic0s]]
    out.extend(None if t is None else t.lower() for t in extra)
    return out


def uint_topic(value: int) -> str:
    """Left-pad an unsigned integer to a 32-byte topic."""
    return "0x" + value.to_bytes(32, "big").hex()


def iter_chunks(a: int, b: int, step: int) -> Generator[tuple[int, int], None, None]:
    """Yield inclusive [start, end] block ranges of size at most `step`."""
    x = a
    while x <= b:
        y = min(b, x + step - 1)
        yield (x, y)
        x = y + 1


def _hex_int(v: Any) -> int | None:
    if isinstance(v, str) and v.startswith("0x"):
        return int(v, 16)
    if isinstance(v, int):
        return v
    return None


class RPC:
    """Minimal async RPC client.

    Parameters
    ----------
    url : str
        RPC endpoint URL.
    timeout_s : int
        Per-operation timeout in seconds (connect/read/write).
    max_connections : int
        Maximum concurrent connections to keep in the pool.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (tests use `httpx.MockTransport`).
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: int = 20,
        max_connections: int = 64,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=timeout_s,
                read=timeout_s,
                write=timeout_s,
                pool=max(30, timeout_s * 3),
            ),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            http2=transport is None,
            transport=transport,
        )
        self._next_id = 0

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params}
        r = await self.client.post(self.url, json=payload)
        r.raise_for_status()
        data = r.json()
        if "error" in data:
            e = data["error"]
            raise RpcError(f"RPC error: {e.get('code')} {e.get('message')}", code=e.get("code"))
        if "result" not in data:
            raise RpcError(f"RPC response without result for {method}")
        return data["result"]

    async def latest_block(self) -> int:
        """Return the latest block number as an int."""
        return int(await self._call("eth_blockNumber", []), 16)

    async def finalized_block(self) -> int | None:
        """Return the finalized block number, or None when the node has no finality tag."""
        block = await self._call("eth_getBlockByNumber", ["finalized", False])
        if block is None:
            return None
        return int(block["number"], 16)

    async def get_block(self, number: int) -> dict[str, Any]:
        """Return the block header (no transaction bodies)."""
        block = await self._call("eth_getBlockByNumber", [to_hex_block(number), False])
        if block is None:
            raise RpcError(f"Block {number} not found")
        return block

    async def block_timestamp(self, number: int) -> int:
        return int((await self.get_block(number))["timestamp"], 16)

    async def eth_call(self, *, to: str, data: str, block: int | str = "latest") -> bytes:
        """Execute a read-only call and return the raw ABI-encoded result."""
        tag = to_hex_block(block) if isinstance(block, int) else block
        result = await self._call("eth_call", [{"to": to.lower(), "data": data}, tag])
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def get_logs(
        self,
        *,
        address: str,
        topic0s: Sequence[str],
        from_block: int,
        to_block: int,
        topics: Sequence[str | None] = (),
    ) -> list[EventLog]:
        """Fetch logs for an address and a set of topic0 signatures within a block range.

        `topics` narrows topic1..n positionally (None matches anything).
        """
        params = [
            {
                "address": address.lower(),
                "fromBlock": to_hex_block(from_block),
                "toBlock": to_hex_block(to_block),
                "topics": topics_param(topic0s, *topics),
            }
        ]
        result = await self._call("eth_getLogs", params)

        out: list[EventLog] = []
        for rl in result or []:
            if rl.get("removed"):
                continue
            out.append(
                EventLog(
                    address=rl["address"].lower(),
                    topics=tuple(t.lower() for t in rl.get("topics", [])),
                    data_hex=str(rl.get("data") or "0x"),
                    block_number=int(rl["blockNumber"], 16),
                    transaction_index=int(rl["transactionIndex"], 16),
                    tx_hash=(rl.get("transactionHash") or "").lower(),
                    log_index=int(rl["logIndex"], 16),
                    block_timestamp=_hex_int(rl.get("blockTimestamp")),
                )
            )
        return out

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
