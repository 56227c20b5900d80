import json
from dataclasses import replace
from datetime import timedelta

import pytest

from define.core.models import PositionSnapshot, RawEventType, SyncState
from define.storage import JsonPositionStore, JsonSyncStateStore

from conftest import POOL_ADDRESS, T0, TOKEN_ID, USDC, USDT, make_raw_event


class TestJsonSyncStateStore:
    @pytest.mark.asyncio
    async def test_missing_file_is_empty_state(self, tmp_path):
        store = JsonSyncStateStore(tmp_path / "state")
        assert await store.get("pos-1") == SyncState()

    @pytest.mark.asyncio
    async def test_round_trip_keeps_large_ints(self, tmp_path):
        store = JsonSyncStateStore(tmp_path)
        big = 2**200 + 1
        events = (
            make_raw_event(RawEventType.COLLECT, 300, day=20, amount0=big, amount1=1),
            make_raw_event(RawEventType.INCREASE_LIQUIDITY, 100, liquidity=big, amount0=5, amount1=6),
        )
        state = SyncState(last_sync_at=T0, last_sync_by="tests", missing_events=events)

        await store.save("pos-1", state)

        assert await store.get("pos-1") == state
        on_disk = json.loads((tmp_path / "pos-1.json").read_text())
        assert on_disk["missing_events"][0]["amount0"] == str(big)
        assert not (tmp_path / "pos-1.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_save_overwrites(self, tmp_path):
        store = JsonSyncStateStore(tmp_path)
        await store.save("pos-1", SyncState(last_sync_by="a"))
        await store.save("pos-1", SyncState(last_sync_by="b"))
        assert (await store.get("pos-1")).last_sync_by == "b"


def _positions_file(path, **overrides):
    position = {
        "id": "pos-1",
        "chain_id": 1,
        "nft_id": TOKEN_ID,
        "pool_address": POOL_ADDRESS,
        "token0": {"address": USDC.address, "symbol": USDC.symbol, "decimals": USDC.decimals},
        "token1": {"address": USDT.address, "symbol": USDT.symbol, "decimals": USDT.decimals},
        "is_token0_quote": True,
        "tick_lower": -600,
        "tick_upper": 600,
    }
    position.update(overrides)
    path.write_text(json.dumps({"positions": [position]}))
    return path


class TestJsonPositionStore:
    @pytest.mark.asyncio
    async def test_get(self, tmp_path, position):
        store = JsonPositionStore(_positions_file(tmp_path / "positions.json"))

        assert await store.get("pos-1") == position
        assert await store.get("other") is None
        assert await store.list_ids() == ["pos-1"]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        store = JsonPositionStore(tmp_path / "none.json")
        assert await store.get("pos-1") is None

    @pytest.mark.asyncio
    async def test_save_snapshot(self, tmp_path, position):
        store = JsonPositionStore(_positions_file(tmp_path / "positions.json"))
        snapshot = PositionSnapshot(
            current_value=2**130,
            current_cost_basis=1_000,
            realized_pnl=-5,
            unrealized_pnl=2**130 - 1_000,
            collected_fees=20,
            unclaimed_fees=3,
            price_range_lower=941_000,
            price_range_upper=1_061_000,
            is_active=True,
            last_fees_collected_at=T0,
            updated_at=T0 + timedelta(days=1),
        )

        await store.save_snapshot("pos-1", snapshot)

        assert await store.get("pos-1") == replace(position, snapshot=snapshot)

    @pytest.mark.asyncio
    async def test_save_snapshot_unknown_position(self, tmp_path):
        store = JsonPositionStore(_positions_file(tmp_path / "positions.json"))
        with pytest.raises(KeyError):
            await store.save_snapshot("other", None)
