import asyncio
import json
import logging

import pytest
from click.testing import CliRunner

from define.cli import cli
from define.storage import DuckDBLedgerRepository, read_ledger_parquet

from conftest import POOL_ADDRESS, TOKEN_ID, USDC, USDT


@pytest.fixture(autouse=True)
def _restore_package_logger():
    logger = logging.getLogger("define")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    logger.handlers[:], logger.level, logger.propagate = saved


@pytest.fixture
def workspace(tmp_path):
    positions = tmp_path / "positions.json"
    positions.write_text(
        json.dumps(
            {
                "positions": [
                    {
                        "id": "pos-1",
                        "chain_id": 1,
                        "nft_id": TOKEN_ID,
                        "pool_address": POOL_ADDRESS,
                        "token0": {"address": USDC.address, "symbol": "USDC", "decimals": 6},
                        "token1": {"address": USDT.address, "symbol": "USDT", "decimals": 6},
                        "is_token0_quote": True,
                        "tick_lower": -600,
                        "tick_upper": 600,
                    }
                ]
            }
        )
    )
    return tmp_path


@pytest.fixture
def seeded(workspace, chain):
    """Workspace whose ledger database already holds the scenario chain."""

    async def seed():
        repo = DuckDBLedgerRepository.open(workspace / "ledger.duckdb")
        try:
            previous_id = None
            for event in chain:
                stored = await repo.append("pos-1", event, protocol=event.protocol, previous_id=previous_id)
                previous_id = stored.id
        finally:
            repo.close()

    asyncio.run(seed())
    return workspace


def invoke(workspace, *args, **kwargs):
    base = [
        "--db", str(workspace / "ledger.duckdb"),
        "--state-dir", str(workspace / "state"),
        "--positions", str(workspace / "positions.json"),
        "--log-level", "WARNING",
    ]
    return CliRunner().invoke(cli, [*base, *args], **kwargs)


def test_ledger_empty(workspace):
    result = invoke(workspace, "ledger", "pos-1")
    assert result.exit_code == 0, result.output
    assert "0 events" in result.output


def test_ledger_and_verify(seeded):
    result = invoke(seeded, "ledger", "pos-1")
    assert result.exit_code == 0, result.output
    assert "3 events" in result.output

    result = invoke(seeded, "verify", "pos-1")
    assert result.exit_code == 0, result.output
    assert "3 events verified" in result.output


def test_apr(seeded):
    result = invoke(seeded, "apr", "pos-1")
    assert result.exit_code == 0, result.output
    assert "24.35%" in result.output
    assert "over 1 periods" in result.output


def test_apr_without_periods(workspace):
    result = invoke(workspace, "apr", "pos-1", "--no-refresh")
    assert result.exit_code == 0, result.output
    assert "no APR periods" in result.output


def test_export(seeded):
    out = seeded / "exports" / "pos-1.parquet"
    result = invoke(seeded, "export", "pos-1", str(out))
    assert result.exit_code == 0, result.output
    assert len(read_ledger_parquet(out)) == 3


def test_delete(seeded):
    result = invoke(seeded, "delete", "pos-1", "--yes")
    assert result.exit_code == 0, result.output
    assert "deleted 3 events" in result.output

    result = invoke(seeded, "ledger", "pos-1")
    assert "0 events" in result.output


def test_delete_requires_confirmation(seeded):
    result = invoke(seeded, "delete", "pos-1", input="n\n")
    assert result.exit_code != 0
    assert "3 events" in invoke(seeded, "ledger", "pos-1").output


def test_sync_unknown_position(workspace):
    result = invoke(workspace, "sync", "nope")
    assert result.exit_code != 0
    assert "Unknown position nope" in result.output


def test_sync_without_rpc_reports_failure(workspace):
    result = invoke(workspace, "sync", "pos-1")
    assert result.exit_code != 0
    assert "1 of 1 syncs failed" in result.output
