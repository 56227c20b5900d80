from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from define.clients import RPC, NfpmEventSource, RpcFinalizedBlockResolver, RpcPoolPriceProvider, RpcPositionStateReader
from define.core.config import SyncConfig
from define.core.models import PositionRecord, SyncRequest, SyncResult
from define.core.use_cases import LedgerSyncService, PositionAprService, PositionSnapshotService, summarize
from define.domain.apr import apr_bps_to_percent, seconds_to_days
from define.errors import DefineError
from define.ledger import verify_chain
from define.logging_utils import configure_logging
from define.settings import DefineSettings, get_settings
from define.storage import (
    DuckDBAprPeriodRepository,
    DuckDBLedgerRepository,
    JsonPositionStore,
    JsonSyncStateStore,
    export_ledger_parquet,
)

console = Console()
T = TypeVar("T")


# ---------- runtime wiring ----------


@dataclass
class Runtime:
    """Concrete collaborators built from settings for one CLI invocation."""

    settings: DefineSettings
    ledger: DuckDBLedgerRepository
    apr_periods: DuckDBAprPeriodRepository
    positions: JsonPositionStore
    sync_state: JsonSyncStateStore
    rpcs: dict[int, RPC]

    def apr_service(self) -> PositionAprService:
        return PositionAprService(self.ledger, self.apr_periods)

    def sync_service(self) -> LedgerSyncService:
        s = self.settings
        snapshots = (
            PositionSnapshotService(self.ledger, self.positions, RpcPositionStateReader(self.rpcs))
            if self.rpcs
            else None
        )
        return LedgerSyncService(
            events=NfpmEventSource(self.rpcs, step=s.log_block_step, min_split_span=s.min_split_span),
            prices=RpcPoolPriceProvider(self.rpcs),
            finalized=RpcFinalizedBlockResolver(self.rpcs),
            ledger=self.ledger,
            positions=self.positions,
            sync_state=self.sync_state,
            apr=self.apr_service(),
            snapshots=snapshots,
            config=SyncConfig(concurrency=s.sync_concurrency, sync_by=s.sync_by),
        )


@asynccontextmanager
async def open_runtime(settings: DefineSettings) -> AsyncIterator[Runtime]:
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    ledger = DuckDBLedgerRepository.open(settings.db_path)
    rpcs = {
        chain_id: RPC(url, timeout_s=settings.rpc_timeout_s, max_connections=settings.rpc_max_connections)
        for chain_id, url in settings.rpc_urls.items()
    }
    try:
        yield Runtime(
            settings=settings,
            ledger=ledger,
            apr_periods=DuckDBAprPeriodRepository(ledger.connection),
            positions=JsonPositionStore(settings.positions_file),
            sync_state=JsonSyncStateStore(settings.state_dir),
            rpcs=rpcs,
        )
    finally:
        for rpc in rpcs.values():
            await rpc.aclose()
        ledger.close()


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except DefineError as e:
        raise click.ClickException(str(e)) from e


# ---------- formatting ----------


def _units(value: int, decimals: int) -> str:
    return f"{Decimal(value).scaleb(-decimals):,.{min(decimals, 6)}f}"


def _quote_decimals(position: PositionRecord | None) -> int:
    return position.pool.quote_token.decimals if position else 0


# ---------- commands ----------


@click.group()
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None, help="DuckDB ledger file")
@click.option("--state-dir", type=click.Path(path_type=Path), default=None, help="Sync-state directory")
@click.option("--positions", "positions_file", type=click.Path(path_type=Path), default=None, help="Positions JSON file")
@click.option("--log-level", default=None, help="Logging level (default from DEFINE_LOG_LEVEL)")
@click.pass_context
def cli(
    ctx: click.Context,
    db_path: Path | None,
    state_dir: Path | None,
    positions_file: Path | None,
    log_level: str | None,
) -> None:
    """Define: position ledger, PnL and APR for concentrated-liquidity positions."""
    overrides = {
        "db_path": db_path,
        "state_dir": state_dir,
        "positions_file": positions_file,
        "log_level": log_level,
    }
    settings = get_settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})
    configure_logging(settings.log_level, console=Console(stderr=True))
    ctx.obj = settings


@cli.command("sync")
@click.argument("position_ids", nargs=-1, required=True)
@click.option("--full", is_flag=True, default=False, help="Rebuild from the protocol deployment block")
@click.pass_obj
def sync_cmd(settings: DefineSettings, position_ids: tuple[str, ...], full: bool) -> None:
    """Sync one or more positions up to the finalized block."""

    async def run() -> list[SyncResult | BaseException]:
        async with open_runtime(settings) as rt:
            requests = []
            for pid in position_ids:
                position = await rt.positions.get(pid)
                if position is None:
                    raise click.ClickException(f"Unknown position {pid}")
                requests.append(
                    SyncRequest(
                        position_id=pid,
                        chain_id=position.chain_id,
                        protocol_position_id=position.nft_id,
                        force_full_resync=full,
                    )
                )
            return await rt.sync_service().sync_many(requests)

    results = _run(run())

    table = Table(title="sync")
    table.add_column("position")
    table.add_column("from", justify="right")
    table.add_column("finalized", justify="right")
    table.add_column("events", justify="right")
    table.add_column("status")
    failed = 0
    for pid, res in zip(position_ids, results):
        if isinstance(res, BaseException):
            failed += 1
            table.add_row(pid, "-", "-", "-", f"[red]{type(res).__name__}: {res}[/]")
        else:
            table.add_row(pid, f"{res.from_block:,}", f"{res.finalized_block:,}", str(res.events_added), "[green]ok[/]")
    console.print(table)
    if failed:
        raise click.ClickException(f"{failed} of {len(results)} syncs failed")


@cli.command("ledger")
@click.argument("position_id")
@click.pass_obj
def ledger_cmd(settings: DefineSettings, position_id: str) -> None:
    """Print a position's ledger, newest first."""

    async def run() -> tuple[PositionRecord | None, list]:
        async with open_runtime(settings) as rt:
            return await rt.positions.get(position_id), await rt.ledger.list_descending(position_id)

    position, events = _run(run())
    dec = _quote_decimals(position)

    table = Table(title=f"ledger {position_id}")
    for col in ("time", "block", "type", "value", "Δ cost basis", "cost basis", "Δ pnl", "pnl", "fees"):
        table.add_column(col, justify="left" if col in ("time", "type") else "right")
    for e in events:
        table.add_row(
            e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"{e.block_number:,}",
            e.event_type.value,
            _units(e.token_value, dec),
            _units(e.delta_cost_basis, dec),
            _units(e.cost_basis_after, dec),
            _units(e.delta_pnl, dec),
            _units(e.pnl_after, dec),
            _units(e.rewards_value, dec),
        )
    console.print(table)
    console.print(f"[bold]{len(events)}[/] events")


@cli.command("apr")
@click.argument("position_id")
@click.option("--refresh/--no-refresh", default=True, show_default=True, help="Recompute periods from the ledger first")
@click.pass_obj
def apr_cmd(settings: DefineSettings, position_id: str, refresh: bool) -> None:
    """Print a position's APR periods."""

    async def run() -> tuple[PositionRecord | None, list]:
        async with open_runtime(settings) as rt:
            service = rt.apr_service()
            periods = await service.refresh(position_id) if refresh else await service.periods(position_id)
            return await rt.positions.get(position_id), periods

    position, periods = _run(run())
    dec = _quote_decimals(position)

    table = Table(title=f"apr {position_id}")
    for col in ("start", "end", "days", "cost basis", "fees", "APR %", "events"):
        table.add_column(col, justify="right")
    for p in periods:
        table.add_row(
            p.start_timestamp.strftime("%Y-%m-%d"),
            p.end_timestamp.strftime("%Y-%m-%d"),
            f"{seconds_to_days(p.duration_seconds):.2f}",
            _units(p.cost_basis, dec),
            _units(p.collected_fee_value, dec),
            f"{apr_bps_to_percent(p.apr_bps):.2f}",
            str(p.event_count),
        )
    console.print(table)
    summary = summarize(periods)
    if summary is None:
        console.print("no APR periods")
    else:
        console.print(
            f"current [bold]{apr_bps_to_percent(summary.current_apr_bps):.2f}%[/] • "
            f"average [bold]{apr_bps_to_percent(summary.average_apr_bps):.2f}%[/] "
            f"over {summary.period_count} periods"
        )


@cli.command("delete")
@click.argument("position_id")
@click.confirmation_option(prompt="Delete the ledger and APR periods of this position?")
@click.pass_obj
def delete_cmd(settings: DefineSettings, position_id: str) -> None:
    """Delete a position's ledger and APR periods."""

    async def run() -> int:
        async with open_runtime(settings) as rt:
            return await rt.sync_service().delete_ledger(position_id)

    removed = _run(run())
    console.print(f"deleted [bold]{removed}[/] events of {position_id}")


@cli.command("export")
@click.argument("position_id")
@click.argument("out", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--codec", default="zstd", show_default=True, help="Parquet compression codec")
@click.pass_obj
def export_cmd(settings: DefineSettings, position_id: str, out: Path, codec: str) -> None:
    """Export a position's ledger to parquet."""

    async def run() -> list:
        async with open_runtime(settings) as rt:
            return await rt.ledger.list_descending(position_id)

    events = _run(run())
    path = export_ledger_parquet(events, out, codec=codec)
    console.print(f"wrote [bold]{len(events)}[/] events to {path}")


@cli.command("verify")
@click.argument("position_id")
@click.pass_obj
def verify_cmd(settings: DefineSettings, position_id: str) -> None:
    """Check chain linkage, ordering and running-total conservation."""

    async def run() -> int:
        async with open_runtime(settings) as rt:
            return verify_chain(await rt.ledger.list_descending(position_id))

    checked = _run(run())
    console.print(f"[green]ok[/]: {checked} events verified for {position_id}")


if __name__ == "__main__":
    cli()
