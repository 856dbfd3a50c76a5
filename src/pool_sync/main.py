"""CLI entrypoint for pool-sync."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from pydantic import ValidationError as SettingsValidationError
from rich.console import Console

from .analytics import Timeframe
from .errors import PoolSyncError, error_payload
from .formatter import (
    format_discovery,
    format_estimate,
    format_pools,
    format_submission,
)
from .logger import setup_logging
from .service import PoolSyncService
from .settings import SyncSettings
from .state import AppState, build_service

T = TypeVar("T")

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    add_help_option=True,
    pretty_exceptions_enable=True,
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
    help="Discover liquidity pools, estimate and submit rebalances.",
)

console = Console()

JsonOption = Annotated[
    bool, typer.Option("--json", help="Print raw JSON instead of tables.")
]


def _build_logger() -> logging.Logger:
    """Build a logger instance."""
    return logging.getLogger("pool_sync")


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if not isinstance(state, AppState):
        raise typer.BadParameter("configuration was not loaded")
    return state


def _run(state: AppState, action: Callable[[PoolSyncService], Awaitable[T]]) -> T:
    """Build the service, run ``action`` and always release connections.

    Pool-sync errors are printed with their category and exit with code 1.
    """

    async def _main() -> T:
        service = build_service(state)
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(_main())
    except PoolSyncError as exc:
        payload = error_payload(exc)
        state.logger.debug("Operation failed", exc_info=exc)
        hint = "retry later" if payload["retryable"] else "check the input"
        console.print(
            f"[red bold]{payload['category']} error:[/] {payload['message']} "
            f"[dim]({hint})[/]"
        )
        raise typer.Exit(code=1) from exc


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to a TOML config file (can include [pool_sync] table).",
        ),
    ] = None,
    rpc: Annotated[
        list[str] | None,
        typer.Option(
            "--rpc",
            help="RPC endpoint, tried in the order given (repeatable).",
        ),
    ] = None,
    factory: Annotated[
        str | None,
        typer.Option("--factory", help="Pair factory contract address."),
    ] = None,
    rebalancer: Annotated[
        str | None,
        typer.Option("--rebalancer", help="Rebalancer controller contract address."),
    ] = None,
    private_key: Annotated[
        str | None,
        typer.Option(
            "--private-key",
            help="Signing key for rebalance submissions (prefer POOL_SYNC_PRIVATE_KEY).",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Override logging verbosity (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).",
        ),
    ] = None,
):
    """Load configuration and set up logging for every command."""
    if config_path:
        os.environ["POOL_SYNC_CONFIG"] = str(config_path)

    init_kwargs: dict[str, Any] = {}
    if rpc:
        init_kwargs["rpc_endpoints"] = rpc
    if factory is not None:
        init_kwargs["factory_address"] = factory
    if rebalancer is not None:
        init_kwargs["rebalancer_address"] = rebalancer
    if private_key is not None:
        init_kwargs["private_key"] = private_key
    if log_level is not None:
        init_kwargs["log_level"] = log_level.upper()

    try:
        settings = SyncSettings(**init_kwargs)
    except SettingsValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    setup_logging(settings.log_level)
    ctx.obj = AppState(settings=settings, logger=_build_logger())


@app.command()
def discover(
    ctx: typer.Context,
    factory_address: Annotated[
        str | None, typer.Argument(help="Factory address; defaults to configuration.")
    ] = None,
    as_json: JsonOption = False,
):
    """Enumerate every pair registered with the factory."""
    state = _state(ctx)
    report = _run(state, lambda service: service.discover_pairs(factory_address))
    if as_json:
        _echo_json(report.to_dict())
    else:
        format_discovery(report, console)


@app.command()
def pools(
    ctx: typer.Context,
    search: Annotated[
        str | None, typer.Option("--search", "-s", help="Match address or symbol.")
    ] = None,
    imbalanced: Annotated[
        bool, typer.Option("--imbalanced", help="Only pools needing a rebalance.")
    ] = False,
    sort_by: Annotated[
        str | None, typer.Option("--sort", help="Order by 'tvl' or 'volume'.")
    ] = None,
    limit: Annotated[int | None, typer.Option("--limit", min=1)] = None,
    as_json: JsonOption = False,
):
    """Discover pools and show them with dashboard totals."""
    state = _state(ctx)

    async def _action(service: PoolSyncService):
        await service.discover_pairs()
        return (
            service.list_pools(
                query=search, imbalanced_only=imbalanced, sort_by=sort_by, limit=limit
            ),
            service.get_dashboard_stats(),
        )

    selected, stats = _run(state, _action)
    if as_json:
        _echo_json(
            {"stats": stats.to_dict(), "pools": [pool.to_dict() for pool in selected]}
        )
    else:
        format_pools(selected, stats, console)


@app.command()
def metrics(
    ctx: typer.Context,
    pool_address: Annotated[str, typer.Argument(help="Pool address.")],
    timeframe: Annotated[
        Timeframe, typer.Option("--timeframe", "-t", help="Analytics window.")
    ] = Timeframe.DAY,
):
    """Read a pool and print its metrics for the window as JSON."""
    state = _state(ctx)

    async def _action(service: PoolSyncService):
        await service.refresh_pool(pool_address)
        return service.get_pool_metrics(pool_address, timeframe)

    _echo_json(_run(state, _action).to_dict())


@app.command()
def estimate(
    ctx: typer.Context,
    pool_address: Annotated[str, typer.Argument(help="Pool address.")],
    target: Annotated[
        float | None, typer.Option("--target", help="Target reserve ratio A/B.")
    ] = None,
    slippage: Annotated[
        float | None, typer.Option("--slippage", help="Slippage tolerance in percent.")
    ] = None,
    as_json: JsonOption = False,
):
    """Estimate the swap and cost of rebalancing a pool."""
    state = _state(ctx)

    async def _action(service: PoolSyncService):
        pool = await service.refresh_pool(pool_address)
        return pool, await service.estimate_rebalance(pool.address, target, slippage)

    pool, result = _run(state, _action)
    if as_json:
        _echo_json(result.to_dict())
    else:
        format_estimate(pool, result, console)


@app.command()
def rebalance(
    ctx: typer.Context,
    pool_address: Annotated[str, typer.Argument(help="Pool address.")],
    target: Annotated[
        float | None, typer.Option("--target", help="Target reserve ratio A/B.")
    ] = None,
    max_gas_price: Annotated[
        int | None, typer.Option("--max-gas-price", help="Refuse above this gas price (wei).")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Skip cooldown and balance checks.")
    ] = False,
    slippage: Annotated[
        float | None, typer.Option("--slippage", help="Slippage tolerance in percent.")
    ] = None,
    wait: Annotated[
        bool,
        typer.Option("--wait/--no-wait", help="Wait for the transaction to confirm."),
    ] = True,
    as_json: JsonOption = False,
):
    """Submit a rebalance transaction for a pool."""
    state = _state(ctx)
    if not state.settings.can_sign:
        raise typer.BadParameter(
            "private_key is required to submit a rebalance.",
            param_hint=["--private-key", "POOL_SYNC_PRIVATE_KEY"],
        )

    async def _action(service: PoolSyncService):
        pool = await service.refresh_pool(pool_address)
        submitted = await service.submit_rebalance(
            pool.address,
            target_ratio=target,
            max_gas_price=max_gas_price,
            force=force,
            slippage=slippage,
        )
        if wait:
            await service.monitor.drain()
        status = await service.get_transaction_status(submitted.tx_hash)
        return submitted, status

    submitted, status = _run(state, _action)
    if as_json:
        _echo_json(status.to_dict())
        return
    format_submission(submitted, console)
    if wait:
        console.print(f"Final status: [bold]{status.event.status.value}[/]")


@app.command()
def status(
    ctx: typer.Context,
    tx_hash: Annotated[str, typer.Argument(help="Transaction hash.")],
    as_json: JsonOption = False,
):
    """Look up a rebalance transaction receipt."""
    state = _state(ctx)
    result = _run(state, lambda service: service.lookup_receipt(tx_hash))
    if result is None:
        result = {"tx_hash": tx_hash, "status": "pending"}
    if as_json:
        _echo_json(result)
    else:
        console.print(f"{tx_hash}: [bold]{result['status']}[/]")
        if result.get("block_number") is not None:
            console.print(
                f"  block {result['block_number']}, gas used {result['gas_used']}"
            )


@app.command()
def watch(
    ctx: typer.Context,
    poll_interval: Annotated[
        float, typer.Option("--poll-interval", help="Seconds between log polls.")
    ] = 5.0,
    from_block: Annotated[
        int | None, typer.Option("--from-block", help="First block to read.")
    ] = None,
    limit: Annotated[
        int | None, typer.Option("--limit", min=1, help="Stop after this many events.")
    ] = None,
):
    """Follow PairCreated and Rebalance events and keep pools up to date."""
    state = _state(ctx)

    async def _action(service: PoolSyncService):
        await service.discover_pairs()
        return await service.follow_events(poll_interval, from_block, limit)

    try:
        seen = _run(state, _action)
    except KeyboardInterrupt:
        console.print("Stopped.")
        return
    console.print(f"Applied {seen} events.")


@app.command("show-config")
def show_config(ctx: typer.Context):
    """Print effective config (with secrets redacted) and exit."""
    state = _state(ctx)
    typer.echo(json.dumps(state.settings.as_safe_dict(), indent=2, default=str))


def run() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    run()
