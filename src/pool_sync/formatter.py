"""Rich console rendering for CLI output."""

from __future__ import annotations

from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table

from .discovery import DiscoveryReport
from .models import (
    DashboardStats,
    Pool,
    RebalanceEstimate,
    SubmittedRebalance,
    to_token_units,
)


def _truncate_address(address: str) -> str:
    """Truncate address for display."""
    return f"{address[:10]}...{address[-4:]}"


def _format_units(amount: int) -> str:
    return f"{to_token_units(amount):,.6f}"


def _pair_label(pool: Pool) -> str:
    return f"{pool.token_a.symbol}/{pool.token_b.symbol}"


def build_pools_table(pools: list[Pool]) -> Table:
    table = Table(expand=True, show_lines=False)
    table.add_column("Pair", style="cyan", no_wrap=True)
    table.add_column("Address", style="dim")
    table.add_column("Reserve A", justify="right")
    table.add_column("Reserve B", justify="right")
    table.add_column("Ratio", justify="right", style="yellow")
    table.add_column("Target", justify="right")
    table.add_column("TVL", justify="right", style="green")
    table.add_column("Status", justify="center")

    for pool in pools:
        status = "[red]imbalanced[/]" if pool.needs_rebalancing else "[green]ok[/]"
        table.add_row(
            _pair_label(pool),
            _truncate_address(pool.address),
            _format_units(pool.reserve_a),
            _format_units(pool.reserve_b),
            f"{pool.current_ratio:.6f}",
            f"{pool.target_ratio:.4f}",
            f"{pool.tvl:,.4f}",
            status,
        )
    return table


def build_stats_table(stats: DashboardStats) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Key", style="dim")
    table.add_column("Value", style="cyan")
    table.add_row("Pools", str(stats.total_pools))
    table.add_row("Active", str(stats.active_pools))
    table.add_row("Imbalanced", str(stats.imbalanced_pools))
    table.add_row("Total TVL", f"{stats.total_tvl:,.4f}")
    table.add_row("Volume 24h", f"{stats.total_volume_24h:,.4f}")
    table.add_row("Average APY", f"{stats.average_apy:.2f}%")
    return table


def format_pools(
    pools: list[Pool], stats: DashboardStats, console: Console | None = None
) -> None:
    """Print the dashboard summary and the pool table."""
    console = console or Console()
    stats_panel = Panel(
        build_stats_table(stats), title="[bold]Dashboard[/]", border_style="blue"
    )
    pools_panel = Panel(
        build_pools_table(pools), title="[bold]Pools[/]", border_style="cyan"
    )
    console.print()
    console.print(Group(stats_panel, pools_panel))
    console.print()


def format_discovery(report: DiscoveryReport, console: Console | None = None) -> None:
    console = console or Console()
    summary = Table(show_header=False, box=None, padding=(0, 1))
    summary.add_column("Key", style="dim")
    summary.add_column("Value", style="cyan")
    summary.add_row("Factory", report.factory_address)
    summary.add_row("Discovered", str(len(report.pools)))
    summary.add_row("Imbalanced", str(report.imbalanced_count))
    summary.add_row("Probed", str(report.probed))
    summary.add_row("Stopped by", report.stopped_by.value)
    if report.truncated:
        summary.add_row("Truncated", "[yellow]yes[/]")
    if report.unexpanded:
        summary.add_row("Not expanded", f"[yellow]{len(report.unexpanded)}[/]")

    parts = [
        Panel(summary, title="[bold]Discovery[/]", border_style="blue"),
        Panel(build_pools_table(report.pools), title="[bold]Pools[/]", border_style="cyan"),
    ]
    if report.failures:
        failures = Table(expand=True)
        failures.add_column("Index", justify="right")
        failures.add_column("Pair", style="dim")
        failures.add_column("Error", style="red")
        for failure in report.failures:
            failures.add_row(
                "" if failure.index is None else str(failure.index),
                failure.pair_address,
                failure.error,
            )
        parts.append(Panel(failures, title="[bold]Failed pairs[/]", border_style="red"))

    console.print()
    console.print(Group(*parts))
    console.print()


def format_estimate(
    pool: Pool, estimate: RebalanceEstimate, console: Console | None = None
) -> None:
    console = console or Console()

    ratio_table = Table(show_header=False, box=None, padding=(0, 1))
    ratio_table.add_column("Key", style="dim")
    ratio_table.add_column("Value", style="cyan")
    ratio_table.add_row("Pair", _pair_label(pool))
    ratio_table.add_row("Current ratio", f"{estimate.current_ratio:.6f}")
    ratio_table.add_row("Target ratio", f"{estimate.target_ratio:.6f}")
    ratio_table.add_row("Swap needed", "yes" if estimate.swap_needed else "no")
    ratio_table.add_row(
        "Can rebalance", "yes" if estimate.can_rebalance else "[yellow]no[/]"
    )

    swap_table = Table(show_header=False, box=None, padding=(0, 1))
    swap_table.add_column("Key", style="dim")
    swap_table.add_column("Value", style="green")
    swap_table.add_row(f"Sell {pool.token_a.symbol}", _format_units(estimate.swap_amount_0))
    swap_table.add_row(f"Sell {pool.token_b.symbol}", _format_units(estimate.swap_amount_1))
    swap_table.add_row("Expected out", _format_units(estimate.expected_out))
    swap_table.add_row("Minimum received", _format_units(estimate.minimum_received))
    swap_table.add_row("Price impact", f"{estimate.price_impact:.4f}%")
    swap_table.add_row("Slippage", f"{estimate.slippage_impact}%")

    cost_table = Table(show_header=False, box=None, padding=(0, 1))
    cost_table.add_column("Key", style="dim")
    cost_table.add_column("Value", style="yellow")
    cost_table.add_row("Gas", f"{estimate.estimated_gas:,}")
    cost_table.add_row("Gas price (wei)", f"{estimate.gas_price:,}")
    cost_table.add_row("Cost", _format_units(estimate.estimated_cost))

    top_row = Columns(
        [
            Panel(ratio_table, title="[bold]Pool[/]", border_style="blue"),
            Panel(swap_table, title="[bold]Swap[/]", border_style="green"),
            Panel(cost_table, title="[bold]Cost[/]", border_style="yellow"),
        ],
        equal=True,
        expand=True,
    )
    console.print()
    console.print(Panel(top_row, title="[bold white]Rebalance Estimate[/]", border_style="white"))
    console.print()


def format_submission(result: SubmittedRebalance, console: Console | None = None) -> None:
    console = console or Console()
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Key", style="dim")
    table.add_column("Value", style="cyan")
    table.add_row("Transaction", result.tx_hash)
    table.add_row("Status", result.status.value)
    table.add_row("Expected by", str(result.estimated_confirmation))
    console.print(Panel(table, title="[bold]Rebalance Submitted[/]", border_style="green"))
