"""
CLI interface for MCP Monitor.

Provides command-line access to the server registry, metrics and retention.
"""

import asyncio
import sys
from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from mcp_monitor.config.loader import MonitorConfig, load_monitor_config
from mcp_monitor.core.alerts import detect_cost_limit_alert, detect_error_rate_alert
from mcp_monitor.core.logging import setup_logging
from mcp_monitor.core.metrics import TimeRange, summarize_overall
from mcp_monitor.monitor import MCPMonitor
from mcp_monitor.storage.models import MonitoredServer

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

TIME_RANGE_PRESETS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def resolve_time_range(preset: str) -> Optional[TimeRange]:
    """Turn a preset name into an explicit window ending now.

    "all" means unbounded and resolves to None.
    """
    if preset == "all":
        return None
    if preset not in TIME_RANGE_PRESETS:
        valid = ", ".join([*TIME_RANGE_PRESETS, "all"])
        raise typer.BadParameter(f"time range must be one of: {valid}")
    return TimeRange.last(TIME_RANGE_PRESETS[preset])


def _load_config(ctx: typer.Context) -> MonitorConfig:
    config_path = (ctx.obj or {}).get("config_path")
    if config_path:
        return load_monitor_config(config_path)
    return MonitorConfig.default()


def _run(ctx: typer.Context, action) -> None:
    """Run ``action(monitor)`` inside an initialized monitor; exit on errors."""
    async def _main():
        async with MCPMonitor(_load_config(ctx)) as monitor:
            await action(monitor)

    try:
        asyncio.run(_main())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML monitor configuration"
    ),
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Log level for monitor diagnostics"
    )
):
    """MCP Monitor CLI."""
    setup_logging(log_level)
    ctx.obj = {"config_path": config}
    if ctx.invoked_subcommand is None:
        console.print("MCP Monitor - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the monitor database and register configured servers."""
    async def action(monitor: MCPMonitor):
        console.print(f"[green]✓[/] Database initialized at {monitor.store.db_path}")

    _run(ctx, action)


@app.command()
def register(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Unique server name"),
    cost: Optional[float] = typer.Option(None, "--cost", help="Cost per call in USD"),
    url: Optional[str] = typer.Option(None, "--url", help="Server URL"),
    category: Optional[str] = typer.Option(None, "--category", help="Server category"),
    version: Optional[str] = typer.Option(None, "--version", help="Server version"),
    disabled: bool = typer.Option(False, "--disabled", help="Register as not actively monitored"),
):
    """Register a server, replacing any existing entry with the same name."""
    async def action(monitor: MCPMonitor):
        server_id = await monitor.register_server(MonitoredServer(
            name=name,
            url=url,
            category=category,
            version=version,
            enabled=not disabled,
            cost_per_call=cost,
        ))
        console.print(f"[green]✓[/] Registered {name} (id {server_id})")

    _run(ctx, action)


@app.command()
def servers(ctx: typer.Context):
    """List registered servers."""
    async def action(monitor: MCPMonitor):
        registered = await monitor.get_servers()
        if not registered:
            console.print("[dim]No servers registered.[/]")
            return

        table = Table(title="MCP Servers")
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Category")
        table.add_column("Enabled")
        table.add_column("Cost/call", justify="right")
        for server in registered:
            table.add_row(
                str(server.id),
                server.name,
                server.category or "-",
                "yes" if server.enabled else "no",
                _format_cost(server.cost_per_call),
            )
        console.print(table)

    _run(ctx, action)


@app.command()
def metrics(
    ctx: typer.Context,
    server: Optional[str] = typer.Option(None, "--server", "-s", help="Show one server in detail"),
    time_range: str = typer.Option("all", "--range", "-r", help="24h, 7d, 30d or all"),
):
    """Show aggregate metrics per server, or detail for one server."""
    window = resolve_time_range(time_range)

    async def action(monitor: MCPMonitor):
        if server:
            performance = await monitor.get_server_performance(server, window)
            _display_server_performance(performance)
            alert = detect_error_rate_alert(
                performance.aggregate, monitor.config.alerts.error_rate_threshold
            )
            if alert:
                console.print(f"[bold red]ALERT[/] {alert.message}")
            return

        aggregates = await monitor.get_all_metrics(window)
        if not aggregates:
            console.print("\n[bold yellow]No performance data found[/]\n")
            return

        _display_aggregates(aggregates)
        for aggregate in aggregates:
            alert = detect_error_rate_alert(aggregate, monitor.config.alerts.error_rate_threshold)
            if alert:
                console.print(f"[bold red]ALERT[/] {alert.message}")

        last_day = await monitor.get_all_metrics(resolve_time_range("24h"))
        cost_alert = detect_cost_limit_alert(last_day, monitor.config.alerts.daily_cost_limit_usd)
        if cost_alert:
            console.print(f"[bold red]ALERT[/] {cost_alert.message}")

    _run(ctx, action)


@app.command()
def logs(
    ctx: typer.Context,
    server: Optional[str] = typer.Option(None, "--server", "-s", help="Filter by server"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of logs to show"),
):
    """Show the most recent performance logs."""
    async def action(monitor: MCPMonitor):
        recent = await monitor.get_recent_logs(server, limit)
        if not recent:
            console.print("[dim]No performance logs found.[/]")
            return

        table = Table(title="Recent Calls")
        table.add_column("Time")
        table.add_column("Server")
        table.add_column("Operation")
        table.add_column("Latency", justify="right")
        table.add_column("Result")
        table.add_column("Cost", justify="right")
        for log in recent:
            table.add_row(
                log.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                log.server_name,
                log.operation,
                f"{log.latency_ms:.1f}ms",
                "ok" if log.success else f"[red]{log.error_type or 'error'}[/]",
                _format_cost(log.cost_usd),
            )
        console.print(table)

    _run(ctx, action)


@app.command()
def usage(
    ctx: typer.Context,
    server: Optional[str] = typer.Option(None, "--server", "-s", help="Filter by server"),
    time_range: str = typer.Option("all", "--range", "-r", help="24h, 7d, 30d or all"),
    top: int = typer.Option(10, "--top", "-t", help="Number of operations to show"),
):
    """Show the most frequently called operations."""
    window = resolve_time_range(time_range)

    async def action(monitor: MCPMonitor):
        counts = await monitor.get_operation_counts(server, window)
        if not counts:
            console.print("[dim]No performance logs found.[/]")
            return

        total = sum(entry.count for entry in counts)
        table = Table(title="Operation Usage")
        table.add_column("Operation")
        table.add_column("Calls", justify="right")
        table.add_column("Share", justify="right")
        for entry in counts[:top]:
            table.add_row(entry.operation, str(entry.count), _format_rate(entry.count / total))
        console.print(table)

    _run(ctx, action)


@app.command()
def cleanup(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Override retention days"),
):
    """Delete performance logs older than the retention period."""
    async def action(monitor: MCPMonitor):
        removed = await monitor.cleanup(days)
        console.print(f"[green]✓[/] Removed {removed} old log(s)")

    _run(ctx, action)


def _format_cost(amount: Optional[float]) -> str:
    """Format a per-call cost; small amounts need more precision than cents."""
    if amount is None:
        return "-"
    return f"${amount:,.4f}"


def _format_rate(rate: float) -> str:
    return f"{rate * 100:.1f}%"


def _display_aggregates(aggregates):
    """Display per-server aggregates and the overall totals."""
    table = Table(title="MCP Server Metrics")
    table.add_column("Server")
    table.add_column("Calls", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Avg latency", justify="right")
    table.add_column("Min/Max", justify="right")
    table.add_column("Cost", justify="right")
    for aggregate in aggregates:
        table.add_row(
            aggregate.server_name,
            str(aggregate.total_calls),
            _format_rate(aggregate.success_rate),
            f"{aggregate.avg_latency_ms:.1f}ms",
            f"{aggregate.min_latency_ms:.0f}/{aggregate.max_latency_ms:.0f}ms",
            _format_cost(aggregate.total_cost_usd),
        )
    console.print(table)

    overall = summarize_overall(aggregates)
    console.print(
        f"[bold]Overall:[/bold] {overall.total_calls} calls, "
        f"{_format_rate(overall.success_rate)} success, "
        f"{overall.avg_latency_ms:.1f}ms avg, "
        f"{_format_cost(overall.total_cost_usd)} total"
    )


def _display_server_performance(performance):
    """Display detailed metrics for one server."""
    aggregate = performance.aggregate
    percentiles = performance.percentiles

    console.print(f"\n[bold]Server:[/bold] {aggregate.server_name}")
    console.print("-" * 40)
    console.print(f"Total calls: {aggregate.total_calls}")
    console.print(f"Successful: {aggregate.successful_calls}  Errors: {aggregate.error_calls}")
    console.print(f"Success rate: {_format_rate(aggregate.success_rate)}")
    console.print(
        f"Latency avg/min/max: {aggregate.avg_latency_ms:.1f}/"
        f"{aggregate.min_latency_ms:.1f}/{aggregate.max_latency_ms:.1f}ms"
    )
    console.print(
        f"Latency p50/p95/p99 (last {percentiles.sample_count} calls): "
        f"{percentiles.p50_ms:.1f}/{percentiles.p95_ms:.1f}/{percentiles.p99_ms:.1f}ms"
    )
    console.print(f"Calls per hour (24h): {performance.calls_per_hour:.2f}")
    console.print(f"Total cost: {_format_cost(aggregate.total_cost_usd)}")


if __name__ == "__main__":
    app()
