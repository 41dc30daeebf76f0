"""
CLI interface for AI Usage Sync.

Operator commands for running sync jobs, inspecting sync state, fixing up
identity mappings and viewing projected daily usage.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_usage_sync.config.loader import Settings, load_settings
from ai_usage_sync.core.backfill import backfill as run_backfill
from ai_usage_sync.core.forward_sync import sync_forward
from ai_usage_sync.core.identity import set_identity_mapping
from ai_usage_sync.core.projection import (
    ValueStatus,
    build_daily_series,
    get_data_completeness,
    has_incomplete_data,
    local_clock,
    project,
)
from ai_usage_sync.core.sync_state import describe_status, get_sync_state, reset_backfill
from ai_usage_sync.providers import PROVIDERS, get_provider
from ai_usage_sync.storage.repository import UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_STATUS_MARKERS = {
    ValueStatus.CONFIRMED: "",
    ValueStatus.INCOMPLETE: " [yellow]*[/]",
    ValueStatus.ESTIMATED: " [cyan]~[/]",
    ValueStatus.EXTRAPOLATED: " [magenta]^[/]",
}


@dataclass
class CliState:
    settings: Settings
    database: str

    def repository(self) -> UsageRepository:
        initialize_schema(self.database)
        return UsageRepository(self.database)


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("ai_usage_sync")
    if not verbose:
        return
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        logger.addHandler(RichHandler(console=console, show_path=False))
    logger.setLevel(logging.DEBUG)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML settings"),
    database: Optional[str] = typer.Option(None, "--database", "-d", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show sync progress logs"),
):
    """AI Usage Sync CLI."""
    _configure_logging(verbose)
    try:
        settings = load_settings(config)
    except Exception as e:
        _fail(f"Invalid configuration: {e}")
    ctx.obj = CliState(settings=settings, database=database or settings.database)

    if ctx.invoked_subcommand is None:
        console.print("AI Usage Sync - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage database."""
    try:
        initialize_schema(_state(ctx).database)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def sync(ctx: typer.Context, provider: str = typer.Argument(..., help="Provider to sync")):
    """Run a forward sync from the stored cursor to now."""
    state = _state(ctx)
    if provider in PROVIDERS and not state.settings.get_provider_config(provider).enabled:
        console.print(f"[yellow]{provider} is disabled in the configuration[/]")
        sys.exit(EXIT_CODE_PASS)
    try:
        client = get_provider(provider, state.settings)
    except ValueError as e:
        _fail(str(e))

    with client:
        result = sync_forward(client, state.repository(), state.settings)

    if result.success:
        console.print(f"[green]✓[/] {client.display_name}: {result.summary()}")
        for error in result.errors:
            console.print(f"  [yellow]warning:[/] {error}")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗[/] {client.display_name}: {result.summary()}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def backfill(
    ctx: typer.Context,
    provider: str = typer.Argument(..., help="Provider to backfill"),
    target_date: Optional[str] = typer.Option(
        None,
        "--target-date",
        "-t",
        help="Oldest date to backfill to (YYYY-MM-DD)"
    ),
):
    """Walk backward through provider history toward the target date."""
    state = _state(ctx)
    target = None
    if target_date is not None:
        try:
            target = date.fromisoformat(target_date)
        except ValueError:
            _fail(f"Invalid target date '{target_date}', expected YYYY-MM-DD")
    try:
        client = get_provider(provider, state.settings)
    except ValueError as e:
        _fail(str(e))

    with client:
        result = run_backfill(client, state.repository(), state.settings, target_date=target)

    if result.rate_limited:
        console.print(f"[yellow]…[/] {client.display_name}: {result.summary()}")
        sys.exit(EXIT_CODE_PASS)
    if result.success:
        console.print(f"[green]✓[/] {client.display_name}: {result.summary()}")
        if result.last_processed_date:
            console.print(f"  Processed back to {result.last_processed_date.isoformat()}")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗[/] {client.display_name}: {result.summary()}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show forward and backfill state for every provider."""
    state = _state(ctx)
    repository = state.repository()

    table = Table(title="Sync status")
    table.add_column("Provider")
    table.add_column("Forward")
    table.add_column("Synced through")
    table.add_column("Last sync")
    table.add_column("Backfill")
    table.add_column("Oldest data")
    table.add_column("Rows", justify="right")

    for name, provider_cls in PROVIDERS.items():
        sync_state = get_sync_state(repository, name)
        target = state.settings.get_provider_config(name).backfill.target_date
        described = describe_status(sync_state, provider_cls.granularity, target)
        table.add_row(
            name,
            described.forward_status,
            _format_moment(sync_state.last_forward_cursor),
            _format_moment(sync_state.forward.last_sync_at),
            f"{described.backfill_status} ({described.backfill_progress}%)",
            sync_state.backfill_oldest_date.isoformat() if sync_state.backfill_oldest_date else "-",
            str(repository.count_usage_records(provider_cls.tool)),
        )

    console.print(table)


@app.command("reset-backfill")
def reset_backfill_command(ctx: typer.Context, provider: str = typer.Argument(...)):
    """Clear the backfill completion flag for a provider."""
    try:
        reset_backfill(_state(ctx).repository(), provider)
    except ValueError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Backfill for {provider} will resume on the next run")


@app.command("map")
def map_identity(
    ctx: typer.Context,
    tool: str = typer.Argument(..., help="Tool the id belongs to (e.g. claude_code)"),
    external_id: str = typer.Argument(..., help="Provider actor id"),
    identity: str = typer.Argument(..., help="Email to attribute usage to"),
):
    """Map a provider actor id to an identity, reattributing past usage."""
    try:
        updated = set_identity_mapping(_state(ctx).repository(), tool, external_id, identity)
    except ValueError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] {external_id} -> {identity} ({updated} rows reattributed)")


@app.command()
def unmapped(ctx: typer.Context, tool: str = typer.Argument(...)):
    """List provider actor ids whose usage is still unattributed."""
    ids = _state(ctx).repository().get_unmapped_external_ids(tool)
    if not ids:
        console.print(f"[green]✓[/] No unmapped ids for {tool}")
        return
    for external_id in ids:
        console.print(external_id)


@app.command()
def daily(
    ctx: typer.Context,
    days: int = typer.Option(14, "--days", "-n", help="Number of days to show"),
):
    """Show daily token usage per tool with incomplete days projected."""
    if days <= 0:
        _fail("--days must be positive")
    state = _state(ctx)
    repository = state.repository()

    tools = [provider_cls.tool for provider_cls in PROVIDERS.values()]
    today, local_hour = local_clock()
    series = build_daily_series(repository, today - timedelta(days=days - 1), today, tools)
    points = project(
        series,
        get_data_completeness(repository, tools),
        today,
        local_hour=local_hour,
        config=state.settings.projection,
    )

    table = Table(title="Daily usage (tokens)")
    table.add_column("Date")
    for tool in tools:
        table.add_column(tool, justify="right")
    table.add_column("Cost", justify="right")

    for point in points:
        cells = [point.date.isoformat()]
        for tool in tools:
            value = point.tools[tool]
            cells.append(f"{value.displayed:,}{_STATUS_MARKERS[value.status]}")
        cells.append(_format_currency(point.cost))
        table.add_row(*cells)

    console.print(table)
    if has_incomplete_data(points):
        console.print("[dim]* incomplete  ~ estimated from history  ^ extrapolated from today so far[/]")


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


def _format_moment(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M") if moment else "-"


if __name__ == "__main__":
    app()
