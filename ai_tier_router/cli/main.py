"""
CLI interface for AI Tier Router.

Provides command-line access to the catalog, the usage ledger, the
telemetry log and a one-off invocation.
"""

import logging
import sqlite3
import sys
from datetime import date
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_tier_router.config.loader import (
    CatalogConfig,
    default_catalog_config,
    load_catalog_config,
)
from ai_tier_router.core.catalog import TierCatalog
from ai_tier_router.core.errors import ConfigurationError
from ai_tier_router.core.fallback import FallbackResolver
from ai_tier_router.core.models import InvocationRequest
from ai_tier_router.core.orchestrator import TieredOrchestrator
from ai_tier_router.core.telemetry import FanOutTelemetry, LoggingTelemetry, SqliteTelemetry
from ai_tier_router.sdk.openai_client import OpenAIProvider
from ai_tier_router.storage.ledger import SqliteUsageLedger, usage_day
from ai_tier_router.storage.repository import fetch_recent_invocation_events, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to a catalog YAML file")
DB_OPTION = typer.Option(None, "--db", help="SQLite database path (defaults to the configured one)")


def _load_config(path: Optional[str]) -> CatalogConfig:
    return load_catalog_config(path) if path else default_catalog_config()


def _limit(value: Optional[int]) -> str:
    return "unlimited" if value is None else str(value)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """AI Tier Router CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    if ctx.invoked_subcommand is None:
        console.print("AI Tier Router - Use --help to see available commands")


@app.command()
def init(config: Optional[str] = CONFIG_OPTION, db: Optional[str] = DB_OPTION):
    """Initialize the usage and telemetry database."""
    try:
        settings = _load_config(config).settings
        initialize_schema(db or settings.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except (ConfigurationError, FileNotFoundError, sqlite3.Error) as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def tiers(config: Optional[str] = CONFIG_OPTION):
    """Show the model, limits and features of each tier."""
    try:
        cfg = _load_config(config)
        catalog = TierCatalog(cfg.tiers)
    except (ConfigurationError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Tier Catalog")
    table.add_column("Capability")
    for tier in catalog.tiers:
        table.add_column(tier)
    for capability in catalog.capabilities:
        table.add_row(capability, *[catalog.model_for(t, capability) for t in catalog.tiers])
    table.add_row(
        "[dim]requests/min[/]",
        *[_limit(catalog.rate_limit_for(t).requests_per_minute) for t in catalog.tiers]
    )
    table.add_row(
        "[dim]tokens/request[/]",
        *[_limit(catalog.rate_limit_for(t).max_tokens_per_request) for t in catalog.tiers]
    )
    table.add_row(
        "[dim]chats/day[/]",
        *[_limit(catalog.daily_chat_limit_for(t)) for t in catalog.tiers]
    )
    console.print(table)

    for tier in catalog.tiers:
        enabled = [name for name, on in catalog.features_for(tier).items() if on]
        console.print(f"[bold]{tier}[/] features: {', '.join(enabled) or 'none'}")


@app.command()
def fallbacks(config: Optional[str] = CONFIG_OPTION):
    """Show the fallback chain of each model."""
    try:
        resolver = FallbackResolver(_load_config(config).fallbacks)
    except (ConfigurationError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    for model in resolver.models:
        chain = resolver.fallbacks_for(model)
        console.print(f"{model} -> {', '.join(chain) if chain else '(none)'}")


@app.command()
def usage(
    user_id: str = typer.Argument(..., help="User identity"),
    day: Optional[str] = typer.Option(None, "--day", "-d", help="Day as YYYY-MM-DD (defaults to today)"),
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION
):
    """Show a user's usage counters for a day."""
    try:
        settings = _load_config(config).settings
        ledger_day = date.fromisoformat(day) if day else usage_day(settings.timezone)
        record = SqliteUsageLedger(db or settings.db_path).get(user_id, ledger_day)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("[yellow]No usage recorded yet.[/] Run `ai-tier-router init` first.")
            sys.exit(EXIT_CODE_PASS)
        raise

    console.print(f"[bold]User:[/bold] {record.user_id}")
    console.print(f"Day: {record.day.isoformat()}")
    console.print(f"Chats: {record.chat_count}")
    console.print(f"Tokens: {record.token_count:,}")


@app.command()
def events(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of events to show"),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Filter by user"),
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION
):
    """Show recent invocation telemetry."""
    settings = _load_config(config).settings
    try:
        rows = fetch_recent_invocation_events(user_id=user_id, limit=limit, db_path=db or settings.db_path)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            rows = []
        else:
            raise

    if not rows:
        console.print("\n[bold yellow]No invocation events found[/]\n")
        return

    table = Table(title="Recent Invocations")
    for column in ("Time", "User", "Capability", "Model", "Outcome", "Tokens", "Latency", "Cost"):
        table.add_column(column)
    for event in rows:
        table.add_row(
            event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            event.user_id or "-",
            event.capability or "-",
            event.model,
            event.outcome,
            f"{event.total_tokens:,}",
            f"{event.latency_ms:,.0f} ms",
            f"${event.estimated_cost:.6f}" if event.estimated_cost is not None else "-",
        )
    console.print(table)


@app.command()
def invoke(
    capability: str = typer.Argument(..., help="Capability, e.g. characterReply"),
    prompt: str = typer.Argument(..., help="Prompt text"),
    tier: str = typer.Option("free", "--tier", "-t", help="Subscription tier"),
    user_id: str = typer.Option("cli", "--user", "-u", help="User identity"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model override (if the tier allows it)"),
    config: Optional[str] = CONFIG_OPTION,
    db: Optional[str] = DB_OPTION
):
    """Run one request through the orchestrator using OpenAI."""
    try:
        cfg = _load_config(config)
        db_path = db or cfg.settings.db_path
        initialize_schema(db_path)
        orchestrator = TieredOrchestrator.from_config(
            cfg,
            OpenAIProvider(),
            ledger=SqliteUsageLedger(db_path),
            telemetry=FanOutTelemetry([SqliteTelemetry(db_path), LoggingTelemetry()]),
        )
        outcome = orchestrator.execute(InvocationRequest(
            capability=capability,
            tier=tier,
            user_id=user_id,
            prompt=prompt,
            model_override=model,
        ))
        orchestrator.close()
    except (ConfigurationError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if outcome.ok:
        console.print(outcome.text)
        console.print(
            f"\n[dim]model={outcome.model_used} tokens={outcome.usage.total_tokens} "
            f"fallback={'yes' if outcome.fallback_used else 'no'}[/]"
        )
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[red]{outcome.status.value}:[/] {outcome.failure_kind.value} - {outcome.message}")
    if outcome.attempted_models:
        console.print(f"Tried: {', '.join(outcome.attempted_models)}")
    sys.exit(EXIT_CODE_FAIL)


if __name__ == "__main__":
    app()
