"""
CLI interface for Racha AI.

Provides command-line access to the interpreter, the budget ledger and
cache maintenance.
"""

import json
import logging
import sys
from collections import OrderedDict
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from racha_ai.config.loader import EngineConfig, load_engine_config
from racha_ai.core.guardrails import BudgetLedger
from racha_ai.core.interpreter import InterpretResult, create_interpreter
from racha_ai.core.resolution import CulturalContext
from racha_ai.sdk.openai_client import OpenAIModelProvider
from racha_ai.storage.cache import ResponseCache
from racha_ai.storage.models import interpretation_to_dict
from racha_ai.storage.repository import (
    CacheRepository,
    LedgerRepository,
    fetch_recent_call_events,
    initialize_schema,
)

app = typer.Typer()
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1  # Configuration or storage error
EXIT_CODE_NEEDS_INPUT = 2  # Interpretation needs more data from the user


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Racha AI CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Racha AI - Use --help to see available commands")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=err_console, show_time=False)],
        force=True,
    )


def _load_config(config_path: Optional[str], db_path: Optional[str]) -> EngineConfig:
    config = load_engine_config(config_path)
    if db_path:
        config = replace(config, db_path=db_path)
    return config


def _parse_pairs(values: List[str], option: str) -> "OrderedDict[str, str]":
    pairs: "OrderedDict[str, str]" = OrderedDict()
    for raw in values:
        name, sep, value = raw.partition("=")
        if not sep or not name.strip() or not value.strip():
            raise typer.BadParameter(f"expected NAME=VALUE, got {raw!r}", param_hint=option)
        pairs[name.strip()] = value.strip()
    return pairs


def _parse_consumption(values: List[str]) -> Optional[Dict[str, Decimal]]:
    if not values:
        return None
    consumption = OrderedDict()
    for name, value in _parse_pairs(values, "--consumption").items():
        try:
            consumption[name] = Decimal(value.replace(",", "."))
        except InvalidOperation:
            raise typer.BadParameter(f"invalid amount for {name}: {value!r}", param_hint="--consumption")
    return consumption


def _parse_families(values: List[str]) -> Optional[Dict[str, List[str]]]:
    if not values:
        return None
    return OrderedDict(
        (unit, [m.strip() for m in members.split(",") if m.strip()])
        for unit, members in _parse_pairs(values, "--family").items()
    )


def format_brl(amount: Decimal) -> str:
    """Format an amount the Brazilian way: R$ 1.234,56."""
    text = f"{abs(amount):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"-R$ {text}" if amount < 0 else f"R$ {text}"


@app.command()
def init(
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
):
    """Initialize the Racha AI database."""
    try:
        config = _load_config(config_path, db_path)
        initialize_schema(config.db_path)
        console.print(f"[green]✓[/] Database initialized at {config.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def interpret(
    text: str = typer.Argument(..., help="Expense description in Portuguese"),
    participants: List[str] = typer.Option(
        [], "--participant", "-p", help="Participant name (repeat, in order)"
    ),
    scenario_hint: Optional[str] = typer.Option(None, "--scenario-hint", help="e.g. churrasco"),
    region: Optional[str] = typer.Option(None, "--region", help="e.g. SP, RJ"),
    host: Optional[str] = typer.Option(None, "--host", help="Participant who hosts and pays nothing"),
    consumption: List[str] = typer.Option(
        [], "--consumption", help="NAME=VALUE consumed (repeat per participant)"
    ),
    families: List[str] = typer.Option(
        [], "--family", help="UNIT=member1,member2 (repeat per family)"
    ),
    offline: bool = typer.Option(False, "--offline", help="Never call a model"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log routing decisions"),
):
    """
    Interpret an expense message and show who owes what.

    Exits with code 2 when the message needs more data (amount, method,
    participants or consumption) before it can be split.
    """
    _configure_logging(verbose)
    consumption_map = _parse_consumption(consumption)
    family_map = _parse_families(families)

    try:
        config = _load_config(config_path, db_path)
        provider = None if offline else OpenAIModelProvider(config.tiers)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        if not offline:
            console.print("Use --offline to interpret without calling a model.")
        sys.exit(EXIT_CODE_FAIL)

    context = None
    if scenario_hint or region:
        context = CulturalContext(region=region, scenario_hint=scenario_hint)

    with create_interpreter(config, provider) as interpreter:
        result = interpreter.interpret(
            text,
            participants,
            context,
            consumption=consumption_map,
            families=family_map,
            host=host,
        )

    if as_json:
        console.print_json(json.dumps(_result_to_dict(result), ensure_ascii=False))
    else:
        _display_result(result)
    sys.exit(EXIT_CODE_NEEDS_INPUT if result.error else EXIT_CODE_PASS)


@app.command()
def budget(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
    limit: int = typer.Option(10, "--limit", "-n", help="Recent model calls to show"),
):
    """Show today's AI spend against the daily budget."""
    try:
        config = _load_config(config_path, db_path)
        initialize_schema(config.db_path)
        ledger = BudgetLedger(
            config.budget.daily_brl,
            config.budget.alert_threshold_pct,
            repository=LedgerRepository(config.db_path),
        )
        state = ledger.snapshot()
        events = fetch_recent_call_events(limit=limit, db_path=config.db_path)
        cached = CacheRepository(config.db_path).count()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]AI budget for {state.day.isoformat()}[/bold]")
    console.print("-" * 40)
    console.print(f"Spent:     {format_brl(state.spent_brl)}")
    console.print(f"Cap:       {format_brl(state.cap_brl)}")
    console.print(f"Remaining: {format_brl(state.remaining_brl)}")
    color = "red" if state.used_pct >= config.budget.alert_threshold_pct else "green"
    console.print(f"Used:      [{color}]{state.used_pct:.1f}%[/]")
    console.print(f"Cached answers: {cached}")

    if events:
        table = Table(title="Recent model calls")
        table.add_column("When")
        table.add_column("Tier")
        table.add_column("Model")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for event in events:
            table.add_row(
                event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                event.tier.value,
                event.model,
                str(event.total_tokens),
                format_brl(event.cost_brl),
            )
        console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("prune-cache")
def prune_cache(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Delete expired cached interpretations."""
    try:
        config = _load_config(config_path, db_path)
        initialize_schema(config.db_path)
        cache = ResponseCache(
            ttl=timedelta(hours=config.cache.ttl_hours),
            repository=CacheRepository(config.db_path),
        )
        removed = cache.prune()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Removed {removed} expired cache entries")
    sys.exit(EXIT_CODE_PASS)


def _result_to_dict(result: InterpretResult) -> Dict[str, object]:
    return {
        "interpretation": interpretation_to_dict(result.interpretation),
        "split_result": result.split_result.as_dict() if result.split_result else None,
        "tier": result.tier.value if result.tier else None,
        "cached": result.cached,
        "budget_exceeded": result.budget_exceeded,
        "degraded": result.degraded,
        "error": result.error,
        "missing": result.missing,
    }


def _display_result(result: InterpretResult) -> None:
    """Display an interpretation and its split."""
    interpretation = result.interpretation
    console.print("\n[bold]Expense Interpretation[/bold]")
    console.print("-" * 40)
    console.print(f"Scenario:   {interpretation.scenario.value}")
    console.print(f"Method:     {interpretation.method.value}")
    amount = interpretation.amount
    console.print(f"Amount:     {format_brl(amount) if amount is not None else '[dim]unknown[/]'}")
    console.print(f"Confidence: {interpretation.confidence:.2f}")
    console.print(f"Answered by: {result.tier.value if result.tier else 'local rules'}"
                  f"{' (cached)' if result.cached else ''}")

    if result.budget_exceeded:
        console.print("[yellow]Daily AI budget reached; showing the best local answer[/]")
    if result.degraded:
        console.print("[yellow]Model unavailable or too slow; showing the local answer[/]")

    if result.error:
        console.print(f"\n[bold yellow]Needs more information:[/] {result.message}")
        return

    split = result.split_result
    table = Table(title=f"Split ({split.label or split.method.value})")
    table.add_column("Participant")
    table.add_column("Owes", justify="right")
    for name, share in split.per_participant.items():
        table.add_row(name, format_brl(share))
    table.add_row("[bold]Total[/]", f"[bold]{format_brl(split.total)}[/]")
    console.print(table)


if __name__ == "__main__":
    app()
