"""Typer CLI commands with Rich formatting."""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..core.config import get_settings
from ..core.errors import RetiError
from ..core.types import Indicator, Validator
from ..data.gateway import load_gateway
from ..services.metrics import (
    MICROALGOS_PER_ALGO,
    calculate_validator_health,
    is_migration_set,
    is_sunsetted,
    node_num_for_pool_id,
    pool_name,
)
from ..services.validator_service import ValidatorService

app = typer.Typer(
    name="reti",
    help="Réti Staking Dashboard - Inspect validators, pools and stakes",
)
console = Console()

HEALTH_LABELS = {
    Indicator.NORMAL: "[green]Fully operational[/green]",
    Indicator.WATCH: "[yellow]Payouts lagging[/yellow]",
    Indicator.WARNING: "[orange3]Payouts stopped[/orange3]",
    Indicator.ERROR: "[red]Rewards not compounding[/red]",
}


def run_async(coro):
    """Helper to run async functions from sync CLI."""
    return asyncio.run(coro)


def get_service() -> ValidatorService:
    settings = get_settings()
    try:
        gateway = load_gateway(settings.ledger_gateway)
    except (ValueError, ImportError, AttributeError) as e:
        console.print(f"[red]Error: cannot load ledger gateway: {e}[/red]")
        raise typer.Exit(1)
    return ValidatorService(gateway)


def format_algo(microalgos: int | None) -> str:
    if microalgos is None:
        return "--"
    return f"{microalgos / MICROALGOS_PER_ALGO:,.6f} ALGO"


def format_apy(apy_bps: int | None) -> str:
    return f"{apy_bps / 100:.2f}%" if apy_bps else "--"


def fetch(coro, message: str, output_json: bool = False):
    """Run a service call, with a spinner unless printing JSON."""
    if output_json:
        return run_async(coro)
    with console.status(f"[bold blue]{message}"):
        return run_async(coro)


def fail(message: str, output_json: bool = False) -> None:
    if output_json:
        print(json.dumps({"error": message}, indent=2))
    else:
        console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Réti Staking Dashboard."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
    )


def print_validator(validator: Validator) -> None:
    config = validator.config
    title = validator.nfd.name if validator.nfd else f"Validator #{validator.id}"
    health = calculate_validator_health(validator.rounds_since_last_payout)

    notices = ""
    if is_sunsetted(validator, time.time()):
        notices += "\n[red]Adding stake is disabled (sunsetted)[/red]"
    if is_migration_set(validator):
        notices += f"\n[yellow]Migrating to validator #{config.sunsetting_to}[/yellow]"

    console.print(
        Panel(
            f"[bold]{title}[/bold]\n\n"
            f"Owner: {config.owner}\n"
            f"Manager: {config.manager}\n"
            f"Commission: {config.percent_to_validator / 10_000:.4f}% "
            f"to {config.validator_commission_address}\n"
            f"Epoch length: {config.epoch_round_length} rounds\n"
            f"Health: {HEALTH_LABELS[health]}"
            f"{notices}",
            title=f"Validator #{validator.id}",
        )
    )

    summary = Table(title="Summary", show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", style="green")
    summary.add_row("Pools", str(validator.state.num_pools))
    summary.add_row("Stakers", str(validator.state.total_stakers))
    summary.add_row("Total Staked", format_algo(validator.state.total_algo_staked))
    summary.add_row("Minimum Entry", format_algo(config.min_entry_stake))
    summary.add_row("Rewards Balance", format_algo(validator.rewards_balance))
    summary.add_row("APY", format_apy(validator.apy_bps))
    if validator.rounds_since_last_payout is not None:
        summary.add_row("Rounds Since Payout", f"{validator.rounds_since_last_payout:,}")
    if validator.reward_token:
        token = validator.reward_token
        summary.add_row("Reward Token", f"{token.unit_name or token.name} ({token.index})")
    if validator.gating_assets:
        gating = ", ".join(str(asset.index) for asset in validator.gating_assets)
        summary.add_row("Gating Assets", gating)
    console.print(summary)
    console.print()

    if validator.pools:
        pools_table = Table(title="Pools")
        pools_table.add_column("Pool", style="cyan")
        pools_table.add_column("App ID", justify="right")
        pools_table.add_column("Node", justify="right")
        pools_table.add_column("Stakers", justify="right")
        pools_table.add_column("Staked", style="green", justify="right")
        pools_table.add_column("Algod", style="dim")
        for index, pool in enumerate(validator.pools):
            node_num = node_num_for_pool_id(pool.pool_app_id, validator.node_pool_assignment)
            pools_table.add_row(
                pool_name(index),
                str(pool.pool_app_id),
                str(node_num or "--"),
                str(pool.total_stakers),
                format_algo(pool.total_algo_staked),
                pool.algod_version or "",
            )
        console.print(pools_table)
        console.print()


@app.command()
def validator(
    validator_id: int = typer.Argument(..., help="Validator ID"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """
    Show one validator with its pools and payout health.

    Examples:
        reti validator 1
        reti validator 1 --json
    """
    service = get_service()
    try:
        result = fetch(
            service.fetch_validator(validator_id, with_metrics=True),
            f"Fetching validator {validator_id}...",
            output_json,
        )
    except RetiError as e:
        fail(str(e), output_json)

    if output_json:
        print(result.model_dump_json(indent=2))
        return
    print_validator(result)


@app.command()
def validators(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List all registered validators."""
    service = get_service()
    try:
        result = fetch(service.fetch_validators(), "Fetching validators...", output_json)
    except RetiError as e:
        fail(str(e), output_json)

    if output_json:
        print(json.dumps([v.model_dump(mode="json") for v in result], indent=2))
        return

    table = Table(title=f"Validators ({len(result)})")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name")
    table.add_column("Pools", justify="right")
    table.add_column("Stakers", justify="right")
    table.add_column("Staked", style="green", justify="right")
    table.add_column("Commission", justify="right")
    table.add_column("APY", justify="right")
    table.add_column("Health")
    for v in result:
        table.add_row(
            str(v.id),
            v.nfd.name if v.nfd else v.config.owner,
            str(v.state.num_pools),
            str(v.state.total_stakers),
            format_algo(v.state.total_algo_staked),
            f"{v.config.percent_to_validator / 10_000:.2f}%",
            format_apy(v.apy_bps),
            HEALTH_LABELS[calculate_validator_health(v.rounds_since_last_payout)],
        )
    console.print(table)


@app.command()
def stakes(
    address: str = typer.Argument(..., help="Staker account address"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show an account's stake with each validator."""
    service = get_service()
    try:
        result = fetch(
            service.fetch_staker_validator_data(address), "Fetching stakes...", output_json
        )
    except RetiError as e:
        fail(str(e), output_json)

    if output_json:
        print(json.dumps([s.model_dump(mode="json") for s in result], indent=2))
        return

    if not result:
        console.print("[yellow]No stakes found for this account[/yellow]")
        return

    table = Table(title=f"Stakes for {address}")
    table.add_column("Validator", style="cyan", justify="right")
    table.add_column("Pools", justify="right")
    table.add_column("Balance", style="green", justify="right")
    table.add_column("Total Rewarded", justify="right")
    table.add_column("Token Rewards", justify="right")
    table.add_column("Last Payout", style="dim", justify="right")
    for stake in result:
        table.add_row(
            str(stake.validator_id),
            str(len(stake.pools)),
            format_algo(stake.balance),
            format_algo(stake.total_rewarded),
            str(stake.reward_token_balance),
            str(stake.last_payout or "--"),
        )
    console.print(table)


@app.command()
def stakers(
    validator_id: int = typer.Argument(..., help="Validator ID"),
    pool: Optional[int] = typer.Option(
        None, "--pool", "-p", min=1, help="Pool number (1-based); all pools when omitted"
    ),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show stake per account for a validator's pools."""
    service = get_service()
    scope = "all" if pool is None else pool - 1
    try:
        result = fetch(
            service.fetch_stakers_chart_data(validator_id, scope),
            "Fetching stakers...",
            output_json,
        )
    except RetiError as e:
        fail(str(e), output_json)

    if output_json:
        print(json.dumps([entry.model_dump() for entry in result], indent=2))
        return

    title = f"Stakers of validator #{validator_id}"
    if pool is not None:
        title += f" ({pool_name(pool - 1)})"
    table = Table(title=title)
    table.add_column("Staker", style="cyan")
    table.add_column("Stake", style="green", justify="right")
    table.add_column("Link", style="dim")
    for entry in sorted(result, key=lambda e: e.value, reverse=True):
        table.add_row(entry.name, format_algo(entry.value), entry.href)
    console.print(table)


@app.command()
def balance(
    address: str = typer.Argument(..., help="Account address"),
):
    """Show an account's total, spendable and reserved balance."""
    service = get_service()
    try:
        result = run_async(service.algod.get_balance(address))
    except RetiError as e:
        fail(str(e))

    table = Table(title=address, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Total", format_algo(result.amount))
    table.add_row("Available", f"[bold green]{format_algo(result.available)}[/bold green]")
    table.add_row("Minimum Balance", format_algo(result.minimum))
    console.print(table)


@app.command()
def nfd(
    name: str = typer.Argument(..., help="NFD name or application ID"),
):
    """Look up an NFD record."""
    service = get_service()
    try:
        record = run_async(service.nfd.lookup(name, view="brief"))
    except RetiError as e:
        fail(str(e))

    console.print(
        Panel(
            f"[bold]{record.name}[/bold]\n\n"
            f"App ID: {record.app_id or '--'}\n"
            f"Owner: {record.owner or '--'}\n"
            f"Deposit account: {record.deposit_account or '--'}\n"
            f"Profile: {service.nfd.profile_url_for(record.name)}",
            title="NFD",
        )
    )


@app.command()
def watch(
    validator_id: int = typer.Argument(..., help="Validator ID to monitor"),
    interval: int = typer.Option(
        30, "--interval", "-i", help="Refresh interval in seconds"
    ),
):
    """
    Continuously monitor a validator's payout health.

    Press Ctrl+C to stop.
    """
    service = get_service()
    while True:
        console.clear()
        try:
            result = run_async(service.fetch_validator(validator_id, with_metrics=True))
            print_validator(result)
        except RetiError as e:
            console.print(f"[red]Error: {e}[/red]")
        updated = datetime.now(timezone.utc).strftime("%H:%M:%S UTC")
        console.print(
            f"\n[dim]Updated {updated}, refreshing every {interval} seconds... "
            f"Press Ctrl+C to stop[/dim]"
        )
        time.sleep(interval)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
):
    """Run the JSON API server."""
    import uvicorn

    uvicorn.run("reti_dashboard.web.app:create_app", host=host, port=port, factory=True)


if __name__ == "__main__":
    app()
