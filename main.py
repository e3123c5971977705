#!/usr/bin/env python3
"""
OKX / KuCoin Spot Arbitrage Bot

Finds the same coin priced differently on OKX and KuCoin and, when the gap
beats both taker fees, buys on the cheaper venue and sells on the dearer one.

Usage:
    python main.py scan         # Rank current opportunities
    python main.py balances     # Show USDT balances on both venues
    python main.py trade DOGE --amount 100 --buy okx --sell kucoin
    python main.py watch        # Re-scan on an interval (optionally auto-trade)
    python main.py history      # Show trade history
"""

import asyncio
import sys
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from spotarb.config import get_config
from spotarb.engine.execution_engine import ExecutionEngine
from spotarb.logger import get_logger, setup_logging
from spotarb.models import ScanResult, Trade, Venue

# Initialize
app = typer.Typer(
    name="spotarb",
    help="OKX / KuCoin Spot Arbitrage Bot",
    add_completion=False,
)
console = Console()
logger = None


def setup(debug: bool = False):
    """Initialize logging and configuration."""
    global logger
    config = get_config()
    if debug:
        config.development.debug_mode = True
        config.monitoring.log_level = "DEBUG"
    setup_logging()
    logger = get_logger("main")


def warn_if_ephemeral() -> None:
    """In-memory history does not outlive the process that made it."""
    if get_config().database.trade_store == "memory":
        console.print(
            "[yellow]TRADE_STORE=memory: trades from other runs are not kept. "
            "Set TRADE_STORE=sqlite to persist history.[/yellow]"
        )


def render_scan(result: ScanResult, limit: int = 20) -> None:
    """Print venue health and the ranked opportunity table."""
    health = "  ".join(
        f"{venue.value}: "
        + (f"[green]up[/green] ({result.venue_symbol_counts.get(venue, 0)} symbols)"
           if ok else "[red]down[/red]")
        for venue, ok in result.venue_availability.items()
    )
    console.print(health)

    if not result.opportunities:
        console.print("[yellow]No profitable opportunities[/yellow]")
        return

    table = Table(title="🎯 Arbitrage Opportunities", box=box.ROUNDED)
    table.add_column("Symbol", style="cyan")
    table.add_column("Buy")
    table.add_column("Sell")
    table.add_column("Buy Price", justify="right")
    table.add_column("Sell Price", justify="right")
    table.add_column("Profit %", justify="right", style="green")
    table.add_column("Amount", justify="right")
    table.add_column("Net Profit", justify="right", style="green")

    for opp in result.opportunities[:limit]:
        table.add_row(
            opp.symbol,
            opp.buy_venue.value,
            opp.sell_venue.value,
            f"{opp.buy_price:f}",
            f"{opp.sell_price:f}",
            f"{opp.profit_percent:.3f}%",
            f"{opp.trade_amount:f}",
            f"${opp.net_profit:.4f}",
        )
    console.print(table)


def render_trade(trade: Trade) -> None:
    """Print one trade result."""
    style = "green" if trade.status.value == "completed" else "red"
    lines = [
        f"Trade: [dim]{trade.id}[/dim]",
        f"Status: [{style}]{trade.status.value.upper()}[/{style}]",
        f"{trade.symbol}: buy {trade.buy_venue.value} @ {trade.buy_price:f} → "
        f"sell {trade.sell_venue.value} @ {trade.sell_price:f}",
        f"Amount: {trade.amount:f} (requested {trade.requested_amount:f})",
        f"Buy order: {trade.buy_order_id or '-'}   Sell order: {trade.sell_order_id or '-'}",
        f"Expected net: ${trade.net_profit:.4f}",
    ]
    for leg, error in trade.errors.items():
        lines.append(f"[red]{leg} error ({error.kind.value}): {error.message}[/red]")
    if trade.at_risk:
        lines.append(
            f"[bold red]⚠️  {trade.amount:f} {trade.symbol} bought on {trade.buy_venue.value} "
            f"was not sold. Manual action needed.[/bold red]"
        )
    console.print(Panel.fit("\n".join(lines), title="Trade Result", border_style=style))


@app.command()
def scan(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of opportunities to show"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Fetch both venues' tickers and rank opportunities."""
    setup(debug)

    async def run_scan():
        async with ExecutionEngine() as engine:
            return await engine.scan()

    console.print("[dim]Fetching tickers...[/dim]")
    render_scan(asyncio.run(run_scan()), limit=limit)


@app.command()
def balances():
    """Show available USDT on both venues."""
    setup()

    async def fetch():
        async with ExecutionEngine() as engine:
            await engine.get_balances()
            return engine.balances

    tracker = asyncio.run(fetch())
    quote = get_config().scanner.quote_asset

    table = Table(title=f"💰 {quote} Balances", box=box.ROUNDED)
    table.add_column("Venue", style="cyan")
    table.add_column("Available", justify="right", style="green")
    table.add_column("Error", style="red")

    for venue in Venue:
        result = tracker.get(venue)
        if result is None:
            continue
        balance = result.balance
        table.add_row(
            venue.value,
            f"{balance.available:f}" if balance else "-",
            f"{result.error.kind.value}: {result.error.message}" if result.error else "",
        )
    console.print(table)


@app.command()
def trade(
    symbol: str = typer.Argument(..., help="Base asset, e.g. DOGE"),
    amount: str = typer.Option(..., "--amount", "-a", help="Units of the base asset"),
    buy: str = typer.Option(..., "--buy", help="Venue to buy on (okx/kucoin)"),
    sell: str = typer.Option(..., "--sell", help="Venue to sell on (okx/kucoin)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Place a live buy/sell pair with real money."""
    setup()

    if not yes:
        confirm = typer.confirm(
            f"⚠️  Buy {amount} {symbol.upper()} on {buy} and sell on {sell} with real money?",
            default=False,
        )
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit()

    payload = {"symbol": symbol, "amount": amount, "buyVenue": buy, "sellVenue": sell}

    async def execute():
        async with ExecutionEngine() as engine:
            response = await engine.execute_trade(payload)
            trade_id = response.get("tradeId")
            return response, engine.store.get(trade_id) if trade_id else None

    response, record = asyncio.run(execute())
    if record is None:
        console.print(f"[red]{response.get('errorType')}: {response.get('error')}[/red]")
        raise typer.Exit(1)

    render_trade(record)
    if not response["success"]:
        raise typer.Exit(1)


@app.command()
def watch(
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds between scans"),
    auto_trade: bool = typer.Option(False, "--auto-trade", help="Execute the best opportunity each cycle"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt (for automated deployments)"),
):
    """
    Scan repeatedly.

    With --auto-trade the best opportunity of each cycle is executed with
    real money. Use --yes to skip the confirmation prompt.
    """
    setup()
    config = get_config()
    interval = interval or config.execution.poll_interval_seconds
    auto_trade = auto_trade or config.execution.auto_trade

    console.print(Panel.fit(
        "[bold green]💱 Spot Arbitrage Watch[/bold green]\n\n"
        f"Mode: [yellow]{'🔴 AUTO TRADING' if auto_trade else 'Scan only'}[/yellow]\n"
        f"Interval: [cyan]{interval:g}s[/cyan]\n"
        f"Min Profit: [cyan]{config.scanner.min_profit_percent}%[/cyan]\n"
        f"Max Price: [cyan]{config.scanner.max_price} {config.scanner.quote_asset}[/cyan]",
        title="Configuration",
        border_style="green",
    ))

    if auto_trade and not yes:
        confirm = typer.confirm(
            "⚠️  Auto-trading places real orders on every profitable cycle. Continue?",
            default=False,
        )
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit()

    async def loop():
        async with ExecutionEngine() as engine:
            while True:
                report = await engine.run_cycle(auto_trade=auto_trade)
                console.rule(report.scan.scanned_at.strftime("%H:%M:%S"))
                render_scan(report.scan, limit=10)
                if report.trade is not None:
                    render_trade(report.trade)
                await asyncio.sleep(interval)

    try:
        asyncio.run(loop())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of trades to show"),
):
    """Show recent trade history."""
    setup()

    from spotarb.database import get_trade_store

    warn_if_ephemeral()
    trades = get_trade_store().list(limit=limit)
    if not trades:
        console.print("[dim]No trades found[/dim]")
        return

    table = Table(title="📜 Trade History", box=box.ROUNDED)
    table.add_column("Time", style="dim")
    table.add_column("Symbol", style="cyan")
    table.add_column("Route")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Net", justify="right")
    table.add_column("At Risk")

    for record in trades:
        status_style = {"completed": "green", "failed": "red"}.get(record.status.value, "yellow")
        table.add_row(
            record.created_at.strftime("%m/%d %H:%M:%S"),
            record.symbol,
            f"{record.buy_venue.value} → {record.sell_venue.value}",
            f"{record.amount:f}",
            f"[{status_style}]{record.status.value}[/{status_style}]",
            f"${record.net_profit:.4f}",
            "[bold red]YES[/bold red]" if record.at_risk else "",
        )
    console.print(table)


@app.command()
def status():
    """Show credential state and trade summary."""
    setup()

    from spotarb.database import get_trade_store

    warn_if_ephemeral()
    config = get_config()
    summary = get_trade_store().summary()

    table = Table(title="📊 Status", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    for venue, missing in config.credential_report().items():
        table.add_row(
            f"{venue} credentials",
            "configured" if not missing else f"[red]missing: {', '.join(missing)}[/red]",
        )
    table.add_row("Trade store", config.database.trade_store)
    table.add_row("Total Trades", str(summary["total_trades"]))
    table.add_row("Completed", str(summary["completed"]))
    table.add_row("Failed", str(summary["failed"]))
    table.add_row("At Risk", str(summary["at_risk"]))
    table.add_row("Expected Net Profit", f"${summary['expected_net_profit']:.4f}")
    console.print(table)


@app.command()
def config():
    """Show current configuration (secrets are never shown)."""
    setup()

    cfg = get_config()

    def creds(missing):
        return "configured" if not missing else f"missing {', '.join(missing)}"

    report = cfg.credential_report()
    console.print(Panel.fit(
        f"[bold]Venues[/bold]\n"
        f"  OKX: {cfg.okx.base_url} ({creds(report['OKX'])}), taker fee {cfg.okx.taker_fee_rate}\n"
        f"  KuCoin: {cfg.kucoin.base_url} ({creds(report['KuCoin'])}), taker fee {cfg.kucoin.taker_fee_rate}\n\n"
        f"[bold]Scanner[/bold]\n"
        f"  Profit Window: {cfg.scanner.min_profit_percent}% - {cfg.scanner.max_profit_percent}%\n"
        f"  Min Net Profit: ${cfg.scanner.min_net_profit}\n"
        f"  Max Price: {cfg.scanner.max_price} {cfg.scanner.quote_asset}\n"
        f"  Max Opportunities: {cfg.scanner.max_opportunities}\n"
        f"  Amount Tiers: {cfg.scanner.trade_amount_tiers} (else {cfg.scanner.trade_amount_fallback})\n\n"
        f"[bold]Execution[/bold]\n"
        f"  Min Balance: {cfg.execution.min_trade_balance} {cfg.scanner.quote_asset}\n"
        f"  Max Balance Fraction: {cfg.execution.max_balance_fraction}\n"
        f"  Settlement Delay: {cfg.execution.settlement_delay_seconds:g}s\n"
        f"  Request Timeout: {cfg.execution.request_timeout_seconds:g}s\n"
        f"  Auto Trade: {'Yes' if cfg.execution.auto_trade else 'No'}\n\n"
        f"[bold]Mode[/bold]\n"
        f"  Trade Store: {cfg.database.trade_store}\n"
        f"  Notifications: {'Yes' if cfg.monitoring.enable_notifications else 'No'}\n"
        f"  Debug Mode: {'Yes' if cfg.development.debug_mode else 'No'}",
        title="⚙️ Configuration",
        border_style="blue",
    ))


@app.command()
def version():
    """Show version information."""
    from spotarb import __version__

    console.print(Panel.fit(
        f"[bold]OKX / KuCoin Spot Arbitrage Bot[/bold]\n"
        f"Version: {__version__}\n"
        f"Python: {sys.version.split()[0]}",
        border_style="blue",
    ))


if __name__ == "__main__":
    app()
