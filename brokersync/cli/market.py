"""Market data CLI commands."""

from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from brokersync.config import get_settings
from brokersync.data.market import HistoricalBackfillEngine, QuoteService, get_candle_source
from brokersync.db.database import get_db
from brokersync.exceptions import SyncError

settings = get_settings()
console = Console()
app = typer.Typer()


def _format_change(change: Optional[float], percent: Optional[float]) -> str:
    if change is None:
        return "-"
    color = "green" if change >= 0 else "red"
    pct = f" ({percent:+.2f}%)" if percent is not None else ""
    return f"[{color}]{change:+.2f}{pct}[/{color}]"


@app.command("quote")
def get_quote(
    tickers: List[str] = typer.Argument(..., help="Ticker symbol(s)"),
    provider: Optional[str] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Provider to try first: alphavantage, finnhub or yfinance",
    ),
):
    """Fetch the latest quote for one or more tickers."""
    with get_db() as db:
        service = QuoteService(db)

        if len(tickers) == 1:
            try:
                quotes = [service.get_quote(tickers[0], provider=provider)]
            except SyncError as e:
                console.print(f"[red]Error:[/red] {e.message}")
                raise typer.Exit(1)
            failures = []
        else:
            console.print(
                f"[dim]Fetching {len(tickers)} quotes "
                f"({settings.quote_batch_delay_seconds:g}s apart)...[/dim]"
            )
            batch = service.get_quotes(tickers)
            quotes, failures = batch.quotes, batch.failures

        table = Table(title="Quotes")
        table.add_column("Symbol", style="bold")
        table.add_column("Price", justify="right")
        table.add_column("Change", justify="right")
        table.add_column("Trading Day")
        table.add_column("Provider", style="dim")

        for quote in quotes:
            table.add_row(
                quote.symbol,
                f"${quote.price:,.2f}",
                _format_change(quote.change, quote.change_percent),
                quote.trading_day or "-",
                quote.provider,
            )

        console.print(table)
        for failure in failures:
            console.print(f"[red]{failure['symbol']}:[/red] {failure['error']}")
        if failures:
            raise typer.Exit(1)


@app.command("history")
def get_history(
    ticker: str = typer.Argument(..., help="Ticker symbol"),
    period: str = typer.Option("1M", "--period", "-p", help="1D, 1M, 3M, 1Y, 5Y or MAX"),
    source: str = typer.Option("finnhub", "--source", "-s", help="finnhub or yfinance"),
    rows: int = typer.Option(10, "--rows", "-n", help="Most recent points to show"),
):
    """Backfill a historical price series."""
    try:
        with get_db() as db:
            engine = HistoricalBackfillEngine(
                get_candle_source(source, settings),
                max_iterations=settings.backfill_max_iterations,
                chunk_days=settings.backfill_chunk_days,
                db=db,
            )
            result = engine.backfill(ticker, period)
    except SyncError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    first, last = result.data[0], result.data[-1]
    console.print(
        f"[bold]{result.symbol}[/bold] {result.period} ({result.resolution}): "
        f"{len(result.data)} points from {first.date[:10]} to {last.date[:10]}"
    )

    table = Table(title=f"Last {min(rows, len(result.data))} points")
    table.add_column("Date")
    table.add_column("Open", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Low", justify="right")
    table.add_column("Close", justify="right")
    table.add_column("Volume", justify="right", style="dim")

    for point in result.data[-rows:]:
        table.add_row(
            point.date[:16].replace("T", " "),
            f"{point.open:.2f}",
            f"{point.high:.2f}",
            f"{point.low:.2f}",
            f"{point.close:.2f}",
            f"{point.volume:,.0f}" if point.volume is not None else "-",
        )

    console.print(table)
