"""brokersync command line."""

import logging

import typer
from rich.console import Console

from brokersync.cli.brokers import app as brokers_app
from brokersync.cli.market import app as market_app
from brokersync.config import PRODUCT_NAME, PRODUCT_TAGLINE, PRODUCT_VERSION, get_settings
from brokersync.db.database import init_db

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("yfinance", "urllib3", "apscheduler.executors.default")

console = Console()
app = typer.Typer(
    name="brokersync",
    help=f"{PRODUCT_NAME}: {PRODUCT_TAGLINE}",
    add_completion=False,
)
app.add_typer(brokers_app, name="brokers", help="Brokerage connections, token refresh and sync")
app.add_typer(market_app, name="market", help="Quotes and historical prices")


def configure_logging(verbose: bool = False) -> None:
    level_name = "DEBUG" if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Configure logging and make sure the tables exist."""
    configure_logging(verbose)
    init_db()


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold #4F46E5]{PRODUCT_NAME}[/] {PRODUCT_VERSION}")
    console.print(f"[dim]{PRODUCT_TAGLINE}[/dim]")


if __name__ == "__main__":
    app()
