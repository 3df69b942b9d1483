"""Brokerage connection CLI commands."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from brokersync.config import get_settings
from brokersync.core.brokers import BrokerSyncService, OAuthNegotiator
from brokersync.core.connections import ConnectionStore
from brokersync.db.database import get_db
from brokersync.db.models import BrokerageConnection, ConnectionStatus, User
from brokersync.exceptions import SyncError

settings = get_settings()
console = Console()
app = typer.Typer()

STATUS_STYLES = {
    ConnectionStatus.ACTIVE.value: "[green]Active[/green]",
    ConnectionStatus.PENDING.value: "[yellow]Pending[/yellow]",
    ConnectionStatus.REQUIRES_AUTH.value: "[red]Needs Reauth[/red]",
}


def _fail(error: SyncError) -> None:
    console.print(f"[red]Error:[/red] {error.message}")
    raise typer.Exit(1)


@app.command("status")
def connection_status(
    user: Optional[str] = typer.Option(
        None,
        "--user",
        "-u",
        help="User email (default: all users)",
    ),
):
    """List brokerage connections."""
    with get_db() as db:
        if user:
            user_obj = db.query(User).filter_by(email=user).first()
            if not user_obj:
                console.print("[red]Error: User not found[/red]")
                raise typer.Exit(1)
            connections = ConnectionStore(db).list_for_user(user_obj.id)
        else:
            connections = (
                db.query(BrokerageConnection).order_by(BrokerageConnection.created_at.asc()).all()
            )

        if not connections:
            console.print("[dim]No brokerage connections[/dim]")
            return

        table = Table(title="Brokerage Connections")
        table.add_column("ID", style="dim")
        table.add_column("Provider")
        table.add_column("Status")
        table.add_column("Accounts", justify="right")
        table.add_column("Token Expires")
        table.add_column("Last Synced")

        for conn in connections:
            table.add_row(
                conn.id,
                conn.provider,
                STATUS_STYLES.get(conn.status, conn.status),
                str(len(conn.accounts)),
                conn.access_token_expires_at.strftime("%Y-%m-%d %H:%M")
                if conn.access_token_expires_at
                else "-",
                conn.last_synced_at.strftime("%Y-%m-%d %H:%M") if conn.last_synced_at else "Never",
            )

        console.print(table)


@app.command("sync")
def sync_connection(
    connection_id: str = typer.Argument(..., help="Connection ID to sync"),
):
    """Fetch and reconcile accounts and positions for a connection."""
    with get_db() as db:
        console.print(f"Syncing connection {connection_id}...")
        try:
            result = BrokerSyncService(db).sync_connection(connection_id)
        except SyncError as e:
            _fail(e)

        console.print("[green]Sync complete![/green]")
        console.print(f"  Accounts: {result.accounts}")
        console.print(f"  Positions: {result.positions}")
        for warning in result.warnings:
            console.print(f"  [yellow]Skipped:[/yellow] {warning}")


@app.command("refresh")
def refresh_batch(
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        help=f"Connections to process (max: {settings.refresh_batch_size})",
    ),
):
    """Run one refresh batch (token refresh + sync)."""
    from brokersync.core.refresh import run_refresh_cycle

    console.print("[bold]Running refresh batch...[/bold]\n")
    summary = run_refresh_cycle(limit=limit)

    console.print(
        f"Processed {summary.connections} connection(s): "
        f"{summary.refreshed} refreshed, {summary.synced} synced"
    )
    if summary.failures:
        table = Table(title="Failures")
        table.add_column("Connection", style="dim")
        table.add_column("Error")
        for failure in summary.failures:
            table.add_row(failure["id"], failure["error"])
        console.print(table)
        raise typer.Exit(1)


@app.command("start")
def start_daemon(
    interval: int = typer.Option(
        None,
        "--interval",
        "-n",
        help=f"Seconds between batches (default: {settings.refresh_interval_seconds})",
    ),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Connections per batch"),
):
    """Start the refresh daemon (runs continuously)."""
    from brokersync.core.scheduler import start_scheduler

    effective_interval = interval or settings.refresh_interval_seconds

    console.print("[bold]Starting refresh daemon[/bold]")
    console.print(f"  Interval: {effective_interval} seconds")
    console.print(f"  Batch size: {min(limit, settings.refresh_batch_size) if limit else settings.refresh_batch_size}")
    console.print()
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    start_scheduler(interval_seconds=interval, limit=limit)


@app.command("initiate")
def initiate_oauth(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    redirect_uri: Optional[str] = typer.Option(None, "--redirect-uri", "-r", help="OAuth callback URL"),
    scope: Optional[str] = typer.Option(None, "--scope", "-s", help="Requested scope"),
):
    """Start the OAuth flow and print the authorization URL."""
    with get_db() as db:
        try:
            request = OAuthNegotiator(ConnectionStore(db)).initiate(connection_id, redirect_uri, scope)
        except SyncError as e:
            _fail(e)

        console.print("Open this URL to authorize:\n")
        console.print(request.authorization_url, soft_wrap=True)
        console.print(f"\n[dim]State: {request.state}[/dim]")


@app.command("exchange")
def exchange_code(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    code: str = typer.Argument(..., help="Authorization code from the redirect"),
    state: Optional[str] = typer.Option(None, "--state", help="State returned with the code"),
    redirect_uri: Optional[str] = typer.Option(None, "--redirect-uri", "-r", help="OAuth callback URL"),
):
    """Exchange an authorization code and activate the connection."""
    with get_db() as db:
        try:
            result = OAuthNegotiator(ConnectionStore(db)).exchange(connection_id, code, state, redirect_uri)
        except SyncError as e:
            _fail(e)

        console.print(f"[green]Connection {result.status}.[/green]")
        if result.access_token_expires_at:
            console.print(f"  Token expires: {result.access_token_expires_at.strftime('%Y-%m-%d %H:%M')} UTC")
