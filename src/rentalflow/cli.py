"""CLI for RentalFlow database management and scheduled jobs."""

from datetime import datetime
from typing import Optional
from uuid import UUID

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateIndex, CreateTable

from rentalflow.config import configure_logging, get_settings
from rentalflow.core.exceptions import RentalFlowError
from rentalflow.core.fulfillment_service import get_service
from rentalflow.core.models import NotificationStatus
from rentalflow.core.qr_codes import generate_qr_code
from rentalflow.db.database import Database, get_db
from rentalflow.db.schemas import (
    Asset,
    AssetBooking,
    Base,
    NotificationLog,
    Order,
    ScanEvent,
    StatusHistoryEntry,
)

app = typer.Typer(
    name="rentalflow",
    help="RentalFlow CLI - manage the database and run lifecycle jobs",
    add_completion=False,
)
console = Console()

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S%z"]


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """RentalFlow command line interface."""
    configure_logging(log_level)


def _connection_panel(db: Database) -> Panel:
    settings = get_settings().database
    url = db.engine.url
    return Panel.fit(
        f"[bold]Dialect:[/bold] {db.engine.dialect.name}\n"
        f"[bold]Database:[/bold] {url.database}\n"
        f"[bold]Host:[/bold] {url.host or '-'}\n"
        f"[bold]Echo SQL:[/bold] {'Enabled' if settings.echo else 'Disabled'}",
        title="Database Connection",
    )


def _schema_ddl(db: Database) -> str:
    statements = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table).compile(db.engine)).strip() + ";")
        for index in sorted(table.indexes, key=lambda index: index.name):
            statements.append(str(CreateIndex(index).compile(db.engine)).strip() + ";")
    return "\n\n".join(statements)


@app.command()
def init_db(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show SQL without executing"),
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables first"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
):
    """Create all tables and indexes."""
    db = get_db()
    console.print(_connection_panel(db))

    if dry_run:
        console.print("\n[yellow]Dry run mode - SQL that would be executed:[/yellow]\n")
        console.print(_schema_ddl(db))
        return

    if drop and not force:
        confirm = typer.confirm("\n⚠️  This will DROP ALL RentalFlow tables and data. Continue?")
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    console.print("\n[blue]Initializing database tables...[/blue]")

    try:
        if drop:
            db.drop_all()
        db.create_all()
        console.print("[green]✓ Database tables initialized successfully![/green]")
    except SQLAlchemyError as e:
        console.print(f"[red]✗ Error initializing database: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def status():
    """Check database connection and show table counts."""
    db = get_db()
    console.print(_connection_panel(db))

    console.print("\n[blue]Checking database connection...[/blue]")
    if not db.health_check():
        console.print("[red]✗ Database unreachable[/red]")
        raise typer.Exit(1)
    console.print("[green]✓ Database connected[/green]\n")

    try:
        with db.session() as session:
            counts = {
                model.__tablename__: session.scalar(select(func.count()).select_from(model))
                for model in (Asset, Order, AssetBooking, ScanEvent, StatusHistoryEntry)
            }
            by_status = session.execute(
                select(Order.status, func.count()).group_by(Order.status).order_by(Order.status)
            ).all()
            failed = session.scalar(
                select(func.count())
                .select_from(NotificationLog)
                .where(NotificationLog.status == NotificationStatus.FAILED.value)
            )
    except SQLAlchemyError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(1)

    console.print("[bold]Table Statistics:[/bold]")
    for table_name, count in counts.items():
        console.print(f"  {table_name}: {count} rows")

    if by_status:
        console.print("\n[bold]Orders by Status:[/bold]")
        for order_status, count in by_status:
            console.print(f"  {order_status}: {count}")

    style = "red" if failed else "green"
    console.print(f"\n[{style}]Failed notifications: {failed}[/{style}]")


@app.command()
def availability(
    asset_id: UUID = typer.Argument(..., help="Asset to inspect"),
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS),
):
    """Show the availability breakdown of an asset."""
    service = get_service()
    try:
        result = service.get_availability(asset_id, start=start, end=end)
    except RentalFlowError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)

    window = f"{start:%Y-%m-%d} → {end:%Y-%m-%d}" if start and end else "now"
    table = Table(title=f"Availability of {asset_id} ({window})")
    table.add_column("Total", justify="right")
    table.add_column("Available", justify="right", style="green")
    table.add_column("Booked", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Maintenance", justify="right", style="red")
    table.add_row(
        str(result.total),
        str(result.available),
        str(result.booked),
        str(result.out),
        str(result.maintenance),
    )
    console.print(table)


@app.command()
def qr_code(
    company_name: str = typer.Argument(..., help="Company the labels are printed for"),
    count: int = typer.Option(1, "--count", "-c", min=1, help="Number of codes to generate"),
):
    """Generate unused QR code payloads for new asset labels."""
    db = get_db()
    codes: list[str] = []
    with db.session() as session:
        while len(codes) < count:
            code = generate_qr_code(company_name)
            taken = session.scalar(select(func.count()).where(Asset.qr_code == code))
            if not taken and code not in codes:
                codes.append(code)
    for code in codes:
        console.print(code)


@app.command()
def retry_notifications(
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum notifications to retry"),
):
    """Redeliver failed notifications and ones stranded in QUEUED or RETRYING."""
    service = get_service()
    undelivered = service.dispatcher.undelivered(limit)
    if not undelivered:
        console.print("[green]✓ No undelivered notifications[/green]")
        return

    console.print(f"[blue]Retrying {len(undelivered)} undelivered notification(s)...[/blue]")
    delivered = service.retry_undelivered_notifications(limit)
    style = "green" if delivered == len(undelivered) else "yellow"
    console.print(f"[{style}]✓ Delivered {delivered} of {len(undelivered)}[/{style}]")


@app.command()
def advance_events(
    now: Optional[datetime] = typer.Option(
        None, "--now", formats=DATE_FORMATS, help="Reference time (default: current time)"
    ),
):
    """Move orders into IN_USE / AWAITING_RETURN as event windows open and close."""
    service = get_service()
    moved = service.advance_event_windows(now)
    service.dispatcher.drain()

    if not moved:
        console.print("[green]✓ No orders to advance[/green]")
        return

    table = Table(title="Advanced Orders")
    table.add_column("Order")
    table.add_column("New Status")
    for order_id, new_status in moved:
        table.add_row(str(order_id), new_status.value)
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the HTTP API."""
    uvicorn.run("rentalflow.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
