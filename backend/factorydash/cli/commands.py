"""Operator CLI for factorydash using Typer and Rich.

Commands:
- init-db: Create the ledger tables
- list: List pipeline sessions in a table
- status: Show one session with its steps and costs
- serve: Run the API server
"""

import asyncio
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from factorydash import configure_logging
from factorydash.config import settings
from factorydash.db import async_session, check_connection, init_database
from factorydash.errors import NotFoundError, StorageUnavailable
from factorydash.services.ledger import SessionFilter, SessionLedger

app = typer.Typer(name="factorydash", help="Content Factory pipeline ledger and dashboard backend")
console = Console()

_STATUS_COLORS = {
    "created": "white",
    "processing": "yellow",
    "ready_for_review": "cyan",
    "approved": "green",
    "publishing": "blue",
    "published": "bold green",
    "rejected": "magenta",
    "error": "red",
    "cancelled": "dim",
    # step statuses
    "pending": "white",
    "running": "yellow",
    "completed": "green",
    "failed": "red",
    "skipped": "dim",
}


def _status_display(status: str) -> str:
    color = _STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


@app.command("init-db")
def init_db():
    """Create the ledger tables in the configured database."""
    asyncio.run(_init_db_async())


async def _init_db_async():
    if not await check_connection():
        console.print(f"[red]Error:[/red] Database unreachable: {settings.database.url}")
        raise typer.Exit(code=1)
    await init_database()
    console.print(f"[green]Ledger tables ready[/green] ({settings.database.url})")


@app.command("list")
def list_sessions(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by session status"),
    marketplace: Optional[str] = typer.Option(None, "--marketplace", "-m", help="Filter by marketplace"),
    search: Optional[str] = typer.Option(None, "--search", help="Substring of the product name"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows (1-200)"),
):
    """List pipeline sessions, most recently updated first."""
    asyncio.run(_list_async(SessionFilter(status=status, marketplace=marketplace, search=search), limit))


async def _list_async(filters: SessionFilter, limit: int):
    ledger = SessionLedger(async_session)
    try:
        rows, total = await ledger.list_sessions(filters, limit=limit)
    except StorageUnavailable as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)

    if not rows:
        console.print("[yellow]No sessions found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Product")
    table.add_column("Marketplace")
    table.add_column("Status")
    table.add_column("Step")
    table.add_column("Updated")

    for row in rows:
        name = row.product_name if len(row.product_name) <= 40 else row.product_name[:37] + "..."
        status = _status_display(row.status)
        if row.resume_url:
            status += " [cyan](waiting)[/cyan]"
        table.add_row(
            str(row.id),
            name,
            row.marketplace,
            status,
            row.current_step or "-",
            row.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)
    console.print(f"[dim]{len(rows)} of {total} session(s)[/dim]")


@app.command()
def status(
    session_id: int = typer.Argument(..., help="Session ID"),
):
    """Show a session with its steps and cost summary."""
    asyncio.run(_status_async(session_id))


async def _status_async(session_id: int):
    ledger = SessionLedger(async_session)
    try:
        detail = await ledger.session_detail(session_id)
    except NotFoundError:
        console.print(f"[red]Error:[/red] Session not found: {session_id}")
        raise typer.Exit(code=1)
    except StorageUnavailable as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)

    session = detail["session"]
    summary = detail["cost_summary"]
    info_lines = [
        f"[bold]ID:[/bold] {session.id}",
        f"[bold]Product:[/bold] {session.product_name}",
        f"[bold]Marketplace:[/bold] {session.marketplace}",
        f"[bold]Status:[/bold] {_status_display(session.status)}",
        f"[bold]Current Step:[/bold] {session.current_step or '-'}",
        f"[bold]Created:[/bold] {session.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"[bold]Updated:[/bold] {session.updated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"[bold]AI Cost:[/bold] ${summary['total_cost_usd']:.4f} "
        f"({summary['total_tokens']} tokens, {summary['entries']} calls)",
    ]
    if session.created_by:
        info_lines.append(f"[bold]Created By:[/bold] {session.created_by}")
    if session.resume_url:
        info_lines.append(f"[bold]Awaiting Decision:[/bold] [cyan]{session.resume_url}[/cyan]")
    if session.error_message:
        step = f" at {session.error_step}" if session.error_step else ""
        info_lines.append(f"[bold]Error{step}:[/bold] [red]{session.error_message}[/red]")

    console.print(Panel(
        "\n".join(info_lines),
        title="[bold]Session Status[/bold]",
        border_style="blue",
    ))

    if detail["steps"]:
        table = Table(show_header=True, header_style="bold blue")
        table.add_column("#", style="dim")
        table.add_column("Step")
        table.add_column("Status")
        table.add_column("Model")
        table.add_column("Tokens", justify="right")
        table.add_column("Duration", justify="right")
        for step in detail["steps"]:
            table.add_row(
                str(step.step_order),
                step.step_name,
                _status_display(step.status),
                step.ai_model or "-",
                str(step.tokens_used),
                f"{step.duration_ms / 1000:.1f}s",
            )
        console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from config)"),
):
    """Run the API server with uvicorn."""
    configure_logging(settings.logging.level)
    uvicorn.run(
        "factorydash.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=False,
    )


if __name__ == "__main__":
    app()
