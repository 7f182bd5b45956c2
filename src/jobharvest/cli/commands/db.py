"""
Database management commands.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Database operations",
    no_args_is_help=True,
)


def _engine():
    from jobharvest.core.config.loader import ConfigError, load_app_config
    from jobharvest.persistence.db import get_engine

    try:
        config = load_app_config()
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    return get_engine(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
    )


@app.command("init")
def init_database(
    drop_existing: bool = typer.Option(
        False,
        "--drop",
        help="Drop existing tables before creating",
    ),
) -> None:
    """Initialize the database schema.

    Creates all tables. Use --drop to reset the database.
    """
    from jobharvest.persistence.db import drop_db, init_db

    engine = _engine()

    if drop_existing:
        if not typer.confirm("This will DELETE ALL DATA. Continue?", default=False):
            raise typer.Abort()

        console.print("[yellow]Dropping existing tables...[/yellow]")
        drop_db(engine)

    console.print("Creating database schema...")
    init_db(engine)

    console.print("[green]OK[/green] Database initialized")


@app.command("stats")
def show_stats(
    limit: int = typer.Option(10, "--limit", "-l", min=0, help="Recent postings to list"),
) -> None:
    """Show stored posting count and the most recently seen postings."""
    from sqlalchemy.exc import SQLAlchemyError

    from jobharvest.persistence.db import get_session
    from jobharvest.persistence.repo import JobRepository

    engine = _engine()

    try:
        with get_session(engine) as session:
            repo = JobRepository(session)
            total = repo.count()
            recent = list(repo.list_recent(limit)) if limit else []
    except SQLAlchemyError as e:
        err_console.print(f"[red]Database error:[/red] {e}")
        err_console.print("[dim]Run 'jobharvest db init' first[/dim]")
        raise typer.Exit(1)

    console.print(f"[bold]{total}[/bold] postings stored")
    if not recent:
        return

    table = Table(title="Recently seen")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Organization", style="cyan")
    table.add_column("Location")
    table.add_column("Seen", justify="right")
    table.add_column("Last seen")

    for posting in recent:
        table.add_row(
            posting.external_id,
            (posting.title or "")[:60],
            posting.organization or "",
            posting.location or "",
            str(posting.seen_count),
            posting.last_seen_at.strftime("%Y-%m-%d %H:%M") if posting.last_seen_at else "",
        )

    console.print(table)
