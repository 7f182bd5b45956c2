"""
Local buffer commands.
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Inspect and flush the local buffer",
    no_args_is_help=True,
)


def _load():
    from jobharvest.core.config.loader import ConfigError, load_app_config
    from jobharvest.core.orchestrator import LocalBuffer

    try:
        config = load_app_config()
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    buffer = LocalBuffer(
        config.storage.buffer_path,
        flush_batch_size=config.buffer.flush_batch_size,
    )
    buffer.load()
    return config, buffer


@app.command("count")
def count_buffer(
    show: int = typer.Option(0, "--show", "-s", min=0, help="List the oldest N records"),
) -> None:
    """Show how many records are waiting in the local buffer."""
    _, buffer = _load()
    console.print(f"[bold]{buffer.count}[/bold] records buffered in {buffer.path}")

    if show and buffer.count:
        table = Table()
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Keyword", style="cyan")
        table.add_column("Region")
        table.add_column("Detailed")
        for record in buffer.records()[:show]:
            table.add_row(
                record.external_id,
                record.title[:60],
                record.keyword or "",
                record.region_id or "",
                "yes" if record.detailed else "no",
            )
        console.print(table)


@app.command("flush")
def flush_buffer() -> None:
    """Commit buffered records to the database.

    Stops at the first failed batch; whatever was not committed stays buffered.
    """
    from jobharvest.core.orchestrator import StateStore
    from jobharvest.persistence.db import get_engine, init_db
    from jobharvest.persistence.repo import JobStore

    config, buffer = _load()

    state = StateStore(config.storage.state_path).load()
    if state.status.is_active:
        err_console.print(
            f"[red]Task is {state.status.value} in process {state.owner_pid}; "
            "it flushes the buffer itself[/red]"
        )
        raise typer.Exit(1)

    if not buffer.count:
        console.print("Buffer is empty")
        return

    engine = get_engine(config.database.url, echo=config.database.echo, pool_size=config.database.pool_size)
    init_db(engine)
    result = asyncio.run(buffer.flush(JobStore(engine)))

    if result.ok:
        console.print(f"[green]OK[/green] Flushed {result.flushed} records in {result.batches} batches")
    else:
        err_console.print(
            f"[red]Flush halted:[/red] {result.error}\n"
            f"Flushed {result.flushed}, {result.remaining} still buffered"
        )
        raise typer.Exit(1)
