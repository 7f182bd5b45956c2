"""
Task commands: run, resume, inspect and reset the collection task.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Run and control the collection task",
    no_args_is_help=True,
)


def _load_config(config_path: Optional[Path]):
    """Load app configuration and set up logging."""
    from jobharvest.core.config.loader import ConfigError, load_app_config
    from jobharvest.core.logging import setup_logging

    try:
        config = load_app_config(config_path)
    except ConfigError as e:
        err_console.print(f"[red]Error loading configuration:[/red] {e}")
        if e.details:
            err_console.print(f"[dim]{e.details}[/dim]")
        raise typer.Exit(1)

    config.ensure_directories()
    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
        rich_console=config.logging.rich_console,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count,
    )
    return config


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:d}:{minutes:02d}:{secs:02d}"


def _state_table(state, cursor=None, buffered: int | None = None) -> Table:
    table = Table(title="Task", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    style = {
        "running": "green",
        "paused": "yellow",
        "stopping": "yellow",
        "completed": "bold green",
    }.get(state.status.value, "dim")
    table.add_row("Status", f"[{style}]{state.status.value}[/{style}]")

    if state.current_keyword:
        table.add_row("Keyword", state.current_keyword)
    if state.current_region_name:
        table.add_row("Region", f"{state.current_region_name} ({state.current_region_id})")
    if state.current_step:
        table.add_row("Filter step", state.current_step)

    cursor = cursor or state.cursor
    table.add_row(
        "Cursor",
        f"keyword {cursor.keyword_index} / region {cursor.region_index} / step {cursor.step_index}",
    )
    table.add_row("Elapsed", _format_elapsed(state.current_elapsed()))
    table.add_row("Last batch", str(state.last_batch_count))

    totals = state.totals
    table.add_row(
        "Totals",
        f"{totals.cells} cells, {totals.listed} listed, {totals.novel} novel, "
        f"{totals.stored} stored, {totals.buffered} buffered, {totals.dropped} dropped",
    )
    table.add_row("Buffered now", str(state.buffered_count if buffered is None else buffered))
    if state.last_error:
        table.add_row("Last error", f"[red]{state.last_error}[/red]")
    return table


async def _drive(config, resume: bool, options) -> int:
    """Run the task in the foreground until it completes, pauses or stops."""
    from jobharvest.core.orchestrator import TaskControlError, TaskStatus, build_orchestrator
    from jobharvest.persistence.db import dispose_engines

    orchestrator = build_orchestrator(config)

    def on_state(state) -> None:
        console.print(
            f"[dim]{state.status.value}[/dim] "
            f"{state.current_keyword or '-'} / {state.current_region_name or '-'} / "
            f"{state.current_step or '-'}  "
            f"stored={state.totals.stored} buffered={state.buffered_count}",
            highlight=False,
        )

    unsubscribe = orchestrator.bus.subscribe(on_state)
    interrupts = 0

    def on_interrupt() -> None:
        nonlocal interrupts
        interrupts += 1
        if interrupts == 1:
            console.print("[yellow]Pausing after the current cell (Ctrl+C again to stop)...[/yellow]")
            asyncio.ensure_future(_quiet(orchestrator.pause()))
        else:
            console.print("[yellow]Stopping...[/yellow]")
            asyncio.ensure_future(_quiet(orchestrator.stop()))

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except NotImplementedError:
        signal.signal(signal.SIGINT, lambda *_: loop.call_soon_threadsafe(on_interrupt))

    try:
        if resume:
            await orchestrator.resume()
        else:
            await orchestrator.start(options)
    except TaskControlError as e:
        err_console.print(f"[red]{e.code}:[/red] {e}")
        if e.details:
            err_console.print(f"[dim]{e.details}[/dim]")
        unsubscribe()
        return 1

    while True:
        await orchestrator.wait()
        if orchestrator.state.status is TaskStatus.STOPPING:
            # stop() is finishing teardown
            await asyncio.sleep(0.1)
            continue
        if orchestrator.loop_active():
            continue
        break

    status = orchestrator.state.status
    if status is TaskStatus.COMPLETED:
        await orchestrator.aclose()
    else:
        orchestrator.bus.flush()
        orchestrator.bus.close()

    unsubscribe()
    dispose_engines()
    console.print(_state_table(orchestrator.status()))
    return 0 if status in (TaskStatus.COMPLETED, TaskStatus.PAUSED, TaskStatus.STOPPED) else 1


async def _quiet(coro) -> None:
    from jobharvest.core.orchestrator import TaskControlError

    try:
        await coro
    except TaskControlError as e:
        err_console.print(f"[dim]{e}[/dim]")


@app.command("run")
def run_task(
    max_pages: Optional[int] = typer.Option(
        None,
        "--max-pages",
        "-n",
        min=1,
        help="Maximum listing pages per cell",
    ),
    volume_threshold: Optional[int] = typer.Option(
        None,
        "--threshold",
        "-t",
        min=1,
        help="Novel results needed to drill into the next filter step",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to app.yaml",
    ),
) -> None:
    """Start a fresh run in the foreground.

    The first Ctrl+C pauses after the current cell (resume later with
    [yellow]jobharvest task resume[/yellow]); a second Ctrl+C stops.
    """
    from jobharvest.core.orchestrator import StartOptions

    config = _load_config(config_path)
    options = StartOptions(max_pages=max_pages, volume_threshold=volume_threshold)
    raise typer.Exit(asyncio.run(_drive(config, resume=False, options=options)))


@app.command("resume")
def resume_task(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to app.yaml",
    ),
) -> None:
    """Resume a paused or interrupted run from its saved cursor."""
    config = _load_config(config_path)
    raise typer.Exit(asyncio.run(_drive(config, resume=True, options=None)))


@app.command("status")
def task_status(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to app.yaml",
    ),
) -> None:
    """Show the persisted task state."""
    from jobharvest.core.config.loader import ConfigError, load_app_config
    from jobharvest.core.orchestrator import CursorStore, LocalBuffer, StateStore

    try:
        config = load_app_config(config_path)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    state = StateStore(config.storage.state_path).load()
    cursor = CursorStore(config.storage.cursor_path).load()
    buffer = LocalBuffer(config.storage.buffer_path)
    buffer.load()

    console.print(_state_table(state, cursor=cursor, buffered=buffer.count))
    if cursor is not None and not state.running:
        console.print("[dim]A saved cursor exists; continue with:[/dim] jobharvest task resume")


@app.command("validate")
def validate_search(
    search_path: Optional[Path] = typer.Argument(
        None,
        help="Search configuration file (default: from app.yaml)",
    ),
) -> None:
    """Validate a search configuration file."""
    from jobharvest.core.config.loader import (
        ConfigError,
        load_app_config,
        load_search_config,
        validate_search_config_file,
    )

    if search_path is None:
        try:
            search_path = load_app_config().search_file
        except ConfigError as e:
            err_console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

    if not search_path.exists():
        console.print(f"[yellow]{search_path} not found; the built-in search space applies[/yellow]")
        return

    errors = validate_search_config_file(search_path)
    if errors:
        err_console.print(f"[red]Invalid search configuration:[/red] {search_path}")
        for error in errors:
            err_console.print(f"  - {error}")
        raise typer.Exit(1)

    rows, cols, steps = load_search_config(search_path).to_search_space().shape
    console.print(
        f"[green]OK[/green] {rows} keywords x {cols} regions x {steps} filter steps"
    )


@app.command("reset")
def reset_task(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to app.yaml",
    ),
) -> None:
    """Forget the saved cursor and reset the task to stopped.

    Buffered records are kept.
    """
    from jobharvest.core.config.loader import ConfigError, load_app_config
    from jobharvest.core.orchestrator import CursorStore, StateStore, TaskState

    try:
        config = load_app_config(config_path)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    store = StateStore(config.storage.state_path)
    state = store.load()
    if state.status.is_active:
        err_console.print(f"[red]Task is {state.status.value} in process {state.owner_pid}[/red]")
        raise typer.Exit(1)

    if not yes and not typer.confirm("Discard saved progress?", default=False):
        raise typer.Abort()

    CursorStore(config.storage.cursor_path).clear()
    store.save(TaskState())
    console.print("[green]OK[/green] Task reset")
