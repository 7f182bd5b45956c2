"""
JobHarvest CLI - Main entry point.

A resumable, unattended job-posting collector with a durable local buffer.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.traceback import install as install_rich_traceback

from jobharvest import __app_name__, __version__

# Load environment variables from .env (if present)
load_dotenv()

# Install rich traceback for better error display
install_rich_traceback(show_locals=False, width=120)

# Force UTF-8 on Windows to avoid encoding issues
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            stream.reconfigure(encoding="utf-8", errors="replace")

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)

app = typer.Typer(
    name=__app_name__,
    help="Resumable job-posting collector",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """JobHarvest - resumable job-posting collector."""
    pass


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from .commands import buffer, db, task  # noqa: E402

app.add_typer(task.app, name="task", help="Run and control the collection task")
app.add_typer(buffer.app, name="buffer", help="Inspect and flush the local buffer")
app.add_typer(db.app, name="db", help="Database operations")


# =============================================================================
# Init Command
# =============================================================================


DEFAULT_APP_CONFIG = """\
# JobHarvest Configuration
#
# Values support ${VAR} and ${VAR:-default} environment expansion.

config_dir: configs
search_file: configs/search.yaml

storage:
  data_dir: data
  state_file: task_state.json
  cursor_file: task_cursor.json
  buffer_file: local_jobs.json

database:
  url: ${JOBHARVEST_DATABASE_URL:-sqlite:///data/jobharvest.db}
  echo: false
  pool_size: 5

logging:
  level: ${JOBHARVEST_LOG_LEVEL:-INFO}
  file: logs/jobharvest.log
  json_format: true
  rich_console: true
  max_bytes: 5000000
  backup_count: 3

browser:
  browser: chromium
  headless: true
  navigation_timeout_seconds: 30
  close_timeout_seconds: 10
  kill_on_close_failure: true
  page_size: 25
  min_delay_ms: 500
  max_delay_ms: 1500
  burst_limit: 0
  burst_window_seconds: 30

retry:
  listing_max_attempts: 30
  detail_max_attempts: 3
  retry_delay_seconds: 5
  attempt_timeout_seconds: 45

traversal:
  volume_threshold: 50
  max_pages: 40
  empty_page_limit: 2
  detail_batch_size: 50
  stop_grace_seconds: 10

buffer:
  flush_batch_size: 100
  auto_flush: true

broadcast:
  throttle_ms: 500

status_channel:
  max_connections: 10
  max_per_origin: 3
  keepalive_seconds: 30
  idle_timeout_seconds: 300
  reap_interval_seconds: 10
"""

DEFAULT_SEARCH_CONFIG = """\
# Keywords and regions to traverse, in order.
# Filter steps default to the built-in narrowing sequence.

keywords:
  - react
  - typescript
  - term: angular
    enabled: false

region_groups:
  - name: North America
    regions:
      - {region_id: "103644278", name: United States}
      - {region_id: "101174742", name: Canada}
  - name: Europe
    regions:
      - {region_id: "101165590", name: United Kingdom}
      - {region_id: "101282230", name: Germany}
"""


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Initialize JobHarvest directories, configuration and database."""
    from jobharvest.core.config.loader import load_app_config
    from jobharvest.persistence.db import get_engine, init_db

    for dir_path in (Path("configs"), Path("data"), Path("logs")):
        dir_path.mkdir(parents=True, exist_ok=True)

    written = []
    for path, content in (
        (Path("configs/app.yaml"), DEFAULT_APP_CONFIG),
        (Path("configs/search.yaml"), DEFAULT_SEARCH_CONFIG),
    ):
        if not path.exists() or force:
            path.write_text(content, encoding="utf-8")
            written.append(path)

    config = load_app_config()
    init_db(get_engine(config.database.url, echo=config.database.echo))

    created = "\n".join(f"  - [cyan]{p}[/cyan]" for p in written) or "  (configuration kept)"
    console.print(Panel.fit(
        "[bold green]OK - JobHarvest initialized[/bold green]\n\n"
        f"{created}\n\n"
        "Next steps:\n"
        "  1. Edit keywords and regions: [yellow]configs/search.yaml[/yellow]\n"
        "  2. Start collecting: [yellow]jobharvest task run[/yellow]\n"
        "  3. Check progress: [yellow]jobharvest task status[/yellow]",
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


# =============================================================================
# Status Command
# =============================================================================


@app.command()
def status() -> None:
    """Show task, buffer and database summary."""
    from rich.table import Table

    from jobharvest.core.config.loader import ConfigError, load_app_config
    from jobharvest.core.orchestrator.buffer import LocalBuffer
    from jobharvest.core.orchestrator.store import StateStore
    from jobharvest.persistence.db import get_engine
    from jobharvest.persistence.repo import JobStore

    try:
        config = load_app_config()
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    state = StateStore(config.storage.state_path).load()
    buffer = LocalBuffer(config.storage.buffer_path)
    buffer.load()

    table = Table(title="JobHarvest", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Task", state.status.value)
    table.add_row("Buffered records", str(buffer.count))

    db_url = config.database.url
    if db_url.startswith("sqlite:///") and not Path(db_url.replace("sqlite:///", "", 1)).exists():
        table.add_row("Stored postings", "[dim]database not initialized[/dim]")
    else:
        table.add_row("Stored postings", str(JobStore(get_engine(db_url)).count()))

    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
