"""
Logging setup for JobHarvest.

Everything logs under the ``jobharvest`` logger. The console gets Rich
output, the log file gets one JSON object per line. Records emitted while
a cell is being processed carry its keyword/region/step so a single cell
can be followed through the file with ``grep`` or ``jq``.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson

if TYPE_CHECKING:
    from rich.console import Console

ROOT_LOGGER = "jobharvest"
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Record attributes that are copied into JSON lines when present
CONTEXT_FIELDS = ("keyword", "region", "step", "page", "external_id", "connection_id")


# =============================================================================
# Formatters / Handlers
# =============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with any traversal context attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field)) for field in CONTEXT_FIELDS if hasattr(record, field)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(entry, default=str).decode("utf-8")


class RichConsoleHandler(logging.Handler):
    """Colour records by level and prefix them with ``[keyword/region]``."""

    LEVEL_STYLES = {
        logging.DEBUG: "dim",
        logging.WARNING: "yellow",
        logging.ERROR: "red",
        logging.CRITICAL: "bold red",
    }

    def __init__(self, console: "Console | None" = None, level: int = logging.NOTSET):
        super().__init__(level)
        if console is None:
            from rich.console import Console
            console = Console(stderr=True)
        self.console = console

    @staticmethod
    def _cell_prefix(record: logging.LogRecord) -> str:
        parts = [str(v) for v in (getattr(record, "keyword", None), getattr(record, "region", None)) if v]
        return f"[cyan][{'/'.join(parts)}][/cyan] " if parts else ""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            style = self.LEVEL_STYLES.get(record.levelno, "default")
            self.console.print(
                f"{self._cell_prefix(record)}[{style}]{self.format(record)}[/{style}]",
                markup=True,
                highlight=False,
            )
            if record.exc_info:
                self.console.print_exception()
        except Exception:
            self.handleError(record)


# =============================================================================
# Setup
# =============================================================================


def _file_handler(log_file: Path | str, json_format: bool, max_bytes: int, backup_count: int) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    if max_bytes > 0:
        handler: logging.Handler = RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    else:
        handler = logging.FileHandler(path, encoding="utf-8")

    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT, "%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    json_format: bool = True,
    rich_console: bool = True,
    max_bytes: int = 0,
    backup_count: int = 3,
) -> logging.Logger:
    """Configure the ``jobharvest`` logger, replacing any earlier handlers.

    The console honours *level*; the file (if any) always records DEBUG.
    ``max_bytes > 0`` turns on size-based rotation of the file.
    """
    console_level = getattr(logging, level.upper())
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(min(console_level, logging.DEBUG) if log_file else console_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if rich_console:
        console: logging.Handler = RichConsoleHandler()
        console.setFormatter(logging.Formatter("%(message)s"))
    else:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(PLAIN_FORMAT))
    console.setLevel(console_level)
    logger.addHandler(console)

    if log_file:
        logger.addHandler(_file_handler(log_file, json_format, max_bytes, backup_count))

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


# =============================================================================
# Contextual Logging Adapter
# =============================================================================


class ContextualLogger(logging.LoggerAdapter):
    """Adapter that stamps every record with a fixed set of context fields."""

    def __init__(self, logger: logging.Logger, **context: Any):
        super().__init__(logger, {k: v for k, v in context.items() if v is not None})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextualLogger":
        """Derive an adapter with extra (or overriding) context fields."""
        return ContextualLogger(self.logger, **{**self.extra, **context})


def get_contextual_logger(name: str | None = None, **context: Any) -> ContextualLogger:
    """Logger for one unit of work, e.g. ``keyword=..., region=..., step=...``."""
    return ContextualLogger(get_logger(name), **context)
