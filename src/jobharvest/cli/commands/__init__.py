"""CLI command modules."""

from . import buffer, db, task

__all__ = [
    "buffer",
    "db",
    "task",
]
