"""
Atomic JSON file helpers.

Writers go through a temp file in the target directory followed by
``os.replace``, so readers never observe a partially written file.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import orjson

logger = logging.getLogger(__name__)


class JSONFileError(Exception):
    """A JSON file exists but cannot be read or decoded."""

    def __init__(self, message: str, path: Path, cause: Exception | None = None):
        super().__init__(message)
        self.path = path
        self.cause = cause


def atomic_write_json(path: Path, data: Any) -> None:
    """Serialize ``data`` and atomically replace ``path`` with it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = orjson.dumps(data, option=orjson.OPT_INDENT_2, default=str)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def read_json(path: Path, default: Any = None) -> Any:
    """Read and decode a JSON file.

    Returns:
        Decoded content, or ``default`` if the file does not exist

    Raises:
        JSONFileError: If the file cannot be read or is not valid JSON
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return default
    except OSError as e:
        raise JSONFileError(f"Cannot read {path}", path, e) from e

    if not raw.strip():
        return default

    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise JSONFileError(f"Invalid JSON in {path}", path, e) from e


def quarantine(path: Path) -> Path | None:
    """Move an unreadable file aside as ``<name>.corrupt``."""
    target = path.with_name(path.name + ".corrupt")
    try:
        os.replace(path, target)
    except OSError as e:
        logger.error(f"Could not move {path} aside: {e}")
        return None
    logger.warning(f"Moved unreadable {path} to {target}")
    return target
