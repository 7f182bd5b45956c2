"""Progress cursor persistence, kept apart from the state file."""

from __future__ import annotations

import logging
from pathlib import Path

from jobharvest.core.jsonfile import JSONFileError, atomic_write_json, read_json

from .state import Cursor, utcnow

logger = logging.getLogger(__name__)


class CursorStore:
    """Reads and writes the resumable traversal position."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Cursor | None:
        """Return the saved cursor, or None if there is none (or it is unreadable)."""
        try:
            data = read_json(self.path)
        except JSONFileError as e:
            logger.warning(f"Ignoring unreadable cursor file: {e}")
            return None
        if data is None:
            return None
        return Cursor.from_dict(data)

    def exists(self) -> bool:
        return self.load() is not None

    def save(self, cursor: Cursor) -> None:
        """Persist the cursor atomically.

        Raises:
            OSError: If the file cannot be written
        """
        atomic_write_json(self.path, {**cursor.to_dict(), "saved_at": utcnow().isoformat()})

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
