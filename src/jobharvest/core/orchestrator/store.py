"""
Task state persistence.

The state file holds one JSON object and is rewritten atomically on every
mutation. A ``running`` or ``stopping`` status is only trusted while the
process that wrote it is alive; otherwise it is repaired to ``stopped``.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from jobharvest.core.jsonfile import JSONFileError, atomic_write_json, quarantine, read_json

from .state import TaskState, TaskStatus, utcnow

logger = logging.getLogger(__name__)


def pid_alive(pid: int | None) -> bool:
    """Check whether a process with this pid exists."""
    if not pid or pid <= 0:
        return False
    if sys.platform.startswith("win"):
        # os.kill terminates the target on Windows; ownership cannot be probed
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def owned_elsewhere(state: TaskState) -> bool:
    """The state is held by another live process."""
    return (
        state.status.is_active
        and state.owner_pid is not None
        and state.owner_pid != os.getpid()
        and pid_alive(state.owner_pid)
    )


class StateStore:
    """Reads and writes the task state file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self, owned_by_caller: bool = False) -> TaskState:
        """Load the persisted state, repairing a stale running status.

        Args:
            owned_by_caller: The caller runs no loop yet, so a state written by
                this process is stale. A live foreign owner is still trusted.

        Returns:
            The persisted state, or a fresh ``stopped`` state if none exists
        """
        try:
            data = read_json(self.path)
        except JSONFileError as e:
            logger.error(f"State file unreadable, starting fresh: {e}")
            quarantine(self.path)
            data = None

        if not isinstance(data, dict):
            return TaskState()

        state = TaskState.from_dict(data)

        if state.status.is_active:
            if state.owner_pid == os.getpid():
                stale = owned_by_caller
            else:
                stale = not pid_alive(state.owner_pid)
            if stale:
                logger.warning(
                    f"Repairing stale '{state.status.value}' state "
                    f"(owner pid {state.owner_pid}) to 'stopped'"
                )
                self._repair(state)
                try:
                    self.save(state)
                except OSError as e:
                    logger.error(f"Could not write repaired state: {e}")

        return state

    def _repair(self, state: TaskState) -> None:
        state.freeze_elapsed(state.updated_at or utcnow())
        state.status = TaskStatus.STOPPED
        state.owner_pid = None

    def save(self, state: TaskState) -> None:
        """Persist the state atomically.

        Raises:
            OSError: If the file cannot be written
        """
        state.updated_at = utcnow()
        atomic_write_json(self.path, state.to_dict())

    def clear(self) -> None:
        """Remove the state file."""
        self.path.unlink(missing_ok=True)
