"""Control-surface errors raised by the task orchestrator."""

from __future__ import annotations


class TaskControlError(Exception):
    """Base exception for rejected control operations.

    ``code`` is stable and meant for callers that map errors to responses.
    """

    code = "task_error"

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, str | None]:
        return {"code": self.code, "message": self.message, "details": self.details}


class AlreadyRunning(TaskControlError):
    """The task is running (or still winding down) and cannot be started again."""

    code = "already_running"


class NotRunning(TaskControlError):
    """The operation needs a running or paused task."""

    code = "not_running"


class ConfigInvalid(TaskControlError):
    """The search space cannot be loaded or has an empty dimension."""

    code = "config_invalid"


class InternalError(TaskControlError):
    """State could not be persisted or another unexpected failure."""

    code = "internal_error"
