"""Task orchestration: state machine, traversal loop and durable progress."""

from .buffer import FlushResult, LocalBuffer
from .cursor import CursorStore
from .errors import (
    AlreadyRunning,
    ConfigInvalid,
    InternalError,
    NotRunning,
    TaskControlError,
)
from .events import EventBus
from .policy import CellOutcome, advance
from .runner import StartOptions, TaskOrchestrator, build_orchestrator
from .sink import JobSink
from .state import Cursor, RunTotals, TaskState, TaskStatus
from .store import StateStore

__all__ = [
    # Orchestrator
    "StartOptions",
    "TaskOrchestrator",
    "build_orchestrator",
    # State
    "Cursor",
    "CursorStore",
    "RunTotals",
    "StateStore",
    "TaskState",
    "TaskStatus",
    # Buffer and broadcast
    "EventBus",
    "FlushResult",
    "JobSink",
    "LocalBuffer",
    # Policy
    "CellOutcome",
    "advance",
    # Errors
    "AlreadyRunning",
    "ConfigInvalid",
    "InternalError",
    "NotRunning",
    "TaskControlError",
]
