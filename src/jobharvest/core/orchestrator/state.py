"""
Task state data structures.

``TaskState`` is the single source of truth for observers: it is persisted
to the state file and published on every change.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from jobharvest.core.config.search_space import SearchSpace


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TaskStatus(str, Enum):
    """Lifecycle status of the collection task."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    COMPLETED = "completed"

    @property
    def is_active(self) -> bool:
        """A loop may be alive in this status."""
        return self in (TaskStatus.RUNNING, TaskStatus.STOPPING)


@dataclass(frozen=True)
class Cursor:
    """Position in the search space: keyword, region and filter-step indices."""

    keyword_index: int = 0
    region_index: int = 0
    step_index: int = 0

    def clamp(self, space: SearchSpace) -> "Cursor":
        """Bound each index to the current search space.

        A cursor whose keyword index is past the end is clamped to the last
        keyword rather than reset, so a shrunken list resumes near where it
        stopped.
        """
        n_keywords, n_regions, n_steps = space.shape
        return Cursor(
            keyword_index=max(0, min(self.keyword_index, n_keywords - 1)),
            region_index=max(0, min(self.region_index, n_regions - 1)),
            step_index=max(0, min(self.step_index, n_steps - 1)),
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "Cursor | None":
        """Build a cursor from persisted data; None if unusable."""
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                keyword_index=int(data.get("keyword_index", 0)),
                region_index=int(data.get("region_index", 0)),
                step_index=int(data.get("step_index", 0)),
            )
        except (TypeError, ValueError):
            return None


@dataclass
class RunTotals:
    """Counters for the current run."""

    cells: int = 0
    listed: int = 0
    novel: int = 0
    stored: int = 0
    buffered: int = 0
    dropped: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "RunTotals":
        if not isinstance(data, dict):
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in known and isinstance(v, int)})


@dataclass
class TaskState:
    """Snapshot of the task for persistence and observers."""

    status: TaskStatus = TaskStatus.STOPPED
    cursor: Cursor = field(default_factory=Cursor)
    current_keyword: str | None = None
    current_region_id: str | None = None
    current_region_name: str | None = None
    current_step: str | None = None
    started_at: datetime | None = None
    elapsed_seconds: float = 0.0
    # Start of the current running segment; elapsed accrues from here
    resumed_at: datetime | None = None
    last_batch_count: int = 0
    last_error: str | None = None
    buffered_count: int = 0
    totals: RunTotals = field(default_factory=RunTotals)
    owner_pid: int | None = None
    updated_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self.status is TaskStatus.RUNNING

    def current_elapsed(self, now: datetime | None = None) -> float:
        """Elapsed seconds including the running segment, if any."""
        if self.status is TaskStatus.RUNNING and self.resumed_at is not None:
            now = now or utcnow()
            return self.elapsed_seconds + max(0.0, (now - self.resumed_at).total_seconds())
        return self.elapsed_seconds

    def freeze_elapsed(self, now: datetime | None = None) -> None:
        """Fold the open running segment into ``elapsed_seconds``, whatever the status."""
        if self.resumed_at is not None:
            now = now or utcnow()
            self.elapsed_seconds += max(0.0, (now - self.resumed_at).total_seconds())
        self.resumed_at = None

    def snapshot(self) -> "TaskState":
        """Independent copy with elapsed recomputed."""
        copy = replace(self, totals=replace(self.totals))
        copy.elapsed_seconds = round(self.current_elapsed(), 3)
        return copy

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "running": self.running,
            "cursor": self.cursor.to_dict(),
            "current_keyword": self.current_keyword,
            "current_region_id": self.current_region_id,
            "current_region_name": self.current_region_name,
            "current_step": self.current_step,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "elapsed_seconds": self.elapsed_seconds,
            "resumed_at": self.resumed_at.isoformat() if self.resumed_at else None,
            "last_batch_count": self.last_batch_count,
            "last_error": self.last_error,
            "buffered_count": self.buffered_count,
            "totals": asdict(self.totals),
            "owner_pid": self.owner_pid,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskState":
        """Build a state from persisted data, tolerating missing fields."""
        try:
            status = TaskStatus(data.get("status", TaskStatus.STOPPED.value))
        except ValueError:
            status = TaskStatus.STOPPED

        owner_pid = data.get("owner_pid")
        return cls(
            status=status,
            cursor=Cursor.from_dict(data.get("cursor")) or Cursor(),
            current_keyword=data.get("current_keyword"),
            current_region_id=data.get("current_region_id"),
            current_region_name=data.get("current_region_name"),
            current_step=data.get("current_step"),
            started_at=_parse_datetime(data.get("started_at")),
            elapsed_seconds=float(data.get("elapsed_seconds") or 0.0),
            resumed_at=_parse_datetime(data.get("resumed_at")),
            last_batch_count=int(data.get("last_batch_count") or 0),
            last_error=data.get("last_error"),
            buffered_count=int(data.get("buffered_count") or 0),
            totals=RunTotals.from_dict(data.get("totals")),
            owner_pid=owner_pid if isinstance(owner_pid, int) else None,
            updated_at=_parse_datetime(data.get("updated_at")),
        )
