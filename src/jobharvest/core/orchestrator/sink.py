"""Primary job store interface as seen by the orchestrator."""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence, runtime_checkable

from jobharvest.core.extract.records import JobRecord


@runtime_checkable
class JobSink(Protocol):
    """Idempotent, id-keyed job persistence."""

    async def find_existing_ids(self, ids: Iterable[str]) -> set[str]:
        """Return the subset of ``ids`` already stored."""
        ...

    async def upsert_records(self, records: Sequence[JobRecord]) -> int:
        """Insert or update records; return how many were written.

        Raises:
            Exception: Any failure means nothing from this call is durable
        """
        ...
