"""
Local durable overflow buffer.

Records that the primary store rejected are held in memory and mirrored to
a JSON array file, rewritten atomically on every mutation. Flushing commits
fixed-size sub-batches from the head and removes exactly what was
committed, so records appended during a flush land at the tail and are
never lost.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from jobharvest.core.extract.records import JobRecord
from jobharvest.core.jsonfile import JSONFileError, atomic_write_json, quarantine, read_json
from jobharvest.core.orchestrator.sink import JobSink
from jobharvest.core.orchestrator.state import utcnow

logger = logging.getLogger(__name__)


DEFAULT_FLUSH_BATCH_SIZE = 100


@dataclass
class FlushResult:
    """Outcome of one flush call."""

    flushed: int = 0
    remaining: int = 0
    batches: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, int | str | None]:
        return {
            "flushed": self.flushed,
            "remaining": self.remaining,
            "batches": self.batches,
            "error": self.error,
        }


class LocalBuffer:
    """File-backed FIFO of job records awaiting the primary store."""

    def __init__(self, path: Path, flush_batch_size: int = DEFAULT_FLUSH_BATCH_SIZE):
        if flush_batch_size < 1:
            raise ValueError("flush_batch_size must be >= 1")
        self.path = Path(path)
        self.flush_batch_size = flush_batch_size
        self._records: list[JobRecord] = []
        self._lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self.last_write_error: str | None = None
        self.last_appended_at: datetime | None = None

    @property
    def count(self) -> int:
        return len(self._records)

    def records(self) -> list[JobRecord]:
        """Snapshot of the buffered records, oldest first."""
        return list(self._records)

    def load(self) -> int:
        """Read the buffer file into memory, replacing the in-memory list.

        A corrupt file is moved aside and the buffer starts empty. Entries
        that fail validation are skipped.

        Returns:
            Number of records loaded
        """
        try:
            data = read_json(self.path, default=[])
        except JSONFileError as e:
            logger.error(f"Buffer file unreadable: {e}")
            quarantine(self.path)
            data = []

        if not isinstance(data, list):
            logger.error(f"Buffer file {self.path} is not a JSON array; moving it aside")
            quarantine(self.path)
            data = []

        records: list[JobRecord] = []
        for item in data:
            try:
                records.append(JobRecord.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid buffered record: {e.error_count()} errors")

        self._records = records
        if records:
            logger.info(f"Loaded {len(records)} buffered records from {self.path}")
        return len(records)

    def _write(self) -> None:
        """Rewrite the whole file. Failures are logged; memory stays authoritative."""
        try:
            atomic_write_json(self.path, [r.to_json() for r in self._records])
            self.last_write_error = None
        except OSError as e:
            self.last_write_error = str(e)
            logger.error(f"Could not write buffer file {self.path}: {e}")

    async def append(self, records: Sequence[JobRecord]) -> int:
        """Append records and persist the full buffer.

        Returns:
            Buffer size after the append
        """
        if not records:
            return self.count
        async with self._lock:
            self._records.extend(records)
            self.last_appended_at = utcnow()
            self._write()
            logger.info(f"Buffered {len(records)} records ({len(self._records)} total)")
            return len(self._records)

    async def flush(self, sink: JobSink) -> FlushResult:
        """Commit buffered records to ``sink`` in sub-batches.

        Halts on the first failed sub-batch, leaving it and everything after
        it buffered. Concurrent flushes are serialized.
        """
        result = FlushResult()
        async with self._flush_lock:
            while True:
                async with self._lock:
                    head = self._records[: self.flush_batch_size]
                if not head:
                    break

                try:
                    await sink.upsert_records(head)
                except Exception as e:
                    result.error = f"{type(e).__name__}: {e}"
                    logger.warning(
                        f"Buffer flush halted after {result.flushed} records: {result.error}"
                    )
                    break

                async with self._lock:
                    # Only this method removes from the head, so the head is unchanged
                    del self._records[: len(head)]
                    self._write()
                result.flushed += len(head)
                result.batches += 1

        result.remaining = self.count
        if result.flushed:
            logger.info(f"Flushed {result.flushed} buffered records ({result.remaining} remaining)")
        return result

    async def clear(self) -> int:
        """Discard every buffered record. Returns how many were dropped."""
        async with self._flush_lock:
            async with self._lock:
                dropped = len(self._records)
                self._records = []
                self._write()
        if dropped:
            logger.warning(f"Cleared {dropped} buffered records")
        return dropped
