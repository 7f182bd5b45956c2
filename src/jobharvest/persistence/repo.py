"""
Repository pattern for job postings.

``JobRepository`` does the synchronous SQLAlchemy work inside a session;
``JobStore`` adapts it to the orchestrator's async sink interface by
running each call in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from jobharvest.core.extract.records import JobRecord

from .db import get_session
from .models import JobPosting

logger = logging.getLogger(__name__)


# SQLite caps bound parameters per statement
ID_QUERY_CHUNK = 500

# Listing fields refreshed on every sighting
LISTING_FIELDS = ("title", "organization", "location", "posted_text", "url", "keyword", "region_id")

# Detail fields only overwritten by non-empty values
DETAIL_FIELDS = ("description", "salary_text", "applicants_count", "detail_url", "ref_id")


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Job Repository
# =============================================================================


class JobRepository:
    """Repository for JobPosting operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_external_id(self, external_id: str) -> JobPosting | None:
        stmt = select(JobPosting).where(JobPosting.external_id == external_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_existing_ids(self, ids: Iterable[str]) -> set[str]:
        """Return the ids among ``ids`` that are already stored."""
        wanted = list(dict.fromkeys(ids))
        found: set[str] = set()
        for start in range(0, len(wanted), ID_QUERY_CHUNK):
            chunk = wanted[start : start + ID_QUERY_CHUNK]
            stmt = select(JobPosting.external_id).where(JobPosting.external_id.in_(chunk))
            found.update(self.session.execute(stmt).scalars().all())
        return found

    def _record_fields(self, record: JobRecord) -> dict[str, Any]:
        return {
            "title": record.title or None,
            "organization": record.organization or None,
            "location": record.location or None,
            "posted_at": _naive_utc(record.posted_at),
            "posted_text": record.posted_text,
            "description": record.description,
            "salary_text": record.salary_text,
            "is_remote": record.is_remote,
            "applicants_count": record.applicants_count,
            "criteria": dict(record.criteria) or None,
            "url": record.url,
            "detail_url": record.detail_url,
            "ref_id": record.ref_id,
            "keyword": record.keyword,
            "region_id": record.region_id,
        }

    def upsert(self, record: JobRecord, existing: JobPosting | None = None) -> tuple[JobPosting, str]:
        """Insert a posting or refresh a known one.

        Returns:
            Tuple of (posting, event_type) where event_type is "NEW" or "SEEN"
        """
        if existing is None:
            existing = self.get_by_external_id(record.external_id)

        fields = self._record_fields(record)
        now = _utcnow()

        if existing is None:
            posting = JobPosting(
                external_id=record.external_id,
                seen_count=1,
                first_seen_at=now,
                last_seen_at=now,
                **fields,
            )
            self.session.add(posting)
            return posting, "NEW"

        for name in LISTING_FIELDS:
            if fields[name] is not None:
                setattr(existing, name, fields[name])
        for name in DETAIL_FIELDS:
            if fields[name] not in (None, ""):
                setattr(existing, name, fields[name])
        if fields["posted_at"] is not None:
            existing.posted_at = fields["posted_at"]
        if fields["criteria"]:
            existing.criteria = {**(existing.criteria or {}), **fields["criteria"]}
        existing.is_remote = existing.is_remote or record.is_remote
        existing.seen_count += 1
        existing.last_seen_at = now
        return existing, "SEEN"

    def upsert_many(self, records: Sequence[JobRecord]) -> dict[str, int]:
        """Upsert a batch in the current session.

        Returns:
            Counts by event type
        """
        counts = {"NEW": 0, "SEEN": 0}
        known: dict[str, JobPosting] = {}
        existing_ids = self.find_existing_ids(r.external_id for r in records)

        for record in records:
            posting = known.get(record.external_id)
            if posting is None and record.external_id in existing_ids:
                posting = self.get_by_external_id(record.external_id)
            posting, event_type = self.upsert(record, existing=posting)
            known[posting.external_id] = posting
            counts[event_type] += 1

        self.session.flush()
        return counts

    def count(self) -> int:
        stmt = select(func.count()).select_from(JobPosting)
        return int(self.session.execute(stmt).scalar_one())

    def list_recent(self, limit: int = 20) -> Sequence[JobPosting]:
        stmt = select(JobPosting).order_by(JobPosting.last_seen_at.desc()).limit(limit)
        return self.session.execute(stmt).scalars().all()


# =============================================================================
# Async sink
# =============================================================================


class JobStore:
    """Async job sink backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _find_existing(self, ids: list[str]) -> set[str]:
        with get_session(self.engine) as session:
            return JobRepository(session).find_existing_ids(ids)

    def _upsert(self, records: list[JobRecord]) -> int:
        with get_session(self.engine) as session:
            counts = JobRepository(session).upsert_many(records)
        logger.debug(f"Upserted {len(records)} postings: {counts['NEW']} new, {counts['SEEN']} seen")
        return len(records)

    async def find_existing_ids(self, ids: Iterable[str]) -> set[str]:
        return await asyncio.to_thread(self._find_existing, list(ids))

    async def upsert_records(self, records: Sequence[JobRecord]) -> int:
        if not records:
            return 0
        return await asyncio.to_thread(self._upsert, list(records))

    def count(self) -> int:
        with get_session(self.engine) as session:
            return JobRepository(session).count()
