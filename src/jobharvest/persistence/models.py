"""
SQLAlchemy ORM models for JobHarvest.

One table, keyed by the source posting id: ``job_postings``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Base Class
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
    }


# =============================================================================
# Mixins
# =============================================================================


class TimestampMixin:
    """Mixin providing created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        default=None,
        onupdate=_utcnow,
        nullable=True,
    )


# =============================================================================
# Job Posting Model
# =============================================================================


class JobPosting(Base, TimestampMixin):
    """A collected job posting."""

    __tablename__ = "job_postings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    # Listing fields
    title: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    organization: Mapped[str | None] = mapped_column(String(500), nullable=True, index=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    posted_text: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Detail fields
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    salary_text: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_remote: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    applicants_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    criteria: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # URLs
    url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    detail_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    ref_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Provenance
    keyword: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    region_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Tracking
    seen_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_job_postings_keyword_region", "keyword", "region_id"),
    )

    def __repr__(self) -> str:
        return f"<JobPosting(id={self.id}, external_id='{self.external_id}')>"
