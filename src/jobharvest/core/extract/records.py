"""
Job record model.

One extracted posting, as it travels from the listing parser through the
detail fetch into the buffer and the database.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


CRITERIA_KEYS = ("seniority", "employment_type", "job_function", "industries")


class JobRecord(BaseModel):
    """A job posting keyed by the source's stable identifier."""

    external_id: str = Field(min_length=1, description="Source posting id")
    title: str = Field(default="", description="Posting title")
    organization: str = Field(default="", description="Hiring organization")
    location: str = Field(default="", description="Location text as listed")
    description: str | None = Field(default=None, description="Full description text")
    salary_text: str | None = Field(default=None, description="Raw compensation text")
    posted_at: datetime | None = Field(default=None, description="Posting date")
    posted_text: str | None = Field(default=None, description="Relative posting text")
    is_remote: bool = Field(default=False)
    criteria: dict[str, str] = Field(
        default_factory=dict,
        description="Seniority, employment type, function and industries",
    )
    applicants_count: int | None = Field(default=None, ge=0)

    url: str | None = Field(default=None, description="Public posting URL")
    detail_url: str | None = Field(default=None, description="Guest detail endpoint")
    ref_id: str | None = Field(default=None, description="Listing reference id")

    # Provenance
    keyword: str | None = None
    region_id: str | None = None
    detailed: bool = Field(default=False, description="Detail page has been fetched")

    @field_validator("external_id", mode="before")
    @classmethod
    def strip_id(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    def to_json(self) -> dict[str, Any]:
        """JSON-safe dict, as stored in the local buffer."""
        return self.model_dump(mode="json")
