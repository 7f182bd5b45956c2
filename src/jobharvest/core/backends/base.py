"""
Extractor base classes and data structures.

Defines the interface contract between the traversal loop and the
browser-backed page extractor.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from jobharvest.core.extract.records import JobRecord


@dataclass
class ListingPage:
    """Result of fetching one listing page."""

    records: list[JobRecord] = field(default_factory=list)
    has_more: bool = True
    blocked: bool = False
    next_token: int | None = None

    @property
    def empty(self) -> bool:
        return not self.records


class Extractor(ABC):
    """Abstract base class for job extractors.

    An extractor owns the browser resource. It is used as an async context
    manager so the resource is released on every exit path.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor identifier."""

    @abstractmethod
    async def list_page(
        self,
        keyword: str,
        region_id: str,
        filters: Mapping[str, str],
        page_token: int,
    ) -> ListingPage:
        """Fetch one page of listing results.

        Args:
            keyword: Search keyword
            region_id: Source region identifier
            filters: Query parameters of the current filter step
            page_token: Result offset of the page

        Returns:
            ListingPage with parsed records

        Raises:
            BlockedError: The source refused the request
            ExtractionError: On navigation or parsing failure
        """

    @abstractmethod
    async def fetch_detail(self, record: JobRecord) -> JobRecord:
        """Fetch the detail page of a record and return the enriched record."""

    async def open(self) -> None:
        """Acquire resources. Called on context entry."""

    async def close(self) -> None:
        """Release resources. Must be safe to call more than once."""

    async def __aenter__(self) -> "Extractor":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class ExtractionError(Exception):
    """Base exception for extractor errors."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.cause = cause


class NavigationTimeout(ExtractionError):
    """Page navigation exceeded its timeout."""


class BrowserError(ExtractionError):
    """Browser launch or page failure."""


class BlockedError(ExtractionError):
    """Request blocked or rate-limited by the source."""
