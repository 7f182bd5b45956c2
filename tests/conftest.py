"""Shared fixtures: in-memory sink, scripted extractor, small search spaces."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

import pytest

from jobharvest.core.backends.base import ExtractionError, Extractor, ListingPage
from jobharvest.core.config.models import AppConfig
from jobharvest.core.config.search_space import FilterStep, Region, SearchSpace
from jobharvest.core.extract.records import JobRecord
from jobharvest.core.orchestrator import TaskOrchestrator


def make_record(job_id: str, **fields) -> JobRecord:
    return JobRecord(external_id=job_id, title=fields.pop("title", f"Job {job_id}"), **fields)


class FakeSink:
    """In-memory job store with switchable failures."""

    def __init__(self) -> None:
        self.stored: dict[str, JobRecord] = {}
        self.seen: dict[str, int] = {}
        self.upsert_calls = 0
        self.fail_upserts = 0  # number of upsert calls to fail (-1 = always)
        self.fail_lookup = False

    async def find_existing_ids(self, ids: Iterable[str]) -> set[str]:
        if self.fail_lookup:
            raise ConnectionError("database unavailable")
        return {i for i in ids if i in self.stored}

    async def upsert_records(self, records: Sequence[JobRecord]) -> int:
        self.upsert_calls += 1
        if self.fail_upserts:
            if self.fail_upserts > 0:
                self.fail_upserts -= 1
            raise ConnectionError("database unavailable")
        for record in records:
            self.stored[record.external_id] = record
            self.seen[record.external_id] = self.seen.get(record.external_id, 0) + 1
        return len(records)


class FakeExtractor(Extractor):
    """Extractor returning ``counts(keyword, region_id, step)`` records per cell.

    Record ids are unique per cell, so every listed record is novel unless
    the sink already holds it.
    """

    def __init__(self, counts: Callable[[str, str, str], int]) -> None:
        self.counts = counts
        self.calls: list[tuple[str, str, str]] = []
        self.blocked_cells: set[tuple[str, str, str]] = set()
        self.failing_cells: set[tuple[str, str, str]] = set()
        self.failing_details: set[str] = set()
        self.detail_calls: dict[str, int] = {}
        self.opened = 0
        self.closed = 0
        # When set, list_page waits for it before answering
        self.gate: asyncio.Event | None = None
        self.listing_started = asyncio.Event()

    @property
    def name(self) -> str:
        return "fake"

    async def open(self) -> None:
        self.opened += 1

    async def close(self) -> None:
        self.closed += 1

    async def list_page(
        self,
        keyword: str,
        region_id: str,
        filters: Mapping[str, str],
        page_token: int,
    ) -> ListingPage:
        cell = (keyword, region_id, filters["step"])
        self.calls.append(cell)
        self.listing_started.set()
        if self.gate is not None:
            await self.gate.wait()
        if cell in self.failing_cells:
            raise ExtractionError("listing page did not load")
        if cell in self.blocked_cells:
            return ListingPage(blocked=True, has_more=False)
        records = [
            make_record(f"{keyword}-{region_id}-{filters['step']}-{i}", keyword=keyword, region_id=region_id)
            for i in range(self.counts(*cell))
        ]
        return ListingPage(records=records, has_more=False)

    async def fetch_detail(self, record: JobRecord) -> JobRecord:
        self.detail_calls[record.external_id] = self.detail_calls.get(record.external_id, 0) + 1
        if record.external_id in self.failing_details:
            raise ExtractionError("detail page did not load", url=record.detail_url)
        return record.model_copy(update={"description": "Full text", "detailed": True})


class PagedExtractor(FakeExtractor):
    """Extractor serving a fixed sequence of listing pages for every cell.

    ``pages`` holds the record count of each page; past the end the source
    keeps answering with empty pages. ``next_tokens`` maps a page index to
    the continuation token that page hands back.
    """

    def __init__(
        self,
        pages: Sequence[int],
        next_tokens: Mapping[int, int] | None = None,
        endless: bool = False,
    ) -> None:
        super().__init__(lambda *cell: 0)
        self.pages = list(pages)
        self.next_tokens = dict(next_tokens or {})
        self.endless = endless
        self.tokens: list[int] = []

    async def list_page(
        self,
        keyword: str,
        region_id: str,
        filters: Mapping[str, str],
        page_token: int,
    ) -> ListingPage:
        index = len(self.tokens)
        self.tokens.append(page_token)
        self.calls.append((keyword, region_id, filters["step"]))
        count = self.pages[index] if index < len(self.pages) else 0
        records = [
            make_record(f"{keyword}-p{index}-{i}", keyword=keyword, region_id=region_id)
            for i in range(count)
        ]
        return ListingPage(
            records=records,
            has_more=self.endless or index < len(self.pages) - 1,
            next_token=self.next_tokens.get(index),
        )


def make_space(n_keywords: int = 2, n_regions: int = 3, n_steps: int = 2) -> SearchSpace:
    return SearchSpace(
        keywords=tuple(f"kw{i}" for i in range(n_keywords)),
        regions=tuple(Region(region_id=f"r{i}", name=f"Region {i}", group="Test") for i in range(n_regions)),
        steps=tuple(FilterStep(name=f"s{i}", params={"step": f"s{i}"}) for i in range(n_steps)),
    )


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig.model_validate(
        {
            "config_dir": str(tmp_path / "configs"),
            "search_file": str(tmp_path / "configs" / "search.yaml"),
            "storage": {"data_dir": str(tmp_path / "data")},
            "database": {"url": f"sqlite:///{tmp_path / 'jobs.db'}"},
            "logging": {"file": None, "rich_console": False},
            "browser": {"min_delay_ms": 0, "max_delay_ms": 0, "close_timeout_seconds": 1},
            "retry": {
                "listing_max_attempts": 2,
                "detail_max_attempts": 2,
                "retry_delay_seconds": 0,
                "attempt_timeout_seconds": 5,
            },
            "traversal": {"volume_threshold": 50, "detail_batch_size": 25, "stop_grace_seconds": 2},
            "broadcast": {"throttle_ms": 0},
        }
    )


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def make_orchestrator(app_config: AppConfig, sink: FakeSink):
    """Build an orchestrator over a fake extractor and a given search space."""

    def factory(
        extractor: FakeExtractor,
        space: SearchSpace | None = None,
        loader: Callable[[], SearchSpace] | None = None,
    ) -> TaskOrchestrator:
        space = space or make_space()
        return TaskOrchestrator(
            app_config,
            sink=sink,
            extractor_factory=lambda: extractor,
            search_space_loader=loader or (lambda: space),
        )

    return factory
