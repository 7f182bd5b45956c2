"""
Task orchestrator.

Owns the collection task's state machine and drives the traversal loop:
list pages per cell -> dedupe -> detail fetch in batches -> commit or
buffer -> advance the cursor. Control operations (start, pause, resume,
stop, status) run on the same event loop as the traversal task and talk to
it through the shared state and a cancellation token.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

from jobharvest.core.backends.base import BlockedError, Extractor
from jobharvest.core.config.models import AppConfig
from jobharvest.core.config.search_space import FilterStep, Region, SearchSpace
from jobharvest.core.extract.records import JobRecord
from jobharvest.core.fetch.cancel import CancellationToken
from jobharvest.core.fetch.retries import RetryConfig, retry_async
from jobharvest.core.fetch.throttling import NavigationThrottle, ThrottleConfig
from jobharvest.core.logging import get_contextual_logger

from .buffer import FlushResult, LocalBuffer
from .cursor import CursorStore
from .errors import AlreadyRunning, ConfigInvalid, InternalError, NotRunning
from .events import EventBus
from .policy import CellOutcome, advance
from .sink import JobSink
from .state import Cursor, RunTotals, TaskState, TaskStatus, utcnow
from .store import StateStore, owned_elsewhere

if TYPE_CHECKING:
    from jobharvest.core.status.channel import StatusChannel

logger = logging.getLogger(__name__)


SearchSpaceLoader = Callable[[], SearchSpace]
ExtractorFactory = Callable[[], Extractor]


@dataclass
class StartOptions:
    """Per-run overrides of the traversal policy."""

    max_pages: int | None = None
    volume_threshold: int | None = None

    def __post_init__(self) -> None:
        if self.max_pages is not None and self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if self.volume_threshold is not None and self.volume_threshold < 1:
            raise ValueError("volume_threshold must be >= 1")


@dataclass
class RunSettings:
    """Effective traversal settings for one run."""

    max_pages: int
    volume_threshold: int
    empty_page_limit: int
    page_size: int
    detail_batch_size: int


@dataclass
class CellResult:
    """Counters for one (keyword, region, step) cell."""

    listed: int = 0
    novel: int = 0
    stored: int = 0
    buffered: int = 0
    dropped: int = 0
    blocked: bool = False
    interrupted: bool = False
    error: str | None = None


def _chunks(items: Sequence[JobRecord], size: int) -> list[Sequence[JobRecord]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class TaskOrchestrator:
    """State machine and traversal engine for the collection task.

    One instance per process. All methods must be called from the event loop
    that runs the traversal task.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        sink: JobSink,
        extractor_factory: ExtractorFactory,
        search_space_loader: SearchSpaceLoader,
        state_store: StateStore | None = None,
        cursor_store: CursorStore | None = None,
        buffer: LocalBuffer | None = None,
        bus: EventBus | None = None,
        throttle: NavigationThrottle | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Application configuration
            sink: Primary job store
            extractor_factory: Creates a fresh extractor for each run
            search_space_loader: Loads the enabled search space
            state_store: Task state file (default: from config.storage)
            cursor_store: Cursor file (default: from config.storage)
            buffer: Local buffer (default: from config.storage and config.buffer)
            bus: State broadcast (default: from config.broadcast)
            throttle: Navigation spacing (default: from config.browser)
        """
        self.config = config
        self.sink = sink
        self.extractor_factory = extractor_factory
        self.search_space_loader = search_space_loader

        self.state_store = state_store or StateStore(config.storage.state_path)
        self.cursor_store = cursor_store or CursorStore(config.storage.cursor_path)
        self.buffer = buffer or LocalBuffer(
            config.storage.buffer_path,
            flush_batch_size=config.buffer.flush_batch_size,
        )
        self.bus = bus or EventBus(config.broadcast.throttle_ms)
        self.throttle = throttle or NavigationThrottle(
            ThrottleConfig(
                min_delay_ms=config.browser.min_delay_ms,
                max_delay_ms=config.browser.max_delay_ms,
                burst_limit=config.browser.burst_limit,
                burst_window_seconds=config.browser.burst_window_seconds,
            )
        )

        self.listing_retry = RetryConfig(
            max_attempts=config.retry.listing_max_attempts,
            delay=config.retry.retry_delay_seconds,
            attempt_timeout=config.retry.attempt_timeout_seconds,
        )
        self.detail_retry = RetryConfig(
            max_attempts=config.retry.detail_max_attempts,
            delay=config.retry.retry_delay_seconds,
            attempt_timeout=config.retry.attempt_timeout_seconds,
        )

        # Active status written by this process is stale; a live foreign owner is kept
        self._state = self.state_store.load(owned_by_caller=True)
        self.buffer.load()
        self._state.buffered_count = self.buffer.count

        self._task: asyncio.Task[None] | None = None
        self._token: CancellationToken | None = None
        # False once the loop has decided to exit
        self._accepting = False
        self._control_lock = asyncio.Lock()
        self._status_channel: "StatusChannel | None" = None

    # =========================================================================
    # Control surface
    # =========================================================================

    @property
    def state(self) -> TaskState:
        return self._state

    def status(self) -> TaskState:
        """Current snapshot with elapsed time recomputed."""
        self._state.buffered_count = self.buffer.count
        return self._state.snapshot()

    def loop_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, options: StartOptions | None = None) -> TaskState:
        """Start a fresh run from the first cell.

        Raises:
            AlreadyRunning: A run is active or still winding down
            ConfigInvalid: The search space is unusable
            InternalError: The initial state could not be persisted
        """
        async with self._control_lock:
            self._ensure_not_owned_elsewhere()
            if self._state.status.is_active or self.loop_active():
                raise AlreadyRunning(f"Task is {self._state.status.value}")

            space = self._load_space()
            settings = self._settings(options)

            previous = self._state
            now = utcnow()
            first_region = space.regions[0]
            self._state = TaskState(
                status=TaskStatus.RUNNING,
                cursor=Cursor(),
                current_keyword=space.keywords[0],
                current_region_id=first_region.region_id,
                current_region_name=first_region.label,
                current_step=space.steps[0].name,
                started_at=now,
                resumed_at=now,
                buffered_count=self.buffer.count,
                owner_pid=os.getpid(),
            )

            try:
                self.cursor_store.clear()
                self._save()
            except OSError as e:
                self._state = previous
                raise InternalError("Could not persist task state", details=str(e)) from e

            self._publish()
            self._launch(space, Cursor(), settings)
            logger.info(
                f"Task started: {len(space.keywords)} keywords x {len(space.regions)} regions "
                f"x {len(space.steps)} steps"
            )
            return self.status()

    async def pause(self) -> TaskState:
        """Pause after the cell in progress. The cursor is kept.

        Raises:
            NotRunning: The task is not running
        """
        async with self._control_lock:
            self._ensure_not_owned_elsewhere()
            if self._state.status is not TaskStatus.RUNNING:
                raise NotRunning(f"Cannot pause a {self._state.status.value} task")

            self._state.status = TaskStatus.PAUSED
            self._state.freeze_elapsed()
            self._persist_or_raise()
            logger.info("Task paused")
            return self.status()

    async def resume(self) -> TaskState:
        """Resume from the saved cursor, clamped to the current search space.

        Raises:
            AlreadyRunning: The task is running
            NotRunning: Nothing to resume
            ConfigInvalid: The search space is unusable
        """
        async with self._control_lock:
            self._ensure_not_owned_elsewhere()
            status = self._state.status
            if status is TaskStatus.RUNNING:
                raise AlreadyRunning("Task is already running")

            saved = self.cursor_store.load()
            if not (status is TaskStatus.PAUSED or (status is TaskStatus.STOPPED and saved is not None)):
                raise NotRunning(f"Cannot resume a {status.value} task")

            space = self._load_space()
            cursor = (saved or self._state.cursor).clamp(space)

            self._state.status = TaskStatus.RUNNING
            self._state.resumed_at = utcnow()
            self._state.started_at = self._state.started_at or self._state.resumed_at
            self._state.owner_pid = os.getpid()

            if self.loop_active() and self._accepting:
                # The paused loop is still finishing its cell and carries on
                self._persist_or_raise()
                logger.info("Task resumed (loop still active)")
                return self.status()

            if self.loop_active():
                await asyncio.wait({self._task})
                if self._state.status is not TaskStatus.RUNNING:
                    return self.status()

            self._set_cell(space, cursor)
            self._persist_or_raise()
            self._launch(space, cursor, self._settings(None))
            logger.info(
                f"Task resumed at keyword {cursor.keyword_index}, region {cursor.region_index}, "
                f"step {cursor.step_index}"
            )
            return self.status()

    async def stop(self) -> TaskState:
        """Stop the task and clear the cursor. Idempotent.

        On a completed task this resets the status to ``stopped``.
        """
        self._ensure_not_owned_elsewhere()
        state = self._state
        if state.status in (TaskStatus.RUNNING, TaskStatus.PAUSED):
            # Observable before any await
            state.status = TaskStatus.STOPPING
            if self._token is not None:
                self._token.cancel("stop requested")
            self._save_quietly()
            self._publish()

        async with self._control_lock:
            if self._state.status is TaskStatus.STOPPED and not self.loop_active():
                return self.status()

            self._state.status = TaskStatus.STOPPING
            if self._token is not None:
                self._token.cancel("stop requested")
            await self._wait_for_loop(self.config.traversal.stop_grace_seconds)

            state = self._state
            state.status = TaskStatus.STOPPED
            state.cursor = Cursor()
            state.started_at = None
            state.resumed_at = None
            state.elapsed_seconds = 0.0
            state.last_batch_count = 0
            state.owner_pid = None
            self._token = None

            try:
                self.cursor_store.clear()
            except OSError as e:
                logger.error(f"Could not clear cursor file: {e}")
            self._persist_or_raise()
            logger.info("Task stopped")
            return self.status()

    async def flush_buffer(self) -> FlushResult:
        """Commit buffered records to the primary store now."""
        result = await self.buffer.flush(self.sink)
        self._state.buffered_count = self.buffer.count
        if result.error:
            self._state.last_error = f"buffer flush failed: {result.error}"
        self._save_quietly()
        self._publish()
        return result

    async def wait(self) -> None:
        """Block until the traversal loop exits."""
        if self._task is not None:
            await asyncio.wait({self._task})

    def status_channel(self) -> "StatusChannel":
        """Live status feed for a request layer, fed by this orchestrator's bus.

        Created on first use with the ``status_channel`` limits; the idle
        reaper starts with it.
        """
        if self._status_channel is None:
            from jobharvest.core.status.channel import StatusChannel

            self._status_channel = StatusChannel(self.bus, self.status, self.config.status_channel)
            self._status_channel.start_reaper()
        return self._status_channel

    async def aclose(self) -> None:
        """Stop the task if needed and release the broadcast."""
        if self._state.status is not TaskStatus.COMPLETED:
            await self.stop()
        if self._status_channel is not None:
            await self._status_channel.aclose()
            self._status_channel = None
        self.bus.flush()
        self.bus.close()

    # =========================================================================
    # Internals: state
    # =========================================================================

    def _ensure_not_owned_elsewhere(self) -> None:
        if self.loop_active():
            return
        persisted = self.state_store.load()
        if owned_elsewhere(persisted):
            raise AlreadyRunning(
                f"Task is {persisted.status.value} in another process (pid {persisted.owner_pid})"
            )

    def _load_space(self) -> SearchSpace:
        try:
            space = self.search_space_loader()
        except Exception as e:
            raise ConfigInvalid("Search space could not be loaded", details=str(e)) from e
        missing = space.missing_dimensions()
        if missing:
            raise ConfigInvalid(f"Search space has no enabled {', '.join(missing)}")
        return space

    def _settings(self, options: StartOptions | None) -> RunSettings:
        traversal = self.config.traversal
        options = options or StartOptions()
        return RunSettings(
            max_pages=options.max_pages or traversal.max_pages,
            volume_threshold=options.volume_threshold or traversal.volume_threshold,
            empty_page_limit=traversal.empty_page_limit,
            page_size=self.config.browser.page_size,
            detail_batch_size=traversal.detail_batch_size,
        )

    def _set_cell(self, space: SearchSpace, cursor: Cursor) -> None:
        region = space.regions[cursor.region_index]
        self._state.cursor = cursor
        self._state.current_keyword = space.keywords[cursor.keyword_index]
        self._state.current_region_id = region.region_id
        self._state.current_region_name = region.label
        self._state.current_step = space.steps[cursor.step_index].name

    def _save(self) -> None:
        self._state.buffered_count = self.buffer.count
        self.state_store.save(self._state)

    def _save_quietly(self) -> None:
        try:
            self._save()
        except OSError as e:
            logger.error(f"Could not persist task state: {e}")

    def _persist_or_raise(self) -> None:
        try:
            self._save()
        except OSError as e:
            raise InternalError("Could not persist task state", details=str(e)) from e
        finally:
            self._publish()

    def _publish(self) -> None:
        self.bus.publish(self.status())

    def _launch(self, space: SearchSpace, cursor: Cursor, settings: RunSettings) -> None:
        self._token = CancellationToken()
        self._accepting = True
        self._task = asyncio.create_task(
            self._run(space, cursor, settings, self._token),
            name="jobharvest-traversal",
        )

    async def _wait_for_loop(self, grace: float) -> None:
        task = self._task
        if task is None or task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=grace)
        if done:
            return
        logger.warning(f"Traversal loop did not exit within {grace}s; cancelling it")
        task.cancel()
        await asyncio.wait({task}, timeout=self.config.browser.close_timeout_seconds + 1.0)

    # =========================================================================
    # Internals: traversal
    # =========================================================================

    async def _run(
        self,
        space: SearchSpace,
        cursor: Cursor,
        settings: RunSettings,
        token: CancellationToken,
    ) -> None:
        outcome = "interrupted"
        try:
            async with self.extractor_factory() as extractor:
                outcome = await self._traverse(extractor, space, cursor, settings, token)
        except asyncio.CancelledError:
            self._accepting = False
            logger.warning("Traversal loop cancelled")
            raise
        except Exception as e:
            self._accepting = False
            logger.exception("Traversal loop failed")
            if self._state.status is TaskStatus.RUNNING:
                # Cursor stays on disk for a later resume
                self._state.status = TaskStatus.STOPPED
                self._state.freeze_elapsed()
                self._state.owner_pid = None
                self._state.last_error = f"{type(e).__name__}: {e}"
                self._save_quietly()
                self._publish()
            return
        finally:
            self._accepting = False

        # A pause that lands during the last cell leaves nothing to resume
        if outcome == "completed" and self._state.status in (TaskStatus.RUNNING, TaskStatus.PAUSED):
            state = self._state
            state.status = TaskStatus.COMPLETED
            state.freeze_elapsed()
            state.cursor = Cursor()
            state.owner_pid = None
            try:
                self.cursor_store.clear()
            except OSError as e:
                logger.error(f"Could not clear cursor file: {e}")
            self._save_quietly()
            self._publish()
            logger.info(
                f"Task completed: {state.totals.cells} cells, {state.totals.stored} stored, "
                f"{state.totals.buffered} buffered, {state.totals.dropped} dropped"
            )
        else:
            logger.info(f"Traversal loop exited ({outcome})")

    def _check_interrupt(self, token: CancellationToken) -> str | None:
        if token.cancelled or self._state.status is TaskStatus.STOPPING:
            return "stopped"
        if self._state.status is TaskStatus.PAUSED:
            return "paused"
        if self._state.status is not TaskStatus.RUNNING:
            return "stopped"
        return None

    async def _traverse(
        self,
        extractor: Extractor,
        space: SearchSpace,
        cursor: Cursor,
        settings: RunSettings,
        token: CancellationToken,
    ) -> str:
        while True:
            interrupt = self._check_interrupt(token)
            if interrupt is not None:
                self._accepting = False
                return interrupt

            keyword = space.keywords[cursor.keyword_index]
            region = space.regions[cursor.region_index]
            step = space.steps[cursor.step_index]

            self._set_cell(space, cursor)
            self._save_cursor(cursor)
            self._save_quietly()
            self._publish()

            result = await self._process_cell(extractor, keyword, region, step, settings, token)

            totals = self._state.totals
            totals.listed += result.listed
            totals.novel += result.novel
            if result.interrupted:
                self._save_quietly()
                self._publish()
                continue

            totals.cells += 1
            self._state.last_batch_count = result.novel
            self._state.last_error = result.error

            next_cursor = advance(
                cursor,
                space,
                CellOutcome(novel=result.novel, blocked=result.blocked),
                settings.volume_threshold,
            )
            if next_cursor is None:
                self._accepting = False
                return "completed"

            cursor = next_cursor
            self._set_cell(space, cursor)
            self._save_cursor(cursor)
            self._save_quietly()
            self._publish()

    def _save_cursor(self, cursor: Cursor) -> None:
        try:
            self.cursor_store.save(cursor)
        except OSError as e:
            logger.error(f"Could not persist cursor: {e}")

    async def _process_cell(
        self,
        extractor: Extractor,
        keyword: str,
        region: Region,
        step: FilterStep,
        settings: RunSettings,
        token: CancellationToken,
    ) -> CellResult:
        clog = get_contextual_logger(
            "orchestrator.cell",
            keyword=keyword,
            region=region.label,
            step=step.name,
        )
        result = CellResult()

        listed = await self._collect_listing(extractor, keyword, region, step, settings, token, result, clog)
        if token.cancelled:
            result.interrupted = True
            return result
        if result.blocked or listed is None:
            return result

        result.listed = len(listed)
        if not listed:
            clog.info("No listings")
            return result

        try:
            existing = await self.sink.find_existing_ids(list(listed))
        except Exception as e:
            # Upsert is idempotent, so treating everything as novel is safe
            existing = set()
            result.error = f"existing-id lookup failed: {e}"
            clog.warning(f"Existing-id lookup failed, treating all as novel: {e}")

        novel = [record for job_id, record in listed.items() if job_id not in existing]
        result.novel = len(novel)
        self._state.last_batch_count = result.novel
        clog.info(f"{result.listed} listed, {result.novel} novel")

        for batch in _chunks(novel, settings.detail_batch_size):
            if token.cancelled:
                result.interrupted = True
                break
            detailed = await self._fetch_details(extractor, batch, token, result, clog)
            await self._commit(detailed, result, clog)
            if result.blocked:
                break
            if token.cancelled:
                result.interrupted = True
                break

        return result

    async def _collect_listing(
        self,
        extractor: Extractor,
        keyword: str,
        region: Region,
        step: FilterStep,
        settings: RunSettings,
        token: CancellationToken,
        result: CellResult,
        clog: logging.LoggerAdapter,
    ) -> dict[str, JobRecord] | None:
        """Page through listings; None when the cell is abandoned."""
        listed: dict[str, JobRecord] = {}
        filters = step.query_params()
        page_token = 0
        empty_pages = 0

        for page_no in range(settings.max_pages):
            if token.cancelled:
                return listed
            if not await self.throttle.acquire(token):
                return listed

            try:
                page = await retry_async(
                    extractor.list_page,
                    keyword,
                    region.region_id,
                    filters,
                    page_token,
                    config=self.listing_retry,
                    token=token,
                )
            except BlockedError as e:
                result.blocked = True
                result.error = f"blocked: {e}"
                clog.warning(f"Blocked on page {page_no + 1}; abandoning cell")
                return None
            except Exception as e:
                if token.cancelled:
                    return listed
                result.error = f"listing failed after retries: {type(e).__name__}: {e}"
                clog.error(f"Listing page {page_no + 1} failed after retries; abandoning cell")
                return None

            if page.blocked:
                result.blocked = True
                result.error = "blocked: source signalled rate limiting"
                clog.warning(f"Rate limited on page {page_no + 1}; abandoning cell")
                return None

            if page.empty:
                empty_pages += 1
                if empty_pages >= settings.empty_page_limit:
                    break
            else:
                empty_pages = 0
                for record in page.records:
                    listed.setdefault(record.external_id, record)

            if not page.has_more:
                break
            page_token = page.next_token if page.next_token is not None else page_token + settings.page_size

        return listed

    async def _fetch_details(
        self,
        extractor: Extractor,
        batch: Sequence[JobRecord],
        token: CancellationToken,
        result: CellResult,
        clog: logging.LoggerAdapter,
    ) -> list[JobRecord]:
        detailed: list[JobRecord] = []
        for record in batch:
            if token.cancelled:
                break
            if not await self.throttle.acquire(token):
                break
            try:
                detailed.append(
                    await retry_async(
                        extractor.fetch_detail,
                        record,
                        config=self.detail_retry,
                        token=token,
                    )
                )
            except BlockedError as e:
                result.blocked = True
                result.error = f"blocked: {e}"
                clog.warning(f"Blocked on detail {record.external_id}; abandoning cell")
                break
            except Exception as e:
                if token.cancelled:
                    break
                result.dropped += 1
                self._state.totals.dropped += 1
                clog.warning(f"Dropping {record.external_id}: {type(e).__name__}: {e}")
        return detailed

    async def _commit(
        self,
        records: Sequence[JobRecord],
        result: CellResult,
        clog: logging.LoggerAdapter,
    ) -> None:
        """Write records to the primary store, falling back to the buffer."""
        if not records:
            return

        totals: RunTotals = self._state.totals
        try:
            await self.sink.upsert_records(records)
        except Exception as e:
            clog.warning(f"Primary store unavailable, buffering {len(records)} records: {e}")
            await self.buffer.append(records)
            result.buffered += len(records)
            totals.buffered += len(records)
            result.error = f"primary store unavailable: {e}"
        else:
            result.stored += len(records)
            totals.stored += len(records)
            if self.config.buffer.auto_flush and self.buffer.count:
                flushed = await self.buffer.flush(self.sink)
                if flushed.error:
                    result.error = f"buffer flush failed: {flushed.error}"

        self._state.last_error = result.error
        self._save_quietly()
        self._publish()


# =============================================================================
# Composition root
# =============================================================================


def build_orchestrator(config: AppConfig) -> TaskOrchestrator:
    """Wire the orchestrator with the SQLAlchemy store and Playwright extractor."""
    from jobharvest.core.backends.playwright_backend import PlaywrightExtractor
    from jobharvest.core.config.loader import load_search_space
    from jobharvest.persistence.db import get_engine, init_db
    from jobharvest.persistence.repo import JobStore

    config.ensure_directories()
    engine = get_engine(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
    )
    init_db(engine)

    return TaskOrchestrator(
        config,
        sink=JobStore(engine),
        extractor_factory=lambda: PlaywrightExtractor(config.browser),
        search_space_loader=lambda: load_search_space(config.search_file),
    )
