"""
Pydantic configuration models for JobHarvest.

These models provide type-safe configuration with validation for:
- Application settings (storage, database, logging)
- Browser and retry behavior
- Traversal policy and broadcast throttling
- The search space (keywords, regions, filter steps)
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .search_space import (
    DEFAULT_FILTER_STEPS,
    DEFAULT_KEYWORDS,
    DEFAULT_REGION_GROUPS,
    FilterStep,
    Region,
    SearchSpace,
)


# =============================================================================
# Enums
# =============================================================================


class BrowserType(str, Enum):
    """Supported Playwright browser engines."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


# =============================================================================
# Storage Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Locations of the task state, cursor and local buffer files."""

    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the state, cursor and buffer files",
    )
    state_file: str = Field(
        default="task_state.json",
        description="Task status snapshot file name",
    )
    cursor_file: str = Field(
        default="task_cursor.json",
        description="Progress cursor file name",
    )
    buffer_file: str = Field(
        default="local_jobs.json",
        description="Local overflow buffer file name",
    )

    @property
    def state_path(self) -> Path:
        return self.data_dir / self.state_file

    @property
    def cursor_path(self) -> Path:
        return self.data_dir / self.cursor_file

    @property
    def buffer_path(self) -> Path:
        return self.data_dir / self.buffer_file


# =============================================================================
# Browser Configuration
# =============================================================================


class BrowserConfig(BaseModel):
    """Browser automation settings."""

    browser: BrowserType = Field(
        default=BrowserType.CHROMIUM,
        description="Browser engine to launch",
    )
    headless: bool = Field(
        default=True,
        description="Run the browser without a visible window",
    )
    navigation_timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Timeout for a single navigation attempt",
    )
    close_timeout_seconds: float = Field(
        default=10.0,
        ge=0.5,
        le=120.0,
        description="Time allowed for a graceful browser close",
    )
    kill_on_close_failure: bool = Field(
        default=True,
        description="Kill browser child processes when graceful close fails",
    )
    viewport_width: int = Field(default=1200, ge=320, le=3840)
    viewport_height: int = Field(default=800, ge=240, le=2160)
    locale: str = Field(default="en-US")
    user_agent: str | None = Field(
        default=None,
        description="Custom user agent (None = built-in desktop Chrome UA)",
    )
    listing_url: str = Field(
        default="https://www.linkedin.com/jobs-guest/jobs/api/seeMoreJobPostings/search",
        description="Guest listing endpoint",
    )
    detail_url: str = Field(
        default="https://www.linkedin.com/jobs-guest/jobs/api/jobPosting/{job_id}",
        description="Guest detail endpoint template",
    )
    page_size: int = Field(
        default=25,
        ge=1,
        le=100,
        description="Offset increment between listing pages",
    )
    min_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Minimum delay between navigations in milliseconds",
    )
    max_delay_ms: int = Field(
        default=1500,
        ge=0,
        description="Maximum delay between navigations in milliseconds",
    )

    burst_limit: int = Field(
        default=0,
        ge=0,
        description="Max navigations per burst window (0 = unlimited)",
    )
    burst_window_seconds: float = Field(default=30.0, gt=0.0)

    @field_validator("max_delay_ms")
    @classmethod
    def max_delay_gte_min(cls, v: int, info: Any) -> int:
        """Ensure max delay is at least min delay."""
        min_delay = info.data.get("min_delay_ms", 0)
        if v < min_delay:
            raise ValueError("max_delay_ms must be >= min_delay_ms")
        return v


# =============================================================================
# Retry Configuration
# =============================================================================


class RetryPolicyConfig(BaseModel):
    """Fixed back-off retry policy for navigation and extraction."""

    listing_max_attempts: int = Field(
        default=30,
        ge=1,
        le=1000,
        description="Attempts per listing page before the cell is abandoned",
    )
    detail_max_attempts: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Attempts per detail page before the record is dropped",
    )
    retry_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=600.0,
        description="Fixed delay between attempts",
    )
    attempt_timeout_seconds: float = Field(
        default=45.0,
        ge=1.0,
        le=600.0,
        description="Upper bound on one attempt, navigation plus extraction",
    )


# =============================================================================
# Traversal Configuration
# =============================================================================


class TraversalConfig(BaseModel):
    """Search-space traversal policy."""

    volume_threshold: int = Field(
        default=50,
        ge=1,
        description="Novel results needed to drill into the next filter step",
    )
    max_pages: int = Field(
        default=40,
        ge=1,
        le=1000,
        description="Maximum listing pages per cell",
    )
    empty_page_limit: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Consecutive empty pages treated as end of results",
    )
    detail_batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Records detail-fetched between commits",
    )
    stop_grace_seconds: float = Field(
        default=10.0,
        ge=0.0,
        le=300.0,
        description="How long stop() waits for the loop to release the browser",
    )


# =============================================================================
# Buffer / Broadcast / Status Channel
# =============================================================================


class BufferConfig(BaseModel):
    """Local overflow buffer settings."""

    flush_batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Records committed per flush sub-batch",
    )
    auto_flush: bool = Field(
        default=True,
        description="Flush the buffer after a successful primary commit",
    )


class BroadcastConfig(BaseModel):
    """State broadcast throttling."""

    throttle_ms: int = Field(
        default=500,
        ge=0,
        le=60000,
        description="Minimum interval between delivered snapshots",
    )


class StatusChannelConfig(BaseModel):
    """Live status push channel limits."""

    max_connections: int = Field(default=10, ge=1, le=1000)
    max_per_origin: int = Field(default=3, ge=1, le=100)
    keepalive_seconds: float = Field(default=30.0, gt=0.0)
    idle_timeout_seconds: float = Field(default=300.0, gt=0.0)
    reap_interval_seconds: float = Field(default=10.0, gt=0.0)


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite:///data/jobharvest.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging)",
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Connection pool size",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=Path("logs/jobharvest.log"),
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )
    max_bytes: int = Field(
        default=5_000_000,
        ge=0,
        description="Rotate the log file at this size (0 disables rotation)",
    )
    backup_count: int = Field(
        default=3,
        ge=0,
        description="Rotated log files to keep",
    )


# =============================================================================
# Search Configuration
# =============================================================================


class KeywordConfig(BaseModel):
    """A search keyword."""

    term: str = Field(min_length=1, max_length=200)
    enabled: bool = True


class RegionConfig(BaseModel):
    """A region entry with its source identifier."""

    region_id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    enabled: bool = True


class RegionGroupConfig(BaseModel):
    """A named group of regions (continent, market...)."""

    name: str = Field(min_length=1, max_length=200)
    regions: list[RegionConfig] = Field(default_factory=list)


class FilterStepConfig(BaseModel):
    """Override for one filter step."""

    name: str = Field(min_length=1, max_length=100)
    params: dict[str, str | list[str]] = Field(default_factory=dict)


class SearchConfig(BaseModel):
    """Search space configuration loaded from search.yaml."""

    keywords: list[KeywordConfig] = Field(
        default_factory=lambda: [KeywordConfig(term=k) for k in DEFAULT_KEYWORDS],
        description="Ordered keywords",
    )
    region_groups: list[RegionGroupConfig] = Field(
        default_factory=lambda: [
            RegionGroupConfig(
                name=group,
                regions=[RegionConfig(region_id=rid, name=name) for name, rid in countries],
            )
            for group, countries in DEFAULT_REGION_GROUPS.items()
        ],
        description="Ordered region groups",
    )
    filter_steps: list[FilterStepConfig] | None = Field(
        default=None,
        description="Filter step override (None = built-in steps)",
    )

    @field_validator("keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, v: Any) -> Any:
        """Allow plain strings in the keyword list."""
        if isinstance(v, list):
            return [{"term": item} if isinstance(item, str) else item for item in v]
        return v

    @model_validator(mode="after")
    def unique_region_ids(self) -> "SearchConfig":
        seen: set[str] = set()
        for group in self.region_groups:
            for region in group.regions:
                if region.region_id in seen:
                    raise ValueError(f"duplicate region_id: {region.region_id}")
                seen.add(region.region_id)
        return self

    def to_search_space(self) -> SearchSpace:
        """Build the runtime search space from enabled entries."""
        keywords = tuple(k.term.strip() for k in self.keywords if k.enabled and k.term.strip())
        regions = tuple(
            Region(region_id=r.region_id, name=r.name, group=group.name)
            for group in self.region_groups
            for r in group.regions
            if r.enabled
        )
        if self.filter_steps is None:
            steps = DEFAULT_FILTER_STEPS
        else:
            steps = tuple(FilterStep(name=s.name, params=dict(s.params)) for s in self.filter_steps)
        return SearchSpace(keywords=keywords, regions=regions, steps=steps)


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    config_dir: Path = Field(
        default=Path("configs"),
        description="Configuration directory",
    )
    search_file: Path = Field(
        default=Path("configs/search.yaml"),
        description="Search space configuration file",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    retry: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    traversal: TraversalConfig = Field(default_factory=TraversalConfig)
    buffer: BufferConfig = Field(default_factory=BufferConfig)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    status_channel: StatusChannelConfig = Field(default_factory=StatusChannelConfig)

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.config_dir, self.storage.data_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

        if self.logging.file:
            self.logging.file.parent.mkdir(parents=True, exist_ok=True)
