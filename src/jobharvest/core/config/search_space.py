"""
Search space definition.

The traversal walks keyword x region x filter-step. Filter steps are
code-defined and ordered from broadest to narrowest; keywords and regions
come from ``configs/search.yaml`` and fall back to the defaults below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Region:
    """A searchable region with an opaque source identifier."""

    region_id: str
    name: str
    group: str | None = None

    @property
    def label(self) -> str:
        """Display label: ``Group-Name``."""
        if self.group:
            return f"{self.group}-{self.name}"
        return self.name


@dataclass(frozen=True)
class FilterStep:
    """One narrowing step: query parameters applied on top of keyword/region."""

    name: str
    params: dict[str, Any] = field(default_factory=dict)

    def query_params(self) -> dict[str, str]:
        """Flatten list values into comma-separated query values."""
        flattened: dict[str, str] = {}
        for key, value in self.params.items():
            if isinstance(value, (list, tuple)):
                flattened[key] = ",".join(str(v) for v in value)
            else:
                flattened[key] = str(value)
        return flattened


@dataclass(frozen=True)
class SearchSpace:
    """Ordered keyword, region and filter-step lists."""

    keywords: tuple[str, ...]
    regions: tuple[Region, ...]
    steps: tuple[FilterStep, ...]

    @property
    def is_complete(self) -> bool:
        """All three dimensions are non-empty."""
        return bool(self.keywords) and bool(self.regions) and bool(self.steps)

    @property
    def shape(self) -> tuple[int, int, int]:
        return len(self.keywords), len(self.regions), len(self.steps)

    def missing_dimensions(self) -> list[str]:
        """Names of the empty dimensions."""
        missing = []
        if not self.keywords:
            missing.append("keywords")
        if not self.regions:
            missing.append("regions")
        if not self.steps:
            missing.append("filter steps")
        return missing


# Remote + most recent + full-time, then narrowing posted-time windows
DEFAULT_FILTER_STEPS: tuple[FilterStep, ...] = (
    FilterStep("remote-fulltime", {"f_WT": ["2"], "f_SB2": "1", "f_JT": ["F"]}),
    FilterStep("past-year", {"f_WT": ["2"], "f_SB2": "1", "f_JT": ["F"], "f_TPR": "r31536000"}),
    FilterStep("past-90-days", {"f_WT": ["2"], "f_SB2": "1", "f_JT": ["F"], "f_TPR": "r7776000"}),
    FilterStep("past-30-days", {"f_WT": ["2"], "f_SB2": "1", "f_JT": ["F"], "f_TPR": "r2592000"}),
    FilterStep("past-week", {"f_WT": ["2"], "f_SB2": "1", "f_JT": ["F"], "f_TPR": "r604800"}),
    FilterStep("past-day", {"f_WT": ["2"], "f_SB2": "1", "f_JT": ["F"], "f_TPR": "r86400"}),
)


DEFAULT_KEYWORDS: tuple[str, ...] = (
    "nodejs", "fullstack", "react", "web developer",
    "frontend", "javascript", "typescript",
    "vue", "angular", "nextjs", "nuxtjs",
    "svelte", "ember.js", "extjs",
    "html css", "tailwind", "bootstrap",
)


DEFAULT_REGION_GROUPS: dict[str, list[tuple[str, str]]] = {
    "North America": [
        ("United States", "103644278"),
        ("Canada", "101174742"),
    ],
    "Europe": [
        ("United Kingdom", "101165590"),
        ("Germany", "101282230"),
        ("France", "105015875"),
        ("Spain", "105646813"),
        ("Italy", "103350119"),
        ("Netherlands", "102890719"),
        ("Switzerland", "106693272"),
        ("Sweden", "105117694"),
        ("Ireland", "104738515"),
        ("Norway", "103819153"),
        ("Belgium", "100565514"),
        ("Austria", "103883259"),
        ("Poland", "105072130"),
        ("Portugal", "100364837"),
    ],
    "Asia Pacific": [
        ("United Arab Emirates", "104305776"),
        ("Australia", "101452733"),
        ("Japan", "101355337"),
        ("South Korea", "105149562"),
        ("Singapore", "102454443"),
    ],
}


def default_regions() -> tuple[Region, ...]:
    """Flatten the default region groups in declaration order."""
    return tuple(
        Region(region_id=region_id, name=name, group=group)
        for group, countries in DEFAULT_REGION_GROUPS.items()
        for name, region_id in countries
    )


def default_search_space() -> SearchSpace:
    return SearchSpace(
        keywords=DEFAULT_KEYWORDS,
        regions=default_regions(),
        steps=DEFAULT_FILTER_STEPS,
    )
