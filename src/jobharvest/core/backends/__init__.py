"""Extractor implementations for listing and detail pages."""

from .base import (
    BlockedError,
    BrowserError,
    ExtractionError,
    Extractor,
    ListingPage,
    NavigationTimeout,
)
from .playwright_backend import PlaywrightExtractor, kill_browser_processes

__all__ = [
    # Base classes
    "Extractor",
    "ListingPage",
    # Errors
    "BlockedError",
    "BrowserError",
    "ExtractionError",
    "NavigationTimeout",
    # Playwright extractor
    "PlaywrightExtractor",
    "kill_browser_processes",
]
