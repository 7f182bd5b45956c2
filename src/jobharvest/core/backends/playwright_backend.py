"""
Playwright extractor implementation.

Drives one headless browser page against the guest job endpoints:
- Listing pages by keyword, region, filter step and offset
- Detail pages per posting
- Block detection by status code and page text
- Bounded graceful close with an OS-level kill fallback
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any, Mapping, TYPE_CHECKING
from urllib.parse import urlencode

from jobharvest.core.extract.jobs import looks_blocked, parse_detail, parse_listing
from jobharvest.core.extract.records import JobRecord

from .base import (
    BlockedError,
    BrowserError,
    Extractor,
    ListingPage,
    NavigationTimeout,
)

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright, Response

    from jobharvest.core.config.models import BrowserConfig

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# Status codes the source answers with when it refuses us
BLOCKED_STATUS_CODES = {403, 429, 451, 999}

# Past the last page the guest endpoint answers with these
END_OF_RESULTS_STATUS_CODES = {400, 404}

BROWSER_EXECUTABLES = {
    "chromium": "chrome.exe",
    "firefox": "firefox.exe",
    "webkit": "Playwright.exe",
}


class PlaywrightExtractor(Extractor):
    """Extractor backed by a single Playwright page."""

    def __init__(self, config: BrowserConfig):
        self.config = config
        self.timeout_ms = int(config.navigation_timeout_seconds * 1000)
        self.user_agent = config.user_agent or DEFAULT_USER_AGENT

        # Playwright objects (initialized in open)
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def name(self) -> str:
        return "playwright"

    @property
    def is_open(self) -> bool:
        return self._page is not None and not self._page.is_closed()

    async def open(self) -> None:
        """Launch the browser and open a page."""
        if self.is_open:
            return

        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        browser_type = self.config.browser.value
        launcher = getattr(self._playwright, browser_type)

        launch_args: list[str] = []
        if browser_type == "chromium":
            launch_args = [
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
                "--no-sandbox",
                f"--window-size={self.config.viewport_width},{self.config.viewport_height}",
            ]

        try:
            self._browser = await launcher.launch(headless=self.config.headless, args=launch_args)
            self._context = await self._browser.new_context(
                viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                },
                user_agent=self.user_agent,
                locale=self.config.locale,
            )
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self.timeout_ms)
        except Exception as e:
            await self.close()
            raise BrowserError(
                f"Failed to launch {browser_type} browser. Run: playwright install {browser_type}",
                cause=e,
            ) from e

        logger.info(f"Launched {browser_type} browser (headless={self.config.headless})")

    def build_listing_url(
        self,
        keyword: str,
        region_id: str,
        filters: Mapping[str, str],
        page_token: int,
    ) -> str:
        params: dict[str, Any] = {"keywords": keyword, "geoId": region_id}
        params.update(filters)
        params["start"] = page_token
        return f"{self.config.listing_url}?{urlencode(params)}"

    async def _navigate(self, url: str) -> tuple[int, str]:
        if not self.is_open:
            await self.open()
        page = self._page
        assert page is not None

        try:
            response: Response | None = await page.goto(
                url,
                timeout=self.timeout_ms,
                wait_until="domcontentloaded",
            )
            html = await page.content()
        except Exception as e:
            if "timeout" in str(e).lower():
                raise NavigationTimeout(f"Navigation timeout: {url}", url=url, cause=e) from e
            raise BrowserError(f"Browser error: {e}", url=url, cause=e) from e

        status_code = response.status if response is not None else 200
        if status_code in BLOCKED_STATUS_CODES:
            raise BlockedError(
                f"Request blocked with status {status_code}",
                url=url,
                status_code=status_code,
            )
        return status_code, html

    async def list_page(
        self,
        keyword: str,
        region_id: str,
        filters: Mapping[str, str],
        page_token: int,
    ) -> ListingPage:
        url = self.build_listing_url(keyword, region_id, filters, page_token)
        status_code, html = await self._navigate(url)

        if status_code in END_OF_RESULTS_STATUS_CODES:
            return ListingPage(records=[], has_more=False)

        parsed = parse_listing(
            html,
            self.config.detail_url,
            keyword=keyword,
            region_id=region_id,
        )
        logger.debug(f"Listing offset {page_token}: {len(parsed.records)} records")
        return ListingPage(
            records=parsed.records,
            has_more=True,
            blocked=parsed.blocked,
            next_token=page_token + self.config.page_size,
        )

    async def fetch_detail(self, record: JobRecord) -> JobRecord:
        url = record.detail_url or self.config.detail_url.format(job_id=record.external_id)
        status_code, html = await self._navigate(url)

        if status_code >= 400:
            raise BrowserError(
                f"Detail page returned {status_code}",
                url=url,
                status_code=status_code,
            )
        if len(html) < 2000 and looks_blocked(html):
            raise BlockedError("Detail page blocked", url=url, status_code=status_code)
        return parse_detail(html, record)

    async def _graceful_close(self) -> None:
        if self._page is not None and not self._page.is_closed():
            await self._page.close()
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    async def close(self) -> None:
        """Close browser and clean up resources.

        A close that fails or exceeds ``close_timeout_seconds`` falls back to
        killing the browser processes.
        """
        if self._playwright is None:
            return

        try:
            await asyncio.wait_for(
                self._graceful_close(),
                timeout=self.config.close_timeout_seconds,
            )
            logger.info("Playwright extractor closed")
        except Exception as e:
            logger.warning(f"Graceful browser close failed: {e!r}")
            if self.config.kill_on_close_failure:
                await kill_browser_processes(self.config.browser.value)
        finally:
            self._page = None
            self._context = None
            self._browser = None
            self._playwright = None


async def kill_browser_processes(browser_type: str = "chromium") -> None:
    """Best-effort kill of browser processes started by this process."""
    if sys.platform.startswith("win"):
        executable = BROWSER_EXECUTABLES.get(browser_type, "chrome.exe")
        args = ["taskkill", "/F", "/T", "/IM", executable]
    else:
        args = ["pkill", "-P", str(os.getpid())]

    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await proc.wait()
    except OSError as e:
        logger.warning(f"Browser kill fallback failed: {e}")
        return

    # Give the OS a moment to reap the processes
    await asyncio.sleep(0.8)
    logger.info(f"Killed browser processes ({' '.join(args)})")
