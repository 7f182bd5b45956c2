from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

from jobharvest.core.backends import playwright_backend
from jobharvest.core.backends.playwright_backend import PlaywrightExtractor
from jobharvest.core.config.models import BrowserConfig


def test_listing_url_carries_keyword_region_filters_and_offset():
    extractor = PlaywrightExtractor(BrowserConfig())

    url = extractor.build_listing_url("web developer", "103644278", {"f_WT": "2", "f_TPR": "r604800"}, 50)

    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert url.startswith(BrowserConfig().listing_url)
    assert query == {
        "keywords": ["web developer"],
        "geoId": ["103644278"],
        "f_WT": ["2"],
        "f_TPR": ["r604800"],
        "start": ["50"],
    }


async def test_close_without_open_is_a_no_op():
    extractor = PlaywrightExtractor(BrowserConfig())
    await extractor.close()
    await extractor.close()
    assert not extractor.is_open


async def test_failed_close_falls_back_to_killing_browser(monkeypatch):
    killed = []

    async def fake_kill(browser_type="chromium"):
        killed.append(browser_type)

    async def failing_close():
        raise RuntimeError("browser hung")

    monkeypatch.setattr(playwright_backend, "kill_browser_processes", fake_kill)
    extractor = PlaywrightExtractor(BrowserConfig(close_timeout_seconds=1))
    extractor._playwright = object()
    monkeypatch.setattr(extractor, "_graceful_close", failing_close)

    await extractor.close()

    assert killed == ["chromium"]
    assert extractor._playwright is None
