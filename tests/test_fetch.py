"""Retry, throttle and cancellation helpers."""

from __future__ import annotations

import asyncio

import pytest

from jobharvest.core.backends.base import BlockedError, NavigationTimeout
from jobharvest.core.fetch import (
    CancellationToken,
    NavigationThrottle,
    RetryConfig,
    ThrottleConfig,
    retry_async,
)

FAST = RetryConfig(max_attempts=3, delay=0, attempt_timeout=None)


class Flaky:
    def __init__(self, failures: int, exc: Exception | None = None):
        self.failures = failures
        self.exc = exc or NavigationTimeout("timed out")
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return value


async def test_transient_failures_are_retried():
    func = Flaky(failures=2)
    assert await retry_async(func, "page", config=FAST) == "page"
    assert func.calls == 3


async def test_exhausted_retries_reraise_last_error():
    func = Flaky(failures=10)
    with pytest.raises(NavigationTimeout):
        await retry_async(func, "page", config=FAST)
    assert func.calls == 3


async def test_blocked_error_is_never_retried():
    func = Flaky(failures=10, exc=BlockedError("rate limited", status_code=429))
    with pytest.raises(BlockedError):
        await retry_async(func, "page", config=FAST)
    assert func.calls == 1


async def test_cancelled_token_stops_retrying():
    token = CancellationToken()
    token.cancel("stop requested")
    func = Flaky(failures=10)

    with pytest.raises(NavigationTimeout):
        await retry_async(func, "page", config=RetryConfig(max_attempts=30, delay=60), token=token)
    assert func.calls == 1


async def test_stop_during_retry_wait_prevents_next_attempt():
    token = CancellationToken()
    func = Flaky(failures=10)
    asyncio.get_running_loop().call_later(0.05, token.cancel)

    with pytest.raises(NavigationTimeout):
        await asyncio.wait_for(
            retry_async(func, "page", config=RetryConfig(max_attempts=30, delay=10), token=token),
            timeout=5,
        )
    assert func.calls == 1


async def test_attempt_timeout_bounds_each_attempt():
    calls = 0

    async def hangs():
        nonlocal calls
        calls += 1
        await asyncio.sleep(10)

    config = RetryConfig(max_attempts=2, delay=0, attempt_timeout=0.05)
    with pytest.raises(asyncio.TimeoutError):
        await retry_async(hangs, config=config)
    assert calls == 2


def test_retry_config_requires_an_attempt():
    with pytest.raises(ValueError):
        RetryConfig(max_attempts=0)


async def test_token_sleep_is_cut_short_by_cancel():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel, "stop requested")

    assert await token.sleep(10) is True
    assert token.reason == "stop requested"


async def test_token_sleep_runs_out_when_not_cancelled():
    token = CancellationToken()
    assert await token.sleep(0.01) is False
    assert not token.cancelled


async def test_throttle_wait_is_interrupted_by_cancel():
    throttle = NavigationThrottle(ThrottleConfig(min_delay_ms=10_000, max_delay_ms=10_000))
    token = CancellationToken()

    assert await throttle.acquire(token) is True
    token.cancel()
    assert await throttle.acquire(token) is False


async def test_throttle_without_delay_does_not_wait():
    throttle = NavigationThrottle(ThrottleConfig(min_delay_ms=0, max_delay_ms=0))
    for _ in range(5):
        assert await throttle.acquire() is True
    assert throttle.stats()["navigations_in_window"] == 5
