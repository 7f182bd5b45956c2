"""
Retry utilities with tenacity.

Navigation and extraction failures are retried with a fixed delay up to a
ceiling. Failures are not told apart by cause, except block signals, which
are never retried. Every attempt is bounded by a timeout, and waits go
through the cancellation token so a stop request ends the retry loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)
from tenacity.stop import stop_base

from jobharvest.core.backends.base import BlockedError
from .cancel import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_DELAY = 5.0  # seconds
DEFAULT_ATTEMPT_TIMEOUT = 45.0  # seconds

# Never retried: the source is blocking us, or the task itself was cancelled
NON_RETRYABLE = (BlockedError, asyncio.CancelledError)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay: float = DEFAULT_DELAY,
        attempt_timeout: float | None = DEFAULT_ATTEMPT_TIMEOUT,
    ):
        """Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts
            delay: Fixed wait between attempts in seconds
            attempt_timeout: Upper bound on a single attempt (None = unbounded)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self.attempt_timeout = attempt_timeout

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, delay={self.delay}, "
            f"attempt_timeout={self.attempt_timeout})"
        )


class stop_when_cancelled(stop_base):
    """Stop retrying once the token is cancelled."""

    def __init__(self, token: CancellationToken) -> None:
        self.token = token

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.token.cancelled


async def retry_async(
    coro_func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    token: CancellationToken | None = None,
    **kwargs: Any,
) -> T:
    """Execute an async function with fixed-delay retries.

    Args:
        coro_func: Async function to call
        *args: Positional arguments
        config: Retry configuration
        token: Cancellation token; cancelling it stops further attempts
        **kwargs: Keyword arguments

    Returns:
        Function result

    Raises:
        BlockedError: Immediately, without retrying
        Exception: The last attempt's exception once attempts are exhausted
            or the token is cancelled
    """
    if config is None:
        config = RetryConfig()

    stop = stop_after_attempt(config.max_attempts)
    if token is not None:
        stop = stop | stop_when_cancelled(token)

    async def _sleep(seconds: float) -> None:
        if token is not None:
            await token.sleep(seconds)
        else:
            await asyncio.sleep(seconds)

    last_error: BaseException | None = None
    async for attempt in AsyncRetrying(
        stop=stop,
        wait=wait_fixed(config.delay),
        retry=retry_if_not_exception_type(NON_RETRYABLE),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=_sleep,
        reraise=True,
    ):
        # A stop that arrived during the wait must not reach another navigation
        if token is not None and token.cancelled and last_error is not None:
            raise last_error
        with attempt:
            try:
                if config.attempt_timeout is None:
                    return await coro_func(*args, **kwargs)
                return await asyncio.wait_for(
                    coro_func(*args, **kwargs),
                    timeout=config.attempt_timeout,
                )
            except Exception as e:
                last_error = e
                raise

    raise RuntimeError("retry loop ended without a result")  # pragma: no cover
