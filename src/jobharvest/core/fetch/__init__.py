"""Cancellation, retry and throttling primitives for page navigation."""

from .cancel import CancellationToken
from .retries import RetryConfig, retry_async
from .throttling import NavigationThrottle, ThrottleConfig

__all__ = [
    "CancellationToken",
    "NavigationThrottle",
    "RetryConfig",
    "ThrottleConfig",
    "retry_async",
]
