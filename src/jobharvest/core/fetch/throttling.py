"""
Navigation throttling.

Spaces page navigations of the single browser resource with a jittered
delay and a burst ceiling. All waits go through the cancellation token.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any

from .cancel import CancellationToken


@dataclass
class ThrottleConfig:
    """Configuration for navigation throttling."""

    min_delay_ms: int = 500
    max_delay_ms: int = 1500
    burst_limit: int = 0  # Max navigations in burst window (0 = unlimited)
    burst_window_seconds: float = 30.0


class NavigationThrottle:
    """Jittered spacing between navigations.

    Features:
    - Random delay in [min_delay_ms, max_delay_ms] since the last navigation
    - Burst protection over a sliding window
    - Cancellation-aware waits
    """

    def __init__(self, config: ThrottleConfig | None = None):
        self.config = config or ThrottleConfig()
        self._last_navigation = 0.0
        self._navigation_times: list[float] = []
        self._lock = asyncio.Lock()

    def _calculate_delay(self) -> float:
        """Calculate jittered delay in seconds."""
        delay_ms = random.randint(self.config.min_delay_ms, self.config.max_delay_ms)
        return delay_ms / 1000.0

    def _check_burst(self, now: float) -> float:
        """Return additional seconds to wait for the burst window (0 if within limits)."""
        window_start = now - self.config.burst_window_seconds
        self._navigation_times = [t for t in self._navigation_times if t > window_start]

        if self.config.burst_limit and len(self._navigation_times) >= self.config.burst_limit:
            oldest = min(self._navigation_times)
            return max(0.0, (oldest + self.config.burst_window_seconds) - now)
        return 0.0

    async def acquire(self, token: CancellationToken | None = None) -> bool:
        """Wait until the next navigation may start.

        Returns:
            False if the token was cancelled while waiting, True otherwise
        """
        async with self._lock:
            now = time.monotonic()
            wait_time = self._check_burst(now)

            elapsed = now - self._last_navigation
            wait_time = max(wait_time, self._calculate_delay() - elapsed)

            if wait_time > 0:
                if token is not None:
                    if await token.sleep(wait_time):
                        return False
                else:
                    await asyncio.sleep(wait_time)

            stamp = time.monotonic()
            self._last_navigation = stamp
            self._navigation_times.append(stamp)
            return True

    def stats(self) -> dict[str, Any]:
        """Get throttle statistics."""
        return {
            "last_navigation": self._last_navigation,
            "navigations_in_window": len(self._navigation_times),
        }
