"""
Throttled state broadcast.

``publish`` delivers immediately when the throttle window is open. Inside
the window it keeps only the latest snapshot and schedules one trailing
delivery at the window boundary.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)


Subscriber = Callable[[Any], None]

DEFAULT_THROTTLE_MS = 500


class EventBus:
    """Fan-out of state snapshots to subscribers, at most one per window."""

    def __init__(self, throttle_ms: int = DEFAULT_THROTTLE_MS):
        self.interval = throttle_ms / 1000.0
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

        self._last_delivery: float | None = None
        self._pending: Any = None
        self._timer: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.delivered = 0

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def has_pending(self) -> bool:
        return self._timer is not None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a callable that unregisters it."""
        with self._lock:
            key = next(self._ids)
            self._subscribers[key] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(key, None)

        return unsubscribe

    def publish(self, state: Any) -> None:
        """Publish a snapshot, coalescing bursts inside the throttle window."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver(state)
            return

        if self.interval <= 0:
            self._deliver(state)
            return

        if self._timer is not None:
            self._pending = state
            return

        now = loop.time()
        if self._last_delivery is None or now - self._last_delivery >= self.interval:
            self._last_delivery = now
            self._deliver(state)
            return

        self._pending = state
        self._loop = loop
        self._timer = loop.call_at(self._last_delivery + self.interval, self._deliver_pending)

    def _deliver_pending(self) -> None:
        self._timer = None
        state, self._pending = self._pending, None
        if self._loop is not None:
            self._last_delivery = self._loop.time()
        self._deliver(state)

    def _deliver(self, state: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())

        for callback in subscribers:
            try:
                callback(state)
            except Exception:
                logger.exception("State subscriber failed")
        self.delivered += 1

    def flush(self) -> None:
        """Deliver a pending trailing snapshot now."""
        if self._timer is not None:
            self._timer.cancel()
            self._deliver_pending()

    def close(self) -> None:
        """Cancel any pending delivery and drop all subscribers."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        with self._lock:
            self._subscribers.clear()
