"""
Cooperative cancellation.

A token is created per traversal run and passed through every suspend
point. Callers poll ``cancelled`` (non-blocking) and use ``sleep`` for
delays so a stop request cuts any wait short.
"""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Cancellation flag with an interruptible sleep."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "stop requested") -> None:
        """Signal cancellation. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        if self._event.is_set():
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait(self) -> None:
        """Block until cancelled."""
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled: {self.reason}" if self.cancelled else "active"
        return f"<CancellationToken {state}>"
