"""
Live status push channel.

Each observer gets a connection that yields Server-Sent Events frames: the
current snapshot on connect, one frame per broadcast snapshot, and comment
frames as keep-alives. The channel caps concurrent connections overall and
per origin, and reaps connections that went silent.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, AsyncIterator, Callable

import orjson

from jobharvest.core.config.models import StatusChannelConfig
from jobharvest.core.orchestrator.events import EventBus

logger = logging.getLogger(__name__)


KEEPALIVE_FRAME = ":ping\n\n"

_CLOSED = object()


def _payload(snapshot: Any) -> Any:
    to_dict = getattr(snapshot, "to_dict", None)
    return to_dict() if callable(to_dict) else snapshot


def format_frame(snapshot: Any) -> str:
    """Encode a snapshot as an SSE data frame."""
    data = orjson.dumps(_payload(snapshot), default=str).decode("utf-8")
    return f"data: {data}\n\n"


# =============================================================================
# Errors
# =============================================================================


class ChannelError(Exception):
    """Connection refused by the status channel."""

    status_code = 503

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "retry_after": self.retry_after}


class ChannelFull(ChannelError):
    """The channel is at its connection limit."""

    status_code = 503


class OriginLimitExceeded(ChannelError):
    """The origin already holds its maximum number of connections."""

    status_code = 429


# =============================================================================
# Connection
# =============================================================================


class StatusConnection:
    """One observer's stream of status frames."""

    def __init__(self, channel: "StatusChannel", connection_id: str, origin: str):
        self.channel = channel
        self.id = connection_id
        self.origin = origin
        self.opened_at = time.monotonic()
        self.last_activity = self.opened_at
        self.closed = False
        self.frames_sent = 0
        # Holds only the most recent snapshot
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=1)

    def offer(self, snapshot: Any) -> None:
        """Queue a snapshot, replacing one the observer has not read yet."""
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def idle_seconds(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_activity

    def _sent(self) -> None:
        self.frames_sent += 1
        self.last_activity = time.monotonic()

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE frames until the connection is closed."""
        try:
            yield format_frame(self.channel.snapshot_fn())
            self._sent()
            while not self.closed:
                try:
                    item = await asyncio.wait_for(
                        self._queue.get(),
                        timeout=self.channel.keepalive_seconds,
                    )
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
                    self._sent()
                    continue
                if item is _CLOSED:
                    break
                yield format_frame(item)
                self._sent()
        finally:
            self.closed = True
            self.channel.release(self)


# =============================================================================
# Channel
# =============================================================================


class StatusChannel:
    """Registry of live status connections fed from the event bus."""

    def __init__(
        self,
        bus: EventBus,
        snapshot_fn: Callable[[], Any],
        config: StatusChannelConfig | None = None,
    ):
        config = config or StatusChannelConfig()
        self.bus = bus
        self.snapshot_fn = snapshot_fn
        self.max_connections = config.max_connections
        self.max_per_origin = config.max_per_origin
        self.keepalive_seconds = config.keepalive_seconds
        self.idle_timeout_seconds = config.idle_timeout_seconds
        self.reap_interval_seconds = config.reap_interval_seconds

        self._connections: dict[str, StatusConnection] = {}
        self._ids = itertools.count(1)
        self._unsubscribe = bus.subscribe(self._broadcast)
        self._reaper: asyncio.Task[None] | None = None
        self.total_connections = 0

    @property
    def active_count(self) -> int:
        return len(self._connections)

    def connections_for(self, origin: str) -> int:
        return sum(1 for conn in self._connections.values() if conn.origin == origin)

    def connect(self, origin: str) -> StatusConnection:
        """Open a connection for an observer.

        Raises:
            ChannelFull: The overall connection cap is reached
            OriginLimitExceeded: The origin's connection cap is reached
        """
        self.reap()

        if len(self._connections) >= self.max_connections:
            logger.warning(f"Refusing status connection: limit of {self.max_connections} reached")
            raise ChannelFull("Too many status connections", retry_after=10)

        if self.connections_for(origin) >= self.max_per_origin:
            logger.warning(f"Refusing status connection from {origin}: per-origin limit reached")
            raise OriginLimitExceeded("Too many connections from this origin", retry_after=30)

        connection_id = f"{int(time.time() * 1000)}-{next(self._ids)}"
        conn = StatusConnection(self, connection_id, origin)
        self._connections[connection_id] = conn
        self.total_connections += 1
        logger.info(
            f"Status connection opened ({len(self._connections)} active)",
            extra={"connection_id": connection_id},
        )
        return conn

    def release(self, conn: StatusConnection) -> None:
        if self._connections.pop(conn.id, None) is not None:
            logger.info(
                f"Status connection closed after {conn.frames_sent} frames",
                extra={"connection_id": conn.id},
            )

    def _broadcast(self, snapshot: Any) -> None:
        for conn in list(self._connections.values()):
            conn.offer(snapshot)

    def reap(self, now: float | None = None) -> int:
        """Drop closed connections and those idle past the timeout."""
        now = now if now is not None else time.monotonic()
        reaped = 0
        for conn in list(self._connections.values()):
            if conn.closed or conn.idle_seconds(now) > self.idle_timeout_seconds:
                conn.close()
                self._connections.pop(conn.id, None)
                reaped += 1
        if reaped:
            logger.info(f"Reaped {reaped} status connections ({len(self._connections)} active)")
        return reaped

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval_seconds)
            self.reap()

    def start_reaper(self) -> None:
        """Reap periodically on the running event loop."""
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap_forever(), name="status-reaper")

    async def aclose(self) -> None:
        """Close every connection and detach from the bus."""
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None
        for conn in list(self._connections.values()):
            conn.close()
        self._connections.clear()
        self._unsubscribe()
