"""Live status push channel."""

from __future__ import annotations

import time

import orjson
import pytest

from jobharvest.core.config.models import StatusChannelConfig
from jobharvest.core.orchestrator import EventBus, TaskState, TaskStatus
from jobharvest.core.status import (
    KEEPALIVE_FRAME,
    ChannelFull,
    OriginLimitExceeded,
    StatusChannel,
    format_frame,
)


def decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return orjson.loads(frame[len("data: "):])


@pytest.fixture
def bus() -> EventBus:
    return EventBus(throttle_ms=0)


def make_channel(bus: EventBus, **limits) -> StatusChannel:
    return StatusChannel(
        bus,
        snapshot_fn=lambda: TaskState(status=TaskStatus.STOPPED),
        config=StatusChannelConfig(**limits),
    )


def test_frame_encodes_task_state():
    payload = decode(format_frame(TaskState(status=TaskStatus.PAUSED, current_keyword="react")))
    assert payload["status"] == "paused"
    assert payload["running"] is False
    assert payload["current_keyword"] == "react"


async def test_connection_streams_initial_and_published_snapshots(bus):
    channel = make_channel(bus)
    conn = channel.connect("127.0.0.1")
    frames = conn.frames()

    assert decode(await frames.__anext__())["status"] == "stopped"

    bus.publish(TaskState(status=TaskStatus.RUNNING))
    assert decode(await frames.__anext__())["status"] == "running"

    conn.close()
    with pytest.raises(StopAsyncIteration):
        await frames.__anext__()
    assert channel.active_count == 0


async def test_slow_observer_only_sees_latest_snapshot(bus):
    channel = make_channel(bus)
    conn = channel.connect("127.0.0.1")
    frames = conn.frames()
    await frames.__anext__()

    for keyword in ("a", "b", "c"):
        bus.publish(TaskState(status=TaskStatus.RUNNING, current_keyword=keyword))

    assert decode(await frames.__anext__())["current_keyword"] == "c"
    await frames.aclose()
    assert channel.active_count == 0


async def test_keepalive_frame_when_nothing_is_published(bus):
    channel = make_channel(bus, keepalive_seconds=0.02)
    conn = channel.connect("127.0.0.1")
    frames = conn.frames()
    await frames.__anext__()

    assert await frames.__anext__() == KEEPALIVE_FRAME
    assert conn.frames_sent == 2
    await frames.aclose()


def test_connection_caps(bus):
    channel = make_channel(bus, max_connections=2, max_per_origin=1)

    channel.connect("10.0.0.1")
    with pytest.raises(OriginLimitExceeded) as per_origin:
        channel.connect("10.0.0.1")
    assert per_origin.value.retry_after == 30
    assert per_origin.value.status_code == 429

    channel.connect("10.0.0.2")
    with pytest.raises(ChannelFull) as full:
        channel.connect("10.0.0.3")
    assert full.value.retry_after == 10
    assert full.value.to_dict()["retry_after"] == 10
    assert channel.active_count == 2


def test_idle_connections_are_reaped(bus):
    channel = make_channel(bus, max_connections=1, idle_timeout_seconds=60)
    conn = channel.connect("10.0.0.1")

    assert channel.reap(now=time.monotonic() + 1) == 0
    assert channel.reap(now=time.monotonic() + 120) == 1
    assert conn.closed
    assert channel.active_count == 0

    # The freed slot can be reused
    channel.connect("10.0.0.2")


async def test_aclose_detaches_from_bus(bus):
    channel = make_channel(bus)
    channel.connect("10.0.0.1")
    channel.start_reaper()
    assert bus.subscriber_count == 1

    await channel.aclose()

    assert channel.active_count == 0
    assert bus.subscriber_count == 0
