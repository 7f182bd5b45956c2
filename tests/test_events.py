"""Throttled state broadcast."""

from __future__ import annotations

import asyncio

from jobharvest.core.orchestrator import EventBus


def test_publish_without_event_loop_delivers_synchronously():
    bus = EventBus(throttle_ms=500)
    received = []
    bus.subscribe(received.append)

    bus.publish(1)
    bus.publish(2)

    assert received == [1, 2]


async def test_burst_collapses_to_one_trailing_delivery_of_latest_state():
    bus = EventBus(throttle_ms=50)
    received = []
    bus.subscribe(received.append)

    bus.publish("first")
    assert received == ["first"]

    for state in ("a", "b", "c", "latest"):
        bus.publish(state)
    assert received == ["first"]
    assert bus.has_pending

    await asyncio.sleep(0.15)

    assert received == ["first", "latest"]
    assert not bus.has_pending
    assert bus.delivered == 2


async def test_publish_after_window_is_immediate():
    bus = EventBus(throttle_ms=20)
    received = []
    bus.subscribe(received.append)

    bus.publish(1)
    await asyncio.sleep(0.05)
    bus.publish(2)

    assert received == [1, 2]


async def test_zero_interval_never_throttles():
    bus = EventBus(throttle_ms=0)
    received = []
    bus.subscribe(received.append)

    for i in range(5):
        bus.publish(i)

    assert received == [0, 1, 2, 3, 4]


def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(state):
        raise RuntimeError("observer went away")

    bus.subscribe(broken)
    bus.subscribe(received.append)

    bus.publish("state")

    assert received == ["state"]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(received.append)
    assert bus.subscriber_count == 1

    bus.publish(1)
    unsubscribe()
    unsubscribe()
    bus.publish(2)

    assert received == [1]
    assert bus.subscriber_count == 0


def test_subscriber_may_unsubscribe_during_delivery():
    bus = EventBus()
    received = []
    unsubscribe = None

    def once(state):
        received.append(state)
        unsubscribe()

    unsubscribe = bus.subscribe(once)
    bus.publish(1)
    bus.publish(2)

    assert received == [1]


async def test_flush_delivers_pending_now_and_close_discards_it():
    bus = EventBus(throttle_ms=1000)
    received = []
    bus.subscribe(received.append)

    bus.publish(1)
    bus.publish(2)
    bus.flush()
    assert received == [1, 2]

    bus.publish(3)
    bus.close()
    await asyncio.sleep(0)
    assert received == [1, 2]
    assert not bus.has_pending
