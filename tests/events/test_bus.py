"""Tests for the event bus."""

import pytest

from evoforge.events.bus import Event, EventBus


@pytest.mark.asyncio
async def test_emit_and_subscribe():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("evolution.run_started", handler)
    await bus.emit("evolution.run_started", {"run_id": "r1"})

    assert len(received) == 1
    assert received[0].topic == "evolution.run_started"
    assert received[0].data["run_id"] == "r1"


@pytest.mark.asyncio
async def test_wildcard_subscribe():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("evolution.run_*", handler)
    await bus.emit("evolution.run_started")
    await bus.emit("evolution.run_converged")
    await bus.emit("evolution.generation_completed")  # should NOT match

    assert len(received) == 2


@pytest.mark.asyncio
async def test_star_matches_all():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("*", handler)
    await bus.emit("evolution.run_started")
    await bus.emit("evolution.generation_completed")
    await bus.emit("evolution.run_failed")

    assert len(received) == 3


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("test", handler)
    await bus.emit("test")
    assert len(received) == 1

    bus.unsubscribe("test", handler)
    await bus.emit("test")
    assert len(received) == 1  # no new events


@pytest.mark.asyncio
async def test_broken_subscriber_does_not_break_emit():
    bus = EventBus()
    received = []

    async def broken(event: Event):
        raise RuntimeError("subscriber bug")

    async def healthy(event: Event):
        received.append(event)

    bus.subscribe("evolution.*", broken)
    bus.subscribe("evolution.*", healthy)
    event = await bus.emit("evolution.run_started")

    assert event.topic == "evolution.run_started"
    assert len(received) == 1


@pytest.mark.asyncio
async def test_history():
    bus = EventBus()
    await bus.emit("a.1", {"x": 1})
    await bus.emit("a.2", {"x": 2})
    await bus.emit("b.1", {"x": 3})

    all_events = bus.history()
    assert len(all_events) == 3
    assert all_events[0].topic == "b.1"  # newest first

    a_events = bus.history(topic_filter="a.*")
    assert len(a_events) == 2


@pytest.mark.asyncio
async def test_history_limit():
    bus = EventBus(history_limit=5)
    for i in range(10):
        await bus.emit("test", {"i": i})

    assert len(bus.history()) == 5
    assert bus.history()[-1].data["i"] == 5


@pytest.mark.asyncio
async def test_emit_returns_event():
    bus = EventBus()
    event = await bus.emit("test.topic", {"key": "value"}, source="run_controller")

    assert event.topic == "test.topic"
    assert event.data["key"] == "value"
    assert event.source == "run_controller"
    assert event.id


@pytest.mark.asyncio
async def test_subscriber_count_and_topics():
    bus = EventBus()
    assert bus.subscriber_count == 0

    async def h(e):
        pass

    bus.subscribe("a", h)
    bus.subscribe("b", h)
    assert bus.subscriber_count == 2

    await bus.emit("evolution.run_started")
    await bus.emit("evolution.run_started")
    await bus.emit("evolution.run_failed")
    assert sorted(bus.topics()) == ["evolution.run_failed", "evolution.run_started"]


@pytest.mark.asyncio
async def test_subscribe_returns_unsubscriber():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    stop = bus.subscribe("evolution.*", handler)
    await bus.emit("evolution.run_started")
    stop()
    await bus.emit("evolution.run_failed")

    assert [e.topic for e in received] == ["evolution.run_started"]
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_history_by_run():
    bus = EventBus()
    await bus.emit("evolution.run_started", {"run_id": "r1"})
    await bus.emit("evolution.run_started", {"run_id": "r2"})
    await bus.emit("evolution.generation_completed", {"run_id": "r1", "generation": 0})

    r1 = bus.history(run_id="r1")
    assert [e.topic for e in r1] == ["evolution.generation_completed", "evolution.run_started"]
    assert all(e.run_id == "r1" for e in r1)
    assert bus.history(topic_filter="evolution.run_*", run_id="r2")[0].run_id == "r2"
    assert bus.history(run_id="missing") == []


@pytest.mark.asyncio
async def test_failing_handler_is_logged(caplog):
    bus = EventBus()

    async def broken(event: Event):
        raise ValueError("boom")

    bus.subscribe("*", broken)
    with caplog.at_level("WARNING", logger="evoforge.events.bus"):
        await bus.emit("evolution.run_started")

    assert "boom" in caplog.text
