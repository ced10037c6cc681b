"""Tests for the in-memory event bus (conductor/event_bus.py)."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from conductor.event_bus import Event, InMemoryEventBus
from conductor.exceptions import EventBusError
from conductor.interfaces import EventType, IEventBus


@pytest.fixture
def bus():
    return InMemoryEventBus(max_history_size=5)


def test_bus_satisfies_protocol(bus):
    assert isinstance(bus, IEventBus)


def test_rejects_non_positive_history_size():
    with pytest.raises(EventBusError):
        InMemoryEventBus(max_history_size=0)


def test_subscribe_rejects_non_callable(bus):
    with pytest.raises(EventBusError):
        bus.subscribe("x", "not-callable")


async def test_emit_returns_event_and_calls_listener(bus):
    received = []
    bus.subscribe(EventType.TASK_CREATED, received.append)

    event = await bus.emit(EventType.TASK_CREATED, {"task_id": "t1"})

    assert isinstance(event, Event)
    assert event.type == "task:created"
    assert received == [event]
    assert received[0].data == {"task_id": "t1"}


async def test_enum_and_string_names_are_interchangeable(bus):
    listener = MagicMock()
    bus.subscribe("agent:registered", listener)
    await bus.emit(EventType.AGENT_REGISTERED, {"agent_id": "a"})
    listener.assert_called_once()


async def test_priority_order_with_stable_ties(bus):
    order = []
    bus.subscribe("e", lambda event: order.append("A"), priority=5)
    bus.subscribe("e", lambda event: order.append("B"), priority=1)
    bus.subscribe("e", lambda event: order.append("C"), priority=5)

    await bus.emit("e")

    assert order == ["A", "C", "B"]


async def test_async_listeners_are_awaited_in_sequence(bus):
    order = []

    async def slow(event):
        order.append("slow-start")
        await asyncio.sleep(0.01)
        order.append("slow-end")

    async def fast(event):
        order.append("fast")

    bus.subscribe("e", slow, priority=10)
    bus.subscribe("e", fast)

    await bus.emit("e")

    assert order == ["slow-start", "slow-end", "fast"]


async def test_emit_awaits_listener_before_returning(bus):
    handler = AsyncMock()
    bus.subscribe("e", handler)
    await bus.emit("e", 42)
    handler.assert_awaited_once()


async def test_failing_listener_does_not_stop_others(bus, caplog):
    called = []

    def boom(event):
        raise RuntimeError("listener exploded")

    async def async_boom(event):
        raise ValueError("async listener exploded")

    bus.subscribe("e", boom, priority=3)
    bus.subscribe("e", async_boom, priority=2)
    bus.subscribe("e", called.append, priority=1)

    event = await bus.emit("e")

    assert called == [event]
    assert "Error in event listener" in caplog.text


async def test_once_listener_fires_once(bus):
    listener = MagicMock()
    bus.once("e", listener)

    await bus.emit("e")
    await bus.emit("e")

    listener.assert_called_once()
    assert bus.listener_count("e") == 0


async def test_once_listener_removed_even_when_it_raises(bus):
    listener = MagicMock(side_effect=RuntimeError("nope"))
    bus.subscribe("e", listener, once=True)

    await bus.emit("e")
    await bus.emit("e")

    assert listener.call_count == 1


async def test_unsubscribe_function(bus):
    listener = MagicMock()
    unsubscribe = bus.subscribe("e", listener)

    unsubscribe()
    unsubscribe()
    await bus.emit("e")

    listener.assert_not_called()
    assert "e" not in bus.get_stats()["registered_events"]


async def test_unsubscribe_by_listener_id(bus):
    listener = MagicMock()
    other = MagicMock()
    unsubscribe = bus.subscribe("e", listener)
    bus.subscribe("e", other)

    bus.unsubscribe("e", unsubscribe.listener_id)
    bus.unsubscribe("e", "unknown-id")
    bus.unsubscribe("never-registered", "unknown-id")
    await bus.emit("e")

    listener.assert_not_called()
    other.assert_called_once()


async def test_listener_added_during_emit_waits_for_next_emit(bus):
    late = MagicMock()

    def subscribe_late(event):
        bus.subscribe("e", late)

    bus.subscribe("e", subscribe_late)

    await bus.emit("e")
    late.assert_not_called()

    await bus.emit("e")
    late.assert_called_once()


async def test_emit_without_listeners_still_records_history(bus):
    await bus.emit("nobody-listens", {"x": 1})
    history = bus.get_history()
    assert len(history) == 1
    assert history[0].type == "nobody-listens"


async def test_history_is_bounded(bus):
    for i in range(8):
        await bus.emit("e", i)

    history = bus.get_history()
    assert len(history) == 5
    assert [event.data for event in history] == [3, 4, 5, 6, 7]


async def test_shrinking_history_keeps_newest(bus):
    for i in range(5):
        await bus.emit("e", i)

    bus.set_max_history_size(2)

    assert bus.max_history_size == 2
    assert [event.data for event in bus.get_history()] == [3, 4]
    await bus.emit("e", 5)
    assert [event.data for event in bus.get_history()] == [4, 5]


async def test_growing_history_retains_more(bus):
    bus.set_max_history_size(10)
    for i in range(12):
        await bus.emit("e", i)

    assert len(bus.get_history()) == 10
    assert bus.get_stats()["history_size"] == 10


def test_resize_rejects_non_positive(bus):
    with pytest.raises(EventBusError):
        bus.set_max_history_size(0)
    assert bus.max_history_size == 5


async def test_history_filters(bus):
    await bus.emit("a", 1)
    await bus.emit("b", 2)
    await bus.emit("a", 3)

    assert [e.data for e in bus.get_history(event_type="a")] == [1, 3]
    assert [e.data for e in bus.get_history(limit=2)] == [2, 3]
    assert [e.data for e in bus.get_history(event_type="a", limit=1)] == [3]
    assert len(bus.get_history(limit=0)) == 3

    future = bus.get_history()[-1].timestamp + 10_000
    assert bus.get_history(since=future) == []
    assert len(bus.get_history(since=0)) == 3


async def test_clear_removes_listeners(bus):
    bus.subscribe("a", MagicMock())
    bus.subscribe("b", MagicMock())

    bus.clear("a")
    assert bus.listener_count("a") == 0
    assert bus.listener_count() == 1

    bus.clear()
    assert bus.listener_count() == 0


def test_get_stats(bus):
    bus.subscribe("a", MagicMock())
    bus.subscribe("a", MagicMock())
    bus.subscribe("b", MagicMock())

    stats = bus.get_stats()

    assert stats["total_listeners"] == 3
    assert stats["event_types"] == 2
    assert stats["history_size"] == 0
    assert sorted(stats["registered_events"]) == ["a", "b"]


def test_event_to_dict():
    event = Event(type="e", data={"k": "v"}, timestamp=123)
    assert event.to_dict() == {"type": "e", "data": {"k": "v"}, "timestamp": 123}
