"""
Event bus tests
"""
import pytest

from reminder_flows.integrations import EventBus, EXECUTION_EVENTS_TOPIC
from reminder_flows.models import ExecutionEvent, ExecutionEventType


@pytest.mark.asyncio
async def test_publish_to_sync_and_async_subscribers():
    bus = EventBus()
    received = []

    def on_sync(event):
        received.append(("sync", event.payload))

    async def on_async(event):
        received.append(("async", event.payload))

    await bus.subscribe("topic", on_sync)
    await bus.subscribe("topic", on_async)
    await bus.publish("topic", {"n": 1})

    assert sorted(received, key=lambda r: r[0]) == [("async", {"n": 1}), ("sync", {"n": 1})]


@pytest.mark.asyncio
async def test_failing_subscriber_is_isolated():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    await bus.subscribe("topic", broken)
    await bus.subscribe("topic", lambda event: received.append(event.topic))
    await bus.publish("topic", None)

    assert received == ["topic"]


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    received = []
    handler = received.append

    await bus.subscribe("topic", handler)
    await bus.unsubscribe("topic", handler)
    await bus.publish("topic", "payload")

    assert received == []
    assert "topic" not in bus.subscribers


@pytest.mark.asyncio
async def test_lifecycle_events_are_keyed_by_execution():
    bus = EventBus()
    received = []
    await bus.subscribe(EXECUTION_EVENTS_TOPIC, received.append)

    await bus.publish(
        EXECUTION_EVENTS_TOPIC,
        ExecutionEvent(execution_id="x-1", event_type=ExecutionEventType.EXECUTION_CREATED)
    )
    await bus.publish(EXECUTION_EVENTS_TOPIC, {"raw": True}, key="x-2")

    assert [e.key for e in received] == ["x-1", "x-2"]


@pytest.mark.asyncio
async def test_subscribers_run_in_order_and_failures_are_counted(caplog):
    bus = EventBus()
    order = []

    async def first(event):
        order.append("first")

    def broken(event):
        raise RuntimeError("boom")

    await bus.subscribe("topic", first)
    await bus.subscribe("topic", broken)
    await bus.subscribe("topic", lambda event: order.append("last"))

    with caplog.at_level("ERROR"):
        await bus.publish("topic", None, key="x-9")

    assert order == ["first", "last"]
    assert bus.delivery_failures == 1
    assert any(getattr(r, "execution_id", None) == "x-9" for r in caplog.records)


@pytest.mark.asyncio
async def test_unsubscribe_unknown_handler_is_ignored():
    bus = EventBus()
    await bus.unsubscribe("topic", print)
    assert bus.subscribers == {}
