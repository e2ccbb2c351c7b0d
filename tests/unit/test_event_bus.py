"""
Tests for CONSENSUS Notification Bus
====================================

Tests subscription routing, priorities, queued delivery and failure
handling.
"""

from datetime import datetime

import pytest

from consensus_bot.core.event_bus import (
    Event,
    EventBus,
    EventPriority,
    EventType,
)


def veto_event(symbol="BTCUSDT"):
    return Event(
        event_type=EventType.DECISION_VETOED,
        data={"symbol": symbol, "reason": "STOP_TRADING"},
        source="orchestrator",
    )


class Recorder:
    """Async handler that remembers what it saw."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


class TestEventCreation:
    """Tests for event creation."""

    def test_default_priority_by_type(self):
        assert veto_event().priority == EventPriority.HIGH

        emergency = Event(EventType.EMERGENCY_STOP, {}, "orchestrator")
        assert emergency.priority == EventPriority.CRITICAL

        made = Event(EventType.DECISION_MADE, {}, "orchestrator")
        assert made.priority == EventPriority.NORMAL

    def test_explicit_priority_kept(self):
        event = Event(EventType.DECISION_MADE, {}, "x", priority=EventPriority.LOW)
        assert event.priority == EventPriority.LOW

    def test_event_identity(self):
        event = veto_event()

        assert isinstance(event.timestamp, datetime)
        assert event.event_id.startswith("evt_")
        assert event.event_id != veto_event().event_id

    def test_to_dict(self):
        event = Event(EventType.DECISION_MADE, {"symbol": "ETHUSDT"}, "x", correlation_id="dec_1")
        data = event.to_dict()

        assert data["event_type"] == "DECISION_MADE"
        assert data["priority"] == "NORMAL"
        assert data["correlation_id"] == "dec_1"


class TestSubscription:
    """Tests for subscription routing."""

    @pytest.mark.asyncio
    async def test_typed_subscriber(self):
        bus = EventBus()
        vetoes = Recorder()
        bus.subscribe("alerts", {EventType.DECISION_VETOED}, vetoes)

        await bus.publish(veto_event())
        await bus.publish(Event(EventType.DECISION_MADE, {}, "orchestrator"))

        assert [e.event_type for e in vetoes.events] == [EventType.DECISION_VETOED]

    @pytest.mark.asyncio
    async def test_wildcard_subscriber(self):
        bus = EventBus()
        everything = Recorder()
        bus.subscribe("audit", set(), everything)

        await bus.publish(veto_event())
        await bus.publish(Event(EventType.SYSTEM_START, {}, "main"))

        assert len(everything.events) == 2

    @pytest.mark.asyncio
    async def test_filter_func(self):
        bus = EventBus()
        eth_only = Recorder()
        bus.subscribe(
            "eth",
            {EventType.DECISION_VETOED},
            eth_only,
            filter_func=lambda e: e.data.get("symbol") == "ETHUSDT",
        )

        await bus.publish(veto_event("BTCUSDT"))
        await bus.publish(veto_event("ETHUSDT"))

        assert [e.data["symbol"] for e in eth_only.events] == ["ETHUSDT"]

    @pytest.mark.asyncio
    async def test_resubscribe_replaces(self):
        bus = EventBus()
        first, second = Recorder(), Recorder()
        bus.subscribe("alerts", {EventType.DECISION_VETOED}, first)
        bus.subscribe("alerts", {EventType.DECISION_VETOED}, second)

        await bus.publish(veto_event())

        assert first.events == []
        assert len(second.events) == 1
        assert bus.get_stats()["subscribers"] == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        recorder = Recorder()
        bus.subscribe("alerts", {EventType.DECISION_VETOED}, recorder)

        assert bus.unsubscribe("alerts") is True
        assert bus.unsubscribe("alerts") is False

        await bus.publish(veto_event())
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_handler_order(self):
        bus = EventBus()
        calls = []

        async def late(event):
            calls.append("late")

        async def early(event):
            calls.append("early")

        bus.subscribe("late", set(), late, priority=5)
        bus.subscribe("early", set(), early, priority=1)

        await bus.publish_sync(veto_event())

        assert calls == ["early", "late"]


class TestDelivery:
    """Tests for queued delivery and failures."""

    @pytest.mark.asyncio
    async def test_worker_delivers(self):
        bus = EventBus()
        recorder = Recorder()
        bus.subscribe("alerts", set(), recorder)

        await bus.start()
        await bus.publish(veto_event())
        await bus.join()
        await bus.stop()

        assert len(recorder.events) == 1
        assert bus.get_stats()["events_delivered"] == 1
        assert bus.running is False

    @pytest.mark.asyncio
    async def test_stop_drains_queue(self):
        bus = EventBus()
        recorder = Recorder()
        bus.subscribe("alerts", set(), recorder)

        await bus.start()
        for _ in range(3):
            await bus.publish(veto_event())
        await bus.stop(drain=True)

        assert len(recorder.events) == 3

    @pytest.mark.asyncio
    async def test_critical_first(self):
        bus = EventBus()
        recorder = Recorder()
        bus.subscribe("all", set(), recorder)

        # Queue with no worker attached, then drain in priority order
        bus._running = True
        await bus.publish(Event(EventType.DECISION_MADE, {}, "o"))
        await bus.publish(Event(EventType.EMERGENCY_STOP, {}, "o"))
        await bus.stop(drain=True)

        assert [e.event_type for e in recorder.events] == [
            EventType.EMERGENCY_STOP,
            EventType.DECISION_MADE,
        ]

    @pytest.mark.asyncio
    async def test_failing_handler_goes_to_dead_letter(self):
        bus = EventBus()
        healthy = Recorder()

        async def broken(event):
            raise RuntimeError("webhook down")

        bus.subscribe("broken", set(), broken, priority=0)
        bus.subscribe("healthy", set(), healthy, priority=1)

        delivered = await bus.publish_sync(veto_event())

        assert delivered == 1
        assert len(healthy.events) == 1
        stats = bus.get_stats()
        assert stats["events_failed"] == 1
        assert stats["dead_letter_count"] == 1
        assert len(bus.clear_dead_letter()) == 1
        assert bus.get_stats()["dead_letter_count"] == 0

    @pytest.mark.asyncio
    async def test_queue_full_drops(self):
        bus = EventBus(max_queue_size=1)
        bus._running = True

        await bus.publish(veto_event())
        await bus.publish(veto_event())

        stats = bus.get_stats()
        assert stats["events_dropped"] == 1
        assert stats["queue_size"] == 1
        bus._running = False

    @pytest.mark.asyncio
    async def test_history(self):
        bus = EventBus(history_size=2)

        await bus.publish(veto_event("A"))
        await bus.publish(Event(EventType.DECISION_MADE, {}, "o"))
        await bus.publish(veto_event("B"))

        history = bus.get_history()
        assert len(history) == 2
        vetoes = bus.get_history(EventType.DECISION_VETOED)
        assert [e.data["symbol"] for e in vetoes] == ["B"]

    @pytest.mark.asyncio
    async def test_publish_without_worker_is_immediate(self):
        bus = EventBus()
        recorder = Recorder()
        bus.subscribe("alerts", set(), recorder)

        await bus.publish(veto_event())

        assert len(recorder.events) == 1
