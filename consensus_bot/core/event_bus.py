# CONSENSUS_FEAT: notify-bus-001
"""
CONSENSUS BOT - Notification Bus
================================

Async notification channel between the decision orchestrator and
whoever wants to hear about decisions (alerting, persistence
mirrors, dashboards). Injected explicitly; components never register
hidden listeners on each other.

Features:
- Pub/sub with per-subscriber event type sets (empty set = everything)
- Default priority per event type, emergency events first
- Queued delivery through a background worker, or immediate dispatch
- Dead letter list for handlers that raised
- Bounded history for inspection and tests

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import asyncio
import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Callable, Coroutine, Deque, Dict, List, Optional, Set

logger = logging.getLogger("CONSENSUS_EventBus")


class EventType(Enum):
    """Notifications emitted by the decision pipeline."""

    # Decisions
    DECISION_MADE = auto()
    DECISION_VETOED = auto()
    DECISION_FAILED = auto()
    COOLDOWN_ACTIVE = auto()

    # Ensemble
    FALLBACK_USED = auto()
    PROVIDER_EXCLUDED = auto()

    # Risk
    DRAWDOWN_WARNING = auto()
    EMERGENCY_STOP = auto()
    RISK_PARAMETERS_UPDATED = auto()

    # Administration
    CIRCUIT_RESET = auto()
    CIRCUITS_FORCED_OPEN = auto()

    # System
    SYSTEM_START = auto()
    SYSTEM_STOP = auto()


class EventPriority(Enum):
    """Delivery priority (lower value is delivered first)."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3


DEFAULT_PRIORITIES: Dict[EventType, EventPriority] = {
    EventType.EMERGENCY_STOP: EventPriority.CRITICAL,
    EventType.CIRCUITS_FORCED_OPEN: EventPriority.CRITICAL,
    EventType.DRAWDOWN_WARNING: EventPriority.HIGH,
    EventType.DECISION_FAILED: EventPriority.HIGH,
    EventType.DECISION_VETOED: EventPriority.HIGH,
    EventType.COOLDOWN_ACTIVE: EventPriority.LOW,
    EventType.PROVIDER_EXCLUDED: EventPriority.LOW,
}


def _event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:16]}"


@dataclass
class Event:
    """Notification message."""

    event_type: EventType
    data: Dict[str, Any]
    source: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    priority: Optional[EventPriority] = None
    event_id: str = field(default_factory=_event_id)
    correlation_id: Optional[str] = None  # decision_id when the event concerns one

    def __post_init__(self) -> None:
        if self.priority is None:
            self.priority = DEFAULT_PRIORITIES.get(self.event_type, EventPriority.NORMAL)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type.name,
            "data": self.data,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority.name,
            "event_id": self.event_id,
            "correlation_id": self.correlation_id,
        }


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


@dataclass
class Subscription:
    handler: EventHandler
    subscriber_id: str
    event_types: Set[EventType]  # Empty = all event types
    filter_func: Optional[Callable[[Event], bool]] = None
    priority: int = 0

    def matches(self, event: Event) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        return self.filter_func is None or self.filter_func(event)


class EventBus:
    """
    Async notification bus.

    Example:
        bus = EventBus()

        async def on_veto(event: Event):
            print(f"Vetoed: {event.data['reason']}")

        bus.subscribe("alerts", {EventType.DECISION_VETOED}, on_veto)

        await bus.start()
        await bus.publish(Event(
            event_type=EventType.DECISION_VETOED,
            data={"symbol": "BTCUSDT", "reason": "STOP_TRADING"},
            source="orchestrator",
        ))
    """

    def __init__(
        self,
        max_queue_size: int = 10000,
        history_size: int = 1000,
        dead_letter_size: int = 1000,
    ):
        self._subscriptions: Dict[str, Subscription] = {}
        self._wildcard: Set[str] = set()
        self._type_index: Dict[EventType, Set[str]] = defaultdict(set)
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue(maxsize=max_queue_size)
        self._dead_letter: Deque[Event] = deque(maxlen=dead_letter_size)
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._running = False
        self._worker_task: Optional[asyncio.Task] = None
        self._event_counter: int = 0  # FIFO within a priority
        self._stats = {
            "events_published": 0,
            "events_delivered": 0,
            "events_failed": 0,
            "events_dropped": 0,
        }

        logger.info(f"EventBus initialized: max_queue={max_queue_size}")

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(
        self,
        subscriber_id: str,
        event_types: Set[EventType],
        handler: EventHandler,
        filter_func: Optional[Callable[[Event], bool]] = None,
        priority: int = 0,
    ) -> None:
        """
        Register a handler. Re-subscribing an id replaces its subscription.

        Args:
            subscriber_id: Unique subscriber identifier
            event_types: Event types to receive; empty set receives everything
            handler: Async handler
            filter_func: Optional predicate applied before delivery
            priority: Handler order (lower runs first)
        """
        self.unsubscribe(subscriber_id)

        subscription = Subscription(
            handler=handler,
            subscriber_id=subscriber_id,
            event_types=set(event_types),
            filter_func=filter_func,
            priority=priority,
        )
        self._subscriptions[subscriber_id] = subscription

        if not subscription.event_types:
            self._wildcard.add(subscriber_id)
        for event_type in subscription.event_types:
            self._type_index[event_type].add(subscriber_id)

        logger.debug(
            f"Subscription added: {subscriber_id} -> "
            f"{[e.name for e in event_types] or 'ALL'}"
        )

    def unsubscribe(self, subscriber_id: str) -> bool:
        subscription = self._subscriptions.pop(subscriber_id, None)
        if subscription is None:
            return False

        self._wildcard.discard(subscriber_id)
        for event_type in subscription.event_types:
            self._type_index[event_type].discard(subscriber_id)

        logger.debug(f"Subscription removed: {subscriber_id}")
        return True

    def _remember(self, event: Event) -> None:
        self._history.append(event)
        self._stats["events_published"] += 1

    async def publish(self, event: Event) -> None:
        """
        Queue an event for the background worker.

        Without a running worker the event is dispatched immediately so
        that notifications are never silently parked.
        """
        if not self._running:
            await self.publish_sync(event)
            return

        self._remember(event)
        self._event_counter += 1
        try:
            self._queue.put_nowait((event.priority.value, self._event_counter, event))
        except asyncio.QueueFull:
            self._stats["events_dropped"] += 1
            self._dead_letter.append(event)
            logger.warning(f"Event queue full, dropped {event.event_type.name}")
            return

        logger.debug(f"Event published: {event.event_type.name} from {event.source}")

    async def publish_sync(self, event: Event) -> int:
        """
        Dispatch immediately.

        Returns:
            Number of handlers that processed the event
        """
        self._remember(event)
        return await self._dispatch_event(event)

    async def _dispatch_event(self, event: Event) -> int:
        subscriber_ids = self._type_index.get(event.event_type, set()) | self._wildcard
        subscriptions = sorted(
            (self._subscriptions[sid] for sid in subscriber_ids if sid in self._subscriptions),
            key=lambda s: s.priority,
        )

        handlers_called = 0
        for subscription in subscriptions:
            if not subscription.matches(event):
                continue

            try:
                await subscription.handler(event)
                handlers_called += 1
                self._stats["events_delivered"] += 1
            except Exception as e:
                logger.error(
                    f"Handler error for {subscription.subscriber_id} "
                    f"on {event.event_type.name}: {e}"
                )
                self._dead_letter.append(event)
                self._stats["events_failed"] += 1

        return handlers_called

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._worker_task = asyncio.create_task(self._worker())
        logger.info("EventBus started")

    async def stop(self, drain: bool = True) -> None:
        """Stop the worker, delivering queued events first when ``drain``."""
        if not self._running:
            return
        self._running = False

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        if drain:
            while not self._queue.empty():
                _, _, event = self._queue.get_nowait()
                await self._dispatch_event(event)

        logger.info("EventBus stopped")

    async def _worker(self) -> None:
        while self._running:
            _, _, event = await self._queue.get()
            try:
                await self._dispatch_event(event)
            except Exception as e:
                logger.error(f"Worker error: {e}")
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been dispatched."""
        if self._running:
            await self._queue.join()

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "subscribers": len(self._subscriptions),
            "queue_size": self._queue.qsize(),
            "dead_letter_count": len(self._dead_letter),
            "history_size": len(self._history),
            "running": self._running,
        }

    def get_history(self, event_type: Optional[EventType] = None, limit: int = 100) -> List[Event]:
        """Most recent events, oldest first."""
        matching = [e for e in self._history if event_type is None or e.event_type == event_type]
        return matching[-limit:]

    def clear_dead_letter(self) -> List[Event]:
        """Hand back undelivered events and forget them."""
        buried = list(self._dead_letter)
        self._dead_letter.clear()
        return buried


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "EventType",
    "EventPriority",
    "DEFAULT_PRIORITIES",
    "Event",
    "EventHandler",
    "Subscription",
    "EventBus",
]
