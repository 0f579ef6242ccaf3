"""Lifecycle events for flows, steps, workflows, caches and resources.

Engines publish an :class:`Event` at every lifecycle transition; observers
(monitors, dashboards, test probes) subscribe by pattern. Delivery is
synchronous and happens before the publishing call returns, in subscription
order.

Usage::

    from flowspine.core.events import EventBus, FLOW_COMPLETED

    bus = EventBus()
    sub_id = bus.subscribe("flow:*", lambda e: print(e.event_type, e.payload))
    executor = GraphExecutor(events=bus)
    ...
    bus.unsubscribe(sub_id)

Patterns: ``*`` matches everything, ``flow:*`` matches every event whose type
starts with ``flow:``, anything else is an exact match. An observer that raises
is logged and skipped; the remaining observers still receive the event.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from flowspine.core.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "FLOW_REGISTERED",
    "FLOW_STARTED",
    "FLOW_COMPLETED",
    "FLOW_FAILED",
    "STEP_STARTED",
    "STEP_COMPLETED",
    "STEP_FAILED",
    "CACHE_HIT",
    "WORKFLOW_REGISTERED",
    "WORKFLOW_STARTED",
    "WORKFLOW_COMPLETED",
    "WORKFLOW_FAILED",
    "EXECUTION_CANCELLED",
    "RESOURCE_WARNING",
    "RESOURCE_EVICTED",
]

# ── Event names ──────────────────────────────────────────────────────────

FLOW_REGISTERED = "flow:registered"
FLOW_STARTED = "flow:started"
FLOW_COMPLETED = "flow:completed"
FLOW_FAILED = "flow:failed"
STEP_STARTED = "step:started"
STEP_COMPLETED = "step:completed"
STEP_FAILED = "step:failed"
CACHE_HIT = "cache:hit"
WORKFLOW_REGISTERED = "workflow:registered"
WORKFLOW_STARTED = "workflow:started"
WORKFLOW_COMPLETED = "workflow:completed"
WORKFLOW_FAILED = "workflow:failed"
EXECUTION_CANCELLED = "execution:cancelled"
RESOURCE_WARNING = "resource:warning"
RESOURCE_EVICTED = "resource:evicted"


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass
class Event:
    """A single lifecycle notification.

    Attributes:
        event_type: Colon-separated type (e.g., ``flow:started``, ``step:failed``)
        source: Component that published the event
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if event type matches a pattern (supports wildcards).

        Examples:
            - ``flow:*`` matches ``flow:started``, ``flow:completed``
            - ``*`` matches everything
            - ``cache:hit`` matches exactly ``cache:hit``
        """
        if pattern == "*":
            return True
        if pattern.endswith(":*"):
            prefix = pattern[:-2]
            return self.event_type.startswith(prefix + ":")
        return self.event_type == pattern


EventHandler = Callable[[Event], None]


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    handler: EventHandler


class EventBus:
    """In-process, synchronous publish/subscribe bus.

    Safe to share between threads: the subscription table is guarded by a
    lock, handlers are called outside of it.

    Example::

        bus = EventBus()
        seen = []
        bus.subscribe("*", seen.append)
        bus.emit("flow:started", "graph_executor", flow_id="checkout")
        assert seen[0].payload["flow_id"] == "checkout"
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def publish(self, event: Event) -> None:
        """Deliver ``event`` to every matching subscriber, in subscription order."""
        with self._lock:
            handlers = [
                (sub.id, sub.handler)
                for sub in self._subscriptions.values()
                if event.matches(sub.pattern)
            ]

        for sub_id, handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_error",
                    subscription_id=sub_id,
                    event_type=event.event_type,
                    error=str(e),
                )

    def emit(self, event_type: str, source: str, **payload: Any) -> Event:
        """Build and publish an event in one call; returns the published event."""
        event = Event(event_type=event_type, source=source, payload=payload)
        self.publish(event)
        return event

    def subscribe(self, pattern: str, handler: EventHandler) -> str:
        """Subscribe to events matching ``pattern``.

        Returns:
            Subscription ID for :meth:`unsubscribe`
        """
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._subscriptions[sub_id] = Subscription(
                id=sub_id, pattern=pattern, handler=handler
            )
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if the id was unknown."""
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def clear(self) -> None:
        """Drop all subscriptions."""
        with self._lock:
            self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        with self._lock:
            return len(self._subscriptions)
