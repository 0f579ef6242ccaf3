"""Tests for flowspine.core.events — Event model and synchronous EventBus."""

import pytest

from flowspine.core.events import FLOW_STARTED, STEP_FAILED, Event, EventBus


# ------------------------------------------------------------------ #
# Event model
# ------------------------------------------------------------------ #


class TestEvent:
    def test_defaults(self):
        event = Event(event_type="flow:started", source="test")
        assert event.payload == {}
        assert event.event_id
        assert event.timestamp.tzinfo is not None

    def test_unique_ids(self):
        e1 = Event(event_type="x", source="test")
        e2 = Event(event_type="x", source="test")
        assert e1.event_id != e2.event_id


class TestEventMatches:
    def test_exact_match(self):
        event = Event(event_type="flow:started", source="test")
        assert event.matches("flow:started") is True
        assert event.matches("flow:completed") is False

    def test_wildcard_all(self):
        assert Event(event_type="cache:hit", source="test").matches("*") is True

    def test_prefix_wildcard(self):
        event = Event(event_type="step:failed", source="test")
        assert event.matches("step:*") is True
        assert event.matches("flow:*") is False

    def test_prefix_wildcard_requires_separator(self):
        event = Event(event_type="flowchart:drawn", source="test")
        assert event.matches("flow:*") is False


# ------------------------------------------------------------------ #
# EventBus
# ------------------------------------------------------------------ #


class TestEventBus:
    def test_emit_delivers_synchronously(self):
        bus = EventBus()
        seen = []
        bus.subscribe("flow:*", seen.append)

        event = bus.emit(FLOW_STARTED, "graph_executor", flow_id="checkout")

        assert seen == [event]
        assert event.payload == {"flow_id": "checkout"}

    def test_subscription_order(self):
        bus = EventBus()
        order = []
        bus.subscribe("*", lambda e: order.append("first"))
        bus.subscribe("*", lambda e: order.append("second"))
        bus.emit("x:y", "test")
        assert order == ["first", "second"]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        sub_id = bus.subscribe("*", seen.append)
        assert bus.subscription_count == 1

        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False
        bus.emit("x:y", "test")
        assert seen == []

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def boom(event):
            raise RuntimeError("observer crashed")

        bus.subscribe("*", boom)
        bus.subscribe("*", seen.append)
        bus.emit(STEP_FAILED, "test", node_id="n1")

        assert len(seen) == 1

    def test_clear(self):
        bus = EventBus()
        bus.subscribe("*", lambda e: None)
        bus.subscribe("flow:*", lambda e: None)
        bus.clear()
        assert bus.subscription_count == 0

    @pytest.mark.parametrize(
        "pattern,expected",
        [("*", 2), ("flow:*", 1), ("cache:hit", 1), ("step:*", 0)],
    )
    def test_pattern_filtering(self, pattern, expected):
        bus = EventBus()
        seen = []
        bus.subscribe(pattern, seen.append)
        bus.emit("flow:completed", "test")
        bus.emit("cache:hit", "test")
        assert len(seen) == expected
