"""Tests for flowspine.core.resources — ResourceTracker accounting and eviction."""

import pytest

from flowspine.core.events import RESOURCE_EVICTED, RESOURCE_WARNING, EventBus
from flowspine.core.resources import ResourceTracker


class TestUsageAccounting:
    def test_update_replaces_previous_amount(self):
        """Reporting twice for one contributor moves the total by the difference."""
        tracker = ResourceTracker(capacity=1000)
        tracker.update_usage("run:a", 100)
        tracker.update_usage("run:a", 250)
        assert tracker.total() == 250
        assert tracker.available() == 750

    def test_contributors_sum(self):
        tracker = ResourceTracker(capacity=1000)
        tracker.update_usage("a", 100)
        tracker.update_usage("b", 50)
        assert tracker.total() == 150
        assert tracker.usage_by_contributor() == {"a": 100, "b": 50}

    def test_release_and_reset(self):
        tracker = ResourceTracker(capacity=1000)
        tracker.update_usage("a", 100)
        tracker.update_usage("b", 50)
        tracker.release("a")
        tracker.release("unknown")
        assert tracker.total() == 50
        tracker.reset()
        assert tracker.total() == 0
        assert tracker.usage_by_contributor() == {}

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            ResourceTracker(capacity=0)


class TestThresholds:
    def test_warning_above_threshold(self):
        bus = EventBus()
        seen = []
        bus.subscribe("resource:*", seen.append)
        tracker = ResourceTracker(capacity=1000, events=bus)

        tracker.update_usage("a", 800)
        assert seen == []

        tracker.update_usage("b", 1)
        assert [e.event_type for e in seen] == [RESOURCE_WARNING]
        assert seen[0].payload["total"] == 801

    def test_eviction_smallest_first_down_to_target(self):
        bus = EventBus()
        evicted = []
        bus.subscribe(RESOURCE_EVICTED, evicted.append)
        tracker = ResourceTracker(capacity=1000, events=bus)

        tracker.update_usage("small", 100)
        tracker.update_usage("medium", 300)
        tracker.update_usage("large", 500)
        tracker.update_usage("huge", 200)  # total 1100 > capacity

        # Ascending: small(100) → 1000, huge(200) → 800, medium(300) → 500 ≤ 700
        assert tracker.usage_by_contributor() == {"large": 500}
        assert tracker.total() == 500
        assert len(evicted) == 1
        assert evicted[0].payload["contributors"] == ["small", "huge", "medium"]
        assert evicted[0].payload["freed"] == 600

    def test_no_eviction_at_exact_capacity(self):
        tracker = ResourceTracker(capacity=1000)
        tracker.update_usage("a", 1000)
        assert tracker.total() == 1000
        assert tracker.available() == 0

    def test_failing_event_handler_does_not_break_accounting(self):
        bus = EventBus()

        def boom(event):
            raise RuntimeError("observer down")

        bus.subscribe("*", boom)
        tracker = ResourceTracker(capacity=100, events=bus)
        tracker.update_usage("a", 90)
        assert tracker.total() == 90
