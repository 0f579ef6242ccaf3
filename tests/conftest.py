"""
Shared pytest fixtures for flowspine tests.

This module provides:
- Fast settings (millisecond retry backoff, small cache and step budget)
- An event bus plus a recorder capturing every published event
- Small flow definitions used across engine tests

Usage:
    Fixtures are auto-discovered by pytest; request them as test arguments.

    def test_something(fast_settings, recorder):
        ...
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure flowspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from flowspine.core.events import Event, EventBus
from flowspine.core.settings import FlowSettings, get_settings


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Drop the process-wide settings between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_settings() -> FlowSettings:
    """Settings tuned for tests: near-zero backoff, small bounds."""
    return FlowSettings(
        retry_base_delay_seconds=0.001,
        step_timeout_seconds=5.0,
        workflow_step_timeout_seconds=5.0,
        cache_max_size=50,
        cache_ttl_seconds=60.0,
        max_traversal_steps=100,
    )


# =============================================================================
# Events
# =============================================================================


class EventRecorder:
    """Collects events from a bus for later assertions."""

    def __init__(self, bus: EventBus, pattern: str = "*"):
        self.events: list[Event] = []
        self.subscription_id = bus.subscribe(pattern, self.events.append)

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]

    def of_type(self, event_type: str) -> list[Event]:
        return [event for event in self.events if event.event_type == event_type]

    def payloads(self, event_type: str) -> list[dict[str, Any]]:
        return [event.payload for event in self.of_type(event_type)]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


# =============================================================================
# Flow definitions
# =============================================================================


@pytest.fixture
def linear_flow() -> dict[str, Any]:
    """validate → enrich → greet, unconditional edges."""
    return {
        "id": "signup",
        "name": "Signup",
        "startNode": "validate",
        "nodes": [
            {
                "id": "validate",
                "type": "validation",
                "config": {
                    "rules": [
                        {"field": "email", "operator": "required", "message": "Email is required"},
                        {"field": "email", "operator": "email", "message": "Email is invalid"},
                    ]
                },
            },
            {
                "id": "enrich",
                "type": "transform",
                "config": {"mapping": {"contact": "$email", "source": "signup"}},
            },
            {
                "id": "greet",
                "type": "transform",
                "config": {"mapping": {"greeting": "$contact"}},
            },
        ],
        "edges": [
            {"id": "e1", "source": "validate", "target": "enrich"},
            {"id": "e2", "source": "enrich", "target": "greet"},
        ],
    }
