"""Live execution monitor built on lifecycle events.

FlowMonitor subscribes to an :class:`EventBus` and keeps a rolling picture of
what the engines are doing: which flows are running now, the most recent
finished executions, and success/error rates over that window.

Example::

    bus = EventBus()
    executor = GraphExecutor(events=bus)
    monitor = FlowMonitor(bus, history_size=50)

    await executor.execute_flow("checkout", {"amount": 10})
    monitor.performance_summary()["success_rate"]   # 100.0

    monitor.detach()
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from flowspine.core.events import (
    CACHE_HIT,
    FLOW_COMPLETED,
    FLOW_FAILED,
    FLOW_REGISTERED,
    FLOW_STARTED,
    Event,
    EventBus,
)
from flowspine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ActiveFlow:
    execution_id: str
    flow_id: str | None
    started_at: datetime


@dataclass
class ExecutionRecord:
    """One finished execution as seen by the monitor."""

    execution_id: str | None
    flow_id: str | None
    status: str
    execution_time: float = 0.0
    error: str | None = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["finished_at"] = self.finished_at.isoformat()
        return data


class FlowMonitor:
    """Event-driven view of active flows and recent executions.

    Args:
        bus: Event bus the engines publish to
        history_size: Number of finished executions kept (oldest dropped first)
    """

    def __init__(self, bus: EventBus, history_size: int = 100):
        self.bus = bus
        self.history_size = history_size
        self._lock = threading.Lock()
        self._active: dict[str, ActiveFlow] = {}
        self._recent: deque[ExecutionRecord] = deque(maxlen=history_size)
        self._registered = 0
        self._cache_hits = 0
        self._subscriptions = [
            bus.subscribe("flow:*", self._on_flow_event),
            bus.subscribe(CACHE_HIT, self._on_cache_hit),
        ]

    # ── event handlers ───────────────────────────────────────────────────

    def _on_flow_event(self, event: Event) -> None:
        payload = event.payload
        execution_id = payload.get("execution_id")

        if event.event_type == FLOW_REGISTERED:
            with self._lock:
                self._registered += 1
            return

        if event.event_type == FLOW_STARTED:
            with self._lock:
                self._active[execution_id] = ActiveFlow(
                    execution_id=execution_id,
                    flow_id=payload.get("flow_id"),
                    started_at=event.timestamp,
                )
            return

        if event.event_type not in (FLOW_COMPLETED, FLOW_FAILED):
            return

        status = payload.get("status") or ("completed" if event.event_type == FLOW_COMPLETED else "failed")
        record = ExecutionRecord(
            execution_id=execution_id,
            flow_id=payload.get("flow_id"),
            status=status,
            execution_time=payload.get("execution_time") or 0.0,
            error=payload.get("error"),
            finished_at=event.timestamp,
        )
        with self._lock:
            self._active.pop(execution_id, None)
            self._recent.append(record)

        if record.succeeded:
            logger.debug("monitor.flow_completed", flow_id=record.flow_id, execution_id=execution_id)
        else:
            logger.info("monitor.flow_failed", flow_id=record.flow_id,
                        execution_id=execution_id, error=record.error)

    def _on_cache_hit(self, event: Event) -> None:
        with self._lock:
            self._cache_hits += 1

    # ── queries ──────────────────────────────────────────────────────────

    def active_flows(self) -> list[ActiveFlow]:
        with self._lock:
            return list(self._active.values())

    def history(self, limit: int = 50) -> list[ExecutionRecord]:
        """Most recent finished executions, newest first."""
        with self._lock:
            records = list(self._recent)
        return list(reversed(records))[:limit]

    def performance_summary(self) -> dict[str, Any]:
        with self._lock:
            records = list(self._recent)
            active = len(self._active)
            cache_hits = self._cache_hits

        total = len(records)
        successful = sum(1 for r in records if r.succeeded)
        failed = total - successful
        return {
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": failed,
            "success_rate": (successful / total * 100) if total else 0.0,
            "error_rate": (failed / total * 100) if total else 0.0,
            "average_execution_time": (
                sum(r.execution_time for r in records) / total if total else 0.0
            ),
            "active_flows": active,
            "cache_hits": cache_hits,
        }

    def live_data(self) -> dict[str, Any]:
        """Snapshot for dashboards; safe to serialize as JSON."""
        with self._lock:
            registered = self._registered
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "registered_flows": registered,
            "active_flows": [
                {
                    "execution_id": flow.execution_id,
                    "flow_id": flow.flow_id,
                    "started_at": flow.started_at.isoformat(),
                }
                for flow in self.active_flows()
            ],
            "recent_executions": [record.to_dict() for record in self.history(self.history_size)],
            "performance": self.performance_summary(),
        }

    def reset(self) -> None:
        with self._lock:
            self._active.clear()
            self._recent.clear()
            self._cache_hits = 0

    def detach(self) -> None:
        """Stop listening; collected data stays readable."""
        for sub_id in self._subscriptions:
            self.bus.unsubscribe(sub_id)
        self._subscriptions = []


__all__ = ["ActiveFlow", "ExecutionRecord", "FlowMonitor"]
