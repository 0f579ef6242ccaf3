"""
Advisory resource accounting for running steps.

Each executed step reports an estimated cost (bytes) under a contributor id
(``"<execution_id>:<node_id>"`` for the graph executor). Reporting again for
the same contributor *replaces* the previous figure. The tracker warns as the
total approaches capacity and, once capacity is exceeded, forgets the
smallest contributors until usage is back under the eviction target.

Manifesto:
    - **Advisory:** Nothing is freed for real; figures inform scheduling and
      monitoring only, so ``available()`` may be negative for a moment
    - **Replacing:** ``update_usage(c, X)`` then ``update_usage(c, Y)`` moves the
      total by ``Y - X``
    - **Never fatal:** A fault while publishing warnings is logged and ignored
    - **Thread-safe:** One ``threading.Lock`` guards the ledger

Architecture:
    ::

        update_usage(contributor, amount)
            │  total += amount - previous
            ├── total > capacity * warn_threshold → resource:warning
            └── total > capacity → evict ascending by usage
                                   until total ≤ capacity * evict_target
                                   → resource:evicted

Examples:
    >>> tracker = ResourceTracker(capacity=1000)
    >>> tracker.update_usage("run-1:a", 100)
    >>> tracker.update_usage("run-1:a", 250)
    >>> tracker.total()
    250
    >>> tracker.available()
    750

Tags:
    resources, memory, accounting, thread-safe, flowspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
from typing import Any

from flowspine.core.events import RESOURCE_EVICTED, RESOURCE_WARNING, EventBus
from flowspine.core.logging import get_logger

logger = get_logger(__name__)


class ResourceTracker:
    """Per-contributor usage ledger with a soft capacity.

    Args:
        capacity: Capacity in bytes (default 1 GiB)
        warn_threshold: Fraction of capacity above which a warning is emitted
        evict_target: Fraction of capacity eviction brings the total down to
        events: Optional bus receiving ``resource:*`` events
    """

    def __init__(
        self,
        capacity: int = 1024 * 1024 * 1024,
        *,
        warn_threshold: float = 0.8,
        evict_target: float = 0.7,
        events: EventBus | None = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._warn_threshold = warn_threshold
        self._evict_target = evict_target
        self._events = events
        self._usage: dict[str, int] = {}
        self._total = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def update_usage(self, contributor_id: str, amount: int) -> None:
        """Record ``amount`` as the current usage of ``contributor_id``."""
        evicted: list[str] = []
        freed = 0
        with self._lock:
            previous = self._usage.get(contributor_id, 0)
            self._total += amount - previous
            self._usage[contributor_id] = amount
            total = self._total
            warn = total > self._capacity * self._warn_threshold

            if total > self._capacity:
                floor = self._capacity * self._evict_target
                for cid, usage in sorted(self._usage.items(), key=lambda kv: kv[1]):
                    if self._total <= floor:
                        break
                    del self._usage[cid]
                    self._total -= usage
                    freed += usage
                    evicted.append(cid)
            remaining = self._total

        if warn:
            logger.warning(
                "resource.warning",
                total=total,
                capacity=self._capacity,
                threshold=self._warn_threshold,
            )
            self._emit(
                RESOURCE_WARNING,
                total=total,
                capacity=self._capacity,
                threshold=self._warn_threshold,
            )

        if evicted:
            logger.info(
                "resource.evicted",
                contributors=len(evicted),
                freed=freed,
                remaining=remaining,
            )
            self._emit(
                RESOURCE_EVICTED,
                contributors=evicted,
                freed=freed,
                remaining=remaining,
            )

    def release(self, contributor_id: str) -> None:
        """Forget a contributor entirely."""
        with self._lock:
            self._total -= self._usage.pop(contributor_id, 0)

    def total(self) -> int:
        """Current summed usage."""
        with self._lock:
            return self._total

    def available(self) -> int:
        """Capacity minus current usage (may be negative transiently)."""
        with self._lock:
            return self._capacity - self._total

    def usage_by_contributor(self) -> dict[str, int]:
        """Copy of the per-contributor ledger."""
        with self._lock:
            return dict(self._usage)

    def reset(self) -> None:
        """Clear the ledger."""
        with self._lock:
            self._usage.clear()
            self._total = 0

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self._events is None:
            return
        try:
            self._events.emit(event_type, "resource_tracker", **payload)
        except Exception as e:
            logger.warning("resource.event_failed", event_type=event_type, error=str(e))


__all__ = ["ResourceTracker"]
