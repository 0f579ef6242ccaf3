"""Retry policy with exponential backoff shared by every engine.

A node (or chain step) declaring ``retries=N`` is attempted at most ``N + 1``
times. Before retry ``k`` (0-based) the engine waits ``base_delay * 2**k``
seconds. Timeouts count as failed attempts. Structural errors (unknown node
type, invalid expression, ...) are never retried: repeating them cannot help.

Example:
    >>> from flowspine.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(max_retries=3, base_delay=0.5)
    >>> [strategy.next_delay(attempt) for attempt in range(3)]
    [0.5, 1.0, 2.0]
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from flowspine.core.errors import FlowSpineError

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before retry number ``attempt`` (0 = first retry)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Determine if another attempt is allowed after ``attempt`` retries."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff.

    Delay = min(base_delay * (multiplier ** attempt), max_delay)

    Attributes:
        max_retries: Maximum number of retries after the first attempt
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
    """

    max_retries: int = 0
    base_delay: float = 1.0
    max_delay: float = float("inf")
    multiplier: float = 2.0

    def next_delay(self, attempt: int) -> float:
        return min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Retry business failures until ``max_retries`` is used up."""
        if attempt >= self.max_retries:
            return False
        if isinstance(error, FlowSpineError) and error.structural:
            return False
        return True


def retry_policy(retries: int | None, base_delay: float) -> ExponentialBackoff:
    """Build the standard policy for a node/step declaring ``retries``."""
    return ExponentialBackoff(max_retries=max(0, retries or 0), base_delay=base_delay)


@dataclass
class RetryContext:
    """Retry state for one logical operation.

    Example:
        >>> ctx = RetryContext(retry_policy(2, 0.1))
        >>> result = await ctx.run_async(call_step)
        >>> ctx.attempts   # 1..3
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    async def run_async(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func`` until it succeeds or the strategy gives up.

        ``func`` is called afresh for every attempt, so it must build a new
        awaitable each time.

        Raises:
            The last exception once retries are exhausted
        """
        while True:
            self.attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                retries_used = self.attempt - 1
                if not self.strategy.should_retry(retries_used, e):
                    raise
                delay = self.strategy.next_delay(retries_used)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                await asyncio.sleep(delay)


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "RetryContext",
    "retry_policy",
]
