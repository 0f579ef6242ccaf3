"""FlowSpine Execution — resilience primitives for running steps.

::

    retry.py      ExponentialBackoff / RetryContext (retries + 1 attempts,
                  delay = base * 2**attempt)
    timeout.py    run_with_timeout (asyncio.wait_for → StepTimeoutError),
                  call_maybe_async (sync handlers via asyncio.to_thread)
"""

from flowspine.execution.retry import (
    ExponentialBackoff,
    RetryContext,
    RetryStrategy,
    retry_policy,
)
from flowspine.execution.timeout import call_maybe_async, run_with_timeout

__all__ = [
    "ExponentialBackoff",
    "RetryContext",
    "RetryStrategy",
    "retry_policy",
    "call_maybe_async",
    "run_with_timeout",
]
