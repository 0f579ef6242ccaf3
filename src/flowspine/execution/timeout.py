"""Timeout enforcement for step execution.

Every step execution races a deadline. Async handlers are awaited under
``asyncio.wait_for``, which cancels the awaited coroutine once the deadline
passes. Sync handlers are pushed to a worker thread with
``asyncio.to_thread`` so the event loop stays free to enforce the deadline;
the thread itself cannot be interrupted and runs to completion in the
background.

Examples:
    >>> async def slow():
    ...     await asyncio.sleep(10)
    >>> await run_with_timeout(slow(), 0.1, node_id="fetch")
    Traceback (most recent call last):
    ...
    flowspine.core.errors.StepTimeoutError: Step fetch timed out after 0.1s (ran for 0.10s)

Tags:
    timeout, deadline, asyncio, execution, flowspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from flowspine.core.errors import StepTimeoutError

T = TypeVar("T")


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call ``func`` and await its result if needed.

    Coroutine functions are awaited in place; plain callables run in a worker
    thread. A plain callable that returns an awaitable has it awaited too.
    """
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    result = await asyncio.to_thread(func, *args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout: float | None,
    *,
    node_id: str,
) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    Args:
        awaitable: Coroutine (or future) to await
        timeout: Seconds to allow; ``None`` or ``<= 0`` disables the deadline
        node_id: Step id reported in the timeout error

    Raises:
        StepTimeoutError: If the deadline passes first
    """
    if timeout is None or timeout <= 0:
        return await awaitable

    start = time.monotonic()
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as exc:
        raise StepTimeoutError(
            node_id, timeout, elapsed=time.monotonic() - start
        ) from exc


__all__ = ["call_maybe_async", "run_with_timeout"]
