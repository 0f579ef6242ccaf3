"""Tests for flowspine.execution.timeout — deadlines and sync/async dispatch."""

import asyncio
import threading
import time

import pytest

from flowspine.core.errors import StepTimeoutError
from flowspine.execution.timeout import call_maybe_async, run_with_timeout


class TestRunWithTimeout:
    @pytest.mark.asyncio
    async def test_completes_within_deadline(self):
        async def quick():
            return 42

        assert await run_with_timeout(quick(), 1.0, node_id="q") == 42

    @pytest.mark.asyncio
    async def test_timeout_raises_step_timeout(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(StepTimeoutError) as exc_info:
            await run_with_timeout(slow(), 0.05, node_id="slow")

        err = exc_info.value
        assert err.node_id == "slow"
        assert err.timeout == 0.05
        assert err.elapsed is not None

    @pytest.mark.asyncio
    async def test_none_disables_deadline(self):
        async def short():
            await asyncio.sleep(0.01)
            return "done"

        assert await run_with_timeout(short(), None, node_id="n") == "done"
        assert await run_with_timeout(short(), 0, node_id="n") == "done"

    @pytest.mark.asyncio
    async def test_handler_errors_propagate_unchanged(self):
        async def broken():
            raise KeyError("x")

        with pytest.raises(KeyError):
            await run_with_timeout(broken(), 1.0, node_id="n")


class TestCallMaybeAsync:
    @pytest.mark.asyncio
    async def test_coroutine_function_awaited(self):
        async def handler(x):
            return x * 2

        assert await call_maybe_async(handler, 4) == 8

    @pytest.mark.asyncio
    async def test_sync_function_runs_in_worker_thread(self):
        main_thread = threading.get_ident()

        def handler():
            return threading.get_ident()

        assert await call_maybe_async(handler) != main_thread

    @pytest.mark.asyncio
    async def test_sync_returning_awaitable(self):
        async def inner():
            return "inner"

        assert await call_maybe_async(lambda: inner()) == "inner"

    @pytest.mark.asyncio
    async def test_blocking_sync_handler_can_time_out(self):
        def blocking():
            time.sleep(0.3)
            return "late"

        with pytest.raises(StepTimeoutError):
            await run_with_timeout(call_maybe_async(blocking), 0.05, node_id="block")
