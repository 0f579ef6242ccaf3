"""Tests for flowspine.execution.retry — backoff policy and RetryContext."""

import pytest

from flowspine.core.errors import StepExecutionError, UnknownNodeTypeError
from flowspine.execution.retry import ExponentialBackoff, RetryContext, retry_policy


class TestExponentialBackoff:
    def test_delays_double(self):
        strategy = ExponentialBackoff(max_retries=3, base_delay=0.5)
        assert [strategy.next_delay(a) for a in range(3)] == [0.5, 1.0, 2.0]

    def test_max_delay_cap(self):
        strategy = ExponentialBackoff(max_retries=10, base_delay=1.0, max_delay=3.0)
        assert strategy.next_delay(5) == 3.0

    def test_should_retry_until_exhausted(self):
        strategy = ExponentialBackoff(max_retries=2)
        assert strategy.should_retry(0, RuntimeError())
        assert strategy.should_retry(1, RuntimeError())
        assert not strategy.should_retry(2, RuntimeError())

    def test_structural_errors_never_retried(self):
        strategy = ExponentialBackoff(max_retries=5)
        assert not strategy.should_retry(0, UnknownNodeTypeError("x"))
        assert strategy.should_retry(0, StepExecutionError("n"))

    def test_retry_policy_clamps_none(self):
        assert retry_policy(None, 1.0).max_retries == 0
        assert retry_policy(3, 0.2).base_delay == 0.2


class TestRetryContext:
    @pytest.mark.asyncio
    async def test_attempts_and_delays(self):
        """retries=2 → 3 attempts, delays [b, 2b] reported to on_retry."""
        delays = []
        ctx = RetryContext(
            retry_policy(2, 0.001),
            on_retry=lambda attempt, error, delay: delays.append((attempt, delay)),
        )

        async def always_fail():
            raise StepExecutionError("n", message="nope")

        with pytest.raises(StepExecutionError):
            await ctx.run_async(always_fail)

        assert ctx.attempts == 3
        assert delays == [(1, 0.001), (2, 0.002)]

    @pytest.mark.asyncio
    async def test_structural_error_stops_immediately(self):
        ctx = RetryContext(retry_policy(5, 0.001))

        async def misconfigured():
            raise UnknownNodeTypeError("mystery")

        with pytest.raises(UnknownNodeTypeError):
            await ctx.run_async(misconfigured)
        assert ctx.attempts == 1

    @pytest.mark.asyncio
    async def test_fresh_coroutine_per_attempt(self):
        calls = []

        async def step():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("first")
            return calls[-1]

        ctx = RetryContext(retry_policy(1, 0.0))
        assert await ctx.run_async(lambda: step()) == 1
        assert ctx.attempts == 2
        assert str(ctx.last_error) == "first"

    @pytest.mark.asyncio
    async def test_exhausted_raises_last_error(self):
        ctx = RetryContext(retry_policy(1, 0.0))

        async def always_fail():
            raise RuntimeError(f"attempt {ctx.attempts}")

        with pytest.raises(RuntimeError, match="attempt 2"):
            await ctx.run_async(always_fail)
        assert ctx.attempts == 2
