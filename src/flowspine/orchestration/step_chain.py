"""StepChain — a fluent, code-first chain of handler steps.

For callers that do not need a graph: register handlers in order, optionally
share a common payload and run middleware before each step, then execute.
Every step's returned mapping is shallow-merged into the running data.

Example::

    chain = (
        StepChain()
        .set_common_payload({"tenant": "acme"})
        .use(audit_middleware)
        .step("validate", validate_order)
        .step("charge", charge_card, retries=2, timeout=5.0, depends_on=["validate"])
        .step("notify", send_receipt, depends_on=["charge"])
    )
    result = await chain.execute({"order_id": 42})
    if not result.success:
        log.warning("order.failed", error=result.error, completed=result.steps)

Outcomes follow the same split as the engines: a step that raises or times
out (after its retries) gives ``ChainResult(success=False)`` with the steps
completed so far; a step whose ``depends_on`` has not run raises
``UnmetDependencyError``.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from flowspine.core.errors import (
    FlowSpineError,
    StepError,
    StepExecutionError,
    UnmetDependencyError,
)
from flowspine.core.events import (
    FLOW_COMPLETED,
    FLOW_FAILED,
    FLOW_STARTED,
    STEP_COMPLETED,
    STEP_FAILED,
    STEP_STARTED,
    EventBus,
)
from flowspine.core.logging import get_logger
from flowspine.core.result import Err, Ok, Result
from flowspine.core.settings import get_settings
from flowspine.execution.retry import RetryContext, retry_policy
from flowspine.execution.timeout import call_maybe_async, run_with_timeout

logger = get_logger(__name__)

_SOURCE = "step_chain"


@dataclass
class ChainContext:
    """Per-execution state handed to every step and middleware."""

    execution_id: str
    start_time: float
    variables: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


ChainHandler = Callable[[dict[str, Any], ChainContext], Any]


@dataclass
class ChainStep:
    id: str
    handler: ChainHandler
    retries: int = 0
    timeout: float = 30.0
    depends_on: tuple[str, ...] = ()


@dataclass
class ChainResult:
    """Outcome of :meth:`StepChain.execute`."""

    success: bool
    data: dict[str, Any]
    execution_time: float
    steps: list[str]
    metadata: dict[str, Any]
    execution_id: str = ""
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False, compare=False)

    def to_result(self) -> Result[dict[str, Any]]:
        """``Ok(data)`` on success, ``Err(step error)`` otherwise."""
        if self.success:
            return Ok(self.data)
        return Err(self.exception or FlowSpineError(self.error or "step chain failed"))

    def to_dict(self) -> dict[str, Any]:
        result = {
            "success": self.success,
            "data": self.data,
            "executionTime": self.execution_time,
            "steps": list(self.steps),
            "metadata": self.metadata,
        }
        if self.error is not None:
            result["error"] = self.error
        return result


class StepChain:
    """Ordered handler chain with middleware, retries and timeouts.

    Args:
        events: Lifecycle event bus
        retry_base_delay: Backoff base in seconds (delay = base * 2**attempt)
        on_retry: Called as ``on_retry(step_id, attempt, error, delay)`` before each retry
    """

    def __init__(
        self,
        *,
        events: EventBus | None = None,
        retry_base_delay: float | None = None,
        on_retry: Callable[[str, int, Exception, float], None] | None = None,
    ):
        self.events = events or EventBus()
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None
            else get_settings().retry_base_delay_seconds
        )
        self.on_retry = on_retry
        self._steps: dict[str, ChainStep] = {}
        self._order: list[str] = []
        self._middleware: list[ChainHandler] = []
        self._common_payload: dict[str, Any] = {}

    def set_common_payload(self, payload: dict[str, Any]) -> StepChain:
        """Data available to every step; execution input overrides it key by key."""
        self._common_payload = dict(payload)
        return self

    def use(self, middleware: ChainHandler) -> StepChain:
        """Add middleware run before every step as ``middleware(data, context)``."""
        self._middleware.append(middleware)
        return self

    def step(
        self,
        step_id: str,
        handler: ChainHandler,
        *,
        retries: int = 0,
        timeout: float = 30.0,
        depends_on: list[str] | tuple[str, ...] = (),
    ) -> StepChain:
        """Add (or replace, keeping its position) the step ``step_id``."""
        self._steps[step_id] = ChainStep(
            id=step_id,
            handler=handler,
            retries=retries,
            timeout=timeout,
            depends_on=tuple(depends_on),
        )
        if step_id not in self._order:
            self._order.append(step_id)
        return self

    async def execute(self, input: dict[str, Any] | None = None) -> ChainResult:
        """Run every step in order.

        Raises:
            UnmetDependencyError: A step runs before one of its ``depends_on``.
        """
        execution_id = str(uuid.uuid4())
        start = time.monotonic()
        data = {**self._common_payload, **(input or {})}
        context = ChainContext(execution_id=execution_id, start_time=start, variables=dict(data))
        executed: list[str] = []

        self.events.emit(FLOW_STARTED, _SOURCE, execution_id=execution_id, data=dict(data))
        log = logger.bind(execution_id=execution_id)

        for step_id in self._order:
            step = self._steps[step_id]

            missing = [dep for dep in step.depends_on if dep not in executed]
            if missing:
                error = UnmetDependencyError(step_id, missing)
                log.error("chain.unmet_dependency", step=step_id, missing=missing)
                self.events.emit(FLOW_FAILED, _SOURCE, execution_id=execution_id,
                                 error=error.message, steps=list(executed))
                raise error

            try:
                await self._run_middleware(step, data, context)
                step_result = await self._run_step(step, data, context)
            except StepError as e:
                log.warning("chain.step_failed", step=step_id, error=e.message)
                result = ChainResult(
                    success=False,
                    data=data,
                    execution_time=time.monotonic() - start,
                    steps=executed,
                    metadata=context.metadata,
                    execution_id=execution_id,
                    error=e.message,
                    exception=e,
                )
                self.events.emit(FLOW_FAILED, _SOURCE, execution_id=execution_id,
                                 error=e.message, steps=list(executed))
                return result

            if isinstance(step_result, dict):
                data.update(step_result)
                context.variables.update(step_result)
            executed.append(step_id)
            self.events.emit(STEP_COMPLETED, _SOURCE, execution_id=execution_id,
                             step_id=step_id, result=step_result)

        result = ChainResult(
            success=True,
            data=data,
            execution_time=time.monotonic() - start,
            steps=executed,
            metadata=context.metadata,
            execution_id=execution_id,
        )
        log.info("chain.completed", steps=len(executed), execution_time=result.execution_time)
        self.events.emit(FLOW_COMPLETED, _SOURCE, execution_id=execution_id,
                         steps=list(executed), execution_time=result.execution_time)
        return result

    async def _run_step(self, step: ChainStep, data: dict[str, Any], context: ChainContext) -> Any:
        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning("chain.step_retry", step=step.id, attempt=attempt, delay=delay)
            if self.on_retry:
                self.on_retry(step.id, attempt, error, delay)

        retry = RetryContext(retry_policy(step.retries, self.retry_base_delay), on_retry=on_retry)

        async def attempt() -> Any:
            self.events.emit(STEP_STARTED, _SOURCE, execution_id=context.execution_id,
                             step_id=step.id, attempt=retry.attempts - 1)
            try:
                return await run_with_timeout(
                    self._call(step, data, context), step.timeout, node_id=step.id
                )
            except StepError as e:
                self.events.emit(STEP_FAILED, _SOURCE, execution_id=context.execution_id,
                                 step_id=step.id, attempt=retry.attempts - 1, error=e.message)
                raise

        return await retry.run_async(attempt)

    async def _run_middleware(self, step: ChainStep, data: dict[str, Any], context: ChainContext) -> None:
        """Middleware failures fail the step they precede."""
        for middleware in self._middleware:
            try:
                await call_maybe_async(middleware, data, context)
            except FlowSpineError as e:
                if e.structural:
                    raise
                raise StepExecutionError(step.id, cause=e) from e
            except Exception as e:
                raise StepExecutionError(step.id, cause=e) from e

    @staticmethod
    async def _call(step: ChainStep, data: dict[str, Any], context: ChainContext) -> Any:
        try:
            return await call_maybe_async(step.handler, data, context)
        except FlowSpineError as e:
            if e.structural:
                raise
            raise StepExecutionError(step.id, cause=e) from e
        except Exception as e:
            raise StepExecutionError(step.id, cause=e) from e

    def info(self) -> dict[str, Any]:
        return {
            "steps": list(self._steps),
            "step_order": list(self._order),
            "has_common_payload": bool(self._common_payload),
            "middleware_count": len(self._middleware),
        }

    def clear(self) -> StepChain:
        """Remove all steps, middleware and the common payload."""
        self._steps.clear()
        self._order.clear()
        self._middleware.clear()
        self._common_payload = {}
        return self


__all__ = ["ChainContext", "ChainResult", "ChainStep", "StepChain"]
