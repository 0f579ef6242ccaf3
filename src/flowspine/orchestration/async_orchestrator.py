"""
AsyncOrchestrator — runs workflows step by step and composes whole workflows.

Where the GraphExecutor walks edges, the orchestrator treats a definition as
an ordered step list (node declaration order) and tracks every run in an
inspectable :class:`ExecutionContext` (status, progress, current step,
errors, per-step results). On top of single runs it offers four
compositions: parallel, sequence, conditional and loop.

Manifesto:
    - **Declaration order:** steps run strictly in the order the nodes are
      declared; ``depends_on`` is *checked* against already-run steps,
      never used to reorder them
    - **Observable:** ``progress`` is ``round(index / total * 100)`` while
      running and 100 on completion; results land in
      ``metadata["step_<id>_result"]`` and ``metadata["output"]``
    - **Terminal is final:** ``pending → running → completed | failed |
      cancelled``; a cancelled run is never flipped back
    - **Advisory cancellation:** ``cancel_execution`` flags the context; the
      step already in flight finishes, later steps do not start
    - **Fail-fast compositions:** a failed member aborts the composition with
      ``WorkflowFailedError``; parallel siblings are cancelled

Architecture:
    ::

        execute_workflow(id, input) ──► ExecutionContext
          for i, node in enumerate(nodes):
              cancelled? → stop
              progress = round(i / total * 100)
              depends_on ⊄ executed → UnmetDependencyError (raised)
              run_with_timeout(dispatcher.execute) under RetryContext
                StepError → context.failed (returned)
              metadata["step_<id>_result"] = output

        execute_workflows_parallel   gather + cancel siblings on failure
        execute_workflows_sequence   input |= previous metadata["output"]
        execute_workflows_conditional first matching predicate, else default({})
        execute_workflows_loop       while predicate(last_context)

Examples:
    >>> orchestrator = AsyncOrchestrator()
    >>> orchestrator.register_workflow(definition)
    >>> ctx = await orchestrator.execute_workflow("ingest", {"source": "s3"})
    >>> ctx.status, ctx.progress
    (<FlowStatus.COMPLETED: 'completed'>, 100)

Tags:
    orchestration, asyncio, workflow, composition, flowspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import copy
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from flowspine.core.errors import (
    ExecutionNotFoundError,
    FlowNotFoundError,
    StepError,
    UnmetDependencyError,
    WorkflowFailedError,
)
from flowspine.core.events import (
    EXECUTION_CANCELLED,
    STEP_COMPLETED,
    STEP_FAILED,
    STEP_STARTED,
    WORKFLOW_COMPLETED,
    WORKFLOW_FAILED,
    WORKFLOW_REGISTERED,
    WORKFLOW_STARTED,
    EventBus,
)
from flowspine.core.logging import LogContext, get_logger
from flowspine.core.settings import FlowSettings, get_settings
from flowspine.execution.retry import RetryContext, retry_policy
from flowspine.execution.timeout import run_with_timeout
from flowspine.orchestration.dispatcher import StepDispatcher, normalize_output
from flowspine.orchestration.models import (
    ErrorInfo,
    ExecutionContext,
    FlowDefinition,
    FlowStatus,
    Node,
    StepContext,
    StepExecution,
    utcnow,
)

_SOURCE = "async_orchestrator"

ContextPredicate = Callable[[ExecutionContext], bool]


@dataclass
class WorkflowCondition:
    """One branch of ``execute_workflows_conditional``."""

    predicate: ContextPredicate
    workflow_id: str
    input: dict[str, Any] | None = None


class AsyncOrchestrator:
    """Runs registered workflows and keeps their execution contexts.

    Args:
        dispatcher: Step handler registry (shared with a GraphExecutor if desired)
        events: Lifecycle event bus
        settings: Defaults for step timeout and retry pacing
        logger: Any structlog-style logger
        default_timeout: Per-step timeout in seconds when a node sets none
        retry_base_delay: Backoff base in seconds
    """

    def __init__(
        self,
        *,
        dispatcher: StepDispatcher | None = None,
        events: EventBus | None = None,
        settings: FlowSettings | None = None,
        logger: Any = None,
        default_timeout: float | None = None,
        retry_base_delay: float | None = None,
    ):
        cfg = settings or get_settings()
        self.dispatcher = dispatcher or StepDispatcher()
        self.events = events or EventBus()
        self.logger = logger or get_logger(__name__)
        self.default_timeout = (
            default_timeout if default_timeout is not None else cfg.workflow_step_timeout_seconds
        )
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else cfg.retry_base_delay_seconds
        )

        self._workflows: dict[str, FlowDefinition] = {}
        self._executions: dict[str, ExecutionContext] = {}
        self._lock = threading.Lock()
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._cancelled = 0
        self._average_time = 0.0

    # ------------------------------------------------------------------ #
    # Registry
    # ------------------------------------------------------------------ #

    def register_workflow(self, definition: FlowDefinition | dict[str, Any]) -> FlowDefinition:
        if not isinstance(definition, FlowDefinition):
            definition = FlowDefinition.from_dict(definition)
        with self._lock:
            self._workflows[definition.id] = definition
        self.logger.info("workflow.registered", workflow_id=definition.id, steps=len(definition.nodes))
        self.events.emit(WORKFLOW_REGISTERED, _SOURCE, workflow_id=definition.id)
        return definition

    def get_workflow(self, workflow_id: str) -> FlowDefinition | None:
        with self._lock:
            return self._workflows.get(workflow_id)

    # ------------------------------------------------------------------ #
    # Single execution
    # ------------------------------------------------------------------ #

    async def execute_workflow(
        self, workflow_id: str, input: dict[str, Any] | None = None
    ) -> ExecutionContext:
        """Run every step of ``workflow_id`` in declaration order.

        Returns:
            The execution context; ``status`` is ``failed`` when a step raised
            or timed out, ``cancelled`` when cancelled while running.

        Raises:
            FlowNotFoundError: Unknown workflow id.
            UnknownNodeTypeError, UnmetDependencyError, InvalidExpressionError:
                the workflow cannot run as defined (context marked failed first).
        """
        definition = self.get_workflow(workflow_id)
        if definition is None:
            raise FlowNotFoundError(workflow_id)

        input_data = dict(input or {})
        context = ExecutionContext(
            id=f"exec_{uuid.uuid4().hex[:12]}",
            workflow_id=workflow_id,
            current_step="initializing",
            metadata={"input": input_data, "workflowId": workflow_id},
        )
        with self._lock:
            self._executions[context.id] = context

        async with LogContext(workflow_id=workflow_id, execution_id=context.id):
            self.logger.info("workflow.started", steps=len(definition.nodes))
            self.events.emit(WORKFLOW_STARTED, _SOURCE, workflow_id=workflow_id, execution_id=context.id)
            context.status = FlowStatus.RUNNING

            try:
                failure = await self._run_steps(definition, context, copy.deepcopy(input_data))
            except asyncio.CancelledError:
                self._terminate(context, FlowStatus.CANCELLED)
                self.logger.warning("workflow.task_cancelled", step=context.current_step)
                raise
            except Exception as e:
                context.errors.append(str(e))
                context.error = ErrorInfo.from_exception(e)
                self._terminate(context, FlowStatus.FAILED)
                self.logger.error("workflow.failed", error=str(e), error_type=type(e).__name__)
                self.events.emit(WORKFLOW_FAILED, _SOURCE, workflow_id=workflow_id,
                                 execution_id=context.id, error=str(e), structural=True)
                raise

            if context.status == FlowStatus.CANCELLED:
                self.logger.info("workflow.cancelled", step=context.current_step)
            elif failure is not None:
                context.error = ErrorInfo.from_exception(failure)
                self._terminate(context, FlowStatus.FAILED)
                self.logger.warning("workflow.step_failed", error=failure.message)
                self.events.emit(WORKFLOW_FAILED, _SOURCE, workflow_id=workflow_id,
                                 execution_id=context.id, error=failure.message, structural=False)
            else:
                context.progress = 100
                context.current_step = "completed"
                self._terminate(context, FlowStatus.COMPLETED)
                self.logger.info("workflow.completed", duration=context.duration_seconds)
                self.events.emit(WORKFLOW_COMPLETED, _SOURCE, workflow_id=workflow_id,
                                 execution_id=context.id, duration=context.duration_seconds)
        return context

    async def _run_steps(
        self,
        definition: FlowDefinition,
        context: ExecutionContext,
        variables: dict[str, Any],
    ) -> StepError | None:
        nodes = definition.nodes
        total = len(nodes)
        executed: list[str] = []
        context.metadata["output"] = copy.deepcopy(variables)

        for index, node in enumerate(nodes):
            if context.status.is_terminal:
                break

            context.current_step = node.display_name
            context.progress = round(index / total * 100)

            missing = [dep for dep in node.depends_on if dep not in executed]
            if missing:
                raise UnmetDependencyError(node.id, missing)

            self.events.emit(STEP_STARTED, _SOURCE, execution_id=context.id,
                             workflow_id=context.workflow_id, step=node.display_name, node_id=node.id)
            step_context = StepContext(
                execution_id=context.id,
                flow_id=context.workflow_id,
                node_id=node.id,
                variables=copy.deepcopy(variables),
                input=context.metadata["input"],
                config=copy.deepcopy(node.config),
                metadata={"workflowId": context.workflow_id, "progress": context.progress},
            )
            try:
                execution = await self._run_step(node, step_context)
            except StepError as e:
                context.errors.append(f"Step {node.display_name} failed: {e.message}")
                self.events.emit(STEP_FAILED, _SOURCE, execution_id=context.id,
                                 workflow_id=context.workflow_id, step=node.display_name,
                                 node_id=node.id, error=e.message)
                return e

            context.metadata[f"step_{node.id}_result"] = execution.output
            variables.update(normalize_output(node.id, execution.output))
            context.metadata["output"] = copy.deepcopy(variables)
            executed.append(node.id)
            self.events.emit(STEP_COMPLETED, _SOURCE, execution_id=context.id,
                             workflow_id=context.workflow_id, step=node.display_name,
                             node_id=node.id, execution_time=execution.execution_time)
        return None

    async def _run_step(self, node: Node, context: StepContext) -> StepExecution:
        timeout = node.timeout or self.default_timeout

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            self.logger.warning("step.retry", node_id=node.id, attempt=attempt,
                                delay=delay, error=str(error))

        retry = RetryContext(retry_policy(node.retries, self.retry_base_delay), on_retry=on_retry)
        return await retry.run_async(
            lambda: run_with_timeout(self.dispatcher.execute(node, context), timeout, node_id=node.id)
        )

    def _terminate(self, context: ExecutionContext, status: FlowStatus) -> None:
        """Move ``context`` into a terminal state unless it already is in one."""
        if context.status.is_terminal:
            return
        context.status = status
        context.end_time = utcnow()
        with self._lock:
            self._total += 1
            if status == FlowStatus.COMPLETED:
                self._successful += 1
            elif status == FlowStatus.FAILED:
                self._failed += 1
            else:
                self._cancelled += 1
            duration = context.duration_seconds or 0.0
            self._average_time += (duration - self._average_time) / self._total

    # ------------------------------------------------------------------ #
    # Compositions
    # ------------------------------------------------------------------ #

    @staticmethod
    def _raise_if_failed(context: ExecutionContext) -> ExecutionContext:
        if context.status == FlowStatus.FAILED:
            raise WorkflowFailedError(context.workflow_id, context)
        return context

    async def execute_workflows_parallel(
        self, workflow_ids: list[str], input: dict[str, Any] | None = None
    ) -> list[ExecutionContext]:
        """Run workflows concurrently; results are in ``workflow_ids`` order.

        Raises:
            WorkflowFailedError: A member finished with status ``failed``.
            FlowSpineError: A member could not run; siblings are cancelled.
        """
        input_data = dict(input or {})
        tasks = [
            asyncio.create_task(self.execute_workflow(wid, dict(input_data)))
            for wid in workflow_ids
        ]
        try:
            for next_done in asyncio.as_completed(tasks):
                self._raise_if_failed(await next_done)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [task.result() for task in tasks]

    async def execute_workflows_sequence(
        self, workflow_ids: list[str], input: dict[str, Any] | None = None
    ) -> list[ExecutionContext]:
        """Run workflows one after another, feeding each one's output forward."""
        current_input = dict(input or {})
        contexts: list[ExecutionContext] = []
        for workflow_id in workflow_ids:
            context = self._raise_if_failed(await self.execute_workflow(workflow_id, current_input))
            contexts.append(context)
            output = context.metadata.get("output")
            if output:
                current_input = {**current_input, **output}
        return contexts

    async def execute_workflows_conditional(
        self,
        conditions: list[WorkflowCondition],
        default_id: str | None = None,
    ) -> list[ExecutionContext]:
        """Run the first workflow whose predicate holds, else ``default_id`` with ``{}``.

        Nothing has run before the first match, so every predicate is called
        with the same empty context.
        """
        empty = ExecutionContext.empty()
        for condition in conditions:
            if condition.predicate(empty):
                context = await self.execute_workflow(condition.workflow_id, condition.input or {})
                return [self._raise_if_failed(context)]

        if default_id is not None:
            return [self._raise_if_failed(await self.execute_workflow(default_id, {}))]
        return []

    async def execute_workflows_loop(
        self,
        workflow_id: str,
        predicate: ContextPredicate,
        input: dict[str, Any] | None = None,
    ) -> list[ExecutionContext]:
        """Run ``workflow_id`` while ``predicate(last_context)`` holds.

        The predicate first sees an empty context. There is no iteration cap.
        """
        contexts: list[ExecutionContext] = []
        last = ExecutionContext.empty()
        while predicate(last):
            last = self._raise_if_failed(await self.execute_workflow(workflow_id, input))
            contexts.append(last)
        return contexts

    # ------------------------------------------------------------------ #
    # Control / introspection
    # ------------------------------------------------------------------ #

    def cancel_execution(self, execution_id: str) -> ExecutionContext:
        """Flag a running execution as cancelled. Other states are left as they are."""
        with self._lock:
            context = self._executions.get(execution_id)
        if context is None:
            raise ExecutionNotFoundError(execution_id)

        if context.status == FlowStatus.RUNNING:
            self._terminate(context, FlowStatus.CANCELLED)
            self.logger.info("execution.cancelled", execution_id=execution_id)
            self.events.emit(EXECUTION_CANCELLED, _SOURCE, execution_id=execution_id,
                             workflow_id=context.workflow_id)
        return context

    def get_execution_status(self, execution_id: str) -> ExecutionContext | None:
        with self._lock:
            return self._executions.get(execution_id)

    def get_all_executions(self) -> list[ExecutionContext]:
        with self._lock:
            return list(self._executions.values())

    def clear_executions(self) -> None:
        with self._lock:
            self._executions.clear()

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            total = self._total
            return {
                "total_executions": total,
                "successful_executions": self._successful,
                "failed_executions": self._failed,
                "cancelled_executions": self._cancelled,
                "average_execution_time": self._average_time,
                "success_rate": (self._successful / total * 100) if total else 0.0,
                "failure_rate": (self._failed / total * 100) if total else 0.0,
            }


__all__ = ["AsyncOrchestrator", "WorkflowCondition"]
