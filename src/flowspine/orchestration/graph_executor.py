"""
GraphExecutor — runs a registered flow graph against an input.

Manifesto:
    A flow is a graph of typed nodes joined by optionally guarded edges. The
    executor walks it from ``start_node``, feeding every node a private copy
    of the accumulated variables and merging each node's output back in.

    - **Cached:** identical (flow_id, input) pairs are answered from the
      ResultCache without traversal
    - **Branching:** the first outgoing edge (declaration order) whose
      condition is absent or true is followed; if every condition is false
      the run ends early and *successfully*
    - **Bounded:** ``max_steps`` stops cyclic graphs
    - **Resilient:** per-node timeout and retries (``retries + 1`` attempts,
      delay ``base * 2**attempt``)
    - **Accounted:** node costs sit in the ResourceTracker while the run is
      active and are released when it ends
    - **Two outcome kinds:** misconfiguration is raised, a failing step is
      returned as ``FlowResult(status="failed")``

Architecture:
    ::

        execute_flow(flow_id, input)
          │  FlowNotFoundError ──────────────────────────────────── raised
          ├─ cache hit? ── cached_copy(from_cache=True) + cache:hit ─ return
          ▼
        FlowInstance(running) → active set → flow:started
          │
          ▼  for each node from start_node
        ┌──────────────────────────────────────────────────────────────┐
        │ NodeNotFoundError / UnknownNodeTypeError /                   │
        │ InvalidExpressionError / TraversalLimitError ─────── raised  │
        │ StepContext(deepcopy(variables))                             │
        │ RetryContext(run_with_timeout(dispatcher.execute))           │
        │   StepExecutionError / StepTimeoutError ── failed result     │
        │ variables |= output ; ResourceTracker.update_usage           │
        │ next = first edge with (no condition | condition true)       │
        └──────────────────────────────────────────────────────────────┘
          │
          ▼
        release node costs from ResourceTracker
          │
          ▼
        FlowResult → ResultCache (completed only) → flow:completed

Examples:
    >>> executor = GraphExecutor()
    >>> executor.register_flow(FlowDefinition.from_dict(document))
    >>> result = await executor.execute_flow("signup", {"email": "a@b.co"})
    >>> result.status, result.execution_path
    (<FlowStatus.COMPLETED: 'completed'>, ['validate', 'greet'])

Guardrails:
    ❌ DON'T: Share one FlowInstance between executions
    ✅ DO: Let every call build its own; only cache and tracker are shared

    ❌ DON'T: Expect concurrent identical calls to be coalesced
    ✅ DO: Rely on the cache only after the first call has completed

Tags:
    graph, traversal, orchestration, cache, retry, flowspine

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import copy
import threading
import uuid
from dataclasses import dataclass
from typing import Any

from flowspine.core.cache import ResultCache
from flowspine.core.errors import (
    FlowNotFoundError,
    NodeNotFoundError,
    StepError,
    TraversalLimitError,
)
from flowspine.core.events import (
    CACHE_HIT,
    FLOW_COMPLETED,
    FLOW_FAILED,
    FLOW_REGISTERED,
    FLOW_STARTED,
    STEP_COMPLETED,
    STEP_FAILED,
    STEP_STARTED,
    EventBus,
)
from flowspine.core.hashing import make_cache_key
from flowspine.core.logging import LogContext, get_logger
from flowspine.core.resources import ResourceTracker
from flowspine.core.settings import FlowSettings, get_settings
from flowspine.execution.retry import RetryContext, retry_policy
from flowspine.execution.timeout import run_with_timeout
from flowspine.orchestration.dispatcher import StepDispatcher, normalize_output
from flowspine.orchestration.expressions import evaluate_condition
from flowspine.orchestration.models import (
    ErrorInfo,
    FlowDefinition,
    FlowInstance,
    FlowResult,
    FlowStatus,
    Node,
    NodeOutput,
    PerformanceStats,
    StepContext,
    StepExecution,
    utcnow,
)

_SOURCE = "graph_executor"


@dataclass
class ExecutorMetrics:
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0

    def record(self, succeeded: bool, execution_time: float) -> None:
        self.total_executions += 1
        if succeeded:
            self.successful_executions += 1
        else:
            self.failed_executions += 1
        n = self.total_executions
        self.average_execution_time += (execution_time - self.average_execution_time) / n

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "failed_executions": self.failed_executions,
            "average_execution_time": self.average_execution_time,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
        }


class GraphExecutor:
    """Owns flow definitions, active instances and the engine metrics.

    Args:
        dispatcher: Step handler registry (a default one with built-ins if omitted)
        cache: Result cache shared across executions
        resources: Resource tracker shared across executions
        events: Lifecycle event bus
        settings: Defaults for cache, timeouts, retry pacing and step budget
        logger: Any structlog-style logger (``info/warning/error``)
        cache_enabled: Override ``settings.cache_enabled``
        default_timeout: Per-node timeout in seconds when a node sets none
        retry_base_delay: Backoff base in seconds
        max_steps: Maximum nodes visited per traversal
    """

    def __init__(
        self,
        *,
        dispatcher: StepDispatcher | None = None,
        cache: ResultCache | None = None,
        resources: ResourceTracker | None = None,
        events: EventBus | None = None,
        settings: FlowSettings | None = None,
        logger: Any = None,
        cache_enabled: bool | None = None,
        default_timeout: float | None = None,
        retry_base_delay: float | None = None,
        max_steps: int | None = None,
    ):
        cfg = settings or get_settings()
        self.dispatcher = dispatcher or StepDispatcher()
        self.events = events or EventBus()
        self.cache = cache or ResultCache(
            max_size=cfg.cache_max_size, ttl_seconds=cfg.cache_ttl_seconds
        )
        self.resources = resources or ResourceTracker(
            cfg.resource_capacity,
            warn_threshold=cfg.resource_warn_threshold,
            evict_target=cfg.resource_evict_target,
            events=self.events,
        )
        self.logger = logger or get_logger(__name__)
        self.cache_enabled = cfg.cache_enabled if cache_enabled is None else cache_enabled
        self.default_timeout = default_timeout if default_timeout is not None else cfg.step_timeout_seconds
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else cfg.retry_base_delay_seconds
        )
        self.max_steps = max_steps or cfg.max_traversal_steps

        self._flows: dict[str, FlowDefinition] = {}
        self._active: dict[str, FlowInstance] = {}
        self._metrics = ExecutorMetrics()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Registry
    # ------------------------------------------------------------------ #

    def register_flow(self, definition: FlowDefinition | dict[str, Any]) -> FlowDefinition:
        """Register (or overwrite) a flow definition by id."""
        if not isinstance(definition, FlowDefinition):
            definition = FlowDefinition.from_dict(definition)
        with self._lock:
            replaced = definition.id in self._flows
            self._flows[definition.id] = definition
        self.logger.info(
            "flow.registered",
            flow_id=definition.id,
            name=definition.name,
            nodes=len(definition.nodes),
            replaced=replaced,
        )
        self.events.emit(FLOW_REGISTERED, _SOURCE, flow_id=definition.id, name=definition.name)
        return definition

    def get_flow(self, flow_id: str) -> FlowDefinition | None:
        with self._lock:
            return self._flows.get(flow_id)

    def list_flows(self) -> list[str]:
        with self._lock:
            return sorted(self._flows)

    def active_instances(self) -> list[FlowInstance]:
        with self._lock:
            return list(self._active.values())

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def execute_flow(
        self,
        flow_id: str,
        input: dict[str, Any] | None = None,
        ctx: dict[str, Any] | None = None,
    ) -> FlowResult:
        """Run ``flow_id`` against ``input``.

        Returns:
            ``FlowResult`` with status ``completed``, or ``failed`` when a step
            raised or timed out after its retries.

        Raises:
            FlowNotFoundError, NodeNotFoundError, UnknownNodeTypeError,
            InvalidExpressionError, TraversalLimitError: the flow cannot run
            as configured.
        """
        definition = self.get_flow(flow_id)
        if definition is None:
            self.logger.error("flow.not_found", flow_id=flow_id)
            self.events.emit(FLOW_FAILED, _SOURCE, flow_id=flow_id, execution_id=None,
                             error=f"Flow not found: {flow_id}")
            raise FlowNotFoundError(flow_id)

        input_data = dict(input or {})
        cache_key = make_cache_key(flow_id, input_data)

        if self.cache_enabled:
            cached = self._cache_get(cache_key)
            if cached is not None:
                with self._lock:
                    self._metrics.cache_hits += 1
                self.logger.info("flow.cache_hit", flow_id=flow_id, cache_key=cache_key)
                self.events.emit(CACHE_HIT, _SOURCE, flow_id=flow_id, cache_key=cache_key,
                                 execution_id=cached.id)
                return cached.cached_copy()
            with self._lock:
                self._metrics.cache_misses += 1

        instance = FlowInstance(
            id=str(uuid.uuid4()),
            flow_id=flow_id,
            input=copy.deepcopy(input_data),
            variables=copy.deepcopy(input_data),
            current_node=definition.start_node,
            context=dict(ctx or {}),
        )
        with self._lock:
            self._active[instance.id] = instance

        async with LogContext(flow_id=flow_id, execution_id=instance.id):
            self.logger.info("flow.started", start_node=definition.start_node)
            self.events.emit(FLOW_STARTED, _SOURCE, flow_id=flow_id, execution_id=instance.id)
            try:
                result = await self._traverse(instance, definition)
            except asyncio.CancelledError:
                instance.status = FlowStatus.CANCELLED
                self._finish(instance, succeeded=False,
                             execution_time=(utcnow() - instance.start_time).total_seconds())
                self.logger.warning("flow.cancelled", node_id=instance.current_node)
                raise
            except Exception as e:
                instance.status = FlowStatus.FAILED
                self._finish(instance, succeeded=False,
                             execution_time=(utcnow() - instance.start_time).total_seconds())
                self.logger.error("flow.failed", error=str(e), error_type=type(e).__name__,
                                  node_id=instance.current_node)
                self.events.emit(FLOW_FAILED, _SOURCE, flow_id=flow_id,
                                 execution_id=instance.id, error=str(e), structural=True)
                raise
            finally:
                self._release_costs(instance, definition)

            instance.status = result.status
            if result.succeeded and self.cache_enabled:
                self._cache_set(cache_key, copy.deepcopy(result))
            self._finish(instance, succeeded=result.succeeded, execution_time=result.execution_time)

            if result.succeeded:
                self.logger.info("flow.completed", nodes=len(result.execution_path),
                                 execution_time=result.execution_time)
                self.events.emit(FLOW_COMPLETED, _SOURCE, flow_id=flow_id, execution_id=instance.id,
                                 status=result.status.value, execution_time=result.execution_time,
                                 nodes_executed=len(result.execution_path))
            else:
                self.logger.warning("flow.step_failed", node_id=result.error.node_id,
                                    error=result.error.message)
                self.events.emit(FLOW_FAILED, _SOURCE, flow_id=flow_id, execution_id=instance.id,
                                 error=result.error.message, node_id=result.error.node_id,
                                 execution_time=result.execution_time, structural=False)
            return result

    async def _traverse(self, instance: FlowInstance, definition: FlowDefinition) -> FlowResult:
        path: list[str] = []
        results: list[NodeOutput] = []
        error: StepError | None = None
        memory_peak = 0
        current: str | None = definition.start_node
        steps = 0

        while current is not None:
            steps += 1
            if steps > self.max_steps:
                raise TraversalLimitError(definition.id, self.max_steps)

            node = definition.get_node(current)
            if node is None:
                raise NodeNotFoundError(current, flow_id=definition.id)
            instance.current_node = node.id

            context = StepContext(
                execution_id=instance.id,
                flow_id=instance.flow_id,
                node_id=node.id,
                variables=copy.deepcopy(instance.variables),
                input=instance.input,
                config=copy.deepcopy(node.config),
                available_resources=self.resources.available(),
                metadata=dict(instance.context),
            )

            self.events.emit(STEP_STARTED, _SOURCE, flow_id=instance.flow_id,
                             execution_id=instance.id, node_id=node.id, node_type=node.type)
            try:
                execution, attempts = await self._run_node(node, context)
            except StepError as e:
                error = e
                self.logger.warning("step.failed", node_id=node.id, error=e.message)
                self.events.emit(STEP_FAILED, _SOURCE, flow_id=instance.flow_id,
                                 execution_id=instance.id, node_id=node.id, error=e.message)
                break

            output = normalize_output(node.id, execution.output)
            instance.variables.update(output)
            path.append(node.id)
            results.append(
                NodeOutput(
                    node_id=node.id,
                    type=node.type,
                    output=execution.output,
                    execution_time=execution.execution_time,
                    memory_usage=execution.memory_usage,
                    attempts=attempts,
                )
            )
            self._report_cost(f"{instance.id}:{node.id}", execution.memory_usage)
            memory_peak = max(memory_peak, self.resources.total())

            self.logger.debug("step.completed", node_id=node.id, attempts=attempts,
                              execution_time=execution.execution_time)
            self.events.emit(STEP_COMPLETED, _SOURCE, flow_id=instance.flow_id,
                             execution_id=instance.id, node_id=node.id,
                             execution_time=execution.execution_time)

            current = self._next_node(definition, node.id, instance.variables)

        memory_usage = self.resources.total()
        return FlowResult(
            id=instance.id,
            flow_id=instance.flow_id,
            status=FlowStatus.FAILED if error else FlowStatus.COMPLETED,
            start_time=instance.start_time,
            end_time=utcnow(),
            execution_path=path,
            results=results,
            output=copy.deepcopy(instance.variables),
            memory_usage=memory_usage,
            performance=PerformanceStats(
                nodes_executed=len(path),
                memory_peak=max(memory_peak, memory_usage),
                cache_hits=0,
                cache_misses=1 if self.cache_enabled else 0,
            ),
            error=ErrorInfo.from_exception(error) if error else None,
        )

    async def _run_node(self, node: Node, context: StepContext) -> tuple[StepExecution, int]:
        timeout = node.timeout or self.default_timeout

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            self.logger.warning("step.retry", node_id=node.id, attempt=attempt,
                                delay=delay, error=str(error))

        retry = RetryContext(retry_policy(node.retries, self.retry_base_delay), on_retry=on_retry)
        execution = await retry.run_async(
            lambda: run_with_timeout(self.dispatcher.execute(node, context), timeout, node_id=node.id)
        )
        return execution, retry.attempts

    def _next_node(self, definition: FlowDefinition, node_id: str, variables: dict[str, Any]) -> str | None:
        edges = definition.outgoing(node_id)
        if not edges:
            return None
        for edge in edges:
            if edge.condition is None or evaluate_condition(edge.condition, variables):
                return edge.target
        self.logger.info("flow.early_exit", node_id=node_id, edges=len(edges))
        return None

    # ------------------------------------------------------------------ #
    # Shared-state helpers (never fail a flow)
    # ------------------------------------------------------------------ #

    def _cache_get(self, key: str) -> FlowResult | None:
        try:
            return self.cache.get(key)
        except Exception as e:
            self.logger.warning("cache.get_failed", cache_key=key, error=str(e))
            return None

    def _cache_set(self, key: str, result: FlowResult) -> None:
        try:
            self.cache.set(key, result)
        except Exception as e:
            self.logger.warning("cache.set_failed", cache_key=key, error=str(e))

    def _report_cost(self, contributor_id: str, amount: int) -> None:
        try:
            self.resources.update_usage(contributor_id, amount)
        except Exception as e:
            self.logger.warning("resource.update_failed", contributor=contributor_id, error=str(e))

    def _release_costs(self, instance: FlowInstance, definition: FlowDefinition) -> None:
        for node in definition.nodes:
            contributor_id = f"{instance.id}:{node.id}"
            try:
                self.resources.release(contributor_id)
            except Exception as e:
                self.logger.warning("resource.release_failed", contributor=contributor_id, error=str(e))

    def _finish(self, instance: FlowInstance, *, succeeded: bool, execution_time: float) -> None:
        with self._lock:
            self._active.pop(instance.id, None)
            self._metrics.record(succeeded, execution_time)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return self._metrics.to_dict()

    def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            active = len(self._active)
            registered = len(self._flows)
            metrics = self._metrics.to_dict()
        return {
            "active_flows": active,
            "registered_flows": registered,
            "resource_usage": self.resources.total(),
            "cache": self.cache.stats().to_dict(),
            "metrics": metrics,
        }

    async def cleanup(self) -> None:
        """Drop active instances, cached results and resource figures."""
        with self._lock:
            self._active.clear()
        self.cache.clear()
        self.resources.reset()


__all__ = ["GraphExecutor", "ExecutorMetrics"]
