"""
StepDispatcher — maps a node's type tag to the handler that runs it.

Manifesto:
    Engines should not know what a step *does*. They hand a node and its
    context to the dispatcher and get back output, elapsed time and a cost
    estimate. Everything type-specific lives in handlers.

    - **Pluggable:** ``register_handler(type, fn)``; last registration wins
    - **Sync or async:** coroutine handlers are awaited, plain callables run in
      a worker thread so callers can race them against a timeout
    - **Wrapped failures:** a handler exception becomes ``StepExecutionError``
      carrying the node id and the original exception as ``__cause__``
    - **Costed:** a ``CostEstimator`` strategy prices each output

Architecture:
    ::

        StepDispatcher
        ├── _handlers: {type → handler(StepContext) → Any}
        │     validation / transform / condition / wait (built in)
        │     api_call / database_query / email / ...   (IntegrationAdapter, host supplied)
        └── cost_estimator: CostEstimator
              └── SerializedSizeEstimator(bytes_per_char=2)

        execute(node, ctx) → StepExecution(output, execution_time, memory_usage)
            UnknownNodeTypeError   no handler for node.type   (structural, raised)
            StepExecutionError     handler raised             (business)

Examples:
    >>> dispatcher = StepDispatcher()
    >>> dispatcher.register_handler("echo", lambda ctx: {"echo": ctx.variables})
    >>> dispatcher.has_handler("echo")
    True

Tags:
    dispatcher, handlers, strategy, flowspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from flowspine.core.errors import FlowSpineError, StepExecutionError, UnknownNodeTypeError
from flowspine.core.hashing import canonical_json
from flowspine.core.logging import get_logger
from flowspine.execution.timeout import call_maybe_async
from flowspine.orchestration.handlers import default_handlers
from flowspine.orchestration.models import Node, StepContext, StepExecution

logger = get_logger(__name__)

StepHandler = Callable[[StepContext], Any]

INTEGRATION_TYPES = (
    "api_call",
    "database_query",
    "email",
    "notification",
    "external_service",
    "file_processing",
)


@runtime_checkable
class IntegrationAdapter(Protocol):
    """Contract for host-supplied integration handlers.

    An adapter receives the step context (``config`` carries the call
    parameters, ``variables`` the flow state) and returns JSON-like output,
    which is merged into the flow's variables like any other step output.

    Example::

        class HttpAdapter:
            def __init__(self, client: httpx.AsyncClient):
                self._client = client

            async def __call__(self, context: StepContext) -> dict:
                cfg = context.config
                resp = await self._client.request(cfg.get("method", "GET"), cfg["url"])
                return resp.json()

        dispatcher.register_handler("api_call", HttpAdapter(client))
    """

    def __call__(self, context: StepContext) -> Any: ...


class CostEstimator(Protocol):
    """Prices a step output for the ResourceTracker."""

    def estimate(self, node: Node, output: Any) -> int: ...


class SerializedSizeEstimator:
    """Cost = length of the canonical JSON form × ``bytes_per_char``."""

    def __init__(self, bytes_per_char: int = 2):
        self.bytes_per_char = bytes_per_char

    def estimate(self, node: Node, output: Any) -> int:
        try:
            return len(canonical_json(output)) * self.bytes_per_char
        except (TypeError, ValueError) as e:
            logger.warning("dispatcher.cost_estimate_failed", node_id=node.id, error=str(e))
            return 0


class StepDispatcher:
    """Registry of step handlers keyed by node type."""

    def __init__(
        self,
        *,
        cost_estimator: CostEstimator | None = None,
        include_defaults: bool = True,
    ):
        self._handlers: dict[str, StepHandler] = default_handlers() if include_defaults else {}
        self.cost_estimator: CostEstimator = cost_estimator or SerializedSizeEstimator()

    def register_handler(self, node_type: str, handler: StepHandler) -> None:
        """Register ``handler`` for ``node_type``, replacing any previous one."""
        if node_type in self._handlers:
            logger.debug("dispatcher.handler_replaced", node_type=node_type)
        self._handlers[node_type] = handler

    def unregister_handler(self, node_type: str) -> bool:
        return self._handlers.pop(node_type, None) is not None

    def has_handler(self, node_type: str) -> bool:
        return node_type in self._handlers

    def handler_types(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(self, node: Node, context: StepContext) -> StepExecution:
        """Run the handler for ``node.type``.

        Raises:
            UnknownNodeTypeError: No handler registered for the node's type.
            StepExecutionError: The handler raised.
        """
        handler = self._handlers.get(node.type)
        if handler is None:
            raise UnknownNodeTypeError(node.type, node_id=node.id)

        start = time.monotonic()
        try:
            output = await call_maybe_async(handler, context)
        except FlowSpineError as e:
            if e.structural:
                raise
            raise StepExecutionError(node.id, cause=e) from e
        except Exception as e:
            raise StepExecutionError(node.id, cause=e) from e
        elapsed = time.monotonic() - start

        return StepExecution(
            output=output,
            execution_time=elapsed,
            memory_usage=self.cost_estimator.estimate(node, output),
        )


def normalize_output(node_id: str, output: Any) -> dict[str, Any]:
    """Mapping outputs merge as-is; anything else is stored under the node id."""
    if isinstance(output, dict):
        return output
    return {node_id: output}


__all__ = [
    "INTEGRATION_TYPES",
    "IntegrationAdapter",
    "CostEstimator",
    "SerializedSizeEstimator",
    "StepDispatcher",
    "StepHandler",
    "normalize_output",
]
