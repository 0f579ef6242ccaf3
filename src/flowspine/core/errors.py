"""
Structured error types for flowspine.

Every error raised by the engines derives from :class:`FlowSpineError` and
carries a category, a structured :class:`ErrorContext` (flow, node,
execution ids) and an optional chained cause.

Manifesto:
    A caller has to be able to tell two situations apart:

    - **Structural failure:** the flow could not run at all because it is
      misconfigured (unknown flow, missing node, unregistered node type,
      malformed expression, unmet step dependency). These are *raised*.
    - **Business failure:** the flow ran, but a step threw or timed out.
      These become an inspectable outcome (``FlowResult.status == "failed"``,
      ``ExecutionContext.status == "failed"``, ``ChainResult.success is False``).

    ``is_structural()`` is the single place that draws that line.

Architecture:
    ::

        FlowSpineError (category, context, cause)
        ├── NotFoundError                 (NOT_FOUND, structural)
        │   ├── FlowNotFoundError
        │   ├── NodeNotFoundError
        │   └── ExecutionNotFoundError
        ├── ConfigurationError            (CONFIGURATION, structural)
        │   ├── UnknownNodeTypeError
        │   ├── InvalidExpressionError
        │   ├── InvalidFlowDefinitionError
        │   ├── UnmetDependencyError
        │   └── TraversalLimitError
        ├── StepError                     (business)
        │   ├── StepExecutionError        (EXECUTION)
        │   └── StepTimeoutError          (TIMEOUT)
        └── WorkflowFailedError           (EXECUTION, composition fail-fast)

    Validation rule failures are never exceptions: the ``validation`` step
    handler returns ``{"isValid": False, "errors": [...]}`` as data.

Examples:
    >>> try:
    ...     raise KeyError("email")
    ... except KeyError as exc:
    ...     err = StepExecutionError("validate", cause=exc)
    >>> err.node_id
    'validate'
    >>> is_structural(err)
    False
    >>> is_structural(NodeNotFoundError("missing"))
    True

Tags:
    error-handling, exception-hierarchy, flowspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing, logging and outcome classification."""

    NOT_FOUND = "NOT_FOUND"
    CONFIGURATION = "CONFIGURATION"
    EXECUTION = "EXECUTION"
    TIMEOUT = "TIMEOUT"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        flow_id: Flow (or workflow) definition id
        node_id: Node/step id within the definition
        execution_id: Execution id of the run
        metadata: Additional key-value pairs
    """

    flow_id: str | None = None
    node_id: str | None = None
    execution_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (only non-None fields)."""
        result = {}
        for key in ("flow_id", "node_id", "execution_id"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FlowSpineError(Exception):
    """
    Base exception for all flowspine errors.

    Subclasses set ``default_category`` and ``structural`` class attributes;
    instances carry a message, a category, an :class:`ErrorContext` and an
    optional chained cause.

    Examples:
        >>> err = FlowSpineError("boom").with_context(flow_id="f1")
        >>> err.context.flow_id
        'f1'
        >>> err.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    structural: bool = True

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FlowSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise FlowNotFoundError("checkout").with_context(execution_id=run_id)
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "structural": self.structural,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# NOT FOUND (structural)
# =============================================================================


class NotFoundError(FlowSpineError):
    """A referenced flow, node or execution does not exist."""

    default_category = ErrorCategory.NOT_FOUND


class FlowNotFoundError(NotFoundError):
    """Raised when a flow/workflow id has not been registered."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(
            f"Flow not found: {flow_id}",
            context=ErrorContext(flow_id=flow_id),
        )


class NodeNotFoundError(NotFoundError):
    """Raised when traversal reaches a node id missing from the definition."""

    def __init__(self, node_id: str, flow_id: str | None = None):
        self.node_id = node_id
        super().__init__(
            f"Node not found: {node_id}",
            context=ErrorContext(flow_id=flow_id, node_id=node_id),
        )


class ExecutionNotFoundError(NotFoundError):
    """Raised when an execution id is unknown to the orchestrator."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(
            f"Execution {execution_id} not found",
            context=ErrorContext(execution_id=execution_id),
        )


# =============================================================================
# CONFIGURATION (structural)
# =============================================================================


class ConfigurationError(FlowSpineError):
    """The flow cannot run as defined."""

    default_category = ErrorCategory.CONFIGURATION


class UnknownNodeTypeError(ConfigurationError):
    """Raised when no handler is registered for a node's type tag."""

    def __init__(self, node_type: str, node_id: str | None = None):
        self.node_type = node_type
        self.node_id = node_id
        super().__init__(
            f"No handler found for node type: {node_type}",
            context=ErrorContext(node_id=node_id),
        )


class InvalidExpressionError(ConfigurationError):
    """Raised when a condition expression cannot be parsed or uses forbidden syntax."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid expression {expression!r}: {reason}")


class InvalidFlowDefinitionError(ConfigurationError):
    """Raised when a flow document cannot be parsed into a FlowDefinition."""

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)
        if source:
            self.context.metadata["source"] = source


class UnmetDependencyError(ConfigurationError):
    """Raised when a step runs before the steps it declares as dependencies.

    Steps are never reordered to satisfy dependencies; this is an ordering check.
    """

    def __init__(self, step_id: str, missing: list[str]):
        self.step_id = step_id
        self.missing = missing
        super().__init__(
            f"Step {step_id} has unmet dependencies: {', '.join(missing)}",
            context=ErrorContext(node_id=step_id),
        )


class TraversalLimitError(ConfigurationError):
    """Raised when a traversal exceeds the configured step budget (cyclic graph)."""

    def __init__(self, flow_id: str, max_steps: int):
        self.max_steps = max_steps
        super().__init__(
            f"Flow {flow_id} exceeded {max_steps} traversal steps",
            context=ErrorContext(flow_id=flow_id),
        )


# =============================================================================
# STEP FAILURES (business)
# =============================================================================


class StepError(FlowSpineError):
    """A step ran and failed. Reported as an outcome, not raised to callers."""

    default_category = ErrorCategory.EXECUTION
    structural = False

    def __init__(self, message: str, node_id: str, **kwargs: Any):
        self.node_id = node_id
        super().__init__(message, **kwargs)
        self.context.node_id = node_id


class StepExecutionError(StepError):
    """Wraps an exception thrown by a step handler with the node id."""

    def __init__(self, node_id: str, cause: BaseException | None = None, message: str | None = None):
        detail = message or (str(cause) if cause is not None else "handler failed")
        super().__init__(
            f"Node execution failed: {node_id} - {detail}",
            node_id,
            cause=cause,
        )


class StepTimeoutError(StepError):
    """Raised when a step does not finish within its timeout."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, node_id: str, timeout: float, elapsed: float | None = None):
        self.timeout = timeout
        self.elapsed = elapsed
        msg = f"Step {node_id} timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg, node_id)


class WorkflowFailedError(FlowSpineError):
    """Raised by composite orchestrator calls when a member execution fails."""

    default_category = ErrorCategory.EXECUTION
    structural = False

    def __init__(self, workflow_id: str, execution: Any):
        self.workflow_id = workflow_id
        self.execution = execution
        errors = getattr(execution, "errors", None) or ["unknown error"]
        super().__init__(
            f"Workflow {workflow_id} failed: {errors[-1]}",
            context=ErrorContext(
                flow_id=workflow_id,
                execution_id=getattr(execution, "id", None),
            ),
        )


# =============================================================================
# HELPERS
# =============================================================================


def is_structural(error: BaseException) -> bool:
    """True when ``error`` means the flow could not run as configured.

    Non-flowspine exceptions are treated as structural: they escaped every
    handler wrapper and indicate a bug rather than a business outcome.
    """
    if isinstance(error, FlowSpineError):
        return error.structural
    return True


def categorize_error(error: BaseException) -> ErrorCategory:
    """Return the category of ``error`` (INTERNAL for foreign exceptions)."""
    if isinstance(error, FlowSpineError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FlowSpineError",
    "NotFoundError",
    "FlowNotFoundError",
    "NodeNotFoundError",
    "ExecutionNotFoundError",
    "ConfigurationError",
    "UnknownNodeTypeError",
    "InvalidExpressionError",
    "InvalidFlowDefinitionError",
    "UnmetDependencyError",
    "TraversalLimitError",
    "StepError",
    "StepExecutionError",
    "StepTimeoutError",
    "WorkflowFailedError",
    "is_structural",
    "categorize_error",
]
