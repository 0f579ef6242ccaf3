"""Flow definitions and run records.

Definitions are pydantic models so that a JSON or YAML document is validated
into the same objects a code-first author builds. Run records (instances,
step contexts, results) are plain dataclasses owned by the engines.

Usage::

    from flowspine.orchestration.models import FlowDefinition

    definition = FlowDefinition.from_yaml(yaml_content)
    definition = FlowDefinition.from_dict({
        "id": "signup",
        "name": "Signup",
        "startNode": "validate",
        "nodes": [{"id": "validate", "type": "validation", "label": "Validate"}],
        "edges": [],
    })

Example JSON::

    {
      "id": "signup",
      "name": "Signup",
      "startNode": "validate",
      "nodes": [
        {"id": "validate", "type": "validation", "label": "Validate",
         "config": {"rules": [{"field": "email", "operator": "required"}]}},
        {"id": "greet", "type": "transform", "label": "Greet",
         "config": {"mapping": {"greeting": "$email"}}}
      ],
      "edges": [
        {"id": "e1", "source": "validate", "target": "greet",
         "condition": "isValid === true"}
      ]
    }

Registration validates shape only; edge endpoints and ``startNode`` are
resolved lazily while a flow is traversed.

Tags:
    flowspine, orchestration, pydantic, models

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flowspine.core.errors import (
    ErrorCategory,
    FlowSpineError,
    InvalidFlowDefinitionError,
    StepError,
    categorize_error,
)
from flowspine.core.result import Err, Ok, Result

# =============================================================================
# DEFINITIONS (pydantic)
# =============================================================================


class Node(BaseModel):
    """One step of a flow. ``type`` selects the handler that runs it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    label: str = ""
    description: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0, description="Seconds; engine default when unset")
    retries: int | None = Field(default=None, ge=0)
    depends_on: list[str] = Field(default_factory=list, alias="dependencies")

    @property
    def display_name(self) -> str:
        return self.label or self.id


class Edge(BaseModel):
    """Directed connection between two nodes, optionally guarded by a condition."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    source: str
    target: str
    label: str | None = None
    condition: str | None = None


class FlowDefinition(BaseModel):
    """A named graph of nodes and edges."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    start_node: str = Field(..., alias="startNode")
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> list[Edge]:
        """Edges leaving ``node_id`` in declaration order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the external (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: Any, *, source: str | None = None) -> FlowDefinition:
        """Validate a mapping into a definition.

        Raises:
            InvalidFlowDefinitionError: If the mapping does not match the schema.
        """
        if not isinstance(data, dict):
            raise InvalidFlowDefinitionError(
                f"Flow definition must be a mapping, got {type(data).__name__}",
                source=source,
            )
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidFlowDefinitionError(
                f"Invalid flow definition: {e.error_count()} validation error(s)\n{e}",
                source=source,
            ) from e

    @classmethod
    def from_json(cls, content: str, *, source: str | None = None) -> FlowDefinition:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise InvalidFlowDefinitionError(f"Invalid JSON: {e}", source=source) from e
        return cls.from_dict(data, source=source)

    @classmethod
    def from_yaml(cls, content: str, *, source: str | None = None) -> FlowDefinition:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise InvalidFlowDefinitionError(f"Invalid YAML: {e}", source=source) from e
        return cls.from_dict(data, source=source)


# =============================================================================
# RUN RECORDS (dataclasses)
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(UTC)


class FlowStatus(str, Enum):
    """Lifecycle of a flow instance or orchestrator execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStatus.COMPLETED, FlowStatus.FAILED, FlowStatus.CANCELLED)


@dataclass
class FlowInstance:
    """Mutable state of one in-flight graph traversal."""

    id: str
    flow_id: str
    input: dict[str, Any]
    variables: dict[str, Any]
    status: FlowStatus = FlowStatus.RUNNING
    start_time: datetime = field(default_factory=utcnow)
    current_node: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepContext:
    """What a step handler sees: a private copy of variables plus its config."""

    execution_id: str
    flow_id: str
    node_id: str
    variables: dict[str, Any]
    input: dict[str, Any]
    config: dict[str, Any] = field(default_factory=dict)
    available_resources: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepExecution:
    """Raw dispatcher output for one step."""

    output: Any
    execution_time: float
    memory_usage: int


@dataclass
class NodeOutput:
    """Per-node record kept in ``FlowResult.results``."""

    node_id: str
    type: str
    output: Any
    execution_time: float
    memory_usage: int
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "type": self.type,
            "output": self.output,
            "executionTime": self.execution_time,
            "memoryUsage": self.memory_usage,
            "attempts": self.attempts,
        }


@dataclass
class PerformanceStats:
    nodes_executed: int = 0
    memory_peak: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodesExecuted": self.nodes_executed,
            "memoryPeak": self.memory_peak,
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
        }


@dataclass
class ErrorInfo:
    """Serializable description of the business error that failed a run."""

    error_type: str
    message: str
    category: str
    node_id: str | None = None
    exception: BaseException | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_exception(cls, error: BaseException) -> ErrorInfo:
        node_id = error.node_id if isinstance(error, StepError) else None
        message = error.message if isinstance(error, FlowSpineError) else str(error)
        return cls(
            error_type=type(error).__name__,
            message=message,
            category=categorize_error(error).value,
            node_id=node_id,
            exception=error,
        )

    def to_exception(self) -> BaseException:
        if self.exception is not None:
            return self.exception
        return FlowSpineError(self.message, category=ErrorCategory(self.category))

    def to_dict(self) -> dict[str, Any]:
        result = {"type": self.error_type, "message": self.message, "category": self.category}
        if self.node_id is not None:
            result["nodeId"] = self.node_id
        return result


@dataclass
class FlowResult:
    """Outcome of one ``GraphExecutor.execute_flow`` call."""

    id: str
    flow_id: str
    status: FlowStatus
    start_time: datetime
    end_time: datetime
    execution_path: list[str] = field(default_factory=list)
    results: list[NodeOutput] = field(default_factory=list)
    output: dict[str, Any] = field(default_factory=dict)
    memory_usage: int = 0
    performance: PerformanceStats = field(default_factory=PerformanceStats)
    error: ErrorInfo | None = None
    from_cache: bool = False

    @property
    def execution_time(self) -> float:
        """Wall-clock duration in seconds."""
        return (self.end_time - self.start_time).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.status == FlowStatus.COMPLETED

    def cached_copy(self) -> FlowResult:
        """Deep copy flagged as served from cache, with one more cache hit counted."""
        clone = copy.deepcopy(self)
        return replace(
            clone,
            from_cache=True,
            performance=replace(clone.performance, cache_hits=clone.performance.cache_hits + 1),
        )

    def to_result(self) -> Result[FlowResult]:
        """``Ok(self)`` when completed, ``Err(step error)`` when a step failed."""
        if self.error is None and self.succeeded:
            return Ok(self)
        if self.error is not None:
            return Err(self.error.to_exception())
        return Err(FlowSpineError(f"Flow {self.flow_id} ended with status {self.status.value}"))

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the external (camelCase) field names."""
        result = {
            "id": self.id,
            "flowId": self.flow_id,
            "status": self.status.value,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "executionTime": self.execution_time,
            "executionPath": list(self.execution_path),
            "results": [r.to_dict() for r in self.results],
            "output": self.output,
            "memoryUsage": self.memory_usage,
            "performance": self.performance.to_dict(),
            "fromCache": self.from_cache,
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


@dataclass
class ExecutionContext:
    """State of one ``AsyncOrchestrator`` workflow execution."""

    id: str
    workflow_id: str
    status: FlowStatus = FlowStatus.PENDING
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    progress: int = 0
    current_step: str = ""
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    error: ErrorInfo | None = field(default=None, repr=False)

    @classmethod
    def empty(cls) -> ExecutionContext:
        """Synthetic context handed to predicates before anything has run."""
        return cls(id="", workflow_id="")

    @property
    def duration_seconds(self) -> float | None:
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    @property
    def output(self) -> dict[str, Any]:
        return self.metadata.get("output") or {}

    def to_result(self) -> Result[ExecutionContext]:
        if self.status == FlowStatus.COMPLETED:
            return Ok(self)
        if self.error is not None:
            return Err(self.error.to_exception())
        message = self.errors[-1] if self.errors else f"Execution ended with status {self.status.value}"
        return Err(FlowSpineError(message))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "durationSeconds": self.duration_seconds,
            "progress": self.progress,
            "currentStep": self.current_step,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "metadata": self.metadata,
        }


__all__ = [
    "Node",
    "Edge",
    "FlowDefinition",
    "FlowStatus",
    "FlowInstance",
    "StepContext",
    "StepExecution",
    "NodeOutput",
    "PerformanceStats",
    "ErrorInfo",
    "FlowResult",
    "ExecutionContext",
]
