"""
FlowSpine Orchestration — flow and workflow execution engines.

WHY
───
A flow is a graph of typed nodes connected by (optionally conditional) edges.
Two engines run flows: the GraphExecutor follows edges one node at a time,
the AsyncOrchestrator runs a workflow's steps in declaration order with
progress tracking, cancellation and compositions. StepChain covers the
code-first case where no graph is needed.

ARCHITECTURE
────────────
::

    FlowDefinition (nodes + edges, pydantic)
      ├── loader.py            ─ JSON / YAML files → FlowDefinition
      └── models.py            ─ definitions + run records

    StepDispatcher             ─ node.type → handler
      └── handlers.py          ─ validation / transform / condition / wait
    expressions.py             ─ sandboxed edge/condition expressions

    GraphExecutor              ─ edge traversal, result cache, resources
    AsyncOrchestrator          ─ sequential steps, progress, compositions
    StepChain                  ─ fluent handler chain with middleware
    FlowMonitor                ─ event-driven live view

MODULE MAP (recommended reading order)
──────────────────────────────────────
1. models.py
2. expressions.py
3. handlers.py
4. dispatcher.py
5. graph_executor.py
6. async_orchestrator.py
7. step_chain.py
8. monitor.py
9. loader.py

Example:
    from flowspine.orchestration import GraphExecutor, FlowDefinition

    executor = GraphExecutor()
    executor.register_flow(FlowDefinition.from_yaml(content))
    result = await executor.execute_flow("signup", {"email": "a@b.co"})
"""

from flowspine.orchestration.async_orchestrator import AsyncOrchestrator, WorkflowCondition
from flowspine.orchestration.dispatcher import (
    INTEGRATION_TYPES,
    CostEstimator,
    IntegrationAdapter,
    SerializedSizeEstimator,
    StepDispatcher,
    StepHandler,
)
from flowspine.orchestration.expressions import evaluate, evaluate_condition
from flowspine.orchestration.graph_executor import ExecutorMetrics, GraphExecutor
from flowspine.orchestration.loader import flow_to_yaml, load_flow_definition, load_flow_directory
from flowspine.orchestration.models import (
    Edge,
    ErrorInfo,
    ExecutionContext,
    FlowDefinition,
    FlowInstance,
    FlowResult,
    FlowStatus,
    Node,
    NodeOutput,
    StepContext,
    StepExecution,
)
from flowspine.orchestration.monitor import FlowMonitor
from flowspine.orchestration.step_chain import ChainContext, ChainResult, StepChain

__all__ = [
    # Engines
    "GraphExecutor",
    "ExecutorMetrics",
    "AsyncOrchestrator",
    "WorkflowCondition",
    "StepChain",
    "ChainContext",
    "ChainResult",
    "FlowMonitor",
    # Dispatch
    "StepDispatcher",
    "StepHandler",
    "IntegrationAdapter",
    "CostEstimator",
    "SerializedSizeEstimator",
    "INTEGRATION_TYPES",
    # Expressions
    "evaluate",
    "evaluate_condition",
    # Models
    "Node",
    "Edge",
    "FlowDefinition",
    "FlowStatus",
    "FlowInstance",
    "StepContext",
    "StepExecution",
    "NodeOutput",
    "ErrorInfo",
    "FlowResult",
    "ExecutionContext",
    # Loading
    "load_flow_definition",
    "load_flow_directory",
    "flow_to_yaml",
]
