"""Tests for StepDispatcher — handler registry, wrapping and cost estimates."""

import pytest

from flowspine.core.errors import (
    InvalidExpressionError,
    StepExecutionError,
    UnknownNodeTypeError,
    WorkflowFailedError,
)
from flowspine.orchestration.dispatcher import (
    IntegrationAdapter,
    SerializedSizeEstimator,
    StepDispatcher,
    normalize_output,
)
from flowspine.orchestration.models import Node, StepContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_context(node: Node, variables: dict | None = None) -> StepContext:
    variables = variables or {}
    return StepContext(
        execution_id="exec-1",
        flow_id="flow-1",
        node_id=node.id,
        variables=variables,
        input=dict(variables),
        config=node.config,
    )


class EchoAdapter:
    async def __call__(self, context: StepContext) -> dict:
        return {"echo": context.config.get("payload")}


class TestRegistry:
    def test_builtin_handlers(self):
        dispatcher = StepDispatcher()
        assert dispatcher.handler_types() == ["condition", "transform", "validation", "wait"]

    def test_without_defaults(self):
        assert StepDispatcher(include_defaults=False).handler_types() == []

    def test_register_and_unregister(self):
        dispatcher = StepDispatcher()
        dispatcher.register_handler("api_call", lambda ctx: {"status": 200})
        assert dispatcher.has_handler("api_call")
        assert dispatcher.unregister_handler("api_call") is True
        assert dispatcher.unregister_handler("api_call") is False

    def test_adapter_protocol(self):
        assert isinstance(EchoAdapter(), IntegrationAdapter)


class TestExecute:
    @pytest.mark.asyncio
    async def test_unknown_type_is_structural(self):
        dispatcher = StepDispatcher()
        node = Node(id="n1", type="teleport")
        with pytest.raises(UnknownNodeTypeError) as exc_info:
            await dispatcher.execute(node, make_context(node))
        assert exc_info.value.message == "No handler found for node type: teleport"

    @pytest.mark.asyncio
    async def test_sync_handler(self):
        dispatcher = StepDispatcher()
        dispatcher.register_handler("double", lambda ctx: {"value": ctx.variables["x"] * 2})
        node = Node(id="n1", type="double")

        execution = await dispatcher.execute(node, make_context(node, {"x": 21}))

        assert execution.output == {"value": 42}
        assert execution.execution_time >= 0
        # {"value":42} → 12 chars × 2
        assert execution.memory_usage == 24

    @pytest.mark.asyncio
    async def test_async_adapter(self):
        dispatcher = StepDispatcher()
        dispatcher.register_handler("api_call", EchoAdapter())
        node = Node(id="call", type="api_call", config={"payload": "hi"})

        execution = await dispatcher.execute(node, make_context(node))
        assert execution.output == {"echo": "hi"}

    @pytest.mark.asyncio
    async def test_handler_exception_is_wrapped(self):
        async def broken(ctx):
            raise KeyError("email")

        dispatcher = StepDispatcher()
        dispatcher.register_handler("broken", broken)
        node = Node(id="b", type="broken")

        with pytest.raises(StepExecutionError) as exc_info:
            await dispatcher.execute(node, make_context(node))

        err = exc_info.value
        assert err.node_id == "b"
        assert isinstance(err.__cause__, KeyError)
        assert err.message.startswith("Node execution failed: b")

    @pytest.mark.asyncio
    async def test_structural_errors_pass_through(self):
        dispatcher = StepDispatcher()
        node = Node(id="c", type="condition", config={"condition": "a ==="})
        with pytest.raises(InvalidExpressionError):
            await dispatcher.execute(node, make_context(node))

    @pytest.mark.asyncio
    async def test_non_structural_library_errors_are_wrapped(self):
        async def nested(ctx):
            raise WorkflowFailedError("billing", None)

        dispatcher = StepDispatcher()
        dispatcher.register_handler("nested", nested)
        node = Node(id="n", type="nested")

        with pytest.raises(StepExecutionError) as exc_info:
            await dispatcher.execute(node, make_context(node))

        assert exc_info.value.node_id == "n"
        assert isinstance(exc_info.value.__cause__, WorkflowFailedError)

    @pytest.mark.asyncio
    async def test_custom_cost_estimator(self):
        class Flat:
            def estimate(self, node, output):
                return 7

        dispatcher = StepDispatcher(cost_estimator=Flat())
        node = Node(id="w", type="wait", config={"duration": 0})
        execution = await dispatcher.execute(node, make_context(node))
        assert execution.memory_usage == 7


class TestHelpers:
    def test_normalize_output(self):
        assert normalize_output("n", {"a": 1}) == {"a": 1}
        assert normalize_output("n", True) == {"n": True}
        assert normalize_output("n", None) == {"n": None}

    def test_size_estimator_unserializable_falls_back_to_str(self):
        node = Node(id="n", type="x")
        assert SerializedSizeEstimator(bytes_per_char=1).estimate(node, object()) > 0
