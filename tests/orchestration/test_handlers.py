"""Tests for the built-in step handlers (validation, transform, condition, wait)."""

import pytest

from flowspine.orchestration.handlers import (
    VALIDATION_OPERATORS,
    check_rule,
    condition_handler,
    resolve_mapping,
    transform_handler,
    validation_handler,
    wait_handler,
)
from flowspine.orchestration.models import StepContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_context(config: dict, variables: dict) -> StepContext:
    return StepContext(
        execution_id="exec-1",
        flow_id="flow-1",
        node_id="node-1",
        variables=variables,
        input=dict(variables),
        config=config,
    )


class TestValidationRules:
    @pytest.mark.parametrize(
        "rule,variables,expected",
        [
            ({"field": "email", "operator": "required"}, {"email": "a@b.co"}, True),
            ({"field": "email", "operator": "required"}, {"email": ""}, False),
            ({"field": "email", "operator": "required"}, {}, False),
            ({"field": "age", "operator": "equals", "value": 3}, {"age": 3}, True),
            ({"field": "age", "operator": "not_equals", "value": 3}, {"age": 4}, True),
            ({"field": "age", "operator": "greater_than", "value": 17}, {"age": 18}, True),
            ({"field": "age", "operator": "greater_than", "value": 17}, {}, False),
            ({"field": "age", "operator": "less_than", "value": 10}, {"age": 3}, True),
            ({"field": "tags", "operator": "contains", "value": "vip"}, {"tags": ["vip"]}, True),
            ({"field": "tags", "operator": "contains", "value": "vip"}, {}, False),
            ({"field": "email", "operator": "email"}, {"email": "ada@example.com"}, True),
            ({"field": "email", "operator": "email"}, {"email": "not-an-email"}, False),
            ({"field": "name", "operator": "min_length", "value": 3}, {"name": "ada"}, True),
            ({"field": "name", "operator": "max_length", "value": 2}, {"name": "ada"}, False),
            ({"field": "user.name", "operator": "required"}, {"user": {"name": "x"}}, True),
        ],
    )
    def test_check_rule(self, rule, variables, expected):
        assert check_rule(rule, variables) is expected

    def test_unknown_operator_passes(self):
        assert check_rule({"field": "x", "operator": "telepathy"}, {}) is True

    def test_operator_catalog(self):
        assert "email" in VALIDATION_OPERATORS
        assert "required" in VALIDATION_OPERATORS


class TestValidationHandler:
    def test_failures_are_data(self):
        """A failing rule is reported in the output, never raised."""
        ctx = make_context(
            {
                "rules": [
                    {"field": "email", "operator": "required", "message": "Email is required"},
                    {"field": "age", "operator": "greater_than", "value": 17},
                ]
            },
            {"age": 12},
        )
        assert validation_handler(ctx) == {
            "isValid": False,
            "errors": ["Email is required", "age failed greater_than validation"],
        }

    def test_no_rules_is_valid(self):
        assert validation_handler(make_context({}, {})) == {"isValid": True, "errors": []}


class TestTransformHandler:
    def test_mapping_resolves_variables(self):
        ctx = make_context(
            {"mapping": {"contact": "$email", "city": "$address.city", "source": "web"}},
            {"email": "a@b.co", "address": {"city": "Oslo"}},
        )
        assert transform_handler(ctx) == {"contact": "a@b.co", "city": "Oslo", "source": "web"}

    def test_nested_templates_and_missing_values(self):
        template = {"user": {"id": "$id", "tags": ["$tag", "static"]}, "gone": "$missing"}
        assert resolve_mapping(template, {"id": 7, "tag": "x"}) == {
            "user": {"id": 7, "tags": ["x", "static"]},
            "gone": None,
        }

    def test_resolved_values_are_copies(self):
        variables = {"items": [1, 2]}
        result = resolve_mapping({"copy": "$items"}, variables)
        result["copy"].append(3)
        assert variables["items"] == [1, 2]


class TestConditionHandler:
    def test_true_and_false_values(self):
        config = {"condition": "score > 50", "trueValue": {"tier": "gold"}, "falseValue": {"tier": "basic"}}
        assert condition_handler(make_context(config, {"score": 80})) == {"tier": "gold"}
        assert condition_handler(make_context(config, {"score": 10})) == {"tier": "basic"}

    def test_defaults_to_booleans(self):
        assert condition_handler(make_context({"condition": "ok"}, {"ok": True})) is True
        assert condition_handler(make_context({"condition": "ok"}, {"ok": False})) is False


class TestWaitHandler:
    @pytest.mark.asyncio
    async def test_waits_milliseconds(self):
        result = await wait_handler(make_context({"duration": 5}, {}))
        assert result == {"waited": 5}

    @pytest.mark.asyncio
    async def test_missing_duration(self):
        assert await wait_handler(make_context({}, {})) == {"waited": 0}
