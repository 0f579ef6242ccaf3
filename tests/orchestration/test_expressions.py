"""
Tests for flowspine.orchestration.expressions.

Covers:
- JS-style and Python-style operators
- Variable lookup ($name, dotted paths, the ``variables`` alias)
- Rejection of unsafe syntax without ever evaluating it
- Runtime faults turning a condition false
"""

import pytest

from flowspine.core.errors import InvalidExpressionError
from flowspine.orchestration.expressions import (
    compile_expression,
    evaluate,
    evaluate_condition,
    lookup_path,
)


class TestOperators:
    @pytest.mark.parametrize(
        "expression,variables,expected",
        [
            ("isValid === true", {"isValid": True}, True),
            ("isValid === true", {"isValid": False}, False),
            ("status !== 'blocked'", {"status": "active"}, True),
            ("a > 1 && b < 5", {"a": 2, "b": 3}, True),
            ("a > 1 && b < 5", {"a": 0, "b": 3}, False),
            ("a > 1 || b < 5", {"a": 0, "b": 3}, True),
            ("!flag", {"flag": False}, True),
            ("!flag", {"flag": True}, False),
            ("a != b", {"a": 1, "b": 2}, True),
            ("x >= 18 and x <= 65", {"x": 30}, True),
            ("role in ['admin', 'owner']", {"role": "owner"}, True),
            ("role not in ['admin']", {"role": "guest"}, True),
            ("1 < x < 3", {"x": 2}, True),
        ],
    )
    def test_conditions(self, expression, variables, expected):
        assert evaluate_condition(expression, variables) is expected

    def test_arithmetic(self):
        assert evaluate("price * qty + 1", {"price": 2, "qty": 4}) == 9
        assert evaluate("-x", {"x": 3}) == -3

    def test_strings_are_not_rewritten(self):
        assert evaluate("note == 'a && b'", {"note": "a && b"}) is True

    def test_short_circuit_returns_operand(self):
        assert evaluate("name || 'anonymous'", {}) == "anonymous"


class TestVariables:
    def test_missing_variable_is_none(self):
        assert evaluate_condition("missing == null", {}) is True
        assert evaluate_condition("missing === undefined", {}) is True

    def test_dollar_prefix(self):
        assert evaluate_condition("$count > 2", {"count": 3}) is True

    def test_nested_attribute_and_subscript(self):
        variables = {"user": {"profile": {"name": "ada"}}, "items": [10, 20]}
        assert evaluate("user.profile.name", variables) == "ada"
        assert evaluate("user['profile']['name']", variables) == "ada"
        assert evaluate("items[1]", variables) == 20
        assert evaluate("user.missing.deeper", variables) is None

    def test_variables_alias(self):
        assert evaluate_condition("variables.flags.dryRun", {"flags": {"dryRun": True}}) is True


class TestSafety:
    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os').system('echo hi')",
            "open('/etc/passwd')",
            "[x for x in items]",
            "lambda: 1",
            "user.__class__",
            "a = 1",
            "a ==",
        ],
    )
    def test_rejected(self, expression):
        with pytest.raises(InvalidExpressionError):
            compile_expression(expression)

    def test_empty_expression_rejected(self):
        with pytest.raises(InvalidExpressionError):
            evaluate_condition("   ", {})

    def test_runtime_type_error_is_false(self):
        assert evaluate_condition("age > 3", {"age": None}) is False

    def test_division_by_zero_is_false(self):
        assert evaluate_condition("total / count > 1", {"total": 5, "count": 0}) is False


class TestLookupPath:
    def test_mapping_and_list_segments(self):
        data = {"a": {"b": [{"c": 1}]}}
        assert lookup_path(data, "a.b.0.c") == 1
        assert lookup_path(data, "a.b.5") is None
        assert lookup_path(data, "a.x.y") is None
