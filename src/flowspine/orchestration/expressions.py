"""
Sandboxed evaluator for edge conditions and ``condition`` steps.

Conditions are small boolean expressions over the flow's variables, written
in either JavaScript-ish or Python-ish syntax::

    isValid === true && age >= 18
    $status != "blocked" or user.role in ["admin", "owner"]
    !variables.flags.dryRun

Nothing is ever ``eval``'d. The expression is first rewritten token by token
into Python syntax, parsed with :func:`ast.parse` in ``eval`` mode, checked
against a whitelist of node types, and then interpreted by walking the tree.
Only variable lookup, literals, comparisons, boolean and arithmetic
operators are available: no calls, no attribute access on objects, no
comprehensions, no lambdas.

Architecture:
    ::

        "a === 1 && !$b"
            │  _translate()     ===→==  &&→and  !→not  $b→b  true→True
            ▼
        "a == 1 and not b"
            │  ast.parse(mode="eval") + whitelist   → InvalidExpressionError
            ▼
        ast.Expression
            │  _Interpreter.visit(variables)        → value
            ▼
        evaluate_condition()  → bool (runtime faults → False + warning)

Semantics:
    - A missing variable evaluates to ``None``
    - ``a.b`` and ``a["b"]`` read nested mappings; missing keys give ``None``
    - ``variables`` is an alias for the whole variable mapping
    - ``and`` / ``or`` short-circuit and return operands, like Python

Examples:
    >>> evaluate_condition("isValid === true && count > 2", {"isValid": True, "count": 3})
    True
    >>> evaluate_condition("user.name == 'ada'", {"user": {"name": "ada"}})
    True
    >>> evaluate_condition("missing == null", {})
    True
    >>> evaluate("price * qty", {"price": 2, "qty": 4})
    8

Guardrails:
    ❌ DON'T: Fall back to ``eval`` for "unsupported" syntax
    ✅ DO: Extend the whitelist and the interpreter together

Tags:
    expressions, sandbox, ast, conditions, flowspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from flowspine.core.errors import InvalidExpressionError
from flowspine.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(
    r"""
    (?P<string>'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")
  | (?P<op>===|!==|&&|\|\||!(?!=))
  | (?P<var>\$[A-Za-z_][A-Za-z0-9_]*)
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_OP_REWRITES = {"===": "==", "!==": "!=", "&&": " and ", "||": " or ", "!": " not "}
_NAME_REWRITES = {"true": "True", "false": "False", "null": "None", "undefined": "None"}

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Expression,
    ast.BoolOp, ast.And, ast.Or,
    ast.UnaryOp, ast.Not, ast.USub, ast.UAdd,
    ast.BinOp, ast.Add, ast.Sub, ast.Mult, ast.Div, ast.FloorDiv, ast.Mod,
    ast.Compare, ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.In, ast.NotIn, ast.Is, ast.IsNot,
    ast.Name, ast.Load, ast.Constant,
    ast.Attribute, ast.Subscript,
    ast.List, ast.Tuple,
)

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

# Faults raised while interpreting a well-formed expression against bad data.
RUNTIME_ERRORS = (TypeError, ValueError, ZeroDivisionError, IndexError, KeyError, OverflowError)


def _translate(expression: str) -> str:
    parts: list[str] = []
    for match in _TOKEN_RE.finditer(expression):
        kind = match.lastgroup
        text = match.group()
        if kind == "op":
            parts.append(_OP_REWRITES[text])
        elif kind == "var":
            parts.append(text[1:])
        elif kind == "name":
            parts.append(_NAME_REWRITES.get(text, text))
        else:
            parts.append(text)
    return "".join(parts).strip()


@lru_cache(maxsize=512)
def compile_expression(expression: str) -> ast.Expression:
    """Parse and whitelist-check ``expression``.

    Raises:
        InvalidExpressionError: On syntax errors or forbidden constructs.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidExpressionError(str(expression), "empty expression")

    source = _translate(expression)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise InvalidExpressionError(expression, f"syntax error: {e.msg}") from e

    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise InvalidExpressionError(
                expression, f"{type(node).__name__} is not allowed"
            )
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise InvalidExpressionError(expression, f"private attribute {node.attr!r}")
    return tree


def lookup_path(variables: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path (``"user.address.city"``) in nested mappings.

    Missing segments resolve to ``None``.
    """
    current: Any = variables
    for segment in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


class _Interpreter:
    """Walks a whitelisted expression tree against a variable mapping."""

    def __init__(self, variables: Mapping[str, Any]):
        self.variables = variables

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id == "variables" and "variables" not in self.variables:
            return self.variables
        return self.variables.get(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        base = self.visit(node.value)
        if isinstance(base, Mapping):
            return base.get(node.attr)
        return None

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        base = self.visit(node.value)
        key = self.visit(node.slice)
        if base is None:
            return None
        if isinstance(base, Mapping):
            return base.get(key)
        return base[key]

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        is_and = isinstance(node.op, ast.And)
        value: Any = None
        for operand in node.values:
            value = self.visit(operand)
            if is_and and not value:
                return value
            if not is_and and value:
                return value
        return value

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return _UNARY_OPS[type(node.op)](self.visit(node.operand))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        return _BIN_OPS[type(node.op)](self.visit(node.left), self.visit(node.right))

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True


def evaluate(expression: str, variables: Mapping[str, Any]) -> Any:
    """Evaluate ``expression`` and return its value.

    Raises:
        InvalidExpressionError: If the expression is malformed or forbidden.
        TypeError, ZeroDivisionError, ...: If the data does not fit the expression.
    """
    tree = compile_expression(expression)
    return _Interpreter(variables).visit(tree)


def evaluate_condition(expression: str, variables: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` as a boolean.

    Malformed expressions raise :class:`InvalidExpressionError`; a runtime
    fault (e.g. comparing ``None < 3``) makes the condition false and is
    logged as a warning.
    """
    try:
        return bool(evaluate(expression, variables))
    except RUNTIME_ERRORS as e:
        logger.warning(
            "expression.runtime_error",
            expression=expression,
            error=str(e),
            error_type=type(e).__name__,
        )
        return False


__all__ = [
    "compile_expression",
    "evaluate",
    "evaluate_condition",
    "lookup_path",
]
