"""Built-in step handlers: validation, transform, condition, wait.

Each handler takes a :class:`StepContext` and returns JSON-like output.
``StepDispatcher`` registers these four by default; integration types
(``api_call``, ``database_query``, ...) are supplied by the host application.

Validation failures are data, not exceptions::

    rules:
      - {field: email, operator: required, message: "Email is required"}
      - {field: age, operator: greater_than, value: 17}

    → {"isValid": False, "errors": ["Email is required"]}
"""

from __future__ import annotations

import asyncio
import copy
import re
from collections.abc import Callable, Mapping
from typing import Any

from flowspine.core.logging import get_logger
from flowspine.orchestration.expressions import evaluate_condition, lookup_path
from flowspine.orchestration.models import StepContext

logger = get_logger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# validation
# ---------------------------------------------------------------------------


def _has_length(value: Any) -> bool:
    return bool(value) and hasattr(value, "__len__")


_RULES: dict[str, Callable[[Any, Any], bool]] = {
    "required": lambda v, _: v is not None and v != "",
    "equals": lambda v, expected: v == expected,
    "not_equals": lambda v, expected: v != expected,
    "greater_than": lambda v, limit: v > limit,
    "less_than": lambda v, limit: v < limit,
    "contains": lambda v, needle: bool(v) and needle in v,
    "email": lambda v, _: isinstance(v, str) and _EMAIL_RE.match(v) is not None,
    "min_length": lambda v, n: _has_length(v) and len(v) >= n,
    "max_length": lambda v, n: _has_length(v) and len(v) <= n,
}

VALIDATION_OPERATORS = frozenset(_RULES)


def check_rule(rule: Mapping[str, Any], variables: Mapping[str, Any]) -> bool:
    """Return True when ``rule`` holds for ``variables``.

    Unknown operators pass (with a warning). A comparison between
    incompatible types (``None > 3``) fails the rule.
    """
    operator = rule.get("operator")
    check = _RULES.get(operator)
    if check is None:
        logger.warning("validation.unknown_operator", operator=operator, field=rule.get("field"))
        return True

    field_value = lookup_path(variables, str(rule.get("field", "")))
    try:
        return bool(check(field_value, rule.get("value")))
    except TypeError:
        return False


def validation_handler(context: StepContext) -> dict[str, Any]:
    errors: list[str] = []
    for rule in context.config.get("rules", []):
        if not check_rule(rule, context.variables):
            errors.append(
                rule.get("message") or f"{rule.get('field')} failed {rule.get('operator')} validation"
            )
    return {"isValid": not errors, "errors": errors}


# ---------------------------------------------------------------------------
# transform
# ---------------------------------------------------------------------------


def resolve_mapping(template: Any, variables: Mapping[str, Any]) -> Any:
    """Build a value from ``template``, replacing ``"$name"`` / ``"$a.b"`` strings.

    Dicts and lists are walked recursively; other values are copied.
    """
    if isinstance(template, str) and template.startswith("$") and len(template) > 1:
        return copy.deepcopy(lookup_path(variables, template[1:]))
    if isinstance(template, Mapping):
        return {key: resolve_mapping(value, variables) for key, value in template.items()}
    if isinstance(template, list):
        return [resolve_mapping(item, variables) for item in template]
    return copy.deepcopy(template)


def transform_handler(context: StepContext) -> dict[str, Any]:
    return resolve_mapping(context.config.get("mapping", {}), context.variables)


# ---------------------------------------------------------------------------
# condition / wait
# ---------------------------------------------------------------------------


def condition_handler(context: StepContext) -> Any:
    config = context.config
    matched = evaluate_condition(config.get("condition", ""), context.variables)
    if matched:
        return config.get("trueValue", True)
    return config.get("falseValue", False)


async def wait_handler(context: StepContext) -> dict[str, Any]:
    """Sleep for ``config.duration`` milliseconds."""
    duration = context.config.get("duration", 0) or 0
    await asyncio.sleep(max(0, duration) / 1000)
    return {"waited": duration}


def default_handlers() -> dict[str, Callable[[StepContext], Any]]:
    """Fresh mapping of the built-in node types to their handlers."""
    return {
        "validation": validation_handler,
        "transform": transform_handler,
        "condition": condition_handler,
        "wait": wait_handler,
    }


__all__ = [
    "VALIDATION_OPERATORS",
    "check_rule",
    "validation_handler",
    "resolve_mapping",
    "transform_handler",
    "condition_handler",
    "wait_handler",
    "default_handlers",
]
