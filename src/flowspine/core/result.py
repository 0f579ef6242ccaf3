"""
Ok / Err envelope for step and flow outcomes.

Business failures in flowspine are *returned*, not raised: a failed step
produces ``FlowResult(status="failed")``, ``ExecutionContext(status="failed")``
or ``ChainResult(success=False)``. Each exposes ``to_result()``, which turns
the outcome into an ``Ok`` carrying the outcome or an ``Err`` carrying the
step error, so callers can branch without inspecting status strings.

Examples:
    >>> result = await executor.execute_flow("signup", payload)
    >>> outcome = result.to_result()
    >>> outcome.map(lambda r: r.output["greeting"]).unwrap_or("anonymous")

Tags:
    result-pattern, error-handling, flowspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from flowspine.core.errors import FlowSpineError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """A successful outcome."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Ok(f(self.value))

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """A failed outcome holding the error that ended it."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the held error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Err(self.error)

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.error, FlowSpineError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {"error_type": type(self.error).__name__, "message": str(self.error)},
        }


Result = Ok[T] | Err[T]


__all__ = ["Ok", "Err", "Result"]
