"""
Deterministic serialization and hashing for cache keys and cost estimates.

Two flow inputs that hold the same data must produce the same cache key no
matter in which order their keys were inserted. ``canonical_json`` gives that
stable text form and ``compute_hash`` / ``make_cache_key`` build on it.

Manifesto:
    Hashing must be:
    - **Deterministic:** Same inputs → same output, always
    - **Order-independent for maps:** ``{"a": 1, "b": 2}`` == ``{"b": 2, "a": 1}``
    - **Collision-resistant:** SHA-256 provides strong guarantees

Examples:
    >>> make_cache_key("checkout", {"b": 2, "a": 1}) == make_cache_key("checkout", {"a": 1, "b": 2})
    True
    >>> make_cache_key("checkout", {"a": 1}).startswith("checkout:")
    True

Tags:
    hashing, cache-key, canonical-json, flowspine

Doc-Types:
    - API Reference
"""

import hashlib
import json
from typing import Any


def _default(value: Any) -> Any:
    """Fallback encoder for values json cannot serialize natively."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    return str(value)


def canonical_json(value: Any) -> str:
    """
    Serialize ``value`` to JSON with sorted keys and no insignificant whitespace.

    Objects exposing ``to_dict()`` are serialized through it; anything else
    json cannot encode falls back to ``str()``.

    >>> canonical_json({"b": [1, 2], "a": None})
    '{"a":null,"b":[1,2]}'
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_default)


def compute_hash(value: Any, length: int = 64) -> str:
    """
    SHA-256 hex digest of the canonical JSON form of ``value``.

    Args:
        value: Any JSON-like value
        length: Hex digest length (default 64 = full digest)
    """
    content = canonical_json(value)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def make_cache_key(flow_id: str, input_data: Any) -> str:
    """Cache key for a flow run: ``"<flow_id>:<sha256 of canonical input>"``."""
    return f"{flow_id}:{compute_hash(input_data)}"


__all__ = ["canonical_json", "compute_hash", "make_cache_key"]
