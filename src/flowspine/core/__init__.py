"""FlowSpine Core -- primitives shared by every engine.

Architecture::

    errors.py      Structured error hierarchy (FlowSpineError, is_structural)
    result.py      Ok / Err outcome envelope
    settings.py    FlowSettings (pydantic-settings, FLOWSPINE_ prefix)
    logging.py     structlog configuration and context binding
    events.py      Event + synchronous EventBus, lifecycle event names
    hashing.py     Canonical JSON, sha256 cache keys
    cache.py       ResultCache (thread-safe LRU + TTL)
    resources.py   ResourceTracker (advisory per-contributor usage)
"""

from flowspine.core.cache import CacheEntry, CacheStats, ResultCache
from flowspine.core.errors import (
    ErrorCategory,
    ErrorContext,
    ExecutionNotFoundError,
    FlowNotFoundError,
    FlowSpineError,
    InvalidExpressionError,
    InvalidFlowDefinitionError,
    NodeNotFoundError,
    StepError,
    StepExecutionError,
    StepTimeoutError,
    TraversalLimitError,
    UnknownNodeTypeError,
    UnmetDependencyError,
    WorkflowFailedError,
    is_structural,
)
from flowspine.core.events import Event, EventBus
from flowspine.core.hashing import canonical_json, make_cache_key
from flowspine.core.resources import ResourceTracker
from flowspine.core.result import Err, Ok, Result
from flowspine.core.settings import FlowSettings, get_settings

__all__ = [
    "CacheEntry",
    "CacheStats",
    "ResultCache",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionNotFoundError",
    "FlowNotFoundError",
    "FlowSpineError",
    "InvalidExpressionError",
    "InvalidFlowDefinitionError",
    "NodeNotFoundError",
    "StepError",
    "StepExecutionError",
    "StepTimeoutError",
    "TraversalLimitError",
    "UnknownNodeTypeError",
    "UnmetDependencyError",
    "WorkflowFailedError",
    "is_structural",
    "Event",
    "EventBus",
    "canonical_json",
    "make_cache_key",
    "ResourceTracker",
    "Err",
    "Ok",
    "Result",
    "FlowSettings",
    "get_settings",
]
