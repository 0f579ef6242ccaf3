"""
FlowSpine - graph flow execution and async workflow orchestration.

Subpackages:
- flowspine.core: errors, results, settings, logging, events, cache, resources
- flowspine.execution: retry and timeout primitives
- flowspine.orchestration: models, dispatcher, GraphExecutor, AsyncOrchestrator,
  StepChain, FlowMonitor, definition loading
"""

__version__ = "0.1.0"

from flowspine.core import *  # noqa
from flowspine.orchestration import *  # noqa
