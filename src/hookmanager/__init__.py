"""Lifecycle event dispatcher for coding-assistant hooks.

Hosts emit events (session start, pre/post tool use, permission requests,
...) and the dispatcher runs the hooks registered for them:
- Selects hooks by matcher and filter, in priority order
- Runs them with timeouts and retries, sequentially or concurrently
- Reports whether any hook asked the host to block its action
"""

from hookmanager.dispatcher import HookDispatcher
from hookmanager.exceptions import (
    ConfigError,
    DecisionBackendError,
    HandlerExecutionError,
    HandlerTimeoutError,
    HookError,
    NotFoundError,
    ValidationError,
)
from hookmanager.models import (
    BatchResult,
    BatchSummary,
    DispatchOptions,
    EventContext,
    ExecutionOutcome,
    ExecutionRecord,
    HookDefinition,
    HookEvent,
    HookFilter,
)
from hookmanager.registry import HookRegistry

__all__ = [
    "HookDispatcher",
    "HookRegistry",
    "HookDefinition",
    "HookEvent",
    "HookFilter",
    "EventContext",
    "DispatchOptions",
    "ExecutionOutcome",
    "ExecutionRecord",
    "BatchResult",
    "BatchSummary",
    "HookError",
    "ValidationError",
    "NotFoundError",
    "HandlerExecutionError",
    "HandlerTimeoutError",
    "DecisionBackendError",
    "ConfigError",
]
