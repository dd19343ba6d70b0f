"""Business logic services for relay-server.

This package contains the invocation loop that drives the model through
tool calls and the concurrency limiter bounding its provider requests and
tool executions.
"""

from relay_server.services.limiter import ConcurrencyLimiter
from relay_server.services.orchestrator import (
    LoopEvent,
    LoopOutcome,
    LoopState,
    Orchestrator,
)

__all__ = [
    "ConcurrencyLimiter",
    "LoopEvent",
    "LoopOutcome",
    "LoopState",
    "Orchestrator",
]
