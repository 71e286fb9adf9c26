"""Execution runtime: tool executor, cancellation and per-connection lanes."""

from mcp_switchboard.runtime.executor import (
    CancellationToken,
    ToolCancelledError,
    ToolContext,
    ToolExecutor,
    ToolQueueFullError,
    ToolTimeoutError,
)
from mcp_switchboard.runtime.lanes import SerialLane

__all__ = [
    "CancellationToken",
    "SerialLane",
    "ToolCancelledError",
    "ToolContext",
    "ToolExecutor",
    "ToolQueueFullError",
    "ToolTimeoutError",
]
