"""MCP tools/list and tools/call handlers.

Runs tool calls through the rate limiter, the executor and the audit log,
and shapes tool return values into MCP call results.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from mcp_switchboard.registry.base import ToolResult
from mcp_switchboard.registry.tools import ToolRegistry
from mcp_switchboard.runtime.executor import (
    ToolCancelledError,
    ToolContext,
    ToolExecutor,
    ToolQueueFullError,
    ToolTimeoutError,
)
from mcp_switchboard.security.audit import AuditLogger
from mcp_switchboard.security.ratelimiter import RateLimiter, RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass
class ToolsListResult:
    """Result of tools/list request."""

    tools: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {"tools": self.tools}


def to_call_result(value: Any) -> ToolResult:
    """Wrap a tool's return value as a single text content item.

    Strings are used verbatim, ``None`` becomes an empty string and other
    values are JSON-encoded. A :class:`ToolResult` is returned unchanged.
    """
    if isinstance(value, ToolResult):
        return value
    if value is None:
        text = ""
    elif isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, ensure_ascii=False, default=str)
    return ToolResult(content=[{"type": "text", "text": text}])


class ToolsHandler:
    """Handles tools/list and tools/call requests.

    ``handle_call`` raises the registry, executor and rate-limit exceptions
    unchanged; mapping them to JSON-RPC errors is the dispatcher's job.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        executor: ToolExecutor | None = None,
        rate_limiter: RateLimiter | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            registry: Registry holding the tools.
            executor: Executor for tool bodies; without one, tools run in
                the calling thread.
            rate_limiter: Optional per-tool rate limiter.
            audit_logger: Optional audit log for calls and denials.
        """
        self._registry = registry
        self._executor = executor
        self._rate_limiter = rate_limiter
        self._audit = audit_logger

    def handle_list(self) -> ToolsListResult:
        return ToolsListResult(tools=self._registry.list_tools())

    def handle_call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        context: ToolContext | None = None,
    ) -> ToolResult:
        """Handle a tools/call request.

        Args:
            name: Name of the tool to call.
            arguments: Tool arguments.
            context: Call context (request id, connection, session, token).

        Returns:
            The shaped call result.

        Raises:
            ToolNotFoundError: If the tool is not registered.
            ToolArgumentError: If the arguments do not bind.
            RateLimitExceeded: If the tool's rate limit is used up.
            ToolExecutionError: If the tool raises.
            ToolTimeoutError: If the tool exceeds the executor timeout.
            ToolQueueFullError: If the executor is saturated.
            ToolCancelledError: If the request is cancelled.
        """
        context = context or ToolContext()
        descriptor, values = self._registry.bind(name, arguments, context)

        if self._rate_limiter is not None:
            try:
                self._rate_limiter.check(name)
            except RateLimitExceeded as e:
                logger.warning("Rate limit hit for tool %s", name)
                if self._audit is not None:
                    self._audit.log_security_event(
                        "rate_limited",
                        {
                            "tool_name": name,
                            "request_id": context.request_id,
                            "connection_id": context.connection_id,
                            "retry_after": round(e.retry_after, 3),
                        },
                    )
                raise

        if self._audit is not None:
            self._audit.log_request(
                context.request_id, name, arguments or {}, connection_id=context.connection_id
            )

        start = time.perf_counter()
        status = "success"
        error: str | None = None
        try:
            if self._executor is None:
                value = self._registry.invoke(descriptor, values)
            else:
                value = self._executor.run(
                    lambda: self._registry.invoke(descriptor, values), context.token
                )
        except ToolTimeoutError as e:
            status, error = "timeout", str(e)
            raise
        except ToolQueueFullError as e:
            status, error = "rejected", str(e)
            raise
        except ToolCancelledError as e:
            status, error = "cancelled", str(e)
            raise
        except Exception as e:
            status, error = "error", str(e)
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            if self._audit is not None:
                self._audit.log_response(context.request_id, name, status, duration_ms, error)
            logger.debug("Tool %s finished: %s in %.1fms", name, status, duration_ms)

        return to_call_result(value)
