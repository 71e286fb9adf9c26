"""Request dispatcher - routes parsed JSON-RPC messages to MCP handlers.

This is the one place where domain exceptions are mapped onto JSON-RPC
error codes. Nothing raised by a handler reaches the wire as a traceback.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from typing import TYPE_CHECKING, Any

from mcp_switchboard.protocol.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PROMPT_NOT_FOUND,
    RATE_LIMITED,
    REQUEST_CANCELLED,
    RESOURCE_NOT_FOUND,
    TOOL_NOT_FOUND,
    TOOL_QUEUE_FULL,
    TOOL_TIMEOUT,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Message,
    RequestId,
    error_message,
    format_error,
    format_response,
    parse_message,
)
from mcp_switchboard.protocol.lifecycle import Lifecycle
from mcp_switchboard.protocol.tools import ToolsHandler
from mcp_switchboard.registry.prompts import (
    PromptArgumentError,
    PromptNotFoundError,
    PromptRegistry,
    PromptRenderError,
)
from mcp_switchboard.registry.resources import (
    ResourceNotFoundError,
    ResourceReadError,
    ResourceRegistry,
)
from mcp_switchboard.registry.tools import (
    ToolArgumentError,
    ToolExecutionError,
    ToolNotFoundError,
)
from mcp_switchboard.runtime.executor import (
    CancellationToken,
    ToolCancelledError,
    ToolContext,
    ToolQueueFullError,
    ToolTimeoutError,
)
from mcp_switchboard.security.ratelimiter import RateLimitExceeded

if TYPE_CHECKING:
    from mcp_switchboard.state.sessions import Session

logger = logging.getLogger(__name__)

CANCEL_NOTIFICATIONS = frozenset({"notifications/cancelled", "notifications/cancel"})

Handler = Callable[[dict[str, Any], ToolContext], Any]


def _error_response(request_id: RequestId | None, error: Exception) -> str:
    """Map a handler exception onto a JSON-RPC error response."""
    if isinstance(error, JsonRpcError):
        return format_error(request_id, error.code, error.message, error.data)
    if isinstance(error, ToolNotFoundError):
        return format_error(request_id, TOOL_NOT_FOUND, str(error))
    if isinstance(error, ToolArgumentError | PromptArgumentError):
        return format_error(request_id, INVALID_PARAMS, str(error))
    if isinstance(error, ToolExecutionError):
        return format_error(request_id, INTERNAL_ERROR, str(error), error.original_message)
    if isinstance(error, ToolTimeoutError):
        return format_error(request_id, TOOL_TIMEOUT, str(error))
    if isinstance(error, ToolQueueFullError):
        return format_error(request_id, TOOL_QUEUE_FULL, str(error))
    if isinstance(error, ToolCancelledError):
        return format_error(request_id, REQUEST_CANCELLED, str(error))
    if isinstance(error, RateLimitExceeded):
        return format_error(
            request_id, RATE_LIMITED, str(error), {"retryAfter": round(error.retry_after, 3)}
        )
    if isinstance(error, ResourceNotFoundError):
        return format_error(request_id, RESOURCE_NOT_FOUND, str(error))
    if isinstance(error, PromptNotFoundError):
        return format_error(request_id, PROMPT_NOT_FOUND, str(error))
    if isinstance(error, ResourceReadError | PromptRenderError):
        return format_error(request_id, INTERNAL_ERROR, error_message(INTERNAL_ERROR), str(error))

    logger.error("Unhandled error for request %r: %s", request_id, error, exc_info=error)
    return format_error(request_id, INTERNAL_ERROR)


def _object_params(params: dict[str, Any] | list[Any] | None) -> dict[str, Any]:
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise JsonRpcError(INVALID_PARAMS, "Invalid params: params must be an object")
    return params


def _require_string(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise JsonRpcError(INVALID_PARAMS, f"Invalid params: '{key}' is required")
    return value


class RequestDispatcher:
    """Routes MCP methods to their handlers by exact method name.

    Requests in flight are tracked per scope (a connection or session) so
    that a ``notifications/cancelled`` arriving on the same scope can
    signal the matching call's :class:`CancellationToken`.
    """

    def __init__(
        self,
        tools: ToolsHandler,
        resources: ResourceRegistry,
        prompts: PromptRegistry,
        lifecycle: Lifecycle | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            tools: Handler for tools/list and tools/call.
            resources: Registry answering resources/list and resources/read.
            prompts: Registry answering prompts/list and prompts/get.
            lifecycle: Handshake handler; a default one is created if omitted.
        """
        self._tools = tools
        self._resources = resources
        self._prompts = prompts
        self._lifecycle = lifecycle or Lifecycle()
        self._inflight: dict[tuple[Hashable, RequestId], CancellationToken] = {}
        self._lock = threading.Lock()

        self._methods: dict[str, Handler] = {
            "initialize": lambda params, ctx: self._lifecycle.handle_initialize(params),
            "ping": lambda params, ctx: {},
            "tools/list": lambda params, ctx: self._tools.handle_list().to_dict(),
            "tools/call": self._handle_tools_call,
            "resources/list": lambda params, ctx: {
                "resources": self._resources.list_resources()
            },
            "resources/read": lambda params, ctx: self._resources.read(
                _require_string(params, "uri")
            ),
            "prompts/list": lambda params, ctx: {"prompts": self._prompts.list_prompts()},
            "prompts/get": lambda params, ctx: self._prompts.get(
                _require_string(params, "name"), params.get("arguments")
            ),
        }

    @property
    def methods(self) -> list[str]:
        return list(self._methods)

    def track(self, scope: Hashable, request_id: RequestId) -> CancellationToken:
        """Create and register the cancellation token for a request."""
        token = CancellationToken()
        with self._lock:
            self._inflight[(scope, request_id)] = token
        return token

    def _untrack(self, scope: Hashable, request_id: RequestId, token: CancellationToken) -> None:
        with self._lock:
            if self._inflight.get((scope, request_id)) is token:
                del self._inflight[(scope, request_id)]

    def cancel(self, scope: Hashable, request_id: RequestId) -> bool:
        """Cancel an in-flight request.

        Returns:
            True if a matching request was found.
        """
        with self._lock:
            token = self._inflight.get((scope, request_id))
        if token is None:
            logger.debug("Cancel for unknown request %r ignored", request_id)
            return False
        token.cancel()
        logger.info("Request %r cancelled", request_id)
        return True

    def cancel_scope(self, scope: Hashable) -> int:
        """Cancel every in-flight request of a scope.

        Returns:
            Number of requests cancelled.
        """
        with self._lock:
            tokens = [token for (owner, _), token in self._inflight.items() if owner == scope]
        for token in tokens:
            token.cancel()
        if tokens:
            logger.info("Cancelled %d in-flight request(s) for %r", len(tokens), scope)
        return len(tokens)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def handle_raw(
        self,
        raw: str | bytes,
        connection_id: int | None = None,
        session: Session | None = None,
        scope: Hashable | None = None,
    ) -> str | None:
        """Parse and dispatch one raw message.

        Returns:
            Serialized response, or None when nothing should be sent.
        """
        try:
            message = parse_message(raw)
        except JsonRpcError as e:
            logger.warning("Rejected message: %s", e.message)
            return format_error(e.request_id, e.code, e.message, e.data)
        return self.dispatch(message, connection_id=connection_id, session=session, scope=scope)

    def dispatch(
        self,
        message: Message,
        connection_id: int | None = None,
        session: Session | None = None,
        scope: Hashable | None = None,
        token: CancellationToken | None = None,
    ) -> str | None:
        """Dispatch a parsed message.

        Args:
            message: Parsed request, notification or response.
            connection_id: Connection the message arrived on.
            session: Session bound to that connection, if any.
            scope: Key grouping requests for cancellation; defaults to the
                connection id.
            token: Token registered earlier with :meth:`track`.

        Returns:
            Serialized response for requests, None otherwise.
        """
        if scope is None:
            scope = connection_id

        if isinstance(message, JsonRpcResponse):
            logger.debug("Ignoring client response for id %r", message.id)
            return None
        if isinstance(message, JsonRpcNotification):
            self.handle_notification(message, scope)
            return None

        if token is None:
            token = self.track(scope, message.id)
        try:
            return self._handle_request(message, connection_id, session, token)
        finally:
            self._untrack(scope, message.id, token)

    def handle_notification(self, notification: JsonRpcNotification, scope: Hashable) -> None:
        """Act on a client notification; unknown notifications are ignored."""
        method = notification.method
        if method == "notifications/initialized":
            logger.info("Client initialized")
        elif method in CANCEL_NOTIFICATIONS:
            params = notification.params if isinstance(notification.params, dict) else {}
            request_id = params.get("requestId")
            if request_id is None:
                logger.warning("Cancel notification without requestId ignored")
                return
            if params.get("reason"):
                logger.info("Cancel requested for %r: %s", request_id, params["reason"])
            self.cancel(scope, request_id)
        else:
            logger.debug("Unhandled notification: %s", method)

    def _handle_request(
        self,
        request: JsonRpcRequest,
        connection_id: int | None,
        session: Session | None,
        token: CancellationToken,
    ) -> str:
        handler = self._methods.get(request.method)
        if handler is None:
            logger.warning("Method not found: %s", request.method)
            return format_error(
                request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}"
            )

        context = ToolContext(
            request_id=request.id, connection_id=connection_id, session=session, token=token
        )
        try:
            params = _object_params(request.params)
            result = handler(params, context)
        except Exception as e:
            return _error_response(request.id, e)
        return format_response(request.id, result)

    def _handle_tools_call(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        name = _require_string(params, "name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params: 'arguments' must be an object")
        return self._tools.handle_call(name, arguments, context).to_dict()
