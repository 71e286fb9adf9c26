"""MCP Server - wires registries, protocol handling and a transport together."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from mcp_switchboard.config import ServerConfig
from mcp_switchboard.events import CLOSE, CONNECT, ERROR, MESSAGE, EventRouter
from mcp_switchboard.protocol.dispatcher import CANCEL_NOTIFICATIONS, RequestDispatcher
from mcp_switchboard.protocol.jsonrpc import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    Message,
    format_error,
    parse_message,
)
from mcp_switchboard.protocol.lifecycle import Lifecycle
from mcp_switchboard.protocol.tools import ToolsHandler
from mcp_switchboard.registry.base import ToolDescriptor
from mcp_switchboard.registry.prompts import PromptRegistry
from mcp_switchboard.registry.resources import ResourceRegistry
from mcp_switchboard.registry.tools import ToolRegistry
from mcp_switchboard.runtime.executor import CancellationToken, ToolExecutor
from mcp_switchboard.runtime.lanes import SerialLane
from mcp_switchboard.security.audit import AuditLogger
from mcp_switchboard.security.ratelimiter import RateLimiter
from mcp_switchboard.state.connections import ConnectionRegistry
from mcp_switchboard.state.sessions import Session, SessionStore
from mcp_switchboard.transports.base import Connection, Transport, TransportError

logger = logging.getLogger(__name__)

# Seconds between expired-session and dead-connection sweeps while serving
CLEANUP_INTERVAL = 60.0


class MCPServer:
    """MCP Server implementation.

    Provides a complete MCP server that handles:
    - The initialize handshake and ping
    - Tool, resource and prompt listing and execution
    - Connection limits, sessions, rate limiting and audit logging

    Messages of one connection are handled and answered in the order they
    arrive; different connections are served concurrently.

    Example:
        server = MCPServer(ServerConfig.from_dict({"transport": "http"}))
        server.register(MyTools())
        server.bind(create_transport("http", server.config))
        server.serve()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        transport: Transport | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Server configuration (defaults apply when omitted).
            transport: Transport to bind immediately.
            audit_logger: Audit log; opened from ``config.audit_log_file``
                when omitted and a file is configured.
        """
        self.config = config or ServerConfig()

        self._owns_audit = audit_logger is None and bool(self.config.audit_log_file)
        self._audit = audit_logger
        if self._owns_audit:
            self._audit = AuditLogger(self.config.audit_log_file)

        self.tools = ToolRegistry()
        self.resources = ResourceRegistry()
        self.prompts = PromptRegistry()
        self.events = EventRouter()
        self.connections = ConnectionRegistry(self.config.max_connections, audit=self._audit)
        self.sessions = SessionStore(ttl=self.config.session_ttl)

        self._executor = ToolExecutor(
            max_workers=self.config.max_workers,
            max_pending=self.config.max_pending,
            timeout=self.config.timeout,
        )
        rate_limiter = None
        if self.config.rate_limit > 0 or self.config.tool_rate_limits:
            rate_limiter = RateLimiter(
                limit=self.config.rate_limit,
                window=self.config.rate_window,
                overrides=self.config.tool_rate_limits,
            )
        self._dispatcher = RequestDispatcher(
            ToolsHandler(self.tools, self._executor, rate_limiter, self._audit),
            self.resources,
            self.prompts,
            Lifecycle(
                server_info={
                    "name": self.config.server_name,
                    "version": self.config.server_version,
                }
            ),
        )

        # A lane holds a dispatch thread while its tool runs on the executor
        self._dispatch_pool = ThreadPoolExecutor(
            max_workers=max(8, self.config.max_workers * 2), thread_name_prefix="mcp-dispatch"
        )
        self._lanes: dict[int, SerialLane] = {}
        self._lanes_lock = threading.Lock()
        self._transport: Transport | None = None
        self._closed = False

        self.events.subscribe(CONNECT, self._handle_connect)
        self.events.subscribe(MESSAGE, self._handle_transport_message)
        self.events.subscribe(CLOSE, self._handle_close)
        self.events.subscribe(ERROR, self._handle_error)

        if transport is not None:
            self.bind(transport)

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def dispatcher(self) -> RequestDispatcher:
        return self._dispatcher

    def register(self, host: Any) -> dict[str, list[str]]:
        """Register every tool, resource and prompt marked on a host object.

        Args:
            host: Object (or module) carrying ``@tool``, ``@resource`` and
                ``@prompt`` members.

        Returns:
            Registered names keyed by kind.
        """
        registered = {
            "tools": self.tools.register(host),
            "resources": self.resources.register(host),
            "prompts": self.prompts.register(host),
        }
        if not any(registered.values()):
            logger.warning("Nothing to register on %s", type(host).__name__)
        return registered

    def register_tool(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> ToolDescriptor:
        return self.tools.register_function(func, name=name, description=description)

    def list_tools(self) -> list[dict[str, Any]]:
        return self.tools.list_tools()

    def handle_message(
        self, raw_message: str | bytes, connection: Connection | None = None
    ) -> str | None:
        """Handle an incoming JSON-RPC message synchronously.

        Args:
            raw_message: Raw JSON-RPC message.
            connection: Connection the message came from, if any.

        Returns:
            Response string or None for notifications.
        """
        if connection is None:
            return self._dispatcher.handle_raw(raw_message)
        return self._dispatcher.handle_raw(
            raw_message,
            connection_id=connection.id,
            session=self._session_for(connection),
            scope=self._scope(connection),
        )

    def bind(self, transport: Transport) -> None:
        """Route a transport's events through this server's event router."""
        if self._transport is not None and self._transport is not transport:
            raise TransportError("Server is already bound to a transport")
        self._transport = transport
        transport.on_connect(lambda connection: self.events.emit(CONNECT, connection))
        transport.on_message(lambda data, connection: self.events.emit(MESSAGE, data, connection))
        transport.on_close(lambda connection: self.events.emit(CLOSE, connection))
        transport.on_error(lambda error, connection: self.events.emit(ERROR, error, connection))
        transport.on_session_end(self.sessions.remove)
        logger.info("Bound %s transport", transport.kind or type(transport).__name__)

    def serve(self) -> None:
        """Start the bound transport and block until it stops, then close."""
        if self._transport is None:
            raise TransportError("No transport bound")

        logger.info(
            "Serving %d tool(s), %d resource(s), %d prompt(s) over %s",
            len(self.tools),
            len(self.resources),
            len(self.prompts),
            self._transport.kind,
        )
        try:
            self._transport.start()
            while not self._transport.wait(CLEANUP_INTERVAL):
                self.cleanup()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.close()

    def stop(self) -> None:
        if self._transport is not None and self._transport.is_running():
            self._transport.stop()

    def cleanup(self) -> tuple[int, int]:
        """Sweep expired sessions and dead connections.

        Returns:
            Tuple of (sessions removed, connections removed).
        """
        return self.sessions.cleanup_expired(), self.connections.cleanup_invalid()

    def close(self) -> None:
        """Stop the transport, flush pending replies and release resources."""
        if self._closed:
            return
        self._closed = True
        self.stop()

        with self._lanes_lock:
            lanes = list(self._lanes.values())
            self._lanes.clear()
        drain_timeout = (self._executor.timeout or 30.0) + 1.0
        for lane in lanes:
            if not lane.join(drain_timeout):
                logger.warning("Pending replies dropped on shutdown")

        self.connections.close_all()
        self._executor.shutdown(wait=False)
        self._dispatch_pool.shutdown(wait=False, cancel_futures=True)
        if self._owns_audit and self._audit is not None:
            self._audit.close()
        logger.info("Server closed")

    def __enter__(self) -> MCPServer:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _scope(self, connection: Connection) -> Hashable:
        return connection.session_id or connection.scope or connection.id

    def _session_for(self, connection: Connection) -> Session | None:
        if connection.session_id is None:
            return None
        return self.sessions.get(connection.session_id) or self.sessions.create(
            connection.session_id
        )

    def _lane_for(self, connection: Connection) -> SerialLane:
        with self._lanes_lock:
            lane = self._lanes.get(connection.id)
            if lane is None:
                lane = SerialLane(self._dispatch_pool, name=str(connection.id))
                self._lanes[connection.id] = lane
            return lane

    def _handle_connect(self, connection: Connection) -> None:
        if not self.connections.add(connection):
            return
        if connection.session_id is not None:
            self._session_for(connection)

    def _handle_close(self, connection: Connection) -> None:
        self.connections.remove(connection)
        with self._lanes_lock:
            self._lanes.pop(connection.id, None)
        # A shared scope outlives any one of its connections
        if connection.session_id is None and connection.scope is None:
            self._dispatcher.cancel_scope(connection.id)

    def _handle_error(self, error: Exception, connection: Connection | None) -> None:
        if connection is None:
            logger.error("Transport error: %s", error)
        else:
            logger.error("Transport error on connection %d: %s", connection.id, error)

    def _handle_transport_message(self, data: str | bytes, connection: Connection) -> None:
        try:
            message = parse_message(data)
        except JsonRpcError as e:
            logger.warning("Rejected message on connection %d: %s", connection.id, e.message)
            reply = format_error(e.request_id, e.code, e.message, e.data)
            self._submit(connection, lambda: self._reply(connection, reply))
            return

        scope = self._scope(connection)
        if isinstance(message, JsonRpcNotification) and message.method in CANCEL_NOTIFICATIONS:
            # Cancellation must not wait behind the request it cancels
            self._dispatcher.handle_notification(message, scope)
            connection.end_reply()
            return

        token = None
        if isinstance(message, JsonRpcRequest):
            token = self._dispatcher.track(scope, message.id)
        self._submit(connection, lambda: self._process(message, connection, scope, token))

    def _submit(self, connection: Connection, job: Callable[[], None]) -> None:
        try:
            self._lane_for(connection).submit(job)
        except RuntimeError:
            logger.warning("Server shutting down; message on connection %d dropped", connection.id)
            connection.end_reply()

    def _process(
        self,
        message: Message,
        connection: Connection,
        scope: Hashable,
        token: CancellationToken | None,
    ) -> None:
        reply = None
        try:
            reply = self._dispatcher.dispatch(
                message,
                connection_id=connection.id,
                session=self._session_for(connection),
                scope=scope,
                token=token,
            )
        finally:
            self._reply(connection, reply)

    def _reply(self, connection: Connection, reply: str | None) -> None:
        try:
            if reply is not None and not connection.send(reply):
                logger.warning("Reply to connection %d could not be delivered", connection.id)
        finally:
            connection.end_reply()
