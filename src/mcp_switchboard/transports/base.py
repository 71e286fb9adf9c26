"""Transport contract shared by every wire variant.

A transport moves raw message text between clients and the server. It
never interprets JSON-RPC; every inbound message is handed to the
registered message handler together with the :class:`Connection` it
arrived on, and replies are written back through that same handle.
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


class TransportError(Exception):
    """Raised when a transport cannot be created or started."""

    pass


class Connection(ABC):
    """Handle for one client connection.

    Ids are unique across the process. ``send`` never raises: a closed
    connection or a failed write reports False.

    ``scope`` names the cancellation scope of a sessionless connection
    whose requests may be cancelled from another connection; None keeps
    cancellation per connection.
    """

    def __init__(self, remote_address: str = "", session_id: str | None = None) -> None:
        self.id = next(_connection_ids)
        self.remote_address = remote_address
        self.session_id = session_id
        self.scope: str | None = None
        self._closed = False

    @abstractmethod
    def _write(self, data: str) -> None:
        """Deliver one message; raise on failure."""

    def _close_transport(self) -> None:
        """Release the underlying channel. Called once, by :meth:`close`."""

    def send(self, data: str) -> bool:
        if self._closed:
            return False
        try:
            self._write(data)
        except Exception as e:
            logger.warning("Send to connection %d failed: %s", self.id, e)
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._close_transport()
        except Exception as e:
            logger.debug("Error closing connection %d: %s", self.id, e)

    def mark_closed(self) -> None:
        """Record that the peer went away; no close is sent."""
        self._closed = True

    def is_alive(self) -> bool:
        return not self._closed

    def end_reply(self) -> None:
        """Signal that handling of one inbound message has finished."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} remote={self.remote_address!r}>"


MessageHandler = Callable[[str | bytes, Connection], None]
ConnectionHandler = Callable[[Connection], None]
ErrorHandler = Callable[[Exception, "Connection | None"], None]
SessionEndHandler = Callable[[str], None]


@dataclass
class TransportHandlers:
    """Callbacks a transport invokes; unset handlers are skipped."""

    message: MessageHandler | None = None
    connect: ConnectionHandler | None = None
    close: ConnectionHandler | None = None
    error: ErrorHandler | None = None
    session_end: SessionEndHandler | None = None


class Transport(ABC):
    """Base class for transports.

    Subclasses implement :meth:`start`, :meth:`stop` and :meth:`get_info`
    and use the ``_emit_*`` helpers to report events. Handler failures are
    logged and never propagate into the transport's I/O loop.
    """

    kind = ""

    def __init__(self) -> None:
        self.handlers = TransportHandlers()
        self._connections: dict[int, Connection] = {}
        self._connections_lock = threading.Lock()
        self._running = False
        self._stopped = threading.Event()
        self._stopped.set()

    def on_message(self, handler: MessageHandler) -> None:
        self.handlers.message = handler

    def on_connect(self, handler: ConnectionHandler) -> None:
        self.handlers.connect = handler

    def on_close(self, handler: ConnectionHandler) -> None:
        self.handlers.close = handler

    def on_error(self, handler: ErrorHandler) -> None:
        self.handlers.error = handler

    def on_session_end(self, handler: SessionEndHandler) -> None:
        self.handlers.session_end = handler

    @abstractmethod
    def start(self) -> None:
        """Start accepting messages."""

    @abstractmethod
    def stop(self) -> None:
        """Stop accepting messages and release resources."""

    @abstractmethod
    def get_info(self) -> dict[str, Any]:
        """Describe the transport (type, address, state)."""

    def is_running(self) -> bool:
        return self._running

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the transport stops.

        Returns:
            True if the transport stopped, False on timeout.
        """
        return self._stopped.wait(timeout)

    def send(self, data: str) -> int:
        """Send ``data`` to every live connection.

        Returns:
            Number of connections the message was delivered to.
        """
        return sum(1 for connection in self.connections() if connection.send(data))

    def connections(self) -> list[Connection]:
        with self._connections_lock:
            return list(self._connections.values())

    def _track(self, connection: Connection) -> None:
        with self._connections_lock:
            self._connections[connection.id] = connection

    def _untrack(self, connection: Connection) -> None:
        with self._connections_lock:
            self._connections.pop(connection.id, None)

    def _find(self, connection_id: int) -> Connection | None:
        with self._connections_lock:
            return self._connections.get(connection_id)

    def _mark_started(self) -> None:
        self._running = True
        self._stopped.clear()

    def _mark_stopped(self) -> None:
        self._running = False
        self._stopped.set()

    def _emit_message(self, data: str | bytes, connection: Connection) -> None:
        handler = self.handlers.message
        if handler is None:
            logger.warning("No message handler registered; message dropped")
            connection.end_reply()
            return
        try:
            handler(data, connection)
        except Exception as e:
            logger.exception("Message handler failed for connection %d", connection.id)
            connection.end_reply()
            self._emit_error(e, connection)

    def _emit_connect(self, connection: Connection) -> None:
        if self.handlers.connect is None:
            return
        try:
            self.handlers.connect(connection)
        except Exception as e:
            logger.exception("Connect handler failed for connection %d", connection.id)
            self._emit_error(e, connection)

    def _emit_close(self, connection: Connection) -> None:
        if self.handlers.close is None:
            return
        try:
            self.handlers.close(connection)
        except Exception:
            logger.exception("Close handler failed for connection %d", connection.id)

    def _emit_error(self, error: Exception, connection: Connection | None = None) -> None:
        if self.handlers.error is None:
            logger.error("Transport error: %s", error)
            return
        try:
            self.handlers.error(error, connection)
        except Exception:
            logger.exception("Error handler failed")

    def _emit_session_end(self, session_id: str) -> None:
        if self.handlers.session_end is None:
            return
        try:
            self.handlers.session_end(session_id)
        except Exception:
            logger.exception("Session end handler failed for %s", session_id)
