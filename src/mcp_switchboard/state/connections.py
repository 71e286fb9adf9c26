"""Connection registry - tracks live transport connections."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_switchboard.security.audit import AuditLogger
    from mcp_switchboard.transports.base import Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Live connections of one transport, bounded by a ceiling.

    Connections over the ceiling are closed immediately, never queued.
    """

    def __init__(self, max_connections: int = 1000, audit: AuditLogger | None = None) -> None:
        """Initialize the registry.

        Args:
            max_connections: Maximum number of simultaneous connections.
            audit: Optional audit log receiving refusal events.

        Raises:
            ValueError: If max_connections is not positive.
        """
        if max_connections < 1:
            raise ValueError("max_connections must be positive")
        self._max_connections = max_connections
        self._audit = audit
        self._connections: dict[int, Connection] = {}
        self._lock = threading.Lock()

    @property
    def max_connections(self) -> int:
        return self._max_connections

    def add(self, connection: Connection) -> bool:
        """Track a new connection.

        Returns:
            True if accepted; False if the ceiling was reached, in which
            case the connection has been closed.
        """
        with self._lock:
            full = len(self._connections) >= self._max_connections
            if not full:
                self._connections[connection.id] = connection
            total = len(self._connections)

        if full:
            logger.warning(
                "Maximum connections reached (%d); refusing connection %d from %s",
                self._max_connections,
                connection.id,
                connection.remote_address,
            )
            if self._audit is not None:
                self._audit.log_security_event(
                    "connection_refused",
                    {
                        "connection_id": connection.id,
                        "remote_address": connection.remote_address,
                        "max_connections": self._max_connections,
                    },
                )
            connection.close()
            return False

        logger.info("Connection added: %d (total %d)", connection.id, total)
        return True

    def remove(self, connection: Connection) -> None:
        with self._lock:
            removed = self._connections.pop(connection.id, None)
            total = len(self._connections)
        if removed is not None:
            logger.info("Connection removed: %d (total %d)", connection.id, total)

    def get(self, connection_id: int) -> Connection | None:
        with self._lock:
            return self._connections.get(connection_id)

    def all(self) -> list[Connection]:
        with self._lock:
            return list(self._connections.values())

    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._connections

    def close_all(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for connection in connections:
            connection.close()
        logger.info("All connections closed")

    def broadcast(self, data: str, exclude_ids: Iterable[int] = ()) -> int:
        """Send ``data`` to every live connection.

        A failing connection is logged and skipped; it never aborts the
        broadcast.

        Returns:
            Number of connections the message was delivered to.
        """
        excluded = set(exclude_ids)
        sent = 0
        for connection in self.all():
            if connection.id in excluded:
                continue
            try:
                if connection.send(data):
                    sent += 1
            except Exception as e:
                logger.error("Failed to broadcast to connection %d: %s", connection.id, e)

        logger.debug("Broadcast delivered to %d connection(s)", sent)
        return sent

    def cleanup_invalid(self) -> int:
        """Drop connections whose transport reports them dead.

        Returns:
            Number of connections removed.
        """
        with self._lock:
            dead = [cid for cid, conn in self._connections.items() if not conn.is_alive()]
            for connection_id in dead:
                del self._connections[connection_id]
            remaining = len(self._connections)

        if dead:
            logger.info(
                "Cleaned up %d invalid connection(s), %d remaining", len(dead), remaining
            )
        return len(dead)
