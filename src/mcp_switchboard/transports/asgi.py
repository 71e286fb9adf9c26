"""Socket transports served by uvicorn on a background thread.

Each socket transport builds a Starlette application; this module runs it
with uvicorn in a daemon thread so that :meth:`start` returns once the
listener is bound, matching the non-blocking stdio transport.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from abc import abstractmethod
from collections.abc import Coroutine
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.requests import HTTPConnection

from mcp_switchboard.transports.base import Connection, Transport, TransportError

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 10.0


def remote_address(conn: HTTPConnection) -> str:
    if conn.client is None:
        return "unknown"
    return f"{conn.client.host}:{conn.client.port}"


class LoopConnection(Connection):
    """Connection whose writes must run on the event loop that owns it.

    Writes from worker threads are scheduled with
    ``run_coroutine_threadsafe`` and waited for, so a failed write is
    reported to the caller. Writes issued on the loop thread itself are
    queued as tasks, in order.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        remote_address: str = "",
        session_id: str | None = None,
        send_timeout: float | None = 30.0,
    ) -> None:
        super().__init__(remote_address=remote_address, session_id=session_id)
        self._loop = loop
        self._loop_thread = threading.get_ident()
        self._send_timeout = send_timeout

    def on_loop_thread(self) -> bool:
        return threading.get_ident() == self._loop_thread

    def run_on_loop(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run ``coro`` on the owning loop; block until done when off-loop."""
        if self.on_loop_thread():
            self._loop.create_task(coro)
            return
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        future.result(timeout=self._send_timeout)


class AsgiTransport(Transport):
    """Base class for transports backed by a Starlette app."""

    def __init__(self, host: str = "127.0.0.1", port: int = 8080, path: str = "/mcp") -> None:
        """Initialize the transport.

        Args:
            host: Interface to bind.
            port: TCP port to bind.
            path: URL path of the MCP endpoint.
        """
        super().__init__()
        self.host = host
        self.port = port
        self.path = path
        self._app: Starlette | None = None
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @abstractmethod
    def build_app(self) -> Starlette:
        """Create the Starlette application serving this transport."""

    @property
    def app(self) -> Starlette:
        if self._app is None:
            self._app = self.build_app()
        return self._app

    def start(self) -> None:
        if self._running:
            return

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._serve, name=f"mcp-{self.kind}-server", daemon=True
        )
        self._mark_started()
        self._thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self._server.should_exit = True
                self._mark_stopped()
                raise TransportError(
                    f"Failed to start {self.kind} transport on {self.host}:{self.port}"
                )
            time.sleep(0.01)

        logger.info(
            "%s transport listening on http://%s:%d%s", self.kind, self.host, self.port, self.path
        )

    def _serve(self) -> None:
        try:
            self._server.run()
        except Exception as e:
            logger.exception("%s server crashed", self.kind)
            self._emit_error(e)
        finally:
            self._mark_stopped()

    def stop(self) -> None:
        if not self._running:
            return
        logger.info("%s transport stopping", self.kind)
        for connection in self.connections():
            connection.close()
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=STARTUP_TIMEOUT)
        self._mark_stopped()

    def get_info(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "running": self._running,
            "connections": len(self.connections()),
        }
