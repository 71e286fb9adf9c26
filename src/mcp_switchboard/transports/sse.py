"""HTTP+SSE transport.

Clients open ``GET /sse`` and receive an ``endpoint`` event naming the URL
to POST messages to (``/messages?session_id=<connection id>``). Responses
are pushed back on the event stream as ``message`` events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse
from starlette.routing import Route

from mcp_switchboard.transports.asgi import AsgiTransport, LoopConnection, remote_address

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 15.0


def format_event(event: str, data: str) -> str:
    """Render one server-sent event; multi-line data becomes several data lines."""
    lines = [f"event: {event}"]
    lines.extend(f"data: {line}" for line in data.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


class SseConnection(LoopConnection):
    """An open event stream; writes are queued for the streaming response."""

    def __init__(self, loop: asyncio.AbstractEventLoop, remote_address: str = "") -> None:
        super().__init__(loop, remote_address=remote_address)
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()

    def _put(self, item: str | None) -> None:
        if self.on_loop_thread():
            self._queue.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def _write(self, data: str) -> None:
        self._put(data)

    def _close_transport(self) -> None:
        self._put(None)

    async def next_event(self, timeout: float | None) -> str | None:
        """Next queued message; None once closed. Raises TimeoutError when idle."""
        return await asyncio.wait_for(self._queue.get(), timeout)


class SseTransport(AsgiTransport):
    """Serves MCP over HTTP POST plus a server-sent event stream."""

    kind = "http+sse"

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8080,
        sse_path: str = "/sse",
        messages_path: str = "/messages",
        keepalive_interval: float = KEEPALIVE_INTERVAL,
    ) -> None:
        """Initialize the transport.

        Args:
            host: Interface to bind.
            port: TCP port to bind.
            sse_path: Path of the event stream endpoint.
            messages_path: Path clients POST messages to.
            keepalive_interval: Seconds between keep-alive comments.
        """
        super().__init__(host=host, port=port, path=sse_path)
        self.messages_path = messages_path
        self.keepalive_interval = keepalive_interval

    def build_app(self) -> Starlette:
        return Starlette(
            routes=[
                Route(self.path, self.handle_stream, methods=["GET"]),
                Route(self.messages_path, self.handle_post, methods=["POST"]),
            ]
        )

    def endpoint_url(self, connection: SseConnection) -> str:
        return f"{self.messages_path}?session_id={connection.id}"

    async def handle_stream(self, request: Request) -> Response:
        connection = SseConnection(asyncio.get_running_loop(), remote_address(request))

        self._emit_connect(connection)
        if not connection.is_alive():
            return Response(status_code=503)

        self._track(connection)
        return StreamingResponse(
            self._stream(connection),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def _stream(self, connection: SseConnection) -> AsyncIterator[str]:
        try:
            yield format_event("endpoint", self.endpoint_url(connection))
            while True:
                try:
                    data = await connection.next_event(self.keepalive_interval)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if data is None:
                    break
                yield format_event("message", data)
        finally:
            connection.mark_closed()
            self._untrack(connection)
            self._emit_close(connection)

    async def handle_post(self, request: Request) -> Response:
        raw_id = request.query_params.get("session_id", "")
        try:
            connection_id = int(raw_id)
        except ValueError:
            return Response("Missing or invalid session_id", status_code=400)

        connection = self._find(connection_id)
        if connection is None or not connection.is_alive():
            return Response("Unknown session", status_code=404)

        body = await request.body()
        self._emit_message(body, connection)
        return Response(status_code=202)

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info["messages_path"] = self.messages_path
        return info
