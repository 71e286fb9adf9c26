"""HTTP request/response transports.

Every POST carries exactly one JSON-RPC message and is handled as its own
short-lived connection. The reply body is the response, or an empty
``202 Accepted`` when the message produced none (notifications).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from mcp_switchboard.transports.asgi import AsgiTransport, LoopConnection, remote_address

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


class HttpConnection(LoopConnection):
    """One HTTP request; collects the reply until :meth:`end_reply`."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        remote_address: str = "",
        session_id: str | None = None,
    ) -> None:
        super().__init__(loop, remote_address=remote_address, session_id=session_id)
        self.replies: list[str] = []
        self._done = asyncio.Event()

    def _write(self, data: str) -> None:
        self.replies.append(data)

    def end_reply(self) -> None:
        if self.on_loop_thread():
            self._done.set()
        else:
            self._loop.call_soon_threadsafe(self._done.set)

    async def wait_reply(self, timeout: float | None) -> bool:
        """Wait for :meth:`end_reply`; False on timeout."""
        try:
            await asyncio.wait_for(self._done.wait(), timeout)
        except TimeoutError:
            return False
        return True


class HttpTransport(AsgiTransport):
    """Plain HTTP transport: ``POST {path}`` with one message per body."""

    kind = "http"

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8080,
        path: str = "/mcp",
        reply_timeout: float | None = 60.0,
    ) -> None:
        """Initialize the transport.

        Args:
            host: Interface to bind.
            port: TCP port to bind.
            path: URL path accepting POSTed messages.
            reply_timeout: Seconds to wait for a reply before answering 504.
        """
        super().__init__(host=host, port=port, path=path)
        self.reply_timeout = reply_timeout

    def build_app(self) -> Starlette:
        return Starlette(routes=[Route(self.path, self.handle_post, methods=["POST"])])

    def _session_id(self, request: Request) -> str | None:
        return None

    def _cancel_scope(self, request: Request) -> str:
        # Every POST from one client host shares a scope, so a cancel POST
        # reaches a request still pending on another POST
        host = request.client.host if request.client is not None else "unknown"
        return f"http:{host}"

    def _reply_headers(self, connection: HttpConnection) -> dict[str, str]:
        return {}

    async def handle_post(self, request: Request) -> Response:
        body = await request.body()
        connection = HttpConnection(
            asyncio.get_running_loop(),
            remote_address=remote_address(request),
            session_id=self._session_id(request),
        )
        if connection.session_id is None:
            connection.scope = self._cancel_scope(request)

        self._emit_connect(connection)
        if not connection.is_alive():
            return Response(status_code=503, headers=self._reply_headers(connection))

        self._track(connection)
        try:
            self._emit_message(body, connection)
            if not await connection.wait_reply(self.reply_timeout):
                logger.warning(
                    "No reply within %ss for connection %d", self.reply_timeout, connection.id
                )
                return Response(status_code=504, headers=self._reply_headers(connection))
        finally:
            self._untrack(connection)
            connection.mark_closed()
            self._emit_close(connection)

        headers = self._reply_headers(connection)
        if not connection.replies:
            return Response(status_code=202, headers=headers)
        return Response(
            content=connection.replies[0], media_type="application/json", headers=headers
        )


class StreamableHttpTransport(HttpTransport):
    """HTTP transport with ``Mcp-Session-Id`` session tracking.

    A session id sent by the client is reused; otherwise one is minted.
    The id is echoed on every reply. ``DELETE {path}`` ends the session.
    """

    kind = "streamable-http"

    def build_app(self) -> Starlette:
        return Starlette(
            routes=[
                Route(self.path, self.handle_post, methods=["POST"]),
                Route(self.path, self.handle_delete, methods=["DELETE"]),
            ]
        )

    def _session_id(self, request: Request) -> str:
        return request.headers.get(SESSION_HEADER) or uuid.uuid4().hex

    def _reply_headers(self, connection: HttpConnection) -> dict[str, str]:
        return {SESSION_HEADER: connection.session_id} if connection.session_id else {}

    async def handle_delete(self, request: Request) -> Response:
        session_id = request.headers.get(SESSION_HEADER)
        if not session_id:
            return Response(status_code=400)
        logger.info("Session %s ended by client", session_id)
        self._emit_session_end(session_id)
        return Response(status_code=204)

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info["session_header"] = SESSION_HEADER
        return info
