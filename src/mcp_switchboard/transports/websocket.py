"""WebSocket transport: one connection per socket, one message per frame."""

from __future__ import annotations

import asyncio
import logging

from starlette.applications import Starlette
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from mcp_switchboard.transports.asgi import AsgiTransport, LoopConnection, remote_address

logger = logging.getLogger(__name__)

# "Try again later": sent to sockets refused by the connection ceiling
CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketConnection(LoopConnection):
    def __init__(
        self,
        websocket: WebSocket,
        loop: asyncio.AbstractEventLoop,
        remote_address: str = "",
    ) -> None:
        super().__init__(loop, remote_address=remote_address)
        self._websocket = websocket
        self.accepted = False

    def _write(self, data: str) -> None:
        self.run_on_loop(self._websocket.send_text(data))

    def _close_transport(self) -> None:
        # Refused sockets are closed by the endpoint before accept
        if self.accepted:
            self.run_on_loop(self._websocket.close())


class WebSocketTransport(AsgiTransport):
    """Serves MCP over WebSocket text frames at ``ws://host:port{path}``."""

    kind = "ws"

    def build_app(self) -> Starlette:
        return Starlette(routes=[WebSocketRoute(self.path, self.handle_socket)])

    async def handle_socket(self, websocket: WebSocket) -> None:
        connection = WebSocketConnection(
            websocket, asyncio.get_running_loop(), remote_address=remote_address(websocket)
        )

        self._emit_connect(connection)
        if not connection.is_alive():
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return

        await websocket.accept()
        connection.accepted = True
        self._track(connection)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                data = message.get("text")
                if data is None:
                    data = message.get("bytes")
                if data:
                    self._emit_message(data, connection)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            if connection.is_alive():
                logger.error("WebSocket connection %d failed: %s", connection.id, e)
                self._emit_error(e, connection)
        finally:
            connection.mark_closed()
            self._untrack(connection)
            self._emit_close(connection)
