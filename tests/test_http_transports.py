"""Tests for the Starlette-backed transports, driven through TestClient."""

import json
import threading
import time

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from mcp_switchboard.config import ServerConfig
from mcp_switchboard.protocol.jsonrpc import REQUEST_CANCELLED
from mcp_switchboard.server import MCPServer
from mcp_switchboard.transports.http import (
    SESSION_HEADER,
    HttpTransport,
    StreamableHttpTransport,
)
from mcp_switchboard.transports.sse import SseTransport, format_event
from mcp_switchboard.transports.websocket import CLOSE_TRY_AGAIN_LATER, WebSocketTransport


def tool_call(request_id, name, arguments) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }


def served(server: MCPServer, transport):
    server.bind(transport)
    return TestClient(transport.app)


class TestHttpTransport:
    """Tests for plain HTTP POST."""

    def test_post_returns_response(self, server):
        """The JSON-RPC response is the body of the reply."""
        client = served(server, HttpTransport())

        reply = client.post("/mcp", content=json.dumps(tool_call(1, "add", {"a": 10, "b": 20})))

        assert reply.status_code == 200
        assert reply.headers["content-type"] == "application/json"
        assert reply.json()["result"]["content"][0]["text"] == "30"

    def test_notification_accepted(self, server):
        """A notification gets an empty 202."""
        client = served(server, HttpTransport())

        reply = client.post(
            "/mcp", content=json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"})
        )

        assert reply.status_code == 202
        assert reply.content == b""

    def test_parse_error(self, server):
        """Malformed bodies are answered with a JSON-RPC error."""
        client = served(server, HttpTransport())

        reply = client.post("/mcp", content="{not json")

        assert reply.status_code == 200
        assert reply.json()["error"]["code"] == -32700

    def test_refused_connection(self):
        """A connection refused on connect gets 503."""
        transport = HttpTransport()
        transport.on_connect(lambda connection: connection.close())
        client = TestClient(transport.app)

        reply = client.post("/mcp", content="{}")

        assert reply.status_code == 503

    def test_reply_timeout(self):
        """No reply within the timeout gets 504."""
        transport = HttpTransport(reply_timeout=0.05)
        transport.on_message(lambda data, connection: None)
        client = TestClient(transport.app)

        reply = client.post("/mcp", content="{}")

        assert reply.status_code == 504
        assert transport.connections() == []

    def test_cancel_from_another_post(self, server):
        """A cancel POST reaches a request still pending on an earlier POST."""
        replies = []

        with served(server, HttpTransport()) as client:
            pending = threading.Thread(
                target=lambda: replies.append(
                    client.post(
                        "/mcp",
                        content=json.dumps(tool_call(42, "wait_for_cancel", {"seconds": 5})),
                    )
                )
            )
            pending.start()
            deadline = time.monotonic() + 2
            while server.dispatcher.in_flight() == 0 and time.monotonic() < deadline:
                time.sleep(0.01)

            started = time.monotonic()
            cancel = client.post(
                "/mcp",
                content=json.dumps(
                    {
                        "jsonrpc": "2.0",
                        "method": "notifications/cancelled",
                        "params": {"requestId": 42},
                    }
                ),
            )
            pending.join(timeout=5)

        assert cancel.status_code == 202
        assert time.monotonic() - started < 3
        body = replies[0].json()
        assert body["id"] == 42
        if "error" in body:
            assert body["error"]["code"] == REQUEST_CANCELLED
        else:
            assert body["result"]["content"][0]["text"] == "cancelled"
        assert server.dispatcher.in_flight() == 0

    def test_get_not_allowed(self, server):
        """Only POST is routed."""
        client = served(server, HttpTransport(path="/rpc"))

        assert client.get("/rpc").status_code == 405

    def test_info(self):
        """get_info() describes the endpoint."""
        info = HttpTransport(host="0.0.0.0", port=9000).get_info()

        assert info == {
            "type": "http",
            "host": "0.0.0.0",
            "port": 9000,
            "path": "/mcp",
            "running": False,
            "connections": 0,
        }


class TestStreamableHttpTransport:
    """Tests for Mcp-Session-Id handling."""

    def test_mints_session_id(self, server):
        """A request without a session id gets a fresh one."""
        client = served(server, StreamableHttpTransport())

        reply = client.post("/mcp", content=json.dumps(tool_call(1, "add", {"a": 1, "b": 2})))

        session_id = reply.headers[SESSION_HEADER]
        assert session_id
        assert server.sessions.get(session_id) is not None

    def test_reuses_session_id(self, server):
        """A client-supplied session id is kept and echoed."""
        client = served(server, StreamableHttpTransport())

        reply = client.post(
            "/mcp",
            content=json.dumps(tool_call(1, "add", {"a": 1, "b": 2})),
            headers={SESSION_HEADER: "abc123"},
        )

        assert reply.headers[SESSION_HEADER] == "abc123"
        assert server.sessions.get("abc123") is not None

    def test_delete_ends_session(self, server):
        """DELETE removes the session."""
        client = served(server, StreamableHttpTransport())
        client.post(
            "/mcp",
            content=json.dumps(tool_call(1, "add", {"a": 1, "b": 2})),
            headers={SESSION_HEADER: "gone"},
        )

        reply = client.delete("/mcp", headers={SESSION_HEADER: "gone"})

        assert reply.status_code == 204
        assert server.sessions.get("gone") is None

    def test_delete_requires_header(self, server):
        """DELETE without a session id is a bad request."""
        client = served(server, StreamableHttpTransport())

        assert client.delete("/mcp").status_code == 400


class TestWebSocketTransport:
    """Tests for the WebSocket transport."""

    def test_round_trip(self, server):
        """Each text frame is answered on the same socket, in order."""
        client = served(server, WebSocketTransport())

        with client.websocket_connect("/mcp") as websocket:
            websocket.send_text(json.dumps(tool_call(1, "sleep", {"seconds": 0.1})))
            websocket.send_text(json.dumps(tool_call(2, "add", {"a": 10, "b": 20})))

            first = json.loads(websocket.receive_text())
            second = json.loads(websocket.receive_text())

        assert first["id"] == 1
        assert second["id"] == 2
        assert second["result"]["content"][0]["text"] == "30"

    def test_refused_over_ceiling(self, toolbox):
        """Sockets beyond the connection ceiling are closed with 1013."""
        with MCPServer(ServerConfig(max_connections=1)) as server:
            server.register(toolbox)
            client = served(server, WebSocketTransport())

            with client.websocket_connect("/mcp") as websocket:
                websocket.send_text(json.dumps(tool_call(1, "add", {"a": 1, "b": 1})))
                websocket.receive_text()

                with pytest.raises(WebSocketDisconnect) as exc_info:
                    with client.websocket_connect("/mcp"):
                        pass

        assert exc_info.value.code == CLOSE_TRY_AGAIN_LATER

    def test_disconnect_releases_connection(self, server):
        """Closing the socket removes the connection."""
        transport = WebSocketTransport()
        client = served(server, transport)

        with client.websocket_connect("/mcp") as websocket:
            websocket.send_text(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"}))
            websocket.receive_text()
            assert server.connections.count() == 1

        for _ in range(100):
            if server.connections.count() == 0:
                break
            time.sleep(0.01)
        assert server.connections.count() == 0
        assert transport.connections() == []


class TestSseTransport:
    """Tests for the HTTP+SSE transport."""

    def test_format_event(self):
        """Events render with one data line per line of payload."""
        assert format_event("message", '{"a": 1}') == 'event: message\ndata: {"a": 1}\n\n'
        assert format_event("message", "one\ntwo") == "event: message\ndata: one\ndata: two\n\n"
        assert format_event("ping", "") == "event: ping\ndata: \n\n"

    def test_post_requires_session_id(self, server):
        """POSTs without a numeric session id are rejected."""
        client = served(server, SseTransport())

        assert client.post("/messages", content="{}").status_code == 400
        assert client.post("/messages?session_id=abc", content="{}").status_code == 400

    def test_post_unknown_session(self, server):
        """POSTs for a stream that is not open get 404."""
        client = served(server, SseTransport())

        assert client.post("/messages?session_id=999999", content="{}").status_code == 404

    def test_info(self):
        """get_info() reports both endpoints."""
        info = SseTransport(messages_path="/msg").get_info()

        assert info["type"] == "http+sse"
        assert info["path"] == "/sse"
        assert info["messages_path"] == "/msg"
