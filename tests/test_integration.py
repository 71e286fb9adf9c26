"""Integration tests for the complete MCP server."""

import io
import json

import pytest

from mcp_switchboard.config import ServerConfig
from mcp_switchboard.server import MCPServer
from mcp_switchboard.transports.factory import create_transport


def session_script(*messages) -> io.StringIO:
    return io.StringIO("".join(json.dumps(m) + "\n" for m in messages))


def run_stdio(toolbox, *messages) -> list[dict]:
    """Serve a scripted stdin through the blocking stdio transport."""
    stdout = io.StringIO()
    config = ServerConfig(stdio_mode="blocking", rate_limit=0)
    server = MCPServer(config)
    server.register(toolbox)
    server.bind(create_transport("stdio", config, stdin=session_script(*messages), stdout=stdout))

    server.serve()

    return [json.loads(line) for line in stdout.getvalue().splitlines()]


class TestStdioSession:
    """End-to-end sessions over stdio."""

    def test_full_session(self, toolbox):
        """Should complete a handshake, list tools and call one."""
        responses = run_stdio(
            toolbox,
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "initialize",
                "params": {
                    "protocolVersion": "2024-11-05",
                    "capabilities": {},
                    "clientInfo": {"name": "test-client", "version": "1.0"},
                },
            },
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
            {
                "jsonrpc": "2.0",
                "id": 3,
                "method": "tools/call",
                "params": {"name": "add", "arguments": {"a": 10, "b": 20}},
            },
        )

        assert [r["id"] for r in responses] == [1, 2, 3]
        assert responses[0]["result"]["protocolVersion"] == "2024-11-05"
        assert "add" in {t["name"] for t in responses[1]["result"]["tools"]}
        assert responses[2]["result"]["content"] == [{"type": "text", "text": "30"}]
        assert toolbox.calls == 1

    def test_errors_do_not_end_session(self, toolbox):
        """Failures are answered and later requests still run."""
        responses = run_stdio(
            toolbox,
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "missing"}},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "fail"}},
            {"jsonrpc": "2.0", "id": 3, "method": "unknown/method"},
            {"jsonrpc": "2.0", "id": 4, "method": "ping"},
        )

        assert [r.get("error", {}).get("code") for r in responses] == [
            -32001,
            -32603,
            -32601,
            None,
        ]
        assert responses[1]["error"]["data"] == "boom"
        assert responses[3]["result"] == {}

    def test_resources_and_prompts(self, toolbox):
        """Should read a resource and render a prompt."""
        responses = run_stdio(
            toolbox,
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "resources/read",
                "params": {"uri": "text://motd"},
            },
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "prompts/get",
                "params": {"name": "review", "arguments": {"code": "x = 1"}},
            },
        )

        assert responses[0]["result"]["contents"][0]["text"] == "Welcome"
        assert "x = 1" in responses[1]["result"]["messages"][0]["content"]["text"]


class TestRateLimitedServer:
    """End-to-end rate limiting."""

    @pytest.fixture
    def limited(self, toolbox):
        server = MCPServer(ServerConfig(rate_limit=2, rate_window=60))
        server.register(toolbox)
        yield server
        server.close()

    def test_third_call_rejected(self, limited):
        """Calls over the limit get RATE_LIMITED with a retry hint."""
        call = json.dumps(
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "tools/call",
                "params": {"name": "add", "arguments": {"a": 1, "b": 1}},
            }
        )

        results = [json.loads(limited.handle_message(call)) for _ in range(3)]

        assert "result" in results[0]
        assert "result" in results[1]
        assert results[2]["error"]["code"] == -32007
        assert results[2]["error"]["data"]["retryAfter"] > 0
