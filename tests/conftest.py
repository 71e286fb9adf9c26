"""Shared fixtures: a sample host object and an in-memory connection."""

from __future__ import annotations

import threading
import time
from typing import Annotated

import pytest

from mcp_switchboard.config import ServerConfig
from mcp_switchboard.registry.base import Param, prompt, resource, tool
from mcp_switchboard.runtime.executor import ToolContext
from mcp_switchboard.server import MCPServer
from mcp_switchboard.transports.base import Connection


class Toolbox:
    """Host object exposing a handful of tools, a resource and a prompt."""

    def __init__(self) -> None:
        self.calls = 0

    @tool
    def add(self, a: int, b: int) -> int:
        """Add two integers.

        Args:
            a: First addend.
            b: Second addend.
        """
        self.calls += 1
        return a + b

    @tool(name="echo", description="Echo a message back")
    def echo_message(self, message: Annotated[str, Param(description="Text to echo")]) -> str:
        return message

    @tool
    def greet(self, name: str = "world", punctuation: str | None = None) -> str:
        """Greet someone."""
        return f"Hello, {name}{punctuation or '!'}"

    @tool
    def fail(self) -> None:
        """Always raises."""
        raise RuntimeError("boom")

    @tool
    def nothing(self) -> None:
        """Returns None."""
        return None

    @tool
    def wait_for_cancel(self, ctx: ToolContext, seconds: float = 5.0) -> str:
        """Block until cancelled or the delay passes."""
        if ctx.token.wait(seconds):
            return "cancelled"
        return "finished"

    @tool
    def sleep(self, seconds: float) -> str:
        """Sleep without observing cancellation."""
        time.sleep(seconds)
        return "slept"

    @resource("config://app", description="Application settings")
    def settings(self) -> dict:
        return {"debug": False}

    @resource("text://motd", mime_type="text/plain")
    def motd(self) -> str:
        """Message of the day."""
        return "Welcome"

    @prompt
    def review(self, code: str, language: str = "python") -> str:
        """Ask for a code review.

        Args:
            code: Code to review.
            language: Language of the code.
        """
        return f"Review this {language} code:\n{code}"

    def helper(self) -> str:
        return "not exposed"


class MemoryConnection(Connection):
    """Connection that records written messages in a list."""

    def __init__(self, session_id: str | None = None) -> None:
        super().__init__(remote_address="memory", session_id=session_id)
        self.sent: list[str] = []
        self.replies_done = 0
        self._cond = threading.Condition()

    def _write(self, data: str) -> None:
        with self._cond:
            self.sent.append(data)

    def end_reply(self) -> None:
        with self._cond:
            self.replies_done += 1
            self._cond.notify_all()

    def wait_replies(self, count: int, timeout: float = 5.0) -> bool:
        """Block until ``end_reply`` has been called ``count`` times."""
        with self._cond:
            return self._cond.wait_for(lambda: self.replies_done >= count, timeout)


@pytest.fixture
def toolbox() -> Toolbox:
    return Toolbox()


@pytest.fixture
def server(toolbox: Toolbox):
    """Server with the sample toolbox registered; closed after the test."""
    config = ServerConfig(rate_limit=0, timeout=5)
    mcp_server = MCPServer(config)
    mcp_server.register(toolbox)
    yield mcp_server
    mcp_server.close()
