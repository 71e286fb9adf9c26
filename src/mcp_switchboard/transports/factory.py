"""Transport factory - builds a transport from its kind and the server config."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

from mcp_switchboard.config import ServerConfig
from mcp_switchboard.transports.base import Transport, TransportError
from mcp_switchboard.transports.http import HttpTransport, StreamableHttpTransport
from mcp_switchboard.transports.sse import SseTransport
from mcp_switchboard.transports.stdio import BlockingStdioTransport, PollingStdioTransport
from mcp_switchboard.transports.websocket import WebSocketTransport

logger = logging.getLogger(__name__)

SUPPORTED_TRANSPORTS = {
    "stdio": "Standard Input/Output (blocking or polling)",
    "http": "HTTP Server",
    "ws": "WebSocket Server",
    "http+sse": "HTTP Server-Sent Events",
    "streamable-http": "Streamable HTTP Server",
}


def supported_transports() -> dict[str, str]:
    """Return transport kinds mapped to a short description."""
    return dict(SUPPORTED_TRANSPORTS)


def is_supported(kind: str) -> bool:
    return kind in SUPPORTED_TRANSPORTS


def supports_nonblocking_stdio(stream: Any = None) -> bool:
    """Whether stdin can be switched to non-blocking mode and polled."""
    if sys.platform == "win32" or not hasattr(os, "set_blocking"):
        return False
    stream = stream or sys.stdin
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


def _create_stdio(config: ServerConfig, stdin: Any, stdout: Any) -> Transport:
    mode = config.stdio_mode
    if mode == "auto":
        polling = config.stdio_non_blocking and supports_nonblocking_stdio(stdin)
        mode = "polling" if polling else "blocking"
        logger.debug("Stdio mode resolved to %s", mode)

    if mode == "polling":
        return PollingStdioTransport(
            stdin=stdin, stdout=stdout, buffer_interval=config.stdio_buffer_interval
        )
    if mode == "blocking":
        return BlockingStdioTransport(stdin=stdin, stdout=stdout)
    raise TransportError(f"Unsupported stdio mode: {mode}")


def create_transport(
    kind: str,
    config: ServerConfig | None = None,
    stdin: Any = None,
    stdout: Any = None,
) -> Transport:
    """Create a transport.

    Args:
        kind: One of ``stdio``, ``http``, ``ws``, ``http+sse`` or
            ``streamable-http``.
        config: Server configuration supplying host, port, path and stdio
            options; defaults are used when omitted.
        stdin: Input stream override for stdio transports.
        stdout: Output stream override for stdio transports.

    Returns:
        An unstarted transport.

    Raises:
        TransportError: If the kind is not supported.
    """
    config = config or ServerConfig()

    if kind == "stdio":
        return _create_stdio(config, stdin, stdout)
    reply_timeout = config.timeout * 2
    if kind == "http":
        return HttpTransport(config.host, config.port, config.path, reply_timeout=reply_timeout)
    if kind == "streamable-http":
        return StreamableHttpTransport(
            config.host, config.port, config.path, reply_timeout=reply_timeout
        )
    if kind == "ws":
        return WebSocketTransport(config.host, config.port, config.path)
    if kind == "http+sse":
        return SseTransport(config.host, config.port)

    raise TransportError(
        f"Unsupported transport type: {kind}. Valid options: {', '.join(SUPPORTED_TRANSPORTS)}"
    )
