"""Interchangeable wire transports."""

from mcp_switchboard.transports.base import (
    Connection,
    Transport,
    TransportError,
    TransportHandlers,
)
from mcp_switchboard.transports.factory import (
    create_transport,
    is_supported,
    supported_transports,
    supports_nonblocking_stdio,
)
from mcp_switchboard.transports.http import HttpTransport, StreamableHttpTransport
from mcp_switchboard.transports.sse import SseTransport
from mcp_switchboard.transports.stdio import BlockingStdioTransport, PollingStdioTransport
from mcp_switchboard.transports.websocket import WebSocketTransport

__all__ = [
    "BlockingStdioTransport",
    "Connection",
    "HttpTransport",
    "PollingStdioTransport",
    "SseTransport",
    "StreamableHttpTransport",
    "Transport",
    "TransportError",
    "TransportHandlers",
    "WebSocketTransport",
    "create_transport",
    "is_supported",
    "supported_transports",
    "supports_nonblocking_stdio",
]
