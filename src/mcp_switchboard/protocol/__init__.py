"""MCP protocol layer: JSON-RPC codec, handshake and method routing."""

from mcp_switchboard.protocol.dispatcher import RequestDispatcher
from mcp_switchboard.protocol.jsonrpc import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    encode_message,
    format_error,
    format_notification,
    format_response,
    parse_message,
    validate_message,
)
from mcp_switchboard.protocol.lifecycle import (
    MCP_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    Lifecycle,
    negotiate_version,
)
from mcp_switchboard.protocol.tools import ToolsHandler, ToolsListResult, to_call_result

__all__ = [
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "Lifecycle",
    "MCP_PROTOCOL_VERSION",
    "RequestDispatcher",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "ToolsHandler",
    "ToolsListResult",
    "encode_message",
    "format_error",
    "format_notification",
    "format_response",
    "negotiate_version",
    "parse_message",
    "to_call_result",
    "validate_message",
]
