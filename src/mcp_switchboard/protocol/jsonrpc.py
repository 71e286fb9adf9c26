"""JSON-RPC 2.0 message parsing and formatting.

Implements the JSON-RPC 2.0 envelope rules used by every transport. Parse
and validation failures are raised as :class:`JsonRpcError` so they can be
answered before any method routing takes place.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Implementation-defined server error band (-32000..-32099)
SERVER_ERROR = -32000
TOOL_NOT_FOUND = -32001
RESOURCE_NOT_FOUND = -32002
PROMPT_NOT_FOUND = -32003
TOOL_TIMEOUT = -32004
TOOL_QUEUE_FULL = -32005
REQUEST_CANCELLED = -32006
RATE_LIMITED = -32007

SERVER_ERROR_MIN = -32099
SERVER_ERROR_MAX = -32000

ERROR_MESSAGES: dict[int, str] = {
    PARSE_ERROR: "Parse error",
    INVALID_REQUEST: "Invalid Request",
    METHOD_NOT_FOUND: "Method not found",
    INVALID_PARAMS: "Invalid params",
    INTERNAL_ERROR: "Internal error",
    SERVER_ERROR: "Server error",
    TOOL_NOT_FOUND: "Tool not found",
    RESOURCE_NOT_FOUND: "Resource not found",
    PROMPT_NOT_FOUND: "Prompt not found",
    TOOL_TIMEOUT: "Tool execution timed out",
    TOOL_QUEUE_FULL: "Tool executor queue is full",
    REQUEST_CANCELLED: "Request cancelled",
    RATE_LIMITED: "Rate limit exceeded",
}

# Maximum message size (1 MB)
MAX_MESSAGE_SIZE = 1_048_576

RequestId = int | str


def error_message(code: int) -> str:
    """Return the canonical message for an error code."""
    if code in ERROR_MESSAGES:
        return ERROR_MESSAGES[code]
    if SERVER_ERROR_MIN <= code <= SERVER_ERROR_MAX:
        return ERROR_MESSAGES[SERVER_ERROR]
    return "Unknown error"


def _is_valid_id(value: Any) -> bool:
    # bool is a subclass of int, but true/false are not valid ids
    return isinstance(value, int | str) and not isinstance(value, bool)


class JsonRpcError(Exception):
    """JSON-RPC error with code and message."""

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
        request_id: RequestId | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: JSON-RPC error code.
            message: Human-readable error message.
            data: Optional additional error data.
            request_id: Id of the offending message, when one could be read.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data
        self.request_id = request_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-RPC error object."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass
class JsonRpcRequest:
    """Represents a JSON-RPC request (has id)."""

    id: RequestId
    method: str
    params: dict[str, Any] | list[Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class JsonRpcNotification:
    """Represents a JSON-RPC notification (no id)."""

    method: str
    params: dict[str, Any] | list[Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class JsonRpcResponse:
    """Represents a JSON-RPC response.

    Exactly one of ``result`` and ``error`` is meaningful; ``error`` is set
    for error responses and ``result`` otherwise.
    """

    id: RequestId | None
    result: Any = None
    error: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error
        else:
            message["result"] = self.result
        return message


Message = JsonRpcRequest | JsonRpcNotification | JsonRpcResponse


def validate_message(data: dict[str, Any]) -> None:
    """Check the structure of a decoded JSON-RPC message.

    Args:
        data: Decoded JSON object.

    Raises:
        JsonRpcError: If the message is not a well-formed request,
            notification or response.
    """
    msg_id = data.get("id")
    echo_id = msg_id if _is_valid_id(msg_id) else None

    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise JsonRpcError(
            PARSE_ERROR, "Parse error: jsonrpc must be '2.0'", request_id=echo_id
        )

    if "method" in data:
        if not isinstance(data["method"], str):
            raise JsonRpcError(
                INVALID_REQUEST, "Invalid Request: method must be a string", request_id=echo_id
            )
        params = data.get("params")
        if params is not None and not isinstance(params, dict | list):
            raise JsonRpcError(
                INVALID_REQUEST,
                "Invalid Request: params must be an object or array",
                request_id=echo_id,
            )
        if "id" in data and not _is_valid_id(msg_id):
            raise JsonRpcError(INVALID_REQUEST, "Invalid Request: id must be integer or string")
        return

    has_result = "result" in data
    has_error = "error" in data
    if not has_result and not has_error:
        raise JsonRpcError(
            INVALID_REQUEST, "Invalid Request: method must be a string", request_id=echo_id
        )
    if has_result and has_error:
        raise JsonRpcError(
            INVALID_REQUEST,
            "Invalid Request: response cannot have both result and error",
            request_id=echo_id,
        )
    if has_error and not isinstance(data["error"], dict):
        raise JsonRpcError(
            INVALID_REQUEST, "Invalid Request: error must be an object", request_id=echo_id
        )
    if "id" not in data or (msg_id is not None and not _is_valid_id(msg_id)):
        raise JsonRpcError(
            INVALID_REQUEST, "Invalid Request: response id must be integer, string or null"
        )


def parse_message(raw: str | bytes) -> Message:
    """Parse a JSON-RPC message from a string.

    Args:
        raw: Raw JSON text, as received from a transport.

    Returns:
        Parsed request, notification or response.

    Raises:
        JsonRpcError: If the message is invalid.
    """
    # Check message size before parsing to prevent DoS; the limit is in UTF-8 bytes
    size = len(raw)
    if isinstance(raw, str) and size <= MAX_MESSAGE_SIZE:
        size = len(raw.encode("utf-8", errors="surrogatepass"))
    if size > MAX_MESSAGE_SIZE:
        raise JsonRpcError(
            PARSE_ERROR, f"Message too large: {size} bytes exceeds {MAX_MESSAGE_SIZE} limit"
        )

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise JsonRpcError(PARSE_ERROR, f"Parse error: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise JsonRpcError(PARSE_ERROR, f"Parse error: {e}") from e

    # Must be an object (batches are not supported)
    if not isinstance(data, dict):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: message must be an object")

    validate_message(data)

    if "method" in data:
        params = data.get("params")
        if "id" in data:
            return JsonRpcRequest(id=data["id"], method=data["method"], params=params)
        return JsonRpcNotification(method=data["method"], params=params)

    return JsonRpcResponse(id=data["id"], result=data.get("result"), error=data.get("error"))


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False)


def format_response(msg_id: RequestId, result: Any) -> str:
    """Format a successful JSON-RPC response.

    Args:
        msg_id: Request ID to echo back.
        result: Result payload.

    Returns:
        JSON string.
    """
    return _dumps(JsonRpcResponse(id=msg_id, result=result).to_dict())


def format_error(
    msg_id: RequestId | None,
    code: int,
    message: str | None = None,
    data: Any | None = None,
) -> str:
    """Format a JSON-RPC error response.

    Args:
        msg_id: Request ID (or None for parse errors).
        code: Error code.
        message: Error message; defaults to the canonical text for ``code``.
        data: Optional error data.

    Returns:
        JSON string.
    """
    error = JsonRpcError(code, message or error_message(code), data)
    return _dumps(JsonRpcResponse(id=msg_id, error=error.to_dict()).to_dict())


def format_notification(method: str, params: dict[str, Any] | None = None) -> str:
    """Format a JSON-RPC notification (server to client).

    Args:
        method: Notification method name.
        params: Optional parameters.

    Returns:
        JSON string.
    """
    return _dumps(JsonRpcNotification(method=method, params=params).to_dict())


def encode_message(message: Message) -> str:
    """Serialize any parsed message back to JSON text."""
    return _dumps(message.to_dict())
