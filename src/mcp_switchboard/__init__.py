"""mcp-switchboard: serve MCP tools, resources and prompts over interchangeable transports."""

from mcp_switchboard.config import ConfigError, ServerConfig, load_config
from mcp_switchboard.registry import Param, ToolResult, prompt, resource, tool
from mcp_switchboard.runtime import CancellationToken, ToolContext
from mcp_switchboard.server import MCPServer
from mcp_switchboard.transports import create_transport

__version__ = "1.0.0"

__all__ = [
    "CancellationToken",
    "ConfigError",
    "MCPServer",
    "Param",
    "ServerConfig",
    "ToolContext",
    "ToolResult",
    "__version__",
    "create_transport",
    "load_config",
    "prompt",
    "resource",
    "tool",
]
