"""Tool, resource and prompt registries."""

from mcp_switchboard.registry.base import (
    Param,
    ParameterDescriptor,
    PromptDescriptor,
    ResourceDescriptor,
    ToolDescriptor,
    ToolResult,
    prompt,
    resource,
    tool,
)
from mcp_switchboard.registry.loader import HostLoadError, load_host
from mcp_switchboard.registry.prompts import (
    PromptArgumentError,
    PromptNotFoundError,
    PromptRegistry,
    PromptRenderError,
)
from mcp_switchboard.registry.resources import (
    ResourceNotFoundError,
    ResourceReadError,
    ResourceRegistry,
)
from mcp_switchboard.registry.tools import (
    ToolArgumentError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRegistrationError,
    ToolRegistry,
)

__all__ = [
    "HostLoadError",
    "Param",
    "ParameterDescriptor",
    "PromptArgumentError",
    "PromptDescriptor",
    "PromptNotFoundError",
    "PromptRegistry",
    "PromptRenderError",
    "ResourceDescriptor",
    "ResourceNotFoundError",
    "ResourceReadError",
    "ResourceRegistry",
    "ToolArgumentError",
    "ToolDescriptor",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRegistrationError",
    "ToolRegistry",
    "ToolResult",
    "load_host",
    "prompt",
    "resource",
    "tool",
]
