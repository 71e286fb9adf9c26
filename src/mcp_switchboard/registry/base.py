"""Descriptor types and registration markers.

Host objects expose capabilities by marking public methods with
:func:`tool`, :func:`resource` or :func:`prompt`. The registries read these
markers once, at registration time, and keep immutable descriptors.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

TOOL_MARKER = "__mcp_tool__"
RESOURCE_MARKER = "__mcp_resource__"
PROMPT_MARKER = "__mcp_prompt__"


@dataclass(frozen=True)
class Param:
    """Schema override for a single parameter.

    Used as ``typing.Annotated`` metadata::

        def add(self, a: Annotated[int, Param(description="First addend")]) -> int:
    """

    description: str = ""
    type: str = ""
    required: bool | None = None
    default: Any = None


@dataclass(frozen=True)
class ParameterDescriptor:
    """A tool or prompt parameter, derived once from the method signature."""

    name: str
    type: str
    required: bool
    default: Any = None
    description: str = ""
    items: str | None = None

    def to_schema(self) -> dict[str, Any]:
        """Convert to a JSON Schema property."""
        schema: dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.type == "array":
            schema["items"] = {"type": self.items} if self.items else {}
        if not self.required and self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolMarker:
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ResourceMarker:
    uri: str
    name: str | None = None
    description: str | None = None
    mime_type: str = "text/plain"


@dataclass(frozen=True)
class PromptMarker:
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ToolDescriptor:
    """Definition of a registered tool.

    ``handler`` references the registering host's bound method; it is never
    serialized.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Callable[..., Any] = field(repr=False, compare=False)
    parameters: tuple[ParameterDescriptor, ...] = ()
    output_schema: dict[str, Any] | None = None
    context_position: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP tool format.

        Returns:
            Dictionary in MCP tools/list format.
        """
        tool: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
        # MCP only accepts object-typed output schemas
        if self.output_schema is not None and self.output_schema.get("type") == "object":
            tool["outputSchema"] = self.output_schema
        return tool


@dataclass(frozen=True)
class ResourceDescriptor:
    """Definition of a readable resource."""

    uri: str
    name: str
    description: str
    mime_type: str
    handler: Callable[[], Any] = field(repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


@dataclass(frozen=True)
class PromptDescriptor:
    """Definition of a prompt template."""

    name: str
    description: str
    handler: Callable[..., Any] = field(repr=False, compare=False)
    arguments: tuple[ParameterDescriptor, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [
                {"name": arg.name, "description": arg.description, "required": arg.required}
                for arg in self.arguments
            ],
        }


@dataclass
class ToolResult:
    """Explicit tool result, passed through to the client unchanged."""

    content: list[dict[str, Any]]
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP result format.

        Returns:
            Dictionary in MCP tools/call result format.
        """
        return {
            "content": self.content,
            "isError": self.is_error,
        }


def tool(
    name: str | Callable[..., Any] | None = None, description: str | None = None
) -> Any:
    """Mark a host method as a tool.

    Usable bare (``@tool``) or with arguments (``@tool(name="add")``). The
    exposed name defaults to the method name and the description to the
    first docstring line.
    """
    if callable(name):
        setattr(name, TOOL_MARKER, ToolMarker())
        return name

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        setattr(func, TOOL_MARKER, ToolMarker(name=name, description=description))
        return func

    return decorator


def resource(
    uri: str,
    name: str | None = None,
    description: str | None = None,
    mime_type: str = "text/plain",
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a zero-argument host method as the reader of ``uri``."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        marker = ResourceMarker(uri=uri, name=name, description=description, mime_type=mime_type)
        setattr(func, RESOURCE_MARKER, marker)
        return func

    return decorator


def prompt(
    name: str | Callable[..., Any] | None = None, description: str | None = None
) -> Any:
    """Mark a host method as a prompt renderer."""
    if callable(name):
        setattr(name, PROMPT_MARKER, PromptMarker())
        return name

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        setattr(func, PROMPT_MARKER, PromptMarker(name=name, description=description))
        return func

    return decorator


def iter_marked(host: Any, marker: str) -> list[tuple[Callable[..., Any], Any]]:
    """Find the public methods of ``host`` carrying ``marker``.

    Args:
        host: Object instance (or module) to inspect.
        marker: Marker attribute name.

    Returns:
        List of (bound callable, marker value) in declaration order.
    """
    if inspect.ismodule(host):
        names = list(vars(host))
    else:
        names = []
        for cls in reversed(type(host).__mro__):
            names.extend(name for name in vars(cls) if name not in names)
        names.extend(name for name in getattr(host, "__dict__", {}) if name not in names)

    found = []
    for name in names:
        if name.startswith("_"):
            continue
        static = inspect.getattr_static(host, name, None)
        func = getattr(static, "__func__", static)
        if not callable(func) or not hasattr(func, marker):
            continue
        found.append((getattr(host, name), getattr(func, marker)))
    return found
