"""Tool registry - describes, binds and invokes host tools."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, best_match

from mcp_switchboard.registry.base import TOOL_MARKER, ToolDescriptor, iter_marked
from mcp_switchboard.registry.schema import (
    describe_parameters,
    input_schema,
    output_schema,
    summary_line,
)
from mcp_switchboard.runtime.executor import ToolContext

logger = logging.getLogger(__name__)


class ToolNotFoundError(Exception):
    """Raised when a tool is not found."""

    pass


class ToolArgumentError(Exception):
    """Raised when call arguments do not match the tool's parameters."""

    pass


class ToolExecutionError(Exception):
    """Raised when a tool body raises.

    Attributes:
        tool_name: Name of the failing tool.
        original_message: Message of the exception raised by the tool.
    """

    def __init__(self, tool_name: str, original_message: str) -> None:
        super().__init__(f"Tool '{tool_name}' execution failed: {original_message}")
        self.tool_name = tool_name
        self.original_message = original_message


class ToolRegistrationError(Exception):
    """Raised when a tool cannot be described."""

    pass


class ToolRegistry:
    """Registry of tools exposed through tools/list and tools/call.

    Tools are described once, when registered. Registering a name twice
    replaces the earlier tool.
    """

    def __init__(self) -> None:
        """Initialize the registry."""
        self._tools: dict[str, ToolDescriptor] = {}
        self._validators: dict[str, Draft202012Validator] = {}

    def register(self, host: Any) -> list[str]:
        """Register every ``@tool`` method of a host object.

        Args:
            host: Object (or module) whose marked methods become tools.

        Returns:
            Names of the registered tools.
        """
        names = []
        for method, marker in iter_marked(host, TOOL_MARKER):
            descriptor = self.describe(method, name=marker.name, description=marker.description)
            self.add(descriptor)
            names.append(descriptor.name)

        if not names:
            logger.debug("No tools found on %s", type(host).__name__)
        return names

    def register_function(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> ToolDescriptor:
        """Register a plain callable as a tool.

        Args:
            func: Callable to expose.
            name: Tool name (defaults to the callable's ``__name__``).
            description: Tool description (defaults to the docstring summary).

        Returns:
            The stored descriptor.
        """
        descriptor = self.describe(func, name=name, description=description)
        self.add(descriptor)
        return descriptor

    def describe(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> ToolDescriptor:
        """Build a descriptor for ``func`` without registering it."""
        tool_name = name or getattr(func, "__name__", "")
        if not tool_name:
            raise ToolRegistrationError(f"Cannot determine a tool name for {func!r}")

        try:
            parameters, context_position = describe_parameters(func)
        except (TypeError, ValueError) as e:
            raise ToolRegistrationError(f"Cannot describe tool '{tool_name}': {e}") from e

        return ToolDescriptor(
            name=tool_name,
            description=description if description is not None else summary_line(func.__doc__),
            input_schema=input_schema(parameters),
            handler=func,
            parameters=parameters,
            output_schema=output_schema(func),
            context_position=context_position,
        )

    def add(self, descriptor: ToolDescriptor) -> None:
        """Store a descriptor, replacing any tool with the same name.

        Raises:
            ToolRegistrationError: If the input schema is not valid JSON Schema.
        """
        try:
            Draft202012Validator.check_schema(descriptor.input_schema)
        except SchemaError as e:
            raise ToolRegistrationError(
                f"Invalid input schema for tool '{descriptor.name}': {e.message}"
            ) from e

        if descriptor.name in self._tools:
            logger.warning("Tool '%s' re-registered; previous definition replaced", descriptor.name)

        self._tools[descriptor.name] = descriptor
        self._validators[descriptor.name] = Draft202012Validator(descriptor.input_schema)
        logger.info("Tool registered: %s", descriptor.name)

    def list_tools(self) -> list[dict[str, Any]]:
        """List all available tools in MCP format.

        Returns:
            List of tool definitions in MCP format.
        """
        return [descriptor.to_dict() for descriptor in self._tools.values()]

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def remove(self, name: str) -> None:
        """Remove a tool; unknown names are ignored."""
        if self._tools.pop(name, None) is not None:
            self._validators.pop(name, None)
            logger.info("Tool removed: %s", name)

    def clear(self) -> None:
        self._tools.clear()
        self._validators.clear()
        logger.info("All tools cleared")

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def bind(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        context: ToolContext | None = None,
    ) -> tuple[ToolDescriptor, list[Any]]:
        """Resolve call arguments into positional values.

        Args:
            name: Tool name.
            arguments: Arguments keyed by parameter name.
            context: Context injected into a ``ToolContext`` parameter.

        Returns:
            Tuple of (descriptor, positional arguments in declared order).

        Raises:
            ToolNotFoundError: If the tool is not registered.
            ToolArgumentError: If a required argument is missing or an
                argument has the wrong type.
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise ToolNotFoundError(f"Tool not found: {name}")

        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ToolArgumentError("Tool arguments must be an object")

        # null counts as absent, so optional parameters fall back to defaults
        supplied = {key: value for key, value in arguments.items() if value is not None}

        values: list[Any] = []
        for param in descriptor.parameters:
            if param.name in supplied:
                values.append(supplied[param.name])
            elif param.required:
                raise ToolArgumentError(f"Missing required parameter: {param.name}")
            else:
                values.append(param.default)

        error = best_match(self._validators[name].iter_errors(supplied))
        if error is not None:
            location = ".".join(str(part) for part in error.absolute_path) or "arguments"
            raise ToolArgumentError(f"Invalid argument '{location}': {error.message}")

        if descriptor.context_position is not None:
            values.insert(descriptor.context_position, context or ToolContext())

        return descriptor, values

    def invoke(self, descriptor: ToolDescriptor, values: list[Any]) -> Any:
        """Invoke a bound tool.

        Raises:
            ToolExecutionError: If the tool body raises.
        """
        try:
            return descriptor.handler(*values)
        except Exception as e:
            logger.error("Tool '%s' failed: %s", descriptor.name, e, exc_info=True)
            raise ToolExecutionError(descriptor.name, str(e)) from e

    def call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        context: ToolContext | None = None,
    ) -> Any:
        """Bind arguments and invoke a tool in the calling thread.

        Raises:
            ToolNotFoundError: If the tool is not registered.
            ToolArgumentError: If the arguments do not bind.
            ToolExecutionError: If the tool fails to execute.
        """
        descriptor, values = self.bind(name, arguments, context)
        return self.invoke(descriptor, values)
