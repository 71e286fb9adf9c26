"""Prompt registry - prompts/list and prompts/get."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from mcp_switchboard.registry.base import PROMPT_MARKER, PromptDescriptor, iter_marked
from mcp_switchboard.registry.schema import describe_parameters, summary_line
from mcp_switchboard.runtime.executor import ToolContext

logger = logging.getLogger(__name__)


class PromptNotFoundError(Exception):
    """Raised when a prompt name is not registered."""

    pass


class PromptArgumentError(Exception):
    """Raised when a required prompt argument is missing."""

    pass


class PromptRenderError(Exception):
    """Raised when a prompt renderer fails."""

    pass


def _text_message(text: str, role: str = "user") -> dict[str, Any]:
    return {"role": role, "content": {"type": "text", "text": text}}


class PromptRegistry:
    """Maps prompt names to renderer callables.

    A renderer returns either a string, which becomes a single user message,
    or a list of messages. List items that are strings become user text
    messages; dicts are passed through.
    """

    def __init__(self) -> None:
        self._prompts: dict[str, PromptDescriptor] = {}
        self._context_positions: dict[str, int | None] = {}

    def register(self, host: Any) -> list[str]:
        """Register every ``@prompt`` method of a host object."""
        names = []
        for method, marker in iter_marked(host, PROMPT_MARKER):
            descriptor = self.register_function(
                method, name=marker.name, description=marker.description
            )
            names.append(descriptor.name)
        return names

    def register_function(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> PromptDescriptor:
        arguments, context_position = describe_parameters(func)
        descriptor = PromptDescriptor(
            name=name or func.__name__,
            description=description if description is not None else summary_line(func.__doc__),
            handler=func,
            arguments=arguments,
        )
        if descriptor.name in self._prompts:
            logger.warning(
                "Prompt '%s' re-registered; previous definition replaced", descriptor.name
            )
        self._prompts[descriptor.name] = descriptor
        self._context_positions[descriptor.name] = context_position
        logger.info("Prompt registered: %s", descriptor.name)
        return descriptor

    def list_prompts(self) -> list[dict[str, Any]]:
        return [descriptor.to_dict() for descriptor in self._prompts.values()]

    def get(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Render a prompt.

        Args:
            name: Prompt name.
            arguments: Template arguments keyed by name.

        Returns:
            prompts/get result with description and messages.

        Raises:
            PromptNotFoundError: If the prompt is not registered.
            PromptArgumentError: If a required argument is missing.
            PromptRenderError: If the renderer raises.
        """
        descriptor = self._prompts.get(name)
        if descriptor is None:
            raise PromptNotFoundError(f"Prompt not found: {name}")

        arguments = arguments or {}
        if not isinstance(arguments, dict):
            raise PromptArgumentError("Prompt arguments must be an object")

        values: list[Any] = []
        for arg in descriptor.arguments:
            if arguments.get(arg.name) is not None:
                values.append(arguments[arg.name])
            elif arg.required:
                raise PromptArgumentError(f"Missing required argument: {arg.name}")
            else:
                values.append(arg.default)

        context_position = self._context_positions.get(name)
        if context_position is not None:
            values.insert(context_position, ToolContext())

        try:
            rendered = descriptor.handler(*values)
        except Exception as e:
            logger.error("Prompt '%s' failed: %s", name, e, exc_info=True)
            raise PromptRenderError(str(e)) from e

        if isinstance(rendered, str):
            messages = [_text_message(rendered)]
        else:
            messages = [
                _text_message(item) if isinstance(item, str) else item for item in rendered
            ]

        return {"description": descriptor.description, "messages": messages}

    def remove(self, name: str) -> None:
        self._prompts.pop(name, None)
        self._context_positions.pop(name, None)

    def clear(self) -> None:
        self._prompts.clear()
        self._context_positions.clear()

    def __len__(self) -> int:
        return len(self._prompts)
