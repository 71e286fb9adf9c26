"""Resource registry - resources/list and resources/read."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from mcp_switchboard.registry.base import RESOURCE_MARKER, ResourceDescriptor, iter_marked
from mcp_switchboard.registry.schema import summary_line

logger = logging.getLogger(__name__)


class ResourceNotFoundError(Exception):
    """Raised when no resource is registered for a URI."""

    pass


class ResourceReadError(Exception):
    """Raised when a resource reader fails."""

    pass


class ResourceRegistry:
    """Maps resource URIs to zero-argument reader callables."""

    def __init__(self) -> None:
        self._resources: dict[str, ResourceDescriptor] = {}

    def register(self, host: Any) -> list[str]:
        """Register every ``@resource`` method of a host object.

        Returns:
            URIs of the registered resources.
        """
        uris = []
        for method, marker in iter_marked(host, RESOURCE_MARKER):
            self.add(
                ResourceDescriptor(
                    uri=marker.uri,
                    name=marker.name or method.__name__,
                    description=(
                        marker.description
                        if marker.description is not None
                        else summary_line(method.__doc__)
                    ),
                    mime_type=marker.mime_type,
                    handler=method,
                )
            )
            uris.append(marker.uri)
        return uris

    def register_function(
        self,
        uri: str,
        func: Callable[[], Any],
        name: str | None = None,
        description: str = "",
        mime_type: str = "text/plain",
    ) -> ResourceDescriptor:
        """Register a plain callable as the reader of ``uri``."""
        descriptor = ResourceDescriptor(
            uri=uri,
            name=name or getattr(func, "__name__", uri),
            description=description,
            mime_type=mime_type,
            handler=func,
        )
        self.add(descriptor)
        return descriptor

    def add(self, descriptor: ResourceDescriptor) -> None:
        if descriptor.uri in self._resources:
            logger.warning(
                "Resource '%s' re-registered; previous definition replaced", descriptor.uri
            )
        self._resources[descriptor.uri] = descriptor
        logger.info("Resource registered: %s", descriptor.uri)

    def list_resources(self) -> list[dict[str, Any]]:
        return [descriptor.to_dict() for descriptor in self._resources.values()]

    def read(self, uri: str) -> dict[str, Any]:
        """Read a resource.

        Args:
            uri: Resource URI.

        Returns:
            resources/read result with a single text content entry.

        Raises:
            ResourceNotFoundError: If the URI is not registered.
            ResourceReadError: If the reader raises.
        """
        descriptor = self._resources.get(uri)
        if descriptor is None:
            raise ResourceNotFoundError(f"Resource not found: {uri}")

        try:
            payload = descriptor.handler()
        except Exception as e:
            logger.error("Resource '%s' failed: %s", uri, e, exc_info=True)
            raise ResourceReadError(str(e)) from e

        mime_type = descriptor.mime_type
        if isinstance(payload, bytes):
            text = payload.decode("utf-8", errors="replace")
        elif isinstance(payload, str):
            text = payload
        else:
            text = json.dumps(payload, ensure_ascii=False)
            mime_type = "application/json"

        return {"contents": [{"uri": uri, "mimeType": mime_type, "text": text}]}

    def remove(self, uri: str) -> None:
        self._resources.pop(uri, None)

    def clear(self) -> None:
        self._resources.clear()

    def __len__(self) -> int:
        return len(self._resources)
