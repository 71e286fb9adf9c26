"""MCP initialize handshake.

The handshake is stateless: every ``initialize`` request is answered with
the negotiated protocol version, the server capabilities and its identity.
Requests are not gated on a prior handshake.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Supported MCP protocol versions (newest first)
SUPPORTED_PROTOCOL_VERSIONS = ["2025-03-26", "2024-11-05"]
MCP_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]


def negotiate_version(requested: Any) -> str:
    """Pick the protocol version to answer with.

    Args:
        requested: Version sent by the client, if any.

    Returns:
        The client's version when supported, otherwise the newest supported.
    """
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return MCP_PROTOCOL_VERSION


@dataclass
class Lifecycle:
    """Answers ``initialize`` with server identity and capabilities."""

    server_info: dict[str, str] = field(
        default_factory=lambda: {"name": "mcp-switchboard", "version": "1.0.0"}
    )
    capabilities: dict[str, Any] = field(
        default_factory=lambda: {
            "tools": {"listChanged": False},
            "resources": {},
            "prompts": {},
        }
    )

    def handle_initialize(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Handle an initialize request.

        Args:
            params: Initialize request parameters.

        Returns:
            Initialize response result.
        """
        params = params or {}
        version = negotiate_version(params.get("protocolVersion"))
        client = params.get("clientInfo") or {}
        logger.info(
            "Initialize from client %s %s (protocol %s)",
            client.get("name", "unknown") if isinstance(client, dict) else "unknown",
            client.get("version", "") if isinstance(client, dict) else "",
            version,
        )
        return {
            "protocolVersion": version,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info,
        }
