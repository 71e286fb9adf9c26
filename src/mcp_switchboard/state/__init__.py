"""Process-local connection and session state."""

from mcp_switchboard.state.connections import ConnectionRegistry
from mcp_switchboard.state.sessions import Session, SessionStore

__all__ = ["ConnectionRegistry", "Session", "SessionStore"]
