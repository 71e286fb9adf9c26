"""In-memory session store with idle expiry.

Sessions are keyed by an opaque id and live independently of connections,
so a client can reconnect into the same session. Nothing is persisted.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Session:
    """Key/value state bag that expires after ``ttl`` idle seconds.

    Every read or write refreshes the last-access time.
    """

    def __init__(self, session_id: str, ttl: float = 3600, clock: Clock = time.time) -> None:
        """Initialize the session.

        Args:
            session_id: Opaque session identifier.
            ttl: Idle lifetime in seconds.
            clock: Time source returning seconds.
        """
        self._id = session_id
        self._ttl = ttl
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._created_at = clock()
        self._last_accessed_at = self._created_at

    @property
    def id(self) -> str:
        return self._id

    @property
    def created_at(self) -> float:
        return self._created_at

    @property
    def last_accessed_at(self) -> float:
        return self._last_accessed_at

    @property
    def ttl(self) -> float:
        return self._ttl

    @ttl.setter
    def ttl(self, value: float) -> None:
        if value <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = value

    def refresh(self) -> None:
        self._last_accessed_at = self._clock()

    def get(self, key: str, default: Any = None) -> Any:
        self.refresh()
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.refresh()

    def has(self, key: str) -> bool:
        self.refresh()
        return key in self._data

    def remove(self, key: str) -> None:
        self._data.pop(key, None)
        self.refresh()

    def all(self) -> dict[str, Any]:
        """Return a copy of the stored data."""
        return dict(self._data)

    def clear(self) -> None:
        self._data.clear()
        self.refresh()

    def is_expired(self) -> bool:
        return self._clock() - self._last_accessed_at > self._ttl

    def time_to_live(self) -> float:
        """Seconds left before the session expires (never negative)."""
        return max(0.0, self._ttl - (self._clock() - self._last_accessed_at))


class SessionStore:
    """Process-local registry of sessions.

    Expired sessions are reaped lazily when looked up, or in bulk by
    :meth:`cleanup_expired`.
    """

    def __init__(self, ttl: float = 3600, clock: Clock = time.time) -> None:
        """Initialize the store.

        Args:
            ttl: Idle lifetime given to new sessions, in seconds.
            clock: Time source shared with the sessions.

        Raises:
            ValueError: If ttl is not positive.
        """
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def create(self, session_id: str | None = None) -> Session:
        """Create a session, replacing any existing session with the same id.

        Args:
            session_id: Identifier to use; a random one is generated if omitted.

        Returns:
            The new session.
        """
        session_id = session_id or uuid.uuid4().hex
        session = Session(session_id, ttl=self._ttl, clock=self._clock)
        with self._lock:
            self._sessions[session_id] = session
        logger.info("Session created: %s", session_id)
        return session

    def get(self, session_id: str) -> Session | None:
        """Return a live session, or None if absent or expired."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_expired():
                del self._sessions[session_id]
                logger.info("Session expired: %s", session_id)
                return None
        session.refresh()
        return session

    def remove(self, session_id: str) -> None:
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info("Session removed: %s", session_id)

    def cleanup_expired(self) -> int:
        """Remove every expired session.

        Returns:
            Number of sessions removed.
        """
        with self._lock:
            expired = [sid for sid, session in self._sessions.items() if session.is_expired()]
            for session_id in expired:
                del self._sessions[session_id]
            remaining = len(self._sessions)

        if expired:
            logger.info(
                "Expired sessions cleaned up: %d removed, %d remaining", len(expired), remaining
            )
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)
