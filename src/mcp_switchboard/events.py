"""Event router - fans transport events out to subscribed listeners."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

CONNECT = "connect"
MESSAGE = "message"
CLOSE = "close"
ERROR = "error"

Listener = Callable[..., Any]


@dataclass(frozen=True)
class Subscription:
    """Token returned by :meth:`EventRouter.subscribe`."""

    event: str
    listener_id: int


class EventRouter:
    """Synchronous publish/subscribe keyed by event name.

    Listeners run in subscription order on the emitting thread. A listener
    that raises is logged and skipped; the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, dict[int, Listener]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, event: str, listener: Listener) -> Subscription:
        """Register ``listener`` for ``event``.

        Returns:
            Token that removes exactly this subscription when passed to
            :meth:`unsubscribe`.
        """
        with self._lock:
            listener_id = next(self._ids)
            self._listeners.setdefault(event, {})[listener_id] = listener
        return Subscription(event, listener_id)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove one subscription.

        Returns:
            True if the subscription was active.
        """
        with self._lock:
            listeners = self._listeners.get(subscription.event)
            if listeners is None or subscription.listener_id not in listeners:
                return False
            del listeners[subscription.listener_id]
            if not listeners:
                del self._listeners[subscription.event]
        return True

    def off(self, event: str) -> None:
        """Remove every listener of ``event``."""
        with self._lock:
            self._listeners.pop(event, None)

    def emit(self, event: str, *args: Any) -> int:
        """Call every listener of ``event`` with ``args``.

        Returns:
            Number of listeners that completed without raising.
        """
        with self._lock:
            listeners = list(self._listeners.get(event, {}).values())

        completed = 0
        for listener in listeners:
            try:
                listener(*args)
                completed += 1
            except Exception:
                logger.exception("Listener for '%s' event failed", event)
        return completed

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, {}))

    def has_listeners(self, event: str) -> bool:
        return self.listener_count(event) > 0

    def event_names(self) -> list[str]:
        with self._lock:
            return list(self._listeners)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()
