"""Bounded, time-limited execution of tool bodies.

Tool calls run on a dedicated thread pool so that a slow tool cannot stall
message handling. Each invocation carries a :class:`CancellationToken`;
tools that accept a :class:`ToolContext` parameter can observe it and stop
early. Python threads cannot be killed, so a tool that ignores its token
keeps its worker slot until it returns.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from mcp_switchboard.state.sessions import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ToolTimeoutError(Exception):
    """Raised when a tool does not finish within the executor timeout."""

    pass


class ToolQueueFullError(Exception):
    """Raised when the executor already holds its maximum of pending calls."""

    pass


class ToolCancelledError(Exception):
    """Raised when a call is cancelled before its tool returns."""

    pass


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Set the flag and run registered callbacks (once)."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation, immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses."""
        return self._event.wait(timeout)


@dataclass
class ToolContext:
    """Per-call context injected into tools that declare a parameter of this type."""

    request_id: int | str | None = None
    connection_id: int | None = None
    session: Session | None = None
    token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


class ToolExecutor:
    """Runs tool callables on a bounded worker pool with a timeout.

    Example:
        executor = ToolExecutor(max_workers=4, max_pending=16, timeout=30.0)
        result = executor.run(lambda: registry.invoke(descriptor, args), token)
    """

    def __init__(
        self,
        max_workers: int = 4,
        max_pending: int = 16,
        timeout: float | None = 30.0,
    ) -> None:
        """Initialize the executor.

        Args:
            max_workers: Number of threads executing tool bodies.
            max_pending: Maximum calls queued or running at once.
            timeout: Seconds to wait for a tool, or None to wait forever.

        Raises:
            ValueError: If a size is not positive.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be positive")
        if max_pending < 1:
            raise ValueError("max_pending must be positive")

        self._max_pending = max_pending
        self._timeout = timeout if timeout and timeout > 0 else None
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mcp-tool")
        self._lock = threading.Lock()
        self._pending = 0

    @property
    def timeout(self) -> float | None:
        return self._timeout

    @property
    def pending(self) -> int:
        """Number of calls queued or still running."""
        with self._lock:
            return self._pending

    def _release(self, _future: Any) -> None:
        with self._lock:
            self._pending -= 1

    def run(self, fn: Callable[[], T], token: CancellationToken | None = None) -> T:
        """Execute ``fn`` on the pool and wait for its result.

        Args:
            fn: Zero-argument callable wrapping the tool invocation.
            token: Cancellation token for this call.

        Returns:
            Whatever ``fn`` returns.

        Raises:
            ToolQueueFullError: If ``max_pending`` calls are outstanding.
            ToolTimeoutError: If the timeout elapses first.
            ToolCancelledError: If the token is cancelled first.
        """
        token = token or CancellationToken()
        if token.cancelled:
            raise ToolCancelledError("Request cancelled before execution")

        with self._lock:
            if self._pending >= self._max_pending:
                raise ToolQueueFullError(
                    f"Tool executor queue is full ({self._max_pending} pending calls)"
                )
            self._pending += 1

        try:
            future = self._pool.submit(fn)
        except RuntimeError:
            self._release(None)
            raise

        future.add_done_callback(self._release)

        finished = threading.Event()
        future.add_done_callback(lambda _f: finished.set())
        token.add_callback(finished.set)
        finished.wait(self._timeout)

        if future.done():
            return future.result()

        future.cancel()
        if token.cancelled:
            raise ToolCancelledError("Request cancelled")

        # Signal the tool so a cooperative body can stop
        token.cancel()
        logger.warning("Tool call exceeded %.1fs timeout", self._timeout)
        raise ToolTimeoutError(f"Tool execution exceeded {self._timeout}s timeout")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting calls and release the worker threads."""
        self._pool.shutdown(wait=wait, cancel_futures=True)
