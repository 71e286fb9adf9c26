"""Per-connection ordered execution.

A :class:`SerialLane` runs submitted jobs one at a time, in submission
order, on a shared thread pool. One lane per connection keeps that
connection's responses in receipt order while other connections proceed
independently.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)


class SerialLane:
    """FIFO job queue drained by at most one pool thread at a time."""

    def __init__(self, pool: ThreadPoolExecutor, name: str = "") -> None:
        """Initialize the lane.

        Args:
            pool: Shared pool that runs the drain loop.
            name: Label used in log messages.
        """
        self._pool = pool
        self._name = name
        self._jobs: deque[Callable[[], None]] = deque()
        self._condition = threading.Condition()
        self._active = False

    def submit(self, job: Callable[[], None]) -> None:
        """Queue a job behind every job submitted before it."""
        with self._condition:
            self._jobs.append(job)
            if self._active:
                return
            self._active = True
        try:
            self._pool.submit(self._drain)
        except RuntimeError:
            # Pool already shut down; nothing will ever drain these jobs
            with self._condition:
                self._active = False
                self._jobs.clear()
                self._condition.notify_all()
            raise

    def _drain(self) -> None:
        while True:
            with self._condition:
                if not self._jobs:
                    self._active = False
                    self._condition.notify_all()
                    return
                job = self._jobs.popleft()
            try:
                job()
            except Exception:
                logger.exception("Unhandled error in lane %s", self._name)

    @property
    def idle(self) -> bool:
        with self._condition:
            return not self._active and not self._jobs

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every queued job has run.

        Returns:
            True if the lane drained, False on timeout.
        """
        with self._condition:
            return self._condition.wait_for(lambda: not self._active and not self._jobs, timeout)
