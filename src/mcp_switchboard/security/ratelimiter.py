"""Sliding-window rate limiting for tool invocations."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Mapping


class RateLimitExceeded(Exception):
    """Raised when a key has used up its calls for the current window.

    Attributes:
        key: The throttled key (tool name).
        limit: Calls allowed per window.
        retry_after: Seconds until the oldest call leaves the window.
    """

    def __init__(self, key: str, limit: int, window: float, retry_after: float) -> None:
        super().__init__(f"Rate limit exceeded for {key}: {limit} requests per {window:g}s")
        self.key = key
        self.limit = limit
        self.retry_after = retry_after


class RateLimiter:
    """Sliding window rate limiter keyed by tool name.

    Every key gets ``limit`` calls per ``window`` seconds unless an override
    in ``overrides`` names a different limit for it. A limit of 0 or less
    disables limiting for that key.

    Example:
        limiter = RateLimiter(limit=10, window=60.0, overrides={"search": 2})
        try:
            limiter.check("search")
        except RateLimitExceeded as e:
            print(f"retry in {e.retry_after:.1f}s")
    """

    def __init__(
        self,
        limit: int = 60,
        window: float = 60.0,
        overrides: Mapping[str, int] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            limit: Default calls allowed per window.
            window: Size of the sliding window in seconds.
            overrides: Per-key limits replacing the default.
            clock: Time source returning seconds.

        Raises:
            ValueError: If window is not positive.
        """
        if window <= 0:
            raise ValueError("window must be positive")

        self._limit = limit
        self._window = window
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._buckets: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    @property
    def window(self) -> float:
        return self._window

    def limit_for(self, key: str) -> int:
        return self._overrides.get(key, self._limit)

    def _prune(self, key: str, now: float) -> deque[float]:
        bucket = self._buckets.setdefault(key, deque())
        window_start = now - self._window
        while bucket and bucket[0] <= window_start:
            bucket.popleft()
        return bucket

    def check(self, key: str) -> None:
        """Record one call for ``key``.

        Raises:
            RateLimitExceeded: If the call would exceed the key's limit. A
                denied call is not recorded.
        """
        limit = self.limit_for(key)
        if limit <= 0:
            return

        with self._lock:
            now = self._clock()
            bucket = self._prune(key, now)
            if len(bucket) >= limit:
                retry_after = bucket[0] + self._window - now
                raise RateLimitExceeded(key, limit, self._window, max(0.0, retry_after))
            bucket.append(now)

    def allow(self, key: str) -> bool:
        """Like :meth:`check`, but report denial as False."""
        try:
            self.check(key)
        except RateLimitExceeded:
            return False
        return True

    def get_request_count(self, key: str) -> int:
        """Number of calls recorded for ``key`` in the current window."""
        with self._lock:
            return len(self._prune(key, self._clock()))

    def remaining(self, key: str) -> int | None:
        """Calls left in the current window, or None when unlimited."""
        limit = self.limit_for(key)
        if limit <= 0:
            return None
        return max(0, limit - self.get_request_count(key))

    def reset(self, key: str | None = None) -> None:
        """Forget recorded calls for one key, or for every key."""
        with self._lock:
            if key is None:
                self._buckets.clear()
            else:
                self._buckets.pop(key, None)
