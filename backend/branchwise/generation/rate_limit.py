"""Sliding-window rate limiter for AI reply requests.

One instance is created at application startup and handed to request
handlers through a dependency; tests build their own isolated instances.
"""

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most `max_requests` per identifier within `window_seconds`."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, identifier: str, now: float) -> list[float]:
        recent = [
            t for t in self._requests.get(identifier, [])
            if now - t < self.window_seconds
        ]
        if recent:
            self._requests[identifier] = recent
        else:
            self._requests.pop(identifier, None)
        return recent

    def is_allowed(self, identifier: str) -> bool:
        """Record a request and report whether it fits in the window."""
        with self._lock:
            now = self._clock()
            recent = self._prune(identifier, now)
            if len(recent) >= self.max_requests:
                logger.info("Rate limit reached for %s", identifier)
                return False
            recent.append(now)
            self._requests[identifier] = recent
            return True

    def remaining(self, identifier: str) -> int:
        with self._lock:
            recent = self._prune(identifier, self._clock())
            return max(self.max_requests - len(recent), 0)

    def retry_after(self, identifier: str) -> float:
        """Seconds until the oldest request in the window expires; 0 if allowed now."""
        with self._lock:
            now = self._clock()
            recent = self._prune(identifier, now)
            if len(recent) < self.max_requests:
                return 0.0
            return max(self.window_seconds - (now - recent[0]), 0.0)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._requests.pop(identifier, None)


class RateLimitExceededError(Exception):
    def __init__(self, identifier: str, retry_after: float) -> None:
        self.identifier = identifier
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {identifier}")
