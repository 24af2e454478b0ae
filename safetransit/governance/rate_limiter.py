"""Per-client limits on anonymous report submissions"""

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from safetransit.config import settings
from safetransit.logging_config import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Interface: decide whether a client may submit another report."""

    def allow(self, client_id: str) -> bool:
        raise NotImplementedError


class NoOpRateLimiter(RateLimiter):
    """Counts submissions but never refuses one."""

    def __init__(self):
        self.allowed = 0
        self._lock = threading.Lock()

    def allow(self, client_id: str) -> bool:
        with self._lock:
            self.allowed += 1
        return True


class InMemoryRateLimiter(RateLimiter):
    """
    Sliding-window limiter kept in process memory.

    Client identifiers are held only in memory and are never logged or
    persisted, so they cannot be tied back to a stored report. A client is
    forgotten once it has no submission left inside the window.
    """

    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            limit: Submissions allowed per window (defaults to config)
            window_seconds: Window length in seconds (defaults to config)
            clock: Returns the current time as epoch seconds
        """
        self.limit = limit if limit is not None else settings.reporting.rate_limit_reports
        self.window_seconds = (
            window_seconds if window_seconds is not None
            else settings.reporting.rate_limit_window_seconds
        )
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def allow(self, client_id: str) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            timestamps = self._requests.get(client_id)
            if timestamps is not None:
                self._prune(timestamps, now)

            if timestamps and len(timestamps) >= self.limit:
                logger.warning("report_rate_limit_exceeded", limit=self.limit)
                return False

            if timestamps is None:
                timestamps = self._requests[client_id] = deque()
            timestamps.append(now)
            return True

    def _prune(self, timestamps: Deque[float], now: float) -> None:
        while timestamps and now - timestamps[0] >= self.window_seconds:
            timestamps.popleft()

    def _sweep(self, now: float) -> None:
        """Drop every client whose submissions have all left the window."""
        for client_id in list(self._requests):
            timestamps = self._requests[client_id]
            self._prune(timestamps, now)
            if not timestamps:
                del self._requests[client_id]
        self._last_sweep = now


def build_rate_limiter() -> RateLimiter:
    """Rate limiter selected by REPORTING_RATE_LIMIT_ENABLED."""
    if settings.reporting.rate_limit_enabled:
        return InMemoryRateLimiter()
    return NoOpRateLimiter()
