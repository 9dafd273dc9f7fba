"""
In-memory fixed-window rate limiting.

Counters are keyed by client address and reset on wall-clock window
boundaries. State lives in this process only: a multi-instance
deployment needs a shared counter store behind the same interface.
"""
import logging
import math
import threading
import time
from collections import namedtuple

logger = logging.getLogger(__name__)

RateLimitResult = namedtuple("RateLimitResult", ["allowed", "remaining", "retry_after"])


class FixedWindowLimiter:
    def __init__(self, limit: int, window: int, clock=time.time):
        if limit < 1 or window < 1:
            raise ValueError("limit and window must be positive")
        self.limit = limit
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        # key -> [window_start, count]
        self._counters = {}
        self._last_sweep = 0.0

    def _window_start(self, now: float) -> float:
        return math.floor(now / self.window) * self.window

    def _retry_after(self, now: float) -> int:
        return max(1, math.ceil(self._window_start(now) + self.window - now))

    def _evict_stale(self, now: float):
        current = self._window_start(now)
        stale = [key for key, (start, _) in self._counters.items() if start < current]
        for key in stale:
            del self._counters[key]
        self._last_sweep = now
        if stale:
            logger.debug("Evicted %d stale rate-limit entries", len(stale))

    def hit(self, key: str) -> RateLimitResult:
        """Count one request for key and report whether it is allowed."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._evict_stale(now)

            start = self._window_start(now)
            entry = self._counters.get(key)
            if entry is None or entry[0] != start:
                entry = [start, 0]
                self._counters[key] = entry
            entry[1] += 1

            if entry[1] > self.limit:
                return RateLimitResult(False, 0, self._retry_after(now))
            return RateLimitResult(True, self.limit - entry[1], 0)

    def peek(self, key: str) -> RateLimitResult:
        """Report the state for key without counting a request."""
        now = self._clock()
        with self._lock:
            entry = self._counters.get(key)
            if entry is None or entry[0] != self._window_start(now):
                return RateLimitResult(True, self.limit, 0)
            if entry[1] >= self.limit:
                return RateLimitResult(False, 0, self._retry_after(now))
            return RateLimitResult(True, self.limit - entry[1], 0)

    def reset(self, key: str):
        with self._lock:
            self._counters.pop(key, None)

    def clear(self):
        with self._lock:
            self._counters.clear()
            self._last_sweep = 0.0

    def __len__(self):
        return len(self._counters)
