"""
Request rate limiting.

The HTTP boundary depends only on the `RateLimiter` interface, so the
in-process fixed window can be swapped for a shared store when several
instances run behind a load balancer.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple


class RateLimiter:
    """Decides whether `(scope, identity)` may make another request."""

    def allow(self, scope: str, identity: str) -> bool:
        raise NotImplementedError

    def remaining(self, scope: str, identity: str) -> int:
        raise NotImplementedError


class FixedWindowRateLimiter(RateLimiter):
    """Counts requests per key in fixed windows of `window_seconds`.

    Each scope has its own cap; scopes without one are unlimited. Expired
    windows are swept at most once per window, so only keys seen within
    the last two windows are kept.
    """

    def __init__(
        self,
        limits: Dict[str, int],
        window_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.limits = dict(limits)
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def _current(self, key: Tuple[str, str], now: float) -> Tuple[float, int]:
        window = self._windows.get(key)
        if window is None or now - window[0] >= self.window_seconds:
            return now, 0
        return window

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        expired = [
            key for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now

    def allow(self, scope: str, identity: str) -> bool:
        limit: Optional[int] = self.limits.get(scope)
        if limit is None:
            return True
        key = (scope, identity)
        with self._lock:
            now = self.clock()
            self._sweep(now)
            started, count = self._current(key, now)
            if count >= limit:
                self._windows[key] = (started, count)
                return False
            self._windows[key] = (started, count + 1)
            return True

    def remaining(self, scope: str, identity: str) -> int:
        limit = self.limits.get(scope)
        if limit is None:
            return -1
        with self._lock:
            _, count = self._current((scope, identity), self.clock())
        return max(0, limit - count)

    def tracked_keys(self) -> int:
        """Number of (scope, identity) windows currently held."""
        with self._lock:
            return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
