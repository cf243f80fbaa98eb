"""
Sliding window rate limiting.

Each key keeps the timestamps of its admitted requests inside the
trailing window. Keys with no admitted request left in the window are
swept out at most once per window during normal calls, so memory follows
the number of active keys rather than every key ever seen. There are no
background timers.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional

import structlog

from .exceptions import RateLimitConfigurationError

logger = structlog.get_logger(__name__)

MAX_LIMIT = 1_000_000
MAX_WINDOW_SECONDS = 86_400
MAX_KEY_LENGTH = 250


@dataclass(frozen=True)
class RateLimitStats:
    """Snapshot of one key's window."""

    current: int
    remaining: int
    reset_in_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "remaining": self.remaining,
            "reset_in_seconds": round(self.reset_in_seconds, 3),
        }


@dataclass
class RateWindow:
    """Admitted request timestamps for one key."""

    limit: int
    window_seconds: float
    timestamps: Deque[float] = field(default_factory=deque)

    @property
    def count(self) -> int:
        return len(self.timestamps)

    @property
    def window_start(self) -> Optional[float]:
        return self.timestamps[0] if self.timestamps else None

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def try_admit(self, now: float) -> bool:
        self.prune(now)
        if len(self.timestamps) >= self.limit:
            return False
        self.timestamps.append(now)
        return True

    def stats(self, now: float) -> RateLimitStats:
        self.prune(now)
        reset_in = 0.0
        if self.timestamps:
            reset_in = max(0.0, self.timestamps[0] + self.window_seconds - now)
        return RateLimitStats(
            current=self.count,
            remaining=max(0, self.limit - self.count),
            reset_in_seconds=reset_in,
        )


class SlidingWindowRateLimiter:
    """
    Per-key sliding window limiter.

    A request for ``key`` is admitted when fewer than ``limit`` requests
    were admitted for that key during the last ``window_seconds``. The
    check and the increment happen under one lock.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
            raise RateLimitConfigurationError(
                f"limit must be an integer between 1 and {MAX_LIMIT}",
                parameter="limit",
                value=limit,
            )
        if isinstance(window_seconds, bool) or not isinstance(window_seconds, (int, float)) or not (
            1 <= window_seconds <= MAX_WINDOW_SECONDS
        ):
            raise RateLimitConfigurationError(
                f"window_seconds must be between 1 and {MAX_WINDOW_SECONDS}",
                parameter="window_seconds",
                value=window_seconds,
            )

        self.limit = limit
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def is_allowed(self, key: str) -> bool:
        """Admit or refuse one request for ``key``."""
        self._validate_key(key)

        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            window = self._windows.get(key)
            if window is None:
                window = RateWindow(limit=self.limit, window_seconds=self.window_seconds)
                self._windows[key] = window
                logger.debug("Created rate limit window", key=key, limit=self.limit)

            allowed = window.try_admit(now)

        if not allowed:
            logger.debug("Rate limit reached", key=key, limit=self.limit)
        return allowed

    def stats(self) -> Dict[str, RateLimitStats]:
        """Stats for every tracked key."""
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            return {key: window.stats(now) for key, window in self._windows.items()}

    def stats_for(self, key: str) -> RateLimitStats:
        self._validate_key(key)
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None:
                return RateLimitStats(current=0, remaining=self.limit, reset_in_seconds=0.0)
            return window.stats(now)

    def remaining(self, key: str) -> int:
        return self.stats_for(key).remaining

    def clear_key(self, key: str) -> None:
        self._validate_key(key)
        with self._lock:
            self._windows.pop(key, None)

    def clear_all(self) -> None:
        """Forget every key. Intended for test harnesses."""
        with self._lock:
            self._windows.clear()
            self._last_sweep = self._clock()

    def memory_stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            return {
                "tracked_keys": len(self._windows),
                "total_timestamps": sum(window.count for window in self._windows.values()),
                "seconds_since_sweep": round(now - self._last_sweep, 3),
            }

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return

        stale = []
        for key, window in self._windows.items():
            window.prune(now)
            if not window.timestamps:
                stale.append(key)
        for key in stale:
            del self._windows[key]

        self._last_sweep = now
        if stale:
            logger.debug("Swept stale rate limit windows", removed=len(stale), remaining=len(self._windows))

    @staticmethod
    def _validate_key(key: str) -> None:
        if not isinstance(key, str) or not key.strip():
            raise RateLimitConfigurationError("Rate limit key cannot be empty", parameter="key", value=key)
        if len(key) > MAX_KEY_LENGTH:
            raise RateLimitConfigurationError(
                f"Rate limit key cannot exceed {MAX_KEY_LENGTH} characters",
                parameter="key",
                value=key[:32] + "...",
            )
        if any(ord(char) < 32 or ord(char) == 127 for char in key):
            raise RateLimitConfigurationError(
                "Rate limit key cannot contain control characters",
                parameter="key",
                value=repr(key),
            )
