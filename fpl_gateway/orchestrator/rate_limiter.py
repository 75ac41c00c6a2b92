"""
Per-source rate limiter.

Enforces two fixed windows per upstream provider: a per-minute burst guard
and a per-day hard quota aligned to the UTC calendar day. Explicit upstream
429 responses block the limiter until the provider's reset time.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60.0
DAY_SECONDS = 86400.0

# Quota headers with a limit at or above this are treated as daily quotas
DAILY_QUOTA_HEADER_THRESHOLD = 100


@dataclass
class RateLimitWindow:
    """
    Counter for one window granularity.

    Attributes:
        window_size: Window length in seconds
        max_count: Requests permitted per window
        count: Requests consumed in the current window
        window_start: Epoch seconds when the current window began
        aligned: Align windows to multiples of window_size since the epoch
            (a day window then starts at UTC midnight)
    """

    window_size: float
    max_count: int
    count: int = 0
    window_start: float = 0.0
    aligned: bool = False

    def refresh(self, now: float) -> None:
        """Reset the counter lazily once the window has elapsed."""
        if self.aligned:
            start = now - (now % self.window_size)
            if start != self.window_start:
                self.window_start = start
                self.count = 0
        elif now - self.window_start >= self.window_size:
            self.window_start = now
            self.count = 0

    @property
    def has_headroom(self) -> bool:
        return self.count < self.max_count

    @property
    def remaining(self) -> int:
        return max(0, self.max_count - self.count)

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_size


class RateLimiter:
    """
    Dual-window rate limiter for one upstream source.

    Features:
    - Minute burst guard and daily quota, both reset lazily
    - Daily window aligned to UTC midnight
    - Explicit blocking for upstream 429 Retry-After
    - Adoption of provider quota headers
    - Thread-safe snapshots for monitoring

    Example:
        >>> limiter = RateLimiter("rapidapi_fpl", max_per_minute=5, max_per_day=15)
        >>> if limiter.try_acquire():
        ...     await fetch()
        ... else:
        ...     await asyncio.sleep(limiter.wait_time())
    """

    def __init__(
        self,
        name: str,
        max_per_minute: int,
        max_per_day: int,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            name: Source name this limiter guards
            max_per_minute: Requests permitted per minute window
            max_per_day: Requests permitted per UTC day
            clock: Epoch-seconds clock (defaults to time.time)
        """
        self.name = name
        self._clock = clock or time.time
        now = self._clock()

        self.minute = RateLimitWindow(MINUTE_SECONDS, max_per_minute, window_start=now)
        self.day = RateLimitWindow(DAY_SECONDS, max_per_day, aligned=True)
        self.day.refresh(now)

        self._blocked_until: Optional[float] = None
        self._lock = threading.Lock()

        # Statistics
        self._total_acquired = 0
        self._total_rejected = 0
        self._total_blocks = 0

        logger.info(
            f"Rate limiter initialized: {name}",
            extra={"max_per_minute": max_per_minute, "max_per_day": max_per_day},
        )

    def _refresh(self, now: float) -> None:
        self.minute.refresh(now)
        self.day.refresh(now)
        if self._blocked_until is not None and now >= self._blocked_until:
            self._blocked_until = None

    def _admit(self, now: float) -> bool:
        self._refresh(now)
        if self._blocked_until is not None:
            return False
        return self.minute.has_headroom and self.day.has_headroom

    def admit(self) -> bool:
        """Check whether a request may be sent now. Does not consume quota."""
        with self._lock:
            return self._admit(self._clock())

    def record(self) -> None:
        """Consume one unit in both windows."""
        with self._lock:
            self._refresh(self._clock())
            self.minute.count += 1
            self.day.count += 1
            self._total_acquired += 1

    def try_acquire(self) -> bool:
        """
        Atomically check and consume quota.

        Returns:
            True if the request was admitted and recorded
        """
        with self._lock:
            now = self._clock()
            if not self._admit(now):
                self._total_rejected += 1
                return False
            self.minute.count += 1
            self.day.count += 1
            self._total_acquired += 1
            return True

    def _wait_time(self, now: float) -> float:
        if self._admit(now):
            return 0.0

        waits = []
        if self._blocked_until is not None:
            waits.append(self._blocked_until - now)
        if not self.minute.has_headroom:
            waits.append(self.minute.reset_at - now)
        if not self.day.has_headroom:
            waits.append(self.day.reset_at - now)
        return max(0.0, max(waits)) if waits else 0.0

    def wait_time(self) -> float:
        """
        Seconds until the next permitted request.

        Returns:
            0.0 when a request is admitted now; time to the next UTC midnight
            when the daily quota is exhausted
        """
        with self._lock:
            return self._wait_time(self._clock())

    def next_reset_at(self) -> float:
        """Epoch seconds of the instant quota becomes available again."""
        with self._lock:
            now = self._clock()
            return now + self._wait_time(now)

    def block_until(self, until: float) -> None:
        """
        Block all requests until an upstream-provided reset time.

        Args:
            until: Epoch seconds, typically now + Retry-After
        """
        with self._lock:
            if self._blocked_until is None or until > self._blocked_until:
                self._blocked_until = until
            self._total_blocks += 1

        logger.warning(
            f"Rate limiter {self.name} blocked by upstream",
            extra={"blocked_for_seconds": round(until - self._clock(), 1)},
        )

    def sync_from_headers(self, remaining: Optional[int], limit: Optional[int]) -> None:
        """
        Adopt provider quota headers for the daily window.

        Only limits that look like a daily quota are adopted. Local accounting
        is never loosened by a header.

        Args:
            remaining: x-ratelimit-requests-remaining
            limit: x-ratelimit-requests-limit
        """
        if remaining is None or limit is None or limit < DAILY_QUOTA_HEADER_THRESHOLD:
            return

        with self._lock:
            self._refresh(self._clock())
            used = max(0, limit - remaining)
            if used > self.day.count:
                self.day.count = used
            if remaining <= 0:
                self.day.count = max(self.day.count, self.day.max_count)

        logger.debug(
            f"Rate limiter {self.name} synced from headers",
            extra={"remaining": remaining, "limit": limit},
        )

    def remaining(self) -> dict:
        """Remaining requests in each window."""
        with self._lock:
            self._refresh(self._clock())
            return {"minute": self.minute.remaining, "day": self.day.remaining}

    @property
    def day_exhausted(self) -> bool:
        with self._lock:
            self._refresh(self._clock())
            return not self.day.has_headroom

    def get_statistics(self) -> dict:
        """
        Get rate limiter statistics for back-pressure reporting.

        Returns:
            Dictionary with window usage, reset times and counters
        """
        with self._lock:
            now = self._clock()
            self._refresh(now)
            wait = self._wait_time(now)
            return {
                "name": self.name,
                "admitted": wait == 0.0,
                "wait_seconds": round(wait, 2),
                "minute": {
                    "used": self.minute.count,
                    "limit": self.minute.max_count,
                    "remaining": self.minute.remaining,
                    "resets_at": _iso(self.minute.reset_at),
                },
                "day": {
                    "used": self.day.count,
                    "limit": self.day.max_count,
                    "remaining": self.day.remaining,
                    "resets_at": _iso(self.day.reset_at),
                },
                "blocked_until": _iso(self._blocked_until) if self._blocked_until else None,
                "counters": {
                    "total_acquired": self._total_acquired,
                    "total_rejected": self._total_rejected,
                    "total_blocks": self._total_blocks,
                },
            }

    def __repr__(self) -> str:
        return (
            f"RateLimiter(name={self.name}, minute={self.minute.count}/{self.minute.max_count}, "
            f"day={self.day.count}/{self.day.max_count})"
        )


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
