"""Implementation of the adaptive rate limiter.

Tracks outgoing requests in a fixed window (100 requests / 20 seconds by
default) and lets the server override the local view through its rate
limit response headers. A `Retry-After` header pushes the start of the next
window into the future.
"""

import asyncio
import logging
import re
import time
from typing import Any, Callable, Dict, Mapping, Optional

from pcopeople.domain.models.common import (
    RATE_COUNT_HEADER,
    RATE_LIMIT_HEADER,
    RATE_PERIOD_HEADER,
    RETRY_AFTER_HEADER,
    RateLimitInfo,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_WINDOW_SECONDS = 20.0

_RATE_LIMIT_ERROR_PATTERN = re.compile(
    r"Rate limit exceeded: (\d+) of (\d+) requests per (\d+) seconds"
)


def _parse_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class PcoRateLimiter:
    """Fixed window rate limiter driven by local counts and server headers."""

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the rate limiter.

        Args:
            limit: Maximum number of requests allowed in one window.
            window_seconds: Length of the window in seconds.
            clock: Monotonic time source (injectable for tests).
        """
        self.limit = limit or DEFAULT_LIMIT
        self.window_seconds = window_seconds or DEFAULT_WINDOW_SECONDS
        self._clock = clock
        self.window_start = clock()
        self.request_count = 0
        logger.info(f"PcoRateLimiter initialized: {self.limit} requests / {self.window_seconds} seconds")

    def _update_window(self) -> None:
        """Starts a new window once the current one has elapsed."""
        now = self._clock()
        if now >= self.window_start + self.window_seconds:
            self.window_start = now
            self.request_count = 0

    def can_proceed(self) -> bool:
        """Returns True when a request may be sent right now."""
        self._update_window()
        if self._clock() < self.window_start:
            # Server asked us to back off until the window opens
            return False
        return self.request_count < self.limit

    def record_request(self) -> None:
        self._update_window()
        self.request_count += 1

    def time_until_reset(self) -> float:
        """Seconds until the current window ends."""
        self._update_window()
        return max(0.0, self.window_start + self.window_seconds - self._clock())

    def time_until_available(self) -> float:
        now = self._clock()
        if now < self.window_start:
            return self.window_start - now
        return self.time_until_reset()

    async def wait_for_availability(self) -> None:
        """Suspends the calling task until a request may be sent."""
        while not self.can_proceed():
            wait_time = self.time_until_available()
            logger.debug(f"Rate limit reached. Waiting for {wait_time:.2f} seconds.")
            # Always yield, even when the window is about to roll over
            await asyncio.sleep(max(wait_time, 0.001))

    def apply_server_headers(self, headers: Optional[Mapping[str, str]]) -> None:
        """Replaces local tracking with the values reported by the server.

        Header lookup is case-insensitive and malformed values are ignored.
        """
        if not headers:
            return
        lowered = {str(k).lower(): v for k, v in headers.items()}

        limit = _parse_int(lowered.get(RATE_LIMIT_HEADER.lower()))
        if limit is not None and limit > 0:
            self.limit = limit

        period = _parse_int(lowered.get(RATE_PERIOD_HEADER.lower()))
        if period is not None and period > 0:
            self.window_seconds = float(period)

        count = _parse_int(lowered.get(RATE_COUNT_HEADER.lower()))
        if count is not None and count >= 0:
            self.request_count = count

        retry_after = _parse_int(lowered.get(RETRY_AFTER_HEADER.lower()))
        if retry_after is not None and retry_after >= 0:
            self.window_start = self._clock() + retry_after
            self.request_count = 0
            logger.warning(f"Server requested Retry-After {retry_after}s; next window starts then.")

    def mark_exhausted(self) -> None:
        """Treats the current window as used up (a 429 without Retry-After)."""
        self._update_window()
        self.request_count = max(self.request_count, self.limit)

    def get_rate_limit_info(self) -> RateLimitInfo:
        self._update_window()
        return RateLimitInfo(
            limit=self.limit,
            remaining=max(0, self.limit - self.request_count),
            reset_time=self.window_start + self.window_seconds,
        )

    def get_debug_info(self) -> Dict[str, Any]:
        return {
            "can_proceed": self.can_proceed(),
            "limit": self.limit,
            "request_count": self.request_count,
            "time_until_reset": self.time_until_reset(),
            "window_seconds": self.window_seconds,
            "window_start": self.window_start,
        }

    @staticmethod
    def parse_rate_limit_error(detail: str) -> Optional[Dict[str, int]]:
        """Parses "Rate limit exceeded: 118 of 100 requests per 20 seconds"."""
        match = _RATE_LIMIT_ERROR_PATTERN.search(detail or "")
        if not match:
            return None
        return {
            "current": int(match.group(1)),
            "limit": int(match.group(2)),
            "period": int(match.group(3)),
        }
