"""Request pacing for the station provider.

NOBIL keys are rate limited per key, so every client sharing a key should
share one limiter. The limiter caps in-flight requests, keeps a minimum gap
between request starts and honours a throttle window after a 429.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, Mapping, Optional

from ..config import (
    RATE_LIMIT_JITTER_RANGE,
    RATE_LIMIT_MAX_CONCURRENT,
    RATE_LIMIT_MIN_INTERVAL_SECONDS,
    RATE_LIMIT_THROTTLE_SECONDS,
)

__all__ = ["RateLimiter", "parse_retry_after"]

LOGGER = logging.getLogger(__name__)


def parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    """Return the ``Retry-After`` delay in seconds, if the header is numeric."""

    if not headers:
        return None
    raw = headers.get("Retry-After")
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


class RateLimiter:
    def __init__(
        self,
        max_concurrent: int = RATE_LIMIT_MAX_CONCURRENT,
        jitter_range: tuple[float, float] = RATE_LIMIT_JITTER_RANGE,
        throttle_seconds: float = RATE_LIMIT_THROTTLE_SECONDS,
        min_interval: float = RATE_LIMIT_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._cond = threading.Condition(threading.Lock())
        self._max_allowed = max_concurrent
        self._in_flight = 0
        self._jitter_range = jitter_range
        self._throttle_seconds = throttle_seconds
        self._min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._throttle_until = 0.0
        self._next_start = 0.0
        self._started = 0
        self._throttled = 0

    def resize(self, new_max: int) -> None:
        """Change the in-flight cap; waiting callers re-check immediately."""

        if new_max < 1:
            raise ValueError("new_max must be >= 1")
        with self._cond:
            old = self._max_allowed
            self._max_allowed = new_max
            self._cond.notify_all()
        LOGGER.info("Provider concurrency changed from %d to %d", old, new_max)

    def before_request(self) -> None:
        """Block until a slot is free and the pacing window allows a start."""

        with self._cond:
            while self._in_flight >= self._max_allowed:
                self._cond.wait()
            self._in_flight += 1
            self._started += 1
            now = self._clock()
            # Reserve the start slot while holding the lock so concurrent
            # callers queue up one interval apart.
            start_at = max(now, self._next_start, self._throttle_until)
            self._next_start = start_at + self._min_interval
        delay = start_at - now
        lo, hi = self._jitter_range
        if hi > 0:
            delay += random.uniform(lo, hi)  # nosec B311
        if delay > 0:
            self._sleep(delay)

    def after_response(
        self, status_code: int | None, retry_after: float | None = None
    ) -> bool:
        """Release the slot. Returns True when the response opened a throttle."""

        throttled = status_code == 429
        window = retry_after if retry_after is not None else self._throttle_seconds
        with self._cond:
            if throttled:
                self._throttled += 1
                self._throttle_until = max(
                    self._throttle_until, self._clock() + window
                )
            self._in_flight = max(0, self._in_flight - 1)
            self._cond.notify()
        if throttled:
            LOGGER.warning("NOBIL returned 429; pausing requests for %.1fs", window)
        return throttled

    def snapshot(self) -> dict[str, float | int]:
        with self._cond:
            return {
                "max_allowed": self._max_allowed,
                "in_flight": self._in_flight,
                "requests_started": self._started,
                "throttled_responses": self._throttled,
                "throttle_remaining": max(0.0, self._throttle_until - self._clock()),
            }
