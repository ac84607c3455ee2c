"""Rate limiting utilities shared across Strava API helpers."""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Mapping, Tuple

from ..config import (
    RATE_LIMIT_JITTER_RANGE,
    RATE_LIMIT_MAX_CONCURRENT,
    RATE_LIMIT_NEAR_LIMIT_BUFFER,
    RATE_LIMIT_THROTTLE_SECONDS,
)

__all__ = ["RateLimiter"]

LOGGER = logging.getLogger(__name__)


def _parse_short_window(
    headers: Mapping[str, object] | None,
) -> Tuple[int | None, int | None]:
    """Return ``(used, limit)`` for the 15-minute window from Strava headers."""

    if not headers:
        return None, None
    usage = headers.get("X-RateLimit-Usage")
    limit = headers.get("X-RateLimit-Limit")
    if not usage or not limit:
        return None, None
    try:
        return int(str(usage).split(",")[0]), int(str(limit).split(",")[0])
    except (ValueError, TypeError) as exc:
        LOGGER.debug(
            "Failed to parse rate limit headers usage=%s limit=%s: %s",
            usage,
            limit,
            exc,
        )
        return None, None


class RateLimiter:
    """Soft concurrency cap with optional throttle and jitter to smooth bursts.

    The limiter never retries anything itself. It only delays the *next*
    request after a 429 or when Strava reports the short window is nearly used.
    """

    def __init__(
        self,
        max_concurrent: int = RATE_LIMIT_MAX_CONCURRENT,
        jitter_range: tuple[float, float] = RATE_LIMIT_JITTER_RANGE,
        throttle_seconds: float = RATE_LIMIT_THROTTLE_SECONDS,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._max_allowed = max_concurrent
        self._in_flight = 0
        self._throttle_until: float = 0.0
        self._jitter_range = jitter_range
        self._throttle_seconds = throttle_seconds
        self._near_limit_buffer = RATE_LIMIT_NEAR_LIMIT_BUFFER

    def resize(self, new_max: int) -> None:
        """Adjust maximum concurrent requests (soft limit) at runtime."""

        if new_max < 1:
            raise ValueError("new_max must be >= 1")
        with self._cond:
            old = self._max_allowed
            self._max_allowed = new_max
            self._cond.notify_all()
        LOGGER.info("RateLimiter resized from %s to %s", old, new_max)

    def before_request(self) -> None:
        with self._cond:
            while self._in_flight >= self._max_allowed:
                self._cond.wait()
            self._in_flight += 1
            wait_for = max(0.0, self._throttle_until - time.time())
        if wait_for > 0:
            time.sleep(wait_for)
        lo, hi = self._jitter_range
        if hi > 0:
            # Random jitter smooths bursts; not used for security-sensitive logic.
            time.sleep(random.uniform(lo, hi))  # nosec B311

    def after_response(
        self, headers: Mapping[str, object] | None, status_code: int | None
    ) -> Tuple[bool, str]:
        """Release the slot; return ``(throttled, reason)`` for logging."""

        throttle = False
        reason = ""
        if status_code == 429:
            throttle = True
            reason = "status=429"
        else:
            used, limit = _parse_short_window(headers)
            if (
                used is not None
                and limit is not None
                and used >= max(limit - self._near_limit_buffer, 0)
            ):
                throttle = True
                reason = f"usage={used}/{limit}"
        with self._cond:
            if throttle:
                self._throttle_until = time.time() + self._throttle_seconds
            self._in_flight = max(0, self._in_flight - 1)
            if self._in_flight < self._max_allowed:
                self._cond.notify()
        if throttle:
            LOGGER.warning(
                "Strava rate limit signal (%s); throttling next request %ss",
                reason,
                self._throttle_seconds,
            )
        return throttle, reason

    def snapshot(self) -> dict[str, float | int]:
        """Return current limiter stats (used by tests and diagnostics)."""

        with self._lock:
            return {
                "max_allowed": self._max_allowed,
                "in_flight": self._in_flight,
                "throttle_until": self._throttle_until,
            }
