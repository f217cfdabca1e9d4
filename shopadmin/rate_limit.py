"""
rate_limit.py — Request throttling for authentication endpoints
===============================================================
Two limiters live here:

* ``SlidingWindowLimiter`` gates ``POST /api/auth/login`` per client IP.
  One counter per IP, reset once its window has fully elapsed. The
  instance is built by ``create_app()`` and its sweeper is driven by the
  application lifespan. Counters are process-local: a restart clears them
  and several workers each keep their own.
* ``limiter`` is the slowapi limiter used for declarative per-route limits
  (registration).
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Union

from slowapi import Limiter
from slowapi.util import get_remote_address

log = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RateLimitCounter:
    count: int
    window_start: datetime


@dataclass(frozen=True)
class Allow:
    """Request admitted. ``remaining`` attempts are left in the current window."""
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class Block:
    """Request refused until the current window expires."""
    retry_after_seconds: int
    reset_at: datetime

    @property
    def retry_after_minutes(self) -> int:
        return max(1, math.ceil(self.retry_after_seconds / 60))


RateDecision = Union[Allow, Block]


class SlidingWindowLimiter:
    """Fixed-length window counter keyed by client IP."""

    def __init__(
        self,
        max_attempts: int = 5,
        window: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self.max_attempts = max_attempts
        self.window = window
        self._clock = clock
        self._counters: Dict[str, RateLimitCounter] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def check_and_record(self, ip: str) -> RateDecision:
        """
        Count one attempt from ``ip`` unless its window is already full.

        Check and increment happen under one lock, so concurrent requests
        from the same IP can never push the counter past ``max_attempts``.
        """
        now = self._clock()
        with self._lock:
            counter = self._counters.get(ip)
            if counter is None:
                counter = RateLimitCounter(count=0, window_start=now)
                self._counters[ip] = counter
            elif now - counter.window_start > self.window:
                counter.count = 0
                counter.window_start = now

            reset_at = counter.window_start + self.window
            if counter.count >= self.max_attempts:
                remaining = self.window - (now - counter.window_start)
                retry_after = max(0, math.ceil(remaining.total_seconds()))
                return Block(retry_after_seconds=retry_after, reset_at=reset_at)

            counter.count += 1
            return Allow(remaining=self.max_attempts - counter.count, reset_at=reset_at)

    def sweep(self) -> int:
        """Drop counters whose window has elapsed. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [
                ip for ip, counter in self._counters.items()
                if now - counter.window_start > self.window
            ]
            for ip in stale:
                del self._counters[ip]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()

    async def run_sweeper(self) -> None:
        """Call ``sweep()`` once per window until cancelled."""
        interval = self.window.total_seconds()
        while True:
            await asyncio.sleep(interval)
            try:
                removed = self.sweep()
            except Exception:
                log.exception("Login limiter sweep failed")
                continue
            if removed:
                log.debug("Login limiter swept %d expired counters", removed)
