"""In-process sliding-window throttle for password sign-in attempts."""

from __future__ import annotations

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict, Optional

from . import config
from .errors import RateLimited

LOGGER = logging.getLogger(__name__)

_SWEEP_THRESHOLD = 10_000


class RateLimiter:
    """Accept at most ``limit`` attempts per key within any ``window_seconds`` span.

    Every accepted attempt counts against the key, whether or not the
    credentials it carried were valid. Rejected attempts are not recorded, so
    a client that keeps hammering regains quota as soon as its oldest accepted
    attempt leaves the window.
    """

    def __init__(
        self,
        limit: int = config.LOGIN_RATE_LIMIT,
        window_seconds: float = config.LOGIN_RATE_WINDOW_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = Lock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        attempts = self._attempts.get(key)
        if attempts is None:
            attempts = deque()
            self._attempts[key] = attempts
        cutoff = now - self.window_seconds
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()
        return attempts

    def _sweep(self, now: float) -> None:
        cutoff = now - self.window_seconds
        stale = [key for key, attempts in self._attempts.items() if not attempts or attempts[-1] <= cutoff]
        for key in stale:
            del self._attempts[key]

    def hit(self, key: str) -> None:
        """Record an attempt for ``key`` or raise ``RateLimited`` if the quota is spent."""

        now = self._clock()
        with self._lock:
            if len(self._attempts) > _SWEEP_THRESHOLD:
                self._sweep(now)
            attempts = self._prune(key, now)
            if len(attempts) >= self.limit:
                retry_after = max(attempts[0] + self.window_seconds - now, 0.0)
                LOGGER.warning("Sign-in rate limit reached for %s", key)
                raise RateLimited(retry_after=retry_after)
            attempts.append(now)

    def remaining(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            attempts = self._prune(key, now)
            left = self.limit - len(attempts)
            if not attempts:
                del self._attempts[key]
            return max(left, 0)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._attempts.clear()
            else:
                self._attempts.pop(key, None)
