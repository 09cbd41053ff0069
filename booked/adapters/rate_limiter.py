"""
In-memory rate limiting for booking attempts.
"""

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict, Protocol

logger = logging.getLogger(__name__)


class RateLimiterProtocol(Protocol):
    """Pre-check consumed by the booking service."""

    def hit(self, key: str) -> bool:
        """Record an attempt for ``key``. False means the limit is exceeded."""


class SlidingWindowRateLimiter:
    """
    Allows ``max_attempts`` per ``window_seconds`` for each key.

    Rejected attempts are not recorded, so a caller that backs off regains
    capacity as old attempts age out.
    """

    def __init__(
        self,
        max_attempts: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be greater than zero")

        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = Lock()
        self._last_prune = clock()

    def hit(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds

        with self._lock:
            if now - self._last_prune >= self.window_seconds:
                self._prune(cutoff)
                self._last_prune = now

            attempts = self._attempts.setdefault(key, deque())
            while attempts and attempts[0] <= cutoff:
                attempts.popleft()

            if len(attempts) >= self.max_attempts:
                logger.warning("Rate limit exceeded for %s", key)
                return False

            attempts.append(now)
            return True

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def _prune(self, cutoff: float) -> None:
        """Forget keys whose every attempt has aged out of the window."""
        stale = [key for key, attempts in self._attempts.items() if not attempts or attempts[-1] <= cutoff]
        for key in stale:
            del self._attempts[key]
