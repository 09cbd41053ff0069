"""
Key/value caching for computed availability.
"""

import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class CacheProtocol(Protocol):
    """Key/value store with TTL and prefix invalidation."""

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None."""

    def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Store a value for ``ttl`` seconds."""

    def delete(self, key: str) -> bool:
        """Delete a single key."""

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns the count."""


class MemoryCache:
    """Thread-safe in-process cache with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("Cache MISS: %s", key)
                return None

            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                logger.debug("Cache EXPIRED: %s", key)
                return None

        logger.debug("Cache HIT: %s", key)
        return value

    def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (default 1 hour)"""
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)
        logger.debug("Cache SET: %s (TTL: %ss)", key, ttl)
        return True

    def delete(self, key: str) -> bool:
        """Delete value from cache"""
        with self._lock:
            existed = self._entries.pop(key, None) is not None
        logger.debug("Cache DELETE: %s", key)
        return existed

    def delete_prefix(self, prefix: str) -> int:
        """Delete all keys starting with prefix (e.g., 'availability:2024-01-01:')"""
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]

        if doomed:
            logger.debug("Cache DELETE PREFIX: %s (%s keys)", prefix, len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
