"""
Per-(variation, date) mutual exclusion for the booking write path.
"""

import logging
from contextlib import contextmanager
from datetime import date
from threading import Lock
from typing import Dict, Iterator, List, Optional, Tuple

from ..domain.exceptions import ConflictError

logger = logging.getLogger(__name__)


class SlotLockRegistry:
    """
    Hands out one ``threading.Lock`` per (variation-or-"any", date) key.

    Capacity is validated and the reservation inserted while the key is
    held, so two requests for the same variation and date can never both
    pass validation against the same snapshot.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        # key -> [lock, number of callers holding or waiting]
        self._locks: Dict[str, List] = {}
        self._guard = Lock()

    @staticmethod
    def key_for(variation_id: Optional[int], day: date) -> str:
        variation_part = "any" if variation_id is None else str(variation_id)
        return f"{variation_part}:{day.isoformat()}"

    def _checkout(self, key: str) -> Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def acquire(self, *keys: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold every key for the duration of the block.

        Keys are taken in sorted order so that callers needing two keys
        (moving a reservation between dates) cannot deadlock each other.
        A key nobody holds or waits for is forgotten.

        Raises:
            ConflictError: If a key is still busy after the timeout
        """
        wait = self.timeout_seconds if timeout is None else timeout
        held: List[Tuple[str, Lock]] = []

        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                if not lock.acquire(timeout=wait):
                    self._checkin(key)
                    logger.warning("Timed out after %ss waiting for booking lock %s", wait, key)
                    raise ConflictError(
                        "This time slot is being booked by someone else. Please try again."
                    )
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)
                logger.info("Released booking lock %s", key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
