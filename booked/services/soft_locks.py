"""
Temporary holds on a slot while a customer completes the booking form.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import date
from threading import Lock
from typing import Any, Callable, Dict, Optional

import pendulum
from pendulum import DateTime

from ..config import BookingSettings
from ..domain.exceptions import ConflictError, ValidationError
from ..domain.models import Slot, TimeRange, parse_date
from ..domain.slot_generator import SlotFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SoftLock:
    token: str
    date: date
    time_range: TimeRange
    expires_at: DateTime
    variation_id: Optional[int] = None
    employee_id: Optional[int] = None

    def is_expired(self, now: DateTime) -> bool:
        return self.expires_at <= now

    def blocks(
        self,
        day: date,
        time_range: TimeRange,
        variation_id: Optional[int],
        employee_id: Optional[int],
    ) -> bool:
        """Same date, overlapping range and compatible variation/employee scope."""
        if self.date != day or not self.time_range.overlaps(time_range):
            return False
        if self.variation_id is not None and variation_id is not None and self.variation_id != variation_id:
            return False
        if self.employee_id is not None and employee_id is not None and self.employee_id != employee_id:
            return False
        return True


class SoftLockService:
    """
    Keeps short-lived holds that hide a slot from other customers.

    Holds expire after ``soft_lock_duration_minutes`` unless released
    earlier, normally when the holder's reservation is created.
    """

    def __init__(
        self,
        settings: BookingSettings,
        clock: Optional[Callable[[], DateTime]] = None,
    ):
        self._settings = settings
        self._clock = clock or (lambda: pendulum.now(settings.timezone))
        self._locks: Dict[str, SoftLock] = {}
        self._guard = Lock()

    def create_lock(
        self,
        day: Any,
        start: Any,
        end: Any,
        variation_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        duration_minutes: Optional[int] = None,
    ) -> str:
        """
        Hold a slot and return the token identifying the hold.

        Raises:
            ValidationError: If the date or times cannot be parsed
            ConflictError: If someone else holds an overlapping slot
        """
        lock_date, time_range = _parse_slot(day, start, end)
        minutes = duration_minutes or self._settings.soft_lock_duration_minutes
        now = self._clock()

        with self._guard:
            self._drop_expired(now)
            if self._find_blocking(lock_date, time_range, variation_id, employee_id, now, None):
                logger.warning(
                    "Soft lock refused for %s %s, slot already held", lock_date, time_range
                )
                raise ConflictError("This time slot is temporarily held by another customer.")

            token = secrets.token_urlsafe(24)
            self._locks[token] = SoftLock(
                token=token,
                date=lock_date,
                time_range=time_range,
                expires_at=now.add(minutes=minutes),
                variation_id=variation_id,
                employee_id=employee_id,
            )

        logger.info("Soft lock created for %s %s (expires in %s min)", lock_date, time_range, minutes)
        return token

    def is_locked(
        self,
        day: Any,
        start: Any,
        end: Any,
        variation_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        ignore_token: Optional[str] = None,
    ) -> bool:
        """Check for an unexpired hold, skipping the caller's own token."""
        lock_date, time_range = _parse_slot(day, start, end)
        now = self._clock()

        with self._guard:
            return self._find_blocking(
                lock_date, time_range, variation_id, employee_id, now, ignore_token
            ) is not None

    def release_lock(self, token: str) -> bool:
        with self._guard:
            released = self._locks.pop(token, None) is not None
        if released:
            logger.info("Soft lock released")
        return released

    def cleanup_expired(self) -> int:
        """Drop expired holds and return how many were removed."""
        with self._guard:
            return self._drop_expired(self._clock())

    def as_slot_filter(self) -> SlotFilter:
        """Slot filter hiding every slot someone currently holds."""

        def _not_held(slot: Slot) -> bool:
            return not self.is_locked(
                slot.date,
                slot.start,
                slot.end,
                variation_id=slot.variation_id,
                employee_id=slot.employee_id,
            )

        return _not_held

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _drop_expired(self, now: DateTime) -> int:
        expired = [token for token, lock in self._locks.items() if lock.is_expired(now)]
        for token in expired:
            del self._locks[token]

        if expired:
            logger.debug("Removed %s expired soft locks", len(expired))
        return len(expired)

    def _find_blocking(
        self,
        day: date,
        time_range: TimeRange,
        variation_id: Optional[int],
        employee_id: Optional[int],
        now: DateTime,
        ignore_token: Optional[str],
    ) -> Optional[SoftLock]:
        for token, lock in self._locks.items():
            if token == ignore_token or lock.is_expired(now):
                continue
            if lock.blocks(day, time_range, variation_id, employee_id):
                return lock
        return None


def _parse_slot(day: Any, start: Any, end: Any):
    try:
        return parse_date(day), TimeRange.parse(start, end)
    except ValueError as exc:
        raise ValidationError(str(exc), {"slot": [str(exc)]}) from exc
