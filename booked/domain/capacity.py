"""
Remaining-capacity arithmetic over overlapping reservations.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Optional

from .exceptions import NotFoundError
from .models import TimeRange

if TYPE_CHECKING:
    from ..adapters.store import BookingStoreProtocol


class CapacityLedger:
    """
    Computes how many units of a window are still free.

    remaining = max(0, capacity - sum(quantity of pending/confirmed
    reservations overlapping the window)). Overlap is half-open, so a
    reservation ending exactly where the window starts does not count.
    """

    def __init__(self, store: BookingStoreProtocol):
        self._store = store

    def remaining_capacity(
        self,
        variation_id: int,
        day: date,
        window: TimeRange,
        exclude_reservation_id: Optional[int] = None,
    ) -> int:
        """
        Remaining capacity of a variation for ``window`` on ``day``.

        Raises:
            NotFoundError: If the variation does not exist
        """
        variation = self._store.get_variation(variation_id)
        if variation is None:
            raise NotFoundError(f"Booking variation {variation_id} not found")

        booked = self._store.sum_reserved_quantity(
            day,
            window,
            variation_id=variation_id,
            exclude_reservation_id=exclude_reservation_id,
        )
        return max(0, variation.max_capacity - booked)

    def remaining_for(
        self,
        capacity: int,
        day: date,
        window: TimeRange,
        *,
        employee_id: Optional[int] = None,
        service_id: Optional[int] = None,
        exclude_reservation_id: Optional[int] = None,
    ) -> int:
        """Remaining capacity for bookings that are not tied to a variation."""
        booked = self._store.sum_reserved_quantity(
            day,
            window,
            employee_id=employee_id,
            service_id=service_id,
            exclude_reservation_id=exclude_reservation_id,
        )
        return max(0, capacity - booked)
