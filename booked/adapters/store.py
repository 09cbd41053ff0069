"""
Data store contract consumed by the availability engine and booking service.
"""

from datetime import date
from typing import List, Optional, Protocol

from ..domain.models import (
    Availability,
    BlackoutDate,
    BookingVariation,
    Employee,
    Location,
    Reservation,
    Schedule,
    Service,
    Source,
    TimeRange,
)


class BookingStoreProtocol(Protocol):
    """Protocol describing the queries and writes the engine needs."""

    def find_availabilities(
        self,
        day: date,
        source: Optional[Source] = None,
        variation_id: Optional[int] = None,
    ) -> List[Availability]:
        """Active availabilities opening a window on ``day``, ordered by id."""

    def get_availability(self, availability_id: int) -> Optional[Availability]:
        """Return an availability by id."""

    def find_schedules(self, day: date, employee_id: Optional[int] = None) -> List[Schedule]:
        """Active schedules covering the ISO weekday of ``day``, ordered by id."""

    def find_blackouts(self, day: date) -> List[BlackoutDate]:
        """Active blackouts whose inclusive range contains ``day``."""

    def sum_reserved_quantity(
        self,
        day: date,
        window: TimeRange,
        *,
        variation_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        service_id: Optional[int] = None,
        exclude_reservation_id: Optional[int] = None,
    ) -> int:
        """Sum quantity of pending/confirmed reservations overlapping ``window``."""

    def get_variation(self, variation_id: int) -> Optional[BookingVariation]:
        """Return a variation by id."""

    def get_service(self, service_id: int) -> Optional[Service]:
        """Return a service by id."""

    def get_employee(self, employee_id: int) -> Optional[Employee]:
        """Return an employee by id."""

    def get_location(self, location_id: int) -> Optional[Location]:
        """Return a location by id."""

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        """Return a reservation by id."""

    def get_reservation_by_token(self, token: str) -> Optional[Reservation]:
        """Return a reservation by confirmation token."""

    def token_exists(self, token: str) -> bool:
        """Check whether a confirmation token is already taken."""

    def insert_reservation(self, reservation: Reservation) -> Reservation:
        """Persist a new reservation atomically and assign its id."""

    def update_reservation(self, reservation: Reservation) -> Reservation:
        """Persist changes to an existing reservation."""

    def delete_reservation(self, reservation_id: int) -> bool:
        """Hard-delete a reservation. Returns False when it did not exist."""
