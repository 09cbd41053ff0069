"""
Shared fixtures: an in-memory store with one weekly availability, a frozen
clock and the engine/services wired around them.
"""

from datetime import date
from typing import Optional

import pendulum
import pytest

from booked.adapters.memory_store import InMemoryBookingStore
from booked.config import BookingSettings
from booked.domain.models import (
    Availability,
    AvailabilityKind,
    BookingVariation,
    Reservation,
    ReservationStatus,
    Source,
    SourceType,
)
from booked.services.availability_engine import AvailabilityEngine
from booked.services.wiring import build_components

TZ = "Europe/Zurich"
MONDAY = date(2024, 1, 1)


class FrozenClock:
    """Callable clock returning a fixed, adjustable instant."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, *args, **kwargs):
        self.now = pendulum.datetime(*args, tz=TZ, **kwargs)


def make_reservation(
    start: str,
    end: str,
    *,
    quantity: int = 1,
    variation_id: Optional[int] = 1,
    status: ReservationStatus = ReservationStatus.CONFIRMED,
    day: date = MONDAY,
    **kwargs,
) -> Reservation:
    return Reservation(
        user_name="Existing Guest",
        user_email="guest@acme.ch",
        booking_date=day,
        start_time=_minutes(start),
        end_time=_minutes(end),
        quantity=quantity,
        variation_id=variation_id,
        status=status,
        **kwargs,
    )


def _minutes(text: str) -> int:
    hours, minutes = text.split(":")
    return int(hours) * 60 + int(minutes)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(pendulum.datetime(2023, 12, 1, 8, 0, tz=TZ))


@pytest.fixture
def settings() -> BookingSettings:
    return BookingSettings(enable_rate_limiting=False, timezone=TZ)


@pytest.fixture
def store() -> InMemoryBookingStore:
    """Monday 09:00-12:00 for entry 42, bookable in 30-minute slots."""
    store = InMemoryBookingStore()
    store.save_variation(
        BookingVariation(id=1, title="Single", slot_duration_minutes=30, max_capacity=1)
    )
    store.save_variation(
        BookingVariation(
            id=2,
            title="Group",
            slot_duration_minutes=30,
            max_capacity=3,
            allow_quantity_selection=True,
        )
    )
    store.save_availability(
        Availability(
            id=1,
            title="Monday mornings",
            kind=AvailabilityKind.RECURRING,
            day_of_week=1,
            start_time=9 * 60,
            end_time=12 * 60,
            source=Source(kind=SourceType.ENTRY, id=42),
        )
    )
    return store


@pytest.fixture
def engine(store, settings, clock) -> AvailabilityEngine:
    return AvailabilityEngine(store, settings, clock=clock)


@pytest.fixture
def components(store, settings, clock):
    return build_components(store, settings, clock=clock)
