"""
Domain layer - Pure business logic without external dependencies.
"""

from .blackout import BlackoutRule
from .capacity import CapacityLedger
from .exceptions import (
    BookingError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from .models import (
    Availability,
    AvailabilityKind,
    BlackoutDate,
    BookingVariation,
    DaySummary,
    Employee,
    EventDate,
    Location,
    Reservation,
    ReservationStatus,
    ResolvedWindow,
    Schedule,
    Service,
    Slot,
    Source,
    SourceType,
    TimeRange,
)
from .recurrence import RecurringScheduleResolver
from .slot_generator import SlotFilter, SlotGenerator

__all__ = [
    "Availability",
    "AvailabilityKind",
    "BlackoutDate",
    "BlackoutRule",
    "BookingError",
    "BookingVariation",
    "CapacityLedger",
    "ConfigurationError",
    "ConflictError",
    "DaySummary",
    "Employee",
    "EventDate",
    "Location",
    "NotFoundError",
    "RateLimitError",
    "RecurringScheduleResolver",
    "Reservation",
    "ReservationStatus",
    "ResolvedWindow",
    "Schedule",
    "Service",
    "Slot",
    "SlotFilter",
    "SlotGenerator",
    "Source",
    "SourceType",
    "TimeRange",
    "ValidationError",
]
