"""
Domain models for bookable time, availability definitions and reservations.

Wall-clock times are held as minutes since midnight. The deployment runs in a
single timezone, so no conversion happens at this layer.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

import pendulum
from pendulum import DateTime

from .exceptions import ConfigurationError

MINUTES_PER_DAY = 24 * 60


def parse_date(value: Any) -> date:
    """
    Normalize a date given as ``date``/``datetime`` or ``YYYY-MM-DD`` text.

    Raises:
        ValueError: If the text is not a valid calendar date
    """
    if isinstance(value, datetime):
        return date(value.year, value.month, value.day)
    if isinstance(value, date):
        return date(value.year, value.month, value.day)

    text = str(value).strip()
    try:
        parsed = pendulum.from_format(text, "YYYY-MM-DD")
    except ValueError as exc:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc

    return date(parsed.year, parsed.month, parsed.day)


def parse_time(value: Any) -> int:
    """
    Convert a wall-clock time to minutes since midnight.

    Accepts ``H:i`` and ``H:i:s`` text, ``datetime.time`` or an int that is
    already in minutes. ``24:00`` is accepted as the end of the day.

    Raises:
        ValueError: If the value cannot be read as a time of day
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid time '{value}'")
    if isinstance(value, int):
        if not 0 <= value <= MINUTES_PER_DAY:
            raise ValueError(f"Minutes must be between 0 and {MINUTES_PER_DAY}, got {value}")
        return value
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    text = str(value).strip()
    if text in ("24:00", "24:00:00"):
        return MINUTES_PER_DAY

    # PHP-style "9:00" has a single-digit hour
    if ":" in text and len(text.split(":", 1)[0]) == 1:
        text = "0" + text

    try:
        parsed = time.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid time '{value}', expected HH:MM or HH:MM:SS") from exc

    return parsed.hour * 60 + parsed.minute


def format_time(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def wall_clock(day: date, minutes: int, tz: Any) -> DateTime:
    """Build an aware DateTime for a wall-clock time on ``day``."""
    days, remainder = divmod(minutes, MINUTES_PER_DAY)
    base = pendulum.datetime(day.year, day.month, day.day, tz=tz)
    if days:
        base = base.add(days=days)
    return base.set(hour=remainder // 60, minute=remainder % 60)


@dataclass(frozen=True)
class TimeRange:
    """
    Half-open wall-clock interval ``[start, end)`` in minutes since midnight.

    A range whose end is not after its start is empty. Empty ranges are
    legal values so that misconfigured windows can flow through and simply
    yield nothing.
    """
    start: int
    end: int

    @classmethod
    def parse(cls, start: Any, end: Any) -> "TimeRange":
        """Build a range from ``H:i``/``H:i:s`` text or minutes."""
        return cls(start=parse_time(start), end=parse_time(end))

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def duration_minutes(self) -> int:
        """Return the duration in minutes (0 for empty ranges)."""
        return max(0, self.end - self.start)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another. Touching ranges do not."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "TimeRange") -> bool:
        """Check if ``other`` lies entirely within this range."""
        return self.start <= other.start and other.end <= self.end

    def expand(self, before: int = 0, after: int = 0) -> "TimeRange":
        """Return the range widened by buffer time on either side."""
        return TimeRange(start=self.start - before, end=self.end + after)

    def __str__(self) -> str:
        return f"{format_time(self.start)} - {format_time(self.end)}"


class SourceType(str, Enum):
    ENTRY = "entry"
    SECTION = "section"


@dataclass(frozen=True)
class Source:
    """Content entity an availability or reservation is scoped to."""
    kind: SourceType
    id: Optional[int] = None
    handle: Optional[str] = None

    def matches(self, wanted: Optional["Source"]) -> bool:
        """
        Check this source against a filter.

        ``None`` matches everything; otherwise the kind must agree and the
        id/handle must agree where the filter sets them.
        """
        if wanted is None:
            return True
        if self.kind != wanted.kind:
            return False
        if wanted.id is not None and self.id != wanted.id:
            return False
        if wanted.handle is not None and self.handle != wanted.handle:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "id": self.id, "handle": self.handle}


class AvailabilityKind(str, Enum):
    RECURRING = "recurring"
    EVENT = "event"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "ReservationStatus") -> bool:
        """Check the status graph. Cancelled is terminal."""
        return target in _STATUS_TRANSITIONS[self]

    @property
    def holds_capacity(self) -> bool:
        return self is not ReservationStatus.CANCELLED


_STATUS_TRANSITIONS = {
    ReservationStatus.PENDING: {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED},
    ReservationStatus.CONFIRMED: {ReservationStatus.CANCELLED},
    ReservationStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class EventDate:
    """One dated occurrence of an event availability."""
    date: date
    start_time: int
    end_time: int

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start_time, end=self.end_time)


@dataclass
class Availability:
    """
    Recurring weekly or event-based window in which a source can be booked.

    Recurring records use ``day_of_week`` 0=Sunday .. 6=Saturday.
    """
    id: int
    title: str = ""
    kind: AvailabilityKind = AvailabilityKind.RECURRING
    is_active: bool = True
    day_of_week: Optional[int] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    event_dates: List[EventDate] = field(default_factory=list)
    source: Optional[Source] = None
    variation_ids: FrozenSet[int] = frozenset()
    description: str = ""

    def __post_init__(self):
        self.variation_ids = frozenset(self.variation_ids)
        if self.kind is AvailabilityKind.RECURRING:
            if self.day_of_week is None or self.start_time is None or self.end_time is None:
                raise ConfigurationError(
                    f"Recurring availability {self.id} needs day_of_week, start_time and end_time"
                )
            if self.day_of_week not in range(7):
                raise ConfigurationError(
                    f"day_of_week must be between 0 and 6, got {self.day_of_week}"
                )

    def matches_source(self, wanted: Optional[Source]) -> bool:
        if wanted is None:
            return True
        return self.source is not None and self.source.matches(wanted)

    def applies_to_variation(self, variation_id: Optional[int]) -> bool:
        """An empty variation set means the window serves every variation."""
        return variation_id is None or not self.variation_ids or variation_id in self.variation_ids

    def windows_on(self, day: date) -> List[TimeRange]:
        """Concrete windows this record opens on ``day``."""
        if not self.is_active:
            return []

        if self.kind is AvailabilityKind.RECURRING:
            if day.isoweekday() % 7 != self.day_of_week:
                return []
            return [TimeRange(start=self.start_time, end=self.end_time)]

        return [event.time_range for event in self.event_dates if event.date == day]

    def event_days(self) -> List[date]:
        return sorted({event.date for event in self.event_dates})


@dataclass
class Schedule:
    """Employee working hours on ISO weekdays (1=Monday .. 7=Sunday)."""
    id: int
    employee_ids: FrozenSet[int]
    days_of_week: FrozenSet[int]
    start_time: int
    end_time: int
    title: str = ""
    is_active: bool = True

    def __post_init__(self):
        self.employee_ids = frozenset(self.employee_ids)
        self.days_of_week = frozenset(self.days_of_week)
        invalid_days = sorted(day for day in self.days_of_week if day not in range(1, 8))
        if invalid_days:
            raise ConfigurationError(f"days_of_week must be between 1 and 7, got {invalid_days}")

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start_time, end=self.end_time)

    def applies_on(self, day: date) -> bool:
        return self.is_active and day.isoweekday() in self.days_of_week


@dataclass
class BlackoutDate:
    """Inclusive date range during which bookings are blocked."""
    id: int
    start_date: date
    end_date: date
    title: str = ""
    is_active: bool = True
    location_ids: FrozenSet[int] = frozenset()
    employee_ids: FrozenSet[int] = frozenset()
    reason: Optional[str] = None

    def __post_init__(self):
        self.location_ids = frozenset(self.location_ids)
        self.employee_ids = frozenset(self.employee_ids)
        if self.start_date > self.end_date:
            raise ConfigurationError(
                f"Blackout {self.id} starts {self.start_date} after it ends {self.end_date}"
            )

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def days(self) -> List[date]:
        return [
            date.fromordinal(ordinal)
            for ordinal in range(self.start_date.toordinal(), self.end_date.toordinal() + 1)
        ]


@dataclass
class BookingVariation:
    """Booking tier with its own capacity, duration and buffer overrides."""
    id: int
    title: str = ""
    description: str = ""
    slot_duration_minutes: Optional[int] = None
    buffer_minutes: Optional[int] = None
    max_capacity: int = 1
    allow_quantity_selection: bool = False
    is_active: bool = True

    def __post_init__(self):
        if self.max_capacity < 1:
            raise ConfigurationError(
                f"Variation {self.id} max_capacity must be at least 1, got {self.max_capacity}"
            )
        if self.slot_duration_minutes is not None and self.slot_duration_minutes <= 0:
            raise ConfigurationError(
                f"Variation {self.id} slot duration must be positive, got {self.slot_duration_minutes}"
            )
        if self.buffer_minutes is not None and self.buffer_minutes < 0:
            raise ConfigurationError(
                f"Variation {self.id} buffer cannot be negative, got {self.buffer_minutes}"
            )


@dataclass
class Service:
    """Bookable service supplying default duration, buffers and capacity."""
    id: int
    title: str = ""
    duration_minutes: int = 60
    buffer_before: int = 0
    buffer_after: int = 0
    capacity: int = 1
    is_active: bool = True

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise ConfigurationError(
                f"Service {self.id} duration must be positive, got {self.duration_minutes}"
            )
        if self.capacity < 1:
            raise ConfigurationError(f"Service {self.id} capacity must be at least 1")
        if self.buffer_before < 0 or self.buffer_after < 0:
            raise ConfigurationError(f"Service {self.id} buffers cannot be negative")


@dataclass
class Employee:
    id: int
    name: str = ""
    location_id: Optional[int] = None
    is_active: bool = True


@dataclass
class Location:
    id: int
    title: str = ""
    is_active: bool = True


@dataclass
class Reservation:
    """A customer's booking of a time range on a date."""
    user_name: str
    user_email: str
    booking_date: date
    start_time: int
    end_time: int
    id: Optional[int] = None
    status: ReservationStatus = ReservationStatus.CONFIRMED
    quantity: int = 1
    user_phone: Optional[str] = None
    user_timezone: str = "Europe/Zurich"
    variation_id: Optional[int] = None
    employee_id: Optional[int] = None
    location_id: Optional[int] = None
    service_id: Optional[int] = None
    source: Optional[Source] = None
    confirmation_token: str = ""
    notification_sent: bool = False
    notes: Optional[str] = None
    created_at: Optional[DateTime] = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start_time, end=self.end_time)

    def duration_minutes(self) -> int:
        return self.time_range.duration_minutes()

    def starts_at(self, tz: Any) -> DateTime:
        return wall_clock(self.booking_date, self.start_time, tz)

    def conflicts_with(self, other: "Reservation") -> bool:
        """Same date and overlapping ranges."""
        if self.booking_date != other.booking_date:
            return False
        return self.time_range.overlaps(other.time_range)

    def can_be_cancelled(self, now: DateTime, cancellation_policy_hours: int) -> bool:
        """
        Check the cancellation policy.

        The start must be at least ``cancellation_policy_hours`` away; a
        policy of 0 allows cancelling up to the start itself.
        """
        if self.status is ReservationStatus.CANCELLED:
            return False

        return now.add(hours=cancellation_policy_hours) <= self.starts_at(now.tzinfo)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userName": self.user_name,
            "userEmail": self.user_email,
            "userPhone": self.user_phone,
            "userTimezone": self.user_timezone,
            "bookingDate": self.booking_date.isoformat(),
            "startTime": format_time(self.start_time),
            "endTime": format_time(self.end_time),
            "status": self.status.value,
            "quantity": self.quantity,
            "variationId": self.variation_id,
            "employeeId": self.employee_id,
            "locationId": self.location_id,
            "serviceId": self.service_id,
            "source": self.source.to_dict() if self.source else None,
            "confirmationToken": self.confirmation_token,
        }


@dataclass(frozen=True)
class ResolvedWindow:
    """A concrete window for a date and the record that produced it."""
    time_range: TimeRange
    availability_id: Optional[int] = None
    schedule_id: Optional[int] = None
    employee_id: Optional[int] = None


@dataclass(frozen=True)
class Slot:
    """A discrete bookable time window with its remaining capacity."""
    date: date
    start: int
    end: int
    remaining_capacity: int
    employee_id: Optional[int] = None
    location_id: Optional[int] = None
    service_id: Optional[int] = None
    variation_id: Optional[int] = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    def duration_minutes(self) -> int:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "time": format_time(self.start),
            "endTime": format_time(self.end),
            "duration": self.duration_minutes(),
            "remainingCapacity": self.remaining_capacity,
            "employeeId": self.employee_id,
            "locationId": self.location_id,
            "serviceId": self.service_id,
            "variationId": self.variation_id,
        }


@dataclass(frozen=True)
class DaySummary:
    has_availability: bool
    is_blacked_out: bool

    @property
    def is_bookable(self) -> bool:
        return self.has_availability and not self.is_blacked_out

    def to_dict(self) -> Dict[str, bool]:
        return {
            "hasAvailability": self.has_availability,
            "isBlackedOut": self.is_blacked_out,
            "isBookable": self.is_bookable,
        }
