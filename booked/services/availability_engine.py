"""
Availability engine: answers "which slots can be booked?" for a date.

The engine wires the domain pieces together. It resolves the candidate
windows, removes blacked-out ones, discretizes them into slots and keeps
the slots that still have capacity. The store, cache and clock are injected
so the whole pipeline can run against in-memory fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import pendulum
from pendulum import DateTime

from ..adapters.cache import CacheProtocol, MemoryCache
from ..adapters.store import BookingStoreProtocol
from ..config import BookingSettings
from ..domain.blackout import BlackoutRule
from ..domain.capacity import CapacityLedger
from ..domain.exceptions import ConflictError, NotFoundError, ValidationError
from ..domain.models import (
    Availability,
    AvailabilityKind,
    BlackoutDate,
    BookingVariation,
    DaySummary,
    Reservation,
    ResolvedWindow,
    Service,
    Slot,
    Source,
    TimeRange,
    parse_date,
)
from ..domain.recurrence import RecurringScheduleResolver
from ..domain.slot_generator import SlotFilter, SlotGenerator

logger = logging.getLogger(__name__)

CACHE_PREFIX = "availability:"
MAX_SUMMARY_DAYS = 366


@dataclass(frozen=True)
class BookingPlan:
    """Slot sizing and capacity derived from the requested service/variation."""
    slot_duration: int
    buffer_before: int
    buffer_after: int
    capacity: int
    variation: Optional[BookingVariation] = None
    service: Optional[Service] = None

    def generator(self) -> SlotGenerator:
        return SlotGenerator(
            self.slot_duration,
            buffer_before=self.buffer_before,
            buffer_after=self.buffer_after,
        )


@dataclass(frozen=True)
class BookingCheck:
    """Outcome of a successful write-time validation."""
    remaining_capacity: int
    window: ResolvedWindow


class AvailabilityEngine:
    """
    Computes bookable slots and validates bookings against fresh data.

    Reads go through the cache; ``validate_booking`` always reads the store
    directly so that the write path never trusts a stale snapshot.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        settings: BookingSettings,
        cache: Optional[CacheProtocol] = None,
        clock: Optional[Callable[[], DateTime]] = None,
        slot_filters: Sequence[SlotFilter] = (),
    ) -> None:
        self._store = store
        self._settings = settings
        self._cache = cache if cache is not None else MemoryCache()
        self._clock = clock or (lambda: pendulum.now(settings.timezone))
        self._slot_filters: List[SlotFilter] = list(slot_filters)
        self._resolver = RecurringScheduleResolver(store)
        self._ledger = CapacityLedger(store)

    @property
    def settings(self) -> BookingSettings:
        return self._settings

    def now(self) -> DateTime:
        return self._clock()

    def add_slot_filter(self, slot_filter: SlotFilter) -> None:
        """Register a filter applied to every slot list on read."""
        self._slot_filters.append(slot_filter)

    # -- reads ---------------------------------------------------------------

    def get_available_slots(
        self,
        day: Any,
        employee_id: Optional[int] = None,
        location_id: Optional[int] = None,
        service_id: Optional[int] = None,
        quantity: int = 1,
        variation_id: Optional[int] = None,
        source: Optional[Source] = None,
    ) -> List[Slot]:
        """
        Bookable slots for ``day``, sorted by start time.

        Returns an empty list rather than raising when nothing can be
        booked: past dates, dates past the booking horizon, unknown or
        inactive services/variations, blackouts and full slots all just
        produce fewer slots.

        Raises:
            ValidationError: If the date or quantity is malformed
        """
        slot_date = _parse_day(day)
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", {"quantity": ["Must be at least 1."]})

        now = self.now()
        if not self._within_horizon(slot_date, now):
            return []

        key = self._cache_key(slot_date, employee_id, location_id, service_id, variation_id, source, quantity)
        candidates = self._cache.get(key)
        if candidates is None:
            candidates = self._candidate_slots(
                slot_date,
                employee_id=employee_id,
                location_id=location_id,
                service_id=service_id,
                quantity=quantity,
                variation_id=variation_id,
                source=source,
            )
            self._cache.set(key, candidates, ttl=self._settings.availability_cache_ttl)

        slots = SlotGenerator.filter_by_booking_time(
            candidates, now, self._settings.minimum_advance_booking_hours
        )
        return SlotGenerator.apply_filters(slots, self._slot_filters)

    def is_slot_available(
        self,
        day: Any,
        start: Any,
        end: Any,
        employee_id: Optional[int] = None,
        location_id: Optional[int] = None,
        service_id: Optional[int] = None,
        quantity: int = 1,
        variation_id: Optional[int] = None,
        source: Optional[Source] = None,
    ) -> bool:
        """True if ``[start, end)`` lies inside one of the generated slots."""
        wanted = _parse_range(start, end)
        slots = self.get_available_slots(
            day,
            employee_id=employee_id,
            location_id=location_id,
            service_id=service_id,
            quantity=quantity,
            variation_id=variation_id,
            source=source,
        )
        return any(slot.time_range.contains(wanted) for slot in slots)

    def get_availability_for_slot(
        self,
        day: Any,
        start: Any,
        end: Any,
        source: Optional[Source] = None,
        variation_id: Optional[int] = None,
    ) -> Optional[Availability]:
        """First availability (lowest id) whose window on ``day`` contains the range."""
        slot_date = _parse_day(day)
        wanted = _parse_range(start, end)

        for window in self._resolver.resolve_availabilities(
            slot_date, source=source, variation_id=variation_id
        ):
            if window.time_range.contains(wanted):
                return self._store.get_availability(window.availability_id)

        return None

    def get_availability_summary(
        self,
        start_date: Any,
        end_date: Any,
        employee_id: Optional[int] = None,
        location_id: Optional[int] = None,
    ) -> Dict[date, DaySummary]:
        """
        Per-day overview for calendar views.

        Raises:
            ValidationError: If the range is reversed or longer than a year
        """
        first = _parse_day(start_date)
        last = _parse_day(end_date)

        if last < first:
            raise ValidationError(
                "End date must not be before start date",
                {"endDate": ["Must be on or after the start date."]},
            )
        if (last - first).days + 1 > MAX_SUMMARY_DAYS:
            raise ValidationError(
                f"Date range cannot exceed {MAX_SUMMARY_DAYS} days",
                {"endDate": [f"Range is limited to {MAX_SUMMARY_DAYS} days."]},
            )

        summary: Dict[date, DaySummary] = {}
        current = first
        while current <= last:
            windows = self._resolver.resolve(
                current,
                employee_id=employee_id,
                location_id=location_id,
                include_availabilities=employee_id is None,
            )
            blacked_out = BlackoutRule.is_blacked_out(
                self._store.find_blackouts(current),
                current,
                location_id=location_id,
                employee_id=employee_id,
            )
            summary[current] = DaySummary(
                has_availability=any(not w.time_range.is_empty for w in windows),
                is_blacked_out=blacked_out,
            )
            current += timedelta(days=1)

        return summary

    # -- write-time validation -----------------------------------------------

    def validate_booking(
        self,
        day: Any,
        start: Any,
        end: Any,
        variation_id: Optional[int] = None,
        quantity: int = 1,
        exclude_reservation_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        location_id: Optional[int] = None,
        service_id: Optional[int] = None,
        source: Optional[Source] = None,
    ) -> int:
        """
        Re-check a booking against the store and return the remaining
        capacity before the write. See ``check_booking``.
        """
        return self.check_booking(
            day,
            start,
            end,
            variation_id=variation_id,
            quantity=quantity,
            exclude_reservation_id=exclude_reservation_id,
            employee_id=employee_id,
            location_id=location_id,
            service_id=service_id,
            source=source,
        ).remaining_capacity

    def check_booking(
        self,
        day: Any,
        start: Any,
        end: Any,
        variation_id: Optional[int] = None,
        quantity: int = 1,
        exclude_reservation_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        location_id: Optional[int] = None,
        service_id: Optional[int] = None,
        source: Optional[Source] = None,
    ) -> BookingCheck:
        """
        Validate a booking with fresh reads, bypassing the cache.

        The range must lie inside one slot of a window, as laid out by
        ``SlotGenerator.walk``. Among those windows that are not blacked
        out, the one with the most remaining capacity is chosen.

        Raises:
            ValidationError: If the date or range is malformed
            NotFoundError: If a referenced variation, service, employee or
                location does not exist
            ConflictError: If the date is blacked out, the range lies
                outside every window or off the slot grid, or capacity is
                insufficient
        """
        slot_date = _parse_day(day)
        wanted = _parse_range(start, end)
        if wanted.is_empty:
            raise ValidationError(
                "End time must be after start time",
                {"endTime": ["Must be after the start time."]},
            )

        plan = self._booking_plan(service_id, variation_id, strict=True)
        self._require_scope(employee_id, location_id)

        blackouts = self._store.find_blackouts(slot_date)
        generator = plan.generator()
        windows = [
            window
            for window in self._windows_for(slot_date, employee_id, location_id, variation_id, source)
            if window.time_range.contains(wanted)
        ]
        on_grid = [
            window for window in windows
            if any(slot.contains(wanted) for slot in generator.walk(window.time_range))
        ]
        if windows and not on_grid:
            logger.warning("Booking rejected: %s %s does not match a slot", slot_date, wanted)
            raise ConflictError("The requested time does not match an available slot.")
        windows = on_grid

        open_windows = [
            window for window in windows
            if not self._window_blocked(window, slot_date, blackouts, employee_id, location_id)
        ]

        if not open_windows:
            if windows or BlackoutRule.is_blacked_out(
                blackouts, slot_date, location_id=location_id, employee_id=employee_id
            ):
                logger.warning("Booking rejected: %s is blacked out", slot_date)
                raise ConflictError(f"Bookings are not possible on {slot_date.isoformat()}.")

            logger.warning("Booking rejected: %s %s is outside available hours", slot_date, wanted)
            raise ConflictError("The requested time is outside the available hours.")

        occupied = wanted.expand(before=plan.buffer_before, after=plan.buffer_after)
        best: Optional[BookingCheck] = None
        for window in open_windows:
            remaining = self._remaining(plan, slot_date, window, occupied, service_id, exclude_reservation_id)
            if best is None or remaining > best.remaining_capacity:
                best = BookingCheck(remaining_capacity=remaining, window=window)

        if best.remaining_capacity < quantity:
            logger.warning(
                "Booking rejected: %s remaining on %s %s, %s requested",
                best.remaining_capacity, slot_date, wanted, quantity,
            )
            raise ConflictError(
                f"Not enough capacity: {best.remaining_capacity} remaining, {quantity} requested."
            )

        return best

    def resolve_plan(
        self,
        service_id: Optional[int] = None,
        variation_id: Optional[int] = None,
    ) -> BookingPlan:
        """
        Slot sizing for a service/variation pair.

        Raises:
            NotFoundError: If either record does not exist
            ConflictError: If either record is inactive
        """
        return self._booking_plan(service_id, variation_id, strict=True)

    # -- cache invalidation --------------------------------------------------

    def record_changed(self, record: Any) -> None:
        """Invalidate the cached slots a saved or deleted record can affect."""
        if isinstance(record, Reservation):
            self.invalidate_date(record.booking_date)
        elif isinstance(record, BlackoutDate):
            for day in record.days():
                self.invalidate_date(day)
        elif isinstance(record, Availability) and record.kind is AvailabilityKind.EVENT:
            for day in record.event_days():
                self.invalidate_date(day)
        else:
            self.invalidate_all()

    def invalidate_date(self, day: Any) -> int:
        removed = self._cache.delete_prefix(f"{CACHE_PREFIX}{_parse_day(day).isoformat()}:")
        logger.debug("Invalidated %s cached slot lists for %s", removed, day)
        return removed

    def invalidate_all(self) -> int:
        removed = self._cache.delete_prefix(CACHE_PREFIX)
        logger.debug("Invalidated all %s cached slot lists", removed)
        return removed

    # -- internals -----------------------------------------------------------

    def _candidate_slots(
        self,
        day: date,
        *,
        employee_id: Optional[int],
        location_id: Optional[int],
        service_id: Optional[int],
        quantity: int,
        variation_id: Optional[int],
        source: Optional[Source],
    ) -> List[Slot]:
        plan = self._booking_plan(service_id, variation_id, strict=False)
        if plan is None:
            return []

        windows = self._windows_for(day, employee_id, location_id, variation_id, source)
        if not windows:
            return []

        blackouts = self._store.find_blackouts(day)

        return plan.generator().candidate_slots(
            day,
            windows,
            capacity_of=lambda window, occupied: self._remaining(
                plan, day, window, occupied, service_id, None
            ),
            is_blocked=lambda window: self._window_blocked(
                window, day, blackouts, employee_id, location_id
            ),
            quantity=quantity,
            location_id=location_id,
            service_id=service_id,
            variation_id=variation_id,
        )

    def _windows_for(
        self,
        day: date,
        employee_id: Optional[int],
        location_id: Optional[int],
        variation_id: Optional[int],
        source: Optional[Source],
    ) -> List[ResolvedWindow]:
        # Availabilities are content-scoped and schedules are employee-scoped
        return self._resolver.resolve(
            day,
            source=source,
            variation_id=variation_id,
            employee_id=employee_id,
            location_id=location_id,
            include_availabilities=employee_id is None,
            include_schedules=source is None,
        )

    def _window_blocked(
        self,
        window: ResolvedWindow,
        day: date,
        blackouts: Sequence[BlackoutDate],
        employee_id: Optional[int],
        location_id: Optional[int],
    ) -> bool:
        effective_employee = window.employee_id if window.employee_id is not None else employee_id
        return BlackoutRule.is_blacked_out(
            blackouts, day, location_id=location_id, employee_id=effective_employee
        )

    def _remaining(
        self,
        plan: BookingPlan,
        day: date,
        window: ResolvedWindow,
        occupied: TimeRange,
        service_id: Optional[int],
        exclude_reservation_id: Optional[int],
    ) -> int:
        if plan.variation is not None:
            return self._ledger.remaining_capacity(
                plan.variation.id, day, occupied, exclude_reservation_id=exclude_reservation_id
            )
        return self._ledger.remaining_for(
            plan.capacity,
            day,
            occupied,
            employee_id=window.employee_id,
            service_id=service_id,
            exclude_reservation_id=exclude_reservation_id,
        )

    def _booking_plan(
        self,
        service_id: Optional[int],
        variation_id: Optional[int],
        *,
        strict: bool,
    ) -> Optional[BookingPlan]:
        variation = None
        service = None

        if variation_id is not None:
            variation = self._store.get_variation(variation_id)
            if variation is None or not variation.is_active:
                if strict:
                    _raise_unusable("Booking variation", variation_id, variation)
                return None

        if service_id is not None:
            service = self._store.get_service(service_id)
            if service is None or not service.is_active:
                if strict:
                    _raise_unusable("Service", service_id, service)
                return None

        settings = self._settings
        if variation is not None and variation.slot_duration_minutes:
            duration = variation.slot_duration_minutes
        elif service is not None:
            duration = service.duration_minutes
        else:
            duration = settings.default_slot_duration_minutes

        if variation is not None and variation.buffer_minutes is not None:
            buffer_after = variation.buffer_minutes
        elif service is not None:
            buffer_after = service.buffer_after
        else:
            buffer_after = settings.default_buffer_minutes

        if variation is not None:
            capacity = variation.max_capacity
        elif service is not None:
            capacity = service.capacity
        else:
            capacity = 1

        return BookingPlan(
            slot_duration=duration,
            buffer_before=service.buffer_before if service is not None else 0,
            buffer_after=buffer_after,
            capacity=capacity,
            variation=variation,
            service=service,
        )

    def _require_scope(self, employee_id: Optional[int], location_id: Optional[int]) -> None:
        if employee_id is not None and self._store.get_employee(employee_id) is None:
            raise NotFoundError(f"Employee {employee_id} not found")
        if location_id is not None and self._store.get_location(location_id) is None:
            raise NotFoundError(f"Location {location_id} not found")

    def _within_horizon(self, day: date, now: DateTime) -> bool:
        today = now.date()
        if day < today:
            return False

        max_days = self._settings.maximum_advance_booking_days
        if max_days and day > today + timedelta(days=max_days):
            return False

        return True

    @staticmethod
    def _cache_key(
        day: date,
        employee_id: Optional[int],
        location_id: Optional[int],
        service_id: Optional[int],
        variation_id: Optional[int],
        source: Optional[Source],
        quantity: int,
    ) -> str:
        source_part = f"{source.kind.value}-{source.id}-{source.handle}" if source else "none"
        return (
            f"{CACHE_PREFIX}{day.isoformat()}:{employee_id}:{location_id}:"
            f"{service_id}:{variation_id}:{source_part}:{quantity}"
        )


def _raise_unusable(label: str, record_id: int, record: Any) -> None:
    if record is None:
        raise NotFoundError(f"{label} {record_id} not found")
    raise ConflictError(f"{label} {record_id} is not available for booking")


def _parse_day(value: Any) -> date:
    try:
        return parse_date(value)
    except ValueError as exc:
        raise ValidationError(str(exc), {"date": [str(exc)]}) from exc


def _parse_range(start: Any, end: Any) -> TimeRange:
    try:
        return TimeRange.parse(start, end)
    except ValueError as exc:
        raise ValidationError(str(exc), {"time": [str(exc)]}) from exc
