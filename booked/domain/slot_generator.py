"""
Core business logic for turning availability windows into bookable slots.

Pure domain logic: capacity and blackout lookups are passed in as callables,
so this module performs no I/O of its own.
"""

from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pendulum import DateTime

from .exceptions import ConfigurationError
from .models import ResolvedWindow, Slot, TimeRange, wall_clock

CapacityLookup = Callable[[ResolvedWindow, TimeRange], int]
BlockedLookup = Callable[[ResolvedWindow], bool]
SlotFilter = Callable[[Slot], bool]


class SlotGenerator:
    """
    Discretizes availability windows into fixed-length slots.

    Algorithm:
    1. Walk each window in ``slot_duration`` steps while the slot fits
    2. Widen each slot by its buffers to get the occupied range
    3. Drop slots starting before now + minimum advance booking time
    4. Drop slots whose window is blacked out, then apply extra filters
    5. Drop slots whose remaining capacity is below the requested quantity
    6. De-duplicate by (start, end), keeping the highest capacity, and sort

    Steps 3 and the extra filters depend on the current time, so they are
    exposed separately from the cacheable steps.
    """

    def __init__(self, slot_duration: int, buffer_before: int = 0, buffer_after: int = 0):
        if slot_duration <= 0:
            raise ConfigurationError(f"Slot duration must be positive, got {slot_duration}")
        if buffer_before < 0 or buffer_after < 0:
            raise ConfigurationError("Buffer minutes cannot be negative")

        self.slot_duration = slot_duration
        self.buffer_before = buffer_before
        self.buffer_after = buffer_after

    def generate(
        self,
        day: date,
        windows: Iterable[ResolvedWindow],
        *,
        capacity_of: CapacityLookup,
        is_blocked: Optional[BlockedLookup] = None,
        quantity: int = 1,
        now: Optional[DateTime] = None,
        minimum_advance_hours: int = 0,
        slot_filters: Sequence[SlotFilter] = (),
        location_id: Optional[int] = None,
        service_id: Optional[int] = None,
        variation_id: Optional[int] = None,
    ) -> List[Slot]:
        """Run every step for one date."""
        slots = self.candidate_slots(
            day,
            windows,
            capacity_of=capacity_of,
            is_blocked=is_blocked,
            quantity=quantity,
            location_id=location_id,
            service_id=service_id,
            variation_id=variation_id,
        )

        if now is not None:
            slots = self.filter_by_booking_time(slots, now, minimum_advance_hours)

        return self.apply_filters(slots, slot_filters)

    def candidate_slots(
        self,
        day: date,
        windows: Iterable[ResolvedWindow],
        *,
        capacity_of: CapacityLookup,
        is_blocked: Optional[BlockedLookup] = None,
        quantity: int = 1,
        location_id: Optional[int] = None,
        service_id: Optional[int] = None,
        variation_id: Optional[int] = None,
    ) -> List[Slot]:
        """Steps 1, 2, 4 (blackouts), 5 and 6. Independent of the clock."""
        best: Dict[Tuple[int, int], Slot] = {}

        for window in windows:
            if window.time_range.is_empty:
                continue
            if is_blocked is not None and is_blocked(window):
                continue

            for slot_range in self.walk(window.time_range):
                occupied = self.occupied_range(slot_range)
                remaining = capacity_of(window, occupied)
                if remaining < quantity:
                    continue

                key = (slot_range.start, slot_range.end)
                current = best.get(key)
                if current is not None and current.remaining_capacity >= remaining:
                    continue

                best[key] = Slot(
                    date=day,
                    start=slot_range.start,
                    end=slot_range.end,
                    remaining_capacity=remaining,
                    employee_id=window.employee_id,
                    location_id=location_id,
                    service_id=service_id,
                    variation_id=variation_id,
                )

        return [best[key] for key in sorted(best)]

    def walk(self, window: TimeRange) -> List[TimeRange]:
        """Split a window into back-to-back slots of ``slot_duration``."""
        ranges: List[TimeRange] = []
        current = window.start

        while current + self.slot_duration <= window.end:
            ranges.append(TimeRange(start=current, end=current + self.slot_duration))
            current += self.slot_duration

        return ranges

    def occupied_range(self, slot_range: TimeRange) -> TimeRange:
        """
        Range a booking of this slot occupies for overlap purposes.

        Buffer time is dead time attached to the booking and counts against
        capacity like the booked time itself.
        """
        return slot_range.expand(before=self.buffer_before, after=self.buffer_after)

    @staticmethod
    def filter_by_booking_time(
        slots: Iterable[Slot],
        now: DateTime,
        minimum_advance_hours: int = 0,
    ) -> List[Slot]:
        """Step 3: keep slots starting at or after now + minimum advance."""
        earliest = now.add(hours=minimum_advance_hours) if minimum_advance_hours > 0 else now

        return [
            slot for slot in slots
            if wall_clock(slot.date, slot.start, now.tzinfo) >= earliest
        ]

    @staticmethod
    def apply_filters(slots: Iterable[Slot], slot_filters: Sequence[SlotFilter]) -> List[Slot]:
        """Keep slots every filter accepts."""
        return [slot for slot in slots if all(keep(slot) for keep in slot_filters)]
