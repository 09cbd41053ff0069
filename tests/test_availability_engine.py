"""
Tests for the AvailabilityEngine read path and write-time validation.
"""

from datetime import date

import pytest

from booked.adapters.cache import MemoryCache
from booked.domain.exceptions import ConflictError, NotFoundError, ValidationError
from booked.domain.models import (
    Availability,
    AvailabilityKind,
    BlackoutDate,
    BookingVariation,
    Employee,
    EventDate,
    ReservationStatus,
    Schedule,
    Service,
    Source,
    SourceType,
)
from booked.services.availability_engine import AvailabilityEngine

from conftest import MONDAY, make_reservation


def _times(slots):
    return [slot.to_dict()["time"] for slot in slots]


class TestScenarios:
    """End-to-end availability scenarios on Monday 2024-01-01."""

    def test_weekly_morning_yields_six_half_hour_slots(self, engine):
        slots = engine.get_available_slots("2024-01-01", variation_id=1)

        assert _times(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
        assert [s.to_dict()["endTime"] for s in slots][0] == "09:30"
        assert all(s.remaining_capacity == 1 for s in slots)

    def test_booked_slot_disappears(self, engine, store):
        store.insert_reservation(make_reservation("10:00", "10:30", variation_id=1))

        slots = engine.get_available_slots("2024-01-01", variation_id=1)

        assert _times(slots) == ["09:00", "09:30", "10:30", "11:00", "11:30"]

    def test_global_blackout_empties_the_day(self, engine, store):
        store.save_blackout(BlackoutDate(id=1, title="Closed", start_date=MONDAY, end_date=MONDAY))

        assert engine.get_available_slots("2024-01-01", variation_id=1) == []
        assert engine.get_available_slots("2024-01-01") == []

    def test_employee_blackout_does_not_touch_other_employees(self, engine, store):
        store.save_schedule(Schedule(id=1, employee_ids=[5, 7], days_of_week=[1], start_time=540, end_time=720))
        store.save_blackout(
            BlackoutDate(id=1, title="Training", start_date=MONDAY, end_date=MONDAY, employee_ids=[5])
        )

        assert _times(engine.get_available_slots(MONDAY, employee_id=7)) == ["09:00", "10:00", "11:00"]
        assert engine.get_available_slots(MONDAY, employee_id=5) == []

    def test_full_group_slot_rejects_one_more(self, engine, store):
        store.insert_reservation(make_reservation("09:00", "09:30", quantity=2, variation_id=2))
        store.insert_reservation(
            make_reservation("09:00", "09:30", variation_id=2, status=ReservationStatus.PENDING)
        )

        assert "09:00" not in _times(engine.get_available_slots(MONDAY, variation_id=2))
        with pytest.raises(ConflictError, match="Not enough capacity"):
            engine.validate_booking(MONDAY, "09:00", "09:30", variation_id=2, quantity=1)


class TestGetAvailableSlots:
    """Filtering, sizing and horizon rules."""

    def test_remaining_capacity_is_reported(self, engine, store):
        store.insert_reservation(make_reservation("09:00", "09:30", variation_id=2))

        slots = engine.get_available_slots(MONDAY, variation_id=2, quantity=2)

        assert slots[0].remaining_capacity == 2
        assert slots[1].remaining_capacity == 3

    def test_buffer_time_counts_against_capacity(self, engine, store):
        """A slot whose trailing buffer runs into a booking is treated as taken."""
        store.save_variation(
            BookingVariation(id=3, slot_duration_minutes=30, buffer_minutes=15, max_capacity=1)
        )
        store.insert_reservation(make_reservation("10:00", "10:30", variation_id=3))

        slots = engine.get_available_slots(MONDAY, variation_id=3)

        assert _times(slots) == ["09:00", "10:30", "11:00", "11:30"]

    def test_service_sets_duration_when_no_variation(self, engine, store):
        store.save_service(Service(id=1, title="Consultation", duration_minutes=45, capacity=2))

        slots = engine.get_available_slots(MONDAY, service_id=1)

        assert _times(slots) == ["09:00", "09:45", "10:30", "11:15"]
        assert slots[0].service_id == 1
        assert slots[0].remaining_capacity == 2

    def test_default_duration_from_settings(self, engine):
        assert _times(engine.get_available_slots(MONDAY)) == ["09:00", "10:00", "11:00"]

    def test_minimum_advance_hides_early_slots(self, engine, clock):
        clock.set(2024, 1, 1, 8, 0)

        slots = engine.get_available_slots(MONDAY, variation_id=1)

        assert _times(slots) == ["10:00", "10:30", "11:00", "11:30"]

    def test_past_and_far_future_dates_are_empty(self, engine, store):
        store.save_availability(Availability(id=2, day_of_week=1, start_time=540, end_time=720))

        assert engine.get_available_slots(date(2023, 11, 27)) == []
        assert engine.get_available_slots(date(2024, 3, 4)) == []

    def test_unknown_or_inactive_records_are_empty(self, engine, store):
        store.save_variation(BookingVariation(id=4, slot_duration_minutes=30, is_active=False))

        assert engine.get_available_slots(MONDAY, variation_id=99) == []
        assert engine.get_available_slots(MONDAY, variation_id=4) == []
        assert engine.get_available_slots(MONDAY, service_id=99) == []

    def test_source_filter(self, engine):
        assert len(engine.get_available_slots(MONDAY, source=Source(kind=SourceType.ENTRY, id=42))) == 3
        assert engine.get_available_slots(MONDAY, source=Source(kind=SourceType.ENTRY, id=1)) == []

    def test_location_filter_on_schedules(self, engine, store):
        store.save_employee(Employee(id=5, location_id=1))
        store.save_employee(Employee(id=7, location_id=2))
        store.save_schedule(Schedule(id=1, employee_ids=[5, 7], days_of_week=[1], start_time=780, end_time=900))

        slots = engine.get_available_slots(MONDAY, location_id=2)

        afternoon = [s for s in slots if s.start >= 780]
        assert {s.employee_id for s in afternoon} == {7}
        assert all(s.location_id == 2 for s in slots)

    def test_injected_filter_runs_on_every_read(self, store, settings, clock):
        hidden = set()
        engine = AvailabilityEngine(
            store, settings, clock=clock, slot_filters=[lambda slot: slot.start not in hidden]
        )

        assert len(engine.get_available_slots(MONDAY, variation_id=1)) == 6
        hidden.add(9 * 60)
        assert len(engine.get_available_slots(MONDAY, variation_id=1)) == 5

    def test_malformed_input(self, engine):
        with pytest.raises(ValidationError):
            engine.get_available_slots("01/01/2024")
        with pytest.raises(ValidationError):
            engine.get_available_slots(MONDAY, quantity=0)


class TestCaching:
    """Tests for cached slot lists and their invalidation."""

    def test_results_are_cached_until_invalidated(self, store, settings, clock):
        cache = MemoryCache()
        engine = AvailabilityEngine(store, settings, cache=cache, clock=clock)

        assert "10:00" in _times(engine.get_available_slots(MONDAY, variation_id=1))
        assert len(cache) == 1

        reservation = store.insert_reservation(make_reservation("10:00", "10:30", variation_id=1))
        assert "10:00" in _times(engine.get_available_slots(MONDAY, variation_id=1))

        engine.record_changed(reservation)
        assert "10:00" not in _times(engine.get_available_slots(MONDAY, variation_id=1))

    def test_invalidate_date_only_touches_that_date(self, store, settings, clock):
        cache = MemoryCache()
        engine = AvailabilityEngine(store, settings, cache=cache, clock=clock)
        engine.get_available_slots(MONDAY)
        engine.get_available_slots(date(2024, 1, 8))

        assert engine.invalidate_date("2024-01-01") == 1
        assert len(cache) == 1
        assert engine.invalidate_all() == 1

    def test_store_changes_invalidate_through_subscription(self, components, store):
        engine = components.engine
        assert len(engine.get_available_slots(MONDAY, variation_id=1)) == 6

        store.save_blackout(BlackoutDate(id=1, start_date=MONDAY, end_date=MONDAY))
        assert engine.get_available_slots(MONDAY, variation_id=1) == []

        store.delete_blackout(1)
        assert len(engine.get_available_slots(MONDAY, variation_id=1)) == 6

    def test_recurring_availability_change_clears_everything(self, components, store):
        engine = components.engine
        engine.get_available_slots(MONDAY)

        store.save_availability(Availability(id=1, day_of_week=1, start_time=540, end_time=600))

        assert _times(engine.get_available_slots(MONDAY)) == ["09:00"]


class TestSlotQueries:
    """Tests for is_slot_available and get_availability_for_slot."""

    def test_is_slot_available(self, engine, store):
        assert engine.is_slot_available(MONDAY, "09:00", "09:30", variation_id=1)
        assert engine.is_slot_available(MONDAY, "09:00", "09:15", variation_id=1)
        assert not engine.is_slot_available(MONDAY, "09:15", "09:45", variation_id=1)

        store.insert_reservation(make_reservation("09:00", "09:30", variation_id=1))
        engine.invalidate_all()
        assert not engine.is_slot_available(MONDAY, "09:00", "09:30", variation_id=1)

    def test_availability_for_slot_prefers_lowest_id(self, engine, store):
        store.save_availability(
            Availability(
                id=3,
                kind=AvailabilityKind.EVENT,
                event_dates=[EventDate(date=MONDAY, start_time=480, end_time=600)],
            )
        )
        store.save_availability(Availability(id=2, day_of_week=1, start_time=420, end_time=540))

        assert engine.get_availability_for_slot(MONDAY, "09:00", "09:30").id == 1
        assert engine.get_availability_for_slot(MONDAY, "08:00", "08:30").id == 2
        assert engine.get_availability_for_slot(MONDAY, "13:00", "13:30") is None


class TestSummary:
    """Tests for get_availability_summary."""

    def test_days_flagged(self, engine, store):
        store.save_blackout(BlackoutDate(id=1, start_date=date(2024, 1, 8), end_date=date(2024, 1, 8)))

        summary = engine.get_availability_summary("2024-01-01", "2024-01-08")

        assert len(summary) == 8
        assert summary[MONDAY].is_bookable
        assert not summary[date(2024, 1, 2)].has_availability
        assert summary[date(2024, 1, 8)].has_availability
        assert summary[date(2024, 1, 8)].is_blacked_out
        assert not summary[date(2024, 1, 8)].is_bookable

    def test_reversed_range(self, engine):
        with pytest.raises(ValidationError):
            engine.get_availability_summary("2024-01-08", "2024-01-01")

    def test_range_limit(self, engine):
        with pytest.raises(ValidationError, match="366"):
            engine.get_availability_summary("2024-01-01", "2025-01-02")


class TestValidateBooking:
    """Tests for the fresh, uncached write-time check."""

    def test_returns_remaining_capacity(self, engine, store):
        store.insert_reservation(make_reservation("09:00", "09:30", variation_id=2))
        assert engine.validate_booking(MONDAY, "09:00", "09:30", variation_id=2, quantity=2) == 2

    def test_ignores_stale_cache(self, engine, store):
        engine.get_available_slots(MONDAY, variation_id=1)
        store.insert_reservation(make_reservation("09:00", "09:30", variation_id=1))

        with pytest.raises(ConflictError):
            engine.validate_booking(MONDAY, "09:00", "09:30", variation_id=1)

    def test_outside_available_hours(self, engine):
        with pytest.raises(ConflictError, match="outside the available hours"):
            engine.validate_booking(MONDAY, "13:00", "13:30", variation_id=1)

    def test_off_the_slot_grid(self, engine):
        with pytest.raises(ConflictError, match="does not match an available slot"):
            engine.validate_booking(MONDAY, "10:10", "10:40", variation_id=1)

    def test_blacked_out(self, engine, store):
        store.save_blackout(BlackoutDate(id=1, start_date=MONDAY, end_date=MONDAY))
        with pytest.raises(ConflictError, match="not possible"):
            engine.validate_booking(MONDAY, "09:00", "09:30", variation_id=1)

    def test_excludes_reservation_being_moved(self, engine, store):
        existing = store.insert_reservation(make_reservation("09:00", "09:30", variation_id=1))

        remaining = engine.validate_booking(
            MONDAY, "09:00", "09:30", variation_id=1, exclude_reservation_id=existing.id
        )

        assert remaining == 1

    def test_unknown_references(self, engine):
        with pytest.raises(NotFoundError):
            engine.validate_booking(MONDAY, "09:00", "09:30", variation_id=99)
        with pytest.raises(NotFoundError):
            engine.validate_booking(MONDAY, "09:00", "09:30", employee_id=99)

    def test_reversed_times(self, engine):
        with pytest.raises(ValidationError):
            engine.validate_booking(MONDAY, "09:30", "09:00", variation_id=1)
