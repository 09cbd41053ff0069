"""
Tests for domain models.
"""

from datetime import date, time

import pendulum
import pytest

from booked.domain.exceptions import ConfigurationError
from booked.domain.models import (
    Availability,
    AvailabilityKind,
    BlackoutDate,
    BookingVariation,
    DaySummary,
    EventDate,
    Reservation,
    ReservationStatus,
    Schedule,
    Service,
    Slot,
    Source,
    SourceType,
    TimeRange,
    format_time,
    parse_date,
    parse_time,
)

from conftest import MONDAY, TZ, make_reservation


class TestTimeRange:
    """Tests for TimeRange model."""

    def test_overlapping_ranges(self):
        """Test overlap detection."""
        morning = TimeRange.parse("09:00", "12:00")
        late_morning = TimeRange.parse("11:00", "13:00")

        assert morning.overlaps(late_morning)
        assert late_morning.overlaps(morning)

    def test_touching_ranges_do_not_overlap(self):
        """Ranges are half-open, so 10:00-10:30 and 10:30-11:00 are disjoint."""
        first = TimeRange.parse("10:00", "10:30")
        second = TimeRange.parse("10:30", "11:00")

        assert not first.overlaps(second)
        assert not second.overlaps(first)

    def test_duration_is_clamped_at_zero(self):
        assert TimeRange.parse("09:00", "17:00").duration_minutes() == 480
        assert TimeRange(start=600, end=540).duration_minutes() == 0
        assert TimeRange(start=600, end=540).is_empty

    def test_contains_and_expand(self):
        window = TimeRange.parse("09:00", "12:00")

        assert window.contains(TimeRange.parse("09:00", "09:30"))
        assert not window.contains(TimeRange.parse("11:45", "12:15"))
        assert window.expand(before=15, after=30) == TimeRange(start=525, end=750)

    def test_str(self):
        assert str(TimeRange.parse("9:05", "10:00")) == "09:05 - 10:00"


class TestParsing:
    """Tests for the boundary parsers."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("09:00", 540),
            ("9:00", 540),
            ("09:30:00", 570),
            ("24:00", 1440),
            (time(13, 15), 795),
            (600, 600),
        ],
    )
    def test_parse_time(self, value, expected):
        assert parse_time(value) == expected

    @pytest.mark.parametrize("value", ["25:00", "noon", "", 2000, True])
    def test_parse_time_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            parse_time(value)

    def test_format_time(self):
        assert format_time(545) == "09:05"

    def test_parse_date(self):
        assert parse_date("2024-01-01") == MONDAY
        assert parse_date(pendulum.datetime(2024, 1, 1, 15, tz=TZ)) == MONDAY

    def test_parse_date_rejects_invalid_text(self):
        with pytest.raises(ValueError, match="Invalid date"):
            parse_date("2024-02-30")


class TestReservationStatus:
    """Tests for the reservation state machine."""

    def test_allowed_transitions(self):
        assert ReservationStatus.PENDING.can_transition_to(ReservationStatus.CONFIRMED)
        assert ReservationStatus.PENDING.can_transition_to(ReservationStatus.CANCELLED)
        assert ReservationStatus.CONFIRMED.can_transition_to(ReservationStatus.CANCELLED)

    def test_forbidden_transitions(self):
        assert not ReservationStatus.CONFIRMED.can_transition_to(ReservationStatus.PENDING)
        for target in ReservationStatus:
            assert not ReservationStatus.CANCELLED.can_transition_to(target)

    def test_only_cancelled_frees_capacity(self):
        assert ReservationStatus.PENDING.holds_capacity
        assert ReservationStatus.CONFIRMED.holds_capacity
        assert not ReservationStatus.CANCELLED.holds_capacity


class TestAvailability:
    """Tests for Availability windows."""

    def test_recurring_uses_sunday_zero_numbering(self):
        """2024-01-01 is a Monday, which is day 1."""
        monday = Availability(id=1, day_of_week=1, start_time=540, end_time=720)
        sunday = Availability(id=2, day_of_week=0, start_time=540, end_time=720)

        assert monday.windows_on(MONDAY) == [TimeRange(540, 720)]
        assert sunday.windows_on(MONDAY) == []
        assert sunday.windows_on(date(2023, 12, 31)) == [TimeRange(540, 720)]

    def test_event_windows(self):
        availability = Availability(
            id=1,
            kind=AvailabilityKind.EVENT,
            event_dates=[
                EventDate(date=MONDAY, start_time=600, end_time=660),
                EventDate(date=MONDAY, start_time=840, end_time=900),
                EventDate(date=date(2024, 1, 5), start_time=600, end_time=660),
            ],
        )

        assert availability.windows_on(MONDAY) == [TimeRange(600, 660), TimeRange(840, 900)]
        assert availability.event_days() == [MONDAY, date(2024, 1, 5)]

    def test_event_without_dates_is_never_available(self):
        availability = Availability(id=1, kind=AvailabilityKind.EVENT)
        assert availability.windows_on(MONDAY) == []

    def test_inactive_has_no_windows(self):
        availability = Availability(id=1, day_of_week=1, start_time=540, end_time=720, is_active=False)
        assert availability.windows_on(MONDAY) == []

    def test_recurring_without_times_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            Availability(id=1, day_of_week=1)

    def test_day_of_week_out_of_range(self):
        with pytest.raises(ConfigurationError, match="between 0 and 6"):
            Availability(id=1, day_of_week=7, start_time=540, end_time=720)

    def test_source_and_variation_matching(self):
        availability = Availability(
            id=1,
            day_of_week=1,
            start_time=540,
            end_time=720,
            source=Source(kind=SourceType.ENTRY, id=42, handle="tours"),
            variation_ids=[3],
        )

        assert availability.matches_source(None)
        assert availability.matches_source(Source(kind=SourceType.ENTRY, id=42))
        assert availability.matches_source(Source(kind=SourceType.ENTRY, handle="tours"))
        assert not availability.matches_source(Source(kind=SourceType.SECTION, id=42))
        assert availability.applies_to_variation(3)
        assert not availability.applies_to_variation(4)


class TestRecordValidation:
    """Invalid records fail when they are built."""

    def test_variation_capacity_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            BookingVariation(id=1, max_capacity=0)

    def test_variation_duration_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            BookingVariation(id=1, slot_duration_minutes=0)

    def test_service_buffers_cannot_be_negative(self):
        with pytest.raises(ConfigurationError):
            Service(id=1, buffer_after=-5)

    def test_schedule_uses_iso_weekdays(self):
        with pytest.raises(ConfigurationError):
            Schedule(id=1, employee_ids=[1], days_of_week=[0], start_time=540, end_time=600)

        schedule = Schedule(id=1, employee_ids=[1], days_of_week=[1], start_time=540, end_time=600)
        assert schedule.applies_on(MONDAY)

    def test_blackout_range_must_not_be_reversed(self):
        with pytest.raises(ConfigurationError):
            BlackoutDate(id=1, start_date=date(2024, 1, 2), end_date=MONDAY)

    def test_blackout_days_are_inclusive(self):
        blackout = BlackoutDate(id=1, start_date=MONDAY, end_date=date(2024, 1, 3))
        assert len(blackout.days()) == 3
        assert blackout.covers(date(2024, 1, 3))


class TestReservation:
    """Tests for Reservation helpers."""

    def test_cannot_cancel_inside_policy_window(self):
        """A reservation starting in 10 hours cannot be cancelled with a 24 hour policy."""
        reservation = make_reservation("10:00", "10:30")
        now = pendulum.datetime(2024, 1, 1, 0, 0, tz=TZ)

        assert not reservation.can_be_cancelled(now, 24)
        assert reservation.can_be_cancelled(now, 8)

    def test_zero_policy_allows_cancelling_until_start(self):
        reservation = make_reservation("10:00", "10:30")

        assert reservation.can_be_cancelled(pendulum.datetime(2024, 1, 1, 9, 59, tz=TZ), 0)
        assert reservation.can_be_cancelled(pendulum.datetime(2024, 1, 1, 10, 0, tz=TZ), 0)
        assert not reservation.can_be_cancelled(pendulum.datetime(2024, 1, 1, 10, 1, tz=TZ), 0)

    def test_cancelled_cannot_be_cancelled_again(self):
        reservation = make_reservation("10:00", "10:30", status=ReservationStatus.CANCELLED)
        assert not reservation.can_be_cancelled(pendulum.datetime(2023, 12, 1, tz=TZ), 24)

    def test_conflicts_with(self):
        first = make_reservation("10:00", "11:00")
        overlapping = make_reservation("10:30", "11:30")
        touching = make_reservation("11:00", "11:30")
        other_day = make_reservation("10:00", "11:00", day=date(2024, 1, 2))

        assert first.conflicts_with(overlapping)
        assert not first.conflicts_with(touching)
        assert not first.conflicts_with(other_day)
        assert first.duration_minutes() == 60

    def test_to_dict_uses_wall_clock_strings(self):
        data = make_reservation("09:00", "09:30", confirmation_token="abc").to_dict()

        assert data["bookingDate"] == "2024-01-01"
        assert data["startTime"] == "09:00"
        assert data["endTime"] == "09:30"
        assert data["status"] == "confirmed"
        assert data["confirmationToken"] == "abc"


def test_slot_to_dict():
    """Slots serialize with their duration and remaining capacity."""
    slot = Slot(date=MONDAY, start=540, end=570, remaining_capacity=2, variation_id=1)

    assert slot.to_dict() == {
        "date": "2024-01-01",
        "time": "09:00",
        "endTime": "09:30",
        "duration": 30,
        "remainingCapacity": 2,
        "employeeId": None,
        "locationId": None,
        "serviceId": None,
        "variationId": 1,
    }


def test_day_summary_is_bookable_only_without_blackout():
    assert DaySummary(has_availability=True, is_blacked_out=False).is_bookable
    assert not DaySummary(has_availability=True, is_blacked_out=True).is_bookable
    assert not DaySummary(has_availability=False, is_blacked_out=False).to_dict()["isBookable"]
