"""
Tests for CapacityLedger.
"""

import pytest

from booked.domain.capacity import CapacityLedger
from booked.domain.exceptions import NotFoundError
from booked.domain.models import ReservationStatus, TimeRange

from conftest import MONDAY, make_reservation

NINE = TimeRange.parse("09:00", "09:30")


def test_unreserved_window_has_full_capacity(store):
    assert CapacityLedger(store).remaining_capacity(2, MONDAY, NINE) == 3


def test_pending_and_confirmed_both_hold_capacity(store):
    """Capacity 3 with 2 confirmed and 1 pending on the same window leaves nothing."""
    store.insert_reservation(make_reservation("09:00", "09:30", quantity=2, variation_id=2))
    store.insert_reservation(
        make_reservation("09:00", "09:30", variation_id=2, status=ReservationStatus.PENDING)
    )

    assert CapacityLedger(store).remaining_capacity(2, MONDAY, NINE) == 0


def test_cancelled_reservations_are_ignored(store):
    store.insert_reservation(
        make_reservation("09:00", "09:30", quantity=3, variation_id=2, status=ReservationStatus.CANCELLED)
    )
    assert CapacityLedger(store).remaining_capacity(2, MONDAY, NINE) == 3


def test_never_negative(store):
    store.insert_reservation(make_reservation("09:00", "09:30", quantity=5, variation_id=2))
    assert CapacityLedger(store).remaining_capacity(2, MONDAY, NINE) == 0


def test_touching_and_other_variation_reservations_do_not_count(store):
    store.insert_reservation(make_reservation("08:30", "09:00", quantity=3, variation_id=2))
    store.insert_reservation(make_reservation("09:00", "09:30", quantity=1, variation_id=1))

    assert CapacityLedger(store).remaining_capacity(2, MONDAY, NINE) == 3


def test_partial_overlap_counts(store):
    store.insert_reservation(make_reservation("09:15", "09:45", quantity=1, variation_id=2))
    assert CapacityLedger(store).remaining_capacity(2, MONDAY, NINE) == 2


def test_excluded_reservation(store):
    existing = store.insert_reservation(make_reservation("09:00", "09:30", quantity=3, variation_id=2))
    ledger = CapacityLedger(store)

    assert ledger.remaining_capacity(2, MONDAY, NINE) == 0
    assert ledger.remaining_capacity(2, MONDAY, NINE, exclude_reservation_id=existing.id) == 3


def test_missing_variation(store):
    with pytest.raises(NotFoundError):
        CapacityLedger(store).remaining_capacity(99, MONDAY, NINE)


def test_remaining_for_scopes_by_employee_and_service(store):
    store.insert_reservation(make_reservation("09:00", "09:30", variation_id=None, employee_id=5, service_id=1))
    ledger = CapacityLedger(store)

    assert ledger.remaining_for(2, MONDAY, NINE, employee_id=5, service_id=1) == 1
    assert ledger.remaining_for(2, MONDAY, NINE, employee_id=7, service_id=1) == 2
    assert ledger.remaining_for(1, MONDAY, NINE, employee_id=5) == 0
