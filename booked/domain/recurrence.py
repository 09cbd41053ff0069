"""
Expansion of recurring and dated availability definitions into concrete
windows for a single date.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, List, Optional

from .models import ResolvedWindow, Source

if TYPE_CHECKING:
    from ..adapters.store import BookingStoreProtocol

logger = logging.getLogger(__name__)


class RecurringScheduleResolver:
    """
    Resolves the candidate windows for a date.

    Content-scoped ``Availability`` records and employee ``Schedule`` records
    are resolved the same way: each matching record contributes one window
    per occurrence on the date. Windows may overlap; callers must not assume
    they are disjoint.
    """

    def __init__(self, store: BookingStoreProtocol):
        self._store = store

    def resolve(
        self,
        day: date,
        *,
        source: Optional[Source] = None,
        variation_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        location_id: Optional[int] = None,
        include_availabilities: bool = True,
        include_schedules: bool = True,
    ) -> List[ResolvedWindow]:
        """
        Return all windows for ``day``.

        Availability windows come first (by record id), then schedule
        windows (by schedule id, then employee id).
        """
        windows: List[ResolvedWindow] = []

        if include_availabilities:
            windows.extend(
                self.resolve_availabilities(day, source=source, variation_id=variation_id)
            )

        if include_schedules:
            windows.extend(
                self.resolve_schedules(day, employee_id=employee_id, location_id=location_id)
            )

        return windows

    def resolve_availabilities(
        self,
        day: date,
        *,
        source: Optional[Source] = None,
        variation_id: Optional[int] = None,
    ) -> List[ResolvedWindow]:
        windows: List[ResolvedWindow] = []

        availabilities = self._store.find_availabilities(day, source=source, variation_id=variation_id)
        for availability in sorted(availabilities, key=lambda a: a.id):
            if not availability.matches_source(source):
                continue
            if not availability.applies_to_variation(variation_id):
                continue

            for time_range in availability.windows_on(day):
                windows.append(
                    ResolvedWindow(time_range=time_range, availability_id=availability.id)
                )

        return windows

    def resolve_schedules(
        self,
        day: date,
        *,
        employee_id: Optional[int] = None,
        location_id: Optional[int] = None,
    ) -> List[ResolvedWindow]:
        windows: List[ResolvedWindow] = []

        schedules = self._store.find_schedules(day, employee_id=employee_id)
        for schedule in sorted(schedules, key=lambda s: s.id):
            if not schedule.applies_on(day):
                continue

            if employee_id is not None:
                employee_ids = [employee_id] if employee_id in schedule.employee_ids else []
            else:
                employee_ids = sorted(schedule.employee_ids)

            for emp_id in employee_ids:
                if location_id is not None and not self._employee_at_location(emp_id, location_id):
                    continue
                windows.append(
                    ResolvedWindow(
                        time_range=schedule.time_range,
                        schedule_id=schedule.id,
                        employee_id=emp_id,
                    )
                )

        return windows

    def _employee_at_location(self, employee_id: int, location_id: int) -> bool:
        employee = self._store.get_employee(employee_id)
        if employee is None:
            logger.warning("Schedule references unknown employee %s", employee_id)
            return False
        return employee.is_active and employee.location_id == location_id
