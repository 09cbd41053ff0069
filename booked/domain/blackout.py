"""
Blackout scoping rules.

A blackout blocks a whole date. Its location and employee sets narrow who it
blocks; an empty set means "unrestricted", and a filter that is omitted from
the query is treated as matching.
"""

from datetime import date
from typing import Iterable, Optional

from .models import BlackoutDate


class BlackoutRule:
    """Pure evaluation of blackout records against a date and scope."""

    @staticmethod
    def applies(
        blackout: BlackoutDate,
        day: date,
        location_id: Optional[int] = None,
        employee_id: Optional[int] = None,
    ) -> bool:
        """
        Decide whether ``blackout`` blocks ``day`` for the given scope.

        Cases:
        - inactive, or ``day`` outside the range: never
        - no locations and no employees: always (global)
        - locations only: location in set, or location omitted
        - employees only: employee in set, or employee omitted
        - both: both of the above must hold
        """
        if not blackout.is_active or not blackout.covers(day):
            return False

        location_matches = (
            not blackout.location_ids
            or location_id is None
            or location_id in blackout.location_ids
        )
        employee_matches = (
            not blackout.employee_ids
            or employee_id is None
            or employee_id in blackout.employee_ids
        )

        return location_matches and employee_matches

    @classmethod
    def is_blacked_out(
        cls,
        blackouts: Iterable[BlackoutDate],
        day: date,
        location_id: Optional[int] = None,
        employee_id: Optional[int] = None,
    ) -> bool:
        """Any single applicable blackout blocks the date."""
        return any(
            cls.applies(blackout, day, location_id=location_id, employee_id=employee_id)
            for blackout in blackouts
        )
