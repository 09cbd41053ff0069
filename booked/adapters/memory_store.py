"""
In-memory booking store, optionally loaded from and saved to a YAML file.
"""

import logging
from dataclasses import replace
from datetime import date
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml

from ..domain.exceptions import ConfigurationError
from ..domain.models import (
    Availability,
    AvailabilityKind,
    BlackoutDate,
    BookingVariation,
    Employee,
    EventDate,
    Location,
    Reservation,
    ReservationStatus,
    Schedule,
    Service,
    Source,
    SourceType,
    TimeRange,
    format_time,
    parse_date,
    parse_time,
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Any], None]


class InMemoryBookingStore:
    """
    Store implementing ``BookingStoreProtocol`` over plain dictionaries.

    All reads return copies, so callers can modify what they get back
    without touching stored state until they call an update method. A
    single re-entrant lock guards every operation, which makes each write
    atomic.
    """

    def __init__(self, listeners: Optional[Iterable[ChangeListener]] = None):
        self._lock = RLock()
        self._availabilities: Dict[int, Availability] = {}
        self._schedules: Dict[int, Schedule] = {}
        self._blackouts: Dict[int, BlackoutDate] = {}
        self._variations: Dict[int, BookingVariation] = {}
        self._services: Dict[int, Service] = {}
        self._employees: Dict[int, Employee] = {}
        self._locations: Dict[int, Location] = {}
        self._reservations: Dict[int, Reservation] = {}
        self._next_reservation_id = 1
        self._listeners: List[ChangeListener] = list(listeners or [])

    # -- change notification -------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callable invoked with every saved or deleted record."""
        self._listeners.append(listener)

    def _notify(self, record: Any) -> None:
        for listener in self._listeners:
            listener(record)

    # -- queries -------------------------------------------------------------

    def find_availabilities(
        self,
        day: date,
        source: Optional[Source] = None,
        variation_id: Optional[int] = None,
    ) -> List[Availability]:
        with self._lock:
            matches = [
                replace(availability)
                for availability in self._availabilities.values()
                if availability.windows_on(day)
                and availability.matches_source(source)
                and availability.applies_to_variation(variation_id)
            ]
        return sorted(matches, key=lambda a: a.id)

    def get_availability(self, availability_id: int) -> Optional[Availability]:
        with self._lock:
            availability = self._availabilities.get(availability_id)
            return replace(availability) if availability else None

    def find_schedules(self, day: date, employee_id: Optional[int] = None) -> List[Schedule]:
        with self._lock:
            matches = [
                replace(schedule)
                for schedule in self._schedules.values()
                if schedule.applies_on(day)
                and (employee_id is None or employee_id in schedule.employee_ids)
            ]
        return sorted(matches, key=lambda s: s.id)

    def find_blackouts(self, day: date) -> List[BlackoutDate]:
        with self._lock:
            matches = [
                replace(blackout)
                for blackout in self._blackouts.values()
                if blackout.is_active and blackout.covers(day)
            ]
        return sorted(matches, key=lambda b: b.id)

    def sum_reserved_quantity(
        self,
        day: date,
        window: TimeRange,
        *,
        variation_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        service_id: Optional[int] = None,
        exclude_reservation_id: Optional[int] = None,
    ) -> int:
        with self._lock:
            return sum(
                reservation.quantity
                for reservation in self._reservations.values()
                if reservation.booking_date == day
                and reservation.status.holds_capacity
                and (variation_id is None or reservation.variation_id == variation_id)
                and (employee_id is None or reservation.employee_id == employee_id)
                and (service_id is None or reservation.service_id == service_id)
                and (exclude_reservation_id is None or reservation.id != exclude_reservation_id)
                and reservation.time_range.overlaps(window)
            )

    def get_variation(self, variation_id: int) -> Optional[BookingVariation]:
        with self._lock:
            variation = self._variations.get(variation_id)
            return replace(variation) if variation else None

    def get_service(self, service_id: int) -> Optional[Service]:
        with self._lock:
            service = self._services.get(service_id)
            return replace(service) if service else None

    def get_employee(self, employee_id: int) -> Optional[Employee]:
        with self._lock:
            employee = self._employees.get(employee_id)
            return replace(employee) if employee else None

    def get_location(self, location_id: int) -> Optional[Location]:
        with self._lock:
            location = self._locations.get(location_id)
            return replace(location) if location else None

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        with self._lock:
            reservation = self._reservations.get(reservation_id)
            return replace(reservation) if reservation else None

    def get_reservation_by_token(self, token: str) -> Optional[Reservation]:
        with self._lock:
            for reservation in self._reservations.values():
                if reservation.confirmation_token == token:
                    return replace(reservation)
        return None

    def token_exists(self, token: str) -> bool:
        return self.get_reservation_by_token(token) is not None

    def list_reservations(self, day: Optional[date] = None) -> List[Reservation]:
        with self._lock:
            reservations = [
                replace(reservation)
                for reservation in self._reservations.values()
                if day is None or reservation.booking_date == day
            ]
        return sorted(reservations, key=lambda r: (r.booking_date, r.start_time, r.id))

    # -- reservation writes --------------------------------------------------

    def insert_reservation(self, reservation: Reservation) -> Reservation:
        with self._lock:
            if reservation.confirmation_token and self.token_exists(reservation.confirmation_token):
                raise ValueError(
                    f"Confirmation token already in use: {reservation.confirmation_token}"
                )

            stored = replace(reservation, id=self._next_reservation_id)
            self._reservations[stored.id] = stored
            self._next_reservation_id += 1

        self._notify(stored)
        return replace(stored)

    def update_reservation(self, reservation: Reservation) -> Reservation:
        with self._lock:
            previous = self._reservations.get(reservation.id)
            if previous is None:
                raise KeyError(f"Reservation {reservation.id} does not exist")
            stored = replace(reservation)
            self._reservations[stored.id] = stored

        # Moving a reservation frees capacity on its old date
        if previous.booking_date != stored.booking_date:
            self._notify(previous)
        self._notify(stored)
        return replace(stored)

    def delete_reservation(self, reservation_id: int) -> bool:
        with self._lock:
            removed = self._reservations.pop(reservation_id, None)

        if removed is None:
            return False
        self._notify(removed)
        return True

    # -- reference data writes -----------------------------------------------

    def save_availability(self, availability: Availability) -> Availability:
        return self._save(self._availabilities, availability)

    def save_schedule(self, schedule: Schedule) -> Schedule:
        return self._save(self._schedules, schedule)

    def save_blackout(self, blackout: BlackoutDate) -> BlackoutDate:
        return self._save(self._blackouts, blackout)

    def save_variation(self, variation: BookingVariation) -> BookingVariation:
        return self._save(self._variations, variation)

    def save_service(self, service: Service) -> Service:
        return self._save(self._services, service)

    def save_employee(self, employee: Employee) -> Employee:
        return self._save(self._employees, employee)

    def save_location(self, location: Location) -> Location:
        return self._save(self._locations, location)

    def delete_availability(self, availability_id: int) -> bool:
        return self._delete(self._availabilities, availability_id)

    def delete_schedule(self, schedule_id: int) -> bool:
        return self._delete(self._schedules, schedule_id)

    def delete_blackout(self, blackout_id: int) -> bool:
        return self._delete(self._blackouts, blackout_id)

    def _save(self, table: Dict[int, Any], record: Any) -> Any:
        with self._lock:
            previous = table.get(record.id)
            table[record.id] = replace(record)

        if previous is not None:
            self._notify(previous)
        self._notify(record)
        return record

    def _delete(self, table: Dict[int, Any], record_id: int) -> bool:
        with self._lock:
            removed = table.pop(record_id, None)

        if removed is None:
            return False
        self._notify(removed)
        return True

    # -- file loading --------------------------------------------------------

    @classmethod
    def from_yaml(cls, data_path: Path) -> "InMemoryBookingStore":
        """
        Load a store from a YAML data file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file or one of its records is malformed
        """
        if not data_path.exists():
            raise FileNotFoundError(f"Booking data file not found: {data_path}")

        try:
            with open(data_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {data_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Booking data file must contain a mapping at the root level.")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryBookingStore":
        """
        Build a store from plain section lists (the parsed data file).

        Raises:
            ValueError: If a record is malformed or breaks a record invariant
        """
        store = cls()

        loaders = [
            ("locations", _location_from_dict, store._locations),
            ("employees", _employee_from_dict, store._employees),
            ("services", _service_from_dict, store._services),
            ("variations", _variation_from_dict, store._variations),
            ("availabilities", _availability_from_dict, store._availabilities),
            ("schedules", _schedule_from_dict, store._schedules),
            ("blackout_dates", _blackout_from_dict, store._blackouts),
            ("reservations", _reservation_from_dict, store._reservations),
        ]

        for section, loader, table in loaders:
            for index, raw in enumerate(data.get(section) or []):
                try:
                    record = loader(raw)
                except (KeyError, TypeError, ValueError, ConfigurationError) as exc:
                    raise ValueError(f"Invalid entry #{index + 1} in '{section}': {exc}") from exc
                table[record.id] = record

        if store._reservations:
            store._next_reservation_id = max(store._reservations) + 1

        return store

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "locations": [_location_to_dict(r) for r in _ordered(self._locations)],
                "employees": [_employee_to_dict(r) for r in _ordered(self._employees)],
                "services": [_service_to_dict(r) for r in _ordered(self._services)],
                "variations": [_variation_to_dict(r) for r in _ordered(self._variations)],
                "availabilities": [_availability_to_dict(r) for r in _ordered(self._availabilities)],
                "schedules": [_schedule_to_dict(r) for r in _ordered(self._schedules)],
                "blackout_dates": [_blackout_to_dict(r) for r in _ordered(self._blackouts)],
                "reservations": [_reservation_to_dict(r) for r in _ordered(self._reservations)],
            }

    def save_yaml(self, data_path: Path) -> None:
        data_path.parent.mkdir(parents=True, exist_ok=True)
        with open(data_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False, allow_unicode=True)
        logger.info("Saved booking data to %s", data_path)


def _ordered(table: Dict[int, Any]) -> List[Any]:
    return [table[key] for key in sorted(table)]


def _ids(raw: Optional[Iterable[Any]]) -> frozenset:
    return frozenset(int(value) for value in (raw or []))


def _source_from_dict(raw: Optional[Dict[str, Any]]) -> Optional[Source]:
    if not raw:
        return None
    return Source(
        kind=SourceType(raw["type"]),
        id=raw.get("id"),
        handle=raw.get("handle"),
    )


def _location_from_dict(raw: Dict[str, Any]) -> Location:
    return Location(id=int(raw["id"]), title=raw.get("title", ""), is_active=raw.get("is_active", True))


def _location_to_dict(location: Location) -> Dict[str, Any]:
    return {"id": location.id, "title": location.title, "is_active": location.is_active}


def _employee_from_dict(raw: Dict[str, Any]) -> Employee:
    return Employee(
        id=int(raw["id"]),
        name=raw.get("name", ""),
        location_id=raw.get("location_id"),
        is_active=raw.get("is_active", True),
    )


def _employee_to_dict(employee: Employee) -> Dict[str, Any]:
    return {
        "id": employee.id,
        "name": employee.name,
        "location_id": employee.location_id,
        "is_active": employee.is_active,
    }


def _service_from_dict(raw: Dict[str, Any]) -> Service:
    return Service(
        id=int(raw["id"]),
        title=raw.get("title", ""),
        duration_minutes=int(raw.get("duration_minutes", 60)),
        buffer_before=int(raw.get("buffer_before", 0)),
        buffer_after=int(raw.get("buffer_after", 0)),
        capacity=int(raw.get("capacity", 1)),
        is_active=raw.get("is_active", True),
    )


def _service_to_dict(service: Service) -> Dict[str, Any]:
    return {
        "id": service.id,
        "title": service.title,
        "duration_minutes": service.duration_minutes,
        "buffer_before": service.buffer_before,
        "buffer_after": service.buffer_after,
        "capacity": service.capacity,
        "is_active": service.is_active,
    }


def _variation_from_dict(raw: Dict[str, Any]) -> BookingVariation:
    return BookingVariation(
        id=int(raw["id"]),
        title=raw.get("title", ""),
        description=raw.get("description", ""),
        slot_duration_minutes=raw.get("slot_duration_minutes"),
        buffer_minutes=raw.get("buffer_minutes"),
        max_capacity=int(raw.get("max_capacity", 1)),
        allow_quantity_selection=raw.get("allow_quantity_selection", False),
        is_active=raw.get("is_active", True),
    )


def _variation_to_dict(variation: BookingVariation) -> Dict[str, Any]:
    return {
        "id": variation.id,
        "title": variation.title,
        "description": variation.description,
        "slot_duration_minutes": variation.slot_duration_minutes,
        "buffer_minutes": variation.buffer_minutes,
        "max_capacity": variation.max_capacity,
        "allow_quantity_selection": variation.allow_quantity_selection,
        "is_active": variation.is_active,
    }


def _availability_from_dict(raw: Dict[str, Any]) -> Availability:
    kind = AvailabilityKind(raw.get("kind", AvailabilityKind.RECURRING.value))
    event_dates = [
        EventDate(
            date=parse_date(event["date"]),
            start_time=parse_time(event["start_time"]),
            end_time=parse_time(event["end_time"]),
        )
        for event in raw.get("event_dates") or []
    ]
    return Availability(
        id=int(raw["id"]),
        title=raw.get("title", ""),
        kind=kind,
        is_active=raw.get("is_active", True),
        day_of_week=raw.get("day_of_week"),
        start_time=parse_time(raw["start_time"]) if raw.get("start_time") is not None else None,
        end_time=parse_time(raw["end_time"]) if raw.get("end_time") is not None else None,
        event_dates=event_dates,
        source=_source_from_dict(raw.get("source")),
        variation_ids=_ids(raw.get("variation_ids")),
        description=raw.get("description", ""),
    )


def _availability_to_dict(availability: Availability) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": availability.id,
        "title": availability.title,
        "kind": availability.kind.value,
        "is_active": availability.is_active,
    }
    if availability.kind is AvailabilityKind.RECURRING:
        data["day_of_week"] = availability.day_of_week
        data["start_time"] = format_time(availability.start_time)
        data["end_time"] = format_time(availability.end_time)
    else:
        data["event_dates"] = [
            {
                "date": event.date.isoformat(),
                "start_time": format_time(event.start_time),
                "end_time": format_time(event.end_time),
            }
            for event in availability.event_dates
        ]
    data["source"] = availability.source.to_dict() if availability.source else None
    data["variation_ids"] = sorted(availability.variation_ids)
    data["description"] = availability.description
    return data


def _schedule_from_dict(raw: Dict[str, Any]) -> Schedule:
    return Schedule(
        id=int(raw["id"]),
        title=raw.get("title", ""),
        employee_ids=_ids(raw.get("employee_ids")),
        days_of_week=_ids(raw.get("days_of_week")),
        start_time=parse_time(raw["start_time"]),
        end_time=parse_time(raw["end_time"]),
        is_active=raw.get("is_active", True),
    )


def _schedule_to_dict(schedule: Schedule) -> Dict[str, Any]:
    return {
        "id": schedule.id,
        "title": schedule.title,
        "employee_ids": sorted(schedule.employee_ids),
        "days_of_week": sorted(schedule.days_of_week),
        "start_time": format_time(schedule.start_time),
        "end_time": format_time(schedule.end_time),
        "is_active": schedule.is_active,
    }


def _blackout_from_dict(raw: Dict[str, Any]) -> BlackoutDate:
    start_date = parse_date(raw["start_date"])
    return BlackoutDate(
        id=int(raw["id"]),
        title=raw.get("title", ""),
        start_date=start_date,
        end_date=parse_date(raw["end_date"]) if raw.get("end_date") else start_date,
        is_active=raw.get("is_active", True),
        location_ids=_ids(raw.get("location_ids")),
        employee_ids=_ids(raw.get("employee_ids")),
        reason=raw.get("reason"),
    )


def _blackout_to_dict(blackout: BlackoutDate) -> Dict[str, Any]:
    return {
        "id": blackout.id,
        "title": blackout.title,
        "start_date": blackout.start_date.isoformat(),
        "end_date": blackout.end_date.isoformat(),
        "is_active": blackout.is_active,
        "location_ids": sorted(blackout.location_ids),
        "employee_ids": sorted(blackout.employee_ids),
        "reason": blackout.reason,
    }


def _reservation_from_dict(raw: Dict[str, Any]) -> Reservation:
    return Reservation(
        id=int(raw["id"]),
        user_name=raw.get("user_name", ""),
        user_email=raw.get("user_email", ""),
        user_phone=raw.get("user_phone"),
        user_timezone=raw.get("user_timezone", "Europe/Zurich"),
        booking_date=parse_date(raw["booking_date"]),
        start_time=parse_time(raw["start_time"]),
        end_time=parse_time(raw["end_time"]),
        status=ReservationStatus(raw.get("status", ReservationStatus.CONFIRMED.value)),
        quantity=int(raw.get("quantity", 1)),
        variation_id=raw.get("variation_id"),
        employee_id=raw.get("employee_id"),
        location_id=raw.get("location_id"),
        service_id=raw.get("service_id"),
        source=_source_from_dict(raw.get("source")),
        confirmation_token=raw.get("confirmation_token", ""),
        notification_sent=raw.get("notification_sent", False),
        notes=raw.get("notes"),
    )


def _reservation_to_dict(reservation: Reservation) -> Dict[str, Any]:
    return {
        "id": reservation.id,
        "user_name": reservation.user_name,
        "user_email": reservation.user_email,
        "user_phone": reservation.user_phone,
        "user_timezone": reservation.user_timezone,
        "booking_date": reservation.booking_date.isoformat(),
        "start_time": format_time(reservation.start_time),
        "end_time": format_time(reservation.end_time),
        "status": reservation.status.value,
        "quantity": reservation.quantity,
        "variation_id": reservation.variation_id,
        "employee_id": reservation.employee_id,
        "location_id": reservation.location_id,
        "service_id": reservation.service_id,
        "source": reservation.source.to_dict() if reservation.source else None,
        "confirmation_token": reservation.confirmation_token,
        "notification_sent": reservation.notification_sent,
        "notes": reservation.notes,
    }
