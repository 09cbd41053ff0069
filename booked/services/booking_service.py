"""
Write path for reservations: create, update, change status, cancel, delete.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from ..adapters.job_queue import JOB_SEND_BOOKING_EMAIL, JOB_SYNC_TO_CALENDAR, JobQueueProtocol
from ..adapters.rate_limiter import RateLimiterProtocol, SlidingWindowRateLimiter
from ..adapters.store import BookingStoreProtocol
from ..domain.exceptions import (
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from ..domain.models import (
    Reservation,
    ReservationStatus,
    Source,
    SourceType,
    parse_time,
    wall_clock,
)
from .availability_engine import AvailabilityEngine
from .locks import SlotLockRegistry
from .soft_locks import SoftLockService

logger = logging.getLogger(__name__)

CAPACITY_FIELDS = (
    "booking_date",
    "start_time",
    "end_time",
    "variation_id",
    "quantity",
    "employee_id",
    "location_id",
    "service_id",
)
NULLABLE_FIELDS = (
    "user_phone",
    "variation_id",
    "employee_id",
    "location_id",
    "service_id",
    "notes",
)


def source_from_payload(value: Any) -> Optional[Source]:
    if value is None or isinstance(value, Source):
        return value
    if not isinstance(value, dict):
        raise ValueError("source must be a mapping with a 'type'")
    return Source(
        kind=SourceType(value.get("type") or value.get("kind")),
        id=value.get("id"),
        handle=value.get("handle"),
    )


def _time_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return parse_time(value)


class PayloadModel(BaseModel):
    """Accepts snake_case and camelCase keys alike."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )


class BookingRequest(PayloadModel):
    """Validated input for a new reservation."""
    user_name: str = Field(min_length=1, max_length=255)
    user_email: EmailStr
    user_phone: Optional[str] = None
    user_timezone: Optional[str] = None
    booking_date: date
    start_time: int
    end_time: Optional[int] = None
    quantity: int = Field(default=1, ge=1)
    variation_id: Optional[int] = None
    employee_id: Optional[int] = None
    location_id: Optional[int] = None
    service_id: Optional[int] = None
    source: Optional[Source] = None
    notes: Optional[str] = None
    soft_lock_token: Optional[str] = None
    status: ReservationStatus = ReservationStatus.CONFIRMED

    @field_validator("start_time", mode="before")
    @classmethod
    def validate_start_time(cls, value: Any) -> int:
        return parse_time(value)

    @field_validator("end_time", mode="before")
    @classmethod
    def validate_end_time(cls, value: Any) -> Optional[int]:
        return _time_or_none(value)

    @field_validator("source", mode="before")
    @classmethod
    def validate_source(cls, value: Any) -> Optional[Source]:
        return source_from_payload(value)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: ReservationStatus) -> ReservationStatus:
        if value is ReservationStatus.CANCELLED:
            raise ValueError("A new reservation cannot start out cancelled")
        return value


class ReservationUpdate(PayloadModel):
    """Partial update; only the fields that were sent are applied."""
    user_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    user_email: Optional[EmailStr] = None
    user_phone: Optional[str] = None
    user_timezone: Optional[str] = None
    booking_date: Optional[date] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    variation_id: Optional[int] = None
    employee_id: Optional[int] = None
    location_id: Optional[int] = None
    service_id: Optional[int] = None
    status: Optional[ReservationStatus] = None
    notes: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_times(cls, value: Any) -> Optional[int]:
        return _time_or_none(value)


def as_validation_error(exc: PydanticValidationError) -> ValidationError:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
        errors.setdefault(field, []).append(error.get("msg", "Invalid value"))
    return ValidationError("Invalid booking data", errors)


class BookingService:
    """
    Creates and maintains reservations without ever overbooking.

    Capacity is validated and the reservation written while holding the
    per-(variation, date) lock from ``SlotLockRegistry``. Notifications and
    calendar sync are handed to the job queue after the write commits; a
    failing queue is logged and never undoes a booking.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        engine: AvailabilityEngine,
        job_queue: JobQueueProtocol,
        locks: Optional[SlotLockRegistry] = None,
        soft_locks: Optional[SoftLockService] = None,
        email_limiter: Optional[RateLimiterProtocol] = None,
        ip_limiter: Optional[RateLimiterProtocol] = None,
    ) -> None:
        settings = engine.settings
        self._store = store
        self._engine = engine
        self._queue = job_queue
        self._settings = settings
        self._locks = locks or SlotLockRegistry(settings.lock_timeout_seconds)
        self._soft_locks = soft_locks

        if settings.enable_rate_limiting:
            self._email_limiter = email_limiter or SlidingWindowRateLimiter(
                settings.rate_limit_per_email, settings.rate_limit_window_seconds
            )
            self._ip_limiter = ip_limiter or SlidingWindowRateLimiter(
                settings.rate_limit_per_ip, settings.rate_limit_window_seconds
            )
        else:
            self._email_limiter = None
            self._ip_limiter = None

    # -- create --------------------------------------------------------------

    def create_reservation(self, data: Dict[str, Any], ip_address: Optional[str] = None) -> Reservation:
        """
        Validate and store a new reservation.

        Args:
            data: Booking payload (snake_case or camelCase keys)
            ip_address: Origin of the request, for rate limiting

        Returns:
            The stored reservation, including its id and confirmation token

        Raises:
            ValidationError: Malformed input or a broken booking rule
            RateLimitError: Too many attempts from the same email or IP
            NotFoundError: Unknown variation, service, employee or location
            ConflictError: Slot taken, held, blacked out or lock busy
        """
        try:
            request = BookingRequest.model_validate(data)
        except PydanticValidationError as exc:
            raise as_validation_error(exc) from exc

        self._check_rate_limits(request.user_email, ip_address)

        variation_id = self._implied_variation(request)
        plan = self._engine.resolve_plan(request.service_id, variation_id)
        end_time = request.end_time
        if end_time is None:
            end_time = request.start_time + plan.slot_duration

        self._check_times(request.booking_date, request.start_time, end_time)
        self._check_quantity(request.quantity, plan.variation)

        lock_key = SlotLockRegistry.key_for(variation_id, request.booking_date)
        with self._locks.acquire(lock_key):
            if self._soft_locks is not None and self._soft_locks.is_locked(
                request.booking_date,
                request.start_time,
                end_time,
                variation_id=variation_id,
                employee_id=request.employee_id,
                ignore_token=request.soft_lock_token,
            ):
                logger.warning(
                    "Booking rejected: %s %s is held by another customer",
                    request.booking_date, request.start_time,
                )
                raise ConflictError("This time slot is temporarily held by another customer.")

            check = self._engine.check_booking(
                request.booking_date,
                request.start_time,
                end_time,
                variation_id=variation_id,
                quantity=request.quantity,
                employee_id=request.employee_id,
                location_id=request.location_id,
                service_id=request.service_id,
                source=request.source,
            )

            source = request.source
            if source is None:
                availability = self._engine.get_availability_for_slot(
                    request.booking_date,
                    request.start_time,
                    end_time,
                    variation_id=variation_id,
                )
                if availability is not None:
                    source = availability.source

            employee_id = request.employee_id
            if employee_id is None:
                employee_id = check.window.employee_id

            reservation = Reservation(
                user_name=request.user_name,
                user_email=str(request.user_email),
                user_phone=request.user_phone,
                user_timezone=request.user_timezone or self._settings.timezone,
                booking_date=request.booking_date,
                start_time=request.start_time,
                end_time=end_time,
                status=request.status,
                quantity=request.quantity,
                variation_id=variation_id,
                employee_id=employee_id,
                location_id=request.location_id,
                service_id=request.service_id,
                source=source,
                confirmation_token=self._generate_token(),
                notes=request.notes,
                created_at=self._engine.now(),
            )
            reservation = self._store.insert_reservation(reservation)

        logger.info(
            "Reservation %s created for %s on %s %s (qty %s)",
            reservation.id,
            reservation.user_email,
            reservation.booking_date,
            reservation.time_range,
            reservation.quantity,
        )

        self._engine.record_changed(reservation)
        if self._soft_locks is not None and request.soft_lock_token:
            self._soft_locks.release_lock(request.soft_lock_token)

        self._enqueue(JOB_SEND_BOOKING_EMAIL, {"reservation_id": reservation.id, "email_type": "confirmation"})
        if self._settings.owner_notification_enabled:
            self._enqueue(
                JOB_SEND_BOOKING_EMAIL,
                {"reservation_id": reservation.id, "email_type": "owner_notification"},
            )
        self._enqueue(JOB_SYNC_TO_CALENDAR, {"reservation_id": reservation.id})

        return reservation

    # -- update --------------------------------------------------------------

    def update_reservation(self, reservation_id: int, data: Dict[str, Any]) -> Reservation:
        """
        Apply a partial update.

        Moving a reservation (date, time, variation, quantity, employee,
        location or service) re-validates capacity excluding the
        reservation itself. Status changes follow the status graph.

        Raises:
            NotFoundError: If the reservation does not exist
            ValidationError: Malformed input or a disallowed status change
            ConflictError: If the new slot cannot take the reservation
        """
        current = self._get(reservation_id)

        try:
            update = ReservationUpdate.model_validate(data)
        except PydanticValidationError as exc:
            raise as_validation_error(exc) from exc

        changes = {
            name: value
            for name, value in update.model_dump(exclude_unset=True).items()
            if value is not None or name in NULLABLE_FIELDS
        }
        if "user_email" in changes:
            changes["user_email"] = str(changes["user_email"])

        new_status = changes.pop("status", None)
        updated = replace(current, **changes)

        if new_status is not None and new_status is not current.status:
            if not current.status.can_transition_to(new_status):
                raise ValidationError(
                    f"Cannot change status from {current.status.value} to {new_status.value}",
                    {"status": [f"Transition {current.status.value} -> {new_status.value} is not allowed."]},
                )
            updated = replace(updated, status=new_status)

        moved = any(getattr(updated, name) != getattr(current, name) for name in CAPACITY_FIELDS)

        if moved and updated.status.holds_capacity:
            self._check_times(updated.booking_date, updated.start_time, updated.end_time, check_advance=False)
            plan = self._engine.resolve_plan(updated.service_id, updated.variation_id)
            self._check_quantity(updated.quantity, plan.variation)

            keys = (
                SlotLockRegistry.key_for(current.variation_id, current.booking_date),
                SlotLockRegistry.key_for(updated.variation_id, updated.booking_date),
            )
            with self._locks.acquire(*keys):
                self._engine.validate_booking(
                    updated.booking_date,
                    updated.start_time,
                    updated.end_time,
                    variation_id=updated.variation_id,
                    quantity=updated.quantity,
                    exclude_reservation_id=current.id,
                    employee_id=updated.employee_id,
                    location_id=updated.location_id,
                    service_id=updated.service_id,
                    source=updated.source,
                )
                saved = self._store.update_reservation(updated)
        else:
            saved = self._store.update_reservation(updated)

        self._engine.record_changed(current)
        self._engine.record_changed(saved)

        if saved.status is not current.status:
            logger.info(
                "Reservation %s status changed %s -> %s",
                saved.id, current.status.value, saved.status.value,
            )
            self._enqueue(
                JOB_SEND_BOOKING_EMAIL,
                {
                    "reservation_id": saved.id,
                    "email_type": "status_change",
                    "old_status": current.status.value,
                    "new_status": saved.status.value,
                },
            )

        return saved

    def change_status(self, reservation_id: int, status: Any) -> Reservation:
        value = status.value if isinstance(status, ReservationStatus) else status
        return self.update_reservation(reservation_id, {"status": value})

    # -- cancel / delete -----------------------------------------------------

    def cancel_reservation(self, reservation_id: int, reason: str = "") -> Reservation:
        """
        Cancel a reservation if the cancellation policy still allows it.

        Raises:
            NotFoundError: If the reservation does not exist
            ValidationError: If it is already cancelled or too close to its start
        """
        return self._cancel(self._get(reservation_id), reason)

    def cancel_by_token(self, token: str, reason: str = "") -> Reservation:
        reservation = self._store.get_reservation_by_token(token)
        if reservation is None:
            raise NotFoundError("No reservation found for this confirmation token")
        return self._cancel(reservation, reason)

    def delete_reservation(self, reservation_id: int) -> None:
        """Hard delete. Cancelling is the normal way to free a slot."""
        reservation = self._get(reservation_id)
        if not self._store.delete_reservation(reservation_id):
            raise NotFoundError(f"Reservation {reservation_id} not found")

        logger.info("Reservation %s deleted", reservation_id)
        self._engine.record_changed(reservation)

    def _cancel(self, reservation: Reservation, reason: str) -> Reservation:
        now = self._engine.now()
        if not reservation.can_be_cancelled(now, self._settings.cancellation_policy_hours):
            if reservation.status is ReservationStatus.CANCELLED:
                message = "This reservation is already cancelled."
            else:
                message = (
                    f"Reservations can only be cancelled up to "
                    f"{self._settings.cancellation_policy_hours} hours before the start."
                )
            raise ValidationError(message, {"status": [message]})

        notes = reservation.notes or ""
        if reason:
            notes = f"{notes}\n\nCancellation reason: {reason}".strip()

        cancelled = self._store.update_reservation(
            replace(reservation, status=ReservationStatus.CANCELLED, notes=notes or None)
        )
        logger.info("Reservation %s cancelled", cancelled.id)

        self._engine.record_changed(cancelled)
        self._enqueue(JOB_SEND_BOOKING_EMAIL, {"reservation_id": cancelled.id, "email_type": "cancellation"})
        return cancelled

    # -- helpers -------------------------------------------------------------

    def _get(self, reservation_id: int) -> Reservation:
        reservation = self._store.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    def _implied_variation(self, request: BookingRequest) -> Optional[int]:
        """
        Variation the reservation is booked against.

        A request without one takes the variation of the availability it
        falls in when that availability offers exactly one active variation,
        so capacity is checked and locked for the variation that is stored.
        """
        if request.variation_id is not None:
            return request.variation_id

        end_time = request.end_time
        if end_time is None:
            end_time = request.start_time + self._engine.resolve_plan(request.service_id).slot_duration

        availability = self._engine.get_availability_for_slot(
            request.booking_date, request.start_time, end_time, source=request.source
        )
        if availability is None or len(availability.variation_ids) != 1:
            return None

        variation_id = next(iter(availability.variation_ids))
        variation = self._store.get_variation(variation_id)
        if variation is None or not variation.is_active:
            return None
        return variation_id

    def _check_rate_limits(self, email: str, ip_address: Optional[str]) -> None:
        if self._email_limiter is not None and not self._email_limiter.hit(f"email:{email.lower()}"):
            raise RateLimitError("Too many booking attempts for this email address. Please try again later.")
        if (
            ip_address
            and self._ip_limiter is not None
            and not self._ip_limiter.hit(f"ip:{ip_address}")
        ):
            raise RateLimitError("Too many booking attempts from this address. Please try again later.")

    def _check_times(self, booking_date: date, start_time: int, end_time: int, check_advance: bool = True) -> None:
        if end_time <= start_time:
            raise ValidationError(
                "End time must be after start time",
                {"endTime": ["Must be after the start time."]},
            )

        if not check_advance:
            return

        now = self._engine.now()
        starts_at = wall_clock(booking_date, start_time, now.tzinfo)
        hours = self._settings.minimum_advance_booking_hours
        if starts_at < now.add(hours=hours):
            message = (
                f"Bookings must be made at least {hours} hours in advance."
                if hours else "Bookings cannot be made in the past."
            )
            raise ValidationError(message, {"startTime": [message]})

        max_days = self._settings.maximum_advance_booking_days
        if max_days and (booking_date - now.date()).days > max_days:
            message = f"Bookings can be made at most {max_days} days in advance."
            raise ValidationError(message, {"bookingDate": [message]})

    @staticmethod
    def _check_quantity(quantity: int, variation: Any) -> None:
        if quantity > 1 and variation is not None and not variation.allow_quantity_selection:
            raise ValidationError(
                "This booking option does not allow selecting a quantity",
                {"quantity": ["Quantity selection is not allowed for this option."]},
            )

    def _generate_token(self) -> str:
        while True:
            token = secrets.token_urlsafe(24)
            if not self._store.token_exists(token):
                return token

    def _enqueue(self, job_type: str, payload: Dict[str, Any]) -> None:
        try:
            self._queue.enqueue(job_type, payload)
        except Exception:
            logger.exception("Failed to enqueue %s for reservation %s", job_type, payload.get("reservation_id"))
