"""
Request-facing surface returning JSON-ready payloads.

Each method takes a plain dict (as decoded from a request body or query
string) and returns a dict carrying ``success`` and an HTTP-equivalent
``status``. Booking errors are turned into error payloads here; anything
else propagates to the host framework.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional

from pydantic import Field, ValidationError as PydanticValidationError, field_validator

from ..domain.exceptions import (
    BookingError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from ..domain.models import Source
from .availability_engine import AvailabilityEngine
from .booking_service import BookingService, PayloadModel, as_validation_error, source_from_payload

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    RateLimitError: 429,
}


class SlotQuery(PayloadModel):
    day: date = Field(alias="date")
    employee_id: Optional[int] = None
    location_id: Optional[int] = None
    service_id: Optional[int] = None
    variation_id: Optional[int] = None
    quantity: int = Field(default=1, ge=1)
    source: Optional[Source] = None

    @field_validator("source", mode="before")
    @classmethod
    def validate_source(cls, value: Any) -> Optional[Source]:
        return source_from_payload(value)


class CalendarQuery(PayloadModel):
    start_date: date
    end_date: date
    employee_id: Optional[int] = None
    location_id: Optional[int] = None


class CancelRequest(PayloadModel):
    token: Optional[str] = None
    reservation_id: Optional[int] = None
    reason: str = ""


def error_response(exc: BookingError) -> Dict[str, Any]:
    """Map a booking error to its payload and status code."""
    status = 500
    for error_type, code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            status = code
            break

    payload: Dict[str, Any] = {"success": False, "message": str(exc), "status": status}
    if isinstance(exc, ValidationError) and exc.errors:
        payload["errors"] = exc.errors
    return payload


class BookingApi:
    """Thin adapter between request payloads and the engine/booking service."""

    def __init__(self, engine: AvailabilityEngine, booking_service: BookingService) -> None:
        self._engine = engine
        self._bookings = booking_service

    def available_slots(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            query = _parse(SlotQuery, payload)
            slots = self._engine.get_available_slots(
                query.day,
                employee_id=query.employee_id,
                location_id=query.location_id,
                service_id=query.service_id,
                quantity=query.quantity,
                variation_id=query.variation_id,
                source=query.source,
            )
        except BookingError as exc:
            return error_response(exc)

        return {"success": True, "slots": [slot.to_dict() for slot in slots], "status": 200}

    def create_booking(self, payload: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        try:
            reservation = self._bookings.create_reservation(payload, ip_address=ip_address)
        except BookingError as exc:
            logger.warning("Booking failed: %s", exc)
            return error_response(exc)

        return {
            "success": True,
            "message": "Booking created successfully",
            "reservation": reservation.to_dict(),
            "status": 201,
        }

    def availability_calendar(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            query = _parse(CalendarQuery, payload)
            summary = self._engine.get_availability_summary(
                query.start_date,
                query.end_date,
                employee_id=query.employee_id,
                location_id=query.location_id,
            )
        except BookingError as exc:
            return error_response(exc)

        return {
            "success": True,
            "calendar": {day.isoformat(): info.to_dict() for day, info in summary.items()},
            "status": 200,
        }

    def cancel_booking(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            request = _parse(CancelRequest, payload)
            if request.token:
                reservation = self._bookings.cancel_by_token(request.token, request.reason)
            elif request.reservation_id is not None:
                reservation = self._bookings.cancel_reservation(request.reservation_id, request.reason)
            else:
                raise ValidationError(
                    "A confirmation token or reservation id is required",
                    {"token": ["Provide a token or a reservation id."]},
                )
        except BookingError as exc:
            return error_response(exc)

        return {
            "success": True,
            "message": "Booking cancelled",
            "reservation": reservation.to_dict(),
            "status": 200,
        }


def _parse(model, payload: Dict[str, Any]):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise as_validation_error(exc) from exc
