"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .api import BookingApi, error_response
from .availability_engine import AvailabilityEngine, BookingCheck, BookingPlan
from .booking_service import BookingRequest, BookingService, ReservationUpdate
from .locks import SlotLockRegistry
from .soft_locks import SoftLock, SoftLockService
from .wiring import BookingComponents, build_components

__all__ = [
    "AvailabilityEngine",
    "BookingApi",
    "BookingCheck",
    "BookingComponents",
    "BookingPlan",
    "BookingRequest",
    "BookingService",
    "ReservationUpdate",
    "SlotLockRegistry",
    "SoftLock",
    "SoftLockService",
    "build_components",
    "error_response",
]
