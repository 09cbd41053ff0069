"""
Domain-specific exception hierarchy for the booking engine.
"""

from typing import Dict, List, Optional


class BookingError(Exception):
    """Base class for all application-level errors."""


class ValidationError(BookingError):
    """Raised when input is malformed or violates a booking rule."""

    def __init__(self, message: str, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.errors: Dict[str, List[str]] = errors or {}


class ConflictError(BookingError):
    """Raised when a slot is no longer available at write time. Retryable."""


class NotFoundError(BookingError):
    """Raised when a referenced record does not exist."""


class RateLimitError(BookingError):
    """Raised when too many booking attempts come from the same origin."""


class ConfigurationError(BookingError):
    """Raised when a record or setting is unusable. Programmer error."""
