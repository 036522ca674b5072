# masterbook/services/booking/errors.py
"""
Booking domain errors.
Each error carries a stable code and the HTTP status the API layer renders it with.
"""
from typing import Optional


class BookingError(Exception):
    """Base class for expected booking failures"""

    code = "booking_error"
    http_status = 400
    default_message = "Booking request failed"

    def __init__(self, message: Optional[str] = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"error": self.code, "detail": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class MasterNotFound(BookingError):
    code = "master_not_found"
    http_status = 404
    default_message = "Master not found"


class ServiceNotFound(BookingError):
    code = "service_not_found"
    http_status = 404
    default_message = "Service not found"


class BookingNotFound(BookingError):
    code = "booking_not_found"
    http_status = 404
    default_message = "Booking not found"


class InvalidTimeFormat(BookingError):
    code = "invalid_time_format"
    http_status = 400
    default_message = "Invalid date or time format"


class InvalidDateRange(BookingError):
    code = "invalid_date_range"
    http_status = 400
    default_message = "Invalid date range"


class MisalignedStart(BookingError):
    code = "misaligned_start"
    http_status = 400
    default_message = "Start time must be aligned to the slot step"


class InsufficientNotice(BookingError):
    code = "insufficient_notice"
    http_status = 400
    default_message = "Booking is too close to the start time"


class OutsideAvailability(BookingError):
    code = "outside_availability"
    http_status = 400
    default_message = "Requested time is outside working hours"


class InvalidState(BookingError):
    code = "invalid_state"
    http_status = 400
    default_message = "Booking cannot be changed in its current status"


class PolicyViolation(BookingError):
    code = "policy_violation"
    http_status = 403
    default_message = "Cancellation policy does not allow this change"


class ActiveBookingLimitExceeded(BookingError):
    code = "active_booking_limit"
    http_status = 429
    default_message = "Too many active bookings with this master"


class SlotConflict(BookingError):
    code = "slot_conflict"
    http_status = 409
    default_message = "Time slot is already booked"

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retry"] = "refresh_slots"
        return payload


class AvailabilityConflict(BookingError):
    code = "availability_conflict"
    http_status = 409
    default_message = "Availability entry already exists"


class ValidationFailed(BookingError):
    code = "validation_failed"
    http_status = 400
    default_message = "Invalid request"


EXCLUSION_VIOLATION = "23P01"
UNIQUE_VIOLATION = "23505"


def sqlstate_of(exc: Exception) -> Optional[str]:
    """Extract the Postgres SQLSTATE from a DBAPI error wrapped by SQLAlchemy"""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code
    diag = getattr(orig, "diag", None)
    return getattr(diag, "sqlstate", None) if diag is not None else None


def is_exclusion_violation(exc: Exception) -> bool:
    return sqlstate_of(exc) == EXCLUSION_VIOLATION


def is_unique_violation(exc: Exception) -> bool:
    return sqlstate_of(exc) == UNIQUE_VIOLATION
