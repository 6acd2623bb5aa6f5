"""Booking core error taxonomy.

Every user-facing error carries a machine-readable ``code``, the HTTP status
the API layer maps it to, and whether the caller may retry unchanged.

ReservationConflict and AlreadyExpired are raised by the Reservation Manager
only; the Booking State Machine maps them to DatesUnavailable and HoldExpired.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hostly.domain.interval_store import ReservationRecord


class BookingError(Exception):
    """Base class for errors surfaced to callers of the booking core."""

    code = "BOOKING_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str = "") -> None:
        self.message = message or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "detail": self.message,
            "retryable": self.retryable,
        }


class ValidationError(BookingError):
    """Malformed input, rejected before touching the Interval Store."""

    code = "VALIDATION_ERROR"
    http_status = 422


class DatesUnavailable(BookingError):
    """Requested interval overlaps an active reservation."""

    code = "DATES_UNAVAILABLE"
    http_status = 409


class HoldExpired(BookingError):
    """Payment confirmation arrived after the hold was reclaimed."""

    code = "HOLD_EXPIRED"
    http_status = 409


class LockTimeout(BookingError):
    """Per-property exclusion could not be acquired in time."""

    code = "LOCK_TIMEOUT"
    http_status = 409
    retryable = True


class NotFound(BookingError):
    """Unknown property or booking."""

    code = "NOT_FOUND"
    http_status = 404


class PaymentFailed(BookingError):
    """Payment provider reported failure; the hold has been released."""

    code = "PAYMENT_FAILED"
    http_status = 402


class InvalidTransition(BookingError):
    """Booking lifecycle transition outside the allowed matrix."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, booking_id: str, current: str, target: str) -> None:
        self.booking_id = booking_id
        self.current = current
        self.target = target
        super().__init__(
            f"Booking {booking_id} cannot move from '{current}' to '{target}'"
        )


class ReservationConflict(Exception):
    """Raised by try_reserve when the interval overlaps active records."""

    def __init__(self, property_id: str, conflicting: list[ReservationRecord]) -> None:
        self.property_id = property_id
        self.conflicting = conflicting
        super().__init__(
            f"Property {property_id} has {len(conflicting)} overlapping reservation(s)"
        )


class AlreadyExpired(Exception):
    """Raised by promote when the hold no longer exists or has expired."""

    def __init__(self, property_id: str, record_id: str) -> None:
        self.property_id = property_id
        self.record_id = record_id
        super().__init__(f"Hold {record_id} on property {property_id} is no longer live")


class ConcurrentUpdate(LockTimeout):
    """Booking row changed under us (optimistic version check failed)."""

    code = "CONCURRENT_UPDATE"
