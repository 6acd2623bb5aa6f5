"""Booking record and its lifecycle transition matrix."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from hostly.domain.errors import InvalidTransition
from hostly.domain.intervals import DateInterval


class BookingStatus(str, Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


# Anything not listed here is rejected
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.REQUESTED: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.EXPIRED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.CHECKED_IN, BookingStatus.CANCELLED}
    ),
    BookingStatus.CHECKED_IN: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CANCELLED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.COMPLETED: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.EXPIRED: frozenset(),
    BookingStatus.REFUNDED: frozenset(),
}

# Statuses whose booking owns a confirmed reservation record
CONFIRMED_STATUSES = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN, BookingStatus.COMPLETED}
)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class Booking:
    """A guest's booking of a property for a fixed interval.

    ``interval`` is fixed at creation. Bookings are never deleted; terminal
    states stay for history and refund audit.
    """

    id: str
    property_id: str
    guest_id: str
    host_id: str
    interval: DateInterval
    guests: int
    total_cents: int
    currency: str
    status: BookingStatus
    created_at: datetime
    updated_at: datetime
    hold_expires_at: datetime | None = None
    reservation_id: str | None = None
    payment_intent_id: str | None = None
    idempotency_key: str | None = None
    refund_cents: int = 0
    cancelled_by: str | None = None
    version: int = 1

    def transition(self, target: BookingStatus, now: datetime) -> None:
        """Move to ``target`` or raise InvalidTransition."""
        if not can_transition(self.status, target):
            raise InvalidTransition(self.id, self.status.value, target.value)
        self.status = target
        self.updated_at = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "guest_id": self.guest_id,
            "host_id": self.host_id,
            "start_date": self.interval.start.isoformat(),
            "end_date": self.interval.end.isoformat(),
            "nights": self.interval.nights,
            "guests": self.guests,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "status": self.status.value,
            "expires_at": (
                self.hold_expires_at.isoformat() if self.hold_expires_at else None
            ),
            "payment_intent_id": self.payment_intent_id,
            "refund_cents": self.refund_cents,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class PropertyRef:
    """Property attributes this core reads from the external catalog."""

    id: str
    max_guests: int
    is_active: bool
    host_id: str | None = None
    nightly_rate_cents: int | None = None
    currency: str | None = None
