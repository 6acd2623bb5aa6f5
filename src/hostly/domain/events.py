"""Booking lifecycle events for notification and analytics workers.

Publishing is fire-and-forget: a failing publisher is logged and never
interrupts the booking operation that produced the event.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from hostly.observability.correlation import get_correlation_id
from hostly.observability.logging import get_logger, log_fields

logger = get_logger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_EXPIRED = "booking.expired"
BOOKING_CHECKED_IN = "booking.checked_in"
BOOKING_COMPLETED = "booking.completed"
BOOKING_REFUNDED = "booking.refunded"


@dataclass(frozen=True)
class BookingEvent:
    """Event envelope without PII."""

    event_type: str
    booking_id: str
    property_id: str
    status: str
    timestamp: datetime
    correlation_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "booking_id": self.booking_id,
            "property_id": self.property_id,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
        }


class EventPublisher(Protocol):
    def publish(self, event: BookingEvent) -> None: ...


class LoggingEventPublisher:
    """Writes events to the structured log (default sink)."""

    def publish(self, event: BookingEvent) -> None:
        logger.info("booking event", extra={"extra_fields": event.to_dict()})


class InMemoryOutbox:
    """Collects events in order; used by tests and local tooling."""

    def __init__(self) -> None:
        self._events: list[BookingEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: BookingEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[BookingEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> list[BookingEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


def emit(
    publisher: EventPublisher,
    event_type: str,
    *,
    booking_id: str,
    property_id: str,
    status: str,
    timestamp: datetime,
) -> None:
    """Publish an event, logging (not raising) on publisher failure."""
    event = BookingEvent(
        event_type=event_type,
        booking_id=booking_id,
        property_id=property_id,
        status=status,
        timestamp=timestamp,
        correlation_id=get_correlation_id(),
    )
    try:
        publisher.publish(event)
    except Exception:
        logger.exception(
            "event publish failed",
            extra=log_fields(event_type=event_type, booking_id=booking_id),
        )
