"""Booking endpoints: create, read, cancel, check-in, check-out, refund."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from hostly.api.dependencies import get_actor_id, get_service
from hostly.observability.logging import get_logger, log_fields
from hostly.services.reservation_service import ReservationService

router = APIRouter(prefix="/bookings", tags=["bookings"])

logger = get_logger(__name__)


class CreateBookingRequest(BaseModel):
    """Request body for booking creation. Dates are half-open [start, end)."""

    property_id: str = Field(min_length=1)
    start_date: date
    end_date: date
    guests: int = Field(ge=1)
    payment_method_id: str = Field(min_length=1)


@router.post("", status_code=201)
def create_booking(
    body: CreateBookingRequest,
    actor_id: str = Depends(get_actor_id),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    service: ReservationService = Depends(get_service),
) -> dict:
    """Hold the dates and start payment.

    201 with status "requested" and the hold deadline in ``expires_at``;
    409 DATES_UNAVAILABLE when the dates are taken.
    """
    booking = service.create_booking(
        guest_id=actor_id,
        property_id=body.property_id,
        start_date=body.start_date,
        end_date=body.end_date,
        guests=body.guests,
        payment_method_id=body.payment_method_id,
        idempotency_key=idempotency_key,
    )
    logger.info(
        "booking create request served",
        extra=log_fields(booking_id=booking.id, status=booking.status.value),
    )
    return booking.to_dict()


@router.get("/{booking_id}")
def get_booking(
    booking_id: str,
    service: ReservationService = Depends(get_service),
) -> dict:
    return service.get_booking(booking_id).to_dict()


@router.post("/{booking_id}/cancel")
def cancel_booking(
    booking_id: str,
    actor_id: str = Depends(get_actor_id),
    service: ReservationService = Depends(get_service),
) -> dict:
    """Cancel and free the dates; refund per the cancellation policy."""
    return service.cancel_booking(booking_id, actor_id).to_dict()


@router.post("/{booking_id}/check-in")
def check_in(
    booking_id: str,
    service: ReservationService = Depends(get_service),
) -> dict:
    return service.check_in(booking_id).to_dict()


@router.post("/{booking_id}/check-out")
def check_out(
    booking_id: str,
    service: ReservationService = Depends(get_service),
) -> dict:
    return service.check_out(booking_id).to_dict()


class RefundRequest(BaseModel):
    amount_cents: int = Field(gt=0)


@router.post("/{booking_id}/refund")
def refund_booking(
    booking_id: str,
    body: RefundRequest,
    actor_id: str = Depends(get_actor_id),
    service: ReservationService = Depends(get_service),
) -> dict:
    """Record a refund on a cancelled or completed booking."""
    booking = service.refund_booking(booking_id, body.amount_cents)
    logger.info(
        "booking refund recorded",
        extra=log_fields(
            booking_id=booking_id, actor_id=actor_id, refund_cents=body.amount_cents
        ),
    )
    return booking.to_dict()
