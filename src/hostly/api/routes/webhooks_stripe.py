"""Stripe webhook route - payment results drive booking confirmation.

Security rules:
- Validate Stripe-Signature on every request.
- Never log payload or signature header.
- Return 5xx only when a retry can help (lock contention), so Stripe
  redelivers; every settled outcome is acknowledged with 200.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from hostly.api.dependencies import get_service, get_settings
from hostly.config import Settings
from hostly.domain.errors import HoldExpired, LockTimeout, NotFound, PaymentFailed
from hostly.observability.logging import get_logger, log_fields
from hostly.payments.webhook import (
    InvalidPayloadError,
    InvalidSignatureError,
    verify_and_extract,
)
from hostly.services.reservation_service import ReservationService

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
    service: ReservationService = Depends(get_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Receive payment_intent.* events and apply them to the booking."""
    if not settings.stripe_webhook_secret:
        logger.error("webhook secret not configured")
        return JSONResponse(status_code=500, content={"ok": False, "error": "not configured"})

    payload_bytes = await request.body()
    try:
        event = verify_and_extract(
            payload_bytes, stripe_signature, settings.stripe_webhook_secret
        )
    except InvalidSignatureError:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid signature"})
    except InvalidPayloadError:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid payload"})

    if not event.is_payment_result or not event.intent_id:
        return JSONResponse(status_code=200, content={"ok": True, "status": "ignored"})

    logger.info(
        "payment result received",
        extra=log_fields(event_type=event.event_type, intent_id=event.intent_id),
    )

    try:
        booking = await run_in_threadpool(
            service.on_payment_result, event.intent_id, event.succeeded
        )
        outcome = booking.status.value
    except NotFound:
        outcome = "unknown_intent"
    except HoldExpired:
        outcome = "hold_expired"
    except PaymentFailed:
        outcome = "payment_failed"
    except LockTimeout:
        return JSONResponse(status_code=503, content={"ok": False, "error": "busy"})

    logger.info(
        "payment result applied",
        extra=log_fields(intent_id=event.intent_id, outcome=outcome),
    )
    return JSONResponse(status_code=200, content={"ok": True, "status": outcome})
