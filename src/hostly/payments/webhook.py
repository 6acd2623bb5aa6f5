"""Stripe webhook signature validation and payment result extraction.

Purpose:
- Validate webhook signature using Stripe-Signature header.
- Turn payment_intent.* events into a (intent_id, succeeded) result.
- Never log payload or signature.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import stripe

logger = logging.getLogger(__name__)

SUCCEEDED_EVENT = "payment_intent.succeeded"
FAILED_EVENTS = frozenset({"payment_intent.payment_failed", "payment_intent.canceled"})


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


@dataclass
class PaymentResultEvent:
    """Minimal extracted data from a Stripe payment_intent event."""

    event_id: str
    event_type: str
    intent_id: str | None

    @property
    def is_payment_result(self) -> bool:
        return self.event_type == SUCCEEDED_EVENT or self.event_type in FAILED_EVENTS

    @property
    def succeeded(self) -> bool:
        return self.event_type == SUCCEEDED_EVENT


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str,
    webhook_secret: str,
) -> PaymentResultEvent:
    """Validate Stripe webhook signature and extract the payment result.

    Raises:
        InvalidSignatureError: If signature validation fails.
        InvalidPayloadError: If event structure is invalid.
    """
    try:
        event = stripe.Webhook.construct_event(
            payload_bytes,
            signature_header,
            webhook_secret,
        )
    except stripe.SignatureVerificationError as e:
        # Do NOT log signature or payload
        logger.warning("stripe webhook signature verification failed")
        raise InvalidSignatureError("Invalid signature") from e
    except ValueError as e:
        logger.warning("stripe webhook payload parsing failed")
        raise InvalidPayloadError("Invalid payload") from e

    event_id = event.get("id")
    event_type = event.get("type")

    if not event_id or not event_type:
        raise InvalidPayloadError("Missing event id or type")

    return PaymentResultEvent(
        event_id=event_id,
        event_type=event_type,
        intent_id=_extract_object_id(event),
    )


def _extract_object_id(event: Any) -> str | None:
    """For payment_intent.* events the data object is the intent itself."""
    data = event.get("data") or {}
    obj = data.get("object") or {}
    return obj.get("id")
