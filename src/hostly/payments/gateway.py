"""Payment gateway adapters.

The booking core only asks for a payment intent and later consumes the
provider's success/failure signal. Domain code never imports stripe.*.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from hostly.observability.logging import get_logger, log_fields

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentIntent:
    """Pending payment created for a booking hold."""

    id: str
    status: str
    client_secret: str | None = None


class PaymentGatewayError(Exception):
    """Payment provider refused or could not process the request."""


class PaymentGateway(Protocol):
    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent: ...


class InlinePaymentGateway:
    """Records intents locally; results are fed back by the caller.

    Used in dev and tests, where no provider is reachable.
    """

    def __init__(self) -> None:
        self._intents: dict[str, dict[str, Any]] = {}
        self._by_key: dict[str, str] = {}
        self._lock = threading.Lock()

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        with self._lock:
            existing = self._by_key.get(idempotency_key)
            if existing is not None:
                return PaymentIntent(id=existing, status="pending")
            intent_id = f"pi_inline_{uuid.uuid4().hex[:16]}"
            self._intents[intent_id] = {
                "amount_cents": amount_cents,
                "currency": currency,
                "metadata": dict(metadata or {}),
            }
            self._by_key[idempotency_key] = intent_id
        return PaymentIntent(id=intent_id, status="pending")

    def intent(self, intent_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._intents.get(intent_id)


class StripePaymentGateway:
    """Creates Stripe PaymentIntents for booking holds.

    The intent is confirmed client-side (or with the saved payment method);
    the outcome reaches us through the payment_intent.* webhook.

    Usage:
        gateway = StripePaymentGateway(api_key="sk_test_...")
        intent = gateway.create_payment_intent(
            amount_cents=10000,
            currency="usd",
            payment_method_id="pm_card_visa",
            idempotency_key="booking:abc123:intent",
        )
    """

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise RuntimeError(
                "Stripe API key not provided. "
                "Set STRIPE_SECRET_KEY or pass api_key parameter."
            )
        self._client = stripe.StripeClient(api_key)

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "payment_method": payment_method_id,
            "capture_method": "automatic",
        }
        if metadata:
            params["metadata"] = metadata

        try:
            intent = self._client.v1.payment_intents.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe payment intent failed",
                extra=log_fields(error=type(e).__name__),
            )
            raise PaymentGatewayError(str(e)) from e

        # Log only IDs, never full payload
        logger.info(
            "stripe payment intent created",
            extra=log_fields(intent_id=intent.id, status=intent.status),
        )
        return PaymentIntent(
            id=intent.id,
            status="pending",
            client_secret=getattr(intent, "client_secret", None),
        )
