"""Reservation Service - composition root of the booking core.

Orchestrates property validation (catalog), the atomic hold, the payment
intent request, payment callbacks and availability queries. Retries
LockTimeout a bounded number of times before surfacing it to the client.
"""

from __future__ import annotations

import time
from datetime import date, timedelta
from typing import Callable, TypeVar

from hostly.config import Settings
from hostly.domain.booking import Booking, BookingStatus, PropertyRef
from hostly.domain.booking_state_machine import BookingStateMachine
from hostly.domain.errors import (
    LockTimeout,
    NotFound,
    PaymentFailed,
    ReservationConflict,
    ValidationError,
)
from hostly.domain.events import EventPublisher, LoggingEventPublisher
from hostly.domain.hold_expirer import HoldExpirer, SweepResult
from hostly.domain.interval_store import IntervalStore, RecordKind
from hostly.domain.intervals import DateInterval
from hostly.domain.refund_policy import RefundPolicy
from hostly.domain.reservation_manager import ReservationManager
from hostly.infra.repositories.bookings_repository import (
    BookingRepository,
    InMemoryBookingRepository,
    PostgresBookingRepository,
)
from hostly.infra.time import Clock, utc_now
from hostly.observability.logging import get_logger, log_fields
from hostly.payments.gateway import (
    InlinePaymentGateway,
    PaymentGateway,
    PaymentGatewayError,
    StripePaymentGateway,
)
from hostly.services.property_catalog import (
    HttpPropertyCatalog,
    InMemoryPropertyCatalog,
    PropertyCatalog,
)

logger = get_logger(__name__)

T = TypeVar("T")

# (property, interval, guests) -> (total_cents, currency)
PriceQuoter = Callable[[PropertyRef, DateInterval, int], tuple[int, str]]

LOCK_RETRY_BACKOFF_SECONDS = 0.05


def catalog_rate_quote(prop: PropertyRef, interval: DateInterval, guests: int) -> tuple[int, str]:
    """Nights times the catalog's nightly rate.

    Raises:
        ValidationError: The catalog carries no rate for this property.
    """
    if prop.nightly_rate_cents is None or not prop.currency:
        raise ValidationError(f"Property {prop.id} has no published rate")
    return prop.nightly_rate_cents * interval.nights, prop.currency


class ReservationService:
    """Create/confirm/cancel/query operations over the booking core."""

    def __init__(
        self,
        state_machine: BookingStateMachine,
        manager: ReservationManager,
        repository: BookingRepository,
        catalog: PropertyCatalog,
        payments: PaymentGateway,
        *,
        expirer: HoldExpirer | None = None,
        price_quoter: PriceQuoter = catalog_rate_quote,
        lock_retry_attempts: int = 3,
        availability_max_window_days: int = 365,
        clock: Clock = utc_now,
    ) -> None:
        self.state_machine = state_machine
        self.manager = manager
        self.repository = repository
        self.catalog = catalog
        self.payments = payments
        self.expirer = expirer or HoldExpirer(
            state_machine, repository, manager, clock=clock
        )
        self._price_quoter = price_quoter
        self._lock_retry_attempts = lock_retry_attempts
        self._max_window = timedelta(days=availability_max_window_days)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        catalog: PropertyCatalog | None = None,
        payments: PaymentGateway | None = None,
        repository: BookingRepository | None = None,
        publisher: EventPublisher | None = None,
        refund_policy: RefundPolicy | None = None,
        clock: Clock = utc_now,
    ) -> ReservationService:
        """Wire the core from settings; explicit collaborators win."""
        if repository is None:
            if settings.bookings_backend == "postgres":
                from hostly.infra.db import claim_store_ownership, init_pool

                claim_store_ownership()
                init_pool()
                repository = PostgresBookingRepository()
            else:
                repository = InMemoryBookingRepository()

        if catalog is None:
            if settings.property_catalog_url:
                catalog = HttpPropertyCatalog(settings.property_catalog_url)
            else:
                catalog = InMemoryPropertyCatalog()

        if payments is None:
            if settings.payments_backend == "stripe":
                payments = StripePaymentGateway(settings.stripe_secret_key or "")
            else:
                payments = InlinePaymentGateway()

        manager = ReservationManager(
            IntervalStore(clock=clock),
            lock_timeout=settings.lock_timeout_seconds,
            clock=clock,
        )
        state_machine = BookingStateMachine(
            manager,
            repository,
            publisher or LoggingEventPublisher(),
            hold_window=settings.hold_window,
            refund_policy=refund_policy,
            clock=clock,
        )
        expirer = HoldExpirer(
            state_machine,
            repository,
            manager,
            interval_seconds=settings.sweep_interval_seconds,
            archive_after_days=settings.archive_after_days,
            clock=clock,
        )
        return cls(
            state_machine,
            manager,
            repository,
            catalog,
            payments,
            expirer=expirer,
            lock_retry_attempts=settings.lock_retry_attempts,
            availability_max_window_days=settings.availability_max_window_days,
            clock=clock,
        )

    # ── lifecycle ──────────────────────────────────────────────────────

    def recover(self) -> int:
        """Rebuild the Interval Store from persisted live bookings.

        Returns the number of records restored. Holds already past their
        deadline are left to the next sweep.
        """
        now = self._clock()
        restored = 0
        for booking in self.repository.list_live():
            if booking.status is BookingStatus.REQUESTED:
                if booking.hold_expires_at is None or booking.hold_expires_at <= now:
                    continue
                kind, expires_at = RecordKind.HOLD, booking.hold_expires_at
            else:
                kind, expires_at = RecordKind.CONFIRMED, None
            try:
                self.manager.try_reserve(
                    booking.property_id,
                    booking.interval,
                    kind,
                    booking_id=booking.id,
                    expires_at=expires_at,
                    record_id=booking.reservation_id,
                )
                restored += 1
            except ReservationConflict:
                logger.error(
                    "overlapping live bookings found during recovery",
                    extra=log_fields(booking_id=booking.id, property_id=booking.property_id),
                )
        logger.info("interval store recovered", extra=log_fields(records=restored))
        return restored

    def start(self) -> None:
        self.expirer.start()

    def stop(self) -> None:
        self.expirer.stop()

    # ── bookings ───────────────────────────────────────────────────────

    def create_booking(
        self,
        *,
        guest_id: str,
        property_id: str,
        start_date: date,
        end_date: date,
        guests: int,
        payment_method_id: str,
        host_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> Booking:
        """Hold the dates, then ask the gateway for a payment intent.

        A gateway failure cancels the booking and releases the hold
        immediately (PaymentFailed).

        Raises:
            ValidationError, NotFound, DatesUnavailable, LockTimeout,
            PaymentFailed.
        """
        interval = DateInterval(start_date, end_date)
        if not payment_method_id:
            raise ValidationError("payment_method_id is required")
        prop = self.catalog.get_property(property_id)
        host_id = host_id or prop.host_id
        if not host_id:
            raise ValidationError(f"Property {property_id} has no host")
        total_cents, currency = self._price_quoter(prop, interval, guests)

        booking = self._with_lock_retry(
            lambda: self.state_machine.create(
                prop,
                guest_id=guest_id,
                host_id=host_id,
                interval=interval,
                guests=guests,
                total_cents=total_cents,
                currency=currency,
                idempotency_key=idempotency_key,
            )
        )
        if booking.payment_intent_id or booking.status is not BookingStatus.REQUESTED:
            # Idempotent replay of a request that already went through
            return booking

        try:
            intent = self.payments.create_payment_intent(
                amount_cents=booking.total_cents,
                currency=booking.currency,
                payment_method_id=payment_method_id,
                idempotency_key=f"booking:{booking.id}:intent",
                metadata={"booking_id": booking.id, "property_id": booking.property_id},
            )
        except PaymentGatewayError as e:
            logger.warning(
                "payment intent rejected, releasing hold",
                extra=log_fields(booking_id=booking.id, property_id=property_id),
            )
            try:
                self._with_lock_retry(
                    lambda: self.state_machine.confirm(booking.id, False)
                )
            except PaymentFailed as failed:
                raise failed from e
            raise PaymentFailed(f"Payment for booking {booking.id} failed") from e

        return self._with_lock_retry(
            lambda: self.state_machine.attach_payment_intent(booking.id, intent.id)
        )

    def on_payment_result(self, intent_id: str, succeeded: bool) -> Booking:
        """Payment gateway callback.

        Raises:
            NotFound: No booking carries this intent.
            HoldExpired, PaymentFailed: See BookingStateMachine.confirm.
        """
        booking = self.repository.find_by_payment_intent(intent_id)
        if booking is None:
            raise NotFound(f"No booking for payment intent {intent_id}")
        return self.confirm_payment(booking.id, succeeded)

    def confirm_payment(self, booking_id: str, succeeded: bool) -> Booking:
        return self._with_lock_retry(
            lambda: self.state_machine.confirm(booking_id, succeeded)
        )

    def cancel_booking(self, booking_id: str, actor_id: str) -> Booking:
        return self._with_lock_retry(
            lambda: self.state_machine.cancel(booking_id, actor_id)
        )

    def check_in(self, booking_id: str) -> Booking:
        return self._with_lock_retry(lambda: self.state_machine.check_in(booking_id))

    def check_out(self, booking_id: str) -> Booking:
        return self._with_lock_retry(lambda: self.state_machine.check_out(booking_id))

    def refund_booking(self, booking_id: str, amount_cents: int) -> Booking:
        """Post-stay or post-cancellation refund decided outside the core."""
        return self._with_lock_retry(
            lambda: self.state_machine.refund(booking_id, amount_cents)
        )

    def get_booking(self, booking_id: str) -> Booking:
        return self.state_machine.get(booking_id)

    def sweep_expired_holds(self) -> SweepResult:
        return self.expirer.sweep_once()

    # ── availability ───────────────────────────────────────────────────

    def unavailable_intervals(
        self, property_id: str, start_date: date, end_date: date
    ) -> list[DateInterval]:
        """Ordered unavailable sub-intervals of ``[start_date, end_date)``.

        Each active record overlapping the window is clipped to it.

        Raises:
            ValidationError: Bad or too-wide window.
            NotFound: Unknown property.
        """
        window = DateInterval(start_date, end_date)
        if end_date - start_date > self._max_window:
            raise ValidationError(
                f"availability window is limited to {self._max_window.days} days"
            )
        self.catalog.get_property(property_id)

        records = self._with_lock_retry(
            lambda: self.manager.query_overlap(property_id, window)
        )
        return [
            clipped
            for clipped in (r.interval.clip(window) for r in records)
            if clipped is not None
        ]

    # ── helpers ────────────────────────────────────────────────────────

    def _with_lock_retry(self, operation: Callable[[], T]) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except LockTimeout:
                if attempt >= self._lock_retry_attempts:
                    logger.warning(
                        "giving up after lock timeouts",
                        extra=log_fields(attempts=attempt),
                    )
                    raise
                time.sleep(LOCK_RETRY_BACKOFF_SECONDS * attempt)
                attempt += 1
