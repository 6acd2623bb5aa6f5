"""Booking State Machine - lifecycle transitions paired with interval changes.

Every operation re-reads the booking while holding the property's lock, then
changes the reservation record and the booking status together. A sweep and
a payment confirmation racing on the same booking therefore resolve in lock
order: the loser sees the winner's post-state (HoldExpired for confirm, a
no-op for the sweep), never a half-applied one.

The booking write lands before the interval store changes; a failed write
leaves the record as it was. Events are emitted after the lock is released.
"""

from __future__ import annotations

import uuid
from datetime import datetime, time, timedelta, timezone

from hostly.domain import events
from hostly.domain.booking import (
    CONFIRMED_STATUSES,
    Booking,
    BookingStatus,
    PropertyRef,
    can_transition,
)
from hostly.domain.errors import (
    AlreadyExpired,
    DatesUnavailable,
    HoldExpired,
    InvalidTransition,
    NotFound,
    PaymentFailed,
    ReservationConflict,
    ValidationError,
)
from hostly.domain.interval_store import RecordKind
from hostly.domain.intervals import DateInterval
from hostly.domain.refund_policy import FlexiblePolicy, RefundPolicy, clamp_refund
from hostly.domain.reservation_manager import ReservationManager
from hostly.infra.repositories.bookings_repository import BookingRepository
from hostly.infra.time import Clock, utc_now
from hostly.observability.logging import get_logger, log_fields

logger = get_logger(__name__)

DEFAULT_HOLD_WINDOW = timedelta(minutes=10)

CANCELLABLE_STATUSES = frozenset(
    {BookingStatus.REQUESTED, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN}
)


class BookingStateMachine:
    """Applies booking transitions through the ReservationManager.

    Args:
        manager: Guards the per-property interval sets.
        repository: Booking storage.
        publisher: Sink for lifecycle events.
        hold_window: How long a new hold waits for payment.
        refund_policy: Maps (lead time, total_cents) to refundable cents.
        clock: Source of "now".
    """

    def __init__(
        self,
        manager: ReservationManager,
        repository: BookingRepository,
        publisher: events.EventPublisher | None = None,
        *,
        hold_window: timedelta = DEFAULT_HOLD_WINDOW,
        refund_policy: RefundPolicy | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._manager = manager
        self._repo = repository
        self._publisher = publisher or events.LoggingEventPublisher()
        self._hold_window = hold_window
        self._refund_policy = refund_policy or FlexiblePolicy()
        self._clock = clock

    @property
    def hold_window(self) -> timedelta:
        return self._hold_window

    def get(self, booking_id: str) -> Booking:
        booking = self._repo.get(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    # ── create ─────────────────────────────────────────────────────────

    def create(
        self,
        prop: PropertyRef,
        *,
        guest_id: str,
        host_id: str,
        interval: DateInterval,
        guests: int,
        total_cents: int,
        currency: str,
        idempotency_key: str | None = None,
    ) -> Booking:
        """Hold ``interval`` and create a booking in ``requested``.

        Replaying the same (guest_id, idempotency_key) returns the original
        booking without taking a second hold.

        Raises:
            ValidationError: Inactive property, bad guest count, past dates.
            DatesUnavailable: Interval overlaps an active reservation.
            LockTimeout: Property lock not acquired in time.
        """
        now = self._clock()
        if not prop.is_active:
            raise ValidationError(f"Property {prop.id} is not accepting bookings")
        if guests < 1:
            raise ValidationError("guests must be at least 1")
        if guests > prop.max_guests:
            raise ValidationError(
                f"Property {prop.id} accepts at most {prop.max_guests} guests"
            )
        if interval.start < now.date():
            raise ValidationError("start_date must not be in the past")
        if total_cents < 0:
            raise ValidationError("total_cents must not be negative")

        with self._manager.exclusive(prop.id):
            if idempotency_key:
                existing = self._repo.find_by_idempotency_key(guest_id, idempotency_key)
                if existing is not None:
                    if existing.property_id != prop.id or existing.interval != interval:
                        raise ValidationError(
                            "Idempotency-Key was already used for a different booking"
                        )
                    logger.info(
                        "booking create replayed",
                        extra=log_fields(booking_id=existing.id, property_id=prop.id),
                    )
                    return existing

            booking_id = str(uuid.uuid4())
            hold_expires_at = now + self._hold_window
            try:
                record = self._manager.try_reserve(
                    prop.id,
                    interval,
                    RecordKind.HOLD,
                    booking_id=booking_id,
                    expires_at=hold_expires_at,
                )
            except ReservationConflict as e:
                raise DatesUnavailable(
                    f"Property {prop.id} is unavailable between "
                    f"{interval.start.isoformat()} and {interval.end.isoformat()}"
                ) from e

            booking = Booking(
                id=booking_id,
                property_id=prop.id,
                guest_id=guest_id,
                host_id=host_id,
                interval=interval,
                guests=guests,
                total_cents=total_cents,
                currency=currency,
                status=BookingStatus.REQUESTED,
                created_at=now,
                updated_at=now,
                hold_expires_at=hold_expires_at,
                reservation_id=record.id,
                idempotency_key=idempotency_key,
            )
            try:
                self._repo.add(booking)
            except Exception:
                # Never leave an orphan hold behind a failed write
                self._manager.release(prop.id, record.id)
                raise

        logger.info(
            "booking requested",
            extra=log_fields(
                booking_id=booking.id,
                property_id=prop.id,
                guest_id=guest_id,
                nights=interval.nights,
                hold_expires_at=hold_expires_at,
            ),
        )
        self._emit(events.BOOKING_CREATED, booking)
        return booking

    # ── payment result ─────────────────────────────────────────────────

    def attach_payment_intent(self, booking_id: str, intent_id: str) -> Booking:
        booking = self.get(booking_id)
        with self._manager.exclusive(booking.property_id):
            booking = self.get(booking_id)
            booking.payment_intent_id = intent_id
            booking.updated_at = self._clock()
            self._repo.save(booking)
        return booking

    def confirm(self, booking_id: str, payment_succeeded: bool) -> Booking:
        """Apply a payment result.

        Success promotes the hold; a duplicate success on a confirmed booking
        is a no-op. Failure releases the hold and cancels the booking.

        Raises:
            HoldExpired: The hold was reclaimed before payment arrived.
            PaymentFailed: Payment failed (the hold is released first).
            InvalidTransition: Booking is not awaiting payment.
        """
        property_id = self.get(booking_id).property_id
        emitted: list[tuple[str, str]] = []

        with self._manager.exclusive(property_id):
            booking = self.get(booking_id)
            now = self._clock()

            if payment_succeeded:
                if booking.status in CONFIRMED_STATUSES:
                    return booking
                if booking.status is BookingStatus.EXPIRED:
                    raise HoldExpired(f"Hold for booking {booking_id} already expired")
                if booking.status is not BookingStatus.REQUESTED:
                    raise InvalidTransition(
                        booking_id, booking.status.value, BookingStatus.CONFIRMED.value
                    )
                hold = self._manager.get(property_id, booking.reservation_id)
                try:
                    self._manager.promote(property_id, booking.reservation_id)
                except AlreadyExpired as e:
                    logger.warning(
                        "payment arrived after hold expiry",
                        extra=log_fields(booking_id=booking_id, property_id=property_id),
                    )
                    raise HoldExpired(
                        f"Hold for booking {booking_id} already expired"
                    ) from e
                booking.transition(BookingStatus.CONFIRMED, now)
                booking.hold_expires_at = None
                try:
                    self._repo.save(booking)
                except Exception:
                    # The booking is still requested, so its record goes back to a hold
                    self._manager.restore(property_id, hold)
                    raise
                emitted.append((events.BOOKING_CONFIRMED, booking.status.value))
            else:
                if booking.status in (BookingStatus.CANCELLED, BookingStatus.EXPIRED):
                    raise PaymentFailed(f"Payment for booking {booking_id} failed")
                if booking.status is not BookingStatus.REQUESTED:
                    raise InvalidTransition(
                        booking_id, booking.status.value, BookingStatus.CANCELLED.value
                    )
                booking.transition(BookingStatus.CANCELLED, now)
                booking.hold_expires_at = None
                booking.cancelled_by = "payment"
                self._repo.save(booking)
                self._manager.release(property_id, booking.reservation_id)
                emitted.append((events.BOOKING_CANCELLED, BookingStatus.CANCELLED.value))

        for event_type, status in emitted:
            self._emit(event_type, booking, status)

        if not payment_succeeded:
            logger.info(
                "payment failed, hold released",
                extra=log_fields(booking_id=booking_id, property_id=property_id),
            )
            raise PaymentFailed(f"Payment for booking {booking_id} failed")

        logger.info(
            "booking confirmed",
            extra=log_fields(booking_id=booking_id, property_id=property_id),
        )
        return booking

    # ── cancel ─────────────────────────────────────────────────────────

    def cancel(self, booking_id: str, actor: str) -> Booking:
        """Cancel a booking and free its interval immediately.

        Refund eligibility comes from the refund policy applied to the lead
        time before check-in; bookings still awaiting payment refund nothing.

        Raises:
            InvalidTransition: Booking is not requested/confirmed/checked_in.
        """
        property_id = self.get(booking_id).property_id
        emitted: list[tuple[str, str]] = []

        with self._manager.exclusive(property_id):
            booking = self.get(booking_id)
            if booking.status not in CANCELLABLE_STATUSES:
                raise InvalidTransition(
                    booking_id, booking.status.value, BookingStatus.CANCELLED.value
                )
            now = self._clock()
            was_paid = booking.status is not BookingStatus.REQUESTED

            refund_cents = 0
            if was_paid:
                refund_cents = clamp_refund(
                    self._refund_policy(self._lead_time(booking, now), booking.total_cents),
                    booking.total_cents,
                )

            booking.transition(BookingStatus.CANCELLED, now)
            booking.hold_expires_at = None
            booking.cancelled_by = actor
            emitted.append((events.BOOKING_CANCELLED, BookingStatus.CANCELLED.value))
            if refund_cents > 0:
                booking.refund_cents = refund_cents
                booking.transition(BookingStatus.REFUNDED, now)
                emitted.append((events.BOOKING_REFUNDED, booking.status.value))
            self._repo.save(booking)
            if booking.reservation_id:
                self._manager.release(property_id, booking.reservation_id)

        logger.info(
            "booking cancelled",
            extra=log_fields(
                booking_id=booking_id,
                property_id=property_id,
                actor_id=actor,
                refund_cents=refund_cents,
            ),
        )
        for event_type, status in emitted:
            self._emit(event_type, booking, status)
        return booking

    # ── expiry ─────────────────────────────────────────────────────────

    def expire_sweep(self, booking_id: str) -> bool:
        """Reclaim an unpaid hold whose deadline passed.

        Returns True if the booking was expired, False if the guard did not
        hold (already confirmed/cancelled/expired or not yet due).
        """
        booking = self._repo.get(booking_id)
        if booking is None:
            return False

        with self._manager.exclusive(booking.property_id):
            booking = self._repo.get(booking_id)
            now = self._clock()
            if (
                booking is None
                or booking.status is not BookingStatus.REQUESTED
                or booking.hold_expires_at is None
                or booking.hold_expires_at > now
            ):
                return False

            booking.transition(BookingStatus.EXPIRED, now)
            self._repo.save(booking)
            if booking.reservation_id:
                self._manager.release(booking.property_id, booking.reservation_id)

        logger.info(
            "hold expired",
            extra=log_fields(booking_id=booking_id, property_id=booking.property_id),
        )
        self._emit(events.BOOKING_EXPIRED, booking)
        return True

    # ── stay lifecycle ─────────────────────────────────────────────────

    def check_in(self, booking_id: str) -> Booking:
        """confirmed -> checked_in, not before the first night."""
        return self._simple_transition(
            booking_id, BookingStatus.CHECKED_IN, events.BOOKING_CHECKED_IN
        )

    def check_out(self, booking_id: str) -> Booking:
        """checked_in -> completed. The confirmed record stays until archived."""
        return self._simple_transition(
            booking_id, BookingStatus.COMPLETED, events.BOOKING_COMPLETED
        )

    def refund(self, booking_id: str, amount_cents: int) -> Booking:
        """Record a refund on a cancelled or completed booking."""
        property_id = self.get(booking_id).property_id
        with self._manager.exclusive(property_id):
            booking = self.get(booking_id)
            if not 0 < amount_cents <= booking.total_cents:
                raise ValidationError("refund must be between 1 and the booking total")
            booking.transition(BookingStatus.REFUNDED, self._clock())
            booking.refund_cents = amount_cents
            self._repo.save(booking)
        self._emit(events.BOOKING_REFUNDED, booking)
        return booking

    def _simple_transition(
        self, booking_id: str, target: BookingStatus, event_type: str
    ) -> Booking:
        property_id = self.get(booking_id).property_id
        with self._manager.exclusive(property_id):
            booking = self.get(booking_id)
            now = self._clock()
            if not can_transition(booking.status, target):
                raise InvalidTransition(booking_id, booking.status.value, target.value)
            if target is BookingStatus.CHECKED_IN and now.date() < booking.interval.start:
                raise ValidationError("check-in is not open before the start date")
            booking.transition(target, now)
            self._repo.save(booking)
        self._emit(event_type, booking)
        return booking

    # ── helpers ────────────────────────────────────────────────────────

    @staticmethod
    def _lead_time(booking: Booking, now: datetime) -> timedelta:
        starts_at = datetime.combine(booking.interval.start, time.min, tzinfo=timezone.utc)
        return starts_at - now

    def _emit(self, event_type: str, booking: Booking, status: str | None = None) -> None:
        events.emit(
            self._publisher,
            event_type,
            booking_id=booking.id,
            property_id=booking.property_id,
            status=status or booking.status.value,
            timestamp=booking.updated_at,
        )
