"""End-to-end booking flows through the Reservation Service."""

import threading
from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest
from helpers import (
    GUEST_A,
    GUEST_B,
    HOST_ID,
    PROPERTY_ID,
    SEP_10,
    SEP_12,
    SEP_14,
    SEP_15,
)

from hostly.config import Settings
from hostly.domain.booking import BookingStatus, PropertyRef
from hostly.domain.errors import (
    DatesUnavailable,
    HoldExpired,
    LockTimeout,
    NotFound,
    PaymentFailed,
    ValidationError,
)
from hostly.domain.intervals import DateInterval
from hostly.infra.repositories.bookings_repository import InMemoryBookingRepository
from hostly.payments.gateway import PaymentGatewayError
from hostly.services.property_catalog import InMemoryPropertyCatalog
from hostly.services.reservation_service import ReservationService, catalog_rate_quote


def _book(service, guest_id, start, end, **kwargs):
    return service.create_booking(
        guest_id=guest_id,
        property_id=PROPERTY_ID,
        start_date=start,
        end_date=end,
        guests=2,
        payment_method_id="pm_card_visa",
        **kwargs,
    )


class TestScenarios:
    def test_request_holds_dates(self, service, clock):
        booking = _book(service, GUEST_A, SEP_10, SEP_15)
        assert booking.status is BookingStatus.REQUESTED
        assert booking.hold_expires_at == clock() + timedelta(minutes=10)
        assert booking.total_cents == 50_000
        assert booking.currency == "USD"
        assert booking.host_id == HOST_ID
        assert booking.payment_intent_id.startswith("pi_inline_")

    def test_overlap_while_hold_live(self, service):
        _book(service, GUEST_A, SEP_10, SEP_15)
        with pytest.raises(DatesUnavailable):
            _book(service, GUEST_B, SEP_12, SEP_14)

    def test_expired_hold_frees_dates(self, service, clock):
        a = _book(service, GUEST_A, SEP_10, SEP_15)
        clock.advance(minutes=10, seconds=1)
        result = service.sweep_expired_holds()
        assert result.expired == 1
        assert service.get_booking(a.id).status is BookingStatus.EXPIRED

        b = _book(service, GUEST_B, SEP_12, SEP_14)
        assert b.status is BookingStatus.REQUESTED

    def test_payment_within_window_confirms(self, service, clock):
        a = _book(service, GUEST_A, SEP_10, SEP_15)
        clock.advance(minutes=5)
        confirmed = service.on_payment_result(a.payment_intent_id, succeeded=True)
        assert confirmed.status is BookingStatus.CONFIRMED

        clock.advance(minutes=10)
        result = service.sweep_expired_holds()
        assert result.expired == 0
        assert service.get_booking(a.id).status is BookingStatus.CONFIRMED

    def test_last_open_day_has_one_winner(self, service):
        # Everything but 2025-09-14 is taken
        first = _book(service, GUEST_A, SEP_10, SEP_14)
        service.on_payment_result(first.payment_intent_id, True)
        second = _book(service, GUEST_A, SEP_15, SEP_15 + timedelta(days=5))
        service.on_payment_result(second.payment_intent_id, True)

        clients = 20
        barrier = threading.Barrier(clients)
        created: list[str] = []
        unavailable: list[str] = []
        lock = threading.Lock()

        def client(n: int) -> None:
            barrier.wait()
            try:
                booking = _book(service, f"guest-{n:04d}", SEP_14, SEP_15)
                with lock:
                    created.append(booking.id)
            except DatesUnavailable:
                with lock:
                    unavailable.append(str(n))

        threads = [threading.Thread(target=client, args=(n,)) for n in range(clients)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(created) == 1
        assert len(unavailable) == clients - 1

    def test_host_cancel_frees_dates(self, service, clock):
        start = clock().date() + timedelta(days=2)
        end = start + timedelta(days=3)
        booking = _book(service, GUEST_A, start, end)
        service.on_payment_result(booking.payment_intent_id, True)

        cancelled = service.cancel_booking(booking.id, HOST_ID)
        # Two days out: the fixture policy refunds half
        assert cancelled.status is BookingStatus.REFUNDED
        assert cancelled.refund_cents == booking.total_cents // 2
        assert service.unavailable_intervals(PROPERTY_ID, start, end) == []


class TestCreateBooking:
    def test_unknown_property(self, service):
        with pytest.raises(NotFound):
            service.create_booking(
                guest_id=GUEST_A,
                property_id="nope",
                start_date=SEP_10,
                end_date=SEP_15,
                guests=1,
                payment_method_id="pm_card_visa",
            )

    def test_bad_dates(self, service):
        with pytest.raises(ValidationError):
            _book(service, GUEST_A, SEP_15, SEP_10)

    def test_missing_payment_method(self, service):
        with pytest.raises(ValidationError):
            service.create_booking(
                guest_id=GUEST_A,
                property_id=PROPERTY_ID,
                start_date=SEP_10,
                end_date=SEP_15,
                guests=1,
                payment_method_id="",
            )

    def test_idempotency_key_returns_same_booking(self, service, payments):
        first = _book(service, GUEST_A, SEP_10, SEP_15, idempotency_key="req-1")
        again = _book(service, GUEST_A, SEP_10, SEP_15, idempotency_key="req-1")
        assert again.id == first.id
        assert again.payment_intent_id == first.payment_intent_id

    def test_same_key_other_guest_is_independent(self, service):
        _book(service, GUEST_A, SEP_10, SEP_12, idempotency_key="req-1")
        other = _book(service, GUEST_B, SEP_12, SEP_14, idempotency_key="req-1")
        assert other.guest_id == GUEST_B

    def test_gateway_failure_releases_hold(self, service, payments):
        with patch.object(
            payments,
            "create_payment_intent",
            side_effect=PaymentGatewayError("card declined"),
        ):
            with pytest.raises(PaymentFailed):
                _book(service, GUEST_A, SEP_10, SEP_15)

        assert service.unavailable_intervals(PROPERTY_ID, SEP_10, SEP_15) == []
        assert _book(service, GUEST_B, SEP_10, SEP_15).status is BookingStatus.REQUESTED

    def test_intent_carries_booking_metadata(self, service, payments):
        booking = _book(service, GUEST_A, SEP_10, SEP_15)
        intent = payments.intent(booking.payment_intent_id)
        assert intent["amount_cents"] == booking.total_cents
        assert intent["metadata"]["booking_id"] == booking.id

    def test_property_without_rate(self, service, catalog):
        catalog.put(PropertyRef(id="P2", max_guests=2, is_active=True, host_id=HOST_ID))
        with pytest.raises(ValidationError):
            service.create_booking(
                guest_id=GUEST_A,
                property_id="P2",
                start_date=SEP_10,
                end_date=SEP_15,
                guests=1,
                payment_method_id="pm_card_visa",
            )


class TestPaymentResult:
    def test_unknown_intent(self, service):
        with pytest.raises(NotFound):
            service.on_payment_result("pi_missing", True)

    def test_failed_payment_releases(self, service):
        booking = _book(service, GUEST_A, SEP_10, SEP_15)
        with pytest.raises(PaymentFailed):
            service.on_payment_result(booking.payment_intent_id, False)
        assert service.get_booking(booking.id).status is BookingStatus.CANCELLED
        assert service.unavailable_intervals(PROPERTY_ID, SEP_10, SEP_15) == []

    def test_late_payment(self, service, clock):
        booking = _book(service, GUEST_A, SEP_10, SEP_15)
        clock.advance(minutes=30)
        service.sweep_expired_holds()
        with pytest.raises(HoldExpired):
            service.on_payment_result(booking.payment_intent_id, True)


class TestAvailability:
    def test_clipped_to_window(self, service):
        a = _book(service, GUEST_A, date(2025, 9, 5), SEP_12)
        service.on_payment_result(a.payment_intent_id, True)
        _book(service, GUEST_B, SEP_14, date(2025, 9, 25))

        unavailable = service.unavailable_intervals(PROPERTY_ID, SEP_10, date(2025, 9, 20))
        assert unavailable == [
            DateInterval(SEP_10, SEP_12),
            DateInterval(SEP_14, date(2025, 9, 20)),
        ]

    def test_expired_hold_is_available(self, service, clock):
        _book(service, GUEST_A, SEP_10, SEP_15)
        clock.advance(minutes=11)
        # Not swept yet, but no longer blocks
        assert service.unavailable_intervals(PROPERTY_ID, SEP_10, SEP_15) == []

    def test_window_too_wide(self, service):
        with pytest.raises(ValidationError):
            service.unavailable_intervals(PROPERTY_ID, SEP_10, SEP_10 + timedelta(days=400))

    def test_unknown_property(self, service):
        with pytest.raises(NotFound):
            service.unavailable_intervals("nope", SEP_10, SEP_15)


class TestLockRetry:
    def test_retries_then_succeeds(self, service):
        operation = MagicMock(side_effect=[LockTimeout("busy"), "ok"])
        with patch("hostly.services.reservation_service.time.sleep") as sleep:
            assert service._with_lock_retry(operation) == "ok"
        assert operation.call_count == 2
        sleep.assert_called_once()

    def test_gives_up(self, service):
        operation = MagicMock(side_effect=LockTimeout("busy"))
        with patch("hostly.services.reservation_service.time.sleep"):
            with pytest.raises(LockTimeout):
                service._with_lock_retry(operation)
        assert operation.call_count == 3


class TestRecovery:
    def test_rebuilds_store_from_repository(self, service, repository, catalog, clock):
        confirmed = _book(service, GUEST_A, SEP_10, SEP_12)
        service.on_payment_result(confirmed.payment_intent_id, True)
        live = _book(service, GUEST_B, SEP_12, SEP_14)
        cancelled = _book(service, GUEST_B, SEP_14, SEP_15)
        service.cancel_booking(cancelled.id, GUEST_B)

        # A fresh process over the same storage
        restarted = ReservationService.from_settings(
            Settings(), catalog=catalog, repository=repository, clock=clock
        )
        assert restarted.recover() == 2

        with pytest.raises(DatesUnavailable):
            _book(restarted, "guest-cccc", SEP_10, SEP_14)
        assert _book(restarted, "guest-cccc", SEP_14, SEP_15).status is BookingStatus.REQUESTED

        # Restored hold keeps its identity and can still be confirmed
        assert restarted.on_payment_result(live.payment_intent_id, True).status is (
            BookingStatus.CONFIRMED
        )

    def test_skips_holds_past_deadline(self, service, repository, catalog, clock):
        _book(service, GUEST_A, SEP_10, SEP_12)
        clock.advance(minutes=11)
        restarted = ReservationService.from_settings(
            Settings(), catalog=catalog, repository=repository, clock=clock
        )
        assert restarted.recover() == 0


def test_from_settings_defaults():
    service = ReservationService.from_settings(
        Settings(hold_window_minutes=15),
        catalog=InMemoryPropertyCatalog(),
        repository=InMemoryBookingRepository(),
    )
    assert service.state_machine.hold_window == timedelta(minutes=15)
    assert service.expirer is not None


def test_catalog_rate_quote():
    prop = PropertyRef(
        id="P1", max_guests=2, is_active=True, nightly_rate_cents=12_500, currency="EUR"
    )
    assert catalog_rate_quote(prop, DateInterval(SEP_10, SEP_12), 2) == (25_000, "EUR")


def test_postgres_backend_claims_store_before_pool():
    calls = []
    with patch(
        "hostly.infra.db.claim_store_ownership",
        side_effect=lambda: calls.append("claim"),
    ), patch("hostly.infra.db.init_pool", side_effect=lambda: calls.append("pool")):
        ReservationService.from_settings(
            Settings(bookings_backend="postgres", database_url="postgresql://db/hostly"),
            catalog=InMemoryPropertyCatalog(),
        )
    assert calls == ["claim", "pool"]


def test_second_postgres_process_refuses_to_start():
    with patch(
        "hostly.infra.db.claim_store_ownership",
        side_effect=RuntimeError("Another process already serves this bookings database"),
    ), patch("hostly.infra.db.init_pool") as init_pool:
        with pytest.raises(RuntimeError):
            ReservationService.from_settings(
                Settings(bookings_backend="postgres", database_url="postgresql://db/hostly"),
                catalog=InMemoryPropertyCatalog(),
            )
    init_pool.assert_not_called()
