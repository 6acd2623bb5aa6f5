"""Shared pytest fixtures for Hostly tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from helpers import HOST_ID, NOW, PROPERTY_ID  # noqa: E402

from hostly.domain.booking import PropertyRef  # noqa: E402
from hostly.domain.booking_state_machine import BookingStateMachine  # noqa: E402
from hostly.domain.events import InMemoryOutbox  # noqa: E402
from hostly.domain.hold_expirer import HoldExpirer  # noqa: E402
from hostly.domain.interval_store import IntervalStore  # noqa: E402
from hostly.domain.refund_policy import FlexiblePolicy  # noqa: E402
from hostly.domain.reservation_manager import ReservationManager  # noqa: E402
from hostly.infra.repositories.bookings_repository import (  # noqa: E402
    InMemoryBookingRepository,
)
from hostly.infra.time import FrozenClock  # noqa: E402
from hostly.payments.gateway import InlinePaymentGateway  # noqa: E402
from hostly.services.property_catalog import InMemoryPropertyCatalog  # noqa: E402
from hostly.services.reservation_service import ReservationService  # noqa: E402


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def prop():
    return PropertyRef(
        id=PROPERTY_ID,
        max_guests=4,
        is_active=True,
        host_id=HOST_ID,
        nightly_rate_cents=10_000,
        currency="USD",
    )


@pytest.fixture
def catalog(prop):
    return InMemoryPropertyCatalog([prop])


@pytest.fixture
def repository():
    return InMemoryBookingRepository()


@pytest.fixture
def outbox():
    return InMemoryOutbox()


@pytest.fixture
def manager(clock):
    return ReservationManager(IntervalStore(clock=clock), lock_timeout=0.5, clock=clock)


@pytest.fixture
def state_machine(manager, repository, outbox, clock):
    return BookingStateMachine(
        manager,
        repository,
        outbox,
        refund_policy=FlexiblePolicy(free_until_days=7, penalty_percent=50),
        clock=clock,
    )


@pytest.fixture
def payments():
    return InlinePaymentGateway()


@pytest.fixture
def service(state_machine, manager, repository, catalog, payments, clock):
    expirer = HoldExpirer(state_machine, repository, manager, clock=clock)
    return ReservationService(
        state_machine,
        manager,
        repository,
        catalog,
        payments,
        expirer=expirer,
        clock=clock,
    )
