"""Bookings repository - persistence for booking records.

Two implementations share one interface:
- InMemoryBookingRepository: default for single-node dev and tests.
- PostgresBookingRepository: raw SQL with psycopg2 (no ORM).

Both guard updates with the booking ``version`` column (compare-and-swap),
so a stale copy can never silently overwrite a newer one. Overlap checks
live in the owning process's interval store, so one database is served by a
single process (see hostly.infra.db.claim_store_ownership).
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Callable, ContextManager, Protocol

from psycopg2.extensions import cursor as PgCursor

from hostly.domain.booking import Booking, BookingStatus
from hostly.domain.errors import ConcurrentUpdate
from hostly.domain.intervals import DateInterval
from hostly.infra.db import txn

LIVE_STATUSES = (
    BookingStatus.REQUESTED,
    BookingStatus.CONFIRMED,
    BookingStatus.CHECKED_IN,
)


class BookingRepository(Protocol):
    """Storage interface used by the booking state machine and expirer."""

    def add(self, booking: Booking) -> None: ...

    def get(self, booking_id: str) -> Booking | None: ...

    def save(self, booking: Booking) -> None: ...

    def find_by_idempotency_key(self, guest_id: str, key: str) -> Booking | None: ...

    def find_by_payment_intent(self, intent_id: str) -> Booking | None: ...

    def list_expired_holds(self, now: datetime, limit: int = 500) -> list[Booking]: ...

    def list_live(self) -> list[Booking]: ...


class InMemoryBookingRepository:
    """Thread-safe dict-backed repository. Returns copies, never aliases."""

    def __init__(self) -> None:
        self._rows: dict[str, Booking] = {}
        self._lock = threading.Lock()

    def add(self, booking: Booking) -> None:
        with self._lock:
            if booking.id in self._rows:
                raise ValueError(f"booking {booking.id} already exists")
            self._rows[booking.id] = copy.copy(booking)

    def get(self, booking_id: str) -> Booking | None:
        with self._lock:
            row = self._rows.get(booking_id)
            return copy.copy(row) if row is not None else None

    def save(self, booking: Booking) -> None:
        with self._lock:
            stored = self._rows.get(booking.id)
            if stored is None or stored.version != booking.version:
                raise ConcurrentUpdate(f"Booking {booking.id} was modified concurrently")
            booking.version += 1
            self._rows[booking.id] = copy.copy(booking)

    def find_by_idempotency_key(self, guest_id: str, key: str) -> Booking | None:
        with self._lock:
            for row in self._rows.values():
                if row.guest_id == guest_id and row.idempotency_key == key:
                    return copy.copy(row)
        return None

    def find_by_payment_intent(self, intent_id: str) -> Booking | None:
        with self._lock:
            for row in self._rows.values():
                if row.payment_intent_id == intent_id:
                    return copy.copy(row)
        return None

    def list_expired_holds(self, now: datetime, limit: int = 500) -> list[Booking]:
        with self._lock:
            rows = [
                copy.copy(row)
                for row in self._rows.values()
                if row.status is BookingStatus.REQUESTED
                and row.hold_expires_at is not None
                and row.hold_expires_at <= now
            ]
        rows.sort(key=lambda b: b.hold_expires_at)
        return rows[:limit]

    def list_live(self) -> list[Booking]:
        with self._lock:
            return [
                copy.copy(row)
                for row in self._rows.values()
                if row.status in LIVE_STATUSES
            ]


_COLUMNS = (
    "id, property_id, guest_id, host_id, start_date, end_date, guests, "
    "total_cents, currency, status, created_at, updated_at, hold_expires_at, "
    "reservation_id, payment_intent_id, idempotency_key, refund_cents, "
    "cancelled_by, version"
)


def _row_to_booking(row: tuple[Any, ...]) -> Booking:
    return Booking(
        id=str(row[0]),
        property_id=row[1],
        guest_id=row[2],
        host_id=row[3],
        interval=DateInterval(row[4], row[5]),
        guests=row[6],
        total_cents=row[7],
        currency=row[8],
        status=BookingStatus(row[9]),
        created_at=row[10],
        updated_at=row[11],
        hold_expires_at=row[12],
        reservation_id=row[13],
        payment_intent_id=row[14],
        idempotency_key=row[15],
        refund_cents=row[16],
        cancelled_by=row[17],
        version=row[18],
    )


class PostgresBookingRepository:
    """psycopg2 repository over the ``bookings`` table.

    Args:
        txn_factory: Transaction context manager yielding a cursor
            (hostly.infra.db.txn by default).
    """

    def __init__(
        self, txn_factory: Callable[[], ContextManager[PgCursor]] = txn
    ) -> None:
        self._txn = txn_factory

    def add(self, booking: Booking) -> None:
        with self._txn() as cur:
            cur.execute(
                f"""
                INSERT INTO bookings ({_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                        %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    booking.id,
                    booking.property_id,
                    booking.guest_id,
                    booking.host_id,
                    booking.interval.start,
                    booking.interval.end,
                    booking.guests,
                    booking.total_cents,
                    booking.currency,
                    booking.status.value,
                    booking.created_at,
                    booking.updated_at,
                    booking.hold_expires_at,
                    booking.reservation_id,
                    booking.payment_intent_id,
                    booking.idempotency_key,
                    booking.refund_cents,
                    booking.cancelled_by,
                    booking.version,
                ),
            )

    def get(self, booking_id: str) -> Booking | None:
        with self._txn() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM bookings WHERE id = %s",
                (booking_id,),
            )
            row = cur.fetchone()
        return _row_to_booking(row) if row is not None else None

    def save(self, booking: Booking) -> None:
        """Persist mutable fields if the stored version still matches.

        Raises:
            ConcurrentUpdate: Another writer bumped the version first.
        """
        with self._txn() as cur:
            cur.execute(
                """
                UPDATE bookings
                SET status = %s,
                    updated_at = %s,
                    hold_expires_at = %s,
                    reservation_id = %s,
                    payment_intent_id = %s,
                    refund_cents = %s,
                    cancelled_by = %s,
                    version = version + 1
                WHERE id = %s AND version = %s
                """,
                (
                    booking.status.value,
                    booking.updated_at,
                    booking.hold_expires_at,
                    booking.reservation_id,
                    booking.payment_intent_id,
                    booking.refund_cents,
                    booking.cancelled_by,
                    booking.id,
                    booking.version,
                ),
            )
            if cur.rowcount == 0:
                raise ConcurrentUpdate(f"Booking {booking.id} was modified concurrently")
        booking.version += 1

    def find_by_idempotency_key(self, guest_id: str, key: str) -> Booking | None:
        with self._txn() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM bookings
                WHERE guest_id = %s AND idempotency_key = %s
                """,
                (guest_id, key),
            )
            row = cur.fetchone()
        return _row_to_booking(row) if row is not None else None

    def find_by_payment_intent(self, intent_id: str) -> Booking | None:
        with self._txn() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM bookings WHERE payment_intent_id = %s",
                (intent_id,),
            )
            row = cur.fetchone()
        return _row_to_booking(row) if row is not None else None

    def list_expired_holds(self, now: datetime, limit: int = 500) -> list[Booking]:
        with self._txn() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM bookings
                WHERE status = 'requested' AND hold_expires_at <= %s
                ORDER BY hold_expires_at
                LIMIT %s
                """,
                (now, limit),
            )
            rows = cur.fetchall()
        return [_row_to_booking(r) for r in rows]

    def list_live(self) -> list[Booking]:
        with self._txn() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM bookings
                WHERE status = ANY(%s)
                ORDER BY property_id, start_date
                """,
                ([s.value for s in LIVE_STATUSES],),
            )
            rows = cur.fetchall()
        return [_row_to_booking(r) for r in rows]
