"""Reservation Manager - the sole mutator of the Interval Store.

Exposes three atomic primitives (try_reserve, release, promote). Each one
runs under the property's lock from a sharded lock table, so requests on
different properties never wait on each other, while two overlapping
try_reserve calls on the same property can never both succeed.

Lock waits are bounded: a caller that cannot get the property within
``lock_timeout`` seconds gets a retryable LockTimeout instead of blocking.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator

from hostly.domain.errors import AlreadyExpired, LockTimeout, ReservationConflict
from hostly.domain.interval_store import IntervalStore, RecordKind, ReservationRecord
from hostly.domain.intervals import DateInterval
from hostly.infra.time import Clock, utc_now
from hostly.observability.logging import get_logger, log_fields

logger = get_logger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 2.0


class PropertyLockTable:
    """One re-entrant lock per property, created on first use.

    The table guard is held only for the dictionary lookup, never while a
    property lock is being waited on.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, property_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(property_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[property_id] = lock
            return lock

    @contextmanager
    def acquire(self, property_id: str, timeout: float) -> Iterator[None]:
        lock = self.lock_for(property_id)
        if not lock.acquire(timeout=timeout):
            logger.warning(
                "property lock timeout",
                extra=log_fields(property_id=property_id, timeout_s=timeout),
            )
            raise LockTimeout(
                f"Property {property_id} is busy, retry the request"
            )
        try:
            yield
        finally:
            lock.release()


class ReservationManager:
    """Atomic check-and-reserve over an IntervalStore.

    Args:
        store: Interval store to guard (a fresh one by default).
        lock_timeout: Max seconds to wait for a property's lock.
        clock: Source of "now" for hold validity.
    """

    def __init__(
        self,
        store: IntervalStore | None = None,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._clock = clock
        self._store = store if store is not None else IntervalStore(clock=clock)
        self._locks = PropertyLockTable()
        self._lock_timeout = lock_timeout

    @property
    def store(self) -> IntervalStore:
        return self._store

    @contextmanager
    def exclusive(self, property_id: str) -> Iterator[None]:
        """Hold the property's lock for a multi-step critical section.

        Re-entrant: the primitives below may be called inside the block.

        Raises:
            LockTimeout: If the lock is not acquired within lock_timeout.
        """
        with self._locks.acquire(property_id, self._lock_timeout):
            yield

    def try_reserve(
        self,
        property_id: str,
        interval: DateInterval,
        kind: RecordKind,
        *,
        booking_id: str,
        expires_at: datetime | None = None,
        record_id: str | None = None,
    ) -> ReservationRecord:
        """Reserve ``interval`` if nothing active overlaps it.

        Args:
            property_id: Property identifier.
            interval: Requested [start, end) range.
            kind: RecordKind.HOLD (requires expires_at) or CONFIRMED.
            booking_id: Booking that owns the record.
            expires_at: Hold deadline; must be None for confirmed records.
            record_id: Explicit id (used when rebuilding from storage).

        Returns:
            The stored ReservationRecord.

        Raises:
            ReservationConflict: Overlap detected; nothing was changed.
            LockTimeout: Property lock not acquired in time.
        """
        if kind is RecordKind.HOLD and expires_at is None:
            raise ValueError("hold records need expires_at")
        if kind is RecordKind.CONFIRMED and expires_at is not None:
            raise ValueError("confirmed records never expire")

        record = ReservationRecord(
            id=record_id or str(uuid.uuid4()),
            property_id=property_id,
            booking_id=booking_id,
            interval=interval,
            kind=kind,
            expires_at=expires_at,
        )

        with self.exclusive(property_id):
            try:
                self._store.insert(property_id, record)
            except ReservationConflict as e:
                logger.info(
                    "reservation conflict",
                    extra=log_fields(
                        property_id=property_id,
                        requested_start=interval.start,
                        requested_end=interval.end,
                        conflicts=len(e.conflicting),
                    ),
                )
                raise

        logger.info(
            "interval reserved",
            extra=log_fields(
                property_id=property_id,
                record_id=record.id,
                booking_id=booking_id,
                kind=kind.value,
            ),
        )
        return record

    def release(self, property_id: str, record_id: str) -> bool:
        """Remove a record. Returns False when it was already gone."""
        with self.exclusive(property_id):
            removed = self._store.remove(property_id, record_id)

        if removed is not None:
            logger.info(
                "interval released",
                extra=log_fields(
                    property_id=property_id,
                    record_id=record_id,
                    kind=removed.kind.value,
                ),
            )
        return removed is not None

    def promote(self, property_id: str, record_id: str) -> ReservationRecord:
        """Turn a live hold into a confirmed reservation.

        Promoting an already confirmed record returns it unchanged.

        Raises:
            AlreadyExpired: The hold was removed or its deadline passed.
            LockTimeout: Property lock not acquired in time.
        """
        with self.exclusive(property_id):
            record = self._store.get(property_id, record_id)
            if record is None or not record.is_active(self._clock()):
                raise AlreadyExpired(property_id, record_id)
            if record.kind is RecordKind.CONFIRMED:
                return record
            promoted = record.promoted()
            self._store.replace(property_id, promoted)

        logger.info(
            "hold promoted",
            extra=log_fields(property_id=property_id, record_id=record_id),
        )
        return promoted

    def get(self, property_id: str, record_id: str) -> ReservationRecord | None:
        with self.exclusive(property_id):
            return self._store.get(property_id, record_id)

    def restore(self, property_id: str, record: ReservationRecord) -> None:
        """Put back a record exactly as it was before a failed transition."""
        with self.exclusive(property_id):
            if self._store.get(property_id, record.id) is not None:
                self._store.replace(property_id, record)
            else:
                self._store.insert(property_id, record)

        logger.warning(
            "interval restored",
            extra=log_fields(
                property_id=property_id,
                record_id=record.id,
                kind=record.kind.value,
            ),
        )

    def query_overlap(
        self, property_id: str, interval: DateInterval
    ) -> list[ReservationRecord]:
        """Consistent snapshot of active records overlapping ``interval``."""
        with self.exclusive(property_id):
            return self._store.query_overlap(property_id, interval)

    def archive_ended(self, cutoff: date) -> int:
        """Release confirmed records that ended on or before ``cutoff``.

        Past stays no longer take part in overlap checks for new bookings;
        the bookings themselves keep the history.
        """
        archived = 0
        for property_id in self._store.property_ids():
            with self.exclusive(property_id):
                for record in self._store.ended_before(property_id, cutoff):
                    if self.release(property_id, record.id):
                        archived += 1
        return archived
