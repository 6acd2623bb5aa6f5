"""Tests for the Reservation Manager's atomic primitives.

The concurrency tests release all threads at once through a Barrier, so
every try_reserve call contends for the same property lock.
"""

import random
import threading
from datetime import date, timedelta

import pytest
from helpers import NOW, PROPERTY_ID, SEP_10, SEP_13, SEP_15

from hostly.domain.errors import AlreadyExpired, LockTimeout, ReservationConflict
from hostly.domain.interval_store import RecordKind
from hostly.domain.intervals import DateInterval


def _hold(manager, start, end, booking_id="b1", minutes=10):
    return manager.try_reserve(
        PROPERTY_ID,
        DateInterval(start, end),
        RecordKind.HOLD,
        booking_id=booking_id,
        expires_at=NOW + timedelta(minutes=minutes),
    )


class TestTryReserve:
    def test_hold_then_conflict(self, manager):
        _hold(manager, SEP_10, SEP_13)
        with pytest.raises(ReservationConflict):
            _hold(manager, SEP_10, SEP_15, booking_id="b2")

    def test_hold_requires_expiry(self, manager):
        with pytest.raises(ValueError):
            manager.try_reserve(
                PROPERTY_ID, DateInterval(SEP_10, SEP_13), RecordKind.HOLD, booking_id="b1"
            )

    def test_confirmed_cannot_expire(self, manager):
        with pytest.raises(ValueError):
            manager.try_reserve(
                PROPERTY_ID,
                DateInterval(SEP_10, SEP_13),
                RecordKind.CONFIRMED,
                booking_id="b1",
                expires_at=NOW,
            )

    def test_explicit_record_id(self, manager):
        record = manager.try_reserve(
            PROPERTY_ID,
            DateInterval(SEP_10, SEP_13),
            RecordKind.CONFIRMED,
            booking_id="b1",
            record_id="rec-1",
        )
        assert record.id == "rec-1"
        assert manager.store.get(PROPERTY_ID, "rec-1") == record


class TestConcurrentReserve:
    def test_exactly_one_of_twenty_wins(self, manager):
        threads_count = 20
        barrier = threading.Barrier(threads_count)
        winners: list[str] = []
        conflicts: list[str] = []
        errors: list[Exception] = []
        results_lock = threading.Lock()

        def worker(n: int) -> None:
            barrier.wait()
            try:
                record = _hold(manager, SEP_10, SEP_13, booking_id=f"b{n}")
                with results_lock:
                    winners.append(record.booking_id)
            except ReservationConflict:
                with results_lock:
                    conflicts.append(f"b{n}")
            except Exception as e:
                with results_lock:
                    errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(winners) == 1
        assert len(conflicts) == threads_count - 1
        assert len(manager.store.records(PROPERTY_ID)) == 1

    def test_disjoint_requests_all_win(self, manager):
        barrier = threading.Barrier(10)
        winners: list[str] = []
        lock = threading.Lock()

        def worker(n: int) -> None:
            start = date(2025, 9, 1) + timedelta(days=2 * n)
            barrier.wait()
            record = _hold(manager, start, start + timedelta(days=2), booking_id=f"b{n}")
            with lock:
                winners.append(record.id)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 10

    def test_randomized_requests_never_overlap(self, manager):
        rng = random.Random(1234)
        requests = []
        for n in range(200):
            start = date(2025, 10, 1) + timedelta(days=rng.randint(0, 60))
            requests.append((n, start, start + timedelta(days=rng.randint(1, 6))))

        barrier = threading.Barrier(8)

        def worker(chunk) -> None:
            barrier.wait()
            for n, start, end in chunk:
                try:
                    manager.try_reserve(
                        PROPERTY_ID,
                        DateInterval(start, end),
                        RecordKind.CONFIRMED,
                        booking_id=f"b{n}",
                    )
                except ReservationConflict:
                    pass

        threads = [
            threading.Thread(target=worker, args=(requests[i::8],)) for i in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        records = manager.store.records(PROPERTY_ID)
        assert records
        for a, b in zip(records, records[1:]):
            assert a.interval.end <= b.interval.start


class TestLockTimeout:
    def test_busy_property_times_out(self, manager):
        entered = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with manager.exclusive(PROPERTY_ID):
                entered.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        try:
            assert entered.wait(5)
            with pytest.raises(LockTimeout) as exc:
                _hold(manager, SEP_10, SEP_13)
            assert exc.value.retryable is True
        finally:
            release.set()
            t.join()

        # Nothing was reserved by the timed-out call
        assert manager.store.records(PROPERTY_ID) == []

    def test_other_property_not_blocked(self, manager):
        entered = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with manager.exclusive("P2"):
                entered.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        try:
            assert entered.wait(5)
            assert _hold(manager, SEP_10, SEP_13).property_id == PROPERTY_ID
        finally:
            release.set()
            t.join()


class TestReleaseAndPromote:
    def test_release_is_idempotent(self, manager):
        record = _hold(manager, SEP_10, SEP_13)
        assert manager.release(PROPERTY_ID, record.id) is True
        assert manager.release(PROPERTY_ID, record.id) is False
        # dates are free again
        _hold(manager, SEP_10, SEP_13, booking_id="b2")

    def test_promote_live_hold(self, manager):
        record = _hold(manager, SEP_10, SEP_13)
        promoted = manager.promote(PROPERTY_ID, record.id)
        assert promoted.kind is RecordKind.CONFIRMED
        assert promoted.expires_at is None
        assert manager.promote(PROPERTY_ID, record.id) == promoted

    def test_promote_expired_hold(self, manager, clock):
        record = _hold(manager, SEP_10, SEP_13)
        clock.advance(minutes=10)
        with pytest.raises(AlreadyExpired):
            manager.promote(PROPERTY_ID, record.id)

    def test_promote_released_hold(self, manager):
        record = _hold(manager, SEP_10, SEP_13)
        manager.release(PROPERTY_ID, record.id)
        with pytest.raises(AlreadyExpired):
            manager.promote(PROPERTY_ID, record.id)

    def test_confirmed_record_survives_clock(self, manager, clock):
        record = _hold(manager, SEP_10, SEP_13)
        manager.promote(PROPERTY_ID, record.id)
        clock.advance(days=3)
        assert len(manager.query_overlap(PROPERTY_ID, DateInterval(SEP_10, SEP_13))) == 1


def test_archive_ended_releases_past_stays(manager):
    manager.try_reserve(
        PROPERTY_ID,
        DateInterval(date(2025, 8, 1), date(2025, 8, 5)),
        RecordKind.CONFIRMED,
        booking_id="old",
    )
    manager.try_reserve(
        PROPERTY_ID, DateInterval(SEP_10, SEP_13), RecordKind.CONFIRMED, booking_id="new"
    )
    assert manager.archive_ended(date(2025, 8, 10)) == 1
    assert [r.booking_id for r in manager.store.records(PROPERTY_ID)] == ["new"]
