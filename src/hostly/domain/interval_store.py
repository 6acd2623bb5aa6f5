"""Interval Store - per-property set of reserved date ranges.

Each property keeps its records in a calendar sorted by start date. Stored
records never overlap one another (active ones by construction, expired holds
because they are evicted when a new record lands on top of them), so the end
dates are sorted as well. An overlap query bisects on the end dates and walks
forward until the start dates pass the query end: cost is O(log n + k) where
k is the number of overlapping records, independent of total history.

The store is not thread-safe on its own. Every mutation goes through the
ReservationManager, which serializes callers per property.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Iterator

from hostly.domain.errors import ReservationConflict
from hostly.domain.intervals import DateInterval
from hostly.infra.time import Clock, utc_now


class RecordKind(str, Enum):
    HOLD = "hold"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class ReservationRecord:
    """One held or confirmed interval on a property."""

    id: str
    property_id: str
    booking_id: str
    interval: DateInterval
    kind: RecordKind
    expires_at: datetime | None = None
    version: int = 1

    def is_active(self, now: datetime) -> bool:
        if self.kind is RecordKind.CONFIRMED:
            return True
        return self.expires_at is not None and self.expires_at > now

    def promoted(self) -> ReservationRecord:
        return replace(
            self,
            kind=RecordKind.CONFIRMED,
            expires_at=None,
            version=self.version + 1,
        )


class _PropertyCalendar:
    """Sorted, pairwise non-overlapping records of a single property."""

    def __init__(self) -> None:
        self._starts: list[date] = []
        self._ends: list[date] = []
        self._records: list[ReservationRecord] = []
        self._positions: dict[str, ReservationRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ReservationRecord]:
        return iter(list(self._records))

    def get(self, record_id: str) -> ReservationRecord | None:
        return self._positions.get(record_id)

    def overlapping(self, interval: DateInterval) -> list[ReservationRecord]:
        # First record whose end lies strictly after the query start
        i = bisect.bisect_right(self._ends, interval.start)
        found = []
        while i < len(self._records) and self._starts[i] < interval.end:
            found.append(self._records[i])
            i += 1
        return found

    def add(self, record: ReservationRecord) -> None:
        i = bisect.bisect_left(self._starts, record.interval.start)
        self._starts.insert(i, record.interval.start)
        self._ends.insert(i, record.interval.end)
        self._records.insert(i, record)
        self._positions[record.id] = record

    def discard(self, record_id: str) -> ReservationRecord | None:
        record = self._positions.pop(record_id, None)
        if record is None:
            return None
        i = self._index_of(record)
        del self._starts[i]
        del self._ends[i]
        del self._records[i]
        return record

    def swap(self, record: ReservationRecord) -> None:
        """Replace a stored record with a new version on the same interval."""
        current = self._positions[record.id]
        if current.interval != record.interval:
            raise ValueError("a record's interval never changes")
        self._records[self._index_of(current)] = record
        self._positions[record.id] = record

    def _index_of(self, record: ReservationRecord) -> int:
        i = bisect.bisect_left(self._starts, record.interval.start)
        while self._records[i].id != record.id:
            i += 1
        return i


class IntervalStore:
    """Authoritative per-property reservation intervals.

    Args:
        clock: Source of "now" used to tell live holds from expired ones.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._calendars: dict[str, _PropertyCalendar] = {}

    def _calendar(self, property_id: str) -> _PropertyCalendar:
        return self._calendars.setdefault(property_id, _PropertyCalendar())

    def query_overlap(
        self, property_id: str, interval: DateInterval
    ) -> list[ReservationRecord]:
        """Active records overlapping ``interval``, ordered by start date."""
        calendar = self._calendars.get(property_id)
        if calendar is None:
            return []
        now = self._clock()
        return [r for r in calendar.overlapping(interval) if r.is_active(now)]

    def insert(self, property_id: str, record: ReservationRecord) -> None:
        """Insert ``record`` if no active record overlaps it.

        Expired holds under the new interval are evicted first; their
        bookings are reclaimed by the next sweep, whose release is a no-op.

        Raises:
            ReservationConflict: If an active record overlaps.
        """
        if record.property_id != property_id:
            raise ValueError("record belongs to another property")
        calendar = self._calendar(property_id)
        if calendar.get(record.id) is not None:
            raise ValueError(f"record {record.id} already stored")

        now = self._clock()
        overlapping = calendar.overlapping(record.interval)
        active = [r for r in overlapping if r.is_active(now)]
        if active:
            raise ReservationConflict(property_id, active)

        for stale in overlapping:
            calendar.discard(stale.id)
        calendar.add(record)

    def remove(self, property_id: str, record_id: str) -> ReservationRecord | None:
        """Remove a record. Removing an unknown record is a no-op."""
        calendar = self._calendars.get(property_id)
        if calendar is None:
            return None
        return calendar.discard(record_id)

    def replace(self, property_id: str, record: ReservationRecord) -> None:
        self._calendar(property_id).swap(record)

    def get(self, property_id: str, record_id: str) -> ReservationRecord | None:
        calendar = self._calendars.get(property_id)
        if calendar is None:
            return None
        return calendar.get(record_id)

    def records(self, property_id: str) -> list[ReservationRecord]:
        """All stored records of a property (including expired holds)."""
        calendar = self._calendars.get(property_id)
        return list(calendar) if calendar is not None else []

    def ended_before(self, property_id: str, cutoff: date) -> list[ReservationRecord]:
        """Confirmed records whose interval ended on or before ``cutoff``."""
        return [
            r
            for r in self.records(property_id)
            if r.kind is RecordKind.CONFIRMED and r.interval.end <= cutoff
        ]

    def property_ids(self) -> list[str]:
        return list(self._calendars)
