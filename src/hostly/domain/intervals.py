"""Half-open date intervals.

Overlap formula:  (a.start < b.end) AND (b.start < a.end)
Strict inequality lets check-out day == check-in day (same-day turnover).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from hostly.domain.errors import ValidationError


@dataclass(frozen=True, order=True)
class DateInterval:
    """Occupancy range ``[start, end)`` at day granularity."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if not isinstance(self.start, date) or not isinstance(self.end, date):
            raise ValidationError("start and end must be dates")
        if self.start >= self.end:
            raise ValidationError("start_date must be before end_date")

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def overlaps(self, other: DateInterval) -> bool:
        return self.start < other.end and other.start < self.end

    def clip(self, window: DateInterval) -> DateInterval | None:
        """Intersection with ``window``, or None when they do not overlap."""
        if not self.overlaps(window):
            return None
        return DateInterval(max(self.start, window.start), min(self.end, window.end))

    def to_dict(self) -> dict:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}
