"""Shared test constants and helper functions for Hostly tests.

Regular functions, not fixtures: importable from conftest.py and from
individual test modules.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from hostly.domain.intervals import DateInterval

NOW = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)
PROPERTY_ID = "P1"
HOST_ID = "host-0001"
GUEST_A = "guest-aaaa"
GUEST_B = "guest-bbbb"

# Scenario dates, all in the future relative to NOW
SEP_10 = date(2025, 9, 10)
SEP_12 = date(2025, 9, 12)
SEP_13 = date(2025, 9, 13)
SEP_14 = date(2025, 9, 14)
SEP_15 = date(2025, 9, 15)
SEP_16 = date(2025, 9, 16)
SEP_20 = date(2025, 9, 20)


def interval(start: date, end: date) -> DateInterval:
    return DateInterval(start, end)


def create_request(state_machine, prop, start: date, end: date, **overrides):
    """Create a requested booking through the state machine."""
    kwargs = dict(
        guest_id=GUEST_A,
        host_id=HOST_ID,
        interval=DateInterval(start, end),
        guests=2,
        total_cents=10_000 * (end - start).days,
        currency="USD",
    )
    kwargs.update(overrides)
    return state_machine.create(prop, **kwargs)
