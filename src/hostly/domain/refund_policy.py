"""Refund policy inputs.

The booking core never decides refund percentages. It hands the lead time
before check-in and the original total to a policy function owned by the
pricing/policy collaborator, and records whatever amount comes back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

# (time until interval.start, total_cents) -> refundable cents
RefundPolicy = Callable[[timedelta, int], int]


@dataclass(frozen=True)
class FlexiblePolicy:
    """Full refund up to ``free_until_days`` before check-in, then a penalty.

    Default policy used when the policy collaborator is not wired in.
    """

    free_until_days: int = 7
    penalty_percent: int = 100

    def __call__(self, lead_time: timedelta, total_cents: int) -> int:
        if lead_time >= timedelta(days=self.free_until_days):
            return total_cents
        return total_cents * (100 - self.penalty_percent) // 100


def clamp_refund(amount: int, total_cents: int) -> int:
    """Keep policy output within ``[0, total_cents]``."""
    return max(0, min(int(amount), total_cents))
