"""Hold Expirer - periodic reclamation of unpaid holds.

Each tick lists bookings still ``requested`` whose hold deadline passed and
runs expire_sweep on each. expire_sweep re-checks its guard under the
property lock, so a booking confirmed or cancelled in the meantime is a
no-op, and a booking that errors is simply picked up again next tick.

The tick also archives confirmed records that ended long ago so the
Interval Store only carries intervals relevant to new bookings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from hostly.domain.booking_state_machine import BookingStateMachine
from hostly.domain.reservation_manager import ReservationManager
from hostly.infra.repositories.bookings_repository import BookingRepository
from hostly.infra.time import Clock, utc_now
from hostly.observability.correlation import correlation_scope
from hostly.observability.logging import get_logger, log_fields

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 30
DEFAULT_BATCH_SIZE = 500
DEFAULT_ARCHIVE_AFTER_DAYS = 30


@dataclass
class SweepResult:
    """Outcome of one expirer tick."""

    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    failed: list[str] = field(default_factory=list)
    archived: int = 0

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "expired": self.expired,
            "skipped": self.skipped,
            "failed": len(self.failed),
            "archived": self.archived,
        }


class HoldExpirer:
    """Runs sweep_once on a fixed interval in a background thread.

    Args:
        state_machine: Applies expire_sweep per booking.
        repository: Lists bookings with due holds.
        manager: Used to archive past confirmed records.
        interval_seconds: Tick period.
        batch_size: Max bookings per tick; the rest wait for the next one.
        archive_after_days: Age after which finished stays leave the store.
        clock: Source of "now".
    """

    def __init__(
        self,
        state_machine: BookingStateMachine,
        repository: BookingRepository,
        manager: ReservationManager,
        *,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        archive_after_days: int = DEFAULT_ARCHIVE_AFTER_DAYS,
        clock: Clock = utc_now,
    ) -> None:
        self._state_machine = state_machine
        self._repo = repository
        self._manager = manager
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size
        self._archive_after = timedelta(days=archive_after_days)
        self._clock = clock
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._running = False

    def start(self) -> None:
        """Start the background sweep job."""
        if self._running:
            logger.warning("hold expirer already running")
            return

        self._scheduler.add_job(
            self.sweep_once,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id="expire_holds",
            replace_existing=True,
            max_instances=1,  # ticks never overlap
            coalesce=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "hold expirer started",
            extra=log_fields(interval_seconds=self._interval_seconds),
        )

    def stop(self) -> None:
        """Stop the background sweep job."""
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("hold expirer stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def sweep_once(self) -> SweepResult:
        """Run one tick. Never raises; failures are retried next tick."""
        result = SweepResult()
        with correlation_scope():
            now = self._clock()
            try:
                due = self._repo.list_expired_holds(now, limit=self._batch_size)
            except Exception:
                logger.exception("hold sweep could not list due holds")
                return result

            result.scanned = len(due)
            for booking in due:
                try:
                    if self._state_machine.expire_sweep(booking.id):
                        result.expired += 1
                    else:
                        result.skipped += 1
                except Exception:
                    result.failed.append(booking.id)
                    logger.exception(
                        "hold sweep failed for booking",
                        extra=log_fields(
                            booking_id=booking.id, property_id=booking.property_id
                        ),
                    )

            try:
                result.archived = self._manager.archive_ended(
                    (now - self._archive_after).date()
                )
            except Exception:
                logger.exception("archiving past reservations failed")

            if result.scanned or result.archived:
                logger.info("hold sweep finished", extra=log_fields(**result.to_dict()))
        return result
