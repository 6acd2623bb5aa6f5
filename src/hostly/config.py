"""Runtime settings read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal, Mapping

AppRole = Literal["public", "worker"]

_ROLES = ("public", "worker")
_BOOKINGS_BACKENDS = ("memory", "postgres")
_PAYMENTS_BACKENDS = ("inline", "stripe")


@dataclass(frozen=True)
class Settings:
    """Booking core configuration.

    Attributes:
        hold_window_minutes: How long a new hold waits for payment.
        sweep_interval_seconds: Hold expirer tick period.
        lock_timeout_seconds: Max wait for a property's lock.
        lock_retry_attempts: Service-level retries on LockTimeout.
        availability_max_window_days: Widest availability query allowed.
        archive_after_days: Age after which finished stays leave the store.
        bookings_backend: "memory" or "postgres" (needs DATABASE_URL).
        payments_backend: "inline" or "stripe" (needs STRIPE_SECRET_KEY).
        property_catalog_url: Base URL of the property catalog service.
        internal_task_secret: Shared secret for /tasks/* calls, if set.
        app_role: "public" or "worker" (worker also mounts /tasks routes).
    """

    hold_window_minutes: int = 10
    sweep_interval_seconds: int = 30
    lock_timeout_seconds: float = 2.0
    lock_retry_attempts: int = 3
    availability_max_window_days: int = 365
    archive_after_days: int = 30
    bookings_backend: str = "memory"
    payments_backend: str = "inline"
    database_url: str | None = None
    property_catalog_url: str | None = None
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    internal_task_secret: str | None = None
    app_role: AppRole = "public"

    @property
    def hold_window(self) -> timedelta:
        return timedelta(minutes=self.hold_window_minutes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Load settings, validating values.

        Raises:
            RuntimeError: On malformed or inconsistent values.
        """
        env = os.environ if environ is None else environ

        settings = cls(
            hold_window_minutes=_int(env, "HOLD_WINDOW_MINUTES", 10),
            sweep_interval_seconds=_int(env, "SWEEP_INTERVAL_SECONDS", 30),
            lock_timeout_seconds=_float(env, "LOCK_TIMEOUT_SECONDS", 2.0),
            lock_retry_attempts=_int(env, "LOCK_RETRY_ATTEMPTS", 3),
            availability_max_window_days=_int(env, "AVAILABILITY_MAX_WINDOW_DAYS", 365),
            archive_after_days=_int(env, "ARCHIVE_AFTER_DAYS", 30),
            bookings_backend=env.get("BOOKINGS_BACKEND", "memory"),
            payments_backend=env.get("PAYMENTS_BACKEND", "inline"),
            database_url=env.get("DATABASE_URL") or None,
            property_catalog_url=env.get("PROPERTY_CATALOG_URL") or None,
            stripe_secret_key=env.get("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET") or None,
            internal_task_secret=env.get("INTERNAL_TASK_SECRET") or None,
            app_role=env.get("APP_ROLE", "public"),  # type: ignore[arg-type]
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.app_role not in _ROLES:
            raise RuntimeError(f"Unknown APP_ROLE: {self.app_role}")
        if self.bookings_backend not in _BOOKINGS_BACKENDS:
            raise RuntimeError(f"Unknown BOOKINGS_BACKEND: {self.bookings_backend}")
        if self.payments_backend not in _PAYMENTS_BACKENDS:
            raise RuntimeError(f"Unknown PAYMENTS_BACKEND: {self.payments_backend}")
        if self.bookings_backend == "postgres" and not self.database_url:
            raise RuntimeError("BOOKINGS_BACKEND=postgres requires DATABASE_URL")
        if self.payments_backend == "stripe" and not self.stripe_secret_key:
            raise RuntimeError("PAYMENTS_BACKEND=stripe requires STRIPE_SECRET_KEY")
        for name in (
            "hold_window_minutes",
            "sweep_interval_seconds",
            "lock_retry_attempts",
            "availability_max_window_days",
            "archive_after_days",
        ):
            if getattr(self, name) < 1:
                raise RuntimeError(f"{name} must be positive")
        if self.lock_timeout_seconds <= 0:
            raise RuntimeError("lock_timeout_seconds must be positive")


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{key} must be an integer, got {raw!r}") from e


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{key} must be a number, got {raw!r}") from e
