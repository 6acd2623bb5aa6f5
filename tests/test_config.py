"""Tests for environment-driven settings."""

from datetime import timedelta

import pytest

from hostly.config import Settings


def test_defaults():
    settings = Settings.from_env({})
    assert settings.hold_window == timedelta(minutes=10)
    assert settings.sweep_interval_seconds == 30
    assert settings.bookings_backend == "memory"
    assert settings.payments_backend == "inline"
    assert settings.app_role == "public"


def test_reads_environment():
    settings = Settings.from_env(
        {
            "HOLD_WINDOW_MINUTES": "15",
            "SWEEP_INTERVAL_SECONDS": "10",
            "LOCK_TIMEOUT_SECONDS": "0.5",
            "APP_ROLE": "worker",
            "BOOKINGS_BACKEND": "postgres",
            "DATABASE_URL": "postgresql://u:p@h/db",
            "INTERNAL_TASK_SECRET": "s3cret",
        }
    )
    assert settings.hold_window == timedelta(minutes=15)
    assert settings.sweep_interval_seconds == 10
    assert settings.lock_timeout_seconds == 0.5
    assert settings.app_role == "worker"
    assert settings.internal_task_secret == "s3cret"


@pytest.mark.parametrize(
    "env",
    [
        {"APP_ROLE": "admin"},
        {"BOOKINGS_BACKEND": "sqlite"},
        {"BOOKINGS_BACKEND": "postgres"},
        {"PAYMENTS_BACKEND": "stripe"},
        {"HOLD_WINDOW_MINUTES": "0"},
        {"HOLD_WINDOW_MINUTES": "ten"},
        {"LOCK_TIMEOUT_SECONDS": "-1"},
        {"ARCHIVE_AFTER_DAYS": "-5"},
        {"ARCHIVE_AFTER_DAYS": "0"},
    ],
)
def test_rejects_bad_values(env):
    with pytest.raises(RuntimeError):
        Settings.from_env(env)


def test_empty_values_fall_back_to_defaults():
    settings = Settings.from_env({"HOLD_WINDOW_MINUTES": "", "STRIPE_SECRET_KEY": ""})
    assert settings.hold_window_minutes == 10
    assert settings.stripe_secret_key is None
