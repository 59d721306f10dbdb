from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from patient_reminders import api as api_module
from patient_reminders.main import create_app
from patient_reminders.reminder_store import InMemoryReminderRepository, SqlAlchemyReminderRepository


def _set_env(overrides: dict[str, str | None]) -> dict[str, str | None]:
    previous: dict[str, str | None] = {}
    for key, value in overrides.items():
        previous[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return previous


def _restore_env(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def test_create_app_starts_with_defaults() -> None:
    previous = _set_env(
        {
            "REMINDER_STORE_BACKEND": None,
            "DATABASE_URL": None,
            "CONFIG_GUARD_MODE": None,
            "REMINDERS_APP_NAME": None,
        }
    )
    try:
        app = create_app()
        assert app.title == "Patient Reminders"
        assert isinstance(api_module.reminder_repo, InMemoryReminderRepository)
        assert set(api_module.channel_dispatchers) == {"email", "push", "sms", "webhook"}
    finally:
        _restore_env(previous)


def test_create_app_blocks_postgres_without_database_url() -> None:
    previous = _set_env(
        {
            "REMINDER_STORE_BACKEND": "postgres",
            "DATABASE_URL": None,
            "CONFIG_GUARD_MODE": "enforce",
        }
    )
    try:
        with pytest.raises(RuntimeError) as exc_info:
            create_app()
        message = str(exc_info.value)
        assert "DATABASE_URL is required" in message
        assert "REMINDER_STORE_BACKEND=inmemory" in message
    finally:
        _restore_env(previous)


def test_create_app_uses_database_url_for_persistent_store(tmp_path: Path) -> None:
    previous = _set_env(
        {
            "REMINDER_STORE_BACKEND": "postgres",
            "DATABASE_URL": f"sqlite:///{tmp_path / 'startup.db'}",
            "CONFIG_GUARD_MODE": "enforce",
        }
    )
    try:
        create_app()
        assert isinstance(api_module.reminder_repo, SqlAlchemyReminderRepository)
    finally:
        _restore_env(previous)


def test_warn_mode_logs_missing_endpoints(caplog: pytest.LogCaptureFixture) -> None:
    previous = _set_env(
        {
            "REMINDER_STORE_BACKEND": None,
            "CONFIG_GUARD_MODE": "warn",
            "REMINDER_EMAIL_ENDPOINT": None,
            "REMINDER_PUSH_ENDPOINT": None,
            "REMINDER_SMS_ENDPOINT": None,
            "REMINDER_WEBHOOK_ENDPOINT": None,
        }
    )
    try:
        with caplog.at_level(logging.WARNING, logger="patient_reminders"):
            create_app()
        assert any("no notification endpoint is configured" in record.getMessage() for record in caplog.records)
    finally:
        _restore_env(previous)
