from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from patient_reminders.reminder_store import (
    InMemoryReminderRepository,
    PatientContact,
    ReminderNotFoundError,
    ReminderRecord,
    SqlAlchemyReminderRepository,
    create_reminder_repository,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def repository(tmp_path: Path) -> SqlAlchemyReminderRepository:
    return SqlAlchemyReminderRepository(f"sqlite:///{tmp_path / 'reminders.db'}")


def _reminder(**overrides: object) -> ReminderRecord:
    values: dict[str, object] = {
        "reminder_id": "rem-001",
        "patient_id": "patient-001",
        "schedule_type": "weekly",
        "start_time": NOW,
        "next_trigger_at": NOW,
        "days_of_week": (1, 3, 5),
        "title": "Physio session",
        "channels": [{"type": "push", "target": "tok1"}, "email"],
        "notify_email": True,
    }
    values.update(overrides)
    return ReminderRecord(**values)  # type: ignore[arg-type]


def test_reminder_round_trip_keeps_schedule_and_channels(repository: SqlAlchemyReminderRepository) -> None:
    saved = repository.save_reminder(_reminder())

    loaded = repository.get_reminder("rem-001")

    assert loaded is not None
    assert loaded == saved
    assert loaded.days_of_week == (1, 3, 5)
    assert loaded.channels == [{"type": "push", "target": "tok1"}, "email"]
    assert loaded.start_time.tzinfo is not None
    assert loaded.created_at is not None


def test_due_selection_filters_and_orders(repository: SqlAlchemyReminderRepository) -> None:
    repository.save_reminder(_reminder(reminder_id="rem-late", next_trigger_at=NOW - timedelta(minutes=1)))
    repository.save_reminder(_reminder(reminder_id="rem-early", next_trigger_at=NOW - timedelta(hours=1)))
    repository.save_reminder(_reminder(reminder_id="rem-future", next_trigger_at=NOW + timedelta(minutes=1)))
    repository.save_reminder(_reminder(reminder_id="rem-off", active=False, next_trigger_at=NOW - timedelta(days=1)))
    repository.save_reminder(_reminder(reminder_id="rem-none", next_trigger_at=None))

    due = repository.list_due_reminders(NOW, limit=10)

    assert [value.reminder_id for value in due] == ["rem-early", "rem-late"]
    assert [value.reminder_id for value in repository.list_due_reminders(NOW, limit=1)] == ["rem-early"]


def test_update_trigger_state_and_missing_reminder(repository: SqlAlchemyReminderRepository) -> None:
    repository.save_reminder(_reminder())

    repository.update_trigger_state("rem-001", next_trigger_at=None, active=False, last_triggered_at=NOW)

    stored = repository.get_reminder("rem-001")
    assert stored is not None
    assert stored.active is False
    assert stored.next_trigger_at is None
    assert stored.last_triggered_at == NOW
    with pytest.raises(ReminderNotFoundError):
        repository.update_trigger_state("missing", next_trigger_at=None, active=False, last_triggered_at=NOW)


def test_delivery_attempts_round_trip_and_cascade_on_delete(repository: SqlAlchemyReminderRepository) -> None:
    repository.save_reminder(_reminder())
    for channel, status in (("push", "sent"), ("email", "failed")):
        repository.insert_delivery_attempt(
            reminder_id="rem-001",
            patient_id="patient-001",
            channel=channel,
            target="tok1" if channel == "push" else None,
            status=status,  # type: ignore[arg-type]
            error=None if status == "sent" else "email provider responded with HTTP 500",
            provider=None,
            payload={"title": "Physio session"},
            provider_response={"id": "msg-1"} if status == "sent" else "Internal Server Error",
            attempted_at=NOW,
        )

    attempts = repository.list_delivery_attempts("rem-001")
    assert [(value.channel, value.status) for value in attempts] == [("push", "sent"), ("email", "failed")]
    assert attempts[0].payload == {"title": "Physio session"}
    assert attempts[1].provider_response == "Internal Server Error"
    assert attempts[0].attempted_at == NOW
    recent = repository.list_patient_delivery_attempts("patient-001", limit=1)
    assert [value.channel for value in recent] == ["email"]

    assert repository.delete_reminder("rem-001") is True
    assert repository.list_delivery_attempts("rem-001") == []
    assert repository.delete_reminder("rem-001") is False


def test_patient_contact_upsert(repository: SqlAlchemyReminderRepository) -> None:
    repository.save_patient_contact(PatientContact(patient_id="patient-001", email="pat@example.com"))
    repository.save_patient_contact(PatientContact(patient_id="patient-001", email="new@example.com", push_token="tok1"))

    contact = repository.get_patient_contact("patient-001")

    assert contact == PatientContact(patient_id="patient-001", email="new@example.com", push_token="tok1")
    assert repository.get_patient_contact("patient-002") is None


def test_patient_listing_orders_by_next_trigger_with_nulls_last(repository: SqlAlchemyReminderRepository) -> None:
    repository.save_reminder(_reminder(reminder_id="rem-b", next_trigger_at=NOW + timedelta(hours=2)))
    repository.save_reminder(_reminder(reminder_id="rem-none", next_trigger_at=None))
    repository.save_reminder(_reminder(reminder_id="rem-a", next_trigger_at=NOW + timedelta(hours=1)))
    repository.save_reminder(_reminder(reminder_id="rem-other", patient_id="patient-002"))

    listed = repository.list_patient_reminders("patient-001")

    assert [value.reminder_id for value in listed] == ["rem-a", "rem-b", "rem-none"]


def test_reset_clears_everything(repository: SqlAlchemyReminderRepository) -> None:
    repository.save_reminder(_reminder())
    repository.save_patient_contact(PatientContact(patient_id="patient-001", email="pat@example.com"))

    repository.reset()

    assert repository.get_reminder("rem-001") is None
    assert repository.get_patient_contact("patient-001") is None


def test_repository_factory() -> None:
    assert isinstance(create_reminder_repository(backend="inmemory", database_url=""), InMemoryReminderRepository)
    with pytest.raises(RuntimeError):
        create_reminder_repository(backend="postgres", database_url="")
    with pytest.raises(RuntimeError):
        create_reminder_repository(backend="redis", database_url="")
