from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from patient_reminders.reminder_store import ReminderRecord
from patient_reminders.schedule import (
    compute_next_trigger,
    describe_schedule,
    sunday_based_weekday,
)


def _reminder(**overrides: object) -> ReminderRecord:
    values: dict[str, object] = {
        "reminder_id": "rem-001",
        "patient_id": "patient-001",
        "schedule_type": "daily",
        "start_time": datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
        "title": "Take vitamins",
    }
    values.update(overrides)
    return ReminderRecord(**values)  # type: ignore[arg-type]


def test_once_reminder_deactivates_and_clears_next_trigger() -> None:
    reminder = _reminder(
        schedule_type="once",
        next_trigger_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
    )

    result = compute_next_trigger(reminder, datetime(2026, 3, 2, 9, 5, tzinfo=timezone.utc))

    assert result.active is False
    assert result.next_trigger_at is None


@pytest.mark.parametrize(
    ("schedule_type", "interval_minutes", "now"),
    [
        ("daily", 1440, datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)),
        ("daily", 1440, datetime(2026, 3, 9, 17, 45, tzinfo=timezone.utc)),
        ("daily", None, datetime(2026, 3, 4, 8, 59, tzinfo=timezone.utc)),
        ("custom", 90, datetime(2026, 3, 2, 13, 1, tzinfo=timezone.utc)),
        ("custom", 7, datetime(2026, 4, 1, 0, 0, tzinfo=timezone.utc)),
    ],
)
def test_interval_schedules_step_strictly_past_now_on_the_original_cadence(
    schedule_type: str,
    interval_minutes: int | None,
    now: datetime,
) -> None:
    base = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    reminder = _reminder(
        schedule_type=schedule_type,
        recurrence_interval_minutes=interval_minutes,
        next_trigger_at=base,
    )

    result = compute_next_trigger(reminder, now)

    assert result.active is True
    assert result.next_trigger_at is not None
    assert result.next_trigger_at > now
    interval = timedelta(minutes=interval_minutes or 1440)
    assert (result.next_trigger_at - base) % interval == timedelta(0)
    assert result.next_trigger_at - interval <= now


def test_interval_schedule_keeps_future_trigger_unchanged() -> None:
    future = datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc)
    reminder = _reminder(schedule_type="custom", recurrence_interval_minutes=60, next_trigger_at=future)

    result = compute_next_trigger(reminder, datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc))

    assert result.next_trigger_at == future


def test_interval_schedule_falls_back_to_start_time_without_next_trigger() -> None:
    reminder = _reminder(schedule_type="custom", recurrence_interval_minutes=120, next_trigger_at=None)

    result = compute_next_trigger(reminder, datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc))

    assert result.next_trigger_at == datetime(2026, 3, 2, 11, 0, tzinfo=timezone.utc)


def test_weekly_mon_wed_fri_from_tuesday_morning_lands_on_wednesday() -> None:
    reminder = _reminder(schedule_type="weekly", days_of_week=(1, 3, 5))
    tuesday = datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc)
    assert sunday_based_weekday(tuesday) == 2

    result = compute_next_trigger(reminder, tuesday)

    assert result.active is True
    assert result.next_trigger_at == datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc)


def test_weekly_same_day_before_start_time_fires_today() -> None:
    reminder = _reminder(schedule_type="weekly", days_of_week=(1,))
    monday_early = datetime(2026, 3, 9, 7, 30, tzinfo=timezone.utc)

    result = compute_next_trigger(reminder, monday_early)

    assert result.next_trigger_at == datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)


def test_weekly_without_days_uses_start_time_weekday() -> None:
    reminder = _reminder(schedule_type="weekly", days_of_week=())
    monday_late = datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)

    result = compute_next_trigger(reminder, monday_late)

    assert result.next_trigger_at == datetime(2026, 3, 16, 9, 0, tzinfo=timezone.utc)


def test_weekly_with_only_invalid_days_uses_start_time_weekday() -> None:
    reminder = _reminder(schedule_type="weekly", days_of_week=(7, -1))

    result = compute_next_trigger(reminder, datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))

    assert result.next_trigger_at == datetime(2026, 3, 16, 9, 0, tzinfo=timezone.utc)


def test_custom_without_interval_follows_the_weekly_rule() -> None:
    reminder = _reminder(schedule_type="custom", recurrence_interval_minutes=None, days_of_week=(5,))

    result = compute_next_trigger(reminder, datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc))

    assert result.next_trigger_at == datetime(2026, 3, 6, 9, 0, tzinfo=timezone.utc)


def test_naive_now_is_treated_as_utc() -> None:
    reminder = _reminder(schedule_type="daily", recurrence_interval_minutes=1440)

    result = compute_next_trigger(reminder, datetime(2026, 3, 2, 9, 0))

    assert result.next_trigger_at == datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)


def test_describe_schedule_labels() -> None:
    assert describe_schedule(_reminder(schedule_type="once")) == "Once"
    assert describe_schedule(_reminder(schedule_type="daily")) == "Daily"
    assert describe_schedule(_reminder(schedule_type="custom", recurrence_interval_minutes=480)) == "Every 8 hours"
    assert describe_schedule(_reminder(schedule_type="custom", recurrence_interval_minutes=45)) == "Every 45 minutes"
    assert describe_schedule(_reminder(schedule_type="weekly", days_of_week=(5, 1, 3))) == "Weekly: Mon, Wed, Fri"
