"""Next-trigger computation for recurring reminders.

All arithmetic happens in UTC: the weekly rule takes the time of day from
``start_time`` expressed in UTC and applies it to candidate days in UTC, so
calendar offset transitions never shift a trigger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .reminder_store import ReminderRecord

DEFAULT_DAILY_INTERVAL_MINUTES = 1440
WEEKLY_SCAN_DAYS = 14
DAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


@dataclass(frozen=True)
class NextTrigger:
    next_trigger_at: datetime | None
    active: bool


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sunday_based_weekday(value: datetime) -> int:
    """Weekday with Sunday as 0, matching the stored ``days_of_week`` values."""
    return (value.weekday() + 1) % 7


def _step_past(base: datetime, now: datetime, interval: timedelta) -> datetime:
    if base > now:
        return base
    steps = (now - base) // interval + 1
    return base + steps * interval


def _next_weekly(reminder: ReminderRecord, now: datetime) -> datetime:
    start = _as_utc(reminder.start_time)
    days = {value for value in reminder.days_of_week if 0 <= value <= 6}
    if not days:
        days = {sunday_based_weekday(start)}

    anchor = now.replace(hour=start.hour, minute=start.minute, second=start.second, microsecond=0)
    for offset in range(WEEKLY_SCAN_DAYS + 1):
        candidate = anchor + timedelta(days=offset)
        if candidate > now and sunday_based_weekday(candidate) in days:
            return candidate
    return anchor + timedelta(days=7)


def compute_next_trigger(reminder: ReminderRecord, now: datetime) -> NextTrigger:
    """Return the next instant strictly after ``now`` at which ``reminder`` fires.

    One-shot reminders deactivate. Interval schedules step forward from the
    current ``next_trigger_at`` (or ``start_time``) by whole intervals, so a
    late cycle catches up without drifting off the original cadence.
    """
    now = _as_utc(now)
    if reminder.schedule_type == "once":
        return NextTrigger(next_trigger_at=None, active=False)

    base = _as_utc(reminder.next_trigger_at or reminder.start_time)
    interval_minutes = reminder.recurrence_interval_minutes

    if reminder.schedule_type == "custom" and interval_minutes and interval_minutes > 0:
        return NextTrigger(
            next_trigger_at=_step_past(base, now, timedelta(minutes=interval_minutes)),
            active=True,
        )

    if reminder.schedule_type == "daily":
        if not interval_minutes or interval_minutes <= 0:
            interval_minutes = DEFAULT_DAILY_INTERVAL_MINUTES
        return NextTrigger(
            next_trigger_at=_step_past(base, now, timedelta(minutes=interval_minutes)),
            active=True,
        )

    # weekly, and custom schedules without a usable interval
    return NextTrigger(next_trigger_at=_next_weekly(reminder, now), active=True)


def initial_trigger(start_time: datetime) -> datetime:
    return _as_utc(start_time)


def describe_schedule(reminder: ReminderRecord) -> str:
    if reminder.schedule_type == "once":
        return "Once"
    if reminder.schedule_type == "daily":
        return "Daily"
    if reminder.schedule_type == "custom" and reminder.recurrence_interval_minutes:
        minutes = reminder.recurrence_interval_minutes
        if minutes % 60 == 0:
            hours = minutes // 60
            return f"Every {hours} hour" if hours == 1 else f"Every {hours} hours"
        return f"Every {minutes} minutes"
    days = sorted({value for value in reminder.days_of_week if 0 <= value <= 6})
    if not days:
        days = [sunday_based_weekday(_as_utc(reminder.start_time))]
    return "Weekly: " + ", ".join(DAY_LABELS[value] for value in days)
