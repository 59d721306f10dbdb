from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

ScheduleType = Literal["once", "daily", "weekly", "custom"]
OutcomeStatus = Literal["sent", "partial", "failed", "skipped", "error"]


def _normalize_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_days(value: list[int]) -> list[int]:
    normalized: list[int] = []
    for day in value:
        if day < 0 or day > 6:
            raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        if day not in normalized:
            normalized.append(day)
    return sorted(normalized)


def _validate_timezone(value: str) -> str:
    name = value.strip()
    if not name:
        return "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {name}") from exc
    return name


class DispatchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reminder_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("reminderId", "reminder_id"),
    )


class ChannelAttemptItem(BaseModel):
    type: str
    target: str | None = None
    success: bool
    error: str | None = None


class _CamelResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ReminderDispatchResponse(_CamelResponse):
    reminder_id: str = Field(alias="reminderId")
    status: OutcomeStatus
    skipped: bool = False
    reason: str | None = None
    next_trigger_at: datetime | None = Field(default=None, alias="nextTriggerAt")
    active: bool | None = None
    error: str | None = None
    attempts: list[ChannelAttemptItem] = Field(default_factory=list)


class ReminderDispatchResult(_CamelResponse):
    reminder_id: str = Field(alias="reminderId")
    status: OutcomeStatus
    deliveries: int
    next_trigger_at: datetime | None = Field(default=None, alias="nextTriggerAt")
    active: bool | None = None
    reason: str | None = None
    error: str | None = None
    attempts: list[ChannelAttemptItem] = Field(default_factory=list)


class DispatchCycleResponse(_CamelResponse):
    processed: int
    ran_at: datetime = Field(alias="ranAt")
    results: list[ReminderDispatchResult]


class PatientContactRequest(BaseModel):
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=32)
    push_token: str | None = Field(default=None, max_length=512)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        if "@" not in normalized:
            raise ValueError("email must contain '@'")
        return normalized


class PatientContactResponse(BaseModel):
    patient_id: str
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None


class ReminderCreateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=256)
    message: str | None = None
    content: str | None = None
    body: str | None = None
    medication_name: str | None = Field(default=None, max_length=256)
    dosage: str | None = Field(default=None, max_length=128)
    instructions: str | None = None
    schedule_type: ScheduleType = "daily"
    start_time: datetime
    recurrence_interval_minutes: int | None = Field(default=None, ge=1, le=525600)
    days_of_week: list[int] = Field(default_factory=list)
    timezone: str = "UTC"
    channels: Any = None
    notify_email: bool = True
    notify_push: bool = False

    @field_validator("start_time")
    @classmethod
    def _normalize_start_time(cls, value: datetime) -> datetime:
        return _normalize_utc(value)  # type: ignore[return-value]

    @field_validator("days_of_week")
    @classmethod
    def _check_days_of_week(cls, value: list[int]) -> list[int]:
        return _normalize_days(value)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return _validate_timezone(value)

    @model_validator(mode="after")
    def _validate_schedule(self) -> ReminderCreateRequest:
        if self.schedule_type == "custom" and not self.recurrence_interval_minutes:
            raise ValueError("recurrence_interval_minutes is required for custom schedules")
        if self.schedule_type == "daily" and self.recurrence_interval_minutes is None:
            self.recurrence_interval_minutes = 1440
        if self.schedule_type in {"once", "weekly"}:
            self.recurrence_interval_minutes = None
        if self.schedule_type != "weekly":
            self.days_of_week = []
        if not any((self.title, self.message, self.content, self.body, self.medication_name)):
            raise ValueError("a reminder needs a title, message, content, body, or medication_name")
        return self


class ReminderUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=256)
    message: str | None = None
    content: str | None = None
    body: str | None = None
    medication_name: str | None = Field(default=None, max_length=256)
    dosage: str | None = Field(default=None, max_length=128)
    instructions: str | None = None
    active: bool | None = None
    notify_email: bool | None = None
    notify_push: bool | None = None
    channels: Any = None
    timezone: str | None = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        return None if value is None else _validate_timezone(value)


class ReminderItem(BaseModel):
    reminder_id: str
    patient_id: str
    title: str | None = None
    message: str | None = None
    content: str | None = None
    body: str | None = None
    medication_name: str | None = None
    dosage: str | None = None
    instructions: str | None = None
    schedule_type: ScheduleType
    schedule_description: str
    start_time: datetime
    recurrence_interval_minutes: int | None = None
    days_of_week: list[int] = Field(default_factory=list)
    timezone: str
    active: bool
    next_trigger_at: datetime | None = None
    last_triggered_at: datetime | None = None
    channels: Any = None
    notify_email: bool
    notify_push: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReminderListResponse(BaseModel):
    items: list[ReminderItem]


class DeliveryAttemptItem(BaseModel):
    attempt_id: int
    reminder_id: str
    channel: str
    target: str | None = None
    status: Literal["sent", "failed"]
    error: str | None = None
    provider: str | None = None
    attempted_at: datetime


class DeliveryAttemptListResponse(BaseModel):
    items: list[DeliveryAttemptItem]
