from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from itertools import count
from threading import Lock
from typing import Any, Literal, Protocol

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker


ScheduleType = Literal["once", "daily", "weekly", "custom"]
AttemptStatus = Literal["sent", "failed"]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_optional_utc(value: datetime | None) -> datetime | None:
    return _coerce_utc(value) if value is not None else None


class ReminderNotFoundError(KeyError):
    """Raised when an operation references a reminder id that does not exist."""


class ReminderStoreError(RuntimeError):
    """Raised when the backing store fails to read or write."""


@dataclass(frozen=True)
class ReminderRecord:
    reminder_id: str
    patient_id: str
    schedule_type: ScheduleType
    start_time: datetime
    title: str | None = None
    message: str | None = None
    content: str | None = None
    body: str | None = None
    medication_name: str | None = None
    dosage: str | None = None
    instructions: str | None = None
    recurrence_interval_minutes: int | None = None
    days_of_week: tuple[int, ...] = ()
    timezone: str = "UTC"
    active: bool = True
    next_trigger_at: datetime | None = None
    last_triggered_at: datetime | None = None
    channels: object = None
    notify_email: bool = False
    notify_push: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PatientContact:
    patient_id: str
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None


@dataclass(frozen=True)
class DeliveryAttemptRecord:
    attempt_id: int
    reminder_id: str
    patient_id: str
    channel: str
    target: str | None
    status: AttemptStatus
    error: str | None
    provider: str | None
    payload: object
    provider_response: object
    attempted_at: datetime


class ReminderRepository(Protocol):
    def reset(self) -> None: ...

    def get_reminder(self, reminder_id: str) -> ReminderRecord | None: ...

    def list_due_reminders(self, now: datetime, *, limit: int) -> list[ReminderRecord]: ...

    def list_patient_reminders(self, patient_id: str) -> list[ReminderRecord]: ...

    def save_reminder(self, reminder: ReminderRecord) -> ReminderRecord: ...

    def delete_reminder(self, reminder_id: str) -> bool: ...

    def update_trigger_state(
        self,
        reminder_id: str,
        *,
        next_trigger_at: datetime | None,
        active: bool,
        last_triggered_at: datetime,
    ) -> None: ...

    def insert_delivery_attempt(
        self,
        *,
        reminder_id: str,
        patient_id: str,
        channel: str,
        target: str | None,
        status: AttemptStatus,
        error: str | None,
        provider: str | None,
        payload: object,
        provider_response: object,
        attempted_at: datetime,
    ) -> DeliveryAttemptRecord: ...

    def list_delivery_attempts(self, reminder_id: str) -> list[DeliveryAttemptRecord]: ...

    def list_patient_delivery_attempts(self, patient_id: str, *, limit: int) -> list[DeliveryAttemptRecord]: ...

    def get_patient_contact(self, patient_id: str) -> PatientContact | None: ...

    def save_patient_contact(self, contact: PatientContact) -> PatientContact: ...


def _patient_order_key(reminder: ReminderRecord) -> tuple[int, float, float]:
    # next trigger ascending with nulls last, then newest first
    next_at = reminder.next_trigger_at
    created = reminder.created_at
    return (
        1 if next_at is None else 0,
        next_at.timestamp() if next_at is not None else 0.0,
        -created.timestamp() if created is not None else 0.0,
    )


class InMemoryReminderRepository:
    def __init__(self) -> None:
        self._lock = Lock()
        self._reminders: dict[str, ReminderRecord] = {}
        self._contacts: dict[str, PatientContact] = {}
        self._attempts: list[DeliveryAttemptRecord] = []
        self._attempt_ids = count(1)

    def reset(self) -> None:
        with self._lock:
            self._reminders.clear()
            self._contacts.clear()
            self._attempts.clear()
            self._attempt_ids = count(1)

    def get_reminder(self, reminder_id: str) -> ReminderRecord | None:
        with self._lock:
            return self._reminders.get(reminder_id)

    def list_due_reminders(self, now: datetime, *, limit: int) -> list[ReminderRecord]:
        cutoff = _coerce_utc(now)
        with self._lock:
            due = [
                value
                for value in self._reminders.values()
                if value.active and value.next_trigger_at is not None and value.next_trigger_at <= cutoff
            ]
        due.sort(key=lambda value: value.next_trigger_at)  # type: ignore[arg-type, return-value]
        return due[:limit]

    def list_patient_reminders(self, patient_id: str) -> list[ReminderRecord]:
        with self._lock:
            rows = [value for value in self._reminders.values() if value.patient_id == patient_id]
        return sorted(rows, key=_patient_order_key)

    def save_reminder(self, reminder: ReminderRecord) -> ReminderRecord:
        now = _now_utc()
        with self._lock:
            existing = self._reminders.get(reminder.reminder_id)
            stored = replace(
                reminder,
                created_at=(existing.created_at if existing is not None else None) or reminder.created_at or now,
                updated_at=now,
            )
            self._reminders[reminder.reminder_id] = stored
            return stored

    def delete_reminder(self, reminder_id: str) -> bool:
        with self._lock:
            if self._reminders.pop(reminder_id, None) is None:
                return False
            self._attempts = [value for value in self._attempts if value.reminder_id != reminder_id]
            return True

    def update_trigger_state(
        self,
        reminder_id: str,
        *,
        next_trigger_at: datetime | None,
        active: bool,
        last_triggered_at: datetime,
    ) -> None:
        with self._lock:
            row = self._reminders.get(reminder_id)
            if row is None:
                raise ReminderNotFoundError(reminder_id)
            self._reminders[reminder_id] = replace(
                row,
                next_trigger_at=next_trigger_at,
                active=active,
                last_triggered_at=last_triggered_at,
                updated_at=_now_utc(),
            )

    def insert_delivery_attempt(
        self,
        *,
        reminder_id: str,
        patient_id: str,
        channel: str,
        target: str | None,
        status: AttemptStatus,
        error: str | None,
        provider: str | None,
        payload: object,
        provider_response: object,
        attempted_at: datetime,
    ) -> DeliveryAttemptRecord:
        with self._lock:
            record = DeliveryAttemptRecord(
                attempt_id=next(self._attempt_ids),
                reminder_id=reminder_id,
                patient_id=patient_id,
                channel=channel,
                target=target,
                status=status,
                error=error,
                provider=provider,
                payload=payload,
                provider_response=provider_response,
                attempted_at=attempted_at,
            )
            self._attempts.append(record)
            return record

    def list_delivery_attempts(self, reminder_id: str) -> list[DeliveryAttemptRecord]:
        with self._lock:
            return [value for value in self._attempts if value.reminder_id == reminder_id]

    def list_patient_delivery_attempts(self, patient_id: str, *, limit: int) -> list[DeliveryAttemptRecord]:
        with self._lock:
            rows = [value for value in self._attempts if value.patient_id == patient_id]
        rows.sort(key=lambda value: (value.attempted_at, value.attempt_id), reverse=True)
        return rows[:limit]

    def get_patient_contact(self, patient_id: str) -> PatientContact | None:
        with self._lock:
            return self._contacts.get(patient_id)

    def save_patient_contact(self, contact: PatientContact) -> PatientContact:
        with self._lock:
            self._contacts[contact.patient_id] = contact
            return contact


class RemindersBase(DeclarativeBase):
    pass


class _PatientContactRow(RemindersBase):
    __tablename__ = "patient_contacts"

    patient_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    push_token: Mapped[str | None] = mapped_column(String(512), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _ReminderScheduleRow(RemindersBase):
    __tablename__ = "reminder_schedules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(256), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    medication_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    dosage: Mapped[str | None] = mapped_column(String(128), nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    schedule_type: Mapped[str] = mapped_column(String(16), nullable=False, default="once")
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    recurrence_interval_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    days_of_week: Mapped[Any] = mapped_column(JSON, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    next_trigger_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    channels: Mapped[Any] = mapped_column(JSON, nullable=True)
    notify_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notify_push: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _ReminderNotificationRow(RemindersBase):
    __tablename__ = "reminder_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reminder_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("reminder_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(16), nullable=False)
    target: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_response_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _dump_json(value: object) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _load_json(value: str | None) -> object:
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def _reminder_from_row(row: _ReminderScheduleRow) -> ReminderRecord:
    return ReminderRecord(
        reminder_id=row.id,
        patient_id=row.patient_id,
        title=row.title,
        message=row.message,
        content=row.content,
        body=row.body,
        medication_name=row.medication_name,
        dosage=row.dosage,
        instructions=row.instructions,
        schedule_type=row.schedule_type,  # type: ignore[arg-type]
        start_time=_coerce_utc(row.start_time),
        recurrence_interval_minutes=row.recurrence_interval_minutes,
        days_of_week=tuple(int(value) for value in (row.days_of_week or [])),
        timezone=row.timezone,
        active=row.active,
        next_trigger_at=_coerce_optional_utc(row.next_trigger_at),
        last_triggered_at=_coerce_optional_utc(row.last_triggered_at),
        channels=row.channels,
        notify_email=row.notify_email,
        notify_push=row.notify_push,
        created_at=_coerce_utc(row.created_at),
        updated_at=_coerce_utc(row.updated_at),
    )


def _attempt_from_row(row: _ReminderNotificationRow) -> DeliveryAttemptRecord:
    return DeliveryAttemptRecord(
        attempt_id=row.id,
        reminder_id=row.reminder_id,
        patient_id=row.patient_id,
        channel=row.channel,
        target=row.target,
        status=row.status,  # type: ignore[arg-type]
        error=row.error,
        provider=row.provider,
        payload=_load_json(row.payload_json),
        provider_response=_load_json(row.provider_response_json),
        attempted_at=_coerce_utc(row.sent_at),
    )


class SqlAlchemyReminderRepository:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for REMINDER_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            RemindersBase.metadata.create_all(self._engine)

    def _session(self):
        return self._session_factory()

    def reset(self) -> None:
        try:
            with self._session() as session:
                with session.begin():
                    session.query(_ReminderNotificationRow).delete()
                    session.query(_ReminderScheduleRow).delete()
                    session.query(_PatientContactRow).delete()
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to reset reminder store: {exc}") from exc

    def get_reminder(self, reminder_id: str) -> ReminderRecord | None:
        try:
            with self._session() as session:
                row = session.get(_ReminderScheduleRow, reminder_id)
                return _reminder_from_row(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to load reminder {reminder_id}: {exc}") from exc

    def list_due_reminders(self, now: datetime, *, limit: int) -> list[ReminderRecord]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(_ReminderScheduleRow)
                    .where(_ReminderScheduleRow.active.is_(True))
                    .where(_ReminderScheduleRow.next_trigger_at.is_not(None))
                    .where(_ReminderScheduleRow.next_trigger_at <= _coerce_utc(now))
                    .order_by(_ReminderScheduleRow.next_trigger_at.asc())
                    .limit(limit)
                ).scalars()
                return [_reminder_from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to load due reminders: {exc}") from exc

    def list_patient_reminders(self, patient_id: str) -> list[ReminderRecord]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(_ReminderScheduleRow).where(_ReminderScheduleRow.patient_id == patient_id)
                ).scalars()
                return sorted((_reminder_from_row(row) for row in rows), key=_patient_order_key)
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to list reminders for patient {patient_id}: {exc}") from exc

    def save_reminder(self, reminder: ReminderRecord) -> ReminderRecord:
        now = _now_utc()
        values = {
            "patient_id": reminder.patient_id,
            "title": reminder.title,
            "message": reminder.message,
            "content": reminder.content,
            "body": reminder.body,
            "medication_name": reminder.medication_name,
            "dosage": reminder.dosage,
            "instructions": reminder.instructions,
            "schedule_type": reminder.schedule_type,
            "start_time": _coerce_utc(reminder.start_time),
            "recurrence_interval_minutes": reminder.recurrence_interval_minutes,
            "days_of_week": list(reminder.days_of_week),
            "timezone": reminder.timezone,
            "active": reminder.active,
            "next_trigger_at": _coerce_optional_utc(reminder.next_trigger_at),
            "last_triggered_at": _coerce_optional_utc(reminder.last_triggered_at),
            "channels": reminder.channels,
            "notify_email": reminder.notify_email,
            "notify_push": reminder.notify_push,
            "updated_at": now,
        }
        try:
            with self._session() as session:
                with session.begin():
                    row = session.get(_ReminderScheduleRow, reminder.reminder_id)
                    if row is None:
                        row = _ReminderScheduleRow(
                            id=reminder.reminder_id,
                            created_at=reminder.created_at or now,
                            **values,
                        )
                        session.add(row)
                    else:
                        for key, value in values.items():
                            setattr(row, key, value)
                    session.flush()
                    return _reminder_from_row(row)
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to save reminder {reminder.reminder_id}: {exc}") from exc

    def delete_reminder(self, reminder_id: str) -> bool:
        try:
            with self._session() as session:
                with session.begin():
                    row = session.get(_ReminderScheduleRow, reminder_id)
                    if row is None:
                        return False
                    session.query(_ReminderNotificationRow).filter(
                        _ReminderNotificationRow.reminder_id == reminder_id
                    ).delete()
                    session.delete(row)
                    return True
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to delete reminder {reminder_id}: {exc}") from exc

    def update_trigger_state(
        self,
        reminder_id: str,
        *,
        next_trigger_at: datetime | None,
        active: bool,
        last_triggered_at: datetime,
    ) -> None:
        try:
            with self._session() as session:
                with session.begin():
                    row = session.get(_ReminderScheduleRow, reminder_id)
                    if row is None:
                        raise ReminderNotFoundError(reminder_id)
                    row.next_trigger_at = _coerce_optional_utc(next_trigger_at)
                    row.active = active
                    row.last_triggered_at = _coerce_utc(last_triggered_at)
                    row.updated_at = _now_utc()
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to update reminder {reminder_id}: {exc}") from exc

    def insert_delivery_attempt(
        self,
        *,
        reminder_id: str,
        patient_id: str,
        channel: str,
        target: str | None,
        status: AttemptStatus,
        error: str | None,
        provider: str | None,
        payload: object,
        provider_response: object,
        attempted_at: datetime,
    ) -> DeliveryAttemptRecord:
        try:
            with self._session() as session:
                with session.begin():
                    row = _ReminderNotificationRow(
                        reminder_id=reminder_id,
                        patient_id=patient_id,
                        channel=channel,
                        target=target,
                        status=status,
                        error=error,
                        provider=provider,
                        payload_json=_dump_json(payload),
                        provider_response_json=_dump_json(provider_response),
                        sent_at=_coerce_utc(attempted_at),
                        created_at=_now_utc(),
                    )
                    session.add(row)
                    session.flush()
                    return _attempt_from_row(row)
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to record {channel} attempt for reminder {reminder_id}: {exc}") from exc

    def list_delivery_attempts(self, reminder_id: str) -> list[DeliveryAttemptRecord]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(_ReminderNotificationRow)
                    .where(_ReminderNotificationRow.reminder_id == reminder_id)
                    .order_by(_ReminderNotificationRow.id.asc())
                ).scalars()
                return [_attempt_from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to list attempts for reminder {reminder_id}: {exc}") from exc

    def list_patient_delivery_attempts(self, patient_id: str, *, limit: int) -> list[DeliveryAttemptRecord]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(_ReminderNotificationRow)
                    .where(_ReminderNotificationRow.patient_id == patient_id)
                    .order_by(_ReminderNotificationRow.sent_at.desc(), _ReminderNotificationRow.id.desc())
                    .limit(limit)
                ).scalars()
                return [_attempt_from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to list attempts for patient {patient_id}: {exc}") from exc

    def get_patient_contact(self, patient_id: str) -> PatientContact | None:
        try:
            with self._session() as session:
                row = session.get(_PatientContactRow, patient_id)
                if row is None:
                    return None
                return PatientContact(
                    patient_id=row.patient_id,
                    email=row.email,
                    phone=row.phone,
                    push_token=row.push_token,
                )
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to load contact for patient {patient_id}: {exc}") from exc

    def save_patient_contact(self, contact: PatientContact) -> PatientContact:
        try:
            with self._session() as session:
                with session.begin():
                    row = session.get(_PatientContactRow, contact.patient_id)
                    if row is None:
                        session.add(
                            _PatientContactRow(
                                patient_id=contact.patient_id,
                                email=contact.email,
                                phone=contact.phone,
                                push_token=contact.push_token,
                                updated_at=_now_utc(),
                            )
                        )
                    else:
                        row.email = contact.email
                        row.phone = contact.phone
                        row.push_token = contact.push_token
                        row.updated_at = _now_utc()
            return contact
        except SQLAlchemyError as exc:
            raise ReminderStoreError(f"failed to save contact for patient {contact.patient_id}: {exc}") from exc


def create_reminder_repository(*, backend: str, database_url: str) -> ReminderRepository:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyReminderRepository(database_url)
    if normalized == "inmemory":
        return InMemoryReminderRepository()
    raise RuntimeError(f"unsupported REMINDER_STORE_BACKEND: {backend}")
