from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import Settings, get_settings
from .dispatch import ReminderDispatchService, ReminderOutcome
from .models import (
    ChannelAttemptItem,
    DeliveryAttemptItem,
    DeliveryAttemptListResponse,
    DispatchCycleResponse,
    DispatchRequest,
    PatientContactRequest,
    PatientContactResponse,
    ReminderCreateRequest,
    ReminderDispatchResponse,
    ReminderDispatchResult,
    ReminderItem,
    ReminderListResponse,
    ReminderUpdateRequest,
)
from .notifier import ChannelDispatcher, create_dispatchers
from .reminder_store import (
    DeliveryAttemptRecord,
    InMemoryReminderRepository,
    PatientContact,
    ReminderNotFoundError,
    ReminderRecord,
    ReminderRepository,
    ReminderStoreError,
    create_reminder_repository,
)
from .schedule import describe_schedule, initial_trigger

logger = logging.getLogger(__name__)

_settings = get_settings()
router = APIRouter(prefix=_settings.api_prefix, tags=["reminders"])
reminder_repo: ReminderRepository = InMemoryReminderRepository()
channel_dispatchers: dict[str, ChannelDispatcher] = {}


def configure_runtime(settings: Settings) -> None:
    global _settings, reminder_repo, channel_dispatchers
    _settings = settings
    reminder_repo = create_reminder_repository(
        backend=settings.reminder_store_backend,
        database_url=settings.database_url,
    )
    channel_dispatchers = create_dispatchers(settings)


def _dispatch_service() -> ReminderDispatchService:
    return ReminderDispatchService(
        repository=reminder_repo,
        dispatchers=channel_dispatchers,
        settings=_settings,
    )


def _attempt_items(outcome: ReminderOutcome) -> list[ChannelAttemptItem]:
    return [
        ChannelAttemptItem(type=value.kind, target=value.target, success=value.success, error=value.error)
        for value in outcome.attempts
    ]


def _reminder_item(reminder: ReminderRecord) -> ReminderItem:
    return ReminderItem(
        reminder_id=reminder.reminder_id,
        patient_id=reminder.patient_id,
        title=reminder.title,
        message=reminder.message,
        content=reminder.content,
        body=reminder.body,
        medication_name=reminder.medication_name,
        dosage=reminder.dosage,
        instructions=reminder.instructions,
        schedule_type=reminder.schedule_type,
        schedule_description=describe_schedule(reminder),
        start_time=reminder.start_time,
        recurrence_interval_minutes=reminder.recurrence_interval_minutes,
        days_of_week=list(reminder.days_of_week),
        timezone=reminder.timezone,
        active=reminder.active,
        next_trigger_at=reminder.next_trigger_at,
        last_triggered_at=reminder.last_triggered_at,
        channels=reminder.channels,
        notify_email=reminder.notify_email,
        notify_push=reminder.notify_push,
        created_at=reminder.created_at,
        updated_at=reminder.updated_at,
    )


def _attempt_item(attempt: DeliveryAttemptRecord) -> DeliveryAttemptItem:
    return DeliveryAttemptItem(
        attempt_id=attempt.attempt_id,
        reminder_id=attempt.reminder_id,
        channel=attempt.channel,
        target=attempt.target,
        status=attempt.status,
        error=attempt.error,
        provider=attempt.provider,
        attempted_at=attempt.attempted_at,
    )


def _owned_reminder(patient_id: str, reminder_id: str) -> ReminderRecord:
    reminder = reminder_repo.get_reminder(reminder_id)
    if reminder is None or reminder.patient_id != patient_id:
        raise HTTPException(404, "reminder not found")
    return reminder


async def _parse_dispatch_request(request: Request) -> DispatchRequest:
    raw_body = await request.body()
    body: object = {}
    if raw_body.strip():
        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise HTTPException(400, "request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(400, "request body must be a JSON object")
    try:
        return DispatchRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(400, "reminderId must be a non-empty string") from exc


@router.post("/send-reminders")
async def send_reminders(request: Request) -> JSONResponse:
    payload = await _parse_dispatch_request(request)
    if payload.reminder_id is None and _settings.reminder_trigger_require_id:
        raise HTTPException(400, "reminderId is required")

    service = _dispatch_service()
    try:
        report = await run_in_threadpool(service.run_cycle, reminder_id=payload.reminder_id)
    except ReminderNotFoundError as exc:
        raise HTTPException(404, "reminder not found") from exc
    except ReminderStoreError as exc:
        logger.error("failed to load reminders: %s", exc)
        raise HTTPException(500, "failed to load reminders") from exc

    if payload.reminder_id is not None:
        outcome = report.outcomes[0]
        response = ReminderDispatchResponse(
            reminder_id=outcome.reminder_id,
            status=outcome.status,
            skipped=outcome.status == "skipped",
            reason=outcome.reason,
            next_trigger_at=outcome.next_trigger_at,
            active=outcome.active,
            error=outcome.error,
            attempts=_attempt_items(outcome),
        )
        return JSONResponse(response.model_dump(mode="json", by_alias=True))

    cycle = DispatchCycleResponse(
        processed=report.processed,
        ran_at=report.ran_at,
        results=[
            ReminderDispatchResult(
                reminder_id=outcome.reminder_id,
                status=outcome.status,
                deliveries=outcome.deliveries,
                next_trigger_at=outcome.next_trigger_at,
                active=outcome.active,
                reason=outcome.reason,
                error=outcome.error,
                attempts=_attempt_items(outcome),
            )
            for outcome in report.outcomes
        ],
    )
    return JSONResponse(cycle.model_dump(mode="json", by_alias=True))


@router.put("/patients/{patient_id}/contact", response_model=PatientContactResponse)
def put_patient_contact(patient_id: str, payload: PatientContactRequest) -> PatientContactResponse:
    contact = reminder_repo.save_patient_contact(
        PatientContact(
            patient_id=patient_id,
            email=payload.email,
            phone=(payload.phone or "").strip() or None,
            push_token=(payload.push_token or "").strip() or None,
        )
    )
    return PatientContactResponse(
        patient_id=contact.patient_id,
        email=contact.email,
        phone=contact.phone,
        push_token=contact.push_token,
    )


@router.post(
    "/patients/{patient_id}/reminders",
    response_model=ReminderItem,
    status_code=status.HTTP_201_CREATED,
)
def create_reminder(patient_id: str, payload: ReminderCreateRequest) -> ReminderItem:
    reminder = ReminderRecord(
        reminder_id=str(uuid.uuid4()),
        patient_id=patient_id,
        title=payload.title,
        message=payload.message,
        content=payload.content,
        body=payload.body,
        medication_name=payload.medication_name,
        dosage=payload.dosage,
        instructions=payload.instructions,
        schedule_type=payload.schedule_type,
        start_time=payload.start_time,
        recurrence_interval_minutes=payload.recurrence_interval_minutes,
        days_of_week=tuple(payload.days_of_week),
        timezone=payload.timezone,
        active=True,
        next_trigger_at=initial_trigger(payload.start_time),
        channels=payload.channels,
        notify_email=payload.notify_email,
        notify_push=payload.notify_push,
    )
    return _reminder_item(reminder_repo.save_reminder(reminder))


@router.get("/patients/{patient_id}/reminders", response_model=ReminderListResponse)
def list_reminders(patient_id: str) -> ReminderListResponse:
    return ReminderListResponse(
        items=[_reminder_item(value) for value in reminder_repo.list_patient_reminders(patient_id)]
    )


@router.get("/patients/{patient_id}/reminders/{reminder_id}", response_model=ReminderItem)
def get_reminder(patient_id: str, reminder_id: str) -> ReminderItem:
    return _reminder_item(_owned_reminder(patient_id, reminder_id))


@router.patch("/patients/{patient_id}/reminders/{reminder_id}", response_model=ReminderItem)
def update_reminder(patient_id: str, reminder_id: str, payload: ReminderUpdateRequest) -> ReminderItem:
    reminder = _owned_reminder(patient_id, reminder_id)
    changes = {key: getattr(payload, key) for key in payload.model_fields_set}
    if changes.get("active") is None:
        changes.pop("active", None)
    if changes.get("timezone") is None:
        changes.pop("timezone", None)
    for flag in ("notify_email", "notify_push"):
        if flag in changes and changes[flag] is None:
            changes.pop(flag)
    if changes.get("active") and not reminder.active:
        changes["next_trigger_at"] = reminder.next_trigger_at or reminder.start_time
    return _reminder_item(reminder_repo.save_reminder(replace(reminder, **changes)))


@router.delete(
    "/patients/{patient_id}/reminders/{reminder_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def delete_reminder(patient_id: str, reminder_id: str) -> Response:
    _owned_reminder(patient_id, reminder_id)
    reminder_repo.delete_reminder(reminder_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/patients/{patient_id}/reminders/{reminder_id}/deliveries",
    response_model=DeliveryAttemptListResponse,
)
def list_reminder_deliveries(patient_id: str, reminder_id: str) -> DeliveryAttemptListResponse:
    _owned_reminder(patient_id, reminder_id)
    return DeliveryAttemptListResponse(
        items=[_attempt_item(value) for value in reminder_repo.list_delivery_attempts(reminder_id)]
    )


@router.get("/patients/{patient_id}/notifications", response_model=DeliveryAttemptListResponse)
def list_patient_notifications(
    patient_id: str,
    limit: int = Query(default=10, ge=1, le=100),
) -> DeliveryAttemptListResponse:
    return DeliveryAttemptListResponse(
        items=[
            _attempt_item(value)
            for value in reminder_repo.list_patient_delivery_attempts(patient_id, limit=limit)
        ]
    )
