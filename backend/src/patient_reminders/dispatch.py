from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from .channels import ChannelRequest, resolve_channel_requests
from .config import Settings
from .notifier import ChannelDispatcher, DispatchResult, mask_target
from .reminder_store import (
    ReminderNotFoundError,
    ReminderRecord,
    ReminderRepository,
    ReminderStoreError,
)
from .schedule import NextTrigger, compute_next_trigger

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["sent", "partial", "failed", "skipped", "error"]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChannelAttempt:
    kind: str
    target: str | None
    success: bool
    error: str | None = None
    record_error: str | None = None


@dataclass(frozen=True)
class ReminderOutcome:
    reminder_id: str
    status: OutcomeStatus
    attempts: list[ChannelAttempt] = field(default_factory=list)
    next_trigger_at: datetime | None = None
    active: bool | None = None
    reason: str | None = None
    error: str | None = None

    @property
    def deliveries(self) -> int:
        return sum(1 for value in self.attempts if value.success)


@dataclass(frozen=True)
class DispatchCycleReport:
    ran_at: datetime
    outcomes: list[ReminderOutcome]

    @property
    def processed(self) -> int:
        return len(self.outcomes)


class DeliveryRecorder:
    """Writes the audit row for one channel attempt; failures are logged, never raised."""

    def __init__(self, repository: ReminderRepository) -> None:
        self._repository = repository

    def record(
        self,
        reminder: ReminderRecord,
        request: ChannelRequest,
        result: DispatchResult,
        attempted_at: datetime,
    ) -> str | None:
        try:
            self._repository.insert_delivery_attempt(
                reminder_id=reminder.reminder_id,
                patient_id=reminder.patient_id,
                channel=request.kind,
                target=request.target,
                status="sent" if result.success else "failed",
                error=result.error,
                provider=request.provider,
                payload=result.request_payload,
                provider_response=result.provider_response,
                attempted_at=attempted_at,
            )
        except ReminderStoreError as exc:
            logger.error(
                "failed to record %s attempt for reminder %s: %s",
                request.kind,
                reminder.reminder_id,
                exc,
            )
            return str(exc)
        return None


class ReminderDispatchService:
    def __init__(
        self,
        *,
        repository: ReminderRepository,
        dispatchers: Mapping[str, ChannelDispatcher],
        settings: Settings,
    ) -> None:
        self._repository = repository
        self._dispatchers = dispatchers
        self._settings = settings
        self._recorder = DeliveryRecorder(repository)

    def run_cycle(self, *, reminder_id: str | None = None, now: datetime | None = None) -> DispatchCycleReport:
        """Run one dispatch cycle.

        With ``reminder_id`` only that reminder is processed, whatever its next
        trigger time; an unknown id raises ``ReminderNotFoundError``. Without
        it every active reminder due at ``now`` is processed. Store failures
        while loading propagate as ``ReminderStoreError``; anything that goes
        wrong after that is confined to the reminder it happened in.
        """
        cycle_now = now or _now_utc()
        if reminder_id is not None:
            reminder = self._repository.get_reminder(reminder_id)
            if reminder is None:
                raise ReminderNotFoundError(reminder_id)
            if not reminder.active:
                outcome = ReminderOutcome(
                    reminder_id=reminder.reminder_id,
                    status="skipped",
                    next_trigger_at=reminder.next_trigger_at,
                    active=False,
                    reason="inactive",
                )
                return DispatchCycleReport(ran_at=cycle_now, outcomes=[outcome])
            reminders = [reminder]
        else:
            reminders = self._repository.list_due_reminders(
                cycle_now, limit=self._settings.reminder_dispatch_limit
            )

        logger.info("dispatch cycle at %s: %d reminder(s) selected", cycle_now.isoformat(), len(reminders))
        outcomes: list[ReminderOutcome] = []
        for reminder in reminders:
            try:
                outcome = self._process_reminder(reminder, cycle_now)
            except Exception as exc:  # noqa: BLE001
                logger.exception("dispatch failed for reminder %s", reminder.reminder_id)
                outcome = ReminderOutcome(reminder_id=reminder.reminder_id, status="error", error=str(exc))
            outcomes.append(outcome)

        counts = Counter(value.status for value in outcomes)
        logger.info(
            "dispatch cycle at %s finished: %d sent, %d partial, %d failed, %d skipped, %d error",
            cycle_now.isoformat(),
            counts["sent"],
            counts["partial"],
            counts["failed"],
            counts["skipped"],
            counts["error"],
        )
        return DispatchCycleReport(ran_at=cycle_now, outcomes=outcomes)

    def _process_reminder(self, reminder: ReminderRecord, now: datetime) -> ReminderOutcome:
        contact = self._repository.get_patient_contact(reminder.patient_id)
        requests = resolve_channel_requests(reminder, contact)
        if not requests:
            return ReminderOutcome(
                reminder_id=reminder.reminder_id,
                status="skipped",
                next_trigger_at=reminder.next_trigger_at,
                active=reminder.active,
                reason="no_channels",
            )

        attempts: list[ChannelAttempt] = []
        for request in requests:
            result = self._dispatch(request, reminder)
            record_error = self._recorder.record(reminder, request, result, _now_utc())
            attempts.append(
                ChannelAttempt(
                    kind=request.kind,
                    target=request.target,
                    success=result.success,
                    error=result.error,
                    record_error=record_error,
                )
            )

        schedule = compute_next_trigger(reminder, now)
        persist_error = self._persist_schedule(reminder, schedule, now)

        successes = sum(1 for value in attempts if value.success)
        if successes == len(attempts):
            status: OutcomeStatus = "sent"
        elif successes == 0:
            status = "failed"
        else:
            status = "partial"
        return ReminderOutcome(
            reminder_id=reminder.reminder_id,
            status=status,
            attempts=attempts,
            next_trigger_at=schedule.next_trigger_at,
            active=schedule.active,
            error=persist_error,
        )

    def _dispatch(self, request: ChannelRequest, reminder: ReminderRecord) -> DispatchResult:
        dispatcher = self._dispatchers.get(request.kind)
        if dispatcher is None:
            result = DispatchResult(success=False, error=f"no dispatcher registered for channel {request.kind}")
        else:
            try:
                result = dispatcher.send(request, reminder)
            except Exception as exc:  # noqa: BLE001
                logger.exception("%s dispatcher raised for reminder %s", request.kind, reminder.reminder_id)
                result = DispatchResult(success=False, error=f"{request.kind} dispatcher error: {exc}")
        if not result.success:
            logger.warning(
                "%s delivery failed for reminder %s (target %s): %s",
                request.kind,
                reminder.reminder_id,
                mask_target(request.target, request.kind),
                result.error,
            )
        return result

    def _persist_schedule(self, reminder: ReminderRecord, schedule: NextTrigger, now: datetime) -> str | None:
        try:
            self._repository.update_trigger_state(
                reminder.reminder_id,
                next_trigger_at=schedule.next_trigger_at,
                active=schedule.active,
                last_triggered_at=now,
            )
        except (ReminderStoreError, ReminderNotFoundError) as exc:
            logger.error("failed to update schedule for reminder %s: %s", reminder.reminder_id, exc)
            return f"schedule update failed: {exc}"
        return None
