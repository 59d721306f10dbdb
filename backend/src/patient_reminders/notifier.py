from __future__ import annotations

import http.client
import json
import logging
import socket
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from .channels import ChannelKind, ChannelRequest
from .config import ENDPOINT_ENV_KEYS, Settings
from .reminder_store import ReminderRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    error: str | None = None
    provider_response: object = None
    status_code: int | None = None
    request_payload: dict[str, object] | None = None


class ChannelDispatcher(Protocol):
    kind: ChannelKind

    def send(self, request: ChannelRequest, reminder: ReminderRecord) -> DispatchResult: ...


def _first_text(*values: str | None) -> str | None:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


def medication_message(reminder: ReminderRecord) -> str | None:
    name = _first_text(reminder.medication_name)
    if name is None:
        return None
    dosage = _first_text(reminder.dosage)
    message = f"It's time to take {name} ({dosage})." if dosage else f"It's time to take {name}."
    instructions = _first_text(reminder.instructions)
    return f"{message} {instructions}" if instructions else message


def notification_text(reminder: ReminderRecord) -> str:
    return (
        _first_text(reminder.title, reminder.message, reminder.content, reminder.body)
        or medication_message(reminder)
        or "You have a reminder."
    )


def notification_subject(reminder: ReminderRecord) -> str:
    if _first_text(reminder.title):
        return reminder.title.strip()  # type: ignore[union-attr]
    name = _first_text(reminder.medication_name)
    if name:
        return f"Medication reminder: {name}"
    return "Reminder"


def _parse_response_body(raw: bytes) -> object:
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class _ProviderSendError(Exception):
    """Internal error raised when a provider request never produced an HTTP status."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class HttpChannelDispatcher(ABC):
    """Posts a JSON notification to the provider endpoint configured for one channel."""

    kind: ChannelKind

    def __init__(self, *, endpoint: str, api_key: str = "", timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._endpoint = endpoint.strip()
        self._api_key = api_key.strip()
        self._timeout_seconds = timeout_seconds if timeout_seconds > 0 else DEFAULT_TIMEOUT_SECONDS

    @property
    def endpoint_env_key(self) -> str:
        return ENDPOINT_ENV_KEYS[self.kind]

    def resolve_endpoint(self, request: ChannelRequest) -> str:
        return self._endpoint

    @abstractmethod
    def build_payload(self, request: ChannelRequest, reminder: ReminderRecord) -> dict[str, object]: ...

    def send(self, request: ChannelRequest, reminder: ReminderRecord) -> DispatchResult:
        if request.simulate_failure:
            return DispatchResult(success=False, error=f"Simulated {self.kind} delivery failure")

        endpoint = self.resolve_endpoint(request)
        if not endpoint:
            return DispatchResult(success=False, error=f"{self.endpoint_env_key} is not configured")

        payload = self.build_payload(request, reminder)
        if request.provider:
            payload["provider"] = request.provider
        if request.payload is not None:
            payload["data"] = request.payload

        try:
            status_code, response = self._post(endpoint, payload)
        except _ProviderSendError as exc:
            return DispatchResult(success=False, error=exc.message, request_payload=payload)

        if 200 <= status_code < 300:
            return DispatchResult(
                success=True,
                provider_response=response,
                status_code=status_code,
                request_payload=payload,
            )
        return DispatchResult(
            success=False,
            error=f"{self.kind} provider responded with HTTP {status_code}",
            provider_response=response,
            status_code=status_code,
            request_payload=payload,
        )

    def _post(self, endpoint: str, body: dict[str, object]) -> tuple[int, object]:
        data = json.dumps(body, default=str).encode("utf-8")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            request = urllib.request.Request(endpoint, data=data, headers=headers, method="POST")
        except ValueError as exc:
            raise _ProviderSendError(f"Invalid {self.kind} endpoint: {exc}") from exc
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                return response.status, _parse_response_body(response.read())
        except urllib.error.HTTPError as exc:
            raw = exc.read() if exc.fp is not None else b""
            return exc.code, _parse_response_body(raw)
        except urllib.error.URLError as exc:
            raise _ProviderSendError(f"Connection error: {exc.reason}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise _ProviderSendError(f"Request timed out: {exc}") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise _ProviderSendError(f"Transport error: {exc}") from exc


class EmailDispatcher(HttpChannelDispatcher):
    kind: ChannelKind = "email"

    def build_payload(self, request: ChannelRequest, reminder: ReminderRecord) -> dict[str, object]:
        return {
            "to": request.target,
            "subject": notification_subject(reminder),
            "message": notification_text(reminder),
            "reminder_id": reminder.reminder_id,
        }


class PushDispatcher(HttpChannelDispatcher):
    kind: ChannelKind = "push"

    def build_payload(self, request: ChannelRequest, reminder: ReminderRecord) -> dict[str, object]:
        return {
            "token": request.target,
            "title": notification_subject(reminder),
            "body": notification_text(reminder),
            "reminder_id": reminder.reminder_id,
        }


class SmsDispatcher(HttpChannelDispatcher):
    kind: ChannelKind = "sms"

    def build_payload(self, request: ChannelRequest, reminder: ReminderRecord) -> dict[str, object]:
        return {
            "to": request.target,
            "message": notification_text(reminder),
            "reminder_id": reminder.reminder_id,
        }


class WebhookDispatcher(HttpChannelDispatcher):
    kind: ChannelKind = "webhook"

    def resolve_endpoint(self, request: ChannelRequest) -> str:
        return (request.target or "").strip() or self._endpoint

    def build_payload(self, request: ChannelRequest, reminder: ReminderRecord) -> dict[str, object]:
        return {
            "event": "reminder.triggered",
            "reminder_id": reminder.reminder_id,
            "patient_id": reminder.patient_id,
            "title": notification_subject(reminder),
            "message": notification_text(reminder),
            "schedule_type": reminder.schedule_type,
            "triggered_at": datetime.now(timezone.utc).isoformat(),
        }


def create_dispatchers(settings: Settings) -> dict[str, ChannelDispatcher]:
    common = {"api_key": settings.notifier_api_key, "timeout_seconds": settings.notifier_timeout_seconds}
    dispatchers: dict[str, ChannelDispatcher] = {
        "email": EmailDispatcher(endpoint=settings.email_endpoint, **common),
        "push": PushDispatcher(endpoint=settings.push_endpoint, **common),
        "sms": SmsDispatcher(endpoint=settings.sms_endpoint, **common),
        "webhook": WebhookDispatcher(endpoint=settings.webhook_endpoint, **common),
    }
    for kind in ENDPOINT_ENV_KEYS:
        if not settings.endpoint_for_channel(kind):
            logger.warning("%s is not configured; %s reminders will be recorded as failed", ENDPOINT_ENV_KEYS[kind], kind)
    return dispatchers


def mask_target(target: str | None, kind: str) -> str:
    if target is None:
        return "-"
    normalized = target.strip()
    if not normalized:
        return "***"

    if kind == "email" and "@" in normalized:
        local, domain = normalized.split("@", 1)
        if len(local) <= 1:
            return f"*@{domain}"
        return f"{local[0]}***@{domain}"

    if kind == "sms":
        digits = "".join(ch for ch in normalized if ch.isdigit())
        if len(digits) >= 4:
            return f"***{digits[-4:]}"

    if kind == "webhook" and "://" in normalized:
        scheme, rest = normalized.split("://", 1)
        return f"{scheme}://{rest.split('/', 1)[0]}/***"

    if len(normalized) <= 4:
        return "*" * len(normalized)

    return f"{normalized[:2]}***{normalized[-2:]}"
