from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Callable, Literal

from .reminder_store import PatientContact, ReminderRecord

ChannelKind = Literal["email", "push", "sms", "webhook"]
CHANNEL_KINDS: frozenset[str] = frozenset({"email", "push", "sms", "webhook"})
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ChannelRequest:
    kind: ChannelKind
    target: str | None = None
    payload: object = None
    provider: str | None = None
    simulate_failure: bool = False


def _as_kind(value: object) -> ChannelKind | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in CHANNEL_KINDS else None  # type: ignore[return-value]


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def _simulate_failure_flag(entry: Mapping[str, object]) -> bool:
    for key, value in entry.items():
        if str(key).lower().replace("-", "").replace("_", "") == "simulatefailure":
            return _as_flag(value)
    return False


def _request_from_entry(entry: object) -> ChannelRequest | None:
    if isinstance(entry, str):
        kind = _as_kind(entry)
        return ChannelRequest(kind=kind) if kind else None
    if isinstance(entry, Mapping):
        kind = _as_kind(entry.get("type"))
        if kind is None:
            return None
        return ChannelRequest(
            kind=kind,
            target=_as_optional_str(entry.get("target")),
            payload=entry.get("payload"),
            provider=_as_optional_str(entry.get("provider")),
            simulate_failure=_simulate_failure_flag(entry),
        )
    return None


def _parse_sequence(raw: object) -> list[ChannelRequest] | None:
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        return None
    parsed = (_request_from_entry(entry) for entry in raw)
    return [value for value in parsed if value is not None]


def _parse_mapping(raw: object) -> list[ChannelRequest] | None:
    if not isinstance(raw, Mapping):
        return None
    request = _request_from_entry(raw)
    return [request] if request is not None else []


def _parse_encoded(raw: object) -> list[ChannelRequest] | None:
    if not isinstance(raw, str):
        return None
    try:
        decoded = json.loads(raw)
    except ValueError:
        return None
    return normalize_channels(decoded)


def _parse_bare_kind(raw: object) -> list[ChannelRequest] | None:
    kind = _as_kind(raw)
    return [ChannelRequest(kind=kind)] if kind else None


_PARSERS: tuple[Callable[[object], list[ChannelRequest] | None], ...] = (
    _parse_sequence,
    _parse_mapping,
    _parse_encoded,
    _parse_bare_kind,
)


def normalize_channels(raw: object) -> list[ChannelRequest]:
    """Turn a reminder's channel configuration into channel requests.

    Accepts a list of channel names, a list of ``{"type": ..., "target": ...}``
    descriptors (mixed is fine), or JSON text encoding either. Unknown or
    malformed entries are dropped; anything unparseable yields an empty list.
    Order is preserved and duplicates are kept.
    """
    if raw is None:
        return []
    for parser in _PARSERS:
        parsed = parser(raw)
        if parsed is not None:
            return parsed
    return []


def channels_from_preferences(reminder: ReminderRecord) -> list[ChannelRequest]:
    requests: list[ChannelRequest] = []
    if reminder.notify_email:
        requests.append(ChannelRequest(kind="email"))
    if reminder.notify_push:
        requests.append(ChannelRequest(kind="push"))
    return requests


def _default_target(kind: str, contact: PatientContact | None) -> str | None:
    if contact is None:
        return None
    if kind == "email":
        return _as_optional_str(contact.email)
    if kind == "sms":
        return _as_optional_str(contact.phone)
    if kind == "push":
        return _as_optional_str(contact.push_token)
    return None


def resolve_channel_requests(
    reminder: ReminderRecord,
    contact: PatientContact | None,
) -> list[ChannelRequest]:
    """Channel requests for one dispatch, with targets filled from the patient's contact.

    An explicit ``channels`` value wins over the ``notify_*`` flags. On the
    flag path an e-mail request is dropped when the patient has no address.
    """
    if reminder.channels is not None:
        requests = normalize_channels(reminder.channels)
        from_preferences = False
    else:
        requests = channels_from_preferences(reminder)
        from_preferences = True

    resolved: list[ChannelRequest] = []
    for request in requests:
        if request.target is None:
            target = _default_target(request.kind, contact)
            if target is not None:
                request = replace(request, target=target)
        if from_preferences and request.kind == "email" and request.target is None:
            continue
        resolved.append(request)
    return resolved
