from __future__ import annotations

import os
from dataclasses import dataclass

STORE_BACKENDS = {"inmemory", "postgres"}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


@dataclass(frozen=True)
class Settings:
    app_name: str = "Patient Reminders"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"
    reminder_store_backend: str = "inmemory"
    database_url: str = ""
    # Provider endpoints; an empty value disables only that channel.
    email_endpoint: str = ""
    push_endpoint: str = ""
    sms_endpoint: str = ""
    webhook_endpoint: str = ""
    notifier_api_key: str = ""
    notifier_timeout_seconds: int = 10
    reminder_trigger_require_id: bool = False
    reminder_dispatch_limit: int = 100
    config_guard_mode: str = "enforce"

    def endpoint_for_channel(self, kind: str) -> str:
        normalized = kind.strip().lower()
        if normalized == "email":
            return self.email_endpoint.strip()
        if normalized == "push":
            return self.push_endpoint.strip()
        if normalized == "sms":
            return self.sms_endpoint.strip()
        if normalized == "webhook":
            return self.webhook_endpoint.strip()
        return ""


ENDPOINT_ENV_KEYS = {
    "email": "REMINDER_EMAIL_ENDPOINT",
    "push": "REMINDER_PUSH_ENDPOINT",
    "sms": "REMINDER_SMS_ENDPOINT",
    "webhook": "REMINDER_WEBHOOK_ENDPOINT",
}


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("REMINDERS_APP_NAME", "Patient Reminders"),
        api_prefix=os.getenv("REMINDERS_API_PREFIX", "/api/v1"),
        log_level=_normalize_mode(
            os.getenv("LOG_LEVEL"),
            default="info",
            allowed={"debug", "info", "warning", "error", "critical"},
        ).upper(),
        reminder_store_backend=os.getenv("REMINDER_STORE_BACKEND", "inmemory").strip().lower(),
        database_url=os.getenv("DATABASE_URL", ""),
        email_endpoint=os.getenv(ENDPOINT_ENV_KEYS["email"], ""),
        push_endpoint=os.getenv(ENDPOINT_ENV_KEYS["push"], ""),
        sms_endpoint=os.getenv(ENDPOINT_ENV_KEYS["sms"], ""),
        webhook_endpoint=os.getenv(ENDPOINT_ENV_KEYS["webhook"], ""),
        notifier_api_key=os.getenv("NOTIFIER_API_KEY", ""),
        notifier_timeout_seconds=_as_int(os.getenv("NOTIFIER_TIMEOUT_SECONDS"), 10),
        reminder_trigger_require_id=_as_bool(os.getenv("REMINDER_TRIGGER_REQUIRE_ID"), False),
        reminder_dispatch_limit=_as_int(os.getenv("REMINDER_DISPATCH_LIMIT"), 100),
        config_guard_mode=_normalize_mode(
            os.getenv("CONFIG_GUARD_MODE"),
            default="enforce",
            allowed={"off", "warn", "enforce"},
        ),
    )


def fatal_config_issues(settings: Settings) -> tuple[str, ...]:
    """Issues that must stop the process before it serves any request."""
    issues: list[str] = []
    if settings.reminder_store_backend not in STORE_BACKENDS:
        issues.append(
            f"REMINDER_STORE_BACKEND must be one of {', '.join(sorted(STORE_BACKENDS))}, "
            f"got {settings.reminder_store_backend!r}"
        )
    if settings.reminder_store_backend == "postgres" and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when REMINDER_STORE_BACKEND=postgres")
    return tuple(issues)


def runtime_config_issues(settings: Settings) -> tuple[str, ...]:
    issues = list(fatal_config_issues(settings))
    missing = [key for kind, key in ENDPOINT_ENV_KEYS.items() if not settings.endpoint_for_channel(kind)]
    if len(missing) == len(ENDPOINT_ENV_KEYS):
        issues.append("no notification endpoint is configured; every channel delivery will fail")
    if settings.notifier_timeout_seconds <= 0:
        issues.append("NOTIFIER_TIMEOUT_SECONDS must be positive")
    return tuple(issues)
