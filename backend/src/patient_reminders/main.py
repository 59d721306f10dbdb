from __future__ import annotations

import logging

from fastapi import FastAPI

from .api import configure_runtime, router
from .config import fatal_config_issues, get_settings, runtime_config_issues

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    logging.getLogger("patient_reminders").setLevel(settings.log_level)

    fatal_issues = fatal_config_issues(settings)
    if fatal_issues and settings.config_guard_mode == "enforce":
        raise RuntimeError(
            "config guard blocked startup: "
            + "; ".join(fatal_issues)
            + ". Remediation: set REMINDER_STORE_BACKEND=inmemory or provide DATABASE_URL."
        )
    if settings.config_guard_mode != "off":
        for issue in runtime_config_issues(settings):
            logger.warning("config guard warning: %s", issue)

    configure_runtime(settings)

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.include_router(router)
    return app


app = create_app()
