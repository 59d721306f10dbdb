#!/usr/bin/env python3
"""Trigger one reminder dispatch cycle on a running backend (cron entry point)."""

from __future__ import annotations

import argparse
import json
import os
import sys
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

DEFAULT_API_BASE_URL = "http://localhost:8000"


def _load_dotenv(path: Path) -> None:
    if not path.is_file():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        parsed = value.strip()
        if parsed and (parsed[0] == parsed[-1]) and parsed[0] in {'"', "'"}:
            parsed = parsed[1:-1]
        os.environ[key] = parsed


def _resolve_trigger_url(explicit_value: str | None) -> str:
    candidate = (explicit_value or "").strip() or os.getenv("REMINDERS_API_BASE_URL", "").strip() or DEFAULT_API_BASE_URL
    prefix = os.getenv("REMINDERS_API_PREFIX", "/api/v1").strip() or "/api/v1"
    candidate = candidate.rstrip("/")
    if not candidate.endswith(prefix.rstrip("/")):
        candidate = f"{candidate}{prefix.rstrip('/')}"
    return f"{candidate}/send-reminders"


def _post_json(url: str, payload: dict[str, Any], *, timeout_seconds: int) -> dict[str, Any]:
    request = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace") if exc.fp else "unknown"
        raise RuntimeError(f"POST {url} failed with {exc.code}: {detail}") from exc
    except urllib.error.URLError as exc:
        raise RuntimeError(f"POST {url} failed: {exc.reason}") from exc


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dispatch due patient reminders through the backend API.")
    parser.add_argument(
        "--api-base-url",
        default=None,
        help=(
            "Backend base URL. Accepts the host root (e.g. http://localhost:8000) "
            "or the full API prefix (e.g. http://localhost:8000/api/v1)."
        ),
    )
    parser.add_argument(
        "--reminder-id",
        default=None,
        help="Dispatch only this reminder, whether or not it is due.",
    )
    parser.add_argument("--timeout", type=int, default=60, help="HTTP timeout in seconds (default: 60).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    root_dir = Path(__file__).resolve().parents[1]
    _load_dotenv(root_dir / ".env")
    args = parse_args(argv)

    url = _resolve_trigger_url(args.api_base_url)
    payload: dict[str, Any] = {}
    if args.reminder_id:
        payload["reminderId"] = args.reminder_id.strip()

    try:
        result = _post_json(url, payload, timeout_seconds=args.timeout)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
