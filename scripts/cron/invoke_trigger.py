#!/usr/bin/env python3
"""Invoke a scheduling trigger of the notification service.

Run by the external scheduler (crontab, Kubernetes CronJob, platform cron):
calls one ``/cron/*`` endpoint with the shared secret, prints the JSON
summary and exits non-zero when the call fails.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import time
from typing import Any, Mapping

import httpx

TRIGGER_PATHS: Mapping[str, str] = {
    "meal-reminders": "/cron/meal-reminders",
    "birthdays": "/cron/birthday-notifications",
    "new-diets": "/cron/new-diets",
    "cleanup-photos": "/cron/cleanup-photos",
}


class TriggerError(RuntimeError):
    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = dict(context or {})


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Invoke a notification service trigger")
    parser.add_argument("trigger", choices=sorted(TRIGGER_PATHS), help="Trigger to run")
    parser.add_argument(
        "--base-url",
        default=os.getenv("NOTIFICATION_BASE_URL", "http://127.0.0.1:8000"),
        help="Base URL for the notification service (default: %(default)s or NOTIFICATION_BASE_URL)",
    )
    parser.add_argument(
        "--secret",
        default=os.getenv("SERVICE_CRON_SECRET"),
        help="Shared cron secret (default: SERVICE_CRON_SECRET)",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=30.0,
        help="HTTP client timeout in seconds (default: %(default)s)",
    )
    return parser.parse_args(argv)


async def invoke(args: argparse.Namespace, *, transport: httpx.AsyncBaseTransport | None = None) -> dict[str, Any]:
    headers = {"Authorization": f"Bearer {args.secret}"} if args.secret else {}
    path = TRIGGER_PATHS[args.trigger]
    async with httpx.AsyncClient(
        base_url=args.base_url,
        timeout=httpx.Timeout(args.request_timeout),
        transport=transport,
    ) as client:
        start = time.monotonic()
        try:
            response = await client.post(path, headers=headers)
        except httpx.HTTPError as exc:
            raise TriggerError("Trigger request failed", context={"path": path, "error": str(exc)}) from exc
        duration_ms = (time.monotonic() - start) * 1000.0

    if response.status_code != 200:
        raise TriggerError(
            "Trigger returned an error status",
            context={"path": path, "status_code": response.status_code, "body": response.text},
        )
    summary = response.json()
    return {"status": "ok", "trigger": args.trigger, "durationMs": round(duration_ms, 2), "summary": summary}


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        result = await invoke(args)
    except TriggerError as exc:
        payload = {"status": "error", "message": str(exc), "context": exc.context}
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 1
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
