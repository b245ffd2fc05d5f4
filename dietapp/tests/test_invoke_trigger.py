import importlib.util
from pathlib import Path

import httpx
import pytest

_SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "cron" / "invoke_trigger.py"
_spec = importlib.util.spec_from_file_location("invoke_trigger", _SCRIPT)
invoke_trigger = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(invoke_trigger)


@pytest.mark.asyncio
async def test_invoke_sends_secret_and_returns_summary() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "sent": 2, "failed": 0, "remindersFound": 2})

    args = invoke_trigger.parse_args(["meal-reminders", "--base-url", "http://svc.test", "--secret", "s3cret"])
    result = await invoke_trigger.invoke(args, transport=httpx.MockTransport(handler))

    assert seen[0].url.path == "/cron/meal-reminders"
    assert seen[0].headers["Authorization"] == "Bearer s3cret"
    assert result["status"] == "ok"
    assert result["summary"]["remindersFound"] == 2


@pytest.mark.asyncio
async def test_invoke_raises_on_unauthorized() -> None:
    args = invoke_trigger.parse_args(["birthdays", "--base-url", "http://svc.test", "--secret", "wrong"])

    with pytest.raises(invoke_trigger.TriggerError) as excinfo:
        await invoke_trigger.invoke(args, transport=httpx.MockTransport(lambda request: httpx.Response(401)))

    assert excinfo.value.context["status_code"] == 401
