import asyncio
import base64
import os

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from prometheus_client import REGISTRY

from dietapp.common import create_schema, dispose_engines, get_session_factory, lifespan_session
from dietapp.notification_service.app.channels import WebPushAdapter
from dietapp.notification_service.app.dispatcher import NotificationDispatcher
from dietapp.notification_service.app.domain import (
    Channel,
    DeliveryResult,
    DispatchSummary,
    NotificationPayload,
    PushCredentials,
)
from dietapp.notification_service.app.models import Base, NotificationPreference, PushSubscription, User
from dietapp.notification_service.app.registry import SubscriptionRegistry

KEYS = PushCredentials(p256dh="p256dh-key", auth="auth-secret")


class _StubAdapter:
    def __init__(self, channel: Channel, outcomes: dict[str, DeliveryResult], *, delay: float = 0.0) -> None:
        self.channel = channel
        self.outcomes = outcomes
        self.delay = delay
        self.calls: list[str] = []

    async def send(self, endpoint, credentials, payload) -> DeliveryResult:
        self.calls.append(endpoint)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.outcomes.get(endpoint, DeliveryResult.sent())


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


def _meal_payload() -> NotificationPayload:
    return NotificationPayload(title="Lunch", body="Soon", metadata={"type": "meal_reminder"})


async def _prepare(tmp_path, endpoints: list[str], *, meal_reminders: bool | None = None):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}"
    await create_schema(database_url, Base.metadata)
    session_factory = get_session_factory(database_url)
    async with lifespan_session(session_factory) as session:
        session.add(User(id=1, email="client@example.test"))
        if meal_reminders is not None:
            session.add(NotificationPreference(user_id=1, meal_reminders=meal_reminders))
        registry = SubscriptionRegistry(session)
        for endpoint in endpoints:
            await registry.upsert(1, Channel.WEB_PUSH, endpoint, KEYS)
    return session_factory


async def _endpoints(session_factory) -> list[str]:
    async with lifespan_session(session_factory) as session:
        subscriptions = await SubscriptionRegistry(session).list_for_recipient(1)
    return [subscription.endpoint for subscription in subscriptions]


@pytest.mark.asyncio
async def test_opted_out_recipient_is_never_contacted(tmp_path) -> None:
    session_factory = await _prepare(
        tmp_path, ["https://push.test/a", "https://push.test/b"], meal_reminders=False
    )
    adapter = _StubAdapter(Channel.WEB_PUSH, {})
    opt_out = _MetricTracker("notification_opt_out_total", {"kind": "meal_reminder"})
    try:
        dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: adapter})
        summary = await dispatcher.dispatch(1, _meal_payload())
    finally:
        await dispose_engines()

    assert summary == DispatchSummary(sent=0, failed=0)
    assert adapter.calls == []
    assert opt_out.delta() == 1


@pytest.mark.asyncio
async def test_opt_out_only_applies_to_matching_kind(tmp_path) -> None:
    session_factory = await _prepare(tmp_path, ["https://push.test/a"], meal_reminders=False)
    adapter = _StubAdapter(Channel.WEB_PUSH, {})
    try:
        dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: adapter})
        payload = NotificationPayload(title="New diet", body="Ready", metadata={"type": "new_diet"})
        summary = await dispatcher.dispatch(1, payload)
    finally:
        await dispose_engines()

    assert summary == DispatchSummary(sent=1, failed=0)


@pytest.mark.asyncio
async def test_dead_subscriptions_are_pruned_and_transient_kept(tmp_path) -> None:
    endpoints = ["https://push.test/ok", "https://push.test/gone", "https://push.test/flaky"]
    session_factory = await _prepare(tmp_path, endpoints)
    adapter = _StubAdapter(
        Channel.WEB_PUSH,
        {
            "https://push.test/ok": DeliveryResult.sent(),
            "https://push.test/gone": DeliveryResult.dead("provider responded 410"),
            "https://push.test/flaky": DeliveryResult.transient("provider responded 503"),
        },
    )
    pruned = _MetricTracker("notification_subscriptions_pruned_total", {"channel": "web_push"})
    try:
        dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: adapter})
        summary = await dispatcher.dispatch(1, _meal_payload())
        remaining = await _endpoints(session_factory)
    finally:
        await dispose_engines()

    assert summary == DispatchSummary(sent=1, failed=2)
    assert sorted(remaining) == ["https://push.test/flaky", "https://push.test/ok"]
    assert pruned.delta() == 1


@pytest.mark.asyncio
async def test_slow_delivery_times_out_as_transient(tmp_path) -> None:
    session_factory = await _prepare(tmp_path, ["https://push.test/slow"])
    adapter = _StubAdapter(Channel.WEB_PUSH, {}, delay=1.0)
    try:
        dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: adapter}, delivery_timeout=0.05)
        summary = await dispatcher.dispatch(1, _meal_payload())
        remaining = await _endpoints(session_factory)
    finally:
        await dispose_engines()

    assert summary == DispatchSummary(sent=0, failed=1)
    assert remaining == ["https://push.test/slow"]


@pytest.mark.asyncio
async def test_expired_deadline_skips_delivery(tmp_path) -> None:
    session_factory = await _prepare(tmp_path, ["https://push.test/a"])
    adapter = _StubAdapter(Channel.WEB_PUSH, {})
    try:
        dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: adapter})
        deadline = asyncio.get_running_loop().time() - 1
        summary = await dispatcher.dispatch(1, _meal_payload(), deadline=deadline)
    finally:
        await dispose_engines()

    assert summary == DispatchSummary(sent=0, failed=1)
    assert adapter.calls == []


@pytest.mark.asyncio
async def test_fan_out_runs_concurrently(tmp_path) -> None:
    endpoints = [f"https://push.test/{index}" for index in range(5)]
    session_factory = await _prepare(tmp_path, endpoints)
    adapter = _StubAdapter(Channel.WEB_PUSH, {}, delay=0.2)
    try:
        dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: adapter}, max_in_flight=5)
        loop = asyncio.get_running_loop()
        started = loop.time()
        summary = await dispatcher.dispatch(1, _meal_payload())
        elapsed = loop.time() - started
    finally:
        await dispose_engines()

    assert summary == DispatchSummary(sent=5, failed=0)
    assert elapsed < 0.8


@pytest.mark.asyncio
async def test_unconfigured_dispatcher_is_a_noop(tmp_path) -> None:
    session_factory = await _prepare(tmp_path, ["https://push.test/a"])
    try:
        summary = await NotificationDispatcher(session_factory, {}).dispatch(1, _meal_payload())
    finally:
        await dispose_engines()

    assert summary == DispatchSummary()


@pytest.mark.asyncio
async def test_channel_without_adapter_is_skipped(tmp_path) -> None:
    session_factory = await _prepare(tmp_path, ["https://push.test/a"])
    adapter = _StubAdapter(Channel.MOBILE, {})
    try:
        summary = await NotificationDispatcher(session_factory, {Channel.MOBILE: adapter}).dispatch(
            1, _meal_payload()
        )
    finally:
        await dispose_engines()

    assert summary == DispatchSummary()
    assert adapter.calls == []


@pytest.mark.asyncio
async def test_unknown_channel_is_a_contract_violation(tmp_path) -> None:
    session_factory = await _prepare(tmp_path, [])
    async with lifespan_session(session_factory) as session:
        session.add(PushSubscription(user_id=1, channel="carrier_pigeon", endpoint="coop-7"))
    try:
        dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: _StubAdapter(Channel.WEB_PUSH, {})})
        with pytest.raises(ValueError):
            await dispatcher.dispatch(1, _meal_payload())
    finally:
        await dispose_engines()


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


@pytest.mark.asyncio
async def test_web_push_delivery_keeps_valid_subscription(tmp_path) -> None:
    browser_key = ec.generate_private_key(ec.SECP256R1())
    keys = PushCredentials(
        p256dh=_b64(browser_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)),
        auth=_b64(os.urandom(16)),
    )
    session_factory = await _prepare(tmp_path, [])
    async with lifespan_session(session_factory) as session:
        await SubscriptionRegistry(session).upsert(1, Channel.WEB_PUSH, "https://push.test/browser", keys)

    provider_calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        provider_calls.append(request)
        return httpx.Response(201)

    vapid_key = ec.generate_private_key(ec.SECP256R1())
    vapid_private_key = _b64(vapid_key.private_numbers().private_value.to_bytes(32, "big"))
    try:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = WebPushAdapter(client, vapid_private_key=vapid_private_key, subject="mailto:ops@example.test")
            dispatcher = NotificationDispatcher(session_factory, {Channel.WEB_PUSH: adapter})
            summary = await dispatcher.dispatch(1, _meal_payload())
        remaining = await _endpoints(session_factory)
    finally:
        await dispose_engines()

    assert summary == DispatchSummary(sent=1, failed=0)
    assert len(provider_calls) == 1
    assert remaining == ["https://push.test/browser"]
