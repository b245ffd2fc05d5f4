import base64
import json
import os

import http_ece
import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from pywebpush import WebPusher

from dietapp.notification_service.app.channels import (
    MOBILE_BATCH_SIZE,
    MobilePushAdapter,
    WebPushAdapter,
    build_adapters,
)
from dietapp.notification_service.app.config import MobilePushSettings, NotificationConfig, WebPushCredentials
from dietapp.notification_service.app.domain import Channel, DeliveryStatus, NotificationPayload, PushCredentials

ENDPOINT = "https://push.example.test/send/abc123"
RELAY_URL = "https://relay.example.test/push/send"


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _vapid_private_key() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return _b64(key.private_numbers().private_value.to_bytes(32, "big"))


class _Browser:
    """Receiving side of a web-push subscription."""

    def __init__(self) -> None:
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.auth_secret = os.urandom(16)

    @property
    def credentials(self) -> PushCredentials:
        public = self.private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
        return PushCredentials(p256dh=_b64(public), auth=_b64(self.auth_secret))

    def decrypt(self, body: bytes) -> dict:
        plaintext = http_ece.decrypt(
            body,
            private_key=self.private_key,
            auth_secret=self.auth_secret,
            version="aes128gcm",
        )
        return json.loads(plaintext)


def _payload() -> NotificationPayload:
    return NotificationPayload(
        title="Lunch is coming up!",
        body="Dear Ayse, your Lunch menu",
        url="/client/diets/7",
        tag="meal-reminder-10",
        metadata={"type": "meal_reminder", "dietId": 7, "mealId": 10},
    )


def _web_adapter(handler) -> tuple[WebPushAdapter, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    adapter = WebPushAdapter(client, vapid_private_key=_vapid_private_key(), subject="mailto:ops@example.test")
    return adapter, client


@pytest.mark.asyncio
async def test_web_push_encrypts_payload_and_signs_request() -> None:
    browser = _Browser()
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201)

    adapter, client = _web_adapter(handler)
    async with client:
        result = await adapter.send(ENDPOINT, browser.credentials, _payload())

    assert result.status is DeliveryStatus.SENT
    assert len(requests) == 1
    request = requests[0]
    assert str(request.url) == ENDPOINT
    assert request.headers["Content-Encoding"] == "aes128gcm"
    assert request.headers["TTL"] == "86400"
    assert request.headers["Authorization"].startswith("vapid t=")
    decrypted = browser.decrypt(request.content)
    assert decrypted["title"] == "Lunch is coming up!"
    assert decrypted["tag"] == "meal-reminder-10"
    assert decrypted["data"]["mealId"] == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [404, 410])
async def test_web_push_gone_endpoint_is_dead(status_code: int) -> None:
    adapter, client = _web_adapter(lambda request: httpx.Response(status_code))
    async with client:
        result = await adapter.send(ENDPOINT, _Browser().credentials, _payload())
    assert result.status is DeliveryStatus.DEAD


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 429, 500, 503])
async def test_web_push_other_errors_are_transient(status_code: int) -> None:
    adapter, client = _web_adapter(lambda request: httpx.Response(status_code))
    async with client:
        result = await adapter.send(ENDPOINT, _Browser().credentials, _payload())
    assert result.status is DeliveryStatus.TRANSIENT_FAILURE


@pytest.mark.asyncio
async def test_web_push_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter, client = _web_adapter(handler)
    async with client:
        result = await adapter.send(ENDPOINT, _Browser().credentials, _payload())
    assert result.status is DeliveryStatus.TRANSIENT_FAILURE


@pytest.mark.asyncio
async def test_web_push_unusable_keys_are_dead_without_network_call() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201)

    adapter, client = _web_adapter(handler)
    async with client:
        result = await adapter.send(ENDPOINT, PushCredentials(p256dh="bm90LWEta2V5", auth="c2VjcmV0"), _payload())
        missing = await adapter.send(ENDPOINT, None, _payload())

    assert result.status is DeliveryStatus.DEAD
    assert missing.status is DeliveryStatus.DEAD
    assert calls == []


@pytest.mark.asyncio
async def test_web_push_programming_errors_propagate_instead_of_pruning(monkeypatch) -> None:
    def broken_encode(self, data, content_encoding="aes128gcm"):
        raise TypeError("unexpected payload type")

    monkeypatch.setattr(WebPusher, "encode", broken_encode)
    adapter, client = _web_adapter(lambda request: httpx.Response(201))
    async with client:
        with pytest.raises(TypeError):
            await adapter.send(ENDPOINT, _Browser().credentials, _payload())


@pytest.mark.asyncio
async def test_mobile_malformed_token_is_dead_without_network_call() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"data": [{"status": "ok"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = MobilePushAdapter(client, url=RELAY_URL)
        result = await adapter.send("not-a-push-token", None, _payload())

    assert result.status is DeliveryStatus.DEAD
    assert calls == []


@pytest.mark.asyncio
async def test_mobile_sends_relay_message_shape() -> None:
    bodies: list[list[dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer relay-token"
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "ticket-1"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = MobilePushAdapter(client, url=RELAY_URL, access_token="relay-token")
        result = await adapter.send("ExponentPushToken[abc]", None, _payload())

    assert result.status is DeliveryStatus.SENT
    assert bodies == [
        [
            {
                "to": "ExponentPushToken[abc]",
                "title": "Lunch is coming up!",
                "body": "Dear Ayse, your Lunch menu",
                "data": {"type": "meal_reminder", "dietId": 7, "mealId": 10, "url": "/client/diets/7"},
                "sound": "default",
                "priority": "high",
            }
        ]
    ]


@pytest.mark.asyncio
async def test_mobile_ticket_errors_are_classified() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": [
                    {"status": "ok"},
                    {"status": "error", "message": "gone", "details": {"error": "DeviceNotRegistered"}},
                    {"status": "error", "message": "slow down", "details": {"error": "MessageRateExceeded"}},
                ]
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = MobilePushAdapter(client, url=RELAY_URL)
        results = await adapter.send_batch(
            [
                ("ExponentPushToken[a]", _payload()),
                ("ExponentPushToken[b]", _payload()),
                ("ExpoPushToken[c]", _payload()),
            ]
        )

    assert [result.status for result in results] == [
        DeliveryStatus.SENT,
        DeliveryStatus.DEAD,
        DeliveryStatus.TRANSIENT_FAILURE,
    ]


@pytest.mark.asyncio
async def test_mobile_relay_failure_is_transient() -> None:
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(502))) as client:
        adapter = MobilePushAdapter(client, url=RELAY_URL)
        result = await adapter.send("ExponentPushToken[abc]", None, _payload())
    assert result.status is DeliveryStatus.TRANSIENT_FAILURE


@pytest.mark.asyncio
async def test_mobile_batches_are_chunked() -> None:
    chunk_sizes: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        messages = json.loads(request.content)
        chunk_sizes.append(len(messages))
        return httpx.Response(200, json={"data": [{"status": "ok"} for _ in messages]})

    messages = [(f"ExponentPushToken[{index}]", _payload()) for index in range(MOBILE_BATCH_SIZE + 5)]
    messages.insert(3, ("bogus", _payload()))
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        results = await MobilePushAdapter(client, url=RELAY_URL).send_batch(messages)

    assert chunk_sizes == [MOBILE_BATCH_SIZE, 5]
    assert len(results) == len(messages)
    assert results[3].status is DeliveryStatus.DEAD
    assert sum(result.ok for result in results) == MOBILE_BATCH_SIZE + 5


@pytest.mark.asyncio
async def test_build_adapters_only_for_configured_channels() -> None:
    async with httpx.AsyncClient() as client:
        assert build_adapters(NotificationConfig(), client) == {}

        config = NotificationConfig(
            web_push=WebPushCredentials(private_key=_vapid_private_key(), subject="mailto:a@b.c"),
            mobile_push=MobilePushSettings(url=RELAY_URL),
        )
        adapters = build_adapters(config, client)

    assert set(adapters) == {Channel.WEB_PUSH, Channel.MOBILE}
