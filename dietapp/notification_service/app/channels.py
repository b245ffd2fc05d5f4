"""Channel adapters: provider-specific encoding and error classification.

Adapters never raise for provider I/O; every outcome is a ``DeliveryResult``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol
from urllib.parse import urlsplit

import httpx
from http_ece import ECEException
from py_vapid import Vapid
from pywebpush import WebPushException, WebPusher

from dietapp.common import mask_endpoint

from .config import NotificationConfig
from .domain import Channel, DeliveryResult, NotificationPayload, PushCredentials

logger = logging.getLogger(__name__)

WEB_PUSH_DEAD_STATUSES = frozenset({404, 410})
MOBILE_TOKEN_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")
MOBILE_BATCH_SIZE = 100
MOBILE_DEAD_ERRORS = frozenset({"DeviceNotRegistered"})


class ChannelAdapter(Protocol):
    channel: Channel

    async def send(
        self,
        endpoint: str,
        credentials: PushCredentials | None,
        payload: NotificationPayload,
    ) -> DeliveryResult: ...


class WebPushAdapter:
    """Browser push: aes128gcm payload encryption plus VAPID authorization."""

    channel = Channel.WEB_PUSH

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        vapid_private_key: str,
        subject: str,
        ttl_seconds: int = 86400,
    ) -> None:
        self._client = client
        self._vapid = Vapid.from_string(private_key=vapid_private_key)
        self._subject = subject
        self._ttl = ttl_seconds

    def _vapid_headers(self, endpoint: str) -> dict[str, str]:
        parts = urlsplit(endpoint)
        claims = {"sub": self._subject, "aud": f"{parts.scheme}://{parts.netloc}"}
        return dict(self._vapid.sign(claims))

    def _prepare(
        self, endpoint: str, credentials: PushCredentials, payload: NotificationPayload
    ) -> tuple[bytes, dict[str, str]]:
        subscription_info = {
            "endpoint": endpoint,
            "keys": {"p256dh": credentials.p256dh, "auth": credentials.auth},
        }
        data = json.dumps(payload.to_web_push_json(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        encoded = WebPusher(subscription_info).encode(data, content_encoding="aes128gcm")
        return encoded["body"], self._vapid_headers(endpoint)

    async def send(
        self,
        endpoint: str,
        credentials: PushCredentials | None,
        payload: NotificationPayload,
    ) -> DeliveryResult:
        if credentials is None:
            return DeliveryResult.dead("missing subscription keys")
        try:
            body, headers = await asyncio.to_thread(self._prepare, endpoint, credentials, payload)
        except (WebPushException, ECEException, ValueError) as exc:
            # Unusable key material never becomes valid; the browser re-subscribes.
            logger.info("Web push subscription %s has unusable keys: %s", mask_endpoint(endpoint), exc)
            return DeliveryResult.dead(f"invalid subscription keys: {exc}")

        headers.update(
            {
                "TTL": str(self._ttl),
                "Content-Encoding": "aes128gcm",
                "Content-Type": "application/octet-stream",
            }
        )
        try:
            response = await self._client.post(endpoint, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Web push to %s failed: %s", mask_endpoint(endpoint), exc)
            return DeliveryResult.transient(f"network error: {exc.__class__.__name__}")

        if response.is_success:
            return DeliveryResult.sent()
        if response.status_code in WEB_PUSH_DEAD_STATUSES:
            return DeliveryResult.dead(f"provider responded {response.status_code}")
        logger.warning("Web push to %s rejected with %s", mask_endpoint(endpoint), response.status_code)
        return DeliveryResult.transient(f"provider responded {response.status_code}")


def is_mobile_token(token: str) -> bool:
    return token.startswith(MOBILE_TOKEN_PREFIXES) and token.endswith("]")


def _classify_ticket(ticket: Any) -> DeliveryResult:
    if not isinstance(ticket, dict):
        return DeliveryResult.transient("malformed provider ticket")
    if ticket.get("status") == "ok":
        return DeliveryResult.sent()
    details = ticket.get("details") or {}
    error = details.get("error") if isinstance(details, dict) else None
    message = str(ticket.get("message") or error or "unknown error")
    if error in MOBILE_DEAD_ERRORS:
        return DeliveryResult.dead(message)
    return DeliveryResult.transient(message)


class MobilePushAdapter:
    """Expo push relay: JSON batch API keyed by device push token."""

    channel = Channel.MOBILE

    def __init__(self, client: httpx.AsyncClient, *, url: str, access_token: str | None = None) -> None:
        self._client = client
        self._url = url
        self._access_token = access_token

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    @staticmethod
    def _message(token: str, payload: NotificationPayload) -> dict[str, Any]:
        data = dict(payload.metadata)
        if payload.url is not None:
            data.setdefault("url", payload.url)
        return {
            "to": token,
            "title": payload.title,
            "body": payload.body,
            "data": data,
            "sound": "default",
            "priority": "high",
        }

    async def _post_chunk(self, messages: list[dict[str, Any]]) -> list[DeliveryResult]:
        try:
            response = await self._client.post(self._url, json=messages, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Mobile push relay request failed: %s", exc)
            return [DeliveryResult.transient(f"network error: {exc.__class__.__name__}")] * len(messages)
        if not response.is_success:
            logger.warning("Mobile push relay responded %s", response.status_code)
            return [DeliveryResult.transient(f"provider responded {response.status_code}")] * len(messages)
        try:
            tickets = response.json().get("data")
        except (ValueError, AttributeError):
            tickets = None
        if isinstance(tickets, dict) and len(messages) == 1:
            tickets = [tickets]
        if not isinstance(tickets, list) or len(tickets) != len(messages):
            return [DeliveryResult.transient("malformed provider response")] * len(messages)
        return [_classify_ticket(ticket) for ticket in tickets]

    async def send_batch(self, messages: Sequence[tuple[str, NotificationPayload]]) -> list[DeliveryResult]:
        """Deliver many ``(token, payload)`` pairs; results keep input order.

        This is the batch entry point for callers holding many tokens at once;
        ``send`` routes a single dispatcher delivery through it.
        """

        results: list[DeliveryResult | None] = [None] * len(messages)
        valid: list[tuple[int, dict[str, Any]]] = []
        for index, (token, payload) in enumerate(messages):
            if not is_mobile_token(token):
                results[index] = DeliveryResult.dead("malformed push token")
                continue
            valid.append((index, self._message(token, payload)))

        for start in range(0, len(valid), MOBILE_BATCH_SIZE):
            chunk = valid[start : start + MOBILE_BATCH_SIZE]
            outcomes = await self._post_chunk([message for _, message in chunk])
            for (index, _), outcome in zip(chunk, outcomes):
                results[index] = outcome
        return [result for result in results if result is not None]

    async def send(
        self,
        endpoint: str,
        credentials: PushCredentials | None,
        payload: NotificationPayload,
    ) -> DeliveryResult:
        (result,) = await self.send_batch([(endpoint, payload)])
        return result


def build_adapters(config: NotificationConfig, client: httpx.AsyncClient) -> dict[Channel, ChannelAdapter]:
    """Instantiate an adapter for every channel that has credentials."""

    adapters: dict[Channel, ChannelAdapter] = {}
    if config.web_push is not None:
        adapters[Channel.WEB_PUSH] = WebPushAdapter(
            client,
            vapid_private_key=config.web_push.private_key,
            subject=config.web_push.subject,
            ttl_seconds=config.web_push_ttl_seconds,
        )
    else:
        logger.warning("Web push is not configured; web push deliveries are disabled")
    if config.mobile_push is not None:
        adapters[Channel.MOBILE] = MobilePushAdapter(
            client,
            url=config.mobile_push.url,
            access_token=config.mobile_push.access_token,
        )
    else:
        logger.warning("Mobile push is not configured; mobile deliveries are disabled")
    return adapters
