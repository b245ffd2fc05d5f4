"""Value objects shared by the registry, channel adapters and dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Channel(str, Enum):
    WEB_PUSH = "web_push"
    MOBILE = "mobile"


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    title: str
    body: str
    url: str | None = None
    tag: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str | None:
        value = self.metadata.get("type")
        return str(value) if value is not None else None

    def to_web_push_json(self) -> dict[str, Any]:
        """Shape understood by the service worker's ``push`` handler."""

        payload: dict[str, Any] = {"title": self.title, "body": self.body, "data": dict(self.metadata)}
        if self.url is not None:
            payload["url"] = self.url
            payload["data"].setdefault("url", self.url)
        if self.tag is not None:
            payload["tag"] = self.tag
        return payload


class DeliveryStatus(str, Enum):
    SENT = "sent"
    TRANSIENT_FAILURE = "transient_failure"
    DEAD = "dead"


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    status: DeliveryStatus
    reason: str | None = None

    @classmethod
    def sent(cls) -> DeliveryResult:
        return cls(DeliveryStatus.SENT)

    @classmethod
    def transient(cls, reason: str) -> DeliveryResult:
        return cls(DeliveryStatus.TRANSIENT_FAILURE, reason)

    @classmethod
    def dead(cls, reason: str) -> DeliveryResult:
        return cls(DeliveryStatus.DEAD, reason)

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.SENT


@dataclass(frozen=True, slots=True)
class DispatchSummary:
    sent: int = 0
    failed: int = 0

    def __add__(self, other: DispatchSummary) -> DispatchSummary:
        return DispatchSummary(sent=self.sent + other.sent, failed=self.failed + other.failed)


@dataclass(frozen=True, slots=True)
class PushCredentials:
    """Web-push key material: the client's P-256 public key and auth secret."""

    p256dh: str
    auth: str


@dataclass(frozen=True, slots=True)
class SubscriptionTarget:
    channel: Channel
    endpoint: str
    credentials: PushCredentials | None = None
