"""Startup-time notification configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta, timezone

from dietapp.common import ServiceSettings


@dataclass(frozen=True, slots=True)
class WebPushCredentials:
    private_key: str
    subject: str


@dataclass(frozen=True, slots=True)
class MobilePushSettings:
    url: str
    access_token: str | None = None


def normalize_vapid_subject(contact: str) -> str:
    """Return a VAPID ``sub`` claim: ``mailto:`` or ``https://`` URI."""

    cleaned = contact.strip()
    if cleaned.startswith(("mailto:", "https://")):
        return cleaned
    return f"mailto:{cleaned}"


@dataclass(frozen=True, slots=True)
class NotificationConfig:
    """Provider credentials and scheduling constants injected at startup.

    A channel whose credentials are absent is left as ``None``; with no
    channel configured the dispatcher degrades to a no-op.
    """

    web_push: WebPushCredentials | None = None
    mobile_push: MobilePushSettings | None = None
    meal_lead_minutes: int = 30
    meal_tolerance_minutes: int = 15
    diet_lookback_days: int = 14
    new_diet_window_minutes: int = 15
    utc_offset_hours: int = 3
    web_push_ttl_seconds: int = 86400
    delivery_timeout_seconds: float = 5.0
    trigger_deadline_seconds: float = 25.0
    max_in_flight: int = 10
    sent_log_ttl_seconds: int = 172800

    @property
    def tz(self) -> timezone:
        return timezone(timedelta(hours=self.utc_offset_hours))

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> NotificationConfig:
        web_push = None
        if settings.web_push_public_key and settings.web_push_private_key:
            web_push = WebPushCredentials(
                private_key=settings.web_push_private_key,
                subject=normalize_vapid_subject(settings.web_push_contact_email),
            )
        mobile_push = None
        if settings.mobile_push_enabled and settings.mobile_push_url:
            mobile_push = MobilePushSettings(
                url=settings.mobile_push_url,
                access_token=settings.mobile_push_access_token,
            )
        return cls(
            web_push=web_push,
            mobile_push=mobile_push,
            meal_lead_minutes=settings.meal_reminder_lead_minutes,
            meal_tolerance_minutes=settings.meal_reminder_tolerance_minutes,
            diet_lookback_days=settings.diet_lookback_days,
            new_diet_window_minutes=settings.new_diet_window_minutes,
            utc_offset_hours=settings.business_utc_offset_hours,
            web_push_ttl_seconds=settings.web_push_ttl_seconds,
            delivery_timeout_seconds=settings.delivery_timeout_seconds,
            trigger_deadline_seconds=settings.trigger_deadline_seconds,
            max_in_flight=settings.max_in_flight_deliveries,
            sent_log_ttl_seconds=settings.sent_log_ttl_seconds,
        )
