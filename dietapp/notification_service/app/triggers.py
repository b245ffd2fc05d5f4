"""Scheduling triggers: load domain state, evaluate, hand candidates to the dispatcher."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dietapp.common import lifespan_session, traced

from .auth import Principal
from .config import NotificationConfig
from .dispatcher import NotificationDispatcher
from .domain import DispatchSummary, NotificationPayload
from .evaluators import (
    MessageAlert,
    business_today,
    evaluate_birthdays,
    evaluate_meal_reminders,
    evaluate_new_diets,
    lookback_start,
)
from .metrics import NOTIFICATION_TRIGGER_CANDIDATES_TOTAL, NOTIFICATION_TRIGGER_RUNS_TOTAL
from .repository import NotificationRepository
from .sent_log import SentLog

logger = logging.getLogger(__name__)


class Candidate(Protocol):
    recipient_id: int
    kind: str

    @property
    def natural_key(self) -> str: ...

    def to_payload(self) -> NotificationPayload: ...


@dataclass(slots=True)
class TriggerResult:
    sent: int = 0
    failed: int = 0
    found: int = 0
    duplicates_skipped: int = 0
    recipients_notified: int = 0
    candidates: list[Candidate] = field(default_factory=list)


class ClientNotFound(Exception):
    """Raised when a message alert references an unknown client."""


class AlertNotPermitted(Exception):
    """Raised when the caller is neither the client nor the client's dietitian."""


class _Trigger:
    name = "trigger"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        config: NotificationConfig,
        sent_log: SentLog | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.config = config
        self.sent_log = sent_log or SentLog(None)

    async def _dispatch_one(
        self,
        candidate: Candidate,
        now: datetime,
        deadline: float,
    ) -> DispatchSummary | None:
        day = business_today(now, self.config.tz)
        if not await self.sent_log.claim(candidate.kind, candidate.recipient_id, candidate.natural_key, day):
            return None
        summary = await self.dispatcher.dispatch(candidate.recipient_id, candidate.to_payload(), deadline=deadline)
        if summary.sent == 0:
            await self.sent_log.release(candidate.kind, candidate.recipient_id, candidate.natural_key, day)
        return summary

    async def _fan_out(self, candidates: Sequence[Candidate], now: datetime) -> TriggerResult:
        NOTIFICATION_TRIGGER_RUNS_TOTAL.labels(trigger=self.name).inc()
        NOTIFICATION_TRIGGER_CANDIDATES_TOTAL.labels(trigger=self.name).inc(len(candidates))
        result = TriggerResult(found=len(candidates), candidates=list(candidates))
        if not candidates or not self.dispatcher.enabled:
            return result

        deadline = asyncio.get_running_loop().time() + self.config.trigger_deadline_seconds
        outcomes = await asyncio.gather(
            *(self._dispatch_one(candidate, now, deadline) for candidate in candidates)
        )
        total = DispatchSummary()
        notified: set[int] = set()
        for candidate, outcome in zip(candidates, outcomes):
            if outcome is None:
                result.duplicates_skipped += 1
                continue
            total += outcome
            if outcome.sent:
                notified.add(candidate.recipient_id)
        result.sent = total.sent
        result.failed = total.failed
        result.recipients_notified = len(notified)
        return result

    def _log(self, result: TriggerResult) -> None:
        logger.info(
            "%s trigger finished: found=%s sent=%s failed=%s duplicates=%s",
            self.name,
            result.found,
            result.sent,
            result.failed,
            result.duplicates_skipped,
        )


class MealReminderTrigger(_Trigger):
    name = "meal_reminders"

    async def run(self, now: datetime, *, recipient_id: int | None = None) -> TriggerResult:
        with traced("trigger.meal_reminders", scoped=recipient_id is not None):
            since = lookback_start(now, self.config.diet_lookback_days, self.config.tz)
            async with lifespan_session(self.session_factory) as session:
                diets = await NotificationRepository(session).list_diets_since(since, recipient_id=recipient_id)
            candidates = evaluate_meal_reminders(
                diets,
                now,
                lead_minutes=self.config.meal_lead_minutes,
                tolerance_minutes=self.config.meal_tolerance_minutes,
                tz=self.config.tz,
            )
            result = await self._fan_out(candidates, now)
        self._log(result)
        return result


class BirthdayTrigger(_Trigger):
    """Alerts each client's dietitian, one notification per birthday client."""

    name = "birthdays"

    async def run(self, now: datetime) -> TriggerResult:
        with traced("trigger.birthdays"):
            async with lifespan_session(self.session_factory) as session:
                clients = await NotificationRepository(session).list_birthday_clients()
            candidates = evaluate_birthdays(clients, business_today(now, self.config.tz))
            result = await self._fan_out(candidates, now)
        self._log(result)
        return result


class NewDietTrigger(_Trigger):
    name = "new_diets"

    async def run(self, now: datetime) -> TriggerResult:
        with traced("trigger.new_diets"):
            window = self.config.new_diet_window_minutes
            async with lifespan_session(self.session_factory) as session:
                diets = await NotificationRepository(session).list_recent_diets(
                    now - timedelta(minutes=window), now
                )
            candidates = evaluate_new_diets(diets, now, window_minutes=window)
            result = await self._fan_out(candidates, now)
        self._log(result)
        return result


class MessageAlertTrigger(_Trigger):
    """Tell the other side of a diet conversation that a message arrived."""

    name = "message_alerts"

    async def run(
        self,
        principal: Principal,
        *,
        client_id: int,
        diet_id: int,
        message_id: int,
        content: str,
        now: datetime,
    ) -> TriggerResult:
        async with lifespan_session(self.session_factory) as session:
            client = await NotificationRepository(session).get_client(client_id)
        if client is None:
            raise ClientNotFound(client_id)

        if client.user_id is not None and principal.user_id == client.user_id:
            recipient_id = client.dietitian_id
            title = f"New message: {client.name} {client.surname}".rstrip()
            url = f"/clients/{client.id}/diets/{diet_id}"
        elif principal.user_id == client.dietitian_id:
            recipient_id = client.user_id
            title = "New message from your dietitian"
            url = f"/client/diets/{diet_id}"
        else:
            raise AlertNotPermitted(client_id)

        candidates: list[Candidate] = []
        if recipient_id is not None:
            candidates.append(
                MessageAlert(
                    recipient_id=recipient_id,
                    client_id=client.id,
                    diet_id=diet_id,
                    message_id=message_id,
                    title=title,
                    content=content,
                    url=url,
                )
            )
        with traced("trigger.message_alerts", message_id=message_id):
            result = await self._fan_out(candidates, now)
        self._log(result)
        return result


class ExpiredPhotoCleanupTrigger:
    """Deletes meal photos past their expiry; shares only the cron plumbing."""

    name = "photo_cleanup"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def run(self, now: datetime) -> int:
        NOTIFICATION_TRIGGER_RUNS_TOTAL.labels(trigger=self.name).inc()
        with traced("trigger.photo_cleanup"):
            async with lifespan_session(self.session_factory) as session:
                deleted = await NotificationRepository(session).delete_expired_photos(now.astimezone(timezone.utc))
        logger.info("Deleted %s expired meal photos", deleted)
        return deleted


@dataclass(slots=True)
class TriggerSet:
    meal_reminders: MealReminderTrigger
    birthdays: BirthdayTrigger
    new_diets: NewDietTrigger
    message_alerts: MessageAlertTrigger
    photo_cleanup: ExpiredPhotoCleanupTrigger

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        config: NotificationConfig,
        sent_log: SentLog | None = None,
    ) -> TriggerSet:
        args = (session_factory, dispatcher, config, sent_log)
        return cls(
            meal_reminders=MealReminderTrigger(*args),
            birthdays=BirthdayTrigger(*args),
            new_diets=NewDietTrigger(*args),
            message_alerts=MessageAlertTrigger(*args),
            photo_cleanup=ExpiredPhotoCleanupTrigger(session_factory),
        )
