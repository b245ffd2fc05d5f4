"""Trigger invocation routes for the periodic scheduler and signed-in users."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth import Principal
from ..dependencies import get_current_principal, get_now, get_repository, get_triggers, require_cron_secret
from ..evaluators import MealReminderCandidate, business_today, is_birthday
from ..repository import NotificationRepository
from ..schemas import (
    BirthdayClientResponse,
    BirthdayListResponse,
    BirthdayTriggerResponse,
    CleanupResponse,
    MealReminderResponse,
    MessageAlertRequest,
    NewDietTriggerResponse,
    OnDemandMealReminderResponse,
    PendingReminder,
    TriggerResponse,
)
from ..triggers import AlertNotPermitted, ClientNotFound, TriggerSet

router = APIRouter(tags=["triggers"])


def _pending(candidate: MealReminderCandidate) -> PendingReminder:
    return PendingReminder(
        meal_id=candidate.meal.id,
        meal_name=candidate.meal.name,
        meal_time=candidate.meal.time,
        message=candidate.message(),
    )


@router.api_route(
    "/cron/meal-reminders",
    methods=["GET", "POST"],
    response_model=MealReminderResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def run_meal_reminders(
    triggers: TriggerSet = Depends(get_triggers),
    now: datetime = Depends(get_now),
) -> MealReminderResponse:
    result = await triggers.meal_reminders.run(now)
    return MealReminderResponse(
        sent=result.sent,
        failed=result.failed,
        duplicates_skipped=result.duplicates_skipped,
        reminders_found=result.found,
    )


@router.api_route(
    "/cron/birthday-notifications",
    methods=["GET", "POST"],
    response_model=BirthdayTriggerResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def run_birthday_notifications(
    triggers: TriggerSet = Depends(get_triggers),
    now: datetime = Depends(get_now),
) -> BirthdayTriggerResponse:
    result = await triggers.birthdays.run(now)
    return BirthdayTriggerResponse(
        sent=result.sent,
        failed=result.failed,
        duplicates_skipped=result.duplicates_skipped,
        birthdays_found=result.found,
        dietitians_notified=result.recipients_notified,
    )


@router.api_route(
    "/cron/new-diets",
    methods=["GET", "POST"],
    response_model=NewDietTriggerResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def run_new_diet_notifications(
    triggers: TriggerSet = Depends(get_triggers),
    now: datetime = Depends(get_now),
) -> NewDietTriggerResponse:
    result = await triggers.new_diets.run(now)
    return NewDietTriggerResponse(
        sent=result.sent,
        failed=result.failed,
        duplicates_skipped=result.duplicates_skipped,
        diets_found=result.found,
    )


@router.api_route(
    "/cron/cleanup-photos",
    methods=["GET", "POST"],
    response_model=CleanupResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def run_photo_cleanup(
    triggers: TriggerSet = Depends(get_triggers),
    now: datetime = Depends(get_now),
) -> CleanupResponse:
    deleted = await triggers.photo_cleanup.run(now)
    return CleanupResponse(deleted=deleted)


@router.api_route(
    "/notifications/check-meal-reminders",
    methods=["GET", "POST"],
    response_model=OnDemandMealReminderResponse,
)
async def check_my_meal_reminders(
    principal: Principal = Depends(get_current_principal),
    triggers: TriggerSet = Depends(get_triggers),
    now: datetime = Depends(get_now),
) -> OnDemandMealReminderResponse:
    result = await triggers.meal_reminders.run(now, recipient_id=principal.user_id)
    reminders = [
        _pending(candidate) for candidate in result.candidates if isinstance(candidate, MealReminderCandidate)
    ]
    return OnDemandMealReminderResponse(
        sent=result.sent,
        failed=result.failed,
        duplicates_skipped=result.duplicates_skipped,
        reminders_found=result.found,
        reminders=reminders,
    )


@router.post("/notifications/message-alerts", response_model=TriggerResponse)
async def send_message_alert(
    payload: MessageAlertRequest,
    principal: Principal = Depends(get_current_principal),
    triggers: TriggerSet = Depends(get_triggers),
    now: datetime = Depends(get_now),
) -> TriggerResponse:
    try:
        result = await triggers.message_alerts.run(
            principal,
            client_id=payload.client_id,
            diet_id=payload.diet_id,
            message_id=payload.message_id,
            content=payload.content,
            now=now,
        )
    except ClientNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found") from exc
    except AlertNotPermitted as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a participant") from exc
    return TriggerResponse(sent=result.sent, failed=result.failed, duplicates_skipped=result.duplicates_skipped)


@router.get("/birthdays/today", response_model=BirthdayListResponse)
async def list_birthdays_today(
    principal: Principal = Depends(get_current_principal),
    repository: NotificationRepository = Depends(get_repository),
    triggers: TriggerSet = Depends(get_triggers),
    now: datetime = Depends(get_now),
) -> BirthdayListResponse:
    if not principal.is_dietitian:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Dietitians only")
    today = business_today(now, triggers.birthdays.config.tz)
    clients = await repository.list_birthday_clients(dietitian_id=principal.user_id)
    items = [
        BirthdayClientResponse(client_id=client.client_id, name=client.name, surname=client.surname)
        for client in clients
        if is_birthday(client.birth_month, client.birth_day, today)
    ]
    return BirthdayListResponse(clients=items, total=len(items))
