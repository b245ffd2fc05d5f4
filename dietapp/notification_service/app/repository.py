"""Read-side queries over domain state plus preference persistence."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Select, delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .evaluators import (
    MEAL_REMINDER,
    NEW_DIET,
    NEW_MESSAGE,
    BirthdaySnapshot,
    DietSnapshot,
    MealItemSnapshot,
    MealSnapshot,
)
from .models import Client, Diet, Meal, MealPhoto, NotificationPreference

PREFERENCE_FLAGS: dict[str, str] = {
    MEAL_REMINDER: "meal_reminders",
    NEW_DIET: "diet_updates",
    NEW_MESSAGE: "comments",
}
"""Notification kind -> preference column. Kinds not listed are always allowed."""


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _diet_snapshot(diet: Diet, *, with_meals: bool) -> DietSnapshot:
    client = diet.client
    meals: tuple[MealSnapshot, ...] = ()
    if with_meals:
        meals = tuple(
            MealSnapshot(
                id=meal.id,
                name=meal.name,
                time=meal.time,
                detail=meal.detail,
                items=tuple(
                    MealItemSnapshot(food_name=item.food_name, amount=item.amount, unit=item.unit)
                    for item in meal.items
                ),
            )
            for meal in diet.meals
        )
    return DietSnapshot(
        id=diet.id,
        client_id=client.id,
        recipient_id=client.user_id,  # type: ignore[arg-type]
        client_name=client.name,
        client_surname=client.surname,
        diet_date=_as_utc(diet.diet_date),
        created_at=_as_utc(diet.created_at),  # type: ignore[arg-type]
        meals=meals,
    )


class NotificationRepository:
    """Database access helpers for notification triggers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_preference(self, recipient_id: int) -> NotificationPreference | None:
        return await self.session.get(NotificationPreference, recipient_id)

    async def upsert_preference(self, recipient_id: int, updates: dict[str, bool]) -> NotificationPreference:
        preference = await self.get_preference(recipient_id)
        if preference is None:
            preference = NotificationPreference(
                user_id=recipient_id, meal_reminders=True, diet_updates=True, comments=True
            )
            self.session.add(preference)
        for key, value in updates.items():
            setattr(preference, key, value)
        preference.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        await self.session.refresh(preference)
        return preference

    async def allows(self, recipient_id: int, kind: str | None) -> bool:
        """Return False only when the relevant flag is explicitly off."""

        flag = PREFERENCE_FLAGS.get(kind or "")
        if flag is None:
            return True
        preference = await self.get_preference(recipient_id)
        if preference is None:
            return True
        return bool(getattr(preference, flag))

    async def list_diets_since(self, since: datetime, *, recipient_id: int | None = None) -> list[DietSnapshot]:
        """Diets dated on/after ``since`` for clients that have a user account."""

        query: Select[tuple[Diet]] = (
            select(Diet)
            .join(Diet.client)
            .where(Diet.diet_date >= _as_utc(since), Client.user_id.is_not(None))
            .options(
                selectinload(Diet.client),
                selectinload(Diet.meals).selectinload(Meal.items),
            )
            .order_by(Diet.diet_date.desc(), Diet.id.desc())
        )
        if recipient_id is not None:
            query = query.where(Client.user_id == recipient_id)
        result = await self.session.execute(query)
        return [_diet_snapshot(diet, with_meals=True) for diet in result.scalars().unique()]

    async def list_recent_diets(self, since: datetime, until: datetime) -> list[DietSnapshot]:
        query: Select[tuple[Diet]] = (
            select(Diet)
            .join(Diet.client)
            .where(
                Diet.created_at >= _as_utc(since),
                Diet.created_at <= _as_utc(until),
                Client.user_id.is_not(None),
            )
            .options(selectinload(Diet.client))
            .order_by(Diet.created_at, Diet.id)
        )
        result = await self.session.execute(query)
        return [_diet_snapshot(diet, with_meals=False) for diet in result.scalars().unique()]

    async def list_birthday_clients(self, *, dietitian_id: int | None = None) -> list[BirthdaySnapshot]:
        query: Select[tuple[Client]] = (
            select(Client)
            .where(Client.birthdate.is_not(None), Client.dietitian_id.is_not(None))
            .order_by(Client.id)
        )
        if dietitian_id is not None:
            query = query.where(Client.dietitian_id == dietitian_id)
        result = await self.session.execute(query)
        return [
            BirthdaySnapshot(
                client_id=client.id,
                dietitian_id=client.dietitian_id,  # type: ignore[arg-type]
                name=client.name,
                surname=client.surname,
                birth_month=client.birthdate.month,  # type: ignore[union-attr]
                birth_day=client.birthdate.day,  # type: ignore[union-attr]
            )
            for client in result.scalars()
        ]

    async def get_client(self, client_id: int) -> Client | None:
        return await self.session.get(Client, client_id)

    async def delete_expired_photos(self, now: datetime) -> int:
        result = await self.session.execute(delete(MealPhoto).where(MealPhoto.expires_at < _as_utc(now)))
        return result.rowcount or 0

