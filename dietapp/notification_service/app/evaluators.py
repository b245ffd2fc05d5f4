"""Eligibility rules for each notification kind.

Everything here is a pure function of a domain snapshot and ``now``; the
triggers load the snapshots and hand the resulting candidates to the
dispatcher.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from .domain import NotificationPayload

MEAL_REMINDER = "meal_reminder"
BIRTHDAY_REMINDER = "birthday_reminder"
NEW_DIET = "new_diet"
NEW_MESSAGE = "new_message"

_SECONDS_PER_DAY = 24 * 60 * 60
_MEAL_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
MESSAGE_PREVIEW_LENGTH = 100


# Snapshots -------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MealItemSnapshot:
    food_name: str
    amount: str | None = None
    unit: str | None = None

    def describe(self) -> str:
        return " ".join(part for part in (self.amount, self.unit, self.food_name) if part)


@dataclass(frozen=True, slots=True)
class MealSnapshot:
    id: int
    name: str
    time: str | None
    detail: str | None = None
    items: tuple[MealItemSnapshot, ...] = ()


@dataclass(frozen=True, slots=True)
class DietSnapshot:
    id: int
    client_id: int
    recipient_id: int
    client_name: str
    client_surname: str
    diet_date: datetime | None
    created_at: datetime
    meals: tuple[MealSnapshot, ...] = ()


@dataclass(frozen=True, slots=True)
class BirthdaySnapshot:
    client_id: int
    dietitian_id: int
    name: str
    surname: str
    birth_month: int
    birth_day: int


# Candidates ------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MealReminderCandidate:
    recipient_id: int
    diet_id: int
    diet_date: datetime | None
    client_name: str
    client_surname: str
    meal: MealSnapshot
    tz: tzinfo = timezone.utc

    kind = MEAL_REMINDER

    @property
    def natural_key(self) -> str:
        return f"meal-{self.meal.id}"

    def message(self) -> str:
        written_on = format_long_date(self.diet_date.astimezone(self.tz)) if self.diet_date else "-"
        menu = ", ".join(item.describe() for item in self.meal.items)
        text = (
            f"Dear {self.client_name} {self.client_surname}, your {self.meal.name} menu "
            f"from the diet written on {written_on}: {menu}"
        )
        if self.meal.detail:
            text = f"{text}. {self.meal.detail}"
        return text

    def to_payload(self) -> NotificationPayload:
        return NotificationPayload(
            title=f"{self.meal.name} is coming up!",
            body=self.message(),
            url=f"/client/diets/{self.diet_id}",
            tag=f"meal-reminder-{self.meal.id}",
            metadata={"type": MEAL_REMINDER, "dietId": self.diet_id, "mealId": self.meal.id},
        )


@dataclass(frozen=True, slots=True)
class BirthdayCandidate:
    recipient_id: int
    client_id: int
    client_name: str
    client_surname: str

    kind = BIRTHDAY_REMINDER

    @property
    def natural_key(self) -> str:
        return f"client-{self.client_id}"

    def to_payload(self) -> NotificationPayload:
        return NotificationPayload(
            title="Birthday reminder",
            body=f"Today is {self.client_name} {self.client_surname}'s birthday. Tap to celebrate.",
            url="/birthdays",
            tag=f"birthday-{self.client_id}",
            metadata={"type": BIRTHDAY_REMINDER, "clientId": self.client_id},
        )


@dataclass(frozen=True, slots=True)
class NewDietCandidate:
    recipient_id: int
    diet_id: int
    client_id: int

    kind = NEW_DIET

    @property
    def natural_key(self) -> str:
        return f"diet-{self.diet_id}"

    def to_payload(self) -> NotificationPayload:
        return NotificationPayload(
            title="Your new diet plan is ready!",
            body="Your dietitian has prepared a new nutrition plan for you.",
            url=f"/client/diets/{self.diet_id}",
            tag=f"new-diet-{self.diet_id}",
            metadata={"type": NEW_DIET, "dietId": self.diet_id},
        )


@dataclass(frozen=True, slots=True)
class MessageAlert:
    recipient_id: int
    client_id: int
    diet_id: int
    message_id: int
    title: str
    content: str
    url: str

    kind = NEW_MESSAGE

    @property
    def natural_key(self) -> str:
        return f"message-{self.message_id}"

    def to_payload(self) -> NotificationPayload:
        return NotificationPayload(
            title=self.title,
            body=self.content[:MESSAGE_PREVIEW_LENGTH],
            url=self.url,
            tag=f"message-{self.message_id}",
            metadata={
                "type": NEW_MESSAGE,
                "messageId": self.message_id,
                "dietId": self.diet_id,
                "clientId": self.client_id,
            },
        )


# Time helpers ----------------------------------------------------------------------------
def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def business_now(now: datetime, tz: tzinfo) -> datetime:
    return _aware(now).astimezone(tz)


def business_today(now: datetime, tz: tzinfo) -> date:
    return business_now(now, tz).date()


def format_long_date(value: datetime | date) -> str:
    return f"{value.day} {_MONTHS[value.month - 1]} {value.year}"


def parse_meal_time(value: str | None) -> int | None:
    """Return minutes after midnight for ``HH:MM`` or ``None`` if unusable."""

    if not value:
        return None
    match = _MEAL_TIME_PATTERN.match(value)
    if match is None:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def meal_reminder_due(
    meal_minutes: int,
    now: datetime,
    *,
    lead_minutes: int,
    tolerance_minutes: int,
    tz: tzinfo,
) -> bool:
    """True when ``now`` lies in ``[meal - lead, meal - lead + tolerance)``.

    Arithmetic is modulo one day so a reminder window may cross midnight.
    """

    local = business_now(now, tz)
    now_seconds = local.hour * 3600 + local.minute * 60 + local.second
    reminder_seconds = ((meal_minutes - lead_minutes) * 60) % _SECONDS_PER_DAY
    elapsed = (now_seconds - reminder_seconds) % _SECONDS_PER_DAY
    return elapsed < tolerance_minutes * 60


def lookback_start(now: datetime, days: int, tz: tzinfo) -> datetime:
    """Business-time midnight ``days`` days before today, as a UTC instant."""

    start_day = business_today(now, tz) - timedelta(days=days)
    return datetime.combine(start_day, time.min, tzinfo=tz).astimezone(timezone.utc)


def _diet_order(diet: DietSnapshot) -> tuple[datetime, datetime, int]:
    diet_date = _aware(diet.diet_date) if diet.diet_date else datetime.min.replace(tzinfo=timezone.utc)
    return diet_date, _aware(diet.created_at), diet.id


def select_active_diets(diets: Iterable[DietSnapshot]) -> dict[int, DietSnapshot]:
    """Return the newest diet per client, keyed by client id."""

    active: dict[int, DietSnapshot] = {}
    for diet in diets:
        current = active.get(diet.client_id)
        if current is None or _diet_order(diet) > _diet_order(current):
            active[diet.client_id] = diet
    return active


def is_birthday(birth_month: int, birth_day: int, today: date) -> bool:
    """Month/day match; Feb 29 birthdays fall on Feb 28 in common years."""

    if (birth_month, birth_day) == (today.month, today.day):
        return True
    if (birth_month, birth_day) == (2, 29) and (today.month, today.day) == (2, 28):
        return not _is_leap_year(today.year)
    return False


def _is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def diet_recently_created(created_at: datetime, now: datetime, window_minutes: int) -> bool:
    created = _aware(created_at)
    current = _aware(now)
    return current - timedelta(minutes=window_minutes) <= created <= current


# Evaluators ------------------------------------------------------------------------------
def evaluate_meal_reminders(
    diets: Iterable[DietSnapshot],
    now: datetime,
    *,
    lead_minutes: int,
    tolerance_minutes: int,
    tz: tzinfo,
) -> list[MealReminderCandidate]:
    candidates: list[MealReminderCandidate] = []
    for diet in select_active_diets(diets).values():
        for meal in diet.meals:
            meal_minutes = parse_meal_time(meal.time)
            if meal_minutes is None:
                continue
            if not meal_reminder_due(
                meal_minutes,
                now,
                lead_minutes=lead_minutes,
                tolerance_minutes=tolerance_minutes,
                tz=tz,
            ):
                continue
            candidates.append(
                MealReminderCandidate(
                    recipient_id=diet.recipient_id,
                    diet_id=diet.id,
                    diet_date=diet.diet_date,
                    client_name=diet.client_name,
                    client_surname=diet.client_surname,
                    meal=meal,
                    tz=tz,
                )
            )
    return candidates


def evaluate_birthdays(clients: Iterable[BirthdaySnapshot], today: date) -> list[BirthdayCandidate]:
    return [
        BirthdayCandidate(
            recipient_id=client.dietitian_id,
            client_id=client.client_id,
            client_name=client.name,
            client_surname=client.surname,
        )
        for client in clients
        if is_birthday(client.birth_month, client.birth_day, today)
    ]


def evaluate_new_diets(
    diets: Iterable[DietSnapshot],
    now: datetime,
    *,
    window_minutes: int,
) -> list[NewDietCandidate]:
    return [
        NewDietCandidate(recipient_id=diet.recipient_id, diet_id=diet.id, client_id=diet.client_id)
        for diet in diets
        if diet_recently_created(diet.created_at, now, window_minutes)
    ]
