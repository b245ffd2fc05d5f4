"""Pydantic schemas for notification service."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .domain import Channel


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1, max_length=255)
    auth: str = Field(min_length=1, max_length=255)


class SubscriptionRegister(BaseModel):
    recipient_id: int = Field(alias="recipientId")
    channel: Channel = Channel.WEB_PUSH
    endpoint: str = Field(min_length=1, max_length=2048)
    keys: SubscriptionKeys | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("endpoint")
    @classmethod
    def _strip_endpoint(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("endpoint must not be blank")
        return cleaned

    @model_validator(mode="after")
    def _require_web_push_keys(self) -> SubscriptionRegister:
        if self.channel is Channel.WEB_PUSH:
            if self.keys is None:
                raise ValueError("web_push subscriptions require keys.p256dh and keys.auth")
            if not self.endpoint.startswith("https://"):
                raise ValueError("web_push endpoint must be an https URL")
        return self


class SubscriptionResponse(BaseModel):
    success: bool = True
    subscription_id: int = Field(alias="subscriptionId")

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionDelete(BaseModel):
    endpoint: str = Field(min_length=1, max_length=2048)


class PushTokenRequest(BaseModel):
    push_token: str = Field(alias="pushToken", min_length=1, max_length=255)

    model_config = ConfigDict(populate_by_name=True)


class SuccessResponse(BaseModel):
    success: bool = True
    removed: int = 0


class PreferenceResponse(BaseModel):
    meal_reminders: bool = Field(default=True, alias="mealReminders")
    diet_updates: bool = Field(default=True, alias="dietUpdates")
    comments: bool = True

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class PreferenceUpdate(BaseModel):
    meal_reminders: bool | None = Field(default=None, alias="mealReminders")
    diet_updates: bool | None = Field(default=None, alias="dietUpdates")
    comments: bool | None = None

    model_config = ConfigDict(populate_by_name=True)


class TriggerResponse(BaseModel):
    success: bool = True
    sent: int = 0
    failed: int = 0
    duplicates_skipped: int = Field(default=0, alias="duplicatesSkipped")

    model_config = ConfigDict(populate_by_name=True)


class PendingReminder(BaseModel):
    meal_id: int = Field(alias="mealId")
    meal_name: str = Field(alias="mealName")
    meal_time: str | None = Field(alias="mealTime")
    message: str

    model_config = ConfigDict(populate_by_name=True)


class MealReminderResponse(TriggerResponse):
    reminders_found: int = Field(default=0, alias="remindersFound")


class OnDemandMealReminderResponse(MealReminderResponse):
    reminders: list[PendingReminder] = Field(default_factory=list)


class BirthdayTriggerResponse(TriggerResponse):
    birthdays_found: int = Field(default=0, alias="birthdaysFound")
    dietitians_notified: int = Field(default=0, alias="dietitiansNotified")


class NewDietTriggerResponse(TriggerResponse):
    diets_found: int = Field(default=0, alias="dietsFound")


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int = 0


class MessageAlertRequest(BaseModel):
    client_id: int = Field(alias="clientId")
    diet_id: int = Field(alias="dietId")
    message_id: int = Field(alias="messageId")
    content: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class BirthdayClientResponse(BaseModel):
    client_id: int = Field(alias="clientId")
    name: str
    surname: str

    model_config = ConfigDict(populate_by_name=True)


class BirthdayListResponse(BaseModel):
    clients: list[BirthdayClientResponse]
    total: int
