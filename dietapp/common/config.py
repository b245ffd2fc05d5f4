from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "dietapp-service"
DEFAULT_MOBILE_PUSH_URL = "https://exp.host/--/api/v2/push/send"


class ServiceSettings(BaseSettings):
    """Base settings shared by all FastAPI services."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    redis_url: str | None = Field(default=None)
    cron_secret: str | None = Field(default=None)
    web_push_public_key: str | None = Field(default=None)
    web_push_private_key: str | None = Field(default=None)
    web_push_contact_email: str = Field(default="mailto:admin@example.com")
    web_push_ttl_seconds: int = Field(default=86400, ge=0)
    mobile_push_enabled: bool = Field(default=True)
    mobile_push_url: str | None = Field(default=DEFAULT_MOBILE_PUSH_URL)
    mobile_push_access_token: str | None = Field(default=None)
    meal_reminder_lead_minutes: int = Field(default=30, ge=0)
    meal_reminder_tolerance_minutes: int = Field(default=15, ge=1)
    diet_lookback_days: int = Field(default=14, ge=1)
    new_diet_window_minutes: int = Field(default=15, ge=1)
    business_utc_offset_hours: int = Field(default=3, ge=-12, le=14)
    delivery_timeout_seconds: float = Field(default=5.0, gt=0.0)
    trigger_deadline_seconds: float = Field(default=25.0, gt=0.0)
    max_in_flight_deliveries: int = Field(default=10, ge=1)
    sent_log_ttl_seconds: int = Field(default=172800, ge=60)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
