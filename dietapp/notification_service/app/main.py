from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI

from dietapp.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)

from .api.health import router as health_router
from .api.preferences import router as preferences_router
from .api.subscriptions import router as subscriptions_router
from .api.triggers import router as triggers_router
from .auth import Authenticator, StaticTokenAuthenticator
from .channels import build_adapters
from .config import NotificationConfig
from .dispatcher import NotificationDispatcher
from .sent_log import SentLog
from .triggers import TriggerSet

SERVICE_NAME = "Notification Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./notification_service.db"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_app(
    settings: ServiceSettings | None = None,
    *,
    authenticator: Authenticator | None = None,
    clock: Callable[[], datetime] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create the Notification Service FastAPI application.

    ``transport`` replaces the network transport of the outbound push client
    and ``clock`` the source of "now"; both exist for tests.
    """

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)
    notification_config = NotificationConfig.from_settings(resolved_settings)
    redis_client = resolve_redis(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        push_client = httpx.AsyncClient(
            timeout=notification_config.delivery_timeout_seconds,
            transport=transport,
        )
        app.state.session_factory = session_factory
        app.state.notification_config = notification_config
        app.state.authenticator = authenticator or StaticTokenAuthenticator()
        app.state.clock = clock or _utcnow
        app.state.cron_secret = resolved_settings.cron_secret
        try:
            dispatcher = NotificationDispatcher(
                session_factory,
                build_adapters(notification_config, push_client),
                delivery_timeout=notification_config.delivery_timeout_seconds,
                max_in_flight=notification_config.max_in_flight,
            )
            sent_log = SentLog(redis_client, ttl_seconds=notification_config.sent_log_ttl_seconds)
            app.state.dispatcher = dispatcher
            app.state.triggers = TriggerSet.build(session_factory, dispatcher, notification_config, sent_log)
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.dispatcher = None
            app.state.triggers = None
            await push_client.aclose()
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(subscriptions_router)
    app.include_router(preferences_router)
    app.include_router(triggers_router)
    return app


app = create_app()
