"""Dependency helpers for notification service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime

from fastapi import Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dietapp.common import lifespan_session

from .auth import Authenticator, Principal, bearer_token, verify_cron_secret
from .registry import SubscriptionRegistry
from .repository import NotificationRepository
from .triggers import TriggerSet

logger = logging.getLogger(__name__)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_registry(session: AsyncSession = Depends(get_session)) -> SubscriptionRegistry:
    return SubscriptionRegistry(session)


def get_repository(session: AsyncSession = Depends(get_session)) -> NotificationRepository:
    return NotificationRepository(session)


def get_triggers(request: Request) -> TriggerSet:
    return request.app.state.triggers


def get_now(request: Request) -> datetime:
    clock: Callable[[], datetime] = request.app.state.clock
    return clock()


async def get_optional_principal(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Principal | None:
    token = bearer_token(authorization)
    if token is None:
        return None
    authenticator: Authenticator = request.app.state.authenticator
    return await authenticator.authenticate(token)


async def get_current_principal(
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_cron_secret(
    request: Request,
    authorization: str | None = Header(default=None),
    secret: str | None = Query(default=None),
) -> None:
    expected: str | None = request.app.state.cron_secret
    if not expected:
        logger.warning("Cron secret is not configured; %s is unauthenticated", request.url.path)
        return
    if not verify_cron_secret(expected, authorization=authorization, query_secret=secret):
        logger.warning("Rejected cron call to %s: invalid secret", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
