"""HTTP routes for push endpoint registration."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from dietapp.common import mask_endpoint

from ..auth import Principal
from ..dependencies import get_current_principal, get_registry
from ..domain import Channel, PushCredentials
from ..registry import SubscriptionRegistry
from ..schemas import (
    PushTokenRequest,
    SubscriptionDelete,
    SubscriptionRegister,
    SubscriptionResponse,
    SuccessResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


@router.post("/push/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def register_subscription(
    payload: SubscriptionRegister,
    principal: Principal = Depends(get_current_principal),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SubscriptionResponse:
    if payload.recipient_id != principal.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot register endpoints for another recipient",
        )
    credentials = None
    if payload.keys is not None:
        credentials = PushCredentials(p256dh=payload.keys.p256dh, auth=payload.keys.auth)
    subscription = await registry.upsert(principal.user_id, payload.channel, payload.endpoint, credentials)
    logger.info(
        "Registered %s endpoint %s for recipient %s",
        payload.channel.value,
        mask_endpoint(payload.endpoint),
        principal.user_id,
    )
    return SubscriptionResponse(subscription_id=subscription.id)


@router.delete("/push/subscriptions", response_model=SuccessResponse)
async def deregister_subscription(
    payload: SubscriptionDelete,
    principal: Principal = Depends(get_current_principal),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SuccessResponse:
    removed = await registry.remove_by_recipient_and_endpoint(principal.user_id, payload.endpoint.strip())
    return SuccessResponse(removed=removed)


@router.post("/push-token", response_model=SubscriptionResponse)
async def save_push_token(
    payload: PushTokenRequest,
    principal: Principal = Depends(get_current_principal),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SubscriptionResponse:
    subscription = await registry.upsert(principal.user_id, Channel.MOBILE, payload.push_token.strip())
    return SubscriptionResponse(subscription_id=subscription.id)


@router.delete("/push-token", response_model=SuccessResponse)
async def remove_push_token(
    principal: Principal = Depends(get_current_principal),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SuccessResponse:
    removed = await registry.remove_for_recipient(principal.user_id, Channel.MOBILE)
    return SuccessResponse(removed=removed)
