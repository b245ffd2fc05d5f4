"""Subscription registry: delivery endpoints per recipient and channel."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from dietapp.common import mask_endpoint

from .domain import Channel, PushCredentials
from .models import PushSubscription

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Database access helpers for push subscriptions.

    ``(channel, endpoint)`` is the natural key. Deletes are idempotent so
    concurrent prunes from parallel dispatches need no extra locking.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, channel: Channel, endpoint: str) -> PushSubscription | None:
        result = await self.session.execute(
            select(PushSubscription).where(
                PushSubscription.channel == channel.value,
                PushSubscription.endpoint == endpoint,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        recipient_id: int,
        channel: Channel,
        endpoint: str,
        credentials: PushCredentials | None = None,
    ) -> PushSubscription:
        if channel is Channel.MOBILE:
            # One mobile token per recipient, latest registration wins.
            await self.session.execute(
                delete(PushSubscription).where(
                    PushSubscription.user_id == recipient_id,
                    PushSubscription.channel == channel.value,
                    PushSubscription.endpoint != endpoint,
                )
            )

        subscription = await self.get(channel, endpoint)
        if subscription is None:
            subscription = PushSubscription(
                user_id=recipient_id,
                channel=channel.value,
                endpoint=endpoint,
            )
            self.session.add(subscription)
        elif subscription.user_id != recipient_id:
            logger.info(
                "Rebinding %s subscription %s from recipient %s to %s",
                channel.value,
                mask_endpoint(endpoint),
                subscription.user_id,
                recipient_id,
            )
            subscription.user_id = recipient_id
        subscription.p256dh = credentials.p256dh if credentials else None
        subscription.auth = credentials.auth if credentials else None
        await self.session.flush()
        await self.session.refresh(subscription)
        return subscription

    async def list_for_recipient(self, recipient_id: int) -> list[PushSubscription]:
        result = await self.session.execute(
            select(PushSubscription)
            .where(PushSubscription.user_id == recipient_id)
            .order_by(PushSubscription.id)
        )
        return list(result.scalars())

    async def remove(self, channel: Channel, endpoint: str) -> int:
        result = await self.session.execute(
            delete(PushSubscription).where(
                PushSubscription.channel == channel.value,
                PushSubscription.endpoint == endpoint,
            )
        )
        return result.rowcount or 0

    async def remove_by_recipient_and_endpoint(self, recipient_id: int, endpoint: str) -> int:
        """Delete ``endpoint`` only if it belongs to ``recipient_id``."""

        result = await self.session.execute(
            delete(PushSubscription).where(
                PushSubscription.user_id == recipient_id,
                PushSubscription.endpoint == endpoint,
            )
        )
        return result.rowcount or 0

    async def remove_for_recipient(self, recipient_id: int, channel: Channel) -> int:
        result = await self.session.execute(
            delete(PushSubscription).where(
                PushSubscription.user_id == recipient_id,
                PushSubscription.channel == channel.value,
            )
        )
        return result.rowcount or 0
