"""Fan a payload out to every registered endpoint of one recipient."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from time import monotonic

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dietapp.common import lifespan_session, mask_endpoint

from .channels import ChannelAdapter
from .domain import (
    Channel,
    DeliveryResult,
    DeliveryStatus,
    DispatchSummary,
    NotificationPayload,
    PushCredentials,
    SubscriptionTarget,
)
from .metrics import (
    NOTIFICATION_DELIVERIES_TOTAL,
    NOTIFICATION_DELIVERY_LATENCY_SECONDS,
    NOTIFICATION_OPT_OUT_TOTAL,
    NOTIFICATION_SUBSCRIPTIONS_PRUNED_TOTAL,
)
from .registry import SubscriptionRegistry
from .repository import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Resolve endpoints, deliver concurrently, prune the dead ones.

    Each call opens its own short sessions so dispatches for different
    recipients can run in parallel. In-flight adapter calls are capped by a
    semaphore shared by every dispatch of this instance.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapters: Mapping[Channel, ChannelAdapter],
        *,
        delivery_timeout: float = 5.0,
        max_in_flight: int = 10,
    ) -> None:
        self.session_factory = session_factory
        self.adapters = dict(adapters)
        self.delivery_timeout = delivery_timeout
        self._semaphore = asyncio.Semaphore(max(max_in_flight, 1))

    @property
    def enabled(self) -> bool:
        return bool(self.adapters)

    async def _load_targets(self, recipient_id: int, kind: str | None) -> list[SubscriptionTarget] | None:
        async with lifespan_session(self.session_factory) as session:
            if not await NotificationRepository(session).allows(recipient_id, kind):
                return None
            subscriptions = await SubscriptionRegistry(session).list_for_recipient(recipient_id)
        targets: list[SubscriptionTarget] = []
        for subscription in subscriptions:
            channel = Channel(subscription.channel)
            credentials = None
            if subscription.p256dh and subscription.auth:
                credentials = PushCredentials(p256dh=subscription.p256dh, auth=subscription.auth)
            targets.append(SubscriptionTarget(channel, subscription.endpoint, credentials))
        return targets

    async def _deliver(
        self,
        target: SubscriptionTarget,
        payload: NotificationPayload,
        deadline: float | None,
    ) -> DeliveryResult:
        adapter = self.adapters[target.channel]
        loop = asyncio.get_running_loop()
        async with self._semaphore:
            timeout = self.delivery_timeout
            if deadline is not None:
                timeout = min(timeout, deadline - loop.time())
            if timeout <= 0:
                result = DeliveryResult.transient("trigger deadline exceeded")
            else:
                started = monotonic()
                try:
                    result = await asyncio.wait_for(
                        adapter.send(target.endpoint, target.credentials, payload), timeout
                    )
                except asyncio.TimeoutError:
                    result = DeliveryResult.transient("delivery timed out")
                NOTIFICATION_DELIVERY_LATENCY_SECONDS.labels(channel=target.channel.value).observe(
                    monotonic() - started
                )
        NOTIFICATION_DELIVERIES_TOTAL.labels(channel=target.channel.value, outcome=result.status.value).inc()
        if result.status is DeliveryStatus.TRANSIENT_FAILURE:
            logger.warning(
                "Transient %s delivery failure for %s: %s",
                target.channel.value,
                mask_endpoint(target.endpoint),
                result.reason,
            )
        return result

    async def _prune(self, dead: list[SubscriptionTarget]) -> None:
        async with lifespan_session(self.session_factory) as session:
            registry = SubscriptionRegistry(session)
            for target in dead:
                removed = await registry.remove(target.channel, target.endpoint)
                if removed:
                    NOTIFICATION_SUBSCRIPTIONS_PRUNED_TOTAL.labels(channel=target.channel.value).inc()
                    logger.info("Pruned dead %s subscription %s", target.channel.value, mask_endpoint(target.endpoint))

    async def dispatch(
        self,
        recipient_id: int,
        payload: NotificationPayload,
        *,
        deadline: float | None = None,
    ) -> DispatchSummary:
        """Deliver ``payload`` to all of the recipient's endpoints.

        ``deadline`` is an event-loop timestamp after which remaining
        deliveries count as transient failures. Raises ``ValueError`` for a
        stored channel value this service does not know.
        """

        if not self.enabled:
            return DispatchSummary()

        targets = await self._load_targets(recipient_id, payload.kind)
        if targets is None:
            NOTIFICATION_OPT_OUT_TOTAL.labels(kind=payload.kind or "unknown").inc()
            logger.debug("Recipient %s opted out of %s notifications", recipient_id, payload.kind)
            return DispatchSummary()

        deliverable = [target for target in targets if target.channel in self.adapters]
        if not deliverable:
            return DispatchSummary()

        results = await asyncio.gather(
            *(self._deliver(target, payload, deadline) for target in deliverable)
        )

        dead = [target for target, result in zip(deliverable, results) if result.status is DeliveryStatus.DEAD]
        if dead:
            await self._prune(dead)

        sent = sum(1 for result in results if result.ok)
        return DispatchSummary(sent=sent, failed=len(results) - sent)
