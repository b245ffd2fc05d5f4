"""Redis-backed record of notifications already sent for a business day."""

from __future__ import annotations

from datetime import date
from typing import Any

from redis.exceptions import RedisError

from .metrics import NOTIFICATION_DUPLICATES_SKIPPED_TOTAL, NOTIFICATION_SENT_LOG_ERRORS_TOTAL


class SentLog:
    """Claim ``(kind, recipient, natural key, day)`` once via ``SET NX EX``.

    Without a Redis client every claim succeeds, which keeps the
    at-least-once behaviour. Redis errors fail open.
    """

    def __init__(
        self,
        redis_client: Any | None,
        *,
        key_prefix: str = "notification:sent",
        ttl_seconds: int = 172800,
    ) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._ttl = max(ttl_seconds, 1)

    def key(self, kind: str, recipient_id: int, natural_key: str, day: date) -> str:
        return f"{self._key_prefix}:{kind}:{recipient_id}:{natural_key}:{day.isoformat()}"

    async def claim(self, kind: str, recipient_id: int, natural_key: str, day: date) -> bool:
        """Return True if the caller should send, False for a duplicate."""

        if self._redis is None:
            return True
        try:
            created = await self._redis.set(
                self.key(kind, recipient_id, natural_key, day), "1", nx=True, ex=self._ttl
            )
        except (RedisError, OSError):
            NOTIFICATION_SENT_LOG_ERRORS_TOTAL.labels(operation="set").inc()
            return True
        if not created:
            NOTIFICATION_DUPLICATES_SKIPPED_TOTAL.labels(kind=kind).inc()
            return False
        return True

    async def release(self, kind: str, recipient_id: int, natural_key: str, day: date) -> None:
        """Forget a claim whose dispatch delivered nothing, so the next run retries."""

        if self._redis is None:
            return
        try:
            await self._redis.delete(self.key(kind, recipient_id, natural_key, day))
        except (RedisError, OSError):
            NOTIFICATION_SENT_LOG_ERRORS_TOTAL.labels(operation="delete").inc()
