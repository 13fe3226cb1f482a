"""
Entitlement check for custom domains.

Subscription state is owned by the billing subsystem; this module only reads
it (and exposes a setter for the billing webhook glue that writes it).
"""

import logging
from typing import Dict, Optional, Protocol

import redis.asyncio as redis

logger = logging.getLogger("provisioner.services.subscription")

ACTIVE = "active"


class SubscriptionGate(Protocol):
    async def has_active_entitlement(self, subscriber_id: str) -> bool:
        ...


class RedisSubscriptionGate:
    """
    Reads ``{prefix}subscription:{subscriber_id}``; the value ``active``
    entitles the subscriber to attach a custom domain.

    Falls back to in-memory storage if Redis is unavailable.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "provisioner:",
        use_redis: bool = True,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None
        self._use_redis = use_redis
        self._memory_store: Dict[str, str] = {}

    async def _get_redis(self) -> Optional[redis.Redis]:
        if not self._use_redis:
            return None

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Redis unavailable for subscription gate, using in-memory: {e}")
                self._redis = None
                self._use_redis = False
                return None

        return self._redis

    def _key(self, subscriber_id: str) -> str:
        return f"{self.key_prefix}subscription:{subscriber_id}"

    async def get_status(self, subscriber_id: str) -> Optional[str]:
        r = await self._get_redis()
        if r:
            return await r.get(self._key(subscriber_id))
        return self._memory_store.get(subscriber_id)

    async def set_status(self, subscriber_id: str, status: Optional[str]) -> None:
        """Record the billing status; None forgets the subscriber."""
        r = await self._get_redis()
        if r:
            if status is None:
                await r.delete(self._key(subscriber_id))
            else:
                await r.set(self._key(subscriber_id), status)
        elif status is None:
            self._memory_store.pop(subscriber_id, None)
        else:
            self._memory_store[subscriber_id] = status
        logger.info(f"Subscription status for {subscriber_id}: {status}")

    async def has_active_entitlement(self, subscriber_id: str) -> bool:
        return await self.get_status(subscriber_id) == ACTIVE

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
