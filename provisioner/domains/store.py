"""
Persistence for DomainRecords, one per subscriber.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

from .errors import DomainBusyError, DomainConflictError
from .models import DomainRecord, DomainStatus, normalize_domain

logger = logging.getLogger("provisioner.domains.store")


class _CacheEntry:
    """TTL cache entry for host lookups."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Optional[str], ttl: float):
        self.value = value
        self.expires_at = time.monotonic() + ttl


class DomainStore:
    """
    Store for subscriber -> DomainRecord, with a domain -> subscriber index
    that enforces global uniqueness of domain names.

    Uses Redis for persistence with in-memory fallback.
    """

    POSITIVE_TTL = 300.0  # seconds to cache an active host
    NEGATIVE_TTL = 10.0   # seconds to cache a miss

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "provisioner:",
        lock_timeout: int = 60,
        use_redis: bool = True,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.lock_timeout = lock_timeout
        self._redis: Optional[redis.Redis] = None
        self._use_redis = use_redis
        # In-memory fallback
        self._records: Dict[str, dict] = {}
        self._owners: Dict[str, str] = {}
        self._claim_lock = asyncio.Lock()
        self._local_locks: Dict[str, asyncio.Lock] = {}
        # In-process lookup cache
        self._cache: Dict[str, _CacheEntry] = {}

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get Redis connection."""
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
                logger.info("Domain store connected to Redis")
            except (redis.RedisError, OSError) as e:
                logger.warning(
                    f"Redis unavailable for domain store, using in-memory: {e}"
                )
                self._redis = None
                self._use_redis = False
                return None

        return self._redis

    def _record_key(self, subscriber_id: str) -> str:
        return f"{self.key_prefix}record:{subscriber_id}"

    def _domain_key(self, domain: str) -> str:
        return f"{self.key_prefix}domain:{domain}"

    def _lock_key(self, domain: str) -> str:
        return f"{self.key_prefix}lock:{domain}"

    def _invalidate_cache(self, domain: Optional[str]) -> None:
        if domain:
            self._cache.pop(domain, None)

    async def get(self, subscriber_id: str) -> Optional[DomainRecord]:
        """Get the subscriber's record, or None if they have no domain."""
        r = await self._get_redis()

        if r:
            data = await r.get(self._record_key(subscriber_id))
            if not data:
                return None
            info = json.loads(data)
        else:
            info = self._records.get(subscriber_id)
            if not info:
                return None

        return DomainRecord.from_dict(info)

    async def owner_of(self, domain: str) -> Optional[str]:
        """Subscriber id that has claimed ``domain``, if any."""
        domain = normalize_domain(domain)
        r = await self._get_redis()
        if r:
            return await r.get(self._domain_key(domain))
        return self._owners.get(domain)

    async def get_by_domain(self, domain: str) -> Optional[DomainRecord]:
        owner = await self.owner_of(domain)
        if not owner:
            return None
        return await self.get(owner)

    async def claim(self, subscriber_id: str, domain: str) -> DomainRecord:
        """
        Attach ``domain`` to the subscriber as a fresh pending record.

        Raises DomainConflictError if another subscriber holds the domain.
        A previously attached domain of the same subscriber is released.
        """
        domain = normalize_domain(domain)
        r = await self._get_redis()

        if r:
            claimed = await r.set(self._domain_key(domain), subscriber_id, nx=True)
            if not claimed:
                owner = await r.get(self._domain_key(domain))
                if owner != subscriber_id:
                    raise DomainConflictError("This domain is already in use")
        else:
            async with self._claim_lock:
                owner = self._owners.get(domain)
                if owner and owner != subscriber_id:
                    raise DomainConflictError("This domain is already in use")
                self._owners[domain] = subscriber_id

        record = await self.get(subscriber_id) or DomainRecord(subscriber_id=subscriber_id)
        previous = record.domain
        if previous and previous != domain:
            await self._release(subscriber_id, previous)

        record.domain = domain
        record.transition_to(DomainStatus.PENDING)
        await self.save(record)
        logger.info(f"Claimed domain: {domain} -> {subscriber_id}")
        return record

    async def save(self, record: DomainRecord) -> DomainRecord:
        """Persist a record as-is."""
        data = json.dumps(record.to_dict())
        r = await self._get_redis()
        if r:
            await r.set(self._record_key(record.subscriber_id), data)
        else:
            self._records[record.subscriber_id] = json.loads(data)

        self._invalidate_cache(record.domain)
        logger.debug(f"Saved domain record for {record.subscriber_id}: {record.status.value}")
        return record

    async def clear(self, subscriber_id: str) -> Optional[str]:
        """
        Reset the subscriber to no domain. Returns the released domain.
        """
        record = await self.get(subscriber_id)
        if not record:
            return None

        domain = record.domain
        r = await self._get_redis()
        if r:
            await r.delete(self._record_key(subscriber_id))
        else:
            self._records.pop(subscriber_id, None)

        if domain:
            await self._release(subscriber_id, domain)

        logger.info(f"Cleared domain record for {subscriber_id} ({domain})")
        return domain

    async def _release(self, subscriber_id: str, domain: str) -> None:
        """Drop the uniqueness claim on ``domain`` if the subscriber holds it."""
        r = await self._get_redis()
        if r:
            key = self._domain_key(domain)
            if await r.get(key) == subscriber_id:
                await r.delete(key)
        elif self._owners.get(domain) == subscriber_id:
            del self._owners[domain]
        self._invalidate_cache(domain)

    async def lookup(self, host: str) -> Optional[str]:
        """
        Hot-path lookup: subscriber id serving ``host``, or None.

        Only active records route traffic. Uses an in-process TTL cache to
        avoid hitting Redis on every request.
        """
        host = normalize_domain(host)

        cached = self._cache.get(host)
        if cached and time.monotonic() < cached.expires_at:
            return cached.value

        record = await self.get_by_domain(host)
        if record and record.domain == host and record.is_active:
            self._cache[host] = _CacheEntry(record.subscriber_id, self.POSITIVE_TTL)
            return record.subscriber_id

        self._cache[host] = _CacheEntry(None, self.NEGATIVE_TTL)
        return None

    @asynccontextmanager
    async def lock(self, domain: str) -> AsyncIterator[None]:
        """
        Serialize work on one domain across requests (and instances with Redis).

        Raises DomainBusyError if the lock is not acquired within
        ``lock_timeout`` seconds.
        """
        domain = normalize_domain(domain)
        r = await self._get_redis()
        if r:
            lock = r.lock(
                self._lock_key(domain),
                timeout=self.lock_timeout,
                blocking_timeout=self.lock_timeout,
            )
            try:
                acquired = await lock.acquire()
            except LockError as e:
                logger.warning(f"Could not lock domain {domain}: {e}")
                acquired = False
            if not acquired:
                raise DomainBusyError()
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError as e:
                    # Held past its timeout; another request may own it now
                    logger.warning(f"Lock for domain {domain} expired before release: {e}")
        else:
            local = self._local_locks.setdefault(domain, asyncio.Lock())
            try:
                await asyncio.wait_for(local.acquire(), timeout=self.lock_timeout)
            except asyncio.TimeoutError:
                raise DomainBusyError()
            try:
                yield
            finally:
                local.release()

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Domain store Redis connection closed")
