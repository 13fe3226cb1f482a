"""
Tests for the domain record model and its store.
"""

import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import LockError, LockNotOwnedError

from provisioner.domains.errors import (
    DomainBusyError,
    DomainConflictError,
    InvalidDomainError,
    InvalidTransitionError,
)
from provisioner.domains.models import DomainRecord, DomainStatus, validate_domain


# ── Domain validation tests ─────────────────────────────────────────


class TestValidateDomain:
    def test_normalizes(self):
        assert validate_domain("  Gallery.Example.COM. ") == "gallery.example.com"

    @pytest.mark.parametrize(
        "bad",
        [
            "",
            "ab",
            "localhost",
            "-bad.example.com",
            "bad-.example.com",
            "under_score.example.com",
            "example.c0m",
            "a" * 64 + ".example.com",
            "has space.example.com",
        ],
    )
    def test_rejects_malformed(self, bad):
        with pytest.raises(InvalidDomainError):
            validate_domain(bad)

    def test_rejects_too_long(self):
        long_domain = ".".join(["a" * 60] * 5) + ".com"
        with pytest.raises(InvalidDomainError, match="too long"):
            validate_domain(long_domain)

    def test_rejects_main_domain_and_subdomains(self):
        with pytest.raises(InvalidDomainError, match="main domain"):
            validate_domain("wrk.so", main_domain="wrk.so")
        with pytest.raises(InvalidDomainError, match="main domain"):
            validate_domain("alice.wrk.so", main_domain="wrk.so")

    def test_rejects_reserved_suffix(self):
        with pytest.raises(InvalidDomainError):
            validate_domain("my-app.vercel.app", reserved_suffixes=(".vercel.app",))

    def test_non_string(self):
        with pytest.raises(InvalidDomainError):
            validate_domain(None)


# ── DomainRecord model tests ────────────────────────────────────────


class TestDomainRecord:
    def test_creation_defaults(self):
        record = DomainRecord(subscriber_id="user_1")
        assert record.status == DomainStatus.UNSET
        assert record.domain is None
        assert record.verified_at is None
        assert record.error_message is None
        assert isinstance(record.updated_at, datetime)

    def test_happy_path_transitions(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        for status in (
            DomainStatus.PENDING,
            DomainStatus.DNS_CONFIGURED,
            DomainStatus.PLATFORM_PENDING,
            DomainStatus.ACTIVE,
        ):
            record.transition_to(status)
        assert record.status == DomainStatus.ACTIVE
        assert record.verified_at is not None

    def test_skipping_steps_is_rejected(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        record.transition_to(DomainStatus.PENDING)
        with pytest.raises(InvalidTransitionError):
            record.transition_to(DomainStatus.ACTIVE)
        with pytest.raises(InvalidTransitionError):
            record.transition_to(DomainStatus.PLATFORM_PENDING)

    def test_unset_cannot_advance_without_pending(self):
        record = DomainRecord(subscriber_id="user_1")
        with pytest.raises(InvalidTransitionError):
            record.transition_to(DomainStatus.DNS_CONFIGURED)

    def test_error_sets_and_clears_message(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        record.transition_to(DomainStatus.PENDING)
        record.transition_to(DomainStatus.ERROR, error_message="CNAME points elsewhere")
        assert record.error_message == "CNAME points elsewhere"

        record.transition_to(DomainStatus.DNS_CONFIGURED)
        assert record.error_message is None

    def test_error_without_message_gets_default(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        record.transition_to(DomainStatus.PENDING)
        record.transition_to(DomainStatus.ERROR)
        assert record.error_message

    def test_reverification_from_active(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        for status in (
            DomainStatus.PENDING,
            DomainStatus.DNS_CONFIGURED,
            DomainStatus.PLATFORM_PENDING,
            DomainStatus.ACTIVE,
            DomainStatus.DNS_CONFIGURED,
        ):
            record.transition_to(status)
        assert record.status == DomainStatus.DNS_CONFIGURED

    def test_unset_resets_all_fields(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        record.transition_to(DomainStatus.PENDING)
        record.transition_to(DomainStatus.ERROR, error_message="boom")
        record.transition_to(DomainStatus.UNSET)
        assert record.domain is None
        assert record.error_message is None
        assert record.verified_at is None

    def test_every_transition_touches_updated_at(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        stamp = datetime(2030, 1, 1, tzinfo=timezone.utc)
        record.transition_to(DomainStatus.PENDING, now=stamp)
        assert record.updated_at == stamp

    def test_serialization_roundtrip(self):
        now = datetime.now(timezone.utc)
        record = DomainRecord(
            subscriber_id="user_1",
            domain="gallery.example.com",
            status=DomainStatus.ACTIVE,
            verified_at=now,
        )
        restored = DomainRecord.from_dict(record.to_dict())
        assert restored.subscriber_id == "user_1"
        assert restored.domain == "gallery.example.com"
        assert restored.status == DomainStatus.ACTIVE
        assert restored.verified_at == now

    def test_api_response(self):
        record = DomainRecord(subscriber_id="user_1", domain="gallery.example.com")
        record.transition_to(DomainStatus.PENDING)
        resp = record.to_api_response()
        assert resp == {
            "domain": "gallery.example.com",
            "status": "pending",
            "verifiedAt": None,
            "errorMessage": None,
        }


# ── DomainStore tests ───────────────────────────────────────────────


class TestDomainStore:
    @pytest.mark.asyncio
    async def test_claim_and_get(self, domain_store):
        record = await domain_store.claim("user_1", "Gallery.Example.com")
        assert record.status == DomainStatus.PENDING
        assert record.domain == "gallery.example.com"

        stored = await domain_store.get("user_1")
        assert stored.domain == "gallery.example.com"
        assert await domain_store.owner_of("gallery.example.com") == "user_1"

    @pytest.mark.asyncio
    async def test_conflict_leaves_owner_untouched(self, domain_store):
        await domain_store.claim("user_a", "gallery.example.com")

        with pytest.raises(DomainConflictError):
            await domain_store.claim("user_b", "gallery.example.com")

        record = await domain_store.get("user_a")
        assert record.domain == "gallery.example.com"
        assert record.status == DomainStatus.PENDING
        assert await domain_store.get("user_b") is None

    @pytest.mark.asyncio
    async def test_reclaim_own_domain(self, domain_store):
        await domain_store.claim("user_1", "gallery.example.com")
        record = await domain_store.claim("user_1", "gallery.example.com")
        assert record.status == DomainStatus.PENDING

    @pytest.mark.asyncio
    async def test_new_domain_releases_old(self, domain_store):
        await domain_store.claim("user_1", "old.example.com")
        await domain_store.claim("user_1", "new.example.com")

        assert await domain_store.owner_of("old.example.com") is None
        assert (await domain_store.get("user_1")).domain == "new.example.com"

        # Someone else can now take the released domain
        await domain_store.claim("user_2", "old.example.com")

    @pytest.mark.asyncio
    async def test_clear(self, domain_store):
        await domain_store.claim("user_1", "gallery.example.com")
        assert await domain_store.clear("user_1") == "gallery.example.com"
        assert await domain_store.get("user_1") is None
        assert await domain_store.owner_of("gallery.example.com") is None
        assert await domain_store.clear("user_1") is None

    @pytest.mark.asyncio
    async def test_lookup_returns_only_active(self, domain_store):
        record = await domain_store.claim("user_1", "gallery.example.com")
        assert await domain_store.lookup("gallery.example.com") is None

        record.transition_to(DomainStatus.DNS_CONFIGURED)
        record.transition_to(DomainStatus.PLATFORM_PENDING)
        record.transition_to(DomainStatus.ACTIVE)
        await domain_store.save(record)

        assert await domain_store.lookup("Gallery.Example.com") == "user_1"

    @pytest.mark.asyncio
    async def test_lookup_cache(self, domain_store):
        record = await domain_store.claim("user_1", "cached.example.com")
        record.status = DomainStatus.ACTIVE
        await domain_store.save(record)

        assert await domain_store.lookup("cached.example.com") == "user_1"

        # Drop from the store behind its back; cache should still serve it
        domain_store._records.pop("user_1", None)
        assert await domain_store.lookup("cached.example.com") == "user_1"

    @pytest.mark.asyncio
    async def test_clear_invalidates_lookup_cache(self, domain_store):
        record = await domain_store.claim("user_1", "gallery.example.com")
        record.status = DomainStatus.ACTIVE
        await domain_store.save(record)
        assert await domain_store.lookup("gallery.example.com") == "user_1"

        await domain_store.clear("user_1")
        assert await domain_store.lookup("gallery.example.com") is None

    @pytest.mark.asyncio
    async def test_lock_serializes_per_domain(self, domain_store):
        events = []

        async def worker(name):
            async with domain_store.lock("gallery.example.com"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_redis_unavailable_falls_back_to_memory(self):
        from provisioner.domains.store import DomainStore

        store = DomainStore(redis_url="redis://127.0.0.1:1")
        record = await store.claim("user_1", "gallery.example.com")
        assert record.status == DomainStatus.PENDING
        assert store._use_redis is False

    @pytest.mark.asyncio
    async def test_lock_timeout_raises_busy(self):
        from provisioner.domains.store import DomainStore

        store = DomainStore(lock_timeout=0.05, use_redis=False)
        async with store.lock("gallery.example.com"):
            with pytest.raises(DomainBusyError) as exc_info:
                async with store.lock("gallery.example.com"):
                    pass
        assert exc_info.value.status_code == 409

        # Released after the timeout; the next caller gets it
        async with store.lock("gallery.example.com"):
            pass


class TestRedisLock:
    def _store_with(self, lock):
        from provisioner.domains.store import DomainStore

        mock_redis = MagicMock()
        mock_redis.lock = MagicMock(return_value=lock)
        store = DomainStore(lock_timeout=1)
        store._redis = mock_redis
        return store, mock_redis

    @pytest.mark.asyncio
    async def test_acquire_and_release(self):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=True)
        lock.release = AsyncMock()
        store, mock_redis = self._store_with(lock)

        async with store.lock("Gallery.Example.com"):
            pass

        mock_redis.lock.assert_called_once_with(
            "provisioner:lock:gallery.example.com", timeout=1, blocking_timeout=1
        )
        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_acquired_raises_busy(self):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=False)
        lock.release = AsyncMock()
        store, _ = self._store_with(lock)

        with pytest.raises(DomainBusyError):
            async with store.lock("gallery.example.com"):
                pass
        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_acquire_error_raises_busy(self):
        lock = MagicMock()
        lock.acquire = AsyncMock(side_effect=LockError("Unable to acquire lock within the time specified"))
        store, _ = self._store_with(lock)

        with pytest.raises(DomainBusyError):
            async with store.lock("gallery.example.com"):
                pass

    @pytest.mark.asyncio
    async def test_expired_lock_release_is_logged(self):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=True)
        lock.release = AsyncMock(side_effect=LockNotOwnedError("Cannot release a lock that's no longer owned"))
        store, _ = self._store_with(lock)

        ran = False
        async with store.lock("gallery.example.com"):
            ran = True
        assert ran
