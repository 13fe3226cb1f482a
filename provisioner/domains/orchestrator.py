"""
Provisioning state machine for custom domains.

A verify call always runs the whole chain (DNS, platform registration,
platform verification, status/SSL) instead of resuming from the persisted
status, and writes the record after every completed step. There is no
transaction spanning the steps: each external call is idempotent, so a
crash mid-pipeline leaves a state the next verify call simply re-runs.

Verify, add and remove all hold the store lock for the domains they touch,
and pipeline writes are dropped once the record no longer carries the
domain being verified.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

from .errors import (
    DomainErrorCode,
    DomainNotFoundError,
    NotEntitledError,
    UpstreamPlatformError,
)
from .models import DomainRecord, DomainStatus, validate_domain
from .store import DomainStore
from .verification import DNSResolver
from ..services.edge_platform import (
    CODE_NOT_CONFIGURED,
    SSL_ERROR,
    SSL_PENDING,
    SSL_READY,
    EdgePlatformClient,
    PlatformResult,
)
from ..services.subscription import SubscriptionGate

logger = logging.getLogger("provisioner.domains.orchestrator")

MSG_ADDED = "Domain added successfully. Please configure your DNS settings to complete verification."
MSG_ACTIVE = "Domain verified successfully! Your custom domain is now active."
MSG_SSL_PENDING = "Domain is configured. The SSL certificate is still being provisioned; verify again shortly."
MSG_CHECK_DNS = "Please check your DNS configuration and try again."
MSG_NOT_ENTITLED = "Custom domains require an active Pro subscription"
MSG_NOT_YOURS = "Domain not associated with your account"


@dataclass
class VerificationOutcome:
    """Result of one verify() run, shaped for the caller."""

    domain: str
    status: DomainStatus
    success: bool
    message: str
    error: Optional[str] = None
    code: Optional[DomainErrorCode] = None
    instructions: Optional[dict] = None
    record: Optional[DomainRecord] = None

    @property
    def verified(self) -> bool:
        return self.status == DomainStatus.ACTIVE

    def to_response(self) -> dict:
        resp = {
            "success": self.success,
            "verified": self.verified,
            "domain": self.domain,
            "status": self.status.value,
            "message": self.message,
        }
        if self.error:
            resp["error"] = self.error
        if self.code:
            resp["code"] = self.code.value
        if self.instructions:
            resp["instructions"] = self.instructions
        if self.record and self.record.verified_at:
            resp["verifiedAt"] = self.record.verified_at.isoformat()
        return resp


class ProvisioningOrchestrator:
    """Drives a DomainRecord from pending to active."""

    def __init__(
        self,
        store: DomainStore,
        resolver: DNSResolver,
        platform: EdgePlatformClient,
        gate: SubscriptionGate,
        main_domain: Optional[str] = None,
        reserved_suffixes: Sequence[str] = (),
        strict_status_fallback: bool = False,
    ):
        self.store = store
        self.resolver = resolver
        self.platform = platform
        self.gate = gate
        self.main_domain = main_domain
        self.reserved_suffixes = tuple(reserved_suffixes)
        self.strict_status_fallback = strict_status_fallback

    def validate(self, domain: str) -> str:
        return validate_domain(domain, self.main_domain, self.reserved_suffixes)

    async def _require_entitlement(self, subscriber_id: str) -> None:
        if not await self.gate.has_active_entitlement(subscriber_id):
            raise NotEntitledError(MSG_NOT_ENTITLED)

    async def _persist(self, record: DomainRecord) -> DomainRecord:
        """Save ``record`` unless it was removed or replaced while we worked on it."""
        current = await self.store.get(record.subscriber_id)
        if not current or current.domain != record.domain:
            logger.warning(
                f"Domain {record.domain} was detached from {record.subscriber_id} "
                f"during verification; dropping write"
            )
            raise DomainNotFoundError(MSG_NOT_YOURS)
        return await self.store.save(record)

    async def _transition(
        self,
        record: DomainRecord,
        status: DomainStatus,
        error_message: Optional[str] = None,
    ) -> DomainRecord:
        previous = record.status
        record.transition_to(status, error_message=error_message)
        await self._persist(record)
        if status == DomainStatus.ERROR:
            logger.warning(f"Domain {record.domain}: {previous.value} -> error ({error_message})")
        else:
            logger.info(f"Domain {record.domain}: {previous.value} -> {status.value}")
        return record

    @asynccontextmanager
    async def _locked(self, *domains: Optional[str]) -> AsyncIterator[None]:
        """Hold the store lock for each distinct domain, in a fixed order."""
        async with AsyncExitStack() as stack:
            for domain in sorted({d for d in domains if d}):
                await stack.enter_async_context(self.store.lock(domain))
            yield

    # ── Record lifecycle ─────────────────────────────────────────────

    async def add_domain(self, subscriber_id: str, domain: str) -> DomainRecord:
        """
        Attach ``domain`` to the subscriber with status pending.

        Raises InvalidDomainError, NotEntitledError or DomainConflictError;
        none of them change any state.
        """
        domain = self.validate(domain)
        await self._require_entitlement(subscriber_id)

        existing = await self.store.get(subscriber_id)
        previous = existing.domain if existing else None

        async with self._locked(previous, domain):
            record = await self.store.claim(subscriber_id, domain)
            if previous and previous != domain:
                await self._deregister(previous)

        return record

    async def get_record(self, subscriber_id: str) -> DomainRecord:
        """The subscriber's record; an unset record if they have none."""
        record = await self.store.get(subscriber_id)
        return record or DomainRecord(subscriber_id=subscriber_id)

    async def remove_domain(self, subscriber_id: str) -> Optional[str]:
        """
        Reset the subscriber to unset, then deregister from the platform.

        Waits for any verification of the domain to finish. Deregistration
        is best-effort: its failure is logged and does not undo the reset.
        """
        existing = await self.store.get(subscriber_id)
        if not existing or not existing.domain:
            return await self.store.clear(subscriber_id)

        async with self._locked(existing.domain):
            domain = await self.store.clear(subscriber_id)
            if domain:
                await self._deregister(domain)
        return domain

    async def purge_subscriber(self, subscriber_id: str) -> Optional[str]:
        """Account deletion hook; same semantics as remove_domain()."""
        return await self.remove_domain(subscriber_id)

    async def _deregister(self, domain: str) -> None:
        result = await self.platform.remove_domain(domain)
        if not result.ok:
            logger.error(f"Failed to remove domain {domain} from platform: {result.message}")

    # ── Verification pipeline ────────────────────────────────────────

    async def verify(self, subscriber_id: str, domain: str) -> VerificationOutcome:
        """
        Run the full provisioning chain for the subscriber's domain.

        Concurrent calls for one domain are serialized by the store lock.
        """
        domain = self.validate(domain)
        record = await self.store.get(subscriber_id)
        if not record or record.domain != domain:
            raise DomainNotFoundError(MSG_NOT_YOURS)
        await self._require_entitlement(subscriber_id)
        if not self.platform.is_configured:
            # A deployment problem, not the subscriber's; leave the record alone
            raise UpstreamPlatformError(
                self.platform.config_status().get("error") or "Edge platform is not configured",
                provider_code=CODE_NOT_CONFIGURED,
            )

        async with self.store.lock(domain):
            # Reload: a removal or another verify may have run while we waited
            record = await self.store.get(subscriber_id)
            if not record or record.domain != domain:
                raise DomainNotFoundError(MSG_NOT_YOURS)
            return await self._run_pipeline(record)

    def _outcome(
        self,
        record: DomainRecord,
        success: bool,
        message: str,
        error: Optional[str] = None,
        code: Optional[DomainErrorCode] = None,
        dns_ok: bool = True,
    ) -> VerificationOutcome:
        return VerificationOutcome(
            domain=record.domain,
            status=record.status,
            success=success,
            message=message,
            error=error,
            code=code,
            instructions=None if dns_ok else self.resolver.get_instructions(record.domain),
            record=record,
        )

    async def _platform_failure(
        self, record: DomainRecord, result: PlatformResult, before: DomainRecord
    ) -> VerificationOutcome:
        """
        Persist a hard provider failure as error. A transient one puts the
        record back the way it was before this verify call, so a live
        domain keeps routing while the provider recovers.
        """
        message = result.message or "Edge platform request failed"
        if result.transient:
            if record.status != before.status:
                record = await self._persist(before)
            logger.info(
                f"Transient platform failure for {record.domain}, "
                f"status kept at {record.status.value}: {message}"
            )
            reply = f"{message}. Please try again shortly."
        else:
            await self._transition(record, DomainStatus.ERROR, message)
            reply = message
        return self._outcome(
            record,
            success=False,
            message=reply,
            error=message,
            code=DomainErrorCode.UPSTREAM_PLATFORM_ERROR,
        )

    async def _run_pipeline(self, record: DomainRecord) -> VerificationOutcome:
        domain = record.domain
        before = DomainRecord.from_dict(record.to_dict())

        # 1. DNS
        dns = await self.resolver.check_resolution(domain)
        if not dns.resolves:
            # Propagation is eventually consistent; nothing is persisted
            return self._outcome(
                record,
                success=False,
                message=dns.error or MSG_CHECK_DNS,
                error=dns.error,
                code=DomainErrorCode.UPSTREAM_DNS_ERROR if dns.lookup_failed else None,
                dns_ok=False,
            )
        if not dns.points_to_platform:
            message = dns.error or "Domain does not point to the platform"
            await self._transition(record, DomainStatus.ERROR, message)
            return self._outcome(record, success=False, message=MSG_CHECK_DNS, error=message, dns_ok=False)

        await self._transition(record, DomainStatus.DNS_CONFIGURED)

        # 2. Registration
        added = await self.platform.add_domain(domain)
        if not added.ok:
            return await self._platform_failure(record, added, before)
        await self._transition(record, DomainStatus.PLATFORM_PENDING)

        # 3. Provider-side verification
        verified = await self.platform.verify_domain(domain)
        if not verified.ok:
            return await self._platform_failure(record, verified, before)

        # 4. Status and certificate
        status_result = await self.platform.get_status(domain)
        if not status_result.ok:
            return await self._platform_failure(record, status_result, before)
        status = status_result.value

        if status.configured and status.ssl_state == SSL_READY:
            await self._transition(record, DomainStatus.ACTIVE)
            return self._outcome(record, success=True, message=MSG_ACTIVE)

        if status.configured and status.ssl_state == SSL_PENDING:
            await self._transition(record, DomainStatus.SSL_PENDING)
            return self._outcome(record, success=True, message=MSG_SSL_PENDING)

        if not self.strict_status_fallback:
            logger.warning(
                f"Unrecognized platform state for {domain} "
                f"(configured={status.configured}, ssl={status.ssl_state}); marking active"
            )
            await self._transition(record, DomainStatus.ACTIVE)
            return self._outcome(record, success=True, message=MSG_ACTIVE)

        if status.ssl_state == SSL_ERROR:
            message = status.ssl_error or "SSL certificate provisioning failed"
            await self._transition(record, DomainStatus.ERROR, message)
            return self._outcome(
                record,
                success=False,
                message=message,
                error=message,
                code=DomainErrorCode.UPSTREAM_PLATFORM_ERROR,
            )

        await self._transition(record, DomainStatus.SSL_PENDING)
        return self._outcome(
            record,
            success=True,
            message="The platform has not confirmed the domain configuration yet; verify again shortly.",
        )
