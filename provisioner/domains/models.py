"""
Custom domain data model for the provisioner.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import InvalidDomainError, InvalidTransitionError


class DomainStatus(str, Enum):
    UNSET = "unset"
    PENDING = "pending"
    DNS_CONFIGURED = "dns_configured"
    PLATFORM_PENDING = "platform_pending"
    SSL_PENDING = "ssl_pending"
    ACTIVE = "active"
    ERROR = "error"


# Re-verification restarts the pipeline, so post-DNS states may re-enter
# dns_configured. UNSET and PENDING are reachable from everywhere (removal,
# adding a new domain) and are handled in transition_to().
TRANSITIONS: Dict[DomainStatus, FrozenSet[DomainStatus]] = {
    DomainStatus.UNSET: frozenset(),
    DomainStatus.PENDING: frozenset({DomainStatus.DNS_CONFIGURED, DomainStatus.ERROR}),
    DomainStatus.DNS_CONFIGURED: frozenset({DomainStatus.PLATFORM_PENDING, DomainStatus.ERROR}),
    DomainStatus.PLATFORM_PENDING: frozenset(
        {
            DomainStatus.DNS_CONFIGURED,
            DomainStatus.SSL_PENDING,
            DomainStatus.ACTIVE,
            DomainStatus.ERROR,
        }
    ),
    DomainStatus.SSL_PENDING: frozenset({DomainStatus.DNS_CONFIGURED, DomainStatus.ERROR}),
    DomainStatus.ACTIVE: frozenset({DomainStatus.DNS_CONFIGURED, DomainStatus.ERROR}),
    DomainStatus.ERROR: frozenset({DomainStatus.DNS_CONFIGURED, DomainStatus.ERROR}),
}

# Labels of [a-z0-9-], not starting or ending with a hyphen, alphabetic TLD
_DOMAIN_RE = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+"
    r"[a-z]{2,63}$"
)


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().rstrip(".")


def validate_domain(
    domain: str,
    main_domain: Optional[str] = None,
    reserved_suffixes: tuple = (),
) -> str:
    """
    Normalize and validate a domain name.

    Raises InvalidDomainError on malformed input or when the domain belongs
    to the hosted product itself. Never touches the network.
    """
    if not isinstance(domain, str):
        raise InvalidDomainError("Domain must be a string")

    domain = normalize_domain(domain)
    if len(domain) < 3:
        raise InvalidDomainError("Domain must be at least 3 characters")
    if len(domain) > 253:
        raise InvalidDomainError("Domain is too long")
    if not _DOMAIN_RE.match(domain):
        raise InvalidDomainError("Invalid domain format")

    if main_domain:
        main = normalize_domain(main_domain)
        if domain == main or domain.endswith(f".{main}"):
            raise InvalidDomainError("Cannot use the main domain or its subdomains")

    for suffix in reserved_suffixes:
        if suffix and domain.endswith(suffix.lower()):
            raise InvalidDomainError(f"Cannot use {suffix} domains")

    return domain


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class DomainRecord:
    """Provisioning state of the one custom domain a subscriber may attach."""

    subscriber_id: str
    domain: Optional[str] = None
    status: DomainStatus = DomainStatus.UNSET
    verified_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == DomainStatus.ACTIVE

    def can_transition_to(self, target: DomainStatus) -> bool:
        if target in (DomainStatus.UNSET, DomainStatus.PENDING):
            return True
        return target == self.status or target in TRANSITIONS[self.status]

    def transition_to(
        self,
        target: DomainStatus,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "DomainRecord":
        """
        Move to ``target``, keeping the field invariants.

        errorMessage is set iff the target is ERROR; verifiedAt is stamped
        on entry into ACTIVE and dropped when leaving it for anything
        but a re-verification.
        """
        target = DomainStatus(target)
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self.status.value, target.value)

        now = now or _utcnow()

        if target == DomainStatus.UNSET:
            self.domain = None
            self.verified_at = None
            self.error_message = None
        elif target == DomainStatus.ERROR:
            self.error_message = error_message or "Domain verification failed"
            self.verified_at = None
        else:
            self.error_message = None
            if target == DomainStatus.ACTIVE:
                self.verified_at = now
            elif target in (DomainStatus.PENDING, DomainStatus.SSL_PENDING):
                self.verified_at = None

        self.status = target
        self.updated_at = now
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "subscriber_id": self.subscriber_id,
            "domain": self.domain,
            "status": self.status.value,
            "verified_at": _iso(self.verified_at),
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DomainRecord":
        """Create from dictionary."""
        return cls(
            subscriber_id=data["subscriber_id"],
            domain=data.get("domain"),
            status=DomainStatus(data.get("status") or DomainStatus.UNSET.value),
            verified_at=_parse_dt(data.get("verified_at")),
            error_message=data.get("error_message"),
            created_at=_parse_dt(data.get("created_at")) or _utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or _utcnow(),
        )

    def to_api_response(self) -> dict:
        return {
            "domain": self.domain,
            "status": self.status.value,
            "verifiedAt": _iso(self.verified_at),
            "errorMessage": self.error_message,
        }
