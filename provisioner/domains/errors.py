"""
Error taxonomy for custom domain provisioning.

Caller-fatal conditions are raised as ``ProvisioningError`` subclasses and
mapped to HTTP responses by the API layer. Upstream failures that the
caller recovers from by retrying are reported through ``DomainErrorCode``
on the verification outcome instead of being raised.
"""

from enum import Enum
from typing import Any, Dict, Optional


class DomainErrorCode(str, Enum):
    INVALID_DOMAIN_FORMAT = "invalid-domain-format"
    UNAUTHENTICATED = "unauthenticated"
    NOT_ENTITLED = "not-entitled"
    DOMAIN_CONFLICT = "domain-conflict"
    UPSTREAM_DNS_ERROR = "upstream-dns-error"
    UPSTREAM_PLATFORM_ERROR = "upstream-platform-error"
    NOT_FOUND = "not-found"


class ProvisioningError(Exception):
    """Base class for errors returned to the caller without a state change."""

    code: DomainErrorCode
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code.value}
        if self.details:
            body["details"] = self.details
        return body


class InvalidDomainError(ProvisioningError):
    """Domain failed syntax validation; rejected before any I/O."""

    code = DomainErrorCode.INVALID_DOMAIN_FORMAT
    status_code = 400


class UnauthenticatedError(ProvisioningError):
    code = DomainErrorCode.UNAUTHENTICATED
    status_code = 401


class NotEntitledError(ProvisioningError):
    """Subscriber has no active plan that includes custom domains."""

    code = DomainErrorCode.NOT_ENTITLED
    status_code = 403


class DomainConflictError(ProvisioningError):
    """Domain is already claimed by a different subscriber."""

    code = DomainErrorCode.DOMAIN_CONFLICT
    status_code = 409


class DomainBusyError(DomainConflictError):
    """Another request holds the domain's lock."""

    def __init__(self, message: str = "Another operation on this domain is in progress. Please try again shortly."):
        super().__init__(message)


class DomainNotFoundError(ProvisioningError):
    """No record, or the record does not belong to the caller."""

    code = DomainErrorCode.NOT_FOUND
    status_code = 404


class UpstreamDNSError(ProvisioningError):
    """The resolver itself is unusable (no configuration, no nameservers)."""

    code = DomainErrorCode.UPSTREAM_DNS_ERROR
    status_code = 502


class UpstreamPlatformError(ProvisioningError):
    """Wraps an edge platform error payload."""

    code = DomainErrorCode.UPSTREAM_PLATFORM_ERROR
    status_code = 502

    def __init__(
        self,
        message: str,
        provider_code: Optional[str] = None,
        payload: Optional[Any] = None,
    ):
        details: Dict[str, Any] = {}
        if provider_code:
            details["providerCode"] = provider_code
        if payload is not None:
            details["payload"] = payload
        super().__init__(message, details)
        self.provider_code = provider_code
        self.payload = payload


class InvalidTransitionError(Exception):
    """A DomainRecord was asked to move along an edge the graph does not have."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid domain status transition: {current} -> {target}")
        self.current = current
        self.target = target
