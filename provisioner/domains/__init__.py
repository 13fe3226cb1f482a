"""Custom domain provisioning."""

from .models import DomainRecord, DomainStatus
from .store import DomainStore
from .verification import DNSResolver
from .orchestrator import ProvisioningOrchestrator, VerificationOutcome
from .diagnostics import DiagnosticReport, DiagnosticsAggregator

__all__ = [
    "DomainRecord",
    "DomainStatus",
    "DomainStore",
    "DNSResolver",
    "ProvisioningOrchestrator",
    "VerificationOutcome",
    "DiagnosticReport",
    "DiagnosticsAggregator",
]
