"""
Read-only troubleshooting report for a custom domain.

Runs the DNS, platform-status and HTTP/HTTPS reachability checks
concurrently. Nothing here writes to the DomainStore.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, List, Optional

import httpx

from .verification import MECHANISM_A_RECORD, MECHANISM_CNAME, DNSResolver
from ..services.edge_platform import SSL_ERROR, SSL_PENDING, SSL_READY, EdgePlatformClient

logger = logging.getLogger("provisioner.domains.diagnostics")

SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

_SEVERITY = {SUCCESS: 0, WARNING: 1, ERROR: 2}


@dataclass
class DiagnosticResult:
    step: str
    status: str
    message: str
    details: Any = None

    def to_dict(self) -> dict:
        data = {"step": self.step, "status": self.status, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class DiagnosticReport:
    domain: str
    results: List[DiagnosticResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def overall_status(self) -> str:
        """Worst severity among the steps."""
        worst = SUCCESS
        for r in self.results:
            if _SEVERITY[r.status] > _SEVERITY[worst]:
                worst = r.status
        return worst

    @property
    def summary(self) -> dict:
        return {
            "total": len(self.results),
            "success": sum(1 for r in self.results if r.status == SUCCESS),
            "warnings": sum(1 for r in self.results if r.status == WARNING),
            "errors": sum(1 for r in self.results if r.status == ERROR),
        }

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "overallStatus": self.overall_status,
            "timestamp": self.timestamp.isoformat(),
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary,
        }


class DiagnosticsAggregator:
    """Fans out the three probe groups and fans the results back in order."""

    def __init__(
        self,
        resolver: DNSResolver,
        platform: EdgePlatformClient,
        probe_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.resolver = resolver
        self.platform = platform
        self.probe_timeout = probe_timeout
        self._transport = transport

    async def run(self, domain: str) -> DiagnosticReport:
        groups = await asyncio.gather(
            self._guard("DNS Check", "DNS diagnostic failed", self.check_dns(domain)),
            self._guard("Platform Check", "Platform diagnostic failed", self.check_platform(domain)),
            self._guard("HTTP Check", "HTTP diagnostic failed", self.check_http(domain)),
        )
        report = DiagnosticReport(domain=domain)
        for group in groups:
            report.results.extend(group)
        logger.info(
            f"Diagnostics for {domain}: {report.overall_status} "
            f"({report.summary['errors']} errors, {report.summary['warnings']} warnings)"
        )
        return report

    async def _guard(
        self, step: str, message: str, probe: Awaitable[List[DiagnosticResult]]
    ) -> List[DiagnosticResult]:
        """One failing probe group must not take the others down."""
        try:
            return await probe
        except Exception as e:
            logger.exception(f"{step} for diagnostics crashed")
            return [DiagnosticResult(step, ERROR, message, details=str(e) or e.__class__.__name__)]

    async def check_dns(self, domain: str) -> List[DiagnosticResult]:
        results: List[DiagnosticResult] = []
        resolution = await self.resolver.check_resolution(domain)

        if not resolution.resolves:
            results.append(
                DiagnosticResult(
                    "Domain Resolution",
                    ERROR,
                    f"Domain {domain} does not resolve",
                    details=resolution.error,
                )
            )
            # Nothing further to learn from records that are not there
            return results

        results.append(
            DiagnosticResult("Domain Resolution", SUCCESS, f"Domain {domain} resolves successfully")
        )

        if resolution.mechanism == MECHANISM_CNAME:
            if resolution.points_to_platform:
                results.append(
                    DiagnosticResult("CNAME Records", SUCCESS, "CNAME points to the platform", resolution.targets)
                )
            else:
                results.append(
                    DiagnosticResult(
                        "CNAME Records",
                        WARNING,
                        f"CNAME found but doesn't point to {self.resolver.cname_target}",
                        resolution.targets,
                    )
                )
        elif resolution.mechanism == MECHANISM_A_RECORD:
            if resolution.points_to_platform:
                results.append(
                    DiagnosticResult("A Records", SUCCESS, "A record points to the platform IP", resolution.targets)
                )
            else:
                results.append(
                    DiagnosticResult(
                        "A Records",
                        ERROR,
                        f"A record doesn't point to the platform IP ({self.resolver.anycast_ip})",
                        resolution.targets,
                    )
                )

        txt = await self.resolver.lookup_txt(domain)
        if txt:
            results.append(DiagnosticResult("TXT Records", SUCCESS, "TXT records found", ", ".join(txt)))
        else:
            results.append(DiagnosticResult("TXT Records", WARNING, "No TXT records found (not required)"))

        return results

    async def check_platform(self, domain: str) -> List[DiagnosticResult]:
        result = await self.platform.get_status(domain)
        if not result.ok:
            return [
                DiagnosticResult(
                    "Platform Domain Status",
                    ERROR,
                    result.message or "Failed to get platform status",
                )
            ]

        status = result.value
        results = [
            DiagnosticResult("Platform Configuration", SUCCESS, "Domain is properly configured on the platform")
            if status.configured
            else DiagnosticResult("Platform Configuration", ERROR, "Domain is not properly configured on the platform"),
            DiagnosticResult("Platform Verification", SUCCESS, "Domain is verified on the platform")
            if status.verified
            else DiagnosticResult("Platform Verification", WARNING, "Domain is not yet verified on the platform"),
        ]

        if status.ssl_state == SSL_READY:
            results.append(DiagnosticResult("SSL Certificate", SUCCESS, "SSL certificate is active"))
        elif status.ssl_state == SSL_PENDING:
            results.append(DiagnosticResult("SSL Certificate", WARNING, "SSL certificate is being provisioned"))
        elif status.ssl_state == SSL_ERROR:
            results.append(
                DiagnosticResult(
                    "SSL Certificate", ERROR, "SSL certificate provisioning failed", status.ssl_error
                )
            )
        return results

    async def check_http(self, domain: str) -> List[DiagnosticResult]:
        schemes = ("HTTP", "HTTPS")
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.probe_timeout),
            follow_redirects=False,
            transport=self._transport,
        ) as client:
            outcomes = await asyncio.gather(
                *(self._probe(client, scheme, f"{scheme.lower()}://{domain}") for scheme in schemes),
                return_exceptions=True,
            )

        results = []
        for scheme, outcome in zip(schemes, outcomes):
            if isinstance(outcome, DiagnosticResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                logger.error(f"{scheme} probe of {domain} crashed: {outcome!r}")
                results.append(
                    DiagnosticResult(
                        f"{scheme} Access",
                        ERROR,
                        f"{scheme} check failed",
                        str(outcome) or outcome.__class__.__name__,
                    )
                )
            else:
                raise outcome
        return results

    async def _probe(self, client: httpx.AsyncClient, scheme: str, url: str) -> DiagnosticResult:
        step = f"{scheme} Access"
        try:
            response = await client.head(url)
        except httpx.HTTPError as e:
            logger.debug(f"{scheme} probe of {url} failed: {e}")
            hint = " (SSL may not be ready)" if scheme == "HTTPS" else ""
            return DiagnosticResult(step, ERROR, f"Domain is not accessible via {scheme}{hint}", str(e) or None)

        if 200 <= response.status_code < 400:
            return DiagnosticResult(step, SUCCESS, f"Domain is accessible via {scheme}")
        return DiagnosticResult(step, WARNING, f"{scheme} returned status {response.status_code}")
