"""
DNS checks for custom domains.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import dns.asyncresolver
import dns.exception
import dns.resolver

from .errors import UpstreamDNSError
from .models import validate_domain

logger = logging.getLogger("provisioner.domains.verification")

MECHANISM_CNAME = "cname"
MECHANISM_A_RECORD = "a-record"
MECHANISM_NONE = "none"


@dataclass
class ResolutionResult:
    """Outcome of checking where a domain points."""

    resolves: bool
    points_to_platform: bool
    mechanism: str = MECHANISM_NONE
    targets: List[str] = field(default_factory=list)
    error: Optional[str] = None
    # A lookup failed for a reason other than "no such record"
    lookup_failed: bool = False

    def to_dict(self) -> dict:
        data = {
            "resolves": self.resolves,
            "pointsToPlatform": self.points_to_platform,
            "mechanism": self.mechanism,
            "targets": list(self.targets),
        }
        if self.error:
            data["error"] = self.error
        return data


class DNSResolver:
    """Classifies whether a domain's public DNS points at the edge platform."""

    def __init__(
        self,
        cname_target: str = "cname.vercel-dns.com",
        anycast_ip: str = "76.76.19.61",
        timeout: float = 5.0,
        main_domain: Optional[str] = None,
    ):
        self.cname_target = cname_target.lower().rstrip(".")
        self.anycast_ip = anycast_ip
        self.timeout = timeout
        self.main_domain = main_domain

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        try:
            resolver = dns.asyncresolver.Resolver()
        except dns.resolver.NoResolverConfiguration as e:
            raise UpstreamDNSError(f"No DNS resolver configuration: {e}")
        resolver.timeout = self.timeout
        resolver.lifetime = self.timeout
        return resolver

    async def check_resolution(self, domain: str) -> ResolutionResult:
        """
        Check whether ``domain`` resolves and points at the platform.

        Tries CNAME first, then falls back to A records. Lookup failures are
        reported as "not yet resolved" since propagation is eventually
        consistent and callers retry.
        """
        domain = validate_domain(domain, self.main_domain)
        resolver = self._get_resolver()

        cnames, cname_failure = await self._query(resolver, domain, "CNAME")
        if cnames:
            points = any(t.lower() == self.cname_target for t in cnames)
            if not points:
                logger.info(f"CNAME for {domain} points to {cnames}, not {self.cname_target}")
            return ResolutionResult(
                resolves=True,
                points_to_platform=points,
                mechanism=MECHANISM_CNAME,
                targets=cnames,
                error=None if points else (
                    f"CNAME points to {', '.join(cnames)}, "
                    f"expected {self.cname_target}"
                ),
            )

        a_records, a_failure = await self._query(resolver, domain, "A")
        if a_records:
            points = self.anycast_ip in a_records
            return ResolutionResult(
                resolves=True,
                points_to_platform=points,
                mechanism=MECHANISM_A_RECORD,
                targets=a_records,
                error=None if points else (
                    f"A record points to {', '.join(a_records)}, "
                    f"expected {self.anycast_ip}"
                ),
            )

        failure = cname_failure or a_failure
        if failure:
            message = f"DNS lookup for {domain} failed ({failure}); it may not have propagated yet."
        else:
            message = (
                f"Domain {domain} does not resolve. Add a CNAME record pointing "
                f"to {self.cname_target} or an A record pointing to {self.anycast_ip}."
            )
        return ResolutionResult(
            resolves=False,
            points_to_platform=False,
            error=message,
            lookup_failed=failure is not None,
        )

    async def _query(
        self, resolver: dns.asyncresolver.Resolver, domain: str, rdtype: str
    ) -> Tuple[List[str], Optional[str]]:
        """
        Resolve one record type.

        Returns (values, failure). A missing record is not a failure;
        timeouts and server errors are, and yield no values.
        """
        try:
            answers = await resolver.resolve(domain, rdtype)
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
            return [], None
        except (dns.exception.DNSException, OSError) as e:
            logger.debug(f"{rdtype} lookup failed for {domain}: {e}")
            return [], str(e) or e.__class__.__name__

        return self._values(answers, rdtype), None

    async def _lookup(
        self, resolver: dns.asyncresolver.Resolver, domain: str, rdtype: str
    ) -> List[str]:
        values, _ = await self._query(resolver, domain, rdtype)
        return values

    @staticmethod
    def _values(answers, rdtype: str) -> List[str]:
        if rdtype == "CNAME":
            return [str(rdata.target).rstrip(".") for rdata in answers]
        if rdtype == "TXT":
            return [
                "".join(
                    s.decode() if isinstance(s, bytes) else s
                    for s in rdata.strings
                )
                for rdata in answers
            ]
        return [str(rdata) for rdata in answers]

    async def lookup_txt(self, domain: str) -> List[str]:
        """TXT values, informational only."""
        return await self._lookup(self._get_resolver(), domain, "TXT")

    def get_instructions(self, domain: str) -> dict:
        """Return human-readable DNS instructions for pointing a domain at the platform."""
        return {
            "cname": f"Create a CNAME record pointing {domain} to {self.cname_target}",
            "a_record": f"Or create an A record pointing {domain} to {self.anycast_ip}",
            "records": [
                {"type": "CNAME", "name": domain, "value": self.cname_target},
                {"type": "A", "name": domain, "value": self.anycast_ip},
            ],
        }
