"""
Pytest configuration for provisioner tests.
"""

import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables
os.environ["PROVISIONER_DEBUG"] = "true"
os.environ["PROVISIONER_MAIN_DOMAIN"] = "wrk.so"
os.environ["PROVISIONER_JWT_SECRET"] = "test-secret"
os.environ["PROVISIONER_PLATFORM_API_TOKEN"] = "test-token"
os.environ["PROVISIONER_PLATFORM_PROJECT_ID"] = "prj_test"
os.environ["PROVISIONER_REDIS_URL"] = "redis://localhost:6379"

from provisioner.domains.store import DomainStore
from provisioner.domains.verification import (
    MECHANISM_A_RECORD,
    MECHANISM_CNAME,
    DNSResolver,
    ResolutionResult,
)
from provisioner.services.edge_platform import (
    SSL_PENDING,
    SSL_READY,
    PlatformError,
    PlatformResult,
    PlatformStatus,
)
from provisioner.services.subscription import RedisSubscriptionGate

CNAME_TARGET = "cname.vercel-dns.com"
ANYCAST_IP = "76.76.19.61"


class FakeResolver(DNSResolver):
    """DNSResolver whose answers are set by the test."""

    def __init__(self):
        super().__init__(cname_target=CNAME_TARGET, anycast_ip=ANYCAST_IP, main_domain="wrk.so")
        self.txt = []
        self.calls = 0
        self.unresolved()

    def unresolved(self, lookup_failed=False):
        self.result = ResolutionResult(
            resolves=False,
            points_to_platform=False,
            error="Domain does not resolve",
            lookup_failed=lookup_failed,
        )

    def point_at_platform(self):
        self.result = ResolutionResult(
            resolves=True,
            points_to_platform=True,
            mechanism=MECHANISM_CNAME,
            targets=[CNAME_TARGET],
        )

    def point_elsewhere(self):
        self.result = ResolutionResult(
            resolves=True,
            points_to_platform=False,
            mechanism=MECHANISM_A_RECORD,
            targets=["203.0.113.9"],
            error=f"A record points to 203.0.113.9, expected {ANYCAST_IP}",
        )

    async def check_resolution(self, domain):
        self.calls += 1
        return self.result

    async def lookup_txt(self, domain):
        return list(self.txt)


class FakePlatform:
    """EdgePlatformClient stand-in with scripted results."""

    def __init__(self):
        self.configured = True
        self.add_result = PlatformResult.success()
        self.verify_result = PlatformResult.success("Domain verified by platform")
        self.remove_result = PlatformResult.success()
        self.set_status(configured=True, ssl_state=SSL_READY)
        self.calls = []

    def set_status(self, configured=True, ssl_state=SSL_READY, verified=True, ssl_error=None):
        self.status_result = PlatformResult.success(
            PlatformStatus(
                configured=configured,
                verified=verified,
                ssl_state=ssl_state,
                ssl_error=ssl_error,
            )
        )

    @staticmethod
    def fail(message, code=None, status=400, transient=False):
        return PlatformResult.failure(
            PlatformError(message=message, code=code, status=status, transient=transient)
        )

    @property
    def is_configured(self):
        return self.configured

    def config_status(self):
        return {
            "hasToken": self.configured,
            "hasProjectId": self.configured,
            "hasTeamId": False,
            "isValid": self.configured,
            "error": None if self.configured else "Platform API token is required but not set",
        }

    async def add_domain(self, domain):
        self.calls.append(("add", domain))
        return self.add_result

    async def remove_domain(self, domain):
        self.calls.append(("remove", domain))
        return self.remove_result

    async def verify_domain(self, domain):
        self.calls.append(("verify", domain))
        return self.verify_result

    async def get_status(self, domain):
        self.calls.append(("status", domain))
        return self.status_result

    async def close(self):
        pass


@pytest.fixture
def test_settings():
    """Provide test settings."""
    from provisioner.config import Settings
    return Settings()


@pytest.fixture
def domain_store():
    """In-memory domain store (no Redis)."""
    return DomainStore(use_redis=False)


@pytest.fixture
def gate():
    """In-memory subscription gate (no Redis)."""
    return RedisSubscriptionGate(use_redis=False)


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def orchestrator(domain_store, resolver, platform, gate):
    from provisioner.domains.orchestrator import ProvisioningOrchestrator
    return ProvisioningOrchestrator(
        store=domain_store,
        resolver=resolver,
        platform=platform,
        gate=gate,
        main_domain="wrk.so",
        reserved_suffixes=(".vercel.app",),
    )

