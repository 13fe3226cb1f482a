"""
Tests for DNS classification.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import dns.exception
import dns.resolver

from provisioner.domains.errors import InvalidDomainError
from provisioner.domains.verification import (
    MECHANISM_A_RECORD,
    MECHANISM_CNAME,
    MECHANISM_NONE,
    DNSResolver,
)


class _Name:
    def __init__(self, text):
        self.text = text

    def __str__(self):
        return self.text


class _CNAME:
    def __init__(self, target):
        self.target = _Name(target)


class _A:
    def __init__(self, address):
        self.address = address

    def __str__(self):
        return self.address


class _TXT:
    def __init__(self, *strings):
        self.strings = strings


def _resolver_with(records, failures=None):
    """Build a mock async resolver answering from ``records`` by rdtype."""
    failures = failures or {}

    async def resolve(domain, rdtype):
        if rdtype in failures:
            raise failures[rdtype]
        if rdtype not in records:
            raise dns.resolver.NoAnswer()
        return records[rdtype]

    mock_resolver = MagicMock()
    mock_resolver.resolve = AsyncMock(side_effect=resolve)
    return mock_resolver


@pytest.fixture
def dns_resolver():
    return DNSResolver(
        cname_target="cname.vercel-dns.com",
        anycast_ip="76.76.19.61",
        main_domain="wrk.so",
    )


class TestCheckResolution:
    @pytest.mark.asyncio
    async def test_cname_to_platform(self, dns_resolver):
        mock_resolver = _resolver_with({"CNAME": [_CNAME("CNAME.Vercel-DNS.com.")]})
        with patch.object(dns_resolver, "_get_resolver", return_value=mock_resolver):
            result = await dns_resolver.check_resolution("gallery.example.com")

        assert result.resolves is True
        assert result.points_to_platform is True
        assert result.mechanism == MECHANISM_CNAME
        assert result.targets == ["CNAME.Vercel-DNS.com"]
        assert result.error is None

    @pytest.mark.asyncio
    async def test_cname_elsewhere(self, dns_resolver):
        mock_resolver = _resolver_with({"CNAME": [_CNAME("other-host.example.net.")]})
        with patch.object(dns_resolver, "_get_resolver", return_value=mock_resolver):
            result = await dns_resolver.check_resolution("gallery.example.com")

        assert result.resolves is True
        assert result.points_to_platform is False
        assert "expected cname.vercel-dns.com" in result.error

    @pytest.mark.asyncio
    async def test_falls_back_to_a_record(self, dns_resolver):
        mock_resolver = _resolver_with({"A": [_A("76.76.19.61")]})
        with patch.object(dns_resolver, "_get_resolver", return_value=mock_resolver):
            result = await dns_resolver.check_resolution("example.com")

        assert result.points_to_platform is True
        assert result.mechanism == MECHANISM_A_RECORD
        assert result.targets == ["76.76.19.61"]

    @pytest.mark.asyncio
    async def test_a_record_elsewhere(self, dns_resolver):
        mock_resolver = _resolver_with({"A": [_A("203.0.113.9")]})
        with patch.object(dns_resolver, "_get_resolver", return_value=mock_resolver):
            result = await dns_resolver.check_resolution("example.com")

        assert result.resolves is True
        assert result.points_to_platform is False
        assert "76.76.19.61" in result.error

    @pytest.mark.asyncio
    async def test_nothing_resolves(self, dns_resolver):
        mock_resolver = _resolver_with(
            {}, failures={"CNAME": dns.resolver.NXDOMAIN(), "A": dns.resolver.NXDOMAIN()}
        )
        with patch.object(dns_resolver, "_get_resolver", return_value=mock_resolver):
            result = await dns_resolver.check_resolution("gallery.example.com")

        assert result.resolves is False
        assert result.points_to_platform is False
        assert result.mechanism == MECHANISM_NONE
        assert result.lookup_failed is False
        assert "does not resolve" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_downgraded(self, dns_resolver):
        mock_resolver = _resolver_with(
            {}, failures={"CNAME": dns.exception.Timeout(), "A": dns.exception.Timeout()}
        )
        with patch.object(dns_resolver, "_get_resolver", return_value=mock_resolver):
            result = await dns_resolver.check_resolution("gallery.example.com")

        assert result.resolves is False
        assert result.lookup_failed is True
        assert "failed" in result.error

    @pytest.mark.asyncio
    async def test_malformed_domain_makes_no_lookup(self, dns_resolver):
        with patch.object(dns_resolver, "_get_resolver") as factory:
            with pytest.raises(InvalidDomainError):
                await dns_resolver.check_resolution("not a domain")
            factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_txt_lookup(self, dns_resolver):
        mock_resolver = _resolver_with({"TXT": [_TXT(b"v=spf1 ", b"-all"), _TXT("hello")]})
        with patch.object(dns_resolver, "_get_resolver", return_value=mock_resolver):
            values = await dns_resolver.lookup_txt("example.com")
        assert values == ["v=spf1 -all", "hello"]


class TestInstructions:
    def test_lists_cname_and_a_record(self, dns_resolver):
        instructions = dns_resolver.get_instructions("gallery.example.com")
        assert "cname.vercel-dns.com" in instructions["cname"]
        assert "76.76.19.61" in instructions["a_record"]
        assert {"type": "CNAME", "name": "gallery.example.com", "value": "cname.vercel-dns.com"} in instructions["records"]
