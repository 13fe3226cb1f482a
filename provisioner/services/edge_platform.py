"""
Edge platform domain API client.

Wraps the project-scoped domain endpoints of the hosting platform. Every
public method returns a PlatformResult and never raises for network or
provider failures, so callers can persist a status instead of aborting.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger("provisioner.services.edge_platform")

SSL_PENDING = "pending"
SSL_READY = "ready"
SSL_ERROR = "error"

CODE_ALREADY_EXISTS = "domain_already_exists"
CODE_NOT_FOUND = "not_found"
CODE_NOT_CONFIGURED = "not_configured"
CODE_NETWORK = "network_error"
CODE_TIMEOUT = "timeout"


@dataclass
class EdgePlatformConfig:
    api_url: str = "https://api.vercel.com"
    api_token: str = ""
    project_id: str = ""
    team_id: Optional[str] = None
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "EdgePlatformConfig":
        return cls(
            api_url=settings.platform_api_url,
            api_token=settings.platform_api_token,
            project_id=settings.platform_project_id,
            team_id=settings.platform_team_id or None,
            timeout=settings.platform_timeout,
        )

    def validate(self) -> Optional[str]:
        """Return a description of the first missing setting, or None."""
        if not self.api_token:
            return "Platform API token is required but not set"
        if not self.project_id:
            return "Platform project id is required but not set"
        return None


@dataclass
class PlatformError:
    """Decoded provider failure."""

    message: str
    code: Optional[str] = None
    status: Optional[int] = None
    # Worth retrying later without user action (5xx, 429, network)
    transient: bool = False
    payload: Any = None


@dataclass
class PlatformResult:
    """Tagged result: ``value`` when ok, ``error`` otherwise."""

    ok: bool
    value: Any = None
    error: Optional[PlatformError] = None

    @classmethod
    def success(cls, value: Any = None) -> "PlatformResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: PlatformError) -> "PlatformResult":
        return cls(ok=False, error=error)

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def transient(self) -> bool:
        return bool(self.error and self.error.transient)


@dataclass
class PlatformStatus:
    configured: bool
    verified: bool
    ssl_state: str = SSL_PENDING
    ssl_error: Optional[str] = None
    cnames: List[str] = field(default_factory=list)
    a_records: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "configured": self.configured,
            "verified": self.verified,
            "sslState": self.ssl_state,
            "cnames": list(self.cnames),
            "aRecords": list(self.a_records),
        }
        if self.ssl_error:
            data["sslError"] = self.ssl_error
        return data


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float))]


def parse_status(data: Any) -> PlatformStatus:
    """Decode a domain config payload; unexpected shapes mean "not ready"."""
    if not isinstance(data, dict):
        return PlatformStatus(configured=False, verified=False)

    certs = data.get("certs")
    cert_error = data.get("certError")
    if isinstance(cert_error, str) and cert_error:
        ssl_state = SSL_ERROR
    elif isinstance(certs, list) and certs:
        ssl_state = SSL_READY
    else:
        ssl_state = SSL_PENDING

    configured_by = data.get("configuredBy")
    return PlatformStatus(
        configured=data.get("misconfigured") is False,
        verified=data.get("verified") is True,
        ssl_state=ssl_state,
        ssl_error=cert_error if ssl_state == SSL_ERROR else None,
        cnames=_string_list(data.get("cnames")) if configured_by == "CNAME" else [],
        a_records=_string_list(data.get("aRecords")) if configured_by == "A" else [],
    )


def parse_error(response: httpx.Response, fallback: str) -> PlatformError:
    """Decode a provider error body, falling back to the HTTP reason phrase."""
    try:
        body = response.json()
    except ValueError:
        body = None

    code = None
    message = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        if isinstance(err.get("code"), str):
            code = err["code"]
        if isinstance(err.get("message"), str) and err["message"]:
            message = err["message"]

    status = response.status_code
    if status == 401:
        message = "Platform API authentication failed. Please check the API token."
    elif status == 403 and code is None:
        message = "Platform API access denied. Please check project permissions."

    return PlatformError(
        message=message or f"{fallback}: {response.reason_phrase or status}",
        code=code,
        status=status,
        transient=status >= 500 or status == 429,
        payload=body,
    )


class EdgePlatformClient:
    """Idempotent add/remove/verify/status calls against the platform's domain API."""

    def __init__(
        self,
        config: EdgePlatformConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create persistent HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url,
                timeout=httpx.Timeout(self.config.timeout),
                transport=self._transport,
            )
        return self._client

    def _params(self) -> dict:
        return {"teamId": self.config.team_id} if self.config.team_id else {}

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.api_token}",
            "Accept": "application/json",
        }

    async def _call(
        self,
        method: str,
        path: str,
        fallback: str,
        json: Optional[dict] = None,
    ) -> PlatformResult:
        """Send one request; on success ``value`` is the decoded JSON body (or None)."""
        config_error = self.config.validate()
        if config_error:
            return PlatformResult.failure(
                PlatformError(
                    message=f"Platform API configuration error: {config_error}",
                    code=CODE_NOT_CONFIGURED,
                )
            )

        client = await self._get_client()
        try:
            response = await client.request(
                method,
                path,
                params=self._params(),
                headers=self._headers(),
                json=json,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Platform API {method} {path} timed out: {e}")
            return PlatformResult.failure(
                PlatformError(
                    message=f"{fallback}: request timed out",
                    code=CODE_TIMEOUT,
                    transient=True,
                )
            )
        except httpx.HTTPError as e:
            logger.error(f"Platform API {method} {path} failed: {e}")
            return PlatformResult.failure(
                PlatformError(
                    message=f"{fallback}: {e}",
                    code=CODE_NETWORK,
                    transient=True,
                )
            )

        if response.is_success:
            try:
                return PlatformResult.success(response.json())
            except ValueError:
                return PlatformResult.success(None)

        return PlatformResult.failure(parse_error(response, fallback))

    def _domain_path(self, domain: str, suffix: str = "") -> str:
        return f"/v9/projects/{quote(self.config.project_id, safe='')}/domains/{quote(domain, safe='')}{suffix}"

    async def add_domain(self, domain: str) -> PlatformResult:
        """Register ``domain`` with the project. Already registered counts as success."""
        result = await self._call(
            "POST",
            f"/v10/projects/{quote(self.config.project_id, safe='')}/domains",
            "Failed to add domain",
            json={"name": domain},
        )
        if not result.ok and result.error.code == CODE_ALREADY_EXISTS:
            logger.info(f"Domain {domain} already registered with platform")
            return PlatformResult.success(result.error.payload)
        if result.ok:
            logger.info(f"Added domain {domain} to platform project")
        else:
            logger.warning(f"Failed to add domain {domain}: {result.message}")
        return result

    async def remove_domain(self, domain: str) -> PlatformResult:
        """Deregister ``domain``. Not found counts as success."""
        result = await self._call("DELETE", self._domain_path(domain), "Failed to remove domain")
        if not result.ok and (result.error.code == CODE_NOT_FOUND or result.error.status == 404):
            return PlatformResult.success(None)
        if result.ok:
            logger.info(f"Removed domain {domain} from platform project")
        else:
            logger.warning(f"Failed to remove domain {domain}: {result.message}")
        return result

    async def verify_domain(self, domain: str) -> PlatformResult:
        """Trigger provider-side verification; ``value`` is a human-readable message."""
        result = await self._call(
            "POST", self._domain_path(domain, "/verify"), "Failed to verify domain"
        )
        if not result.ok:
            logger.warning(f"Platform verification failed for {domain}: {result.message}")
            return result
        body = result.value if isinstance(result.value, dict) else {}
        if body.get("verified") is False:
            return PlatformResult.success("Verification requested; the platform has not confirmed it yet")
        return PlatformResult.success("Domain verified by platform")

    async def get_status(self, domain: str) -> PlatformResult:
        """Fetch configuration and certificate state; ``value`` is a PlatformStatus."""
        result = await self._call(
            "GET",
            f"/v6/domains/{quote(domain, safe='')}/config",
            "Failed to get domain status",
        )
        if not result.ok:
            return result
        return PlatformResult.success(parse_status(result.value))

    def config_status(self) -> dict:
        """Configuration summary without secrets."""
        error = self.config.validate()
        return {
            "hasToken": bool(self.config.api_token),
            "hasProjectId": bool(self.config.project_id),
            "hasTeamId": bool(self.config.team_id),
            "isValid": error is None,
            "error": error,
        }

    @property
    def is_configured(self) -> bool:
        return self.config.validate() is None

    async def close(self) -> None:
        """Close HTTP client for clean shutdown."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
