"""
REST API for custom domain management.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from ..domains.errors import DomainNotFoundError, UnauthenticatedError
from ..domains.hosts import HOST_CUSTOM, classify_host
from ..domains.orchestrator import MSG_ADDED, MSG_NOT_YOURS

logger = logging.getLogger("provisioner.api.domains")

router = APIRouter(prefix="/domain", tags=["domain"])

security = HTTPBearer(auto_error=False)


# ── Auth dependency ──────────────────────────────────────────────────

async def get_current_subscriber(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Extract and verify the subscriber id from the Bearer token."""
    if credentials is None:
        raise UnauthenticatedError("Unauthorized")
    verifier = request.app.state.token_verifier
    return verifier.subscriber_id(credentials.credentials)


# ── Request models ───────────────────────────────────────────────────

class DomainRequest(BaseModel):
    domain: str


# ── Routes ───────────────────────────────────────────────────────────

@router.post("")
async def add_domain(
    body: DomainRequest,
    request: Request,
    subscriber_id: str = Depends(get_current_subscriber),
):
    """Attach a custom domain; it starts out pending."""
    orchestrator = request.app.state.orchestrator
    record = await orchestrator.add_domain(subscriber_id, body.domain)
    return {
        "success": True,
        "domain": record.domain,
        "status": record.status.value,
        "message": MSG_ADDED,
    }


@router.get("")
async def get_domain(
    request: Request,
    subscriber_id: str = Depends(get_current_subscriber),
):
    """Current domain and provisioning status."""
    orchestrator = request.app.state.orchestrator
    gate = request.app.state.subscription_gate
    record = await orchestrator.get_record(subscriber_id)
    return {
        **record.to_api_response(),
        "hasActiveEntitlement": await gate.has_active_entitlement(subscriber_id),
    }


@router.delete("")
async def remove_domain(
    request: Request,
    subscriber_id: str = Depends(get_current_subscriber),
):
    """Detach the custom domain. Platform deregistration is best-effort."""
    orchestrator = request.app.state.orchestrator
    await orchestrator.remove_domain(subscriber_id)
    return {"success": True, "message": "Custom domain removed successfully"}


@router.post("/verify")
async def verify_domain(
    body: DomainRequest,
    request: Request,
    subscriber_id: str = Depends(get_current_subscriber),
):
    """Run the provisioning pipeline and report where the domain stands."""
    orchestrator = request.app.state.orchestrator
    outcome = await orchestrator.verify(subscriber_id, body.domain)
    return outcome.to_response()


@router.post("/diagnostics")
async def run_diagnostics(
    body: DomainRequest,
    request: Request,
    subscriber_id: str = Depends(get_current_subscriber),
):
    """Troubleshooting report; never changes the stored status."""
    orchestrator = request.app.state.orchestrator
    diagnostics = request.app.state.diagnostics

    domain = orchestrator.validate(body.domain)
    record = await orchestrator.get_record(subscriber_id)
    if record.domain != domain:
        raise DomainNotFoundError(MSG_NOT_YOURS)

    report = await diagnostics.run(domain)
    return report.to_dict()


@router.get("/config-check")
async def config_check(
    request: Request,
    subscriber_id: str = Depends(get_current_subscriber),
):
    """Whether this deployment can manage domains at all."""
    settings = request.app.state.settings
    platform = request.app.state.edge_client.config_status()

    issues = []
    if not platform["isValid"]:
        issues.append(platform["error"] or "Platform configuration incomplete")
    if not settings.main_domain:
        issues.append("Main domain not configured")

    return {
        "status": "ready" if not issues else "configuration_required",
        "platform": platform,
        "issues": issues,
        "recommendations": [
            "Configure missing environment variables",
            "Restart the application after configuration changes",
        ] if issues else [
            "System is properly configured for domain management"
        ],
    }


@router.get("/lookup/{host}")
async def lookup_host(host: str, request: Request):
    """Which subscriber serves an incoming custom-domain host (edge router hook)."""
    settings = request.app.state.settings
    store = request.app.state.domain_store

    if classify_host(host, settings.main_domain, settings.platform_preview_suffix) != HOST_CUSTOM:
        raise HTTPException(status_code=404, detail="Not a custom domain")

    subscriber_id = await store.lookup(host)
    if not subscriber_id:
        raise HTTPException(status_code=404, detail="Domain not found")
    return {"host": host.lower(), "subscriberId": subscriber_id}
