from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.domains import router as domains_router
from .auth import SubscriberTokenVerifier
from .config import Settings, get_settings
from .domains import DiagnosticsAggregator, DNSResolver, DomainStore, ProvisioningOrchestrator
from .domains.errors import DomainErrorCode, ProvisioningError
from .services.edge_platform import EdgePlatformClient, EdgePlatformConfig
from .services.subscription import RedisSubscriptionGate

logger = logging.getLogger("provisioner")


def build_state(app: FastAPI, settings: Settings) -> None:
    """Create the collaborators and hang them on app.state."""
    app.state.settings = settings
    app.state.domain_store = DomainStore(
        redis_url=settings.redis_url,
        key_prefix=settings.key_prefix,
        lock_timeout=settings.lock_timeout,
    )
    app.state.subscription_gate = RedisSubscriptionGate(
        redis_url=settings.redis_url,
        key_prefix=settings.key_prefix,
    )
    app.state.dns_resolver = DNSResolver(
        cname_target=settings.platform_cname_target,
        anycast_ip=settings.platform_anycast_ip,
        timeout=settings.dns_timeout,
        main_domain=settings.main_domain,
    )
    app.state.edge_client = EdgePlatformClient(EdgePlatformConfig.from_settings(settings))
    app.state.orchestrator = ProvisioningOrchestrator(
        store=app.state.domain_store,
        resolver=app.state.dns_resolver,
        platform=app.state.edge_client,
        gate=app.state.subscription_gate,
        main_domain=settings.main_domain,
        reserved_suffixes=(settings.platform_preview_suffix,),
        strict_status_fallback=settings.strict_status_fallback,
    )
    app.state.diagnostics = DiagnosticsAggregator(
        resolver=app.state.dns_resolver,
        platform=app.state.edge_client,
        probe_timeout=settings.probe_timeout,
    )
    app.state.token_verifier = SubscriberTokenVerifier(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        audience=settings.jwt_audience,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Custom domain provisioner starting")
    yield
    await app.state.edge_client.close()
    await app.state.domain_store.close()
    await app.state.subscription_gate.close()
    logger.info("Custom domain provisioner stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(
        title="Custom Domain Provisioner",
        description="Attach subscriber-owned domains to hosted pages",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProvisioningError)
    async def provisioning_error_handler(request: Request, exc: ProvisioningError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid domain", "code": DomainErrorCode.INVALID_DOMAIN_FORMAT.value},
        )

    build_state(app, settings)
    app.include_router(domains_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "ok"}

    return app


app = create_app()
