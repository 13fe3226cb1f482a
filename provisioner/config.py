"""
Configuration management for the custom domain provisioner.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8000

    # The hosted product's own domain; it and its subdomains cannot be attached
    main_domain: str = "wrk.so"

    # Edge platform (REQUIRED for provisioning)
    platform_api_url: str = "https://api.vercel.com"
    platform_api_token: str = ""
    platform_project_id: str = ""
    platform_team_id: Optional[str] = None
    platform_cname_target: str = "cname.vercel-dns.com"
    platform_anycast_ip: str = "76.76.19.61"
    platform_preview_suffix: str = ".vercel.app"

    # Redis
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "provisioner:"
    lock_timeout: int = 60  # seconds a verify lock may be held

    # Timeouts for external calls
    dns_timeout: float = 5.0
    platform_timeout: float = 10.0
    probe_timeout: float = 10.0

    # Treat unrecognized provider status as ssl_pending/error instead of active
    strict_status_fallback: bool = False

    # Authentication
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    # Debug mode
    debug: bool = False

    model_config = {
        "env_prefix": "PROVISIONER_",
        "env_file": ".env",
        "extra": "ignore"
    }

    def missing_required(self) -> List[str]:
        """Names of required settings that are not configured."""
        missing = []
        if not self.platform_api_token:
            missing.append("PROVISIONER_PLATFORM_API_TOKEN")
        if not self.platform_project_id:
            missing.append("PROVISIONER_PLATFORM_PROJECT_ID")
        if not self.jwt_secret:
            missing.append("PROVISIONER_JWT_SECRET")
        return missing

    def validate_required(self) -> bool:
        """Validate that required settings are configured."""
        missing = self.missing_required()
        if missing:
            raise ValueError(
                f"{', '.join(missing)} must be set. "
                "Platform credentials come from the edge platform's "
                "project settings page."
            )
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    # In production, validate required fields
    if not settings.debug:
        try:
            settings.validate_required()
        except ValueError as e:
            import logging
            logging.warning(f"Configuration warning: {e}")
    return settings
