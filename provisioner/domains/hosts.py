"""
Classify incoming request hosts for routing.
"""

from typing import Optional

HOST_MAIN = "main"
HOST_SUBDOMAIN = "subdomain"
HOST_CUSTOM = "custom"
HOST_INTERNAL = "internal"


def _bare(host: str) -> str:
    host = host.strip().lower().rstrip(".")
    # Drop a port, but leave bracketed IPv6 literals alone
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host


def classify_host(host: str, main_domain: str, preview_suffix: Optional[str] = None) -> str:
    """
    Decide how a request host is served.

    ``main`` is the product itself, ``subdomain`` a profile under it,
    ``internal`` local development or a preview deployment, and ``custom``
    anything else, which must be looked up in the DomainStore.
    """
    host = _bare(host)
    main = main_domain.lower().rstrip(".")

    if host in (main, f"www.{main}"):
        return HOST_MAIN
    if host.endswith(f".{main}"):
        return HOST_SUBDOMAIN
    if host.startswith("localhost") or host in ("127.0.0.1", "[::1]"):
        return HOST_INTERNAL
    if preview_suffix and host.endswith(preview_suffix.lower()):
        return HOST_INTERNAL
    return HOST_CUSTOM

