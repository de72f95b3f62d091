"""Origin/referer validation and CORS headers for the RPC gateway."""

import logging
from collections.abc import Collection
from typing import Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type"


def referer_origin(referer: str) -> Optional[str]:
    """Parse the origin (scheme://host[:port]) out of a Referer URL.

    Returns None when the referer is not an absolute http(s) URL.
    """
    try:
        parts = urlsplit(referer)
        # Accessing .port validates it
        port = parts.port
    except ValueError:
        return None

    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None

    default_port = 443 if parts.scheme == "https" else 80
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != default_port:
        return f"{parts.scheme}://{host}:{port}"
    return f"{parts.scheme}://{host}"


def is_origin_allowed(
    origin: Optional[str],
    referer: Optional[str],
    allowed_origins: Collection[str],
    development: bool = False,
) -> bool:
    """Check a request's Origin (or Referer fallback) against the allow-list.

    Args:
        origin: Value of the Origin header, if any
        referer: Value of the Referer header, if any
        allowed_origins: Exact origins that may call the gateway
        development: Allow requests carrying neither header

    Returns:
        True if the request may proceed
    """
    if origin:
        return origin in allowed_origins

    if referer:
        parsed = referer_origin(referer)
        return parsed is not None and parsed in allowed_origins

    return development


def cors_headers(origin: Optional[str], allowed_origins: Collection[str]) -> dict[str, str]:
    """Build the CORS headers for a request that passed the origin check."""
    headers = {
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        "Access-Control-Allow-Credentials": "true",
    }
    if origin and origin in allowed_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Vary"] = "Origin"
    return headers
