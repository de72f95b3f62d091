"""Inbound RPC gateway: origin checks, rate limiting and upstream forwarding."""

from rpcshield.gateway.origin import cors_headers, is_origin_allowed
from rpcshield.gateway.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimiter,
    RateLimitStore,
    client_identity,
    rate_limit_headers,
)
from rpcshield.gateway.upstream import UpstreamForwarder

__all__ = [
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimitStore",
    "RateLimiter",
    "UpstreamForwarder",
    "client_identity",
    "cors_headers",
    "is_origin_allowed",
    "rate_limit_headers",
]
