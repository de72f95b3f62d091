"""FastAPI application factory."""

import time
from typing import Callable, Optional

import httpx
from fastapi import FastAPI

from rpcshield.api.routers import rpc_proxy, subgraph_proxy
from rpcshield.api.routes import health
from rpcshield.config import Settings, get_settings
from rpcshield.gateway.rate_limit import RateLimiter, RateLimitStore
from rpcshield.gateway.upstream import UpstreamForwarder


def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
    subgraph_rate_limit_store: Optional[RateLimitStore] = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        upstream_transport: Optional httpx transport for upstream calls
        rate_limit_store: Optional shared rate limit store for the RPC gateway
        subgraph_rate_limit_store: Optional rate limit store for the subgraph proxy
        clock: Time source for rate limit windows
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="rpcshield",
        description="JSON-RPC gateway with origin checks and rate limiting",
        version="0.1.0",
        debug=settings.debug,
    )

    # CORS for the gateway is answered by the endpoint itself so that a
    # rejected origin still gets a JSON-RPC error body.
    app.state.settings = settings
    app.state.rpc_gateway = rpc_proxy.RpcGateway(
        allowed_origins=settings.origins,
        development=settings.is_development,
        rate_limiter=RateLimiter(
            limit=settings.rate_limit_requests,
            window=settings.rate_limit_window,
            store=rate_limit_store,
            clock=clock,
        ),
        forwarder=UpstreamForwarder(
            settings.upstream_rpc_url,
            timeout=settings.upstream_timeout,
            transport=upstream_transport,
        ),
    )

    subgraph_headers = {"Accept": "application/json"}
    if settings.subgraph_auth_token:
        subgraph_headers["Authorization"] = f"Bearer {settings.subgraph_auth_token}"
    app.state.subgraph_proxy = subgraph_proxy.SubgraphProxy(
        allowed_origins=settings.subgraph_origins,
        development=settings.is_development,
        rate_limiter=RateLimiter(
            limit=settings.subgraph_rate_limit_requests,
            window=settings.rate_limit_window,
            store=subgraph_rate_limit_store,
            clock=clock,
        ),
        forwarder=UpstreamForwarder(
            settings.subgraph_url,
            timeout=settings.upstream_timeout,
            transport=upstream_transport,
            headers=subgraph_headers,
        ),
        has_auth_token=bool(settings.subgraph_auth_token),
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(rpc_proxy.build_router(settings.gateway_path))
    app.include_router(subgraph_proxy.build_router(settings.subgraph_path))

    return app
