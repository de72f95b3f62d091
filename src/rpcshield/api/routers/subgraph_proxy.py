"""GraphQL proxy for the Ethereum vaults subgraph.

Keeps the subgraph bearer token on the server. Same gate as the RPC
gateway (origin allow-list, CORS, POST only, per-client rate limit) but
with plain ``{"error": ...}`` bodies, since GraphQL clients do not expect
JSON-RPC envelopes. Upstream answers are relayed verbatim, including
non-2xx statuses.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from rpcshield.api.routers.rpc_proxy import PROXY_METHODS
from rpcshield.errors import UpstreamError
from rpcshield.gateway.origin import cors_headers, is_origin_allowed
from rpcshield.gateway.rate_limit import RateLimiter, client_identity, rate_limit_headers
from rpcshield.gateway.upstream import UpstreamForwarder

logger = logging.getLogger(__name__)


@dataclass
class SubgraphProxy:
    """Collaborators of the subgraph endpoint, stored on ``app.state``."""
    allowed_origins: frozenset[str]
    development: bool
    rate_limiter: RateLimiter
    forwarder: UpstreamForwarder
    has_auth_token: bool


def build_router(path: str) -> APIRouter:
    """Create the router exposing the subgraph proxy on ``path``."""
    router = APIRouter(tags=["Subgraph"])
    router.add_api_route(
        path,
        proxy_subgraph,
        methods=PROXY_METHODS,
        summary="Proxy a GraphQL query to the vaults subgraph",
    )
    return router


def _error(
    message: str, status_code: int, headers: Optional[dict[str, str]] = None
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def proxy_subgraph(request: Request) -> Response:
    """Validate, rate limit and forward one GraphQL request."""
    proxy: SubgraphProxy = request.app.state.subgraph_proxy

    origin = request.headers.get("origin")
    referer = request.headers.get("referer")
    user_agent = request.headers.get("user-agent")

    if not is_origin_allowed(origin, referer, proxy.allowed_origins, proxy.development):
        logger.warning(f"Subgraph proxy blocked origin: origin={origin} referer={referer}")
        return _error("Forbidden: origin not allowed", 403)

    headers = cors_headers(origin, proxy.allowed_origins)

    if request.method == "OPTIONS":
        return Response(status_code=200, headers=headers)

    if request.method != "POST":
        headers["Allow"] = "POST"
        return PlainTextResponse(
            f"Method {request.method} Not Allowed", status_code=405, headers=headers
        )

    identity = client_identity(
        request.headers.get("x-forwarded-for"),
        request.client.host if request.client else None,
        user_agent,
    )
    decision = await proxy.rate_limiter.check(identity)
    headers.update(rate_limit_headers(decision))

    if not decision.allowed:
        return _error("Too many requests", 429, headers)

    if not proxy.has_auth_token:
        logger.error("Subgraph proxy has no auth token configured")
        return _error("Server not configured: THEGRAPH_STUDIO_TOKEN missing", 500, headers)

    try:
        payload = json.loads(await request.body())
    except ValueError:
        return _error("Invalid JSON body", 400, headers)

    try:
        response = await proxy.forwarder.post(payload)
    except UpstreamError as e:
        logger.error(f"Subgraph proxy error for {identity}: {e}")
        return _error("Internal error", 500, headers)

    if not response.is_success:
        logger.warning(f"Subgraph answered {response.status_code} for {identity}")
        return Response(
            content=response.content,
            status_code=response.status_code,
            media_type=response.headers.get("content-type", "text/plain"),
            headers=headers,
        )

    return Response(
        content=response.content,
        status_code=200,
        media_type="application/json",
        headers=headers,
    )
