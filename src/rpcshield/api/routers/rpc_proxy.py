"""JSON-RPC gateway endpoint.

Shields the private upstream RPC URL from the browser:
1. Rejects requests from origins outside the allow-list (403, -32403)
2. Answers CORS preflight
3. Rejects anything but POST (405)
4. Applies the per-client rate limit (429, -32429)
5. Forwards the body upstream and relays the answer (or -32603)

Every JSON-RPC shaped response echoes the caller's request id.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from rpcshield.errors import UpstreamError
from rpcshield.gateway.origin import cors_headers, is_origin_allowed
from rpcshield.gateway.rate_limit import RateLimiter, client_identity, rate_limit_headers
from rpcshield.gateway.upstream import UpstreamForwarder
from rpcshield.jsonrpc import (
    INTERNAL_ERROR,
    ORIGIN_FORBIDDEN,
    PARSE_ERROR,
    RATE_LIMITED,
    build_error,
    extract_id,
    extract_method,
)

logger = logging.getLogger(__name__)

# Every method is routed here so the origin check runs before the method check
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@dataclass
class RpcGateway:
    """Collaborators of the gateway endpoint, stored on ``app.state``."""
    allowed_origins: frozenset[str]
    development: bool
    rate_limiter: RateLimiter
    forwarder: UpstreamForwarder


def build_router(path: str) -> APIRouter:
    """Create the router exposing the gateway on ``path``."""
    router = APIRouter(tags=["RPC Gateway"])
    router.add_api_route(
        path,
        proxy_rpc,
        methods=PROXY_METHODS,
        include_in_schema=True,
        summary="Proxy a JSON-RPC request to the private upstream",
    )
    return router


def _parse_body(raw: bytes) -> tuple[Any, bool]:
    """Parse a request body, returning (payload, ok)."""
    if not raw:
        return None, False
    try:
        return json.loads(raw), True
    except ValueError:
        return None, False


def _jsonrpc_error(
    request_id: Any,
    code: int,
    message: str,
    data: Optional[Any],
    status_code: int,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=build_error(request_id, code, message, data),
        headers=headers,
    )


async def proxy_rpc(request: Request) -> Response:
    """Validate, rate limit and forward one JSON-RPC request."""
    gateway: RpcGateway = request.app.state.rpc_gateway

    payload, parsed = _parse_body(await request.body())
    request_id = extract_id(payload)

    origin = request.headers.get("origin")
    referer = request.headers.get("referer")
    user_agent = request.headers.get("user-agent")

    if not is_origin_allowed(origin, referer, gateway.allowed_origins, gateway.development):
        logger.warning(
            f"Unauthorized origin blocked: origin={origin} referer={referer} "
            f"user_agent={user_agent}"
        )
        return _jsonrpc_error(
            request_id, ORIGIN_FORBIDDEN, "Forbidden", "Origin not allowed", 403
        )

    headers = cors_headers(origin, gateway.allowed_origins)

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
    decision = await gateway.rate_limiter.check(identity)
    headers.update(rate_limit_headers(decision))

    if not decision.allowed:
        window = gateway.rate_limiter.window
        return _jsonrpc_error(
            request_id,
            RATE_LIMITED,
            "Too many requests",
            f"Rate limit: {decision.limit} requests per {window:g} seconds exceeded",
            429,
            headers,
        )

    if not parsed:
        return _jsonrpc_error(
            None, PARSE_ERROR, "Parse error", "Request body is not valid JSON", 400, headers
        )

    logger.info(
        f"Proxying RPC request: method={extract_method(payload)} id={request_id} "
        f"client={identity} origin={origin or referer} "
        f"count={decision.count} remaining={decision.remaining}"
    )

    try:
        data = await gateway.forwarder.forward(payload)
    except UpstreamError as e:
        logger.error(f"RPC proxy error for {identity}: {e}")
        return _jsonrpc_error(
            request_id, INTERNAL_ERROR, "Internal error", str(e), e.status_code, headers
        )

    has_result = isinstance(data, dict) and data.get("result") is not None
    has_error = isinstance(data, dict) and data.get("error") is not None
    logger.info(
        f"Upstream response received: has_result={has_result} "
        f"has_error={has_error} id={extract_id(data)}"
    )

    return JSONResponse(status_code=200, content=data, headers=headers)
