"""Forwarding of accepted gateway requests to a private upstream."""

import logging
from typing import Any, Optional

import httpx

from rpcshield.errors import UpstreamError, UpstreamNotConfiguredError

logger = logging.getLogger(__name__)

REDACTED_URL = "<upstream>"


class UpstreamForwarder:
    """Relays JSON bodies to a single upstream URL.

    The upstream URL usually embeds an API key, so it is kept out of every
    error message this class raises. Extra headers (such as a bearer token)
    are sent upstream and never echoed back.
    """

    def __init__(
        self,
        upstream_url: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        """Initialize forwarder.

        Args:
            upstream_url: Upstream URL (None = not configured)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
            headers: Extra headers for every upstream request
        """
        self.upstream_url = upstream_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.upstream_url)

    async def post(self, body: Any) -> httpx.Response:
        """POST a parsed JSON body upstream and return the raw response.

        Raises:
            UpstreamNotConfiguredError: No upstream URL configured
            UpstreamError: The upstream could not be reached
        """
        if not self.upstream_url:
            raise UpstreamNotConfiguredError("Upstream RPC URL is not configured")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.post(
                    self.upstream_url,
                    json=body,
                    headers={"Content-Type": "application/json", **self.headers},
                )
        except httpx.HTTPError as e:
            message = self._redact(f"{type(e).__name__}: {e}")
            logger.error(f"Upstream request failed: {message}")
            raise UpstreamError(f"Upstream RPC unreachable: {message}") from None

    async def forward(self, body: Any) -> Any:
        """POST a parsed JSON-RPC body upstream and return the parsed response.

        Raises:
            UpstreamNotConfiguredError: No upstream URL configured
            UpstreamError: Network error, non-2xx status or invalid JSON
        """
        response = await self.post(body)

        if not response.is_success:
            logger.error(
                f"Upstream response not ok: {response.status_code} {response.reason_phrase}"
            )
            raise UpstreamError(
                f"Upstream RPC error: {response.status_code} {response.reason_phrase}"
            )

        try:
            return response.json()
        except ValueError:
            logger.error("Upstream returned a non-JSON body")
            raise UpstreamError("Upstream RPC returned invalid JSON") from None

    def _redact(self, message: str) -> str:
        if self.upstream_url:
            message = message.replace(self.upstream_url, REDACTED_URL)
        for value in self.headers.values():
            message = message.replace(value, "***")
        return message
