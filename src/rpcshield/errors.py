"""Exception hierarchy shared by the gateway and the transport."""

from typing import Any, Optional


class RpcShieldError(Exception):
    """Base class for all rpcshield errors."""

    pass


class ConfigurationError(RpcShieldError):
    """Raised when required configuration (URLs, chains) is missing."""

    pass


class UpstreamError(RpcShieldError):
    """Raised by the gateway when the upstream RPC provider fails.

    The message is safe to return to callers: it never contains the
    upstream URL.
    """

    status_code = 502


class UpstreamNotConfiguredError(UpstreamError):
    """Raised when the gateway has no upstream RPC URL."""

    status_code = 500


class EndpointError(RpcShieldError):
    """Raised when a single RPC endpoint fails at the transport level."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"{url}: {message}")


class JsonRpcError(RpcShieldError):
    """Raised when an endpoint answers with a JSON-RPC error object."""

    # Codes that describe the endpoint rather than the request
    ENDPOINT_FAILURE_CODES = frozenset({-32603, -32005, -32403, -32429})

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"JSON-RPC error {code}: {message}")

    @property
    def is_endpoint_failure(self) -> bool:
        """Whether another endpoint might answer the same request."""
        return self.code in self.ENDPOINT_FAILURE_CODES


class AllEndpointsFailedError(RpcShieldError):
    """Raised when every endpoint of a pool failed for one logical call."""

    def __init__(self, method: str, failed_urls: list[str], last_error: Exception):
        self.method = method
        self.failed_urls = failed_urls
        self.last_error = last_error
        super().__init__(
            f"All {len(failed_urls)} endpoint(s) failed for {method}: {last_error}"
        )


class SubmissionError(RpcShieldError):
    """Raised when a transaction could not be broadcast."""

    pass


class SigningError(RpcShieldError):
    """Raised when a transaction could not be signed."""

    pass
