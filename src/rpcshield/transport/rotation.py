"""Endpoint rotation across an ordered pool of RPC URLs.

Rotation is modelled as explicit state so it can be tested without I/O:

- ``RotationState`` is shared by all calls of one pool. It holds the index of
  the endpoint new calls start on, and when the pool last rotated away from
  its first endpoint.
- ``RotationAttempt`` tracks one logical call: which endpoints it already
  tried and which one it is on now.

A failed endpoint moves the shared index forward (wrapping), so later calls
start on the endpoint that last worked. After ``fall_forward_delay`` seconds
the pool falls forward to its first, preferred endpoint again.
"""

import logging
import time
from collections import Counter
from typing import Any, Callable, Optional

import httpx

from rpcshield.errors import (
    AllEndpointsFailedError,
    ConfigurationError,
    EndpointError,
    JsonRpcError,
)
from rpcshield.transport.base import DEFAULT_TIMEOUT, JsonRpcProvider, RpcProvider

logger = logging.getLogger(__name__)

DEFAULT_FALL_FORWARD_DELAY = 60.0


class RotationState:
    """Shared rotation position of an endpoint pool."""

    def __init__(
        self,
        size: int,
        fall_forward_delay: Optional[float] = DEFAULT_FALL_FORWARD_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize state.

        Args:
            size: Number of endpoints in the pool
            fall_forward_delay: Seconds after a rotation before returning to
                the first endpoint (None = never)
            clock: Time source
        """
        if size < 1:
            raise ConfigurationError("Endpoint pool is empty")
        self.size = size
        self.fall_forward_delay = fall_forward_delay
        self.current_index = 0
        self.rotated_at: Optional[float] = None
        self._clock = clock

    def begin(self) -> "RotationAttempt":
        """Start a logical call on the current endpoint."""
        self._maybe_fall_forward()
        return RotationAttempt(self)

    def advance(self, from_index: int) -> None:
        """Move past a failed endpoint.

        Only the first failure of a given endpoint moves the index, so
        concurrent calls failing on the same endpoint rotate once.
        """
        if self.current_index != from_index:
            return
        self.current_index = (from_index + 1) % self.size
        self.rotated_at = self._clock()

    def _maybe_fall_forward(self) -> None:
        if self.current_index == 0 or self.fall_forward_delay is None:
            return
        if self.rotated_at is None:
            return
        if self._clock() - self.rotated_at >= self.fall_forward_delay:
            logger.info(
                f"Falling forward to first endpoint after {self.fall_forward_delay:g}s"
            )
            self.current_index = 0
            self.rotated_at = None


class RotationAttempt:
    """Progress of one logical call through the pool."""

    def __init__(self, state: RotationState):
        self._state = state
        self.index = state.current_index
        self.attempted: set[int] = set()

    @property
    def exhausted(self) -> bool:
        return len(self.attempted) >= self._state.size

    def record_failure(self) -> bool:
        """Mark the current endpoint failed and move to the next untried one.

        Returns:
            True if an untried endpoint remains, False if all were tried
        """
        self.attempted.add(self.index)
        self._state.advance(self.index)

        size = self._state.size
        candidates = [self._state.current_index] + [
            (self.index + offset) % size for offset in range(1, size)
        ]
        for candidate in candidates:
            if candidate not in self.attempted:
                self.index = candidate
                return True
        return False


class RotationProvider(RpcProvider):
    """Provider that rotates through several endpoints on failure.

    Each logical call tries every endpoint at most once, starting from the
    pool's current endpoint. JSON-RPC errors that describe the request (for
    example an execution revert) are raised immediately; rotating would only
    repeat them.
    """

    def __init__(
        self,
        urls: list[str],
        chain_id: int,
        fall_forward_delay: Optional[float] = DEFAULT_FALL_FORWARD_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        headers: Optional[dict[str, str]] = None,
    ):
        if not urls:
            raise ConfigurationError(f"Chain {chain_id} has no RPC URL configured")
        self.chain_id = chain_id
        self._providers = [
            JsonRpcProvider(
                url, chain_id, timeout=timeout, transport=transport, headers=headers
            )
            for url in urls
        ]
        self.state = RotationState(len(urls), fall_forward_delay, clock)
        self.failure_counts: Counter[str] = Counter()

    def __repr__(self) -> str:
        return f"RotationProvider(urls={self.urls!r}, chain_id={self.chain_id})"

    @property
    def urls(self) -> list[str]:
        return [provider.url for provider in self._providers]

    @property
    def current_url(self) -> str:
        return self._providers[self.state.current_index].url

    async def send(self, method: str, params: Optional[list] = None) -> Any:
        """Call a JSON-RPC method, rotating across endpoints on failure.

        Raises:
            JsonRpcError: The request itself was rejected
            AllEndpointsFailedError: Every endpoint failed for this call
        """
        attempt = self.state.begin()
        failed: list[str] = []

        while True:
            provider = self._providers[attempt.index]
            try:
                result = await provider.send(method, params)
            except JsonRpcError as e:
                if not e.is_endpoint_failure:
                    raise
                last_error: Exception = e
            except EndpointError as e:
                last_error = e
            else:
                if failed:
                    logger.info(
                        f"{method} succeeded on {provider.url} after "
                        f"{len(failed)} failed endpoint(s)"
                    )
                return result

            failed.append(provider.url)
            self.failure_counts[provider.url] += 1
            logger.warning(f"RPC endpoint {provider.url} failed for {method}: {last_error}")

            if not attempt.record_failure():
                logger.error(f"All {len(failed)} RPC endpoint(s) failed for {method}")
                raise AllEndpointsFailedError(method, failed, last_error)
