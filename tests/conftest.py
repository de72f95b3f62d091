"""Pytest configuration and fixtures."""

import json
import os
from typing import Any, Callable, Optional

import httpx
import pytest

# Set test environment: settings come from constructor arguments and defaults
os.environ["DEBUG"] = "true"
for var in (
    "ENVIRONMENT",
    "SUBGRAPH_URL",
    "ETHEREUM_VAULTS_SUBGRAPH_URL",
    "SUBGRAPH_AUTH_TOKEN",
    "THEGRAPH_STUDIO_TOKEN",
    "UPSTREAM_RPC_URL",
    "ALCHEMY_URL",
    "NODE_ENV",
    "APP_BASE_URL",
    "ETH_PUBLIC_RPC_URLS",
    "FLOW_PUBLIC_RPC_URLS",
    "FLOW_TESTNET_PUBLIC_RPC_URLS",
):
    os.environ.pop(var, None)

from rpcshield.config import get_settings
from rpcshield.transport.factory import clear_provider_cache

TX_HASH = "0x" + "ab" * 32


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RpcFault(Exception):
    """Raised by a fake endpoint handler to answer with a JSON-RPC error."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


Handler = Callable[[str, list], Any]


class FakeRpcNetwork:
    """Fake JSON-RPC endpoints keyed by host, served via httpx.MockTransport.

    A handler receives (method, params) and returns a result, returns an
    httpx.Response to answer at the HTTP level, or raises RpcFault.
    """

    def __init__(self):
        self._handlers: dict[str, Optional[Handler]] = {}
        self.calls: list[tuple[str, str, list]] = []
        self.transport = httpx.MockTransport(self._dispatch)

    def serve(self, url: str, handler: Handler) -> None:
        self._handlers[httpx.URL(url).host] = handler

    def down(self, url: str) -> None:
        """Make an endpoint refuse connections."""
        self._handlers[httpx.URL(url).host] = None

    def methods(self, url: str) -> list[str]:
        """Methods an endpoint was called with, in order."""
        host = httpx.URL(url).host
        return [method for called, method, _ in self.calls if called == host]

    def params(self, url: str, method: str) -> list[list]:
        host = httpx.URL(url).host
        return [p for called, m, p in self.calls if called == host and m == method]

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        host = request.url.host
        self.calls.append((host, body["method"], body.get("params", [])))

        if host not in self._handlers:
            return httpx.Response(404)
        handler = self._handlers[host]
        if handler is None:
            raise httpx.ConnectError("Connection refused", request=request)

        try:
            outcome = handler(body["method"], body.get("params", []))
        except RpcFault as fault:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "error": {"code": fault.code, "message": fault.message},
                },
            )

        if isinstance(outcome, httpx.Response):
            return outcome
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": outcome})


def make_receipt(tx_hash: str = TX_HASH, status: str = "0x1", block: str = "0x10") -> dict:
    return {"transactionHash": tx_hash, "blockNumber": block, "status": status}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def network():
    return FakeRpcNetwork()


@pytest.fixture
def fresh_settings():
    """Reload settings from the environment and drop cached providers."""
    get_settings.cache_clear()
    clear_provider_cache()
    yield
    get_settings.cache_clear()
    clear_provider_cache()
