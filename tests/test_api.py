"""Tests for the FastAPI endpoints."""

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from rpcshield.api.app import create_app
from rpcshield.config import Settings

from conftest import FakeClock

UPSTREAM_URL = "https://upstream.example/v2/secret-key"
GATEWAY = "/api/ethereum-rpc"
APP_ORIGIN = "https://app.more.markets"

BLOCK_NUMBER = {"jsonrpc": "2.0", "id": 7, "method": "eth_blockNumber", "params": []}


class UpstreamStub:
    """Upstream RPC double recording every forwarded request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.response: httpx.Response | None = None
        self.error: Exception | None = None
        self.transport = httpx.MockTransport(self._handle)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response

        payload = json.loads(request.content)
        if isinstance(payload, list):
            return httpx.Response(
                200, json=[{"jsonrpc": "2.0", "id": p.get("id"), "result": "0x10"} for p in payload]
            )
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload.get("id"), "result": "0x10"})


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "production",
        "upstream_rpc_url": UPSTREAM_URL,
        "rate_limit_requests": 100,
        "rate_limit_window": 60.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def app_clock():
    return FakeClock()


@pytest.fixture
def test_app(upstream, app_clock):
    return create_app(make_settings(), upstream_transport=upstream.transport, clock=app_clock)


@pytest.fixture
async def client(test_app):
    """Create async test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def build_client(settings: Settings, upstream: UpstreamStub) -> AsyncClient:
    app = create_app(settings, upstream_transport=upstream.transport)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Test basic health check."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "rpcshield"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        """Test detailed health check redacts the upstream URL."""
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["config"]["environment"] == "production"
        assert data["config"]["gateway"]["upstream_rpc_url"] == "***"
        assert "secret-key" not in response.text

    @pytest.mark.asyncio
    async def test_detailed_health_degraded_without_upstream(self, upstream):
        """Test detailed health reports degraded when no upstream is set."""
        async with await build_client(make_settings(upstream_rpc_url=None), upstream) as ac:
            response = await ac.get("/health/detailed")

        assert response.json()["status"] == "degraded"


class TestOriginCheck:
    """Tests for origin/referer enforcement."""

    @pytest.mark.asyncio
    async def test_disallowed_origin_rejected(self, client, upstream):
        """Test a foreign origin gets -32403 and nothing is forwarded."""
        response = await client.post(
            GATEWAY, json=BLOCK_NUMBER, headers={"Origin": "https://evil.example"}
        )

        assert response.status_code == 403
        assert response.json() == {
            "jsonrpc": "2.0",
            "id": 7,
            "error": {"code": -32403, "message": "Forbidden", "data": "Origin not allowed"},
        }
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_allowed_origin_forwarded(self, client, upstream):
        """Test an allowed origin is forwarded and gets CORS headers."""
        response = await client.post(GATEWAY, json=BLOCK_NUMBER, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 200
        assert response.json() == {"jsonrpc": "2.0", "id": 7, "result": "0x10"}
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN
        assert response.headers["access-control-allow-credentials"] == "true"
        assert upstream.call_count == 1
        assert json.loads(upstream.requests[0].content) == BLOCK_NUMBER
        assert str(upstream.requests[0].url) == UPSTREAM_URL

    @pytest.mark.asyncio
    async def test_referer_fallback(self, client, upstream):
        """Test the referer origin is checked when Origin is absent."""
        response = await client.post(
            GATEWAY,
            json=BLOCK_NUMBER,
            headers={"Referer": "https://app.more.markets/markets?asset=flow"},
        )

        assert response.status_code == 200
        assert upstream.call_count == 1
        # No Origin header, so no Allow-Origin is echoed
        assert "access-control-allow-origin" not in response.headers

    @pytest.mark.asyncio
    async def test_referer_with_allowed_path_only_rejected(self, client, upstream):
        """Test an allowed origin appearing only in the referer path is rejected."""
        response = await client.post(
            GATEWAY,
            json=BLOCK_NUMBER,
            headers={"Referer": "https://evil.example/https://app.more.markets"},
        )

        assert response.status_code == 403
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_no_headers_rejected_in_production(self, client, upstream):
        """Test header-less requests are rejected outside development."""
        response = await client.post(GATEWAY, json=BLOCK_NUMBER)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == -32403

    @pytest.mark.asyncio
    async def test_no_headers_allowed_in_development(self, upstream):
        """Test header-less requests pass in development."""
        async with await build_client(make_settings(environment="development"), upstream) as ac:
            response = await ac.post(GATEWAY, json=BLOCK_NUMBER)

        assert response.status_code == 200
        assert upstream.call_count == 1

    @pytest.mark.asyncio
    async def test_development_still_checks_present_origin(self, upstream):
        """Test development mode does not waive a present foreign origin."""
        async with await build_client(make_settings(environment="development"), upstream) as ac:
            response = await ac.post(
                GATEWAY, json=BLOCK_NUMBER, headers={"Origin": "https://evil.example"}
            )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_request_id_zero_preserved(self, client):
        """Test an id of 0 is echoed, not replaced by null."""
        response = await client.post(
            GATEWAY,
            json={**BLOCK_NUMBER, "id": 0},
            headers={"Origin": "https://evil.example"},
        )

        assert response.json()["id"] == 0


class TestMethodHandling:
    """Tests for preflight and method restrictions."""

    @pytest.mark.asyncio
    async def test_preflight(self, client, upstream):
        """Test OPTIONS from an allowed origin answers CORS without forwarding."""
        response = await client.options(GATEWAY, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 200
        assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert response.headers["access-control-allow-headers"] == "Content-Type"
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_preflight_from_foreign_origin_rejected(self, client):
        """Test the origin check runs before preflight handling."""
        response = await client.options(GATEWAY, headers={"Origin": "https://evil.example"})

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, client, upstream):
        """Test non-POST methods get 405 with Allow: POST."""
        response = await client.get(GATEWAY, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 405
        assert response.headers["allow"] == "POST"
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, client, upstream):
        """Test an unparseable body gets a parse error and is not forwarded."""
        response = await client.post(
            GATEWAY,
            content=b"{not json",
            headers={"Origin": APP_ORIGIN, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700
        assert response.json()["id"] is None
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_batch_forwarded(self, client, upstream):
        """Test a batch body is relayed as-is."""
        batch = [BLOCK_NUMBER, {**BLOCK_NUMBER, "id": 8}]
        response = await client.post(GATEWAY, json=batch, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 200
        assert [item["id"] for item in response.json()] == [7, 8]
        assert json.loads(upstream.requests[0].content) == batch


class TestRateLimiting:
    """Tests for the per-client rate limit."""

    HEADERS = {
        "Origin": APP_ORIGIN,
        "X-Forwarded-For": "1.2.3.4, 10.0.0.1",
        "User-Agent": "Mozilla/5.0 abcd",
    }

    @pytest.mark.asyncio
    async def test_limit_exceeded(self, client, upstream, test_app):
        """Test the 101st request in a window is rejected with -32429."""
        for _ in range(100):
            response = await client.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)
            assert response.status_code == 200

        response = await client.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)

        assert response.status_code == 429
        assert response.json() == {
            "jsonrpc": "2.0",
            "id": 7,
            "error": {
                "code": -32429,
                "message": "Too many requests",
                "data": "Rate limit: 100 requests per 60 seconds exceeded",
            },
        }
        assert response.headers["retry-after"] == "60"
        assert response.headers["x-ratelimit-remaining"] == "0"
        assert upstream.call_count == 100

        limiter = test_app.state.rpc_gateway.rate_limiter
        entry = await limiter.status("1.2.3.4-abcd")
        assert entry is not None
        assert entry.count == 100

    @pytest.mark.asyncio
    async def test_rate_limit_headers(self, client):
        """Test accepted responses carry rate limit headers."""
        response = await client.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)

        assert response.headers["x-ratelimit-limit"] == "100"
        assert response.headers["x-ratelimit-remaining"] == "99"
        assert response.headers["x-ratelimit-reset"] == "60"

    @pytest.mark.asyncio
    async def test_window_reset(self, upstream):
        """Test a new window opens once the previous one elapsed."""
        clock = FakeClock()
        app = create_app(
            make_settings(rate_limit_requests=2),
            upstream_transport=upstream.transport,
            clock=clock,
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            for _ in range(2):
                accepted = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)
                assert accepted.status_code == 200

            # Rejected replays within the window are neither counted nor forwarded
            for _ in range(5):
                blocked = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)
                assert blocked.status_code == 429
                assert blocked.json()["error"]["code"] == -32429
            assert upstream.call_count == 2

            clock.advance(60)
            reopened = [
                await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)
                for _ in range(2)
            ]
            assert [r.status_code for r in reopened] == [200, 200]
            assert [r.headers["x-ratelimit-remaining"] for r in reopened] == ["1", "0"]
            assert upstream.call_count == 4

            for _ in range(3):
                blocked = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)
                assert blocked.status_code == 429
                assert blocked.json()["error"]["code"] == -32429

        assert upstream.call_count == 4

    @pytest.mark.asyncio
    async def test_identities_limited_separately(self, upstream):
        """Test a different user agent suffix has its own window."""
        async with await build_client(make_settings(rate_limit_requests=1), upstream) as ac:
            first = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)
            second = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)
            other = await ac.post(
                GATEWAY,
                json=BLOCK_NUMBER,
                headers={**self.HEADERS, "User-Agent": "Mozilla/5.0 wxyz"},
            )

        assert first.status_code == 200
        assert second.status_code == 429
        assert other.status_code == 200

    @pytest.mark.asyncio
    async def test_rejected_origin_not_counted(self, upstream):
        """Test requests failing the origin check do not consume the limit."""
        async with await build_client(make_settings(rate_limit_requests=1), upstream) as ac:
            await ac.post(
                GATEWAY,
                json=BLOCK_NUMBER,
                headers={**self.HEADERS, "Origin": "https://evil.example"},
            )
            response = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=self.HEADERS)

        assert response.status_code == 200


class TestUpstreamFailures:
    """Tests for upstream error mapping."""

    @pytest.mark.asyncio
    async def test_upstream_http_error(self, client, upstream):
        """Test a non-2xx upstream becomes -32603 without leaking the URL."""
        upstream.response = httpx.Response(503)

        response = await client.post(GATEWAY, json=BLOCK_NUMBER, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 502
        body = response.json()
        assert body["id"] == 7
        assert body["error"]["code"] == -32603
        assert body["error"]["message"] == "Internal error"
        assert "503" in body["error"]["data"]
        assert "secret-key" not in response.text

    @pytest.mark.asyncio
    async def test_upstream_unreachable(self, client, upstream):
        """Test a network failure is redacted."""
        upstream.error = httpx.ConnectError(f"Could not connect to {UPSTREAM_URL}")

        response = await client.post(GATEWAY, json=BLOCK_NUMBER, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == -32603
        assert "secret-key" not in response.text

    @pytest.mark.asyncio
    async def test_upstream_not_configured(self, upstream):
        """Test a missing upstream URL is an internal error."""
        async with await build_client(make_settings(upstream_rpc_url=None), upstream) as ac:
            response = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 500
        assert response.json()["error"]["code"] == -32603
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_upstream_jsonrpc_error_relayed(self, client, upstream):
        """Test a JSON-RPC error from upstream is relayed unchanged."""
        upstream.response = httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 7, "error": {"code": -32000, "message": "execution reverted"}},
        )

        response = await client.post(GATEWAY, json=BLOCK_NUMBER, headers={"Origin": APP_ORIGIN})

        assert response.status_code == 200
        assert response.json()["error"]["message"] == "execution reverted"


SUBGRAPH = "/api/subgraph/ethereum"
SUBGRAPH_URL = "https://subgraph.example/query/vaults"
SUBGRAPH_TOKEN = "studio-token-123"
VAULTS_QUERY = {"query": "{ vaults(first: 5) { id totalAssets } }"}


def make_subgraph_settings(**overrides) -> Settings:
    values = {"subgraph_url": SUBGRAPH_URL, "subgraph_auth_token": SUBGRAPH_TOKEN}
    values.update(overrides)
    return make_settings(**values)


class TestSubgraphProxy:
    """Tests for the vaults subgraph proxy."""

    HEADERS = {
        "Origin": "https://testnet.more.markets",
        "X-Forwarded-For": "5.6.7.8",
        "User-Agent": "Mozilla/5.0 wxyz",
    }

    @pytest.fixture
    async def subgraph_client(self, upstream, app_clock):
        app = create_app(
            make_subgraph_settings(), upstream_transport=upstream.transport, clock=app_clock
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    @pytest.mark.asyncio
    async def test_query_forwarded_with_bearer_token(self, subgraph_client, upstream):
        """Test an allowed query is relayed with the server-side token."""
        upstream.response = httpx.Response(200, json={"data": {"vaults": []}})

        response = await subgraph_client.post(SUBGRAPH, json=VAULTS_QUERY, headers=self.HEADERS)

        assert response.status_code == 200
        assert response.json() == {"data": {"vaults": []}}
        assert response.headers["access-control-allow-origin"] == "https://testnet.more.markets"
        assert response.headers["x-ratelimit-limit"] == "120"
        forwarded = upstream.requests[0]
        assert str(forwarded.url) == SUBGRAPH_URL
        assert forwarded.headers["authorization"] == f"Bearer {SUBGRAPH_TOKEN}"
        assert forwarded.headers["accept"] == "application/json"
        assert json.loads(forwarded.content) == VAULTS_QUERY
        assert SUBGRAPH_TOKEN not in response.text

    @pytest.mark.asyncio
    async def test_foreign_origin_rejected(self, subgraph_client, upstream):
        response = await subgraph_client.post(
            SUBGRAPH, json=VAULTS_QUERY, headers={"Origin": "https://evil.example"}
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden: origin not allowed"}
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_rpc_only_origin_not_implied(self, upstream):
        """Test the subgraph allow-list is separate from the gateway's."""
        settings = make_subgraph_settings(subgraph_allowed_origins="https://app.more.markets")
        async with await build_client(settings, upstream) as ac:
            response = await ac.post(SUBGRAPH, json=VAULTS_QUERY, headers=self.HEADERS)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_preflight_and_method(self, subgraph_client, upstream):
        preflight = await subgraph_client.options(SUBGRAPH, headers=self.HEADERS)
        get = await subgraph_client.get(SUBGRAPH, headers=self.HEADERS)

        assert preflight.status_code == 200
        assert preflight.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert get.status_code == 405
        assert get.headers["allow"] == "POST"
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_missing_token(self, upstream):
        """Test a proxy without a token answers 500 and forwards nothing."""
        settings = make_subgraph_settings(subgraph_auth_token=None)
        async with await build_client(settings, upstream) as ac:
            response = await ac.post(SUBGRAPH, json=VAULTS_QUERY, headers=self.HEADERS)

        assert response.status_code == 500
        assert response.json() == {
            "error": "Server not configured: THEGRAPH_STUDIO_TOKEN missing"
        }
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_limit_is_120_per_window(self, subgraph_client, upstream):
        for _ in range(120):
            response = await subgraph_client.post(
                SUBGRAPH, json=VAULTS_QUERY, headers=self.HEADERS
            )
            assert response.status_code == 200

        response = await subgraph_client.post(SUBGRAPH, json=VAULTS_QUERY, headers=self.HEADERS)

        assert response.status_code == 429
        assert response.json() == {"error": "Too many requests"}
        assert response.headers["retry-after"] == "60"
        assert upstream.call_count == 120

    @pytest.mark.asyncio
    async def test_limit_independent_of_gateway(self, upstream):
        """Test subgraph queries do not spend the RPC gateway quota."""
        settings = make_subgraph_settings(rate_limit_requests=1)
        headers = {**self.HEADERS, "Origin": APP_ORIGIN}
        async with await build_client(settings, upstream) as ac:
            query = await ac.post(SUBGRAPH, json=VAULTS_QUERY, headers=headers)
            rpc = await ac.post(GATEWAY, json=BLOCK_NUMBER, headers=headers)

        assert query.status_code == 200
        assert rpc.status_code == 200

    @pytest.mark.asyncio
    async def test_upstream_error_relayed(self, subgraph_client, upstream):
        """Test a non-2xx subgraph answer keeps its status and body."""
        upstream.response = httpx.Response(
            400, text='{"errors":[{"message":"Type `Query` has no field `vault`"}]}'
        )

        response = await subgraph_client.post(SUBGRAPH, json=VAULTS_QUERY, headers=self.HEADERS)

        assert response.status_code == 400
        assert response.json()["errors"][0]["message"].startswith("Type `Query`")

    @pytest.mark.asyncio
    async def test_upstream_unreachable(self, subgraph_client, upstream):
        upstream.error = httpx.ConnectError(f"Could not connect to {SUBGRAPH_URL}")

        response = await subgraph_client.post(SUBGRAPH, json=VAULTS_QUERY, headers=self.HEADERS)

        assert response.status_code == 500
        assert response.json() == {"error": "Internal error"}

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, subgraph_client, upstream):
        response = await subgraph_client.post(
            SUBGRAPH,
            content=b"query { vaults }",
            headers={**self.HEADERS, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_detailed_health_redacts_token(self, subgraph_client):
        response = await subgraph_client.get("/health/detailed")

        assert response.json()["config"]["subgraph"]["auth_token"] == "***"
        assert SUBGRAPH_TOKEN not in response.text
