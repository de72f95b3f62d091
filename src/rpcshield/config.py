"""Application configuration using pydantic-settings.

Holds the gateway access-control settings (allowed origins, rate limit,
upstream URL) and the transport settings (endpoint pools, confirmation
timeout) for every supported chain.
"""

from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
        description="Runtime environment (development allows header-less requests)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ======================
    # Gateway
    # ======================
    upstream_rpc_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("UPSTREAM_RPC_URL", "ALCHEMY_URL"),
        description="Private upstream RPC URL (server-only secret)",
    )
    allowed_origins: str = Field(
        default="http://localhost:3000,https://localhost:3000,https://app.more.markets",
        description="Comma-separated list of origins allowed to call the gateway",
    )
    gateway_path: str = Field(
        default="/api/ethereum-rpc", description="Path the RPC gateway is mounted on"
    )
    rate_limit_requests: int = Field(
        default=100, description="Accepted requests per identity per window"
    )
    rate_limit_window: float = Field(
        default=60.0, description="Rate limit window length in seconds"
    )
    upstream_timeout: float = Field(
        default=30.0, description="Upstream RPC request timeout in seconds"
    )

    # ======================
    # Subgraph Proxy
    # ======================
    subgraph_path: str = Field(
        default="/api/subgraph/ethereum", description="Path the subgraph proxy is mounted on"
    )
    subgraph_url: str = Field(
        default="https://api.studio.thegraph.com/query/109306/more-vaults/version/latest",
        validation_alias=AliasChoices("SUBGRAPH_URL", "ETHEREUM_VAULTS_SUBGRAPH_URL"),
        description="Ethereum vaults subgraph GraphQL endpoint",
    )
    subgraph_auth_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUBGRAPH_AUTH_TOKEN", "THEGRAPH_STUDIO_TOKEN"),
        description="Bearer token for the subgraph endpoint (server-only secret)",
    )
    subgraph_allowed_origins: str = Field(
        default=(
            "http://localhost:3000,https://localhost:3000,"
            "https://app.more.markets,https://testnet.more.markets"
        ),
        description="Comma-separated list of origins allowed to call the subgraph proxy",
    )
    subgraph_rate_limit_requests: int = Field(
        default=120, description="Accepted subgraph requests per identity per window"
    )

    # ======================
    # Transport
    # ======================
    app_base_url: str = Field(
        default="https://app.more.markets",
        description="Public base URL of this application, used to reach the gateway",
    )
    confirmation_timeout: float = Field(
        default=15.0, description="Phase 1 (public pool) confirmation timeout in seconds"
    )
    receipt_poll_interval: float = Field(
        default=1.0, description="Delay between transaction receipt polls in seconds"
    )
    fall_forward_delay: float = Field(
        default=60.0,
        description="Seconds before a rotated pool returns to its first endpoint",
    )
    endpoint_timeout: float = Field(
        default=10.0, description="Per-endpoint request timeout in seconds"
    )

    # ======================
    # Chain RPC Endpoints (comma-separated, empty = built-in defaults)
    # ======================
    eth_public_rpc_urls: str = Field(default="", description="Ethereum public RPC URLs")
    flow_public_rpc_urls: str = Field(default="", description="Flow EVM public RPC URLs")
    flow_testnet_public_rpc_urls: str = Field(
        default="", description="Flow EVM testnet public RPC URLs"
    )

    @property
    def origins(self) -> frozenset[str]:
        """Parse allowed origins into a frozen set."""
        return frozenset(
            origin.strip().rstrip("/")
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def app_origin(self) -> str:
        """Origin (scheme://host[:port]) of this application's public URL."""
        parts = urlsplit(self.app_base_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def subgraph_origins(self) -> frozenset[str]:
        """Parse subgraph proxy allowed origins into a frozen set."""
        return frozenset(
            origin.strip().rstrip("/")
            for origin in self.subgraph_allowed_origins.split(",")
            if origin.strip()
        )

    @property
    def gateway_url(self) -> str:
        """Absolute URL of this application's RPC gateway."""
        return f"{self.app_base_url.rstrip('/')}{self.gateway_path}"

    def get_public_rpc_urls(self, chain: str) -> list[str]:
        """Get configured public RPC URL overrides for a chain."""
        url_map = {
            "ETH": self.eth_public_rpc_urls,
            "FLOW": self.flow_public_rpc_urls,
            "FLOW_TESTNET": self.flow_testnet_public_rpc_urls,
        }
        raw = url_map.get(chain.upper(), "")
        return [url.strip() for url in raw.split(",") if url.strip()]

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "gateway": {
                "path": self.gateway_path,
                "upstream_rpc_url": "***" if self.upstream_rpc_url else "(not set)",
                "allowed_origins": sorted(self.origins),
                "rate_limit_requests": self.rate_limit_requests,
                "rate_limit_window": self.rate_limit_window,
            },
            "subgraph": {
                "path": self.subgraph_path,
                "auth_token": "***" if self.subgraph_auth_token else "(not set)",
                "allowed_origins": sorted(self.subgraph_origins),
                "rate_limit_requests": self.subgraph_rate_limit_requests,
            },
            "transport": {
                "gateway_url": self.gateway_url,
                "confirmation_timeout": self.confirmation_timeout,
                "receipt_poll_interval": self.receipt_poll_interval,
                "fall_forward_delay": self.fall_forward_delay,
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
