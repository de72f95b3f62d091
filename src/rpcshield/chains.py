"""RPC endpoint configuration for all supported chains.

Each chain has an ordered list of public endpoints (free, rate limited,
also offered to wallets when adding the network) and optionally a private
endpoint with a better rate limit. The Ethereum private endpoint is this
application's own gateway, which holds the real provider key server-side.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

from rpcshield.config import Settings, get_settings
from rpcshield.errors import ConfigurationError


class ChainId(IntEnum):
    """EVM chain ids."""
    ETHEREUM = 1
    FLOW_EVM_TESTNET = 545
    FLOW_EVM_MAINNET = 747


@dataclass
class NetworkConfig:
    """Configuration for a blockchain network."""

    # Required fields (no defaults) - must come first
    chain_id: int
    name: str
    key: str                    # Settings key for endpoint overrides
    base_asset_symbol: str
    explorer_url: str

    # Optional fields (with defaults)
    public_rpc_urls: list[str] = field(default_factory=list)
    private_rpc_url: Optional[str] = None
    base_asset_decimals: int = 18
    is_testnet: bool = False

    @property
    def rpc_urls(self) -> list[str]:
        """All endpoints, private first then public."""
        urls = [self.private_rpc_url] if self.private_rpc_url else []
        return urls + [url for url in self.public_rpc_urls if url not in urls]


# ======================
# Network Configurations
# ======================

def _builtin_networks(settings: Settings) -> dict[int, NetworkConfig]:
    return {
        ChainId.ETHEREUM: NetworkConfig(
            chain_id=ChainId.ETHEREUM,
            name="Ethereum",
            key="ETH",
            base_asset_symbol="ETH",
            explorer_url="https://etherscan.io",
            public_rpc_urls=[
                "https://eth.merkle.io",
                "https://ethereum.publicnode.com",
                "https://rpc.ankr.com/eth",
            ],
            private_rpc_url=settings.gateway_url,
        ),
        ChainId.FLOW_EVM_MAINNET: NetworkConfig(
            chain_id=ChainId.FLOW_EVM_MAINNET,
            name="EVM on Flow",
            key="FLOW",
            base_asset_symbol="FLOW",
            explorer_url="https://evm.flowscan.io",
            public_rpc_urls=["https://mainnet.evm.nodes.onflow.org"],
        ),
        ChainId.FLOW_EVM_TESTNET: NetworkConfig(
            chain_id=ChainId.FLOW_EVM_TESTNET,
            name="EVM on Flow Testnet",
            key="FLOW_TESTNET",
            base_asset_symbol="FLOW",
            explorer_url="https://evm-testnet.flowscan.io",
            public_rpc_urls=["https://testnet.evm.nodes.onflow.org"],
            is_testnet=True,
        ),
    }


def get_network_config(chain_id: int, settings: Optional[Settings] = None) -> NetworkConfig:
    """Get network configuration for a chain, applying endpoint overrides.

    Raises:
        ConfigurationError: If the chain is not supported
    """
    settings = settings or get_settings()
    network = _builtin_networks(settings).get(chain_id)
    if network is None:
        raise ConfigurationError(f"Unsupported chain id: {chain_id}")

    overrides = settings.get_public_rpc_urls(network.key)
    if overrides:
        network.public_rpc_urls = overrides
    return network


def get_supported_chains() -> list[int]:
    """Get list of supported chain ids."""
    return [int(chain_id) for chain_id in ChainId]
