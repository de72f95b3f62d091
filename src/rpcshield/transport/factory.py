"""Factory for per-chain providers and transports."""

import logging
from typing import Optional

import httpx

from rpcshield.chains import get_network_config
from rpcshield.config import Settings, get_settings
from rpcshield.signing.base import TransactionSigner
from rpcshield.transport.base import RpcProvider
from rpcshield.transport.resilient import ResilientTransport, create_provider

logger = logging.getLogger(__name__)

# Cache for provider instances
_provider_cache: dict[int, RpcProvider] = {}


def endpoint_headers(settings: Optional[Settings] = None) -> dict[str, str]:
    """Headers sent to every endpoint.

    The app's own gateway is one of the endpoints and rejects requests
    without an allowed Origin, so calls carry the app's public origin.
    """
    settings = settings or get_settings()
    return {"Origin": settings.app_origin}


def get_provider(chain_id: int) -> RpcProvider:
    """Get the shared read provider for a chain.

    Endpoints are ordered private first, then public from top to bottom.
    One endpoint gives a direct provider, several a rotating one.

    Raises:
        ConfigurationError: If the chain is unsupported or has no endpoint
    """
    if chain_id in _provider_cache:
        return _provider_cache[chain_id]

    settings = get_settings()
    network = get_network_config(chain_id, settings)
    provider = create_provider(
        network.rpc_urls,
        chain_id,
        fall_forward_delay=settings.fall_forward_delay,
        timeout=settings.endpoint_timeout,
        headers=endpoint_headers(settings),
    )
    logger.info(f"Created {type(provider).__name__} for {network.name}: {provider.urls}")

    _provider_cache[chain_id] = provider
    return provider


def get_transport(
    chain_id: int,
    signer: Optional[TransactionSigner] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResilientTransport:
    """Create a resilient transport for a chain.

    The chain's public endpoints form the phase 1 pool and its private
    endpoint (if any) is the backup.

    Args:
        chain_id: Chain to connect to
        signer: Signer for unsigned transaction dicts
        transport: Optional httpx transport (used by tests)
    """
    settings = get_settings()
    network = get_network_config(chain_id, settings)
    return ResilientTransport(
        network.public_rpc_urls,
        chain_id,
        backup_url=network.private_rpc_url,
        signer=signer,
        confirmation_timeout=settings.confirmation_timeout,
        poll_interval=settings.receipt_poll_interval,
        fall_forward_delay=settings.fall_forward_delay,
        timeout=settings.endpoint_timeout,
        transport=transport,
        headers=endpoint_headers(settings),
    )


def clear_provider_cache() -> None:
    """Clear cached providers (useful for testing)."""
    _provider_cache.clear()
