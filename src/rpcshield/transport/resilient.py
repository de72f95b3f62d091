"""Resilient transport: one logical provider over a pool of RPC endpoints.

- Ordinary calls rotate across the public endpoints, then the backup.
- Transactions are broadcast exactly once, on the session-bound endpoint.
- Confirmation runs in two phases (see ``confirmation``) and never reports
  a broadcast transaction as failed.
"""

import logging
import time
from typing import Any, Callable, Optional, Union

import httpx

from rpcshield.errors import (
    ConfigurationError,
    EndpointError,
    JsonRpcError,
    SigningError,
    SubmissionError,
)
from rpcshield.signing.base import TransactionSigner
from rpcshield.transport.base import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    JsonRpcProvider,
    RpcProvider,
)
from rpcshield.transport.confirmation import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    ConfirmationResult,
    TransactionConfirmation,
)
from rpcshield.transport.rotation import DEFAULT_FALL_FORWARD_DELAY, RotationProvider

logger = logging.getLogger(__name__)


def create_provider(
    urls: list[str],
    chain_id: int,
    fall_forward_delay: Optional[float] = DEFAULT_FALL_FORWARD_DELAY,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.monotonic,
    headers: Optional[dict[str, str]] = None,
) -> RpcProvider:
    """Create a provider for an ordered list of endpoint URLs.

    One URL gives a direct provider, several give a rotating one.

    Raises:
        ConfigurationError: If no URL is given
    """
    if not urls:
        raise ConfigurationError(f"Chain {chain_id} has no RPC URL configured")
    if len(urls) == 1:
        return JsonRpcProvider(
            urls[0], chain_id, timeout=timeout, transport=transport, headers=headers
        )
    return RotationProvider(
        urls,
        chain_id,
        fall_forward_delay=fall_forward_delay,
        timeout=timeout,
        transport=transport,
        clock=clock,
        headers=headers,
    )


class ResilientTransport:
    """Provider facade absorbing the failure of individual endpoints.

    Example:
        transport = ResilientTransport(
            ["https://eth.merkle.io", "https://rpc.ankr.com/eth"],
            chain_id=1,
            backup_url="https://app.more.markets/api/ethereum-rpc",
            signer=signer,
        )
        tx_hash = await transport.send_transaction(tx)
        result = await transport.wait_for_confirmation(tx_hash)
    """

    def __init__(
        self,
        public_urls: list[str],
        chain_id: int,
        backup_url: Optional[str] = None,
        signer: Optional[TransactionSigner] = None,
        submission_url: Optional[str] = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        fall_forward_delay: Optional[float] = DEFAULT_FALL_FORWARD_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        headers: Optional[dict[str, str]] = None,
    ):
        """Initialize transport.

        Args:
            public_urls: Public endpoints, in preference order
            chain_id: Chain all endpoints serve
            backup_url: Private endpoint reserved for fallback
            signer: Signer for unsigned transaction dicts
            submission_url: Endpoint the wallet session is bound to
                (defaults to the pool's current endpoint at submission time)
            confirmation_timeout: Phase 1 confirmation timeout in seconds
            poll_interval: Delay between receipt polls
            fall_forward_delay: Seconds before a rotated pool returns to its
                first endpoint
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
            clock: Time source for rotation
            headers: Extra request headers sent to every endpoint (the
                gateway backup only accepts an allowed Origin)
        """
        self.public_urls = [url for url in public_urls if url]
        self.backup_url = backup_url or None
        if self.backup_url in self.public_urls:
            self.public_urls.remove(self.backup_url)
        if not self.public_urls and not self.backup_url:
            raise ConfigurationError(f"Chain {chain_id} has no RPC URL configured")

        self.chain_id = chain_id
        self.signer = signer
        self.submission_url = submission_url
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.headers = dict(headers or {})

        self._provider_options = {
            "fall_forward_delay": fall_forward_delay,
            "timeout": timeout,
            "transport": transport,
            "clock": clock,
            "headers": self.headers,
        }

        pool = list(self.public_urls)
        if self.backup_url:
            pool.append(self.backup_url)
        self.provider = create_provider(pool, chain_id, **self._provider_options)
        self.public_provider: Optional[RpcProvider] = (
            create_provider(self.public_urls, chain_id, **self._provider_options)
            if self.public_urls
            else None
        )

    def __repr__(self) -> str:
        return (
            f"ResilientTransport(chain_id={self.chain_id}, "
            f"public={self.public_urls!r}, backup={self.backup_url!r})"
        )

    @property
    def confirmation_urls(self) -> list[str]:
        """Phase 2 endpoint order: backup first, then the public endpoints."""
        urls = [self.backup_url] if self.backup_url else []
        return urls + self.public_urls

    async def send(self, method: str, params: Optional[list] = None) -> Any:
        """Call a read-only JSON-RPC method through the rotating pool."""
        return await self.provider.send(method, params)

    async def get_chain_id(self) -> int:
        return await self.provider.get_chain_id()

    async def send_transaction(self, data: Union[str, bytes, dict]) -> str:
        """Broadcast a transaction once and return its hash.

        Args:
            data: Raw signed transaction (hex or bytes), or an unsigned
                transaction dict for the configured signer

        Returns:
            Transaction hash

        Raises:
            SubmissionError: If signing or the broadcast failed. A network
                error may still mean the node received the transaction, so
                this call is never retried on another endpoint.
        """
        if isinstance(data, dict):
            if self.signer is None:
                raise SubmissionError("No signer configured for unsigned transactions")
            try:
                raw_tx = await self.signer.sign_transaction({"chainId": self.chain_id, **data})
            except SigningError as e:
                logger.error(f"Transaction signing failed: {e}")
                raise SubmissionError(f"Transaction signing failed: {e}") from e
        elif isinstance(data, (bytes, bytearray)):
            raw_tx = f"0x{bytes(data).hex()}"
        else:
            raw_tx = data

        url = self.submission_url or self.provider.current_url
        endpoint = JsonRpcProvider(
            url,
            self.chain_id,
            timeout=self._provider_options["timeout"],
            transport=self._provider_options["transport"],
            headers=self._provider_options["headers"],
        )

        try:
            tx_hash = await endpoint.send_raw_transaction(raw_tx)
        except (EndpointError, JsonRpcError) as e:
            logger.error(f"Transaction broadcast via {url} failed: {e}")
            raise SubmissionError(f"Transaction broadcast failed: {e}") from e

        logger.info(f"Transaction {tx_hash} submitted via {url}")
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str) -> ConfirmationResult:
        """Wait for a broadcast transaction to be mined.

        Never raises for endpoint failures: when neither phase can confirm,
        the result is UNCONFIRMED_BUT_ACCEPTED.
        """
        backup_provider = create_provider(
            self.confirmation_urls, self.chain_id, **self._provider_options
        )
        confirmation = TransactionConfirmation(
            tx_hash,
            public=self.public_provider,
            backup=backup_provider,
            timeout=self.confirmation_timeout,
            poll_interval=self.poll_interval,
        )
        return await confirmation.run()

    async def send_and_confirm(self, data: Union[str, bytes, dict]) -> ConfirmationResult:
        """Broadcast a transaction, then track it to a terminal state."""
        tx_hash = await self.send_transaction(data)
        return await self.wait_for_confirmation(tx_hash)
