"""JSON-RPC provider interface and the single-endpoint implementation.

Every failure is classified so the rotation layer can decide whether another
endpoint is worth trying:
- EndpointError: network error, non-2xx status, malformed response
- JsonRpcError: the endpoint answered with a JSON-RPC error object
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from rpcshield.errors import EndpointError, JsonRpcError
from rpcshield.jsonrpc import build_request

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_POLL_INTERVAL = 1.0


class RpcProvider(ABC):
    """Anything that can answer JSON-RPC calls for one chain.

    Subclasses implement ``send``; the Ethereum helpers below are shared.
    """

    chain_id: int

    @property
    @abstractmethod
    def urls(self) -> list[str]:
        """Endpoint URLs behind this provider, in preference order."""
        pass

    @property
    @abstractmethod
    def current_url(self) -> str:
        """Endpoint the next call will go to."""
        pass

    @abstractmethod
    async def send(self, method: str, params: Optional[list] = None) -> Any:
        """Call a JSON-RPC method and return its result."""
        pass

    async def get_chain_id(self) -> int:
        """Get the chain id reported by the endpoint."""
        return int(await self.send("eth_chainId"), 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        if not raw_tx.startswith("0x"):
            raw_tx = f"0x{raw_tx}"
        return await self.send("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """Get a transaction receipt, or None while the transaction is pending.

        A receipt for a different hash is treated as a malformed response.
        """
        receipt = await self.send("eth_getTransactionReceipt", [tx_hash])
        if receipt is None:
            return None
        if not isinstance(receipt, dict):
            raise EndpointError(self.current_url, "malformed transaction receipt")
        receipt_hash = str(receipt.get("transactionHash", ""))
        if receipt_hash.lower() != tx_hash.lower():
            raise EndpointError(
                self.current_url,
                f"receipt hash {receipt_hash or '(missing)'} does not match {tx_hash}",
            )
        return receipt

    async def wait_for_receipt(
        self, tx_hash: str, poll_interval: float = DEFAULT_POLL_INTERVAL
    ) -> dict:
        """Poll until the transaction is mined and return its receipt.

        Runs until a receipt arrives, a call fails, or the caller cancels.
        """
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            await asyncio.sleep(poll_interval)


class JsonRpcProvider(RpcProvider):
    """JSON-RPC client bound to one endpoint URL."""

    def __init__(
        self,
        url: str,
        chain_id: int,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        """Initialize provider.

        Args:
            url: Endpoint URL
            chain_id: Chain the endpoint serves
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
            headers: Extra request headers (e.g. the Origin a gateway expects)
        """
        self.url = url
        self.chain_id = chain_id
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._transport = transport

    def __repr__(self) -> str:
        return f"JsonRpcProvider(url={self.url!r}, chain_id={self.chain_id})"

    @property
    def urls(self) -> list[str]:
        return [self.url]

    @property
    def current_url(self) -> str:
        return self.url

    async def send(self, method: str, params: Optional[list] = None) -> Any:
        """Call a JSON-RPC method and return its result.

        Raises:
            EndpointError: The endpoint could not produce a valid response
            JsonRpcError: The endpoint returned a JSON-RPC error
        """
        payload = build_request(method, params)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=payload, headers=self.headers)
        except httpx.HTTPError as e:
            raise EndpointError(self.url, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise EndpointError(
                self.url, f"HTTP {response.status_code} {response.reason_phrase}"
            )

        try:
            data = response.json()
        except ValueError:
            raise EndpointError(self.url, "response is not valid JSON") from None

        if not isinstance(data, dict):
            raise EndpointError(self.url, "response is not a JSON-RPC object")

        error = data.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise EndpointError(self.url, f"malformed error object: {error!r}")
            code = error.get("code")
            if not isinstance(code, int):
                raise EndpointError(self.url, f"malformed error code: {code!r}")
            raise JsonRpcError(code, str(error.get("message", "")), error.get("data"))

        if "result" not in data:
            raise EndpointError(self.url, "response has neither result nor error")

        return data["result"]
