"""Base interface for transaction signers.

Signing flow:
1. Application builds an unsigned transaction dict
2. Signer returns the raw signed transaction (never the private key)
3. Transport broadcasts the raw transaction exactly once

Wallet connectors (browser wallets, KMS, hardware) live outside this package
and only need to implement ``TransactionSigner``.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class TransactionSigner(ABC):
    """Abstract base class for signing backends."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address transactions are sent from."""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: dict) -> str:
        """Sign a transaction.

        Args:
            tx: Unsigned transaction fields (to, value, data, nonce, gas,
                chainId and fee fields)

        Returns:
            0x-prefixed raw signed transaction

        Raises:
            SigningError: If the transaction cannot be signed
        """
        pass
