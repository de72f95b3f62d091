"""Local signing backend.

Uses an in-memory private key. Suitable for:
- Development/testing
- Scripted operations against testnets

WARNING: The private key is held in memory. Production wallets sign in the
user's browser wallet and never reach this process.
"""

import logging
from typing import Optional

from eth_account import Account

from rpcshield.errors import SigningError
from rpcshield.signing.base import TransactionSigner

logger = logging.getLogger(__name__)


class LocalSigner(TransactionSigner):
    """eth-account signer holding one private key."""

    def __init__(self, private_key: str, chain_id: Optional[int] = None):
        """Initialize signer.

        Args:
            private_key: Hex private key (with or without 0x prefix)
            chain_id: Default chainId applied when a transaction omits it
        """
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise SigningError(f"Invalid private key: {e}") from None
        self.chain_id = chain_id

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address!r})"

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_transaction(self, tx: dict) -> str:
        tx = dict(tx)
        tx.pop("from", None)
        if "chainId" not in tx and self.chain_id is not None:
            tx["chainId"] = self.chain_id

        try:
            signed = self._account.sign_transaction(tx)
        except (ValueError, TypeError, KeyError) as e:
            logger.error(f"Local signing failed: {e}")
            raise SigningError(f"Could not sign transaction: {e}") from e

        raw = signed.raw_transaction.hex()
        return raw if raw.startswith("0x") else f"0x{raw}"
