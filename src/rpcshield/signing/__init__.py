"""Transaction signing boundary.

- TransactionSigner: interface wallet connectors implement
- LocalSigner: eth-account signer for development and scripts
"""

from rpcshield.signing.base import TransactionSigner
from rpcshield.signing.local import LocalSigner

__all__ = [
    "LocalSigner",
    "TransactionSigner",
]
