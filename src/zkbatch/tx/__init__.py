"""
Transaction module.

Handles key management, transaction construction and L2 signing.
Wallets live in `zkbatch.tx.wallet`.
"""

from zkbatch.tx.builder import TransactionBuilder, TransactionBuildError
from zkbatch.tx.signer import EthSigner, L2Signer, recover_signer

__all__ = [
    "TransactionBuilder",
    "TransactionBuildError",
    "EthSigner",
    "L2Signer",
    "recover_signer",
]
