"""
Core data model.

Tokens, reduced-precision packing, L2 transactions and batches.
"""

from zkbatch.core.batch import Batch, BatchStatus, ConfigurationError, TransferIntent
from zkbatch.core.tokens import Token, TokenSet, format_units
from zkbatch.core.transaction import (
    MAX_TIMESTAMP,
    EthSignature,
    L2Signature,
    SignedTransaction,
    Transaction,
    Transfer,
    TxType,
    Withdraw,
    transaction_from_wire,
)

__all__ = [
    "Batch",
    "BatchStatus",
    "ConfigurationError",
    "TransferIntent",
    "Token",
    "TokenSet",
    "format_units",
    "MAX_TIMESTAMP",
    "EthSignature",
    "L2Signature",
    "SignedTransaction",
    "Transaction",
    "Transfer",
    "TxType",
    "Withdraw",
    "transaction_from_wire",
]
