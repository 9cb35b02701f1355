"""
Verification Oracle access.

Provides abstracted access to rollup state, fees and submission.
Supports a remote JSON-RPC server and an in-process oracle.
"""

from zkbatch.provider.interface import (
    AccountState,
    BlockStatus,
    InsufficientFee,
    NonceConflict,
    OracleError,
    Provider,
    ProviderConnectionError,
    SignatureMismatch,
    TxReceipt,
    ValidityExpired,
    WithdrawalRecovery,
)
from zkbatch.provider.local import FeeSchedule, LocalOracle
from zkbatch.provider.rpc import RpcProvider

__all__ = [
    "AccountState",
    "BlockStatus",
    "InsufficientFee",
    "NonceConflict",
    "OracleError",
    "Provider",
    "ProviderConnectionError",
    "SignatureMismatch",
    "TxReceipt",
    "ValidityExpired",
    "WithdrawalRecovery",
    "FeeSchedule",
    "LocalOracle",
    "RpcProvider",
]
