"""
Abstract interface for the Verification Oracle.

Defines the contract for rollup access that all providers must implement,
and the errors the oracle reports when it rejects a submission.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from zkbatch.core.tokens import TokenLike, TokenSet
from zkbatch.core.transaction import AnyTransaction, EthSignature, SignedTransaction

SIGNATURE_MISMATCH_MESSAGE = "Eth signature is incorrect"
NONCE_MISMATCH_MESSAGE = "Nonce mismatch"
VALIDITY_MESSAGE = "Transaction is outside of its validity window"
BATCH_FEE_MESSAGE = "Transactions batch summary fee is too low"
TX_FEE_MESSAGE = "Transaction fee is too low"
BATCH_EMPTY_MESSAGE = "Transaction batch is empty"
ACCOUNT_ID_MESSAGE = "Account id mismatch"
L2_SIGNATURE_MESSAGE = "Transaction signature is incorrect"
BALANCE_MESSAGE = "Not enough balance"
UNKNOWN_ACCOUNT_MESSAGE = "Account does not exist"
UNKNOWN_TOKEN_MESSAGE = "Token is not supported"


class BlockStatus(str, Enum):
    """Confirmation stage of state or of a transaction."""
    COMMITTED = "committed"
    VERIFIED = "verified"


@dataclass
class AccountState:
    """Account information as seen at one confirmation stage."""
    address: str
    account_id: Optional[int]
    nonce: int
    balances: Dict[str, int] = field(default_factory=dict)
    pub_key_hash: Optional[str] = None


@dataclass
class TxReceipt:
    """Execution status of a submitted transaction."""
    tx_hash: str
    executed: bool
    success: Optional[bool] = None
    fail_reason: Optional[str] = None
    block_number: Optional[int] = None
    committed: bool = False
    verified: bool = False

    def reached(self, stage: BlockStatus) -> bool:
        if stage == BlockStatus.VERIFIED:
            return self.verified
        return self.committed


class Provider(ABC):
    """
    Abstract interface for Verification Oracle access.

    This interface defines every rollup operation batch submission needs:
    - Token metadata
    - Account nonces and balances
    - Fee schedule queries
    - Single and batch submission
    - Receipt polling
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the oracle.

        Raises:
            ProviderConnectionError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the oracle."""
        pass

    @abstractmethod
    async def get_tokens(self) -> TokenSet:
        """Get the token metadata known to the rollup."""
        pass

    @abstractmethod
    async def get_account_state(
        self,
        address: str,
        block_status: BlockStatus = BlockStatus.COMMITTED,
    ) -> AccountState:
        """
        Get account id, nonce and balances.

        Args:
            address: External-chain address of the account
            block_status: Confirmation stage to read

        Returns:
            Account state; unknown accounts have no id and nonce 0
        """
        pass

    @abstractmethod
    async def get_tx_fee(self, kind: str, address: str, token: TokenLike) -> int:
        """Get the fee for a single transaction."""
        pass

    @abstractmethod
    async def get_txs_batch_fee(
        self,
        kinds: Sequence[str],
        addresses: Sequence[str],
        token: TokenLike,
    ) -> int:
        """
        Get the total fee for a batch.

        Args:
            kinds: Transaction kind per batch entry
            addresses: Recipient address per batch entry
            token: Token the fee is paid in

        Returns:
            Total fee in minor units
        """
        pass

    @abstractmethod
    async def submit_tx(
        self,
        tx: AnyTransaction,
        eth_signature: Optional[EthSignature] = None,
    ) -> str:
        """
        Submit a single signed transaction.

        Returns:
            Transaction hash

        Raises:
            OracleError: If the oracle rejects the transaction
        """
        pass

    @abstractmethod
    async def submit_txs_batch(
        self,
        transactions: Sequence[SignedTransaction],
        eth_signatures: Sequence[EthSignature],
    ) -> List[str]:
        """
        Submit a batch atomically.

        Args:
            transactions: Ordered signed transactions
            eth_signatures: Batch authorization signatures

        Returns:
            One transaction hash per transaction, in order

        Raises:
            OracleError: If the oracle rejects the batch as a whole
        """
        pass

    @abstractmethod
    async def get_tx_receipt(self, tx_hash: str) -> TxReceipt:
        """Get the current receipt of a transaction."""
        pass

    async def get_nonce(self, address: str) -> int:
        """Committed nonce of an account, read right before signing."""
        return (await self.get_account_state(address)).nonce

    async def get_balance(
        self,
        address: str,
        token: str,
        block_status: BlockStatus = BlockStatus.COMMITTED,
    ) -> int:
        state = await self.get_account_state(address, block_status)
        return state.balances.get(token, 0)


class WithdrawalRecovery(ABC):
    """
    Withdrawals whose external receiver reverted.

    The on-chain recovery mechanics live outside this package; only the
    interface to query and release pending balances is defined here.
    """

    @abstractmethod
    async def get_pending_withdrawal(self, address: str, token: str) -> int:
        pass

    @abstractmethod
    async def recover_withdrawal(self, address: str, token: str) -> int:
        """Release a pending balance and return the recovered amount."""
        pass


class ProviderConnectionError(Exception):
    """Raised when the oracle cannot be reached."""
    pass


class OracleError(Exception):
    """Raised when the oracle rejects a submission."""

    def __init__(self, message: str, error_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class SignatureMismatch(OracleError):
    """A required external signature is missing or wrong."""
    pass


class ValidityExpired(OracleError):
    """The current time is outside a transaction's validity window."""
    pass


class NonceConflict(OracleError):
    """A nonce does not match the account's next expected value."""
    pass


class InsufficientFee(OracleError):
    """The fees in a batch do not cover the fee schedule."""
    pass


_ERRORS_BY_MESSAGE = {
    SIGNATURE_MISMATCH_MESSAGE: SignatureMismatch,
    NONCE_MISMATCH_MESSAGE: NonceConflict,
    VALIDITY_MESSAGE: ValidityExpired,
    BATCH_FEE_MESSAGE: InsufficientFee,
    TX_FEE_MESSAGE: InsufficientFee,
}


def oracle_error_from_message(message: str, error_code: Optional[int] = None) -> OracleError:
    """Map the oracle's error text to the matching error class."""
    for known, error_class in _ERRORS_BY_MESSAGE.items():
        if message.startswith(known):
            return error_class(message, error_code)
    return OracleError(message, error_code)
