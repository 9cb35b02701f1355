"""
Batch model.

Represents an ordered set of transactions authorized and executed atomically.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from zkbatch.core.transaction import AnyTransaction, EthSignature, SignedTransaction, TxType


class ConfigurationError(ValueError):
    """Raised for a malformed batch before anything is sent to the network."""
    pass


class BatchStatus(str, Enum):
    """Status of a batch."""
    ASSEMBLED = "assembled"       # Transactions built, fees allocated
    SIGNING = "signing"           # Collecting external signatures
    SUBMITTED = "submitted"       # Accepted by the oracle
    COMMITTED = "committed"       # Every transaction committed
    VERIFIED = "verified"         # Every transaction verified
    REJECTED = "rejected"         # Rejected as a whole


@dataclass
class TransferIntent:
    """
    One requested movement of funds before fees and nonces are assigned.

    Attributes:
        origin: Address of the account sending funds
        destination: Recipient address (L2 for transfers, external for withdrawals)
        token: Token symbol, id or address
        amount: Amount in minor units
        kind: Transaction kind to build
    """
    origin: str
    destination: str
    token: object
    amount: int
    kind: TxType = TxType.TRANSFER

    def __post_init__(self):
        if isinstance(self.kind, str):
            self.kind = TxType(self.kind)


@dataclass
class Batch:
    """
    An ordered sequence of transactions submitted together.

    The set of required signers is exactly the set of distinct origins, in
    order of first appearance. A batch has no identity beyond a single
    submission attempt.
    """

    transactions: List[SignedTransaction] = field(default_factory=list)
    fee_payer: Optional[str] = None
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: BatchStatus = BatchStatus.ASSEMBLED
    created_at: datetime = field(default_factory=datetime.utcnow)
    error_message: Optional[str] = None

    def __post_init__(self):
        self.transactions = [
            tx if isinstance(tx, SignedTransaction) else SignedTransaction(tx)
            for tx in self.transactions
        ]
        if isinstance(self.status, str):
            self.status = BatchStatus(self.status)

    @classmethod
    def of(cls, *txs: AnyTransaction, fee_payer: Optional[str] = None) -> "Batch":
        return cls(transactions=[SignedTransaction(tx) for tx in txs], fee_payer=fee_payer)

    def add(self, tx: AnyTransaction, eth_signature: Optional[EthSignature] = None) -> None:
        self.transactions.append(SignedTransaction(tx, eth_signature))

    @property
    def txs(self) -> List[AnyTransaction]:
        return [signed.tx for signed in self.transactions]

    @property
    def size(self) -> int:
        return len(self.transactions)

    @property
    def is_empty(self) -> bool:
        return not self.transactions

    @property
    def required_signers(self) -> List[str]:
        """Distinct lowercase origin addresses in first-appearance order."""
        return list(dict.fromkeys(tx.origin for tx in self.txs))

    @property
    def participants(self) -> List[str]:
        """Distinct origin and destination addresses."""
        addresses: Dict[str, None] = {}
        for tx in self.txs:
            addresses.setdefault(tx.origin)
            addresses.setdefault(tx.destination)
        return list(addresses)

    @property
    def kinds(self) -> List[str]:
        return [tx.kind for tx in self.txs]

    @property
    def total_fee(self) -> int:
        return sum(tx.fee for tx in self.txs)

    @property
    def fee_payers(self) -> List[str]:
        """Origins that carry a nonzero fee."""
        return list(dict.fromkeys(tx.origin for tx in self.txs if tx.fee > 0))

    def mark_signing(self) -> None:
        self.status = BatchStatus.SIGNING

    def mark_submitted(self) -> None:
        self.status = BatchStatus.SUBMITTED

    def mark_committed(self) -> None:
        self.status = BatchStatus.COMMITTED

    def mark_verified(self) -> None:
        self.status = BatchStatus.VERIFIED

    def mark_rejected(self, error: str) -> None:
        self.status = BatchStatus.REJECTED
        self.error_message = error

    def to_wire(self) -> List[dict]:
        return [signed.to_wire() for signed in self.transactions]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "size": self.size,
            "fee_payer": self.fee_payer,
            "total_fee": str(self.total_fee),
            "required_signers": self.required_signers,
            "created_at": self.created_at.isoformat(),
            "error_message": self.error_message,
            "transactions": self.to_wire(),
        }

    def __repr__(self) -> str:
        return f"Batch(id={self.batch_id[:8]}..., status={self.status.value}, size={self.size})"
