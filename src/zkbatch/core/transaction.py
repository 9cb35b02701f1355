"""
L2 transaction model.

Transfers and withdrawals share a common field set and a byte-exact
serialization. The serialized bytes are what the L2 signing key signs and
what the content-hash batch message is computed over.
"""

import hashlib
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from eth_utils import is_hex_address

from zkbatch.core.packing import pack_amount, pack_fee

MAX_TIMESTAMP = 2 ** 32 - 1
MAX_NONCE = 2 ** 32 - 1
MAX_ACCOUNT_ID = 2 ** 32 - 1
MAX_TOKEN_ID = 2 ** 32 - 1
MAX_UINT64 = 2 ** 64 - 1
MAX_UINT128 = 2 ** 128 - 1

ETH_SIGNATURE_LENGTH = 65
TX_FORMAT_VERSION = 1


class TxType(str, Enum):
    """Transaction kinds accepted inside a batch."""
    TRANSFER = "Transfer"
    WITHDRAW = "Withdraw"

    @property
    def type_byte(self) -> int:
        # New-format transactions mark themselves with 0xff - legacy type id.
        return 0xFF - {TxType.TRANSFER: 5, TxType.WITHDRAW: 3}[self]


@dataclass(frozen=True)
class L2Signature:
    """Signature made with an account's L2 signing key."""
    pub_key: str
    signature: str

    def to_dict(self) -> dict:
        return {"pubKey": self.pub_key, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: dict) -> "L2Signature":
        return cls(pub_key=data["pubKey"], signature=data["signature"])


@dataclass(frozen=True)
class EthSignature:
    """
    External-chain signature over a canonical message.

    Carries no validity on its own; it is meaningful only once matched to
    an account and the message it was produced over.
    """
    signature: str
    type: str = "EthereumSignature"

    @property
    def signature_bytes(self) -> bytes:
        return bytes.fromhex(self.signature[2:] if self.signature.startswith("0x") else self.signature)

    def to_dict(self) -> dict:
        return {"type": self.type, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: dict) -> "EthSignature":
        return cls(signature=data["signature"], type=data.get("type", "EthereumSignature"))

    @classmethod
    def zero(cls) -> "EthSignature":
        """Well-formed placeholder that never verifies."""
        return cls(signature="0x" + "00" * ETH_SIGNATURE_LENGTH)


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(address[2:])


def _check_range(name: str, value: int, upper: int) -> None:
    if not isinstance(value, int) or value < 0 or value > upper:
        raise ValueError(f"{name} out of range: {value}")


@dataclass(frozen=True)
class Transaction:
    """
    Common fields of an L2 account transaction.

    Instances are immutable; signing returns a new instance.

    Attributes:
        account_id: L2 account index of the origin
        from_address: External-chain address of the origin
        to_address: L2 recipient (transfer) or external recipient (withdraw)
        token: Numeric token id
        amount: Amount in the token's minor unit
        fee: Fee in the token's minor unit
        nonce: Origin account nonce consumed by this transaction
        valid_from: First timestamp the transaction may execute at
        valid_until: Last timestamp the transaction may execute at
        signature: L2 signature over `tx_bytes()`
    """

    account_id: int
    from_address: str
    to_address: str
    token: int
    amount: int
    fee: int
    nonce: int
    valid_from: int = 0
    valid_until: int = MAX_TIMESTAMP
    signature: Optional[L2Signature] = field(default=None, compare=False)

    tx_type = None  # set by subclasses

    def __post_init__(self):
        """Validate field ranges."""
        for name in ("from_address", "to_address"):
            if not is_hex_address(getattr(self, name)):
                raise ValueError(f"Invalid address for {name}: {getattr(self, name)}")
        _check_range("account_id", self.account_id, MAX_ACCOUNT_ID)
        _check_range("token", self.token, MAX_TOKEN_ID)
        _check_range("amount", self.amount, MAX_UINT128)
        _check_range("fee", self.fee, MAX_UINT128)
        _check_range("nonce", self.nonce, MAX_NONCE)
        _check_range("valid_from", self.valid_from, MAX_UINT64)
        _check_range("valid_until", self.valid_until, MAX_UINT64)
        if self.valid_from > self.valid_until:
            raise ValueError(
                f"valid_from {self.valid_from} is after valid_until {self.valid_until}"
            )

    @property
    def kind(self) -> str:
        return self.tx_type.value

    @property
    def origin(self) -> str:
        """Lowercase origin address, the identity of the required signer."""
        return self.from_address.lower()

    @property
    def destination(self) -> str:
        return self.to_address.lower()

    def _amount_bytes(self) -> bytes:
        raise NotImplementedError

    def tx_bytes(self) -> bytes:
        """Byte-exact serialization, without any signature."""
        return b"".join([
            bytes([self.tx_type.type_byte, TX_FORMAT_VERSION]),
            self.account_id.to_bytes(4, "big"),
            _address_bytes(self.from_address),
            _address_bytes(self.to_address),
            self.token.to_bytes(4, "big"),
            self._amount_bytes(),
            pack_fee(self.fee),
            self.nonce.to_bytes(4, "big"),
            self.valid_from.to_bytes(8, "big"),
            self.valid_until.to_bytes(8, "big"),
        ])

    def tx_hash(self) -> str:
        return "sync-tx:" + hashlib.sha256(self.tx_bytes()).hexdigest()

    def with_signature(self, signature: L2Signature) -> "Transaction":
        return replace(self, signature=signature)

    def with_fee(self, fee: int) -> "Transaction":
        """Copy with a different fee; the L2 signature is dropped."""
        return replace(self, fee=fee, signature=None)

    def to_wire(self) -> dict:
        """Convert to the JSON submission payload."""
        return {
            "type": self.kind,
            "accountId": self.account_id,
            "from": self.from_address,
            "to": self.to_address,
            "token": self.token,
            "amount": str(self.amount),
            "fee": str(self.fee),
            "nonce": self.nonce,
            "validFrom": self.valid_from,
            "validUntil": self.valid_until,
            "signature": self.signature.to_dict() if self.signature else None,
        }

    def __repr__(self) -> str:
        return (
            f"{self.kind}(account={self.account_id}, from={self.from_address[:10]}..., "
            f"to={self.to_address[:10]}..., amount={self.amount}, fee={self.fee}, nonce={self.nonce})"
        )


@dataclass(frozen=True, repr=False)
class Transfer(Transaction):
    """Move tokens between two L2 accounts."""

    tx_type = TxType.TRANSFER

    def _amount_bytes(self) -> bytes:
        return pack_amount(self.amount)


@dataclass(frozen=True, repr=False)
class Withdraw(Transaction):
    """Move tokens from an L2 account to an external-chain address."""

    tx_type = TxType.WITHDRAW

    def _amount_bytes(self) -> bytes:
        return self.amount.to_bytes(16, "big")


AnyTransaction = Union[Transfer, Withdraw]

_TX_CLASSES = {TxType.TRANSFER: Transfer, TxType.WITHDRAW: Withdraw}


def transaction_from_wire(data: dict) -> AnyTransaction:
    """
    Parse a JSON submission payload into a transaction.

    Raises:
        ValueError: If the type is unknown or a field is malformed
    """
    try:
        tx_class = _TX_CLASSES[TxType(data["type"])]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported transaction type: {data.get('type')}")

    signature = data.get("signature")
    return tx_class(
        account_id=int(data["accountId"]),
        from_address=data["from"],
        to_address=data["to"],
        token=int(data["token"]),
        amount=int(data["amount"]),
        fee=int(data["fee"]),
        nonce=int(data["nonce"]),
        valid_from=int(data.get("validFrom", 0)),
        valid_until=int(data.get("validUntil", MAX_TIMESTAMP)),
        signature=L2Signature.from_dict(signature) if signature else None,
    )


@dataclass(frozen=True)
class SignedTransaction:
    """A transaction with its optional per-transaction external signature."""
    tx: AnyTransaction
    eth_signature: Optional[EthSignature] = None

    def to_wire(self) -> dict:
        return {
            "tx": self.tx.to_wire(),
            "signature": self.eth_signature.to_dict() if self.eth_signature else None,
        }

    @classmethod
    def from_wire(cls, data: dict) -> "SignedTransaction":
        signature = data.get("signature")
        return cls(
            tx=transaction_from_wire(data["tx"]),
            eth_signature=EthSignature.from_dict(signature) if signature else None,
        )
