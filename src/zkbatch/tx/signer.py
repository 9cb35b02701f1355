"""
Signers - external-chain and L2 signing keys.

Manages the two keys an account signs with: its Ethereum root key, used for
batch authorization messages, and its L2 key, used to sign each transaction.
"""

import hashlib
from pathlib import Path
from typing import Optional, Union

import structlog
from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.util import MalformedSignature, sigdecode_string, sigencode_string
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError

from zkbatch.config import BatchConfig, get_config
from zkbatch.core.transaction import EthSignature, L2Signature, Transaction

logger = structlog.get_logger(__name__)

L2_KEY_SEED_MESSAGE = (
    "Access zkSync account.\n\n"
    "Only sign this message for a trusted client!"
)


def _signable(message: Union[str, bytes]):
    if isinstance(message, str):
        return encode_defunct(text=message)
    return encode_defunct(primitive=bytes(message))


def recover_signer(message: Union[str, bytes], signature: EthSignature) -> Optional[str]:
    """
    Recover the lowercase address that produced `signature` over `message`.

    Returns None when the signature is malformed or does not recover.
    """
    try:
        address = Account.recover_message(_signable(message), signature=signature.signature_bytes)
    except (BadSignature, ValidationError, ValueError):
        return None
    return address.lower()


class EthSigner:
    """
    Signs canonical messages with an account's Ethereum key.

    Supports loading keys from:
    - File path (hex private key on the first line)
    - Hex string (for environment variable configuration)

    Messages are signed with the `personal_sign` prefix: text messages as
    UTF-8, byte messages as-is.
    """

    def __init__(self, config: Optional[BatchConfig] = None):
        """
        Initialize the signer.

        Args:
            config: zkbatch configuration
        """
        self.config = config or get_config()
        self._account = None

    def load_key_from_file(self, key_path: str) -> None:
        """
        Load the private key from a file.

        Args:
            key_path: Path to a file holding a hex private key
        """
        path = Path(key_path)
        if not path.exists():
            raise FileNotFoundError(f"Private key file not found: {key_path}")

        self.load_key_from_hex(path.read_text().strip().splitlines()[0])
        logger.info("eth_key_loaded", path=key_path, address=self.address)

    def load_key_from_hex(self, private_key: str) -> None:
        """
        Load the private key from a hex string.

        Args:
            private_key: 32-byte private key in hex, with or without 0x
        """
        self._account = Account.from_key(private_key)

    def load_from_config(self) -> None:
        """Load private key from configuration."""
        if not self.config.eth_private_key:
            raise ValueError("No Ethereum private key configured")
        self.load_key_from_hex(self.config.eth_private_key)

    @property
    def address(self) -> Optional[str]:
        """Checksummed address of the loaded key."""
        return self._account.address if self._account else None

    @property
    def is_loaded(self) -> bool:
        return self._account is not None

    def sign_message(self, message: Union[str, bytes]) -> EthSignature:
        """
        Sign a canonical message.

        Args:
            message: Legacy text message or content-hash digest bytes

        Returns:
            65-byte signature in hex
        """
        if not self._account:
            raise RuntimeError("No Ethereum key loaded")

        signed = self._account.sign_message(_signable(message))
        return EthSignature(signature="0x" + bytes(signed.signature).hex())


class L2Signer:
    """
    Signs serialized transactions with an account's L2 key.

    The key is a secp256k1 scalar. Signatures are raw 64-byte (r, s) over
    the SHA-256 digest of the transaction bytes.
    """

    def __init__(self, private_key: bytes):
        self._signing_key = SigningKey.from_string(private_key, curve=SECP256k1)
        self._pub_key = self._signing_key.get_verifying_key().to_string("compressed")

    @classmethod
    def from_eth_signer(cls, eth_signer: EthSigner) -> "L2Signer":
        """Derive the L2 key deterministically from an Ethereum key."""
        seed = eth_signer.sign_message(L2_KEY_SEED_MESSAGE).signature_bytes
        scalar = int.from_bytes(hashlib.sha256(seed).digest(), "big") % (SECP256k1.order - 1) + 1
        return cls(scalar.to_bytes(32, "big"))

    @property
    def pub_key(self) -> str:
        return self._pub_key.hex()

    @property
    def pub_key_hash(self) -> str:
        return pub_key_hash(self.pub_key)

    def sign(self, tx: Transaction) -> Transaction:
        """Return a copy of `tx` carrying this key's signature."""
        digest = hashlib.sha256(tx.tx_bytes()).digest()
        signature = self._signing_key.sign_digest_deterministic(
            digest,
            hashfunc=hashlib.sha256,
            sigencode=sigencode_string,
        )
        logger.debug("transaction_signed", tx_hash=tx.tx_hash()[:24] + "...")
        return tx.with_signature(L2Signature(pub_key=self.pub_key, signature=signature.hex()))


def pub_key_hash(pub_key: str) -> str:
    """Short account-key identifier registered with the rollup."""
    return "sync:" + hashlib.sha256(bytes.fromhex(pub_key)).digest()[:20].hex()


def verify_l2_signature(tx: Transaction) -> bool:
    """Check the transaction's L2 signature against its own serialized bytes."""
    if tx.signature is None:
        return False
    try:
        verifying_key = VerifyingKey.from_string(bytes.fromhex(tx.signature.pub_key), curve=SECP256k1)
        return verifying_key.verify_digest(
            bytes.fromhex(tx.signature.signature),
            hashlib.sha256(tx.tx_bytes()).digest(),
            sigdecode=sigdecode_string,
        )
    except (BadSignatureError, MalformedPointError, MalformedSignature, ValueError):
        return False


def generate_test_signer(config: Optional[BatchConfig] = None) -> EthSigner:
    """
    Generate a new random Ethereum key for testing.

    WARNING: Do not use in production. The key is not persisted.

    Returns:
        EthSigner with a new random key
    """
    signer = EthSigner(config)
    signer._account = Account.create()

    logger.debug("test_key_generated", address=signer.address)

    return signer
