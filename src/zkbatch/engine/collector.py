"""
Signature Collector - gathers one external signature per required signer.

Each signer signs the canonical message independently; the collector only
associates the results with their signers and refuses to hand over an
incomplete or mismatched association.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import structlog

from zkbatch.config import BatchConfig, MessageScheme, get_config
from zkbatch.core.batch import Batch, ConfigurationError
from zkbatch.core.transaction import EthSignature
from zkbatch.engine.codec import CanonicalMessage, MessageCodec
from zkbatch.tx.signer import recover_signer

if TYPE_CHECKING:
    from zkbatch.tx.wallet import Wallet

logger = structlog.get_logger(__name__)


@dataclass
class SignatureSet:
    """
    Positional association of required signers with their signatures.

    Attributes:
        message: Canonical message every signature is over
        signers: Required signers, lowercase, in batch order
        signatures: Signature per signer
    """
    message: CanonicalMessage
    signers: List[str]
    signatures: Dict[str, EthSignature] = field(default_factory=dict)

    @property
    def missing_signers(self) -> List[str]:
        return [signer for signer in self.signers if signer not in self.signatures]

    @property
    def is_complete(self) -> bool:
        return set(self.signatures) == set(self.signers)

    def as_list(self) -> List[EthSignature]:
        """
        Signatures ordered like the required signers.

        Raises:
            ConfigurationError: If any required signer has no signature
        """
        missing = self.missing_signers
        if missing:
            raise ConfigurationError(f"Signature set is incomplete: missing={missing}")
        return [self.signatures[signer] for signer in self.signers]

    def __len__(self) -> int:
        return len(self.signatures)


class SignatureCollector:
    """
    Obtains batch authorization signatures.

    Signing runs concurrently across accounts; nothing is shared between
    signers apart from the message.
    """

    def __init__(self, codec: MessageCodec, config: Optional[BatchConfig] = None):
        """
        Initialize the collector.

        Args:
            codec: Codec bound to the rollup's token set
            config: zkbatch configuration
        """
        self.codec = codec
        self.config = config or get_config()

    async def collect(
        self,
        batch: Batch,
        wallets: Sequence["Wallet"],
        scheme: Optional[MessageScheme] = None,
    ) -> SignatureSet:
        """
        Sign the batch's canonical message with every required signer.

        Args:
            batch: Assembled batch
            wallets: Exactly the wallets of the batch's required signers
            scheme: Message encoding (configured default if omitted)

        Returns:
            Complete signature set in required-signer order

        Raises:
            ConfigurationError: If the wallets do not match the signer set
        """
        message = self.codec.encode(batch, scheme or self.config.message_scheme)
        required = batch.required_signers

        by_address: Dict[str, "Wallet"] = {}
        for wallet in wallets:
            address = wallet.address.lower()
            if address in by_address:
                raise ConfigurationError(f"Signer {address} supplied twice")
            by_address[address] = wallet

        missing = [signer for signer in required if signer not in by_address]
        extra = [address for address in by_address if address not in required]
        if missing or extra:
            raise ConfigurationError(
                f"Signer set mismatch: missing={missing}, not required={extra}"
            )

        batch.mark_signing()
        signatures = await asyncio.gather(
            *(by_address[signer].get_eth_message_signature(message.payload) for signer in required)
        )

        logger.info(
            "signatures_collected",
            batch_id=batch.batch_id[:8] + "...",
            scheme=message.scheme.value,
            signers=len(required),
        )
        return self.associate(message, required, signatures)

    def associate(
        self,
        message: CanonicalMessage,
        signers: Sequence[str],
        signatures: Sequence[EthSignature],
    ) -> SignatureSet:
        """
        Pair externally produced signatures with their signers by position.

        Raises:
            ConfigurationError: If counts differ or a signature does not
                recover to the signer at its position
        """
        signers = [signer.lower() for signer in signers]
        if len(signers) != len(signatures):
            raise ConfigurationError(
                f"Expected {len(signers)} signatures, got {len(signatures)}"
            )
        if len(set(signers)) != len(signers):
            raise ConfigurationError("Duplicate signer in signer list")

        for signer, signature in zip(signers, signatures):
            if recover_signer(message.payload, signature) != signer:
                raise ConfigurationError(f"Signature at position of {signer} was not made by it")

        return SignatureSet(message=message, signers=signers, signatures=dict(zip(signers, signatures)))
