"""
Message Codec - canonical batch authorization messages.

Derives the exact bytes each required signer must sign for a batch, in the
legacy human-readable encoding or the content-hash encoding, and verifies a
set of external signatures against them.
"""

from dataclasses import dataclass
from itertools import groupby
from typing import List, Optional, Sequence, Union

import structlog
from eth_utils import keccak

from zkbatch.config import MessageScheme
from zkbatch.core.batch import Batch
from zkbatch.core.tokens import TokenSet
from zkbatch.core.transaction import AnyTransaction, EthSignature, SignedTransaction
from zkbatch.tx.signer import recover_signer

logger = structlog.get_logger(__name__)

BLOCK_SEPARATOR = "\n\n"

# Order in which a verifier tries schemes when the client does not say.
VERIFICATION_ORDER = (MessageScheme.CONTENT_HASH, MessageScheme.LEGACY)

BatchLike = Union[Batch, Sequence[AnyTransaction]]


@dataclass(frozen=True)
class CanonicalMessage:
    """The exact payload a signer signs, tagged with its encoding."""
    scheme: MessageScheme
    payload: bytes

    @property
    def text(self) -> str:
        """The legacy message text; content-hash messages render as hex."""
        if self.scheme == MessageScheme.LEGACY:
            return self.payload.decode("utf-8")
        return self.payload.hex()

    def hex(self) -> str:
        return self.payload.hex()


def _transactions(batch: BatchLike) -> List[AnyTransaction]:
    if isinstance(batch, Batch):
        return batch.txs
    return [tx.tx if isinstance(tx, SignedTransaction) else tx for tx in batch]


class MessageCodec:
    """
    Encodes batches into canonical messages and verifies signatures.

    Legacy messages need token symbols and decimals, so the codec is bound
    to a token set. Every method is deterministic and sensitive to the order
    of transactions.
    """

    def __init__(self, tokens: TokenSet):
        self.tokens = tokens

    # Legacy encoding

    def legacy_transaction_message(self, tx: AnyTransaction) -> str:
        """Per-transaction message used for single-transaction authorization."""
        symbol = self.tokens.resolve_token_symbol(tx.token)
        return (
            f"{tx.kind} {self.tokens.format_token(tx.token, tx.amount)} {symbol}\n"
            f"To: {tx.destination}\n"
            f"Nonce: {tx.nonce}\n"
            f"Fee: {self.tokens.format_token(tx.token, tx.fee)} {symbol}\n"
            f"Account Id: {tx.account_id}"
        )

    def legacy_message_part(self, tx: AnyTransaction) -> str:
        """
        Description of one transaction inside a shared batch message.

        Zero amounts and zero fees are left out.
        """
        symbol = self.tokens.resolve_token_symbol(tx.token)
        lines = []
        if tx.amount:
            amount = self.tokens.format_token(tx.token, tx.amount)
            lines.append(f"{tx.kind} {amount} {symbol} to: {tx.destination}")
        if tx.fee:
            lines.append(f"Fee: {self.tokens.format_token(tx.token, tx.fee)} {symbol}")
        return "\n".join(lines)

    def legacy_batch_message(self, batch: BatchLike) -> str:
        """
        Shared message every signer of the batch signs.

        Consecutive transactions from the same origin form one block headed
        by the origin and closed by the first nonce of the block.
        """
        blocks = []
        for origin, group in groupby(_transactions(batch), key=lambda tx: tx.origin):
            group = list(group)
            parts = [part for part in map(self.legacy_message_part, group) if part]
            blocks.append("\n".join([f"From: {origin}", *parts, f"Nonce: {group[0].nonce}"]))
        return BLOCK_SEPARATOR.join(blocks)

    def legacy_signer_message(self, batch: BatchLike, signer: str) -> str:
        """Per-transaction messages of the transactions `signer` originated."""
        signer = signer.lower()
        return BLOCK_SEPARATOR.join(
            self.legacy_transaction_message(tx)
            for tx in _transactions(batch)
            if tx.origin == signer
        )

    # Content-hash encoding

    @staticmethod
    def content_hash_message(batch: BatchLike) -> bytes:
        """Keccak-256 digest of the concatenated transaction bytes."""
        return keccak(b"".join(tx.tx_bytes() for tx in _transactions(batch)))

    # Entry points

    def encode(self, batch: BatchLike, scheme: MessageScheme) -> CanonicalMessage:
        scheme = MessageScheme(scheme)
        if scheme == MessageScheme.LEGACY:
            payload = self.legacy_batch_message(batch).encode("utf-8")
        else:
            payload = self.content_hash_message(batch)
        return CanonicalMessage(scheme=scheme, payload=payload)

    def verify(
        self,
        batch: BatchLike,
        signatures: Sequence[EthSignature],
        scheme: Optional[MessageScheme] = None,
    ) -> bool:
        """
        Check batch signatures against the required signer set.

        Accepts only when each required signer contributed exactly one
        signature over the canonical message and nothing else was supplied.
        Without `scheme`, every supported scheme is tried.
        """
        if scheme is not None:
            return self._verify_scheme(batch, signatures, MessageScheme(scheme))
        return self.detect_scheme(batch, signatures) is not None

    def detect_scheme(
        self,
        batch: BatchLike,
        signatures: Sequence[EthSignature],
    ) -> Optional[MessageScheme]:
        """Return the first scheme under which the signatures verify."""
        for scheme in VERIFICATION_ORDER:
            if self._verify_scheme(batch, signatures, scheme):
                return scheme
        return None

    def _verify_scheme(
        self,
        batch: BatchLike,
        signatures: Sequence[EthSignature],
        scheme: MessageScheme,
    ) -> bool:
        txs = _transactions(batch)
        if not txs:
            return False
        required = sorted(dict.fromkeys(tx.origin for tx in txs))
        if len(signatures) != len(required):
            logger.debug("signature_count_mismatch", expected=len(required), got=len(signatures))
            return False

        payload = self.encode(txs, scheme).payload
        recovered = [recover_signer(payload, signature) for signature in signatures]
        if None not in recovered and sorted(recovered) == required:
            return True
        if scheme == MessageScheme.LEGACY:
            return self._verify_per_signer(txs, signatures, required)
        return False

    def _verify_per_signer(
        self,
        txs: List[AnyTransaction],
        signatures: Sequence[EthSignature],
        required: List[str],
    ) -> bool:
        """
        Legacy variant where each signer signed only its own transactions.

        Each signature must recover to a distinct remaining signer over that
        signer's own message.
        """
        messages = {signer: self.legacy_signer_message(txs, signer) for signer in required}
        remaining = set(required)
        for signature in signatures:
            match = next(
                (signer for signer in sorted(remaining)
                 if recover_signer(messages[signer], signature) == signer),
                None,
            )
            if match is None:
                return False
            remaining.discard(match)
        return not remaining

    def verify_transaction_signature(self, signed: SignedTransaction) -> bool:
        """Check a per-transaction legacy signature against its origin."""
        if signed.eth_signature is None:
            return False
        message = self.legacy_transaction_message(signed.tx)
        return recover_signer(message, signed.eth_signature) == signed.tx.origin

