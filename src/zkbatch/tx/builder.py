"""
Transaction Builder - constructs signed L2 transactions.

Turns semantic fields into an immutable, L2-signed transfer or withdrawal.
"""

import structlog

from zkbatch.core.packing import PackingError, pack_amount, pack_fee
from zkbatch.core.tokens import TokenLike, TokenSet
from zkbatch.core.transaction import MAX_TIMESTAMP, Transfer, TxType, Withdraw
from zkbatch.tx.signer import L2Signer

logger = structlog.get_logger(__name__)


class TransactionBuildError(Exception):
    """Raised when transaction construction fails."""
    pass


class TransactionBuilder:
    """
    Builds and signs account transactions for one origin account.

    The nonce is taken as given; the oracle, not the builder, rejects a
    nonce that is not the account's next expected one.
    """

    def __init__(
        self,
        account_id: int,
        address: str,
        l2_signer: L2Signer,
        tokens: TokenSet,
    ):
        """
        Initialize the transaction builder.

        Args:
            account_id: L2 account index of the origin
            address: External-chain address of the origin
            l2_signer: Origin's L2 signing key
            tokens: Token metadata used to resolve token-likes
        """
        self.account_id = account_id
        self.address = address
        self.l2_signer = l2_signer
        self.tokens = tokens

    def build(
        self,
        kind: TxType,
        to: str,
        token: TokenLike,
        amount: int,
        fee: int,
        nonce: int,
        valid_from: int = 0,
        valid_until: int = MAX_TIMESTAMP,
    ):
        """
        Build and sign a transaction of the given kind.

        Raises:
            TransactionBuildError: If a field is out of range or not packable
        """
        kind = TxType(kind)
        if amount < 0 or fee < 0:
            raise TransactionBuildError(f"Amount and fee must be non-negative: {amount}, {fee}")

        try:
            token_id = self.tokens.resolve_token_id(token)
            pack_fee(fee)
            if kind == TxType.TRANSFER:
                pack_amount(amount)
                tx_class = Transfer
            else:
                tx_class = Withdraw

            tx = tx_class(
                account_id=self.account_id,
                from_address=self.address,
                to_address=to,
                token=token_id,
                amount=amount,
                fee=fee,
                nonce=nonce,
                valid_from=valid_from,
                valid_until=valid_until,
            )
        except (PackingError, ValueError) as e:
            logger.error(
                "transaction_build_failed",
                kind=kind.value,
                address=self.address,
                error=str(e),
            )
            raise TransactionBuildError(f"Failed to build {kind.value}: {e}")

        signed = self.l2_signer.sign(tx)
        logger.debug(
            "transaction_built",
            kind=signed.kind,
            account_id=self.account_id,
            nonce=nonce,
            fee=fee,
        )
        return signed

    def build_transfer(self, to: str, token: TokenLike, amount: int, fee: int, nonce: int, **validity) -> Transfer:
        """Build an L2-signed transfer to another L2 account."""
        return self.build(TxType.TRANSFER, to, token, amount, fee, nonce, **validity)

    def build_withdraw(self, eth_address: str, token: TokenLike, amount: int, fee: int, nonce: int, **validity) -> Withdraw:
        """Build an L2-signed withdrawal to an external-chain address."""
        return self.build(TxType.WITHDRAW, eth_address, token, amount, fee, nonce, **validity)
