"""
Wallet - one account's view of the rollup.

Bundles the account's Ethereum and L2 keys with its L2 account id and a
provider, so callers can build, sign and describe transactions by
semantic fields.
"""

from typing import Optional, Union

import structlog

from zkbatch.config import BatchConfig, get_config
from zkbatch.core.tokens import TokenLike, TokenSet
from zkbatch.core.transaction import (
    MAX_TIMESTAMP,
    AnyTransaction,
    EthSignature,
    SignedTransaction,
    Transfer,
    Withdraw,
)
from zkbatch.engine.codec import MessageCodec
from zkbatch.provider.interface import BlockStatus, Provider
from zkbatch.tx.builder import TransactionBuildError, TransactionBuilder
from zkbatch.tx.signer import EthSigner, L2Signer

logger = structlog.get_logger(__name__)


class Wallet:
    """
    A funded account able to originate and authorize transactions.

    Usage:
        ```python
        wallet = await Wallet.from_eth_signer(signer, provider)
        transfer = await wallet.get_transfer(to=other.address, token="ETH", amount=10**18, fee=0)
        ```
    """

    def __init__(
        self,
        eth_signer: EthSigner,
        l2_signer: L2Signer,
        provider: Provider,
        tokens: TokenSet,
        account_id: Optional[int] = None,
        config: Optional[BatchConfig] = None,
    ):
        self.eth_signer = eth_signer
        self.l2_signer = l2_signer
        self.provider = provider
        self.tokens = tokens
        self.account_id = account_id
        self.config = config or get_config()
        self.codec = MessageCodec(tokens)

    @classmethod
    async def from_eth_signer(
        cls,
        eth_signer: EthSigner,
        provider: Provider,
        config: Optional[BatchConfig] = None,
    ) -> "Wallet":
        """Create a wallet, deriving its L2 key and reading its account id."""
        tokens = await provider.get_tokens()
        wallet = cls(
            eth_signer=eth_signer,
            l2_signer=L2Signer.from_eth_signer(eth_signer),
            provider=provider,
            tokens=tokens,
            config=config,
        )
        await wallet.update_account_id()
        return wallet

    @property
    def address(self) -> str:
        return self.eth_signer.address

    @property
    def pub_key_hash(self) -> str:
        return self.l2_signer.pub_key_hash

    async def update_account_id(self) -> Optional[int]:
        state = await self.provider.get_account_state(self.address)
        self.account_id = state.account_id
        return self.account_id

    async def get_nonce(self) -> int:
        """Committed nonce; read immediately before signing."""
        return await self.provider.get_nonce(self.address)

    async def get_balance(
        self,
        token: TokenLike,
        block_status: BlockStatus = BlockStatus.COMMITTED,
    ) -> int:
        symbol = self.tokens.resolve_token_symbol(token)
        return await self.provider.get_balance(self.address, symbol, block_status)

    def _builder(self) -> TransactionBuilder:
        if self.account_id is None:
            raise TransactionBuildError(f"Account {self.address} has no L2 account id")
        return TransactionBuilder(self.account_id, self.address, self.l2_signer, self.tokens)

    async def get_transfer(
        self,
        to: str,
        token: TokenLike,
        amount: int,
        fee: int,
        nonce: Optional[int] = None,
        valid_from: int = 0,
        valid_until: int = MAX_TIMESTAMP,
    ) -> Transfer:
        """Build an L2-signed transfer without any external signature."""
        if nonce is None:
            nonce = await self.get_nonce()
        return self._builder().build_transfer(
            to, token, amount, fee, nonce,
            valid_from=valid_from, valid_until=valid_until,
        )

    async def get_withdraw(
        self,
        eth_address: str,
        token: TokenLike,
        amount: int,
        fee: int,
        nonce: Optional[int] = None,
        valid_from: int = 0,
        valid_until: int = MAX_TIMESTAMP,
    ) -> Withdraw:
        """Build an L2-signed withdrawal without any external signature."""
        if nonce is None:
            nonce = await self.get_nonce()
        return self._builder().build_withdraw(
            eth_address, token, amount, fee, nonce,
            valid_from=valid_from, valid_until=valid_until,
        )

    async def sign_transfer(self, *args, **kwargs) -> SignedTransaction:
        """Transfer plus its per-transaction legacy external signature."""
        tx = await self.get_transfer(*args, **kwargs)
        return SignedTransaction(tx, await self.sign_transaction_message(tx))

    async def sign_withdraw(self, *args, **kwargs) -> SignedTransaction:
        """Withdrawal plus its per-transaction legacy external signature."""
        tx = await self.get_withdraw(*args, **kwargs)
        return SignedTransaction(tx, await self.sign_transaction_message(tx))

    async def sign_transaction_message(self, tx: AnyTransaction) -> EthSignature:
        return await self.get_eth_message_signature(self.codec.legacy_transaction_message(tx))

    async def get_eth_message_signature(self, message: Union[str, bytes]) -> EthSignature:
        """Sign a canonical message with the Ethereum key."""
        signature = self.eth_signer.sign_message(message)
        logger.debug("eth_message_signed", address=self.address)
        return signature

    def get_transfer_eth_message_part(self, tx: AnyTransaction) -> str:
        return self.codec.legacy_message_part(tx)

    def __repr__(self) -> str:
        return f"Wallet(address={self.address}, account_id={self.account_id})"
