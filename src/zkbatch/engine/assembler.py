"""
Batch Assembler - groups transfer intents into an authorizable batch.

Assigns nonces and fees, builds the L2-signed transactions in submission
order and derives which accounts must sign the batch.
"""

import asyncio
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import structlog

from zkbatch.config import BatchConfig, get_config
from zkbatch.core.batch import Batch, ConfigurationError, TransferIntent
from zkbatch.core.tokens import TokenLike
from zkbatch.core.transaction import MAX_TIMESTAMP, TxType
from zkbatch.provider.interface import Provider

if TYPE_CHECKING:
    from zkbatch.tx.wallet import Wallet

logger = structlog.get_logger(__name__)


async def fetch_total_fee(
    provider: Provider,
    kinds: Sequence[str],
    addresses: Sequence[str],
    token: TokenLike,
) -> int:
    """Ask the external fee schedule for a batch's total fee."""
    total_fee = await provider.get_txs_batch_fee(list(kinds), list(addresses), token)
    logger.debug("batch_fee_fetched", kinds=list(kinds), total_fee=total_fee)
    return total_fee


class BatchAssembler:
    """
    Builds batches in which one designated account pays the whole fee.

    The payer's first transaction carries the total fee and every other
    transaction carries zero. Transaction order follows intent order.
    """

    def __init__(self, config: Optional[BatchConfig] = None):
        """
        Initialize the assembler.

        Args:
            config: zkbatch configuration
        """
        self.config = config or get_config()

    async def assemble(
        self,
        intents: Sequence[TransferIntent],
        wallets: Sequence["Wallet"],
        fee_payer: str,
        total_fee: int,
        valid_from: int = 0,
        valid_until: int = MAX_TIMESTAMP,
    ) -> Batch:
        """
        Assemble a batch from ordered intents.

        Args:
            intents: Ordered transfers and withdrawals to include
            wallets: Wallets controlling every intent origin
            fee_payer: Address of the account paying the whole fee
            total_fee: Fee from the external fee schedule
            valid_from: Validity window start for every transaction
            valid_until: Validity window end for every transaction

        Returns:
            Batch with L2-signed transactions, ready for authorization

        Raises:
            ConfigurationError: If the batch would be malformed
        """
        if not intents:
            raise ConfigurationError("Cannot assemble an empty batch")
        if total_fee < 0:
            raise ConfigurationError(f"Total fee must be non-negative: {total_fee}")

        by_address: Dict[str, "Wallet"] = {w.address.lower(): w for w in wallets}
        for intent in intents:
            if intent.origin.lower() not in by_address:
                raise ConfigurationError(
                    f"No signer controls origin {intent.origin}"
                )

        participants = dict.fromkeys(
            address.lower()
            for intent in intents
            for address in (intent.origin, intent.destination)
        )
        if len(participants) < self.config.min_participants:
            raise ConfigurationError(
                f"Batch needs at least {self.config.min_participants} accounts, "
                f"got {len(participants)}"
            )

        payer = fee_payer.lower()
        if payer not in {intent.origin.lower() for intent in intents}:
            raise ConfigurationError(f"Fee payer {fee_payer} originates no transaction")

        # Nonces are read right before signing; later transactions from the
        # same origin take consecutive values.
        origins = list(dict.fromkeys(intent.origin.lower() for intent in intents))
        nonces = dict(zip(
            origins,
            await asyncio.gather(*(by_address[o].get_nonce() for o in origins)),
        ))

        builds = []
        fee_assigned = False
        for intent in intents:
            origin = intent.origin.lower()
            fee = 0
            if origin == payer and not fee_assigned:
                fee, fee_assigned = total_fee, True
            nonce = nonces[origin]
            nonces[origin] += 1

            wallet = by_address[origin]
            build = wallet.get_transfer if intent.kind == TxType.TRANSFER else wallet.get_withdraw
            builds.append(build(
                intent.destination,
                intent.token,
                intent.amount,
                fee,
                nonce=nonce,
                valid_from=valid_from,
                valid_until=valid_until,
            ))

        batch = Batch.of(*await asyncio.gather(*builds), fee_payer=payer)
        self.validate_fee_allocation(batch)

        logger.info(
            "batch_assembled",
            batch_id=batch.batch_id[:8] + "...",
            size=batch.size,
            signers=len(batch.required_signers),
            total_fee=total_fee,
        )
        return batch

    async def ring(
        self,
        wallets: Sequence["Wallet"],
        token: TokenLike,
        amount: int,
        total_fee: Optional[int] = None,
        provider: Optional[Provider] = None,
    ) -> Batch:
        """
        Assemble a cycle of transfers 1 -> 2 -> ... -> N -> 1.

        The first wallet pays the whole fee. When `total_fee` is not given it
        is fetched from the fee schedule through `provider`.
        """
        if len(wallets) < 2:
            raise ConfigurationError("A ring needs at least 2 wallets")

        intents = self.ring_intents([w.address for w in wallets], token, amount)

        if total_fee is None:
            if provider is None:
                raise ConfigurationError("Either total_fee or provider is required")
            total_fee = await fetch_total_fee(
                provider,
                [TxType.TRANSFER.value] * len(wallets),
                [w.address for w in wallets],
                token,
            )

        return await self.assemble(intents, wallets, wallets[0].address, total_fee)

    @staticmethod
    def ring_intents(addresses: Sequence[str], token: TokenLike, amount: int) -> List[TransferIntent]:
        """Intents sending `amount` from each address to the next, closing the cycle."""
        return [
            TransferIntent(
                origin=addresses[i],
                destination=addresses[(i + 1) % len(addresses)],
                token=token,
                amount=amount,
            )
            for i in range(len(addresses))
        ]

    @staticmethod
    def validate_fee_allocation(batch: Batch) -> None:
        """
        Check that only the designated payer carries a nonzero fee.

        Raises:
            ConfigurationError: If a fee is assigned to another account
        """
        if batch.fee_payer is None:
            return
        for tx in batch.txs:
            if tx.fee and tx.origin != batch.fee_payer.lower():
                raise ConfigurationError(
                    f"Fee {tx.fee} assigned to non-designated account {tx.origin}"
                )
