"""
Scenario harness for batch authorization against a Verification Oracle.

Each scenario drives the full client pipeline (assembly, message encoding,
signature collection, submission) and checks the oracle's verdict. A
scenario that observes the wrong verdict raises ScenarioFailed.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import structlog

from zkbatch.config import BatchConfig, MessageScheme, get_config
from zkbatch.core.batch import Batch, ConfigurationError
from zkbatch.core.packing import closest_packable_fee
from zkbatch.core.tokens import TokenLike
from zkbatch.core.transaction import EthSignature, TxType
from zkbatch.engine.assembler import BatchAssembler, fetch_total_fee
from zkbatch.engine.codec import MessageCodec
from zkbatch.engine.collector import SignatureCollector
from zkbatch.engine.submitter import BatchSubmitter, await_all
from zkbatch.provider.interface import Provider, SignatureMismatch, WithdrawalRecovery
from zkbatch.provider.local import LocalOracle
from zkbatch.tx.signer import L2Signer, generate_test_signer
from zkbatch.tx.wallet import Wallet

logger = structlog.get_logger(__name__)


class ScenarioFailed(AssertionError):
    """Raised when the oracle's verdict differs from the expected one."""
    pass


class Tester(ABC):
    """Scenarios every batch-capable deployment must pass."""

    @abstractmethod
    async def test_wrong_signature(self, sender: Wallet, receiver: Wallet, token: TokenLike, amount: int) -> None:
        pass

    @abstractmethod
    async def test_multiple_batch_signers(self, wallets: Sequence[Wallet], token: TokenLike, amount: int) -> None:
        pass

    @abstractmethod
    async def test_multiple_wallets_wrong_signature(
        self, sender: Wallet, receiver: Wallet, token: TokenLike, amount: int
    ) -> None:
        pass

    @abstractmethod
    async def test_backward_compatible_eth_messages(
        self, sender: Wallet, receiver: Wallet, token: TokenLike, amount: int
    ) -> None:
        pass

    @abstractmethod
    async def recover_failed_withdrawal(
        self, wallet: Wallet, revert_address: str, token: TokenLike, amount: int
    ) -> int:
        pass


class BatchTester(Tester):
    """
    Runs the scenarios through the engine components.

    `running_fee` accumulates the fees of accepted submissions. It is an
    advisory counter and is not synchronized.
    """

    def __init__(
        self,
        provider: Provider,
        config: Optional[BatchConfig] = None,
        recovery: Optional[WithdrawalRecovery] = None,
    ):
        """
        Initialize the tester.

        Args:
            provider: Verification Oracle access
            config: zkbatch configuration
            recovery: Collaborator releasing reverted withdrawals
        """
        self.provider = provider
        self.config = config or get_config()
        self.recovery = recovery
        self.assembler = BatchAssembler(self.config)
        self.submitter = BatchSubmitter(provider, self.config)
        self.running_fee = 0

    @staticmethod
    def _codec(wallet: Wallet) -> MessageCodec:
        return wallet.codec

    async def _expect_signature_mismatch(self, submission, scenario: str) -> None:
        try:
            await submission
        except SignatureMismatch as e:
            logger.info("scenario_rejected_as_expected", scenario=scenario, error=e.message)
            return
        raise ScenarioFailed(f"{scenario}: submission with an incorrect signature was accepted")

    async def test_wrong_signature(self, sender: Wallet, receiver: Wallet, token: TokenLike, amount: int) -> None:
        """A transfer and a withdrawal carrying a zero signature are both rejected."""
        transfer = await sender.get_transfer(receiver.address, token, amount, closest_packable_fee(amount // 2))
        await self._expect_signature_mismatch(
            self.submitter.submit_single(transfer, EthSignature.zero()),
            "wrong_signature_transfer",
        )

        fee = await self.provider.get_tx_fee(TxType.WITHDRAW.value, sender.address, token)
        withdraw = await sender.get_withdraw(sender.address, token, amount // 2, fee)
        await self._expect_signature_mismatch(
            self.submitter.submit_single(withdraw, EthSignature.zero()),
            "wrong_signature_withdraw",
        )

    async def test_multiple_batch_signers(
        self,
        wallets: Sequence[Wallet],
        token: TokenLike,
        amount: int,
        scheme: Optional[MessageScheme] = None,
    ) -> None:
        """
        A ring 1 -> 2 -> ... -> N -> 1 signed by every wallet is accepted.

        The first wallet pays the whole fee; its balance drops by exactly
        that fee once every transaction is verified.
        """
        if len(wallets) < 2:
            raise ConfigurationError("At least 2 wallets are expected")

        payer = wallets[0]
        batch = await self.assembler.ring(wallets, token, amount, provider=self.provider)
        collector = SignatureCollector(self._codec(payer), self.config)
        signatures = await collector.collect(batch, wallets, scheme)

        before = await payer.get_balance(token)
        await self.submitter.submit_and_wait(batch, signatures)
        after = await payer.get_balance(token)

        if before - after != batch.total_fee:
            raise ScenarioFailed(
                f"Payer balance changed by {before - after}, expected {batch.total_fee}"
            )
        self.running_fee += batch.total_fee

    async def test_multiple_wallets_wrong_signature(
        self,
        sender: Wallet,
        receiver: Wallet,
        token: TokenLike,
        amount: int,
    ) -> None:
        """A two-origin batch signed by one origin only is rejected."""
        fee = await fetch_total_fee(
            self.provider,
            [TxType.TRANSFER.value, TxType.TRANSFER.value],
            [sender.address, receiver.address],
            token,
        )
        transfer1 = await sender.get_transfer(receiver.address, token, amount, 0)
        transfer2 = await receiver.get_transfer(sender.address, token, amount, fee)
        batch = Batch.of(transfer1, transfer2, fee_payer=receiver.address)

        message = self._codec(sender).encode(batch, MessageScheme.LEGACY)
        signature = await sender.get_eth_message_signature(message.payload)

        await self._expect_signature_mismatch(
            self.submitter.submit(batch, [signature]),
            "multiple_wallets_wrong_signature",
        )

    async def test_backward_compatible_eth_messages(
        self,
        sender: Wallet,
        receiver: Wallet,
        token: TokenLike,
        amount: int,
    ) -> None:
        """
        Transactions carrying legacy per-transaction signatures are accepted
        in a batch authorized under the content-hash encoding.
        """
        total_fee = await fetch_total_fee(
            self.provider,
            [TxType.TRANSFER.value, TxType.WITHDRAW.value],
            [receiver.address, receiver.address],
            token,
        )
        signed_transfer = await sender.sign_transfer(receiver.address, token, amount, total_fee)
        signed_withdraw = await receiver.sign_withdraw(receiver.address, token, amount, 0)
        batch = Batch(transactions=[signed_transfer, signed_withdraw], fee_payer=sender.address)

        message = self._codec(sender).encode(batch, MessageScheme.CONTENT_HASH)
        signatures: List[EthSignature] = [
            await receiver.get_eth_message_signature(message.payload),
            await sender.get_eth_message_signature(message.payload),
        ]

        handles = await self.submitter.submit(batch, signatures)
        await await_all(handles)
        batch.mark_verified()
        self.running_fee += total_fee

    async def recover_failed_withdrawal(
        self,
        wallet: Wallet,
        revert_address: str,
        token: TokenLike,
        amount: int,
    ) -> int:
        """
        Withdraw to a receiver that reverts, then release the stuck funds.

        Returns:
            Amount released by the recovery collaborator

        Raises:
            ConfigurationError: If no recovery collaborator was configured
        """
        if self.recovery is None:
            raise ConfigurationError("Withdrawal recovery requires a WithdrawalRecovery collaborator")

        symbol = wallet.tokens.resolve_token_symbol(token)
        fee = await self.provider.get_tx_fee(TxType.WITHDRAW.value, revert_address, token)
        signed = await wallet.sign_withdraw(revert_address, token, amount, fee)

        handle = await self.submitter.submit_single(signed.tx, signed.eth_signature)
        await handle.await_verify_receipt()
        self.running_fee += fee

        pending = await self.recovery.get_pending_withdrawal(revert_address, symbol)
        if pending < amount:
            raise ScenarioFailed(f"Expected at least {amount} pending for {revert_address}, found {pending}")

        recovered = await self.recovery.recover_withdrawal(revert_address, symbol)
        logger.info("withdrawal_recovery_checked", address=revert_address, token=symbol, recovered=recovered)
        return recovered


async def funded_wallet(
    oracle: LocalOracle,
    token: TokenLike,
    amount: int,
    config: Optional[BatchConfig] = None,
) -> Wallet:
    """Create a wallet with a random key, registered and funded on `oracle`."""
    eth_signer = generate_test_signer(config)
    l2_signer = L2Signer.from_eth_signer(eth_signer)
    oracle.register_account(eth_signer.address, l2_signer.pub_key_hash)
    oracle.deposit(eth_signer.address, token, amount)
    return await Wallet.from_eth_signer(eth_signer, oracle, config)
