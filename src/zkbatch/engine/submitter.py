"""
Batch Submitter - sends authorized batches to the Verification Oracle.

Submission is one call that is accepted or rejected as a whole. Accepted
transactions are tracked through handles that await confirmation stages.
"""

import asyncio
from typing import List, Optional, Sequence, Union

import structlog

from zkbatch.config import BatchConfig, get_config
from zkbatch.core.batch import Batch, ConfigurationError
from zkbatch.core.transaction import AnyTransaction, EthSignature
from zkbatch.engine.codec import MessageCodec
from zkbatch.engine.collector import SignatureSet
from zkbatch.provider.interface import BlockStatus, OracleError, Provider, TxReceipt

logger = structlog.get_logger(__name__)


class TransactionFailed(Exception):
    """Raised when an accepted transaction's receipt reports failure."""

    def __init__(self, tx_hash: str, reason: Optional[str] = None):
        super().__init__(f"Transaction {tx_hash} failed: {reason}")
        self.tx_hash = tx_hash
        self.reason = reason


class TransactionHandle:
    """
    Tracks one submitted transaction through its confirmation stages.

    Polls the provider until the requested stage is reached. There is no
    local timeout: a transaction past its validity window is rejected by
    the oracle, never by this handle.
    """

    def __init__(
        self,
        provider: Provider,
        tx_hash: str,
        tx: Optional[AnyTransaction] = None,
        poll_interval: float = 1.0,
    ):
        self.provider = provider
        self.tx_hash = tx_hash
        self.tx = tx
        self.poll_interval = poll_interval

    async def wait_for(self, stage: BlockStatus) -> TxReceipt:
        """
        Wait until the transaction reaches `stage`.

        Raises:
            TransactionFailed: If the receipt reports a failed execution
        """
        while True:
            receipt = await self.provider.get_tx_receipt(self.tx_hash)
            if receipt.executed and receipt.success is False:
                logger.error("transaction_failed", tx_hash=self.tx_hash, reason=receipt.fail_reason)
                raise TransactionFailed(self.tx_hash, receipt.fail_reason)
            if receipt.reached(stage):
                logger.debug("transaction_confirmed", tx_hash=self.tx_hash, stage=stage.value)
                return receipt
            await asyncio.sleep(self.poll_interval)

    async def await_receipt(self) -> TxReceipt:
        """Wait for the transaction to be committed."""
        return await self.wait_for(BlockStatus.COMMITTED)

    async def await_verify_receipt(self) -> TxReceipt:
        """Wait for the transaction to be verified."""
        return await self.wait_for(BlockStatus.VERIFIED)

    def __repr__(self) -> str:
        return f"TransactionHandle({self.tx_hash[:24]}...)"


async def await_all(
    handles: Sequence[TransactionHandle],
    stage: BlockStatus = BlockStatus.VERIFIED,
) -> List[TxReceipt]:
    """
    Wait for every handle concurrently.

    One task runs per handle. The first failure cancels the others and is
    re-raised; otherwise receipts come back in handle order.
    """
    tasks = [asyncio.create_task(handle.wait_for(stage)) for handle in handles]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class BatchSubmitter:
    """
    Submits batches and single transactions.

    Nothing is retried: a rejected batch needs fresh nonces and fresh
    signatures, which only the caller can produce.
    """

    def __init__(
        self,
        provider: Provider,
        config: Optional[BatchConfig] = None,
        codec: Optional[MessageCodec] = None,
    ):
        """
        Initialize the submitter.

        Args:
            provider: Verification Oracle access
            config: zkbatch configuration
            codec: Codec for checking collected signature sets (built from
                the provider's tokens on first use if omitted)
        """
        self.provider = provider
        self.config = config or get_config()
        self.codec = codec

    def _handle(self, tx_hash: str, tx: Optional[AnyTransaction] = None) -> TransactionHandle:
        return TransactionHandle(
            self.provider,
            tx_hash,
            tx=tx,
            poll_interval=self.config.receipt_poll_interval_seconds,
        )

    async def _get_codec(self) -> MessageCodec:
        if self.codec is None:
            self.codec = MessageCodec(await self.provider.get_tokens())
        return self.codec

    async def check_signature_set(self, batch: Batch, signatures: SignatureSet) -> None:
        """
        Make sure a collected signature set belongs to `batch`.

        Raises:
            ConfigurationError: If signers are missing, the signer set differs
                from the batch's required signers or the signed message is
                not the batch's canonical message
        """
        missing = signatures.missing_signers
        if missing:
            raise ConfigurationError(f"Signature set is incomplete: missing={missing}")

        required = batch.required_signers
        if sorted(signatures.signers) != sorted(required):
            raise ConfigurationError(
                f"Signature set was collected for signers {signatures.signers}, batch requires {required}"
            )

        codec = await self._get_codec()
        expected = codec.encode(batch, signatures.message.scheme)
        if signatures.message.payload != expected.payload:
            raise ConfigurationError("Signature set was collected for a different batch")

    async def submit(
        self,
        batch: Batch,
        signatures: Union[SignatureSet, Sequence[EthSignature]],
    ) -> List[TransactionHandle]:
        """
        Submit a batch with its authorization signatures.

        A collected signature set is checked against the batch first. A plain
        signature list is sent as given, so callers can submit deliberately
        incomplete sets and observe the oracle's rejection.

        Returns:
            One handle per transaction, in batch order

        Raises:
            ConfigurationError: If the batch is empty or a signature set
                does not belong to it
            OracleError: If the oracle rejects the batch
        """
        if batch.is_empty:
            raise ConfigurationError("Cannot submit an empty batch")

        if isinstance(signatures, SignatureSet):
            await self.check_signature_set(batch, signatures)
            signatures = signatures.as_list()

        try:
            tx_hashes = await self.provider.submit_txs_batch(batch.transactions, list(signatures))
        except OracleError as e:
            batch.mark_rejected(e.message)
            logger.error(
                "batch_rejected",
                batch_id=batch.batch_id[:8] + "...",
                error=e.message,
                error_type=type(e).__name__,
            )
            raise

        batch.mark_submitted()
        logger.info(
            "batch_submitted",
            batch_id=batch.batch_id[:8] + "...",
            size=batch.size,
            signatures=len(signatures),
        )
        return [self._handle(tx_hash, tx) for tx_hash, tx in zip(tx_hashes, batch.txs)]

    async def submit_single(
        self,
        tx: AnyTransaction,
        eth_signature: Optional[EthSignature] = None,
    ) -> TransactionHandle:
        """
        Submit one transaction with its optional per-transaction signature.

        Raises:
            OracleError: If the oracle rejects the transaction
        """
        try:
            tx_hash = await self.provider.submit_tx(tx, eth_signature)
        except OracleError as e:
            logger.error("transaction_rejected", kind=tx.kind, error=e.message, error_type=type(e).__name__)
            raise

        logger.info("transaction_submitted", kind=tx.kind, tx_hash=tx_hash)
        return self._handle(tx_hash, tx)

    async def submit_and_wait(
        self,
        batch: Batch,
        signatures: Union[SignatureSet, Sequence[EthSignature]],
        stage: BlockStatus = BlockStatus.VERIFIED,
    ) -> List[TxReceipt]:
        """Submit a batch and wait until every transaction reaches `stage`."""
        handles = await self.submit(batch, signatures)
        receipts = await await_all(handles, stage)
        if stage == BlockStatus.VERIFIED:
            batch.mark_verified()
        else:
            batch.mark_committed()
        return receipts
