"""
Test suite for batch submission and oracle-side verification.

Covers atomic acceptance and rejection, the error taxonomy and handle
confirmation tracking.
"""

import asyncio
import dataclasses

import pytest

from zkbatch.config import MessageScheme
from zkbatch.core.batch import Batch, BatchStatus, ConfigurationError, TransferIntent
from zkbatch.core.transaction import EthSignature
from zkbatch.engine.assembler import BatchAssembler
from zkbatch.engine.collector import SignatureCollector, SignatureSet
from zkbatch.engine.submitter import BatchSubmitter, TransactionFailed, TransactionHandle, await_all
from zkbatch.provider.interface import (
    BlockStatus,
    InsufficientFee,
    NonceConflict,
    OracleError,
    SignatureMismatch,
    TxReceipt,
    ValidityExpired,
    oracle_error_from_message,
)
from zkbatch.provider.local import FEE_ACCOUNT_ADDRESS, LocalOracle


ETH = 10 ** 18
DEPOSIT_AMOUNT = 100 * ETH
NOW = 1_700_000_000


async def assemble_and_sign(wallets, oracle, codec, config, scheme=None, **assemble_kwargs):
    batch = await BatchAssembler(config).ring(wallets, "ETH", ETH, provider=oracle, **assemble_kwargs)
    signatures = await SignatureCollector(codec, config).collect(batch, wallets, scheme)
    return batch, signatures


async def balances(wallets):
    return [await wallet.get_balance("ETH") for wallet in wallets]


# ============================================================================
# Error taxonomy
# ============================================================================

class TestOracleErrors:
    """Tests for mapping oracle messages to error classes."""

    @pytest.mark.parametrize("message, error_class", [
        ("Eth signature is incorrect", SignatureMismatch),
        ("Nonce mismatch", NonceConflict),
        ("Transaction is outside of its validity window", ValidityExpired),
        ("Transactions batch summary fee is too low", InsufficientFee),
        ("Transaction fee is too low", InsufficientFee),
        ("Not enough balance", OracleError),
    ])
    def test_mapping(self, message, error_class):
        error = oracle_error_from_message(message, 101)

        assert type(error) is error_class
        assert error.message == message
        assert error.error_code == 101

    def test_subclasses_share_base(self):
        assert issubclass(SignatureMismatch, OracleError)
        assert not issubclass(ConfigurationError, OracleError)


# ============================================================================
# Batch submission
# ============================================================================

class TestBatchSubmission:
    """Tests for submitting authorized batches to the local oracle."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scheme", [MessageScheme.LEGACY, MessageScheme.CONTENT_HASH])
    async def test_ring_accepted(self, wallets, oracle, codec, test_config, scheme):
        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config, scheme)
        before = await balances(wallets)

        receipts = await BatchSubmitter(oracle, test_config).submit_and_wait(batch, signatures)
        after = await balances(wallets)

        assert all(receipt.verified for receipt in receipts)
        assert batch.status == BatchStatus.VERIFIED
        assert before[0] - after[0] == batch.total_fee
        assert after[1:] == before[1:]
        assert await oracle.get_balance(FEE_ACCOUNT_ADDRESS, "ETH") == batch.total_fee

    @pytest.mark.asyncio
    async def test_nonces_advance(self, wallets, oracle, codec, test_config):
        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config)
        await BatchSubmitter(oracle, test_config).submit(batch, signatures)

        assert [await wallet.get_nonce() for wallet in wallets] == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_missing_signature_rejected_atomically(self, wallets, oracle, codec, test_config):
        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config)
        before = await balances(wallets)

        with pytest.raises(SignatureMismatch):
            await BatchSubmitter(oracle, test_config).submit(batch, signatures.as_list()[:2])

        assert await balances(wallets) == before
        assert batch.status == BatchStatus.REJECTED
        assert batch.error_message == "Eth signature is incorrect"
        assert [await wallet.get_nonce() for wallet in wallets] == [0, 0, 0]

    @pytest.mark.asyncio
    async def test_outsider_signature_rejected(self, wallets, oracle, codec, test_config):
        a, b, c = wallets
        batch, signatures = await assemble_and_sign([a, b], oracle, codec, test_config)
        forged = signatures.as_list()[:1] + [await c.get_eth_message_signature(signatures.message.payload)]

        with pytest.raises(SignatureMismatch):
            await BatchSubmitter(oracle, test_config).submit(batch, forged)

    @pytest.mark.asyncio
    async def test_zero_signatures_rejected(self, wallets, oracle, codec, test_config):
        batch, _ = await assemble_and_sign(wallets, oracle, codec, test_config)

        with pytest.raises(SignatureMismatch):
            await BatchSubmitter(oracle, test_config).submit(batch, [EthSignature.zero()] * 3)

    @pytest.mark.asyncio
    async def test_insufficient_fee_rejected(self, wallets, oracle, codec, test_config):
        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config, total_fee=10 ** 14)

        with pytest.raises(InsufficientFee):
            await BatchSubmitter(oracle, test_config).submit(batch, signatures)

    @pytest.mark.asyncio
    async def test_stale_nonce_rejected(self, wallets, oracle, codec, test_config):
        submitter = BatchSubmitter(oracle, test_config)
        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config)
        await submitter.submit(batch, signatures)

        with pytest.raises(NonceConflict):
            await submitter.submit(batch, signatures)

    @pytest.mark.asyncio
    async def test_expired_validity_rejected(self, wallets, oracle, codec, test_config):
        a, b, _ = wallets
        intents = BatchAssembler.ring_intents([a.address, b.address], "ETH", ETH)
        batch = await BatchAssembler(test_config).assemble(
            intents, [a, b], a.address, 2 * 10 ** 14, valid_from=0, valid_until=NOW - 1
        )
        signatures = await SignatureCollector(codec, test_config).collect(batch, [a, b])

        with pytest.raises(ValidityExpired):
            await BatchSubmitter(oracle, test_config).submit(batch, signatures)

    @pytest.mark.asyncio
    async def test_insufficient_balance_rejects_whole_batch(self, wallets, oracle, codec, test_config):
        a, b, _ = wallets
        # The first transfer alone would succeed.
        intents = [
            TransferIntent(a.address, b.address, "ETH", DEPOSIT_AMOUNT // 2),
            TransferIntent(b.address, a.address, "ETH", 2 * DEPOSIT_AMOUNT),
        ]
        batch = await BatchAssembler(test_config).assemble(intents, [a, b], a.address, 2 * 10 ** 14)
        signatures = await SignatureCollector(codec, test_config).collect(batch, [a, b])
        before = await balances([a, b])

        with pytest.raises(OracleError, match="Not enough balance"):
            await BatchSubmitter(oracle, test_config).submit(batch, signatures)
        assert await balances([a, b]) == before

    @pytest.mark.asyncio
    async def test_empty_batch_not_submitted(self, oracle, test_config):
        with pytest.raises(ConfigurationError):
            await BatchSubmitter(oracle, test_config).submit(Batch(), [])

    @pytest.mark.asyncio
    async def test_oracle_stats(self, wallets, oracle, codec, test_config):
        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config)
        with pytest.raises(SignatureMismatch):
            await BatchSubmitter(oracle, test_config).submit(batch, [])
        await BatchSubmitter(oracle, test_config).submit(batch, signatures)

        stats = oracle.get_stats()
        assert stats["batches_accepted"] == 1
        assert stats["batches_rejected"] == 1
        assert stats["transactions_executed"] == 3

    @pytest.mark.asyncio
    async def test_per_signer_legacy_signatures_accepted(self, wallets, oracle, codec, test_config):
        a, b, _ = wallets
        batch = await BatchAssembler(test_config).ring([a, b], "ETH", ETH, provider=oracle)
        signatures = [
            await wallet.get_eth_message_signature(codec.legacy_signer_message(batch, wallet.address))
            for wallet in (a, b)
        ]

        await BatchSubmitter(oracle, test_config).submit_and_wait(batch, signatures)

        assert batch.status == BatchStatus.VERIFIED
        assert [await a.get_nonce(), await b.get_nonce()] == [1, 1]

    @pytest.mark.asyncio
    async def test_unknown_token_rejected_as_oracle_error(self, alice, bob, oracle, test_config):
        tx = await alice.get_transfer(bob.address, "ETH", ETH, 10 ** 14)
        batch = Batch.of(dataclasses.replace(tx, token=99))

        with pytest.raises(OracleError, match="Token is not supported"):
            await BatchSubmitter(oracle, test_config).submit(batch, [EthSignature.zero()])

        assert oracle.get_stats()["batches_rejected"] == 1


# ============================================================================
# Signature set checks
# ============================================================================

class TestSignatureSetChecks:
    """Collected signature sets are checked against the batch before sending."""

    @pytest.mark.asyncio
    async def test_set_for_other_signers_stays_local(self, wallets, oracle, codec, test_config):
        a, b, c = wallets
        _, signatures = await assemble_and_sign([a, b], oracle, codec, test_config)
        other = await BatchAssembler(test_config).ring([b, c], "ETH", ETH, provider=oracle)
        before = await balances(wallets)

        with pytest.raises(ConfigurationError, match="batch requires"):
            await BatchSubmitter(oracle, test_config).submit(other, signatures)

        assert oracle.get_stats()["batches_rejected"] == 0
        assert await balances(wallets) == before
        assert other.status != BatchStatus.REJECTED

    @pytest.mark.asyncio
    async def test_set_for_other_batch_stays_local(self, wallets, oracle, codec, test_config):
        a, b, _ = wallets
        _, signatures = await assemble_and_sign([a, b], oracle, codec, test_config)
        other = await BatchAssembler(test_config).ring([a, b], "ETH", 2 * ETH, provider=oracle)

        with pytest.raises(ConfigurationError, match="different batch"):
            await BatchSubmitter(oracle, test_config).submit(other, signatures)

        assert oracle.get_stats()["batches_rejected"] == 0

    @pytest.mark.asyncio
    async def test_incomplete_set_stays_local(self, wallets, oracle, codec, test_config):
        batch, full = await assemble_and_sign(wallets, oracle, codec, test_config)
        first = full.signers[0]
        partial = SignatureSet(full.message, full.signers, {first: full.signatures[first]})

        with pytest.raises(ConfigurationError, match="incomplete"):
            await BatchSubmitter(oracle, test_config).submit(batch, partial)

        assert oracle.get_stats()["batches_rejected"] == 0
        assert [await wallet.get_nonce() for wallet in wallets] == [0, 0, 0]

    @pytest.mark.asyncio
    async def test_legacy_set_checked_with_given_codec(self, wallets, oracle, codec, test_config):
        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config, MessageScheme.LEGACY)

        handles = await BatchSubmitter(oracle, test_config, codec=codec).submit(batch, signatures)

        assert len(handles) == 3


# ============================================================================
# Single transactions
# ============================================================================

class TestSingleSubmission:
    """Tests for single-transaction submission."""

    @pytest.mark.asyncio
    async def test_signed_transfer_accepted(self, alice, bob, oracle, test_config):
        signed = await alice.sign_transfer(bob.address, "ETH", ETH, 10 ** 14)
        handle = await BatchSubmitter(oracle, test_config).submit_single(signed.tx, signed.eth_signature)
        await handle.await_verify_receipt()

        assert await alice.get_balance("ETH") == DEPOSIT_AMOUNT - ETH - 10 ** 14
        assert await bob.get_balance("ETH") == DEPOSIT_AMOUNT + ETH

    @pytest.mark.asyncio
    async def test_unsigned_transfer_rejected(self, alice, bob, oracle, test_config):
        tx = await alice.get_transfer(bob.address, "ETH", ETH, 10 ** 14)
        with pytest.raises(SignatureMismatch):
            await BatchSubmitter(oracle, test_config).submit_single(tx)

    @pytest.mark.asyncio
    async def test_low_fee_rejected(self, alice, bob, oracle, test_config):
        signed = await alice.sign_transfer(bob.address, "ETH", ETH, 0)
        with pytest.raises(InsufficientFee):
            await BatchSubmitter(oracle, test_config).submit_single(signed.tx, signed.eth_signature)

    @pytest.mark.asyncio
    async def test_wrong_l2_key_rejected(self, alice, bob, oracle, test_config):
        """A transaction signed with another account's L2 key is refused."""
        signed = await bob.sign_transfer(bob.address, "ETH", ETH, 10 ** 14)
        forged = alice.l2_signer.sign(signed.tx)
        with pytest.raises(OracleError, match="Transaction signature is incorrect"):
            await oracle.submit_tx(forged, signed.eth_signature)

    @pytest.mark.asyncio
    async def test_transfer_to_new_account(self, alice, oracle, test_config):
        receiver = "0x" + "44" * 20
        signed = await alice.sign_transfer(receiver, "ETH", ETH, 10 ** 14)
        await BatchSubmitter(oracle, test_config).submit_single(signed.tx, signed.eth_signature)

        state = await oracle.get_account_state(receiver)
        assert state.account_id is not None
        assert state.balances["ETH"] == ETH


# ============================================================================
# Handles
# ============================================================================

class ScriptedProvider:
    """Returns queued receipts per transaction hash."""

    def __init__(self, receipts):
        self.receipts = {tx_hash: list(queue) for tx_hash, queue in receipts.items()}
        self.polls = 0

    async def get_tx_receipt(self, tx_hash):
        self.polls += 1
        queue = self.receipts[tx_hash]
        return queue.pop(0) if len(queue) > 1 else queue[0]


class TestTransactionHandles:
    """Tests for awaiting confirmation stages."""

    @pytest.mark.asyncio
    async def test_waits_through_stages(self):
        provider = ScriptedProvider({"h": [
            TxReceipt("h", executed=False),
            TxReceipt("h", executed=True, success=True, committed=True),
            TxReceipt("h", executed=True, success=True, committed=True, verified=True),
        ]})
        handle = TransactionHandle(provider, "h", poll_interval=0)

        committed = await handle.await_receipt()
        assert committed.committed and not committed.verified

        verified = await handle.await_verify_receipt()
        assert verified.verified
        assert provider.polls == 3

    @pytest.mark.asyncio
    async def test_failed_receipt_raises(self):
        provider = ScriptedProvider({"h": [
            TxReceipt("h", executed=True, success=False, fail_reason="boom", committed=True),
        ]})
        with pytest.raises(TransactionFailed) as exc_info:
            await TransactionHandle(provider, "h", poll_interval=0).await_receipt()
        assert exc_info.value.reason == "boom"

    @pytest.mark.asyncio
    async def test_await_all_preserves_order(self):
        provider = ScriptedProvider({
            "slow": [TxReceipt("slow", executed=False)] * 3 + [
                TxReceipt("slow", executed=True, success=True, committed=True, verified=True)
            ],
            "fast": [TxReceipt("fast", executed=True, success=True, committed=True, verified=True)],
        })
        handles = [TransactionHandle(provider, tx_hash, poll_interval=0) for tx_hash in ("slow", "fast")]

        receipts = await await_all(handles)

        assert [receipt.tx_hash for receipt in receipts] == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_await_all_fails_fast(self):
        provider = ScriptedProvider({
            "pending": [TxReceipt("pending", executed=False)],
            "failed": [TxReceipt("failed", executed=True, success=False, fail_reason="reverted")],
        })
        handles = [TransactionHandle(provider, tx_hash, poll_interval=0.01) for tx_hash in ("pending", "failed")]

        with pytest.raises(TransactionFailed):
            await asyncio.wait_for(await_all(handles), timeout=5)

    @pytest.mark.asyncio
    async def test_deferred_verification(self, wallets, codec, tokens, fee_schedule, test_config):
        oracle = LocalOracle(tokens, fee_schedule=fee_schedule, clock=lambda: NOW, auto_verify=False)
        for wallet in wallets:
            oracle.register_account(wallet.address, wallet.pub_key_hash)
            oracle.deposit(wallet.address, "ETH", DEPOSIT_AMOUNT)
            wallet.provider = oracle
            await wallet.update_account_id()

        batch, signatures = await assemble_and_sign(wallets, oracle, codec, test_config)
        handles = await BatchSubmitter(oracle, test_config).submit(batch, signatures)
        await await_all(handles, BlockStatus.COMMITTED)

        payer = wallets[0].address
        committed = await oracle.get_balance(payer, "ETH", BlockStatus.COMMITTED)
        verified = await oracle.get_balance(payer, "ETH", BlockStatus.VERIFIED)
        assert verified - committed == batch.total_fee

        assert oracle.verify_pending() == 3
        receipts = await await_all(handles, BlockStatus.VERIFIED)
        assert all(receipt.verified for receipt in receipts)
        assert await oracle.get_balance(payer, "ETH", BlockStatus.VERIFIED) == committed
