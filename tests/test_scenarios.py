"""
End-to-end authorization scenarios run through the harness.
"""

import pytest

from zkbatch.config import MessageScheme
from zkbatch.core.batch import Batch, ConfigurationError
from zkbatch.engine.collector import SignatureCollector
from zkbatch.engine.submitter import BatchSubmitter
from zkbatch.harness.tester import BatchTester, funded_wallet
from zkbatch.provider.interface import SignatureMismatch
from zkbatch.provider.local import FEE_ACCOUNT_ADDRESS, LocalOracle


ETH = 10 ** 18
DEPOSIT_AMOUNT = 100 * ETH
REVERTING_RECEIVER = "0x" + "de" * 20


@pytest.fixture
def tester(oracle, test_config) -> BatchTester:
    return BatchTester(oracle, test_config, recovery=oracle)


class TestSingleSignerBatch:
    """A -> B paid and signed by A alone."""

    @pytest.mark.asyncio
    async def test_single_transfer_batch(self, alice, bob, oracle, codec, test_config):
        fee = await oracle.get_txs_batch_fee(["Transfer"], [bob.address], "ETH")
        batch = Batch.of(await alice.get_transfer(bob.address, "ETH", ETH, fee), fee_payer=alice.address)
        signatures = await SignatureCollector(codec, test_config).collect(batch, [alice])

        await BatchSubmitter(oracle, test_config).submit_and_wait(batch, signatures)

        assert await alice.get_balance("ETH") == DEPOSIT_AMOUNT - ETH - fee
        assert await bob.get_balance("ETH") == DEPOSIT_AMOUNT + ETH


class TestWrongSignature:
    """Placeholder signatures never authorize anything."""

    @pytest.mark.asyncio
    async def test_wrong_signature(self, tester, alice, bob):
        await tester.test_wrong_signature(alice, bob, "ETH", ETH)

        assert await alice.get_balance("ETH") == DEPOSIT_AMOUNT
        assert await bob.get_balance("ETH") == DEPOSIT_AMOUNT
        assert await alice.get_nonce() == 0
        assert tester.running_fee == 0

    @pytest.mark.asyncio
    async def test_multiple_wallets_wrong_signature(self, tester, alice, bob):
        await tester.test_multiple_wallets_wrong_signature(alice, bob, "ETH", ETH)

        assert await alice.get_balance("ETH") == DEPOSIT_AMOUNT
        assert await bob.get_balance("ETH") == DEPOSIT_AMOUNT

    @pytest.mark.asyncio
    async def test_batch_without_signatures(self, alice, bob, oracle, test_config):
        batch = Batch.of(await alice.get_transfer(bob.address, "ETH", ETH, 10 ** 14))

        with pytest.raises(SignatureMismatch):
            await BatchSubmitter(oracle, test_config).submit(batch, [])


class TestMultipleBatchSigners:
    """Rings of transfers signed by every origin."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scheme", [MessageScheme.LEGACY, MessageScheme.CONTENT_HASH])
    async def test_three_account_ring(self, tester, wallets, scheme):
        before = [await wallet.get_balance("ETH") for wallet in wallets]

        await tester.test_multiple_batch_signers(wallets, "ETH", ETH, scheme)

        after = [await wallet.get_balance("ETH") for wallet in wallets]
        assert before[0] - after[0] == 3 * 10 ** 14
        assert after[1:] == before[1:]
        assert tester.running_fee == 3 * 10 ** 14

    @pytest.mark.asyncio
    async def test_ring_conserves_supply(self, tester, oracle, test_config):
        wallets = [await funded_wallet(oracle, "ETH", DEPOSIT_AMOUNT, test_config) for _ in range(5)]

        await tester.test_multiple_batch_signers(wallets, "ETH", 7 * ETH)

        balances = [await wallet.get_balance("ETH") for wallet in wallets]
        fees = await oracle.get_balance(FEE_ACCOUNT_ADDRESS, "ETH")
        assert sum(balances) + fees == 5 * DEPOSIT_AMOUNT
        assert fees == tester.running_fee

    @pytest.mark.asyncio
    async def test_running_fee_accumulates(self, tester, wallets):
        await tester.test_multiple_batch_signers(wallets, "ETH", ETH)
        await tester.test_multiple_batch_signers(wallets[:2], "ETH", ETH)

        assert tester.running_fee == 5 * 10 ** 14

    @pytest.mark.asyncio
    async def test_needs_two_wallets(self, tester, alice):
        with pytest.raises(ConfigurationError):
            await tester.test_multiple_batch_signers([alice], "ETH", ETH)


class TestBackwardCompatibility:
    """Legacy-authored transactions under a content-hash batch message."""

    @pytest.mark.asyncio
    async def test_backward_compatible_eth_messages(self, tester, alice, bob, oracle):
        await tester.test_backward_compatible_eth_messages(alice, bob, "ETH", ETH)

        total_fee = 6 * 10 ** 14
        assert tester.running_fee == total_fee
        assert await alice.get_balance("ETH") == DEPOSIT_AMOUNT - ETH - total_fee
        assert await bob.get_balance("ETH") == DEPOSIT_AMOUNT
        assert oracle.get_l1_balance(bob.address, "ETH") == ETH


class TestWithdrawalRecovery:
    """Withdrawals to a reverting receiver stay pending until recovered."""

    @pytest.mark.asyncio
    async def test_recover_failed_withdrawal(self, tokens, fee_schedule, test_config):
        oracle = LocalOracle(tokens, fee_schedule=fee_schedule, revert_addresses=[REVERTING_RECEIVER])
        wallet = await funded_wallet(oracle, "ETH", DEPOSIT_AMOUNT, test_config)
        tester = BatchTester(oracle, test_config, recovery=oracle)

        recovered = await tester.recover_failed_withdrawal(wallet, REVERTING_RECEIVER, "ETH", ETH)

        assert recovered == ETH
        assert await oracle.get_pending_withdrawal(REVERTING_RECEIVER, "ETH") == 0
        assert oracle.get_l1_balance(REVERTING_RECEIVER, "ETH") == ETH
        assert tester.running_fee == 5 * 10 ** 14

    @pytest.mark.asyncio
    async def test_plain_withdrawal_is_not_pending(self, alice, oracle, test_config):
        signed = await alice.sign_withdraw(alice.address, "ETH", ETH, 5 * 10 ** 14)
        handle = await BatchSubmitter(oracle, test_config).submit_single(signed.tx, signed.eth_signature)
        await handle.await_verify_receipt()

        assert await oracle.get_pending_withdrawal(alice.address, "ETH") == 0
        assert oracle.get_l1_balance(alice.address, "ETH") == ETH

    @pytest.mark.asyncio
    async def test_recovery_requires_collaborator(self, oracle, alice, test_config):
        tester = BatchTester(oracle, test_config)
        with pytest.raises(ConfigurationError):
            await tester.recover_failed_withdrawal(alice, REVERTING_RECEIVER, "ETH", ETH)
