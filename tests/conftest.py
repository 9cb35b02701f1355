"""
Pytest configuration and shared fixtures for the test suite.
"""

from typing import List

import pytest
import pytest_asyncio

from zkbatch.config import BatchConfig, MessageScheme, Network
from zkbatch.core.tokens import Token, TokenSet
from zkbatch.engine.codec import MessageCodec
from zkbatch.harness.tester import funded_wallet
from zkbatch.provider.local import FeeSchedule, LocalOracle
from zkbatch.tx.signer import L2Signer, generate_test_signer
from zkbatch.tx.wallet import Wallet


ETH = 10 ** 18
DEPOSIT_AMOUNT = 100 * ETH
NOW = 1_700_000_000


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> BatchConfig:
    """Create a test configuration."""
    return BatchConfig(
        network=Network.LOCALHOST,
        receipt_poll_interval_seconds=0,
        message_scheme=MessageScheme.CONTENT_HASH,
        min_participants=2,
        log_level="DEBUG",
    )


@pytest.fixture
def legacy_config(test_config) -> BatchConfig:
    return test_config.model_copy(update={"message_scheme": MessageScheme.LEGACY})


# ============================================================================
# Token Fixtures
# ============================================================================

@pytest.fixture
def tokens() -> TokenSet:
    """ETH plus one 6-decimal ERC20."""
    return TokenSet([
        Token(id=0, symbol="ETH", decimals=18),
        Token(id=2, symbol="USDC", decimals=6, address="0x" + "a0" * 20),
    ])


@pytest.fixture
def codec(tokens) -> MessageCodec:
    return MessageCodec(tokens)


# ============================================================================
# Oracle Fixtures
# ============================================================================

@pytest.fixture
def fee_schedule() -> FeeSchedule:
    return FeeSchedule(transfer_fee=10 ** 14, withdraw_fee=5 * 10 ** 14)


@pytest.fixture
def oracle(tokens, fee_schedule) -> LocalOracle:
    """In-process oracle with a fixed clock."""
    return LocalOracle(tokens, fee_schedule=fee_schedule, clock=lambda: NOW)


# ============================================================================
# Wallet Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def wallets(oracle, test_config) -> List[Wallet]:
    """Three registered wallets holding DEPOSIT_AMOUNT ETH each."""
    return [await funded_wallet(oracle, "ETH", DEPOSIT_AMOUNT, test_config) for _ in range(3)]


@pytest_asyncio.fixture
async def alice(wallets) -> Wallet:
    return wallets[0]


@pytest_asyncio.fixture
async def bob(wallets) -> Wallet:
    return wallets[1]


@pytest.fixture
def unregistered_wallet(oracle, tokens, test_config) -> Wallet:
    """Wallet whose account does not exist on the oracle."""
    eth_signer = generate_test_signer(test_config)
    return Wallet(
        eth_signer=eth_signer,
        l2_signer=L2Signer.from_eth_signer(eth_signer),
        provider=oracle,
        tokens=tokens,
        account_id=None,
        config=test_config,
    )
