"""
In-process Verification Oracle.

Implements the provider interface against an in-memory ledger. Every
submission is decoded from its wire form and checked independently of the
client: L2 signatures, external signatures under either message scheme,
validity windows, nonces, fees and balances. A batch executes in full or
not at all.
"""

import asyncio
import copy
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from zkbatch.core.packing import closest_packable_fee
from zkbatch.core.tokens import TokenLike, TokenSet
from zkbatch.core.transaction import (
    AnyTransaction,
    EthSignature,
    SignedTransaction,
    TxType,
)
from zkbatch.engine.codec import MessageCodec
from zkbatch.provider.interface import (
    ACCOUNT_ID_MESSAGE,
    BALANCE_MESSAGE,
    BATCH_EMPTY_MESSAGE,
    BATCH_FEE_MESSAGE,
    L2_SIGNATURE_MESSAGE,
    NONCE_MISMATCH_MESSAGE,
    SIGNATURE_MISMATCH_MESSAGE,
    TX_FEE_MESSAGE,
    UNKNOWN_ACCOUNT_MESSAGE,
    UNKNOWN_TOKEN_MESSAGE,
    VALIDITY_MESSAGE,
    AccountState,
    BlockStatus,
    OracleError,
    Provider,
    TxReceipt,
    WithdrawalRecovery,
    oracle_error_from_message,
)
from zkbatch.tx.signer import pub_key_hash, verify_l2_signature

logger = structlog.get_logger(__name__)

FEE_ACCOUNT_ADDRESS = "0x" + "fe" * 20


@dataclass
class FeeSchedule:
    """Flat per-kind fees, in the fee token's minor units."""
    transfer_fee: int = 10 ** 14
    withdraw_fee: int = 5 * 10 ** 14

    def fee_for(self, kind: str) -> int:
        if TxType(kind) == TxType.WITHDRAW:
            return self.withdraw_fee
        return self.transfer_fee


@dataclass
class _Account:
    address: str
    account_id: int
    nonce: int = 0
    balances: Dict[str, int] = field(default_factory=dict)
    pub_key_hash: Optional[str] = None

    def to_state(self) -> AccountState:
        return AccountState(
            address=self.address,
            account_id=self.account_id,
            nonce=self.nonce,
            balances=dict(self.balances),
            pub_key_hash=self.pub_key_hash,
        )


@dataclass
class _Ledger:
    accounts: Dict[str, _Account] = field(default_factory=dict)
    l1_balances: Dict[Tuple[str, str], int] = field(default_factory=dict)
    pending_withdrawals: Dict[Tuple[str, str], int] = field(default_factory=dict)


class LocalOracle(Provider, WithdrawalRecovery):
    """
    Verification Oracle running in the caller's process.

    Receipts are committed on execution. With `auto_verify` they are also
    verified at once; otherwise `verify_pending()` verifies them.
    """

    def __init__(
        self,
        tokens: TokenSet,
        fee_schedule: Optional[FeeSchedule] = None,
        clock: Optional[Callable[[], int]] = None,
        auto_verify: bool = True,
        revert_addresses: Iterable[str] = (),
    ):
        """
        Initialize the oracle.

        Args:
            tokens: Tokens the rollup knows
            fee_schedule: Fees charged per transaction kind
            clock: Current unix time source for validity checks
            auto_verify: Verify transactions as soon as they are committed
            revert_addresses: External receivers whose withdrawals fail on-chain
        """
        self.tokens = tokens
        self.codec = MessageCodec(tokens)
        self.fee_schedule = fee_schedule or FeeSchedule()
        self.clock = clock or (lambda: int(time.time()))
        self.auto_verify = auto_verify
        self.revert_addresses = {address.lower() for address in revert_addresses}

        self._ledger = _Ledger()
        self._verified: Dict[str, _Account] = {}
        self._receipts: Dict[str, TxReceipt] = {}
        self._next_account_id = 0
        self._block_number = 0
        self._connected = False
        self._lock = asyncio.Lock()

        self._stats = {
            "batches_accepted": 0,
            "batches_rejected": 0,
            "transactions_executed": 0,
        }

        self.register_account(FEE_ACCOUNT_ADDRESS)

    # Ledger setup

    def register_account(self, address: str, pub_key_hash: Optional[str] = None) -> int:
        """Create an account (or set its key hash) and return its id."""
        address = address.lower()
        account = self._ledger.accounts.get(address)
        if account is None:
            account = _Account(address=address, account_id=self._next_account_id)
            self._next_account_id += 1
            self._ledger.accounts[address] = account
        if pub_key_hash is not None:
            account.pub_key_hash = pub_key_hash

        # Seeding bypasses blocks, so both views see it at once.
        verified = self._verified.setdefault(address, _Account(address=address, account_id=account.account_id))
        verified.pub_key_hash = account.pub_key_hash
        return account.account_id

    def deposit(self, address: str, token: TokenLike, amount: int) -> None:
        """Credit an account directly, creating it if needed."""
        address = address.lower()
        self.register_account(address)
        symbol = self.tokens.resolve_token_symbol(token)
        for accounts in (self._ledger.accounts, self._verified):
            balances = accounts[address].balances
            balances[symbol] = balances.get(symbol, 0) + amount
        logger.debug("oracle_deposit", address=address, token=symbol, amount=amount)

    def _snapshot_verified(self) -> None:
        self._verified = copy.deepcopy(self._ledger.accounts)

    # Provider interface

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_tokens(self) -> TokenSet:
        return self.tokens

    async def get_account_state(
        self,
        address: str,
        block_status: BlockStatus = BlockStatus.COMMITTED,
    ) -> AccountState:
        accounts = self._verified if block_status == BlockStatus.VERIFIED else self._ledger.accounts
        account = accounts.get(address.lower())
        if account is None:
            return AccountState(address=address.lower(), account_id=None, nonce=0)
        return account.to_state()

    async def get_tx_fee(self, kind: str, address: str, token: TokenLike) -> int:
        self.tokens.resolve(token)
        return closest_packable_fee(self.fee_schedule.fee_for(kind))

    async def get_txs_batch_fee(
        self,
        kinds: Sequence[str],
        addresses: Sequence[str],
        token: TokenLike,
    ) -> int:
        if len(kinds) != len(addresses):
            raise OracleError("Number of transaction types and addresses differ")
        self.tokens.resolve(token)
        return closest_packable_fee(sum(self.fee_schedule.fee_for(kind) for kind in kinds))

    async def submit_tx(
        self,
        tx: AnyTransaction,
        eth_signature: Optional[EthSignature] = None,
    ) -> str:
        signed = SignedTransaction.from_wire(SignedTransaction(tx, eth_signature).to_wire())
        try:
            self._check_token(signed.tx)
            self._check_l2_signature(signed.tx)
            if not self.codec.verify_transaction_signature(signed):
                raise oracle_error_from_message(SIGNATURE_MISMATCH_MESSAGE)
            required = await self.get_tx_fee(signed.tx.kind, signed.tx.to_address, signed.tx.token)
            if signed.tx.fee < required:
                raise oracle_error_from_message(TX_FEE_MESSAGE)
            hashes = await self._execute([signed.tx])
        except OracleError as e:
            self._reject(e, size=1)
            raise
        return hashes[0]

    async def submit_txs_batch(
        self,
        transactions: Sequence[SignedTransaction],
        eth_signatures: Sequence[EthSignature],
    ) -> List[str]:
        # Decode from the wire so nothing the client computed is reused.
        batch = [SignedTransaction.from_wire(signed.to_wire()) for signed in transactions]
        signatures = [EthSignature.from_dict(signature.to_dict()) for signature in eth_signatures]
        txs = [signed.tx for signed in batch]

        try:
            if not txs:
                raise OracleError(BATCH_EMPTY_MESSAGE)
            for signed in batch:
                self._check_token(signed.tx)
                self._check_l2_signature(signed.tx)
                if signed.eth_signature is not None and not self.codec.verify_transaction_signature(signed):
                    raise oracle_error_from_message(SIGNATURE_MISMATCH_MESSAGE)

            scheme = self.codec.detect_scheme(txs, signatures)
            if scheme is None:
                raise oracle_error_from_message(SIGNATURE_MISMATCH_MESSAGE)

            await self._check_batch_fee(txs)
            hashes = await self._execute(txs)
        except OracleError as e:
            self._reject(e, size=len(txs))
            raise

        self._stats["batches_accepted"] += 1
        logger.info("oracle_batch_accepted", size=len(txs), scheme=scheme.value)
        return hashes

    async def get_tx_receipt(self, tx_hash: str) -> TxReceipt:
        receipt = self._receipts.get(tx_hash)
        if receipt is None:
            return TxReceipt(tx_hash=tx_hash, executed=False)
        return copy.copy(receipt)

    # Withdrawal recovery

    async def get_pending_withdrawal(self, address: str, token: str) -> int:
        return self._ledger.pending_withdrawals.get((address.lower(), token), 0)

    async def recover_withdrawal(self, address: str, token: str) -> int:
        key = (address.lower(), token)
        amount = self._ledger.pending_withdrawals.pop(key, 0)
        if amount:
            self._ledger.l1_balances[key] = self._ledger.l1_balances.get(key, 0) + amount
            logger.info("withdrawal_recovered", address=address, token=token, amount=amount)
        return amount

    def get_l1_balance(self, address: str, token: str) -> int:
        return self._ledger.l1_balances.get((address.lower(), token), 0)

    # Verification and execution

    def verify_pending(self) -> int:
        """Verify every committed transaction; returns how many changed."""
        count = 0
        for receipt in self._receipts.values():
            if receipt.committed and not receipt.verified:
                receipt.verified = True
                count += 1
        self._snapshot_verified()
        logger.debug("oracle_block_verified", transactions=count)
        return count

    def _check_token(self, tx: AnyTransaction) -> None:
        if tx.token not in self.tokens:
            raise OracleError(f"{UNKNOWN_TOKEN_MESSAGE}: {tx.token}")

    def _check_l2_signature(self, tx: AnyTransaction) -> None:
        if not verify_l2_signature(tx):
            raise OracleError(L2_SIGNATURE_MESSAGE)

    async def _check_batch_fee(self, txs: List[AnyTransaction]) -> None:
        fee_txs = [tx for tx in txs if tx.fee] or txs[:1]
        fee_token = fee_txs[0].token
        required = await self.get_txs_batch_fee(
            [tx.kind for tx in txs],
            [tx.to_address for tx in txs],
            fee_token,
        )
        provided = sum(tx.fee for tx in txs if tx.token == fee_token)
        if provided < required:
            raise oracle_error_from_message(BATCH_FEE_MESSAGE)

    async def _execute(self, txs: List[AnyTransaction]) -> List[str]:
        """Apply transactions to a working copy and commit only if all succeed."""
        async with self._lock:
            now = self.clock()
            working = copy.deepcopy(self._ledger)
            fee_account = working.accounts[FEE_ACCOUNT_ADDRESS]

            for tx in txs:
                account = working.accounts.get(tx.origin)
                if account is None:
                    raise OracleError(UNKNOWN_ACCOUNT_MESSAGE)
                if account.account_id != tx.account_id:
                    raise OracleError(ACCOUNT_ID_MESSAGE)
                if account.pub_key_hash and pub_key_hash(tx.signature.pub_key) != account.pub_key_hash:
                    raise OracleError(L2_SIGNATURE_MESSAGE)
                if not tx.valid_from <= now <= tx.valid_until:
                    raise oracle_error_from_message(VALIDITY_MESSAGE)
                if tx.nonce != account.nonce:
                    raise oracle_error_from_message(NONCE_MISMATCH_MESSAGE)

                symbol = self.tokens.resolve_token_symbol(tx.token)
                balance = account.balances.get(symbol, 0)
                if balance < tx.amount + tx.fee:
                    raise OracleError(BALANCE_MESSAGE)

                account.balances[symbol] = balance - tx.amount - tx.fee
                account.nonce += 1
                fee_account.balances[symbol] = fee_account.balances.get(symbol, 0) + tx.fee
                self._credit(working, tx, symbol)

            self._ledger = working
            self._block_number += 1
            hashes = []
            for tx in txs:
                tx_hash = tx.tx_hash()
                self._receipts[tx_hash] = TxReceipt(
                    tx_hash=tx_hash,
                    executed=True,
                    success=True,
                    block_number=self._block_number,
                    committed=True,
                    verified=False,
                )
                hashes.append(tx_hash)
            self._stats["transactions_executed"] += len(txs)

        if self.auto_verify:
            self.verify_pending()
        return hashes

    def _credit(self, ledger: _Ledger, tx: AnyTransaction, symbol: str) -> None:
        if tx.tx_type == TxType.TRANSFER:
            recipient = ledger.accounts.get(tx.destination)
            if recipient is None:
                recipient = _Account(address=tx.destination, account_id=self._next_account_id)
                self._next_account_id += 1
                ledger.accounts[tx.destination] = recipient
            recipient.balances[symbol] = recipient.balances.get(symbol, 0) + tx.amount
            return

        key = (tx.destination, symbol)
        target = ledger.pending_withdrawals if tx.destination in self.revert_addresses else ledger.l1_balances
        target[key] = target.get(key, 0) + tx.amount

    def _reject(self, error: OracleError, size: int) -> None:
        self._stats["batches_rejected"] += 1
        logger.warning(
            "oracle_rejected",
            error=error.message,
            error_type=type(error).__name__,
            size=size,
        )

    def get_stats(self) -> dict:
        return {
            **self._stats,
            "accounts": len(self._ledger.accounts),
            "block_number": self._block_number,
        }
