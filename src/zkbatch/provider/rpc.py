"""
JSON-RPC provider for a remote Verification Oracle.

Talks to the rollup server's JSON-RPC endpoint over HTTP.
"""

import itertools
from typing import Any, List, Optional, Sequence

import httpx
import structlog

from zkbatch.config import BatchConfig, get_config
from zkbatch.core.tokens import TokenLike, TokenSet
from zkbatch.core.transaction import AnyTransaction, EthSignature, SignedTransaction
from zkbatch.provider.interface import (
    AccountState,
    BlockStatus,
    Provider,
    ProviderConnectionError,
    TxReceipt,
    oracle_error_from_message,
)

logger = structlog.get_logger(__name__)


class RpcProvider(Provider):
    """
    JSON-RPC provider.

    Implements the Provider interface using the rollup server's JSON-RPC API.
    The token set is fetched once and cached.
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider.

        Args:
            config: zkbatch configuration. Uses global config if not provided.
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.config = config or get_config()
        self.url = self.config.rpc_endpoint
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._tokens: Optional[TokenSet] = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            timeout=self.config.request_timeout_seconds,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )
        logger.info("rpc_connected", url=self.url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("rpc_disconnected")

    async def _call(self, method: str, params: list) -> Any:
        """
        Make a JSON-RPC call.

        Raises:
            ProviderConnectionError: On transport failure or a non-200 response
            OracleError: When the server answers with an error object
        """
        if not self._client:
            await self.connect()

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.RequestError as e:
            logger.error("rpc_request_error", method=method, error=str(e))
            raise ProviderConnectionError(f"JSON-RPC request failed: {e}")

        if response.status_code != 200:
            logger.error(
                "rpc_request_failed",
                method=method,
                status=response.status_code,
                error=response.text,
            )
            raise ProviderConnectionError(f"JSON-RPC HTTP error {response.status_code}: {response.text}")

        body = response.json()
        error = body.get("error")
        if error is not None:
            logger.warning("rpc_error_response", method=method, error=error.get("message"), code=error.get("code"))
            raise oracle_error_from_message(error.get("message", ""), error.get("code"))

        return body.get("result")

    async def get_tokens(self) -> TokenSet:
        if self._tokens is None:
            self._tokens = TokenSet.from_dict(await self._call("tokens", []))
            logger.debug("tokens_fetched", count=len(self._tokens))
        return self._tokens

    async def get_account_state(
        self,
        address: str,
        block_status: BlockStatus = BlockStatus.COMMITTED,
    ) -> AccountState:
        data = await self._call("account_info", [address])
        section = data.get(block_status.value) or {}
        return AccountState(
            address=data.get("address", address).lower(),
            account_id=data.get("id"),
            nonce=int(section.get("nonce", 0)),
            balances={symbol: int(amount) for symbol, amount in section.get("balances", {}).items()},
            pub_key_hash=section.get("pubKeyHash"),
        )

    async def _token_symbol(self, token: TokenLike) -> str:
        return (await self.get_tokens()).resolve_token_symbol(token)

    async def get_tx_fee(self, kind: str, address: str, token: TokenLike) -> int:
        data = await self._call("get_tx_fee", [kind, address, await self._token_symbol(token)])
        return int(data["totalFee"])

    async def get_txs_batch_fee(
        self,
        kinds: Sequence[str],
        addresses: Sequence[str],
        token: TokenLike,
    ) -> int:
        data = await self._call(
            "get_txs_batch_fee_in_wei",
            [list(kinds), list(addresses), await self._token_symbol(token)],
        )
        return int(data["totalFee"])

    async def submit_tx(
        self,
        tx: AnyTransaction,
        eth_signature: Optional[EthSignature] = None,
    ) -> str:
        signature = eth_signature.to_dict() if eth_signature else None
        tx_hash = await self._call("tx_submit", [tx.to_wire(), signature, False])
        logger.debug("rpc_tx_submitted", tx_hash=tx_hash)
        return tx_hash

    async def submit_txs_batch(
        self,
        transactions: Sequence[SignedTransaction],
        eth_signatures: Sequence[EthSignature],
    ) -> List[str]:
        tx_hashes = await self._call(
            "submit_txs_batch",
            [
                [signed.to_wire() for signed in transactions],
                [signature.to_dict() for signature in eth_signatures],
            ],
        )
        logger.debug("rpc_batch_submitted", size=len(tx_hashes))
        return list(tx_hashes)

    async def get_tx_receipt(self, tx_hash: str) -> TxReceipt:
        data = await self._call("tx_info", [tx_hash])
        block = data.get("block") or {}
        return TxReceipt(
            tx_hash=tx_hash,
            executed=bool(data.get("executed")),
            success=data.get("success"),
            fail_reason=data.get("failReason"),
            block_number=block.get("blockNumber"),
            committed=bool(block.get("committed")),
            verified=bool(block.get("verified")),
        )
