"""
Configuration management for zkbatch.

Supports configuration via environment variables and .env files.
"""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Network(str, Enum):
    """Rollup networks the client can talk to."""
    MAINNET = "mainnet"
    RINKEBY = "rinkeby"
    ROPSTEN = "ropsten"
    LOCALHOST = "localhost"


class MessageScheme(str, Enum):
    """Canonical message encodings a client may sign under."""
    LEGACY = "legacy"
    CONTENT_HASH = "content_hash"


class BatchConfig(BaseSettings):
    """
    Configuration settings for batch authorization and submission.

    All settings can be configured via environment variables with the ZKBATCH_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="ZKBATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Network settings
    network: Network = Field(
        default=Network.LOCALHOST,
        description="Rollup network to connect to"
    )
    rpc_url: Optional[str] = Field(
        default=None,
        description="Custom JSON-RPC endpoint (optional)"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for a single JSON-RPC call"
    )

    # Receipt polling
    receipt_poll_interval_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay between receipt polls while awaiting a handle"
    )

    # Batch authorization
    message_scheme: MessageScheme = Field(
        default=MessageScheme.CONTENT_HASH,
        description="Encoding used when this client builds batch messages"
    )
    fee_token: str = Field(
        default="ETH",
        description="Token used to pay batch fees"
    )
    min_participants: int = Field(
        default=2,
        ge=1,
        description="Minimum number of distinct accounts in an assembled batch"
    )

    # Keys
    eth_private_key: Optional[str] = Field(
        default=None,
        description="Hex Ethereum private key used by the CLI"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @property
    def rpc_endpoint(self) -> str:
        """Get the JSON-RPC endpoint based on network."""
        if self.rpc_url:
            return self.rpc_url

        network_urls = {
            Network.MAINNET: "https://api.zksync.io/jsrpc",
            Network.RINKEBY: "https://rinkeby-api.zksync.io/jsrpc",
            Network.ROPSTEN: "https://ropsten-api.zksync.io/jsrpc",
        }
        return network_urls.get(self.network, "http://127.0.0.1:3030")


# Global config instance
_config: Optional[BatchConfig] = None


def get_config() -> BatchConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = BatchConfig()
    return _config


def set_config(config: BatchConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
