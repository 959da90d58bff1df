"""
Configuration for the Bitcoin adaptor.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

# btcd caps searchrawtransactions results per request
MAX_SEARCH_COUNT = 999_999


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


DEFAULT_RPC_PORTS: dict[NetworkType, int] = {
    NetworkType.MAINNET: 8334,
    NetworkType.TESTNET: 18334,
    NetworkType.SIGNET: 38332,
    NetworkType.REGTEST: 18556,
}


class RPCConfig(BaseModel):
    """Connection settings for the ledger node."""

    url: str = Field(default="", description="JSON-RPC endpoint, empty = localhost default port")
    user: str = ""
    password: str = ""
    # TLS certificate of the node. Never looked up implicitly.
    cert_path: Path | None = None
    timeout: float | None = Field(default=30.0, gt=0, description="Transport timeout seconds")

    model_config = {"frozen": True}


class AdaptorConfig(BaseModel):
    """Configuration for BitcoinAdaptor."""

    network: NetworkType = NetworkType.MAINNET
    rpc: RPCConfig = Field(default_factory=RPCConfig)

    # Confirmations required before an output counts as spendable
    min_confirmations: int = Field(default=1, ge=0)
    # Confirmations after which a transaction or block is reported stable
    stable_confirmations: int = Field(default=6, ge=1)
    max_history: int = Field(default=MAX_SEARCH_COUNT, ge=1, le=MAX_SEARCH_COUNT)
    default_history_count: int = Field(default=50, ge=1, le=MAX_SEARCH_COUNT)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def set_rpc_url_default(self) -> AdaptorConfig:
        """If no RPC URL is given, point at the network's default local port."""
        if not self.rpc.url:
            scheme = "https" if self.rpc.cert_path else "http"
            port = DEFAULT_RPC_PORTS[self.network]
            rpc = self.rpc.model_copy(update={"url": f"{scheme}://127.0.0.1:{port}"})
            object.__setattr__(self, "rpc", rpc)
        return self
