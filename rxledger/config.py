"""
config.py - Network catalogue and process settings.

All configuration comes from environment variables, read once at startup.
The active network is fixed for the lifetime of the process. Operator
credentials are read separately (read_operator_credentials) so that the
connection can re-read them when repairing a missing bind.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Network(str, Enum):
    TESTNET    = "testnet"
    MAINNET    = "mainnet"
    PREVIEWNET = "previewnet"
    LOCAL      = "local"


@dataclass(frozen=True)
class NetworkConfig:
    name: Network
    rpc_url: str
    mirror_url: Optional[str] = None
    native_unit: str = "hbar"
    # Local dev nodes (Besu) run clique/IBFT and need the POA extraData middleware
    poa: bool = False


NETWORKS: dict[Network, NetworkConfig] = {
    Network.TESTNET: NetworkConfig(
        Network.TESTNET,
        rpc_url="https://testnet.hashio.io/api",
        mirror_url="https://testnet.mirrornode.hedera.com",
    ),
    Network.MAINNET: NetworkConfig(
        Network.MAINNET,
        rpc_url="https://mainnet.hashio.io/api",
        mirror_url="https://mainnet-public.mirrornode.hedera.com",
    ),
    Network.PREVIEWNET: NetworkConfig(
        Network.PREVIEWNET,
        rpc_url="https://previewnet.hashio.io/api",
        mirror_url="https://previewnet.mirrornode.hedera.com",
    ),
    Network.LOCAL: NetworkConfig(
        Network.LOCAL,
        rpc_url="http://localhost:8545",
        native_unit="ether",
        poa=True,
    ),
}


def resolve_network(name: Optional[str], rpc_override: Optional[str] = None) -> NetworkConfig:
    """Return the NetworkConfig for a network name (default testnet).

    Raises ValueError for an unknown name: a bad network selector is a
    deployment error, unlike missing operator credentials.
    """
    try:
        network = Network((name or Network.TESTNET.value).strip().lower())
    except ValueError:
        allowed = ", ".join(n.value for n in Network)
        raise ValueError(f"unknown ledger network {name!r} (expected one of: {allowed})")
    config = NETWORKS[network]
    if rpc_override:
        config = NetworkConfig(config.name, rpc_override, config.mirror_url,
                               config.native_unit, config.poa)
    return config


@dataclass(frozen=True)
class OperatorCredentials:
    account_id: Optional[str]
    private_key: Optional[str]


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


def read_operator_credentials() -> OperatorCredentials:
    """Read operator credentials from the environment (primary names first)."""
    return OperatorCredentials(
        account_id=_first_env("HEDERA_OPERATOR_ID", "HEDERA_ACCOUNT_ID"),
        private_key=_first_env("HEDERA_OPERATOR_KEY", "HEDERA_PRIVATE_KEY"),
    )


@dataclass(frozen=True)
class Settings:
    backend: str = "stub"                   # stub | evm
    network: NetworkConfig = NETWORKS[Network.TESTNET]
    public_app_url: str = "http://localhost:3000"
    max_transaction_fee: float = 5.0        # in the network's native unit
    confirm_timeout: float = 30.0
    rpc_timeout: float = 10.0
    database_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            backend=os.getenv("LEDGER_BACKEND", "stub").strip().lower(),
            network=resolve_network(os.getenv("HEDERA_NETWORK"), os.getenv("LEDGER_RPC_URL")),
            public_app_url=os.getenv("PUBLIC_APP_URL", "http://localhost:3000"),
            max_transaction_fee=float(os.getenv("MAX_TRANSACTION_FEE", "5")),
            confirm_timeout=float(os.getenv("CONFIRM_TIMEOUT_SECONDS", "30")),
            rpc_timeout=float(os.getenv("RPC_TIMEOUT_SECONDS", "10")),
            database_url=os.getenv("DATABASE_URL") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
