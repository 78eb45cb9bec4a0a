"""Supported Supra network presets."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NetworkConfig:
    """Endpoints for one Supra network."""

    name: str
    rpc_url: str
    indexer_environment: str  # blockchainEnvironment value for the indexer
    explorer_url: str
    is_testnet: bool = False


# ── Network Registry ─────────────────────────────────────────────────────────

NETWORKS: dict[str, NetworkConfig] = {
    "mainnet": NetworkConfig(
        name="Supra Mainnet",
        rpc_url="https://rpc.supra.com",
        indexer_environment="mainnet",
        explorer_url="https://suprascan.io",
    ),
    "testnet": NetworkConfig(
        name="Supra Testnet",
        rpc_url="https://rpc-testnet.supra.com",
        indexer_environment="testnet",
        explorer_url="https://testnet.suprascan.io",
        is_testnet=True,
    ),
}


def get_network_config(network: str) -> NetworkConfig | None:
    """Get network configuration by name (case-insensitive)."""
    return NETWORKS.get(network.lower())
