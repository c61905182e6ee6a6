"""
Project Configuration — networks, API endpoints, version, constants
====================================================================

Contains the tama.meme network presets (Ronin mainnet / Saigon testnet),
the platform API endpoints and project metadata.

Network presets are plain values: every reader / launcher receives its
NetworkConfig at construction, so both networks can be used side by side
in one process.

Sources:
  Ronin RPC        : https://docs.roninchain.com/developers/network
  tama.meme        : https://tama.meme
"""

import re
from dataclasses import dataclass, replace
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType

# Version — single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("tama-cli")
except PackageNotFoundError:
    # Dev / CI: package not installed — read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "Tama CLI"

# Ronin RPC nodes reject eth_getLogs spanning more than 500 blocks
# ("cannot get more than 500 blocks").
DEFAULT_MAX_BLOCK_RANGE = 500


# ── Network Presets ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class NetworkConfig:
    """One deployment of the tama.meme main contract."""

    name: str
    contract_address: str
    chain_id: int
    rpc_url: str
    explorer_url: str
    currency: str = "RON"

    def tx_url(self, tx_hash: str) -> str:
        """Explorer URL for a transaction."""
        return f"{self.explorer_url}/tx/{tx_hash}"

    def address_url(self, address: str) -> str:
        """Explorer URL for a token or wallet address."""
        return f"{self.explorer_url}/address/{address}"


MAINNET = NetworkConfig(
    name="mainnet",
    contract_address="0xA54b0184D12349Cf65281C6F965A74828DDd9E8F",
    chain_id=2020,
    rpc_url="https://api.roninchain.com/rpc",
    explorer_url="https://app.roninchain.com",
)

TESTNET = NetworkConfig(
    name="testnet",
    contract_address="0xfbdb66ce17543b425962be05d4d44d6f0b7f1b94",
    chain_id=2021,
    rpc_url="https://saigon-api.roninchain.com/rpc",
    explorer_url="https://saigon-app.roninchain.com",
)

# Immutable preset table (+ aliases)
NETWORKS = MappingProxyType(
    {
        "mainnet": MAINNET,
        "testnet": TESTNET,
        "ronin": MAINNET,
        "saigon": TESTNET,
    }
)


def get_network(name: str = "mainnet", rpc_url: str | None = None) -> NetworkConfig:
    """Resolve a network preset, optionally overriding its RPC endpoint."""
    key = (name or "").strip().lower()
    if key not in NETWORKS:
        raise ValueError(
            f"Unsupported network: {name}. Available: {list(NETWORKS.keys())}"
        )
    network = NETWORKS[key]
    if rpc_url:
        network = replace(network, rpc_url=rpc_url)
    return network


# ── Platform API ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TamaAPI:
    """tama.meme web API configuration."""

    BASE_URL: str = "https://tama.meme"
    IPFS_UPLOAD: str = "https://tama.meme/api/uploads/ipfs"

    # Recommended timeout
    TIMEOUT_SECONDS: int = 30

    @classmethod
    def token_url(cls, token_address: str) -> str:
        """Token page on tama.meme."""
        return f"{cls.BASE_URL}/token/{token_address}"


@dataclass(frozen=True)
class TokenCreationDefaults:
    """Buy-in recommendations shown by the CLI (RON, decimal strings)."""

    # Below this the creator holds a negligible share of supply
    RECOMMENDED_MIN_AMOUNT: str = "0.1"
    # Above this the first buy slips hard on a fresh curve
    RECOMMENDED_MAX_AMOUNT: str = "100"


api = TamaAPI()
creation_defaults = TokenCreationDefaults()


def tama_token_url(token_address: str) -> str:
    return TamaAPI.token_url(token_address)
