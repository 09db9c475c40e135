"""
Configuration for idrx-chain.

Provides:
- NetworkDescriptor: static description of one IDRX deployment
- NetworkRegistry: read-only catalogue keyed by network name and chain ID
- The compiled-in table of supported networks
- ClientSettings: signer key and timeouts, loaded from IDRX_* env vars
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Set, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ChainNotSupportedError

logger = logging.getLogger(__name__)

# Most IDRX deployments use 2 decimals
DEFAULT_DECIMALS = 2

MIN_CONFIRMATION_TIMEOUT_SECONDS = 60.0
CONFIRMATION_TIMEOUT_BLOCKS = 10


# Network identifiers
BASE_MAINNET = "BaseMainnet"
POLYGON_MAINNET = "PolygonMainnet"
BSC_MAINNET = "BSCMainnet"
LISK_MAINNET = "LiskMainnet"
KAIA_MAINNET = "KaiaMainnet"
WORLD_CHAIN_MAINNET = "WorldChainMainnet"
ETHERLINK_MAINNET = "EtherlinkMainnet"
GNOSIS_MAINNET = "GnosisMainnet"

# Chain IDs
BASE_CHAIN_ID = 8453
POLYGON_CHAIN_ID = 137
BSC_CHAIN_ID = 56
LISK_CHAIN_ID = 1135
KAIA_CHAIN_ID = 8217
WORLD_CHAIN_CHAIN_ID = 480
ETHERLINK_CHAIN_ID = 42793
GNOSIS_CHAIN_ID = 100


@dataclass(frozen=True)
class NetworkDescriptor:
    """Static configuration for one network hosting the IDRX contract."""
    chain_id: int
    name: str
    rpc_endpoints: Tuple[str, ...] = ()
    contract_address: str = ""  # empty = not deployed, network is skipped
    block_time_seconds: float = 2.0
    gas_limit: int = 3_000_000
    max_gas_price_wei: Optional[int] = None  # None = ask the node
    decimals: int = DEFAULT_DECIMALS
    is_testnet: bool = False

    @property
    def is_deployed(self) -> bool:
        return bool(self.contract_address) and int(self.contract_address, 16) != 0

    @property
    def confirmation_timeout_seconds(self) -> float:
        """Allow for ~10 blocks, never less than a minute."""
        return max(
            self.block_time_seconds * CONFIRMATION_TIMEOUT_BLOCKS,
            MIN_CONFIRMATION_TIMEOUT_SECONDS,
        )

    @property
    def poll_interval_seconds(self) -> float:
        """Check twice per block."""
        return self.block_time_seconds / 2


class NetworkRegistry:
    """
    Read-only catalogue of supported networks.

    The table is fixed at construction, so lookups need no locking.
    """

    def __init__(self, networks: Mapping[str, NetworkDescriptor]):
        if not networks:
            raise ValueError("NetworkRegistry requires at least one network")

        by_chain_id: Dict[int, str] = {}
        for name, descriptor in networks.items():
            existing = by_chain_id.get(descriptor.chain_id)
            if existing is not None:
                raise ValueError(
                    f"Duplicate chain ID {descriptor.chain_id}: {existing} and {name}"
                )
            by_chain_id[descriptor.chain_id] = name

        self._networks: Dict[str, NetworkDescriptor] = dict(networks)
        self._by_chain_id = by_chain_id

    def __contains__(self, key: object) -> bool:
        return key in self._networks or key in self._by_chain_id

    def __iter__(self):
        return iter(self._networks.items())

    def __len__(self) -> int:
        return len(self._networks)

    def lookup_by_name(self, name: str) -> NetworkDescriptor:
        descriptor = self._networks.get(name)
        if descriptor is None:
            raise ChainNotSupportedError(name, operation="lookup_by_name")
        return descriptor

    def lookup_by_chain_id(self, chain_id: int) -> Tuple[NetworkDescriptor, str]:
        name = self._by_chain_id.get(chain_id)
        if name is None:
            raise ChainNotSupportedError(chain_id, operation="lookup_by_chain_id")
        return self._networks[name], name

    def name_for_chain_id(self, chain_id: int) -> str:
        return self.lookup_by_chain_id(chain_id)[1]

    def list_supported(self) -> Set[str]:
        return set(self._networks)

    def list_chain_ids(self) -> Set[int]:
        return set(self._by_chain_id)

    def is_network_supported(self, name: str) -> bool:
        return name in self._networks

    def is_chain_supported(self, chain_id: int) -> bool:
        return chain_id in self._by_chain_id

    def decimals_for(self, chain_id: int) -> int:
        """Token decimals for a chain, DEFAULT_DECIMALS if the chain is unknown."""
        name = self._by_chain_id.get(chain_id)
        if name is None:
            return DEFAULT_DECIMALS
        return self._networks[name].decimals

    def mainnets(self) -> Dict[str, NetworkDescriptor]:
        return {n: d for n, d in self._networks.items() if not d.is_testnet}

    def deployed(self) -> Dict[str, NetworkDescriptor]:
        return {n: d for n, d in self._networks.items() if d.is_deployed}

    def with_overrides(
        self, overrides: Mapping[str, NetworkDescriptor]
    ) -> "NetworkRegistry":
        """Return a new registry with networks added or replaced by name."""
        merged = dict(self._networks)
        merged.update(overrides)
        return NetworkRegistry(merged)


def _env_endpoints(name: str) -> Optional[List[str]]:
    """Endpoint list override, e.g. IDRX_BASEMAINNET_RPC_URL=url1,url2."""
    value = os.getenv(f"IDRX_{name.upper()}_RPC_URL")
    if not value:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def _network(
    name: str,
    chain_id: int,
    display_name: str,
    rpc_endpoints: List[str],
    contract_address: str,
    block_time: float,
    gas_limit: int,
    max_gas_price_wei: int,
    decimals: int,
    is_testnet: bool = False,
) -> NetworkDescriptor:
    """Build a NetworkDescriptor with environment variable overrides."""
    custom = _env_endpoints(name)
    if custom:
        logger.info(f"Using custom RPC endpoints for {name} from environment")

    return NetworkDescriptor(
        chain_id=chain_id,
        name=display_name,
        rpc_endpoints=tuple(custom or rpc_endpoints),
        contract_address=contract_address,
        block_time_seconds=block_time,
        gas_limit=gas_limit,
        max_gas_price_wei=max_gas_price_wei or None,
        decimals=decimals,
        is_testnet=is_testnet,
    )


def build_default_networks() -> Dict[str, NetworkDescriptor]:
    """The compiled-in table of IDRX deployments."""
    networks: Dict[str, NetworkDescriptor] = {}

    # Base Mainnet (primary network)
    networks[BASE_MAINNET] = _network(
        BASE_MAINNET,
        chain_id=BASE_CHAIN_ID,
        display_name="Base",
        rpc_endpoints=["https://mainnet.base.org", "https://base.llamarpc.com"],
        contract_address="0x18Bc5bcC660cf2B9cE3cd51a404aFe1a0cBD3C22",
        block_time=2.0,
        gas_limit=3_000_000,
        max_gas_price_wei=10_000_000_000,  # 10 gwei
        decimals=2,
    )

    networks[POLYGON_MAINNET] = _network(
        POLYGON_MAINNET,
        chain_id=POLYGON_CHAIN_ID,
        display_name="Polygon",
        rpc_endpoints=["https://polygon-rpc.com", "https://polygon.llamarpc.com"],
        contract_address="0x649a2DA7B28E0D54c13D5eFf95d3A660652742cC",
        block_time=2.0,
        gas_limit=3_000_000,
        max_gas_price_wei=50_000_000_000,  # 50 gwei
        decimals=0,
    )

    networks[BSC_MAINNET] = _network(
        BSC_MAINNET,
        chain_id=BSC_CHAIN_ID,
        display_name="BNB Smart Chain",
        rpc_endpoints=["https://bsc-dataseed.binance.org", "https://binance.llamarpc.com"],
        contract_address="0x649a2DA7B28E0D54c13D5eFf95d3A660652742cC",
        block_time=3.0,
        gas_limit=3_000_000,
        max_gas_price_wei=5_000_000_000,  # 5 gwei
        decimals=0,
    )

    networks[LISK_MAINNET] = _network(
        LISK_MAINNET,
        chain_id=LISK_CHAIN_ID,
        display_name="Lisk",
        rpc_endpoints=["https://rpc.api.lisk.com"],
        contract_address="0x18Bc5bcC660cf2B9cE3cd51a404aFe1a0cBD3C22",
        block_time=2.0,
        gas_limit=3_000_000,
        max_gas_price_wei=1_000_000_000,
        decimals=2,
    )

    networks[KAIA_MAINNET] = _network(
        KAIA_MAINNET,
        chain_id=KAIA_CHAIN_ID,
        display_name="Kaia",
        rpc_endpoints=["https://public-en.node.kaia.io"],
        contract_address="0x18Bc5bcC660cf2B9cE3cd51a404aFe1a0cBD3C22",
        block_time=2.0,
        gas_limit=3_000_000,
        max_gas_price_wei=1_000_000_000,
        decimals=2,
    )

    networks[WORLD_CHAIN_MAINNET] = _network(
        WORLD_CHAIN_MAINNET,
        chain_id=WORLD_CHAIN_CHAIN_ID,
        display_name="World Chain",
        rpc_endpoints=["https://worldchain-mainnet.g.alchemy.com/public"],
        contract_address="0x18Bc5bcC660cf2B9cE3cd51a404aFe1a0cBD3C22",
        block_time=2.0,
        gas_limit=3_000_000,
        max_gas_price_wei=1_000_000_000,
        decimals=2,
    )

    # Dionysus upgrade allows up to 30M gas units
    networks[ETHERLINK_MAINNET] = _network(
        ETHERLINK_MAINNET,
        chain_id=ETHERLINK_CHAIN_ID,
        display_name="Etherlink",
        rpc_endpoints=["https://node.mainnet.etherlink.com"],
        contract_address="0x18bc5bcc660cf2b9ce3cd51a404afe1a0cbd3c22",
        block_time=2.0,
        gas_limit=30_000_000,
        max_gas_price_wei=1_000_000_000,
        decimals=2,
    )

    networks[GNOSIS_MAINNET] = _network(
        GNOSIS_MAINNET,
        chain_id=GNOSIS_CHAIN_ID,
        display_name="Gnosis",
        rpc_endpoints=["https://rpc.gnosischain.com", "https://0xrpc.io/gno"],
        contract_address="0x18bc5bcc660cf2b9ce3cd51a404afe1a0cbd3c22",
        block_time=5.0,
        gas_limit=3_000_000,
        max_gas_price_wei=500_000_000,  # 0.5 gwei
        decimals=2,
    )

    return networks


# Global registry instance
_default_registry: Optional[NetworkRegistry] = None


def get_default_registry() -> NetworkRegistry:
    """Get the process-wide registry built from the compiled-in table."""
    global _default_registry
    if _default_registry is None:
        _default_registry = NetworkRegistry(build_default_networks())
    return _default_registry


def descriptor_with(descriptor: NetworkDescriptor, **changes) -> NetworkDescriptor:
    """Copy of a descriptor with some fields replaced."""
    if "rpc_endpoints" in changes:
        changes["rpc_endpoints"] = tuple(changes["rpc_endpoints"])
    return replace(descriptor, **changes)


class ClientSettings(BaseSettings):
    """Client configuration.

    Loaded from IDRX_PRIVATE_KEY, IDRX_TIMEOUT_SECONDS, ... or a .env file.
    """

    private_key: str = Field(default="", repr=False)
    timeout_seconds: float = 30.0
    dial_timeout_seconds: Optional[float] = None  # defaults to timeout_seconds
    probe_timeout_seconds: float = 5.0
    networks: str = ""  # comma-separated names, empty = every deployed network

    class Config:
        env_prefix = "IDRX_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        key = v.strip().removeprefix("0x")
        if not key:
            return ""
        if len(key) != 64:
            raise ValueError("private_key must be 32 bytes of hex")
        try:
            int(key, 16)
        except ValueError as e:
            raise ValueError("private_key must be hex encoded") from e
        return key

    @field_validator("timeout_seconds", "probe_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @property
    def network_names(self) -> List[str]:
        return [n.strip() for n in self.networks.split(",") if n.strip()]

    @property
    def effective_dial_timeout(self) -> float:
        return self.dial_timeout_seconds or self.timeout_seconds

    def select_registry(self, registry: NetworkRegistry) -> NetworkRegistry:
        """Restrict a registry to the configured network names, if any."""
        names = self.network_names
        if not names:
            return registry
        return NetworkRegistry(
            {name: registry.lookup_by_name(name) for name in names}
        )


__all__ = [
    "DEFAULT_DECIMALS",
    "NetworkDescriptor",
    "NetworkRegistry",
    "ClientSettings",
    "build_default_networks",
    "get_default_registry",
    "descriptor_with",
    "BASE_MAINNET",
    "POLYGON_MAINNET",
    "BSC_MAINNET",
    "LISK_MAINNET",
    "KAIA_MAINNET",
    "WORLD_CHAIN_MAINNET",
    "ETHERLINK_MAINNET",
    "GNOSIS_MAINNET",
    "BASE_CHAIN_ID",
    "POLYGON_CHAIN_ID",
    "BSC_CHAIN_ID",
    "LISK_CHAIN_ID",
    "KAIA_CHAIN_ID",
    "WORLD_CHAIN_CHAIN_ID",
    "ETHERLINK_CHAIN_ID",
    "GNOSIS_CHAIN_ID",
]
