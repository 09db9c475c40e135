"""
IDRX multi-chain client.

One object that owns the connection pool, the per-chain contract
bindings, the confirmation waiter and the bridge orchestrator:

    async with await IDRXChainClient.create(ClientSettings()) as client:
        balance = await client.balance_of(BASE_CHAIN_ID)
        pending = await client.transfer(BASE_CHAIN_ID, recipient, "150.25")
        await client.wait_for_transaction(BASE_CHAIN_ID, pending.tx_hash)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Union

from . import abi
from .amounts import AmountLike, TokenAmount
from .bridge import BridgeOperation, BridgeOrchestrator, BridgeRequest
from .config import ClientSettings, NetworkRegistry, get_default_registry
from .confirmation import ConfirmationResult, TransactionStatus, TransactionWaiter
from .contract import PendingTransaction, PlatformFeeInfo, TokenContract, TokenInfo
from .exceptions import (
    ChainNotConnectedError,
    IDRXChainError,
    InvalidAmountFormatError,
    PoolClosedError,
)
from .logging_utils import ChainLogger, OperationType, get_chain_logger
from .pool import ConnectionPool, Connector
from .rpc_client import RPCConnection, mask_url
from .signer import TransactionSigner, address_from_key

logger = logging.getLogger(__name__)


class IDRXChainClient:
    """Client for the IDRX token on every configured chain."""

    def __init__(
        self,
        settings: ClientSettings,
        registry: NetworkRegistry,
        pool: ConnectionPool,
        contracts: Dict[int, TokenContract],
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._settings = settings
        self._registry = registry
        self._pool = pool
        self._contracts = contracts
        self._chain_logger = chain_logger or get_chain_logger()
        self._address = address_from_key(settings.private_key)
        self._waiter = TransactionWaiter(pool, registry, self._chain_logger)
        self._bridge = BridgeOrchestrator(
            registry,
            contract_for=self.get_contract,
            signer_for=self.create_signer,
            waiter=self._waiter,
            chain_logger=self._chain_logger,
        )

    @classmethod
    async def create(
        cls,
        settings: Optional[ClientSettings] = None,
        registry: Optional[NetworkRegistry] = None,
        connector: Optional[Connector] = None,
        chain_logger: Optional[ChainLogger] = None,
    ) -> "IDRXChainClient":
        """
        Connect to every deployed network and bind the contracts.

        Raises:
            NoAvailableConnectionError: No endpoint of some deployed network
                answered; nothing is left open
        """
        settings = settings or ClientSettings()
        registry = settings.select_registry(registry or get_default_registry())
        pool = ConnectionPool(
            registry,
            dial_timeout_seconds=settings.effective_dial_timeout,
            probe_timeout_seconds=settings.probe_timeout_seconds,
            connector=connector,
            chain_logger=chain_logger,
        )
        await pool.initialize()

        contracts: Dict[int, TokenContract] = {}
        for chain_id in pool.connected_chain_ids():
            descriptor, _ = registry.lookup_by_chain_id(chain_id)
            contracts[chain_id] = TokenContract(descriptor, pool, chain_logger)

        logger.info(
            f"IDRX client ready on {len(contracts)} chains: "
            f"{', '.join(str(c) for c in sorted(contracts))}"
        )
        return cls(settings, registry, pool, contracts, chain_logger)

    # ============ Accessors ============

    @property
    def address(self) -> Optional[str]:
        """Address of the configured signing key, None without a key."""
        return self._address

    @property
    def registry(self) -> NetworkRegistry:
        return self._registry

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def waiter(self) -> TransactionWaiter:
        return self._waiter

    @property
    def bridge(self) -> BridgeOrchestrator:
        return self._bridge

    async def get_connection(self, chain_id: int) -> RPCConnection:
        """
        A live connection for chain_id, after failover if needed.

        The handle is not leased: close() may close it at any time.
        """
        return await self._pool.acquire(chain_id)

    def get_contract(self, chain_id: int) -> TokenContract:
        """
        Raises:
            ChainNotSupportedError: chain_id is not registered
            ChainNotConnectedError: chain_id has no binding (or client closed)
        """
        if self._pool.closed:
            raise PoolClosedError(chain_id, operation="get_contract")
        self._registry.lookup_by_chain_id(chain_id)
        contract = self._contracts.get(chain_id)
        if contract is None:
            raise ChainNotConnectedError(chain_id, operation="get_contract")
        return contract

    def get_contract_by_network(self, network: str) -> TokenContract:
        return self.get_contract(self._registry.lookup_by_name(network).chain_id)

    def _amount(self, chain_id: int, amount: AmountLike) -> int:
        """Base units for amount on chain_id; refuses to drop fractional digits."""
        decimals = self.get_contract(chain_id).descriptor.decimals
        value = amount if isinstance(amount, TokenAmount) else TokenAmount(amount, decimals)
        if not value.is_representable(decimals):
            raise InvalidAmountFormatError(
                amount, f"more than {decimals} decimal places on chain {chain_id}"
            )
        return value.with_decimals(decimals).to_base_units()

    def _require_address(self, address: Optional[str], operation: str) -> str:
        address = address or self._address
        if address is None:
            raise IDRXChainError("no address given and no private key configured", operation=operation)
        return address

    # ============ Reads ============

    async def balance_of(self, chain_id: int, address: Optional[str] = None) -> TokenAmount:
        """Balance of address (default: own address) as a TokenAmount."""
        contract = self.get_contract(chain_id)
        units = await contract.balance_of(self._require_address(address, "balance_of"))
        return TokenAmount.from_base_units(units, contract.descriptor.decimals)

    async def total_supply(self, chain_id: int) -> TokenAmount:
        contract = self.get_contract(chain_id)
        units = await contract.total_supply()
        return TokenAmount.from_base_units(units, contract.descriptor.decimals)

    async def get_bridge_nonce(self, chain_id: int) -> int:
        return await self.get_contract(chain_id).bridge_nonce_counter()

    async def is_nonce_used(self, chain_id: int, from_chain_id: int, nonce: int) -> bool:
        """Whether chain_id already minted for a burn on from_chain_id with nonce."""
        return await self.get_contract(chain_id).is_nonce_used(from_chain_id, nonce)

    async def get_platform_fee_info(self, chain_id: int) -> PlatformFeeInfo:
        return await self.get_contract(chain_id).platform_fee_info()

    async def is_blacklisted(self, chain_id: int, address: str) -> bool:
        return await self.get_contract(chain_id).blacklist_status(address)

    async def get_token_info(self, chain_id: int) -> TokenInfo:
        return await self.get_contract(chain_id).token_info()

    async def estimate_gas(
        self,
        chain_id: int,
        to: str,
        data: str,
        from_address: Optional[str] = None,
        value: int = 0,
    ) -> int:
        """eth_estimateGas for arbitrary calldata on chain_id."""
        tx: Dict[str, Any] = {
            "to": abi.normalize_address(to),
            "data": data,
            "value": hex(value),
        }
        sender = from_address or self._address
        if sender:
            tx["from"] = sender
        async with self._chain_logger.operation_context(OperationType.GAS_ESTIMATION, chain_id):
            async with self._pool.lease(chain_id) as connection:
                return await connection.estimate_gas(tx)

    # ============ Writes ============

    async def create_signer(self, chain_id: int) -> TransactionSigner:
        """
        Signer for chain_id, checked against a live node.

        Raises:
            ChainIDMismatchError: The node serves another chain
        """
        if not self._settings.private_key:
            raise IDRXChainError(
                "no private key configured", chain=chain_id, operation="create_signer"
            )
        async with self._pool.lease(chain_id) as connection:
            return await TransactionSigner.for_chain(
                self._settings.private_key, connection, chain_id
            )

    async def transfer(self, chain_id: int, to: str, amount: AmountLike) -> PendingTransaction:
        base_units = self._amount(chain_id, amount)
        signer = await self.create_signer(chain_id)
        return await self.get_contract(chain_id).transfer(signer, to, base_units)

    async def mint(self, chain_id: int, to: str, amount: AmountLike) -> PendingTransaction:
        base_units = self._amount(chain_id, amount)
        signer = await self.create_signer(chain_id)
        return await self.get_contract(chain_id).mint(signer, to, base_units)

    async def burn(self, chain_id: int, amount: AmountLike) -> PendingTransaction:
        base_units = self._amount(chain_id, amount)
        signer = await self.create_signer(chain_id)
        return await self.get_contract(chain_id).burn(signer, base_units)

    async def burn_with_account_number(
        self, chain_id: int, amount: AmountLike, account_number: str
    ) -> PendingTransaction:
        """Burn for fiat redemption to a bank account."""
        base_units = self._amount(chain_id, amount)
        signer = await self.create_signer(chain_id)
        return await self.get_contract(chain_id).burn_with_reference(
            signer, base_units, account_number
        )

    async def burn_bridge(
        self, chain_id: int, amount: AmountLike, to_chain_id: int
    ) -> PendingTransaction:
        """Only the burn half of a bridge; see complete_bridge() for both halves."""
        self._registry.lookup_by_chain_id(to_chain_id)
        base_units = self._amount(chain_id, amount)
        signer = await self.create_signer(chain_id)
        return await self.get_contract(chain_id).burn_for_bridge(signer, base_units, to_chain_id)

    async def mint_bridge(
        self,
        chain_id: int,
        to: str,
        amount: AmountLike,
        from_chain_id: int,
        nonce: int,
    ) -> PendingTransaction:
        base_units = self._amount(chain_id, amount)
        signer = await self.create_signer(chain_id)
        return await self.get_contract(chain_id).mint_for_bridge(
            signer, to, base_units, from_chain_id, nonce
        )

    # ============ Confirmation ============

    async def wait_for_transaction(
        self,
        chain_id: int,
        tx_hash: str,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ConfirmationResult:
        return await self._waiter.wait(
            chain_id, tx_hash, timeout=timeout, cancel_event=cancel_event
        )

    async def get_transaction_status(self, chain_id: int, tx_hash: str) -> TransactionStatus:
        return await self._waiter.get_transaction_status(chain_id, tx_hash)

    # ============ Bridge ============

    async def complete_bridge(
        self,
        request: BridgeRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BridgeOperation:
        """Burn on the source chain and mint on the destination chain."""
        return await self._bridge.bridge(request, cancel_event=cancel_event)

    async def resume_bridge(
        self,
        target: Union[BridgeOperation, BridgeRequest],
        nonce: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BridgeOperation:
        """Finish the mint of a bridge whose burn is already confirmed."""
        return await self._bridge.resume_mint(target, nonce, cancel_event=cancel_event)

    # ============ Info & lifecycle ============

    def network_info(self, chain_id: int) -> Dict[str, Any]:
        descriptor, name = self._registry.lookup_by_chain_id(chain_id)
        return {
            "network": name,
            "name": descriptor.name,
            "chain_id": descriptor.chain_id,
            "contract_address": descriptor.contract_address,
            "decimals": descriptor.decimals,
            "block_time_seconds": descriptor.block_time_seconds,
            "gas_limit": descriptor.gas_limit,
            "max_gas_price_wei": descriptor.max_gas_price_wei,
            "is_testnet": descriptor.is_testnet,
            "connected": chain_id in self._contracts and not self._pool.closed,
            "endpoints": [mask_url(url) for url in descriptor.rpc_endpoints],
            "endpoint_health": self._pool.endpoint_stats().get(chain_id, []),
        }

    async def close(self) -> None:
        """Close every connection. Safe to call more than once."""
        await self._pool.close_all()
        self._contracts.clear()

    async def __aenter__(self) -> "IDRXChainClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ["IDRXChainClient"]
