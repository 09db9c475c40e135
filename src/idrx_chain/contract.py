"""
IDRX token contract binding for one chain.

Reads go through eth_call. Writes are signed locally, pre-flighted with
eth_estimateGas and broadcast; they return a PendingTransaction as soon as
the node accepts the raw transaction and never wait for inclusion (see
confirmation.TransactionWaiter for that).
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional, Union

from eth_utils import to_checksum_address

from . import abi
from .config import NetworkDescriptor
from .exceptions import (
    ChainIDMismatchError,
    RPCError,
    TransactionRevertedError,
    UnauthorizedError,
)
from .logging_utils import ChainLogger, OperationType, get_chain_logger
from .pool import ConnectionPool
from .rpc_client import EXECUTION_REVERTED_CODE, RPCConnection
from .signer import TransactionRequest, TransactionSigner

logger = logging.getLogger(__name__)


@dataclass
class PendingTransaction:
    """A broadcast transaction that has not been waited on yet."""
    tx_hash: str
    chain_id: int
    operation: str
    from_address: str
    nonce: int
    gas_limit: int
    gas_price: int
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "chain_id": self.chain_id,
            "operation": self.operation,
            "from_address": self.from_address,
            "nonce": self.nonce,
            "gas_limit": self.gas_limit,
            "gas_price": self.gas_price,
            "submitted_at": self.submitted_at.isoformat(),
        }


@dataclass(frozen=True)
class PlatformFeeInfo:
    """Fee recipient and burn/mint fees in basis points."""
    recipient: str
    burn_fee_bps: int
    mint_fee_bps: int


@dataclass(frozen=True)
class TokenInfo:
    name: str
    symbol: str
    decimals: int


def is_revert(error: RPCError) -> bool:
    """True if an RPC error is the node reporting reverted execution."""
    if error.code == EXECUTION_REVERTED_CODE:
        return True
    return "revert" in error.message.lower()


def revert_error(
    error: RPCError,
    chain_id: int,
    operation: str,
    tx_hash: Optional[str] = None,
) -> TransactionRevertedError:
    """Map a reverted-execution RPC error to TransactionRevertedError/UnauthorizedError."""
    reason = abi.decode_revert_data(error.data) or error.message
    cls = (
        UnauthorizedError
        if abi.is_unauthorized_reason(reason) or abi.is_unauthorized_reason(error.message)
        else TransactionRevertedError
    )
    return cls(
        f"{operation} reverted on chain {chain_id}: {reason}",
        chain=chain_id,
        operation=operation,
        tx_hash=tx_hash,
        reason=reason,
    )


class TokenContract:
    """
    IDRX contract on one chain.

    Bound either to a single connection or to a ConnectionPool. With a pool,
    every read and every submission runs under its own pool lease, so the
    connection it uses cannot be closed underneath it.
    """

    def __init__(
        self,
        descriptor: NetworkDescriptor,
        connection: Union[RPCConnection, ConnectionPool],
        chain_logger: Optional[ChainLogger] = None,
    ):
        if not descriptor.is_deployed:
            raise ValueError(f"IDRX is not deployed on {descriptor.name}")
        self._descriptor = descriptor
        self._source = connection
        self._address = to_checksum_address(descriptor.contract_address)
        self._chain_logger = chain_logger or get_chain_logger()

    @property
    def chain_id(self) -> int:
        return self._descriptor.chain_id

    @property
    def address(self) -> str:
        return self._address

    @property
    def descriptor(self) -> NetworkDescriptor:
        return self._descriptor

    def __repr__(self) -> str:
        return f"TokenContract({self._descriptor.name}, {self._address})"

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[RPCConnection]:
        if isinstance(self._source, ConnectionPool):
            async with self._source.lease(self.chain_id) as connection:
                yield connection
        else:
            yield self._source

    # ============ Reads ============

    async def _call(self, function: abi.ContractFunction, *args: Any) -> tuple:
        data = function.encode_call(*args)
        try:
            async with self._connection() as connection:
                result = await connection.eth_call({"to": self._address, "data": data})
        except RPCError as e:
            if is_revert(e):
                raise revert_error(e, self.chain_id, function.name) from e
            raise
        return function.decode_result(result or "0x")

    async def balance_of(self, address: str) -> int:
        """Balance of address in base units."""
        (balance,) = await self._call(abi.BALANCE_OF, abi.normalize_address(address))
        return balance

    async def total_supply(self) -> int:
        (supply,) = await self._call(abi.TOTAL_SUPPLY)
        return supply

    async def bridge_nonce_counter(self) -> int:
        """Current value of the contract's outgoing bridge nonce counter."""
        (nonce,) = await self._call(abi.BRIDGE_NONCE)
        return nonce

    async def is_nonce_used(self, source_chain_id: int, nonce: int) -> bool:
        """Whether this chain already minted for (source chain, nonce)."""
        (used,) = await self._call(abi.FROM_CHAIN_NONCE_USED, source_chain_id, nonce)
        return used

    async def blacklist_status(self, address: str) -> bool:
        (blacklisted,) = await self._call(
            abi.GET_BLACKLIST_STATUS, abi.normalize_address(address)
        )
        return blacklisted

    async def platform_fee_info(self) -> PlatformFeeInfo:
        recipient, burn_fee, mint_fee = await self._call(abi.GET_PLATFORM_FEE_INFO)
        return PlatformFeeInfo(
            recipient=recipient, burn_fee_bps=burn_fee, mint_fee_bps=mint_fee
        )

    async def token_info(self) -> TokenInfo:
        (name,) = await self._call(abi.NAME)
        (symbol,) = await self._call(abi.SYMBOL)
        (decimals,) = await self._call(abi.DECIMALS)
        return TokenInfo(name=name, symbol=symbol, decimals=decimals)

    # ============ Writes ============

    async def estimate_gas(
        self,
        from_address: str,
        function: abi.ContractFunction,
        *args: Any,
    ) -> int:
        """
        Pre-flight a call with eth_estimateGas, capped at the chain's gas limit.

        Raises:
            TransactionRevertedError: Contract would reject the call
            UnauthorizedError: Rejection is a missing role or ownership
        """
        async with self._connection() as connection:
            return await self._estimate(connection, from_address, function, *args)

    async def _estimate(
        self,
        connection: RPCConnection,
        from_address: str,
        function: abi.ContractFunction,
        *args: Any,
    ) -> int:
        tx = {
            "from": from_address,
            "to": self._address,
            "data": function.encode_call(*args),
            "gas": hex(self._descriptor.gas_limit),
        }
        try:
            return await connection.estimate_gas(tx)
        except RPCError as e:
            if is_revert(e):
                raise revert_error(e, self.chain_id, function.name) from e
            raise

    async def _gas_price(self, connection: RPCConnection) -> int:
        if self._descriptor.max_gas_price_wei:
            return self._descriptor.max_gas_price_wei
        return await connection.get_gas_price()

    async def _submit(
        self,
        signer: TransactionSigner,
        function: abi.ContractFunction,
        operation: str,
        *args: Any,
    ) -> PendingTransaction:
        if signer.chain_id != self.chain_id:
            raise ChainIDMismatchError(
                expected=self.chain_id, received=signer.chain_id, operation=operation
            )

        async with self._chain_logger.operation_context(
            OperationType.TRANSACTION_SUBMIT, self.chain_id, operation=operation
        ) as ctx:
            # estimate, nonce and broadcast share one endpoint
            async with self._connection() as connection:
                estimated = await self._estimate(connection, signer.address, function, *args)
                gas_price = await self._gas_price(connection)
                nonce = await connection.get_nonce(signer.address, "pending")

                request = TransactionRequest(
                    to_address=self._address,
                    data=function.encode_call(*args),
                    gas_limit=self._descriptor.gas_limit,
                    gas_price=gas_price,
                    nonce=nonce,
                    chain_id=self.chain_id,
                )
                signed = signer.sign(request)

                try:
                    tx_hash = await connection.send_raw_transaction(signed.raw_transaction)
                except RPCError as e:
                    if is_revert(e):
                        raise revert_error(e, self.chain_id, operation, signed.tx_hash) from e
                    raise

            ctx.metadata["estimated_gas"] = estimated

        pending = PendingTransaction(
            tx_hash=tx_hash or signed.tx_hash,
            chain_id=self.chain_id,
            operation=operation,
            from_address=signer.address,
            nonce=nonce,
            gas_limit=request.gas_limit,
            gas_price=gas_price,
        )
        logger.debug(f"{operation} estimated at {estimated} gas on chain {self.chain_id}")
        self._chain_logger.log_transaction_submitted(
            pending.tx_hash,
            self.chain_id,
            operation,
            from_address=signer.address,
            to_address=self._address,
            nonce=nonce,
            gas_limit=request.gas_limit,
            gas_price_wei=gas_price,
        )
        return pending

    async def transfer(
        self, signer: TransactionSigner, to: str, base_units: int
    ) -> PendingTransaction:
        return await self._submit(
            signer, abi.TRANSFER, "transfer", abi.normalize_address(to), base_units
        )

    async def mint(
        self, signer: TransactionSigner, to: str, base_units: int
    ) -> PendingTransaction:
        """Mint to an address. The signer needs the minter role."""
        return await self._submit(
            signer, abi.MINT, "mint", abi.normalize_address(to), base_units
        )

    async def burn(self, signer: TransactionSigner, base_units: int) -> PendingTransaction:
        return await self._submit(signer, abi.BURN, "burn", base_units)

    async def burn_with_reference(
        self, signer: TransactionSigner, base_units: int, reference: str
    ) -> PendingTransaction:
        """Burn tagged with an off-chain reference such as a bank account number."""
        return await self._submit(
            signer, abi.BURN_WITH_ACCOUNT_NUMBER, "burn_with_reference", base_units, reference
        )

    async def burn_for_bridge(
        self, signer: TransactionSigner, base_units: int, destination_chain_id: int
    ) -> PendingTransaction:
        return await self._submit(
            signer, abi.BURN_BRIDGE, "burn_for_bridge", base_units, destination_chain_id
        )

    async def mint_for_bridge(
        self,
        signer: TransactionSigner,
        to: str,
        base_units: int,
        source_chain_id: int,
        nonce: int,
    ) -> PendingTransaction:
        return await self._submit(
            signer,
            abi.MINT_BRIDGE,
            "mint_for_bridge",
            abi.normalize_address(to),
            base_units,
            source_chain_id,
            nonce,
        )


__all__ = [
    "PendingTransaction",
    "PlatformFeeInfo",
    "TokenInfo",
    "TokenContract",
    "is_revert",
    "revert_error",
]
