"""IDRX burn/mint bridge between two chains.

Flow:
1. Validate chains, amount precision and destination address
2. burnBridge on the source chain and wait for the receipt
3. Read the bridge nonce from the BurnBridge event in that receipt
4. Check the nonce is unused on the destination, then mintBridge there
5. Wait for the mint receipt

Once step 2 is confirmed the tokens are gone from the source chain. Every
failure from then on raises PartialBridgeFailure with the operation record,
which carries the nonce, so the mint can be resumed with resume_mint()
without burning again.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from . import abi
from .amounts import TokenAmount
from .config import NetworkRegistry
from .confirmation import TransactionReceipt, TransactionWaiter
from .contract import TokenContract
from .exceptions import (
    BridgeBurnError,
    BridgeBurnRevertedError,
    BridgeValidationError,
    IDRXChainError,
    NonceAlreadyUsedError,
    NonceExtractionError,
    PartialBridgeFailure,
)
from .logging_utils import ChainLogger, OperationType, get_chain_logger
from .signer import TransactionSigner

logger = logging.getLogger(__name__)

ContractLookup = Callable[[int], TokenContract]
SignerFactory = Callable[[int], Awaitable[TransactionSigner]]


class BridgeStatus(str, Enum):
    """Status of a bridge operation."""
    INITIATED = "initiated"
    BURNING = "burning"
    BURN_CONFIRMED = "burn_confirmed"
    NONCE_EXTRACTED = "nonce_extracted"
    MINTING = "minting"
    COMPLETED = "completed"
    BURN_FAILED = "burn_failed"
    BURN_REVERTED = "burn_reverted"
    NONCE_EXTRACTION_FAILED = "nonce_extraction_failed"
    MINT_FAILED = "mint_failed"
    MINT_REVERTED = "mint_reverted"
    # destination had already minted for the nonce; nothing left to do
    ALREADY_MINTED = "already_minted"


# Burn confirmed, mint not: the only states resume_mint() accepts
RESUMABLE_STATUSES = frozenset({
    BridgeStatus.NONCE_EXTRACTED,
    BridgeStatus.MINTING,
    BridgeStatus.MINT_FAILED,
    BridgeStatus.MINT_REVERTED,
})


@dataclass(frozen=True)
class BridgeRequest:
    """Move amount IDRX from source_chain_id to destination_address on destination_chain_id."""
    amount: Union[Decimal, str, int, TokenAmount]
    source_chain_id: int
    destination_chain_id: int
    destination_address: str


@dataclass
class BridgeOperation:
    """Tracks one bridge operation through its states."""
    amount: Decimal
    source_chain_id: int
    destination_chain_id: int
    destination_address: str
    operation_id: str = field(default_factory=lambda: f"bridge_{uuid.uuid4().hex[:16]}")
    burn_tx_hash: Optional[str] = None
    bridge_nonce: Optional[int] = None
    mint_tx_hash: Optional[str] = None
    status: BridgeStatus = BridgeStatus.INITIATED
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_completed(self) -> bool:
        return self.status == BridgeStatus.COMPLETED

    @property
    def needs_mint(self) -> bool:
        """Tokens are burned on the source chain but not yet minted."""
        return self.status in RESUMABLE_STATUSES and self.bridge_nonce is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "amount": str(self.amount),
            "source_chain_id": self.source_chain_id,
            "destination_chain_id": self.destination_chain_id,
            "destination_address": self.destination_address,
            "burn_tx_hash": self.burn_tx_hash,
            "bridge_nonce": self.bridge_nonce,
            "mint_tx_hash": self.mint_tx_hash,
            "status": self.status.value,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class BridgeOrchestrator:
    """
    Runs burn-on-source / mint-on-destination bridge operations.

    Holds no lock: operations on the same or different chain pairs run
    concurrently. Destination replay protection is the contract's nonce
    bookkeeping, checked before every mint.
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        contract_for: ContractLookup,
        signer_for: SignerFactory,
        waiter: TransactionWaiter,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._registry = registry
        self._contract_for = contract_for
        self._signer_for = signer_for
        self._waiter = waiter
        self._chain_logger = chain_logger or get_chain_logger()

    def _transition(
        self,
        operation: BridgeOperation,
        status: BridgeStatus,
        error: Optional[str] = None,
    ) -> None:
        previous = operation.status
        operation.status = status
        operation.updated_at = datetime.now(timezone.utc)
        if error is not None:
            operation.error = error
        self._chain_logger.log_bridge_transition(
            operation.operation_id,
            previous.value,
            status.value,
            details={
                "source_chain_id": operation.source_chain_id,
                "destination_chain_id": operation.destination_chain_id,
                "burn_tx_hash": operation.burn_tx_hash,
                "bridge_nonce": operation.bridge_nonce,
                "mint_tx_hash": operation.mint_tx_hash,
                "error": error,
            },
        )

    # ============ Validation ============

    def validate(self, request: BridgeRequest) -> Tuple[TokenContract, TokenContract, Decimal]:
        """
        Check a request before anything is submitted.

        Returns:
            (source contract, destination contract, amount)

        Raises:
            BridgeValidationError: If the request cannot be bridged as-is
        """
        source_id = request.source_chain_id
        destination_id = request.destination_chain_id

        for chain_id in (source_id, destination_id):
            if not self._registry.is_chain_supported(chain_id):
                raise BridgeValidationError(
                    f"chain ID {chain_id} is not supported", chain=chain_id, operation="validate"
                )
        if source_id == destination_id:
            raise BridgeValidationError(
                "source and destination chains must be different",
                chain=source_id,
                operation="validate",
            )

        try:
            source = self._contract_for(source_id)
            destination = self._contract_for(destination_id)
        except IDRXChainError as e:
            raise BridgeValidationError(str(e), chain=e.chain, operation="validate") from e

        try:
            raw = request.amount.amount if isinstance(request.amount, TokenAmount) else request.amount
            amount = TokenAmount(raw, source.descriptor.decimals)
        except IDRXChainError as e:
            raise BridgeValidationError(str(e), operation="validate") from e

        if amount.is_zero() or amount.amount < 0:
            raise BridgeValidationError(
                f"amount must be positive, got {amount.amount}", operation="validate"
            )
        for contract in (source, destination):
            decimals = contract.descriptor.decimals
            if not amount.is_representable(decimals):
                raise BridgeValidationError(
                    f"amount {amount.amount} has more than {decimals} decimal places "
                    f"allowed on {contract.descriptor.name}",
                    chain=contract.chain_id,
                    operation="validate",
                    details={"decimals": decimals},
                )
            try:
                amount.with_decimals(decimals).to_base_units()
            except IDRXChainError as e:
                raise BridgeValidationError(
                    str(e), chain=contract.chain_id, operation="validate"
                ) from e

        try:
            abi.normalize_address(request.destination_address)
        except ValueError as e:
            raise BridgeValidationError(str(e), operation="validate") from e

        return source, destination, amount.amount

    # ============ Bridge ============

    async def bridge(
        self,
        request: BridgeRequest,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> BridgeOperation:
        """
        Burn on the source chain and mint on the destination chain.

        Returns:
            The operation in status COMPLETED

        Raises:
            BridgeValidationError: Request rejected, nothing submitted
            BridgeBurnError: Burn not confirmed, no value moved
            BridgeBurnRevertedError: Burn reverted on-chain, no value moved
            NonceExtractionError: Burn confirmed but its nonce is unreadable
            NonceAlreadyUsedError: Destination already minted for this nonce
            PartialBridgeFailure: Burn confirmed, mint not; resume with the nonce
        """
        source, destination, amount = self.validate(request)
        operation = BridgeOperation(
            amount=amount,
            source_chain_id=request.source_chain_id,
            destination_chain_id=request.destination_chain_id,
            destination_address=abi.normalize_address(request.destination_address),
        )
        logger.info(
            f"Bridge {operation.operation_id}: {amount} IDRX "
            f"{source.descriptor.name} -> {destination.descriptor.name}"
        )

        async with self._chain_logger.operation_context(
            OperationType.BRIDGE,
            request.source_chain_id,
            operation_id=operation.operation_id,
            destination_chain_id=request.destination_chain_id,
        ) as ctx:
            receipt = await self._burn(operation, source, cancel_event, timeout, poll_interval)
            self._extract_nonce(operation, source, receipt)
            ctx.metadata["bridge_nonce"] = operation.bridge_nonce
            await self._mint(operation, destination, cancel_event, timeout, poll_interval)

        return operation

    async def _burn(
        self,
        operation: BridgeOperation,
        source: TokenContract,
        cancel_event: Optional[asyncio.Event],
        timeout: Optional[float],
        poll_interval: Optional[float],
    ) -> TransactionReceipt:
        base_units = TokenAmount(operation.amount, source.descriptor.decimals).to_base_units()
        self._transition(operation, BridgeStatus.BURNING)

        try:
            signer = await self._signer_for(source.chain_id)
            pending = await source.burn_for_bridge(
                signer, base_units, operation.destination_chain_id
            )
        except Exception as e:
            self._transition(operation, BridgeStatus.BURN_FAILED, str(e))
            raise BridgeBurnError(
                f"burn submission failed: {e}",
                operation_record=operation,
                chain=source.chain_id,
                operation="burn_for_bridge",
            ) from e
        operation.burn_tx_hash = pending.tx_hash

        try:
            result = await self._waiter.wait(
                source.chain_id,
                pending.tx_hash,
                timeout=timeout,
                poll_interval=poll_interval,
                cancel_event=cancel_event,
            )
        except IDRXChainError as e:
            self._transition(operation, BridgeStatus.BURN_FAILED, str(e))
            raise BridgeBurnError(
                f"burn {pending.tx_hash} not confirmed: {e}",
                operation_record=operation,
                chain=source.chain_id,
                operation="burn_for_bridge",
            ) from e

        if not result.confirmed:
            self._transition(operation, BridgeStatus.BURN_REVERTED, "burn transaction reverted")
            raise BridgeBurnRevertedError(
                f"burn {pending.tx_hash} reverted on chain {source.chain_id}",
                operation_record=operation,
                chain=source.chain_id,
                operation="burn_for_bridge",
            )

        self._transition(operation, BridgeStatus.BURN_CONFIRMED)
        return result.receipt

    def _extract_nonce(
        self,
        operation: BridgeOperation,
        source: TokenContract,
        receipt: TransactionReceipt,
    ) -> int:
        """Read the bridge nonce from the single BurnBridge log of the source contract."""
        logs = abi.find_events(receipt.logs, abi.BURN_BRIDGE_EVENT, source.address)
        if len(logs) != 1:
            raise self._nonce_failure(
                operation, source, f"expected one BurnBridge event, found {len(logs)}"
            )

        try:
            event = abi.decode_event(logs[0], abi.BURN_BRIDGE_EVENT)
        except Exception as e:
            raise self._nonce_failure(
                operation, source, f"undecodable BurnBridge event: {e}"
            ) from e

        if event["toChainId"] != operation.destination_chain_id:
            raise self._nonce_failure(
                operation,
                source,
                f"BurnBridge event targets chain {event['toChainId']}, "
                f"expected {operation.destination_chain_id}",
            )

        operation.bridge_nonce = event["bridgeNonce"]
        self._transition(operation, BridgeStatus.NONCE_EXTRACTED)
        return operation.bridge_nonce

    def _nonce_failure(
        self,
        operation: BridgeOperation,
        source: TokenContract,
        message: str,
    ) -> NonceExtractionError:
        self._transition(operation, BridgeStatus.NONCE_EXTRACTION_FAILED, message)
        return NonceExtractionError(
            f"burn {operation.burn_tx_hash} confirmed but {message}",
            operation_record=operation,
            chain=source.chain_id,
            operation="extract_nonce",
        )

    async def _mint(
        self,
        operation: BridgeOperation,
        destination: TokenContract,
        cancel_event: Optional[asyncio.Event],
        timeout: Optional[float],
        poll_interval: Optional[float],
    ) -> BridgeOperation:
        nonce = operation.bridge_nonce
        source_id = operation.source_chain_id
        base_units = TokenAmount(operation.amount, destination.descriptor.decimals).to_base_units()

        def partial(status: BridgeStatus, message: str) -> PartialBridgeFailure:
            self._transition(operation, status, message)
            return PartialBridgeFailure(
                f"bridge {operation.operation_id}: tokens burned on chain {source_id} "
                f"(nonce {nonce}) but {message}",
                operation_record=operation,
                chain=destination.chain_id,
                operation="mint_for_bridge",
            )

        try:
            used = await destination.is_nonce_used(source_id, nonce)
        except Exception as e:
            raise partial(BridgeStatus.MINT_FAILED, f"nonce check failed: {e}") from e
        if used:
            self._transition(operation, BridgeStatus.ALREADY_MINTED, "nonce already used")
            raise NonceAlreadyUsedError(
                source_id, nonce, operation_record=operation, chain=destination.chain_id
            )

        self._transition(operation, BridgeStatus.MINTING)
        try:
            signer = await self._signer_for(destination.chain_id)
            pending = await destination.mint_for_bridge(
                signer, operation.destination_address, base_units, source_id, nonce
            )
        except Exception as e:
            raise partial(BridgeStatus.MINT_FAILED, f"mint submission failed: {e}") from e
        operation.mint_tx_hash = pending.tx_hash

        try:
            result = await self._waiter.wait(
                destination.chain_id,
                pending.tx_hash,
                timeout=timeout,
                poll_interval=poll_interval,
                cancel_event=cancel_event,
            )
        except IDRXChainError as e:
            raise partial(
                BridgeStatus.MINT_FAILED, f"mint {pending.tx_hash} not confirmed: {e}"
            ) from e

        if not result.confirmed:
            try:
                used = await destination.is_nonce_used(source_id, nonce)
            except Exception as e:
                raise partial(
                    BridgeStatus.MINT_REVERTED, f"mint {pending.tx_hash} reverted"
                ) from e
            if used:
                self._transition(
                    operation, BridgeStatus.ALREADY_MINTED, "nonce already used"
                )
                raise NonceAlreadyUsedError(
                    source_id, nonce, operation_record=operation, chain=destination.chain_id
                )
            raise partial(BridgeStatus.MINT_REVERTED, f"mint {pending.tx_hash} reverted")

        self._transition(operation, BridgeStatus.COMPLETED)
        logger.info(
            f"Bridge {operation.operation_id} completed: burn={operation.burn_tx_hash} "
            f"mint={operation.mint_tx_hash} nonce={nonce}"
        )
        return operation

    # ============ Recovery ============

    async def resume_mint(
        self,
        target: Union[BridgeOperation, BridgeRequest],
        nonce: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> BridgeOperation:
        """
        Mint on the destination for a burn that is already confirmed.

        Args:
            target: The operation from a PartialBridgeFailure, or a request
                describing the original burn
            nonce: Bridge nonce of the burn; defaults to the operation's

        Raises:
            BridgeValidationError: No nonce, or the operation is not resumable
            NonceAlreadyUsedError: Destination already minted for this nonce
            PartialBridgeFailure: Mint failed again
        """
        if isinstance(target, BridgeOperation):
            operation = target
            if operation.status not in RESUMABLE_STATUSES:
                raise BridgeValidationError(
                    f"operation in status {operation.status.value} cannot resume minting",
                    operation_record=operation,
                    operation="resume_mint",
                )
            if nonce is not None:
                operation.bridge_nonce = nonce
            request = BridgeRequest(
                amount=operation.amount,
                source_chain_id=operation.source_chain_id,
                destination_chain_id=operation.destination_chain_id,
                destination_address=operation.destination_address,
            )
            _, destination, _ = self.validate(request)
        else:
            _, destination, amount = self.validate(target)
            operation = BridgeOperation(
                amount=amount,
                source_chain_id=target.source_chain_id,
                destination_chain_id=target.destination_chain_id,
                destination_address=abi.normalize_address(target.destination_address),
                bridge_nonce=nonce,
                status=BridgeStatus.NONCE_EXTRACTED,
            )

        if operation.bridge_nonce is None:
            raise BridgeValidationError(
                "a bridge nonce is required to resume minting",
                operation_record=operation,
                operation="resume_mint",
            )

        logger.info(
            f"Resuming mint for bridge {operation.operation_id} "
            f"(nonce {operation.bridge_nonce}, chain {operation.source_chain_id} -> "
            f"{operation.destination_chain_id})"
        )
        async with self._chain_logger.operation_context(
            OperationType.BRIDGE,
            operation.destination_chain_id,
            operation_id=operation.operation_id,
            bridge_nonce=operation.bridge_nonce,
            resumed=True,
        ):
            return await self._mint(
                operation, destination, cancel_event, timeout, poll_interval
            )


__all__ = [
    "BridgeStatus",
    "BridgeRequest",
    "BridgeOperation",
    "BridgeOrchestrator",
    "RESUMABLE_STATUSES",
]
