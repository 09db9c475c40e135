"""Unified exception hierarchy for idrx-chain.

Every error raised by this package inherits from IDRXChainError, so callers
can catch one type and still branch on the concrete failure:

    try:
        operation = await client.complete_bridge(request)
    except PartialBridgeFailure as e:
        # tokens burned on source, mint still owed on destination
        await client.resume_bridge(e.bridge_operation)
    except IDRXChainError as e:
        logger.error(e.to_dict())

All exceptions have:
- error_code: Machine-readable error code (e.g., "CHAIN_NOT_SUPPORTED")
- message: Human-readable error message
- details: Context dictionary; carries "chain" and "operation" when known
- to_dict(): Convert to a loggable / serializable form
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .bridge import BridgeOperation


class IDRXChainError(Exception):
    """Base exception for all idrx-chain errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional context (chain, operation, ...)
    """

    error_code: str = "IDRX_CHAIN_ERROR"

    def __init__(
        self,
        message: str,
        chain: Optional[int | str] = None,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if chain is not None:
            self.details["chain"] = chain
        if operation is not None:
            self.details["operation"] = operation

    @property
    def chain(self) -> Optional[int | str]:
        return self.details.get("chain")

    @property
    def operation(self) -> Optional[str]:
        return self.details.get("operation")

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable dictionary."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Registry & Connection Errors
# =============================================================================

class ChainNotSupportedError(IDRXChainError):
    """Chain ID or network name is not in the registry."""

    error_code = "CHAIN_NOT_SUPPORTED"

    def __init__(
        self,
        chain: int | str,
        operation: Optional[str] = None,
    ) -> None:
        kind = "chain ID" if isinstance(chain, int) else "network"
        super().__init__(
            f"{kind} {chain} is not supported",
            chain=chain,
            operation=operation,
        )


class ChainNotConnectedError(IDRXChainError):
    """Chain is registered but has no connection set in the pool."""

    error_code = "CHAIN_NOT_CONNECTED"

    def __init__(
        self,
        chain: int,
        operation: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message or f"chain ID {chain} not supported or not connected",
            chain=chain,
            operation=operation,
        )


class PoolClosedError(ChainNotConnectedError):
    """Connection pool was closed before or during the call."""

    error_code = "POOL_CLOSED"

    def __init__(self, chain: int, operation: Optional[str] = None) -> None:
        super().__init__(
            chain,
            operation=operation,
            message=f"connection pool is closed (chain ID {chain})",
        )


class NoAvailableConnectionError(IDRXChainError):
    """Every endpoint for a chain failed to dial or to answer a probe."""

    error_code = "NO_AVAILABLE_CONNECTION"

    def __init__(
        self,
        chain: int,
        operation: Optional[str] = None,
        errors: Optional[list[tuple[str, str]]] = None,
    ) -> None:
        self.errors = errors or []
        summary = "; ".join(f"{url}: {err}" for url, err in self.errors[:3])
        message = f"no available connection for chain ID {chain}"
        if summary:
            message = f"{message}. Errors: {summary}"
        super().__init__(
            message,
            chain=chain,
            operation=operation,
            details={"endpoints_tried": len(self.errors)},
        )


class ChainIDMismatchError(IDRXChainError):
    """Node reports a different chain ID than the one requested."""

    error_code = "CHAIN_ID_MISMATCH"

    def __init__(
        self,
        expected: int,
        received: int,
        operation: Optional[str] = None,
    ) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            f"client chain ID {received} does not match requested chain ID {expected}",
            chain=expected,
            operation=operation,
            details={"expected": expected, "received": received},
        )


class RPCError(IDRXChainError):
    """JSON-RPC call returned an error object or failed in transport."""

    error_code = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        chain: Optional[int] = None,
        operation: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        self.code = code
        self.data = data
        details: dict[str, Any] = {}
        if code is not None:
            details["rpc_code"] = code
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(message, chain=chain, operation=operation, details=details)


# =============================================================================
# Transaction Errors
# =============================================================================

class TransactionRevertedError(IDRXChainError):
    """Contract rejected a mutating call (pre-flight or on-chain)."""

    error_code = "TRANSACTION_REVERTED"

    def __init__(
        self,
        message: str,
        chain: Optional[int] = None,
        operation: Optional[str] = None,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.tx_hash = tx_hash
        self.reason = reason
        details: dict[str, Any] = {}
        if tx_hash:
            details["tx_hash"] = tx_hash
        if reason:
            details["reason"] = reason
        super().__init__(message, chain=chain, operation=operation, details=details)


class UnauthorizedError(TransactionRevertedError):
    """Signer lacks the role required by the contract (e.g. minter)."""

    error_code = "UNAUTHORIZED"


class ConfirmationTimeoutError(IDRXChainError):
    """Confirmation deadline passed without a receipt."""

    error_code = "CONFIRMATION_TIMEOUT"

    def __init__(
        self,
        tx_hash: str,
        timeout_seconds: float,
        chain: Optional[int] = None,
        operation: Optional[str] = None,
    ) -> None:
        self.tx_hash = tx_hash
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"timeout waiting for transaction {tx_hash} after {timeout_seconds:.0f}s",
            chain=chain,
            operation=operation,
            details={"tx_hash": tx_hash, "timeout_seconds": timeout_seconds},
        )


class WaitCancelledError(IDRXChainError):
    """Caller's cancellation signal fired before a terminal state."""

    error_code = "WAIT_CANCELLED"

    def __init__(
        self,
        tx_hash: str,
        chain: Optional[int] = None,
        operation: Optional[str] = None,
    ) -> None:
        self.tx_hash = tx_hash
        super().__init__(
            f"wait for transaction {tx_hash} was cancelled",
            chain=chain,
            operation=operation,
            details={"tx_hash": tx_hash},
        )


class InvalidAmountFormatError(IDRXChainError):
    """Amount string is not a valid decimal literal."""

    error_code = "INVALID_AMOUNT_FORMAT"

    def __init__(self, value: Any, reason: Optional[str] = None) -> None:
        message = f"invalid amount format: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, details={"value": str(value)})


# =============================================================================
# Bridge Errors
# =============================================================================

class BridgeError(IDRXChainError):
    """Base class for bridge orchestration errors.

    Holds the BridgeOperation record in the state it reached.
    """

    error_code = "BRIDGE_ERROR"

    def __init__(
        self,
        message: str,
        operation_record: Optional["BridgeOperation"] = None,
        chain: Optional[int] = None,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.bridge_operation = operation_record
        details = details or {}
        if operation_record is not None:
            details["operation_id"] = operation_record.operation_id
            details["status"] = operation_record.status.value
        super().__init__(message, chain=chain, operation=operation, details=details)


class BridgeValidationError(BridgeError):
    """Bridge request failed validation; nothing was submitted."""

    error_code = "BRIDGE_VALIDATION_ERROR"


class BridgeBurnError(BridgeError):
    """Burn could not be submitted or confirmed; no value moved."""

    error_code = "BRIDGE_BURN_FAILED"


class BridgeBurnRevertedError(BridgeBurnError):
    """Burn transaction was included but reverted; no value moved."""

    error_code = "BRIDGE_BURN_REVERTED"


class NonceExtractionError(BridgeError):
    """Confirmed burn receipt did not yield exactly one bridge nonce."""

    error_code = "NONCE_EXTRACTION_FAILED"


class NonceAlreadyUsedError(BridgeError):
    """Destination chain already recorded (source chain, nonce) as minted."""

    error_code = "NONCE_ALREADY_USED"

    def __init__(
        self,
        source_chain_id: int,
        nonce: int,
        operation_record: Optional["BridgeOperation"] = None,
        chain: Optional[int] = None,
    ) -> None:
        self.source_chain_id = source_chain_id
        self.nonce = nonce
        super().__init__(
            f"bridge nonce {nonce} from chain ID {source_chain_id} is already used",
            operation_record=operation_record,
            chain=chain,
            operation="mint_for_bridge",
            details={"source_chain_id": source_chain_id, "nonce": nonce},
        )


class PartialBridgeFailure(BridgeError):
    """Burn is confirmed on the source chain but the mint is not.

    The attached operation carries the bridge nonce needed to resume the
    mint without burning again.
    """

    error_code = "PARTIAL_BRIDGE_FAILURE"

    def __init__(
        self,
        message: str,
        operation_record: "BridgeOperation",
        chain: Optional[int] = None,
        operation: Optional[str] = None,
    ) -> None:
        self.nonce = operation_record.bridge_nonce
        super().__init__(
            message,
            operation_record=operation_record,
            chain=chain,
            operation=operation,
            details={
                "nonce": operation_record.bridge_nonce,
                "source_chain_id": operation_record.source_chain_id,
                "burn_tx_hash": operation_record.burn_tx_hash,
            },
        )

    @property
    def operation_record(self) -> "BridgeOperation":
        return self.bridge_operation


__all__ = [
    "IDRXChainError",
    "ChainNotSupportedError",
    "ChainNotConnectedError",
    "PoolClosedError",
    "NoAvailableConnectionError",
    "ChainIDMismatchError",
    "RPCError",
    "TransactionRevertedError",
    "UnauthorizedError",
    "ConfirmationTimeoutError",
    "WaitCancelledError",
    "InvalidAmountFormatError",
    "BridgeError",
    "BridgeValidationError",
    "BridgeBurnError",
    "BridgeBurnRevertedError",
    "NonceExtractionError",
    "NonceAlreadyUsedError",
    "PartialBridgeFailure",
]
