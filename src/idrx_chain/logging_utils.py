"""
Structured logging for chain operations.

Features:
- Operation contexts with duration and outcome
- Transaction lifecycle logging (submitted, confirmed, failed)
- Endpoint failover and bridge step logging
- Address and endpoint masking
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

from .rpc_client import mask_url

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Types of chain operations."""
    TRANSACTION_SUBMIT = "transaction_submit"
    TRANSACTION_CONFIRM = "transaction_confirm"
    GAS_ESTIMATION = "gas_estimation"
    BRIDGE = "bridge"


@dataclass
class LoggingConfig:
    """Log levels and masking for ChainLogger."""
    transaction_level: str = "INFO"
    confirmation_level: str = "INFO"
    error_level: str = "ERROR"
    mask_addresses: bool = False
    log_endpoint_health: bool = True


@dataclass
class OperationContext:
    """Context for one chain operation."""
    operation_id: str
    operation_type: OperationType
    chain: int | str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark operation as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (self.completed_at - self.started_at).total_seconds() * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "chain": self.chain,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


def mask_address(address: str) -> str:
    """Mask middle portion of address for privacy."""
    if len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


class ChainLogger:
    """
    Structured logger for chain operations.

    Keeps the last known status per transaction hash so callers can ask
    for a status breakdown.
    """

    def __init__(
        self,
        name: str = "idrx_chain",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or LoggingConfig()
        self._operation_counter = 0
        self._transactions: Dict[str, str] = {}
        self._max_history = 1000

    def _generate_operation_id(self) -> str:
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    @staticmethod
    def _get_level(level_str: str) -> int:
        return getattr(logging, level_str.upper(), logging.INFO)

    def _address(self, address: str) -> str:
        return mask_address(address) if self._config.mask_addresses else address

    def _track(self, tx_hash: str, status: str) -> None:
        self._transactions[tx_hash] = status
        if len(self._transactions) > self._max_history:
            oldest = next(iter(self._transactions))
            del self._transactions[oldest]

    @asynccontextmanager
    async def operation_context(
        self,
        operation_type: OperationType,
        chain: int | str,
        **metadata: Any,
    ) -> AsyncIterator[OperationContext]:
        """
        Track an operation's duration and outcome.

        Usage:
            async with chain_logger.operation_context(OperationType.BRIDGE, 8453) as ctx:
                ctx.metadata["nonce"] = nonce
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            chain=chain,
            metadata=metadata,
        )
        self._logger.debug(
            f"Starting {operation_type.value} on chain {chain}",
            extra={"operation": ctx.to_dict()},
        )

        try:
            yield ctx
            ctx.complete(success=True)
        except BaseException as e:
            ctx.complete(success=False, error=str(e) or type(e).__name__)
            raise
        finally:
            level = (
                self._get_level(self._config.transaction_level)
                if ctx.success
                else self._get_level(self._config.error_level)
            )
            self._logger.log(
                level,
                f"Completed {operation_type.value} on chain {chain} in "
                f"{ctx.duration_ms or 0:.0f}ms (success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    def log_transaction_submitted(
        self,
        tx_hash: str,
        chain: int | str,
        operation: str,
        from_address: str,
        to_address: str,
        nonce: int,
        gas_limit: int,
        gas_price_wei: int,
    ) -> None:
        self._track(tx_hash, "submitted")
        self._logger.log(
            self._get_level(self._config.transaction_level),
            f"Transaction submitted: {operation} {tx_hash} on chain {chain}",
            extra={
                "transaction": {
                    "tx_hash": tx_hash,
                    "chain": chain,
                    "operation": operation,
                    "from_address": self._address(from_address),
                    "to_address": self._address(to_address),
                    "nonce": nonce,
                    "gas_limit": gas_limit,
                    "gas_price_wei": gas_price_wei,
                }
            },
        )

    def log_transaction_confirmed(
        self,
        tx_hash: str,
        chain: int | str,
        block_number: Optional[int],
        gas_used: Optional[int],
    ) -> None:
        self._track(tx_hash, "confirmed")
        self._logger.log(
            self._get_level(self._config.confirmation_level),
            f"Transaction confirmed: {tx_hash} on chain {chain} in block {block_number}",
            extra={
                "transaction": {
                    "tx_hash": tx_hash,
                    "chain": chain,
                    "block_number": block_number,
                    "gas_used": gas_used,
                }
            },
        )

    def log_transaction_failed(
        self,
        tx_hash: str,
        chain: int | str,
        error: str,
        revert_reason: Optional[str] = None,
    ) -> None:
        self._track(tx_hash, "failed")
        self._logger.log(
            self._get_level(self._config.error_level),
            f"Transaction failed: {tx_hash} on chain {chain} - {error}"
            + (f" (revert: {revert_reason})" if revert_reason else ""),
            extra={
                "transaction": {
                    "tx_hash": tx_hash,
                    "chain": chain,
                    "error": error,
                    "revert_reason": revert_reason,
                }
            },
        )

    def log_endpoint_failover(
        self,
        chain: int | str,
        failed_endpoint: str,
        new_endpoint: str,
        error: str,
    ) -> None:
        if not self._config.log_endpoint_health:
            return
        self._logger.warning(
            f"Endpoint failover on chain {chain}: "
            f"{mask_url(failed_endpoint)} -> {mask_url(new_endpoint)}",
            extra={
                "failover": {
                    "chain": chain,
                    "failed_endpoint": mask_url(failed_endpoint),
                    "new_endpoint": mask_url(new_endpoint),
                    "error": error,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            },
        )

    def log_bridge_transition(
        self,
        operation_id: str,
        from_status: str,
        to_status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        failed = to_status.endswith("failed") or to_status.endswith("reverted")
        self._logger.log(
            self._get_level(self._config.error_level if failed else self._config.transaction_level),
            f"Bridge {operation_id}: {from_status} -> {to_status}",
            extra={"bridge": {"operation_id": operation_id, **(details or {})}},
        )

    def get_transaction_metrics(self) -> Dict[str, Any]:
        if not self._transactions:
            return {"total_transactions": 0}

        statuses: Dict[str, int] = {}
        for status in self._transactions.values():
            statuses[status] = statuses.get(status, 0) + 1
        return {
            "total_transactions": len(self._transactions),
            "status_breakdown": statuses,
        }


# Global logger instance
_chain_logger: Optional[ChainLogger] = None


def get_chain_logger(
    name: str = "idrx_chain",
    config: Optional[LoggingConfig] = None,
) -> ChainLogger:
    """Get the global chain logger instance."""
    global _chain_logger
    if _chain_logger is None:
        _chain_logger = ChainLogger(name, config)
    return _chain_logger


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string
        json_format: Use JSON formatting
    """
    if format_string is None:
        if json_format:
            format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )

    logging.getLogger("idrx_chain").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


__all__ = [
    "OperationType",
    "LoggingConfig",
    "OperationContext",
    "ChainLogger",
    "get_chain_logger",
    "mask_address",
    "setup_logging",
]
