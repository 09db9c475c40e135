"""
Transaction confirmation waiting.

Features:
- Chain-specific deadline (10 blocks, at least 60s) and poll interval
  (half a block), both overridable per call
- Cancellation through an asyncio.Event, distinct from the deadline
- Every poll leases a connection from the pool, so failover happens
  between polls and close_all() never closes a connection mid-poll
- Cancellation and the deadline interrupt a poll that is in flight
- Revert reason replay for reverted receipts
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import NetworkRegistry
from .contract import is_revert, revert_error
from .exceptions import (
    ConfirmationTimeoutError,
    NoAvailableConnectionError,
    RPCError,
    TransactionRevertedError,
    WaitCancelledError,
)
from .logging_utils import ChainLogger, OperationType, get_chain_logger
from .pool import ConnectionPool

logger = logging.getLogger(__name__)


class WaitStatus(str, Enum):
    """
    Outcome of a wait that found a receipt.

    Deadline and cancellation are not outcomes: they raise
    ConfirmationTimeoutError and WaitCancelledError.
    """
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


class TransactionStatus(str, Enum):
    """Point-in-time status of a transaction, without waiting."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    NOT_FOUND = "not_found"


def _hex_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


@dataclass
class TransactionReceipt:
    """The parts of an eth_getTransactionReceipt answer the client uses."""
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    gas_used: Optional[int] = None
    effective_gas_price: Optional[int] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "TransactionReceipt":
        status = _hex_int(raw.get("status"))
        return cls(
            tx_hash=raw.get("transactionHash", ""),
            # pre-Byzantium receipts carry no status
            status=1 if status is None else status,
            block_number=_hex_int(raw.get("blockNumber")),
            block_hash=raw.get("blockHash"),
            gas_used=_hex_int(raw.get("gasUsed")),
            effective_gas_price=_hex_int(raw.get("effectiveGasPrice")),
            logs=list(raw.get("logs") or []),
        )

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "gas_used": self.gas_used,
            "effective_gas_price": self.effective_gas_price,
            "log_count": len(self.logs),
        }


@dataclass
class ConfirmationResult:
    chain_id: int
    tx_hash: str
    status: WaitStatus
    receipt: TransactionReceipt

    @property
    def confirmed(self) -> bool:
        return self.status == WaitStatus.CONFIRMED


class TransactionWaiter:
    """
    Polls for a transaction receipt until it lands, the deadline passes, or
    the caller cancels.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        registry: Optional[NetworkRegistry] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._pool = pool
        self._registry = registry or pool.registry
        self._chain_logger = chain_logger or get_chain_logger()

    async def wait(
        self,
        chain_id: int,
        tx_hash: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ConfirmationResult:
        """
        Wait until tx_hash has a receipt on chain_id.

        Each poll (pool lease plus receipt request) races cancel_event and the
        deadline, so neither a slow endpoint nor a slow failover can hold the
        wait past either of them.

        Returns:
            ConfirmationResult with status CONFIRMED or REVERTED

        Raises:
            ChainNotSupportedError: chain_id is not registered
            ConfirmationTimeoutError: No receipt before the deadline
            WaitCancelledError: cancel_event was set first
        """
        descriptor, _ = self._registry.lookup_by_chain_id(chain_id)
        timeout = timeout if timeout is not None else descriptor.confirmation_timeout_seconds
        interval = (
            poll_interval if poll_interval is not None else descriptor.poll_interval_seconds
        )
        cancel = cancel_event or asyncio.Event()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        logger.debug(
            f"Waiting for {tx_hash} on chain {chain_id} "
            f"(timeout={timeout:.1f}s, interval={interval:.1f}s)"
        )

        async with self._chain_logger.operation_context(
            OperationType.TRANSACTION_CONFIRM, chain_id, tx_hash=tx_hash
        ) as ctx:
            while True:
                if cancel.is_set():
                    raise WaitCancelledError(tx_hash, chain=chain_id, operation="wait")

                raw: Optional[Dict[str, Any]] = None
                try:
                    raw = await self._poll(
                        chain_id, tx_hash, cancel, max(deadline - loop.time(), 0.001)
                    )
                except (RPCError, NoAvailableConnectionError, asyncio.TimeoutError) as e:
                    logger.warning(
                        f"Receipt poll for {tx_hash} on chain {chain_id} failed: "
                        f"{str(e) or type(e).__name__}"
                    )

                if raw:
                    result = self._result(chain_id, tx_hash, TransactionReceipt.from_rpc(raw))
                    ctx.metadata["status"] = result.status.value
                    return result

                remaining = deadline - loop.time()
                if remaining <= 0:
                    self._chain_logger.log_transaction_failed(
                        tx_hash, chain_id, f"no receipt after {timeout:.1f}s"
                    )
                    raise ConfirmationTimeoutError(
                        tx_hash, timeout, chain=chain_id, operation="wait"
                    )

                try:
                    await asyncio.wait_for(cancel.wait(), timeout=min(interval, remaining))
                except asyncio.TimeoutError:
                    continue
                raise WaitCancelledError(tx_hash, chain=chain_id, operation="wait")

    async def _fetch_receipt(self, chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
        async with self._pool.lease(chain_id) as connection:
            return await connection.get_transaction_receipt(tx_hash)

    async def _poll(
        self,
        chain_id: int,
        tx_hash: str,
        cancel: asyncio.Event,
        timeout: float,
    ) -> Optional[Dict[str, Any]]:
        """
        One receipt poll, bounded by timeout and abandoned as soon as cancel is set.

        Raises:
            WaitCancelledError: cancel was set before the poll finished
            asyncio.TimeoutError: The poll did not finish within timeout
        """
        fetch = asyncio.create_task(self._fetch_receipt(chain_id, tx_hash))
        cancelled = asyncio.create_task(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {fetch, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (fetch, cancelled):
                task.cancel()
            # let the fetch unwind and release its lease
            await asyncio.gather(fetch, cancelled, return_exceptions=True)

        if cancelled in done:
            raise WaitCancelledError(tx_hash, chain=chain_id, operation="wait")
        if fetch in done:
            return fetch.result()
        raise asyncio.TimeoutError()

    def _result(
        self, chain_id: int, tx_hash: str, receipt: TransactionReceipt
    ) -> ConfirmationResult:
        if receipt.succeeded:
            self._chain_logger.log_transaction_confirmed(
                tx_hash, chain_id, receipt.block_number, receipt.gas_used
            )
            status = WaitStatus.CONFIRMED
        else:
            self._chain_logger.log_transaction_failed(
                tx_hash, chain_id, "receipt status 0"
            )
            status = WaitStatus.REVERTED
        return ConfirmationResult(
            chain_id=chain_id, tx_hash=tx_hash, status=status, receipt=receipt
        )

    async def wait_for_success(
        self,
        chain_id: int,
        tx_hash: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        operation: str = "wait",
    ) -> TransactionReceipt:
        """
        Like wait(), but a reverted receipt raises.

        Raises:
            TransactionRevertedError: Receipt status is 0
            UnauthorizedError: Revert reason is a missing role
        """
        result = await self.wait(
            chain_id,
            tx_hash,
            timeout=timeout,
            poll_interval=poll_interval,
            cancel_event=cancel_event,
        )
        if result.confirmed:
            return result.receipt
        raise await self._reverted(chain_id, tx_hash, result.receipt, operation)

    async def _reverted(
        self,
        chain_id: int,
        tx_hash: str,
        receipt: TransactionReceipt,
        operation: str,
    ) -> TransactionRevertedError:
        """Replay the transaction at its block to recover the revert reason."""
        try:
            async with self._pool.lease(chain_id) as connection:
                tx = await connection.get_transaction(tx_hash)
                if tx:
                    call = {
                        "from": tx.get("from"),
                        "to": tx.get("to"),
                        "data": tx.get("input") or tx.get("data"),
                        "value": tx.get("value", "0x0"),
                        "gas": tx.get("gas"),
                    }
                    block = (
                        hex(receipt.block_number)
                        if receipt.block_number is not None
                        else "latest"
                    )
                    await connection.eth_call(call, block)
        except RPCError as e:
            if is_revert(e):
                return revert_error(e, chain_id, operation, tx_hash)
            logger.debug(f"Could not replay {tx_hash} for revert reason: {e}")
        except NoAvailableConnectionError as e:
            logger.debug(f"Could not replay {tx_hash} for revert reason: {e}")

        return TransactionRevertedError(
            f"{operation} transaction {tx_hash} reverted on chain {chain_id}",
            chain=chain_id,
            operation=operation,
            tx_hash=tx_hash,
        )

    async def get_transaction_status(self, chain_id: int, tx_hash: str) -> TransactionStatus:
        """Status of a transaction right now; does not wait."""
        self._registry.lookup_by_chain_id(chain_id)
        async with self._pool.lease(chain_id) as connection:
            raw = await connection.get_transaction_receipt(tx_hash)
            if raw:
                receipt = TransactionReceipt.from_rpc(raw)
                return TransactionStatus.SUCCESS if receipt.succeeded else TransactionStatus.FAILED
            if await connection.get_transaction(tx_hash):
                return TransactionStatus.PENDING
            return TransactionStatus.NOT_FOUND


__all__ = [
    "WaitStatus",
    "TransactionStatus",
    "TransactionReceipt",
    "ConfirmationResult",
    "TransactionWaiter",
]
