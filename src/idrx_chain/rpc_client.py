"""
JSON-RPC connection to a single chain endpoint.

Features:
- httpx.AsyncClient transport with per-request timeouts
- Dial step that verifies the endpoint answers eth_chainId
- Per-endpoint health counters (success/failure, latency)
- Typed helpers for the chain methods the client needs
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import ChainIDMismatchError, RPCError

logger = logging.getLogger(__name__)

# JSON-RPC error code used by geth-compatible nodes for reverted execution
EXECUTION_REVERTED_CODE = 3


class EndpointStatus(str, Enum):
    """Health status of an RPC endpoint."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class EndpointHealth:
    """Health tracking for an RPC endpoint."""
    url: str
    status: EndpointStatus = EndpointStatus.UNKNOWN
    consecutive_failures: int = 0
    total_requests: int = 0
    total_failures: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_latency_ms: float = 0.0
    avg_latency_ms: float = 0.0
    last_error: Optional[str] = None

    def record_success(self, latency_ms: float) -> None:
        """Record a successful request."""
        self.consecutive_failures = 0
        self.total_requests += 1
        self.last_success = datetime.now(timezone.utc)
        self.last_latency_ms = latency_ms

        # Exponential moving average
        if self.avg_latency_ms == 0:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = 0.9 * self.avg_latency_ms + 0.1 * latency_ms

        self.status = EndpointStatus.HEALTHY

    def record_failure(self, error: str) -> None:
        """Record a failed request."""
        self.consecutive_failures += 1
        self.total_requests += 1
        self.total_failures += 1
        self.last_failure = datetime.now(timezone.utc)
        self.last_error = error
        self.status = EndpointStatus.UNHEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": mask_url(self.url),
            "status": self.status.value,
            "consecutive_failures": self.consecutive_failures,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "last_latency_ms": round(self.last_latency_ms, 2),
            "last_error": self.last_error,
        }


def mask_url(url: str) -> str:
    """Mask query parameters (often API keys) in an endpoint URL."""
    if "?" in url:
        return f"{url.split('?')[0]}?<params_masked>"
    return url


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class RPCConnection:
    """
    One live connection to one JSON-RPC endpoint.

    Connections for the same chain are interchangeable; the pool decides
    which one to use.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url
        self._timeout = timeout_seconds
        self._request_id = 0
        self._http_client: Optional[httpx.AsyncClient] = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=transport,
        )
        self.health = EndpointHealth(url=url)

    @property
    def url(self) -> str:
        return self._url

    @property
    def closed(self) -> bool:
        return self._http_client is None

    def __repr__(self) -> str:
        return f"RPCConnection({mask_url(self._url)!r})"

    @classmethod
    async def dial(
        cls,
        url: str,
        timeout_seconds: float,
        expected_chain_id: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "RPCConnection":
        """
        Open a connection and check that the endpoint answers.

        Raises:
            RPCError: If the endpoint does not answer within timeout_seconds
            ChainIDMismatchError: If the endpoint serves another chain
        """
        connection = cls(url, timeout_seconds=timeout_seconds, transport=transport)
        try:
            chain_id = await connection.chain_id(timeout=timeout_seconds)
            if expected_chain_id is not None and chain_id != expected_chain_id:
                raise ChainIDMismatchError(
                    expected=expected_chain_id,
                    received=chain_id,
                    operation="dial",
                )
        except BaseException:
            await connection.close()
            raise
        return connection

    async def call(
        self,
        method: str,
        params: Optional[List[Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Make a JSON-RPC call.

        Raises:
            RPCError: On transport failure or a JSON-RPC error object
        """
        if self._http_client is None:
            raise RPCError(
                f"connection to {mask_url(self._url)} is closed",
                operation=method,
                endpoint=mask_url(self._url),
            )

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        start_time = time.monotonic()
        try:
            response = await self._http_client.post(
                self._url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=timeout or self._timeout,
            )
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.health.record_failure(str(e) or type(e).__name__)
            raise RPCError(
                f"RPC call {method} to {mask_url(self._url)} failed: {e!r}",
                operation=method,
                endpoint=mask_url(self._url),
            ) from e

        latency_ms = (time.monotonic() - start_time) * 1000

        if "error" in result:
            error = result["error"] or {}
            # A revert is a healthy answer from the node
            self.health.record_success(latency_ms)
            raise RPCError(
                error.get("message", str(error)),
                code=error.get("code"),
                data=error.get("data"),
                operation=method,
                endpoint=mask_url(self._url),
            )

        self.health.record_success(latency_ms)
        logger.debug(
            f"RPC call {method} to {mask_url(self._url)} succeeded in {latency_ms:.0f}ms"
        )
        return result.get("result")

    async def chain_id(self, timeout: Optional[float] = None) -> int:
        """Chain ID reported by the node. Also used as the liveness probe."""
        result = await self.call("eth_chainId", [], timeout=timeout)
        return _to_int(result)

    async def get_block_number(self) -> int:
        result = await self.call("eth_blockNumber")
        return _to_int(result)

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        result = await self.call("eth_gasPrice")
        return _to_int(result)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        result = await self.call("eth_estimateGas", [tx])
        return _to_int(result)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        """Get transaction count (nonce) for address."""
        result = await self.call("eth_getTransactionCount", [address, block])
        return _to_int(result)

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        """Execute a call without creating a transaction."""
        return await self.call("eth_call", [tx, block])

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction."""
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionByHash", [tx_hash])

    async def close(self) -> None:
        """Close HTTP client."""
        client, self._http_client = self._http_client, None
        if client is not None:
            await client.aclose()


__all__ = [
    "EXECUTION_REVERTED_CODE",
    "EndpointStatus",
    "EndpointHealth",
    "RPCConnection",
    "mask_url",
]
