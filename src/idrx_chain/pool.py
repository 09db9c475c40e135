"""
Per-chain connection pool with ordered failover.

For every network that has the contract deployed, every configured
endpoint is dialed once at initialization. Endpoints that answered are
kept in configuration order; acquire() probes them in that order and hands
out the first one that still answers. There is no background health
checker: a connection that failed a probe is simply probed again on the
next acquire().
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from .config import NetworkDescriptor, NetworkRegistry
from .exceptions import (
    ChainIDMismatchError,
    ChainNotConnectedError,
    NoAvailableConnectionError,
    PoolClosedError,
)
from .locks import ReadWriteLock
from .logging_utils import ChainLogger, get_chain_logger
from .rpc_client import RPCConnection, mask_url

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0

# (endpoint url, descriptor, dial timeout) -> live connection
Connector = Callable[[str, NetworkDescriptor, float], Awaitable[RPCConnection]]


async def dial_endpoint(
    url: str,
    descriptor: NetworkDescriptor,
    timeout_seconds: float,
) -> RPCConnection:
    """Default connector: HTTP JSON-RPC with chain ID check."""
    return await RPCConnection.dial(
        url,
        timeout_seconds=timeout_seconds,
        expected_chain_id=descriptor.chain_id,
    )


class ConnectionPool:
    """
    Live connections per chain ID.

    The connection map is written only by initialize() and close_all(),
    both under the write side of a ReadWriteLock; acquire() runs under the
    read side. A close_all() that is waiting blocks new acquires, and
    acquires that start after it see PoolClosedError.
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        dial_timeout_seconds: float = 30.0,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        connector: Optional[Connector] = None,
        chain_logger: Optional[ChainLogger] = None,
    ):
        self._registry = registry
        self._dial_timeout = dial_timeout_seconds
        self._probe_timeout = probe_timeout_seconds
        self._connector = connector or dial_endpoint
        self._chain_logger = chain_logger or get_chain_logger()
        self._lock = ReadWriteLock()
        self._connections: Dict[int, List[RPCConnection]] = {}
        self._initialized = False
        self._closed = False

    @property
    def registry(self) -> NetworkRegistry:
        return self._registry

    @property
    def closed(self) -> bool:
        return self._closed

    async def initialize(self) -> None:
        """
        Dial every endpoint of every deployed network.

        Raises:
            NoAvailableConnectionError: If no endpoint of some deployed
                network answered. Connections opened so far are closed.
        """
        async with self._lock.writing():
            if self._closed:
                raise PoolClosedError(0, operation="initialize")
            if self._initialized:
                return

            connections: Dict[int, List[RPCConnection]] = {}
            try:
                for name, descriptor in self._registry.deployed().items():
                    if not descriptor.rpc_endpoints:
                        continue
                    live, errors = await self._dial_network(name, descriptor)
                    if not live:
                        raise NoAvailableConnectionError(
                            descriptor.chain_id,
                            operation="initialize",
                            errors=errors,
                        )
                    connections[descriptor.chain_id] = live
                    logger.info(
                        f"Connected to {descriptor.name} (chain {descriptor.chain_id}) "
                        f"via {len(live)}/{len(descriptor.rpc_endpoints)} endpoints"
                    )
            except BaseException:
                await self._close_connections(connections)
                raise

            self._connections = connections
            self._initialized = True

    async def _dial_network(
        self,
        name: str,
        descriptor: NetworkDescriptor,
    ) -> Tuple[List[RPCConnection], List[Tuple[str, str]]]:
        """Dial all endpoints of one network; keep the ones that answered, in order."""
        results = await asyncio.gather(
            *(
                asyncio.wait_for(
                    self._connector(url, descriptor, self._dial_timeout),
                    timeout=self._dial_timeout,
                )
                for url in descriptor.rpc_endpoints
            ),
            return_exceptions=True,
        )

        live: List[RPCConnection] = []
        errors: List[Tuple[str, str]] = []
        for url, result in zip(descriptor.rpc_endpoints, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                error = str(result) or type(result).__name__
                errors.append((mask_url(url), error))
                logger.warning(
                    f"Failed to connect to {descriptor.name} ({mask_url(url)}): {error}"
                )
                continue
            live.append(result)
        return live, errors

    async def acquire(self, chain_id: int) -> RPCConnection:
        """
        Return the first held connection for chain_id that answers a probe.

        The read lock is released on return, so a close_all() may close the
        handle afterwards. Anything that uses the connection should go
        through lease() instead.

        Raises:
            ChainNotConnectedError: Chain unknown or never connected
            PoolClosedError: Pool was closed
            NoAvailableConnectionError: Every probe failed
        """
        async with self._lock.reading():
            return await self._acquire_locked(chain_id)

    @asynccontextmanager
    async def lease(self, chain_id: int) -> AsyncIterator[RPCConnection]:
        """
        Acquire a connection and keep close_all() out until the block exits.

        Leases must not nest: a close_all() waiting on the outer lease
        blocks the inner one.
        """
        async with self._lock.reading():
            yield await self._acquire_locked(chain_id)

    async def _acquire_locked(self, chain_id: int) -> RPCConnection:
        if self._closed:
            raise PoolClosedError(chain_id, operation="acquire")
        connections = self._connections.get(chain_id)
        if not connections:
            raise ChainNotConnectedError(chain_id, operation="acquire")

        errors: List[Tuple[str, str]] = []
        for index, connection in enumerate(connections):
            try:
                reported = await asyncio.wait_for(
                    connection.chain_id(timeout=self._probe_timeout),
                    timeout=self._probe_timeout,
                )
                if reported != chain_id:
                    raise ChainIDMismatchError(
                        expected=chain_id, received=reported, operation="acquire"
                    )
            except Exception as e:
                error = str(e) or type(e).__name__
                errors.append((mask_url(connection.url), error))
                logger.warning(
                    f"Probe of {mask_url(connection.url)} for chain {chain_id} failed: "
                    f"{error}, trying next endpoint"
                )
                continue

            if index > 0:
                self._chain_logger.log_endpoint_failover(
                    chain_id,
                    failed_endpoint=connections[index - 1].url,
                    new_endpoint=connection.url,
                    error=errors[-1][1],
                )
            return connection

        raise NoAvailableConnectionError(chain_id, operation="acquire", errors=errors)

    def primary(self, chain_id: int) -> RPCConnection:
        """The first connection recorded for a chain (no probe)."""
        if self._closed:
            raise PoolClosedError(chain_id, operation="primary")
        connections = self._connections.get(chain_id)
        if not connections:
            raise ChainNotConnectedError(chain_id, operation="primary")
        return connections[0]

    def connections(self, chain_id: int) -> List[RPCConnection]:
        return list(self._connections.get(chain_id, ()))

    def connected_chain_ids(self) -> List[int]:
        return list(self._connections)

    def endpoint_stats(self) -> Dict[int, List[Dict[str, Any]]]:
        """Health counters for every held connection."""
        return {
            chain_id: [c.health.to_dict() for c in connections]
            for chain_id, connections in self._connections.items()
        }

    async def close_all(self) -> None:
        """Close every held connection. Safe to call repeatedly or concurrently."""
        async with self._lock.writing():
            if self._closed:
                return
            self._closed = True
            connections, self._connections = self._connections, {}
            await self._close_connections(connections)
            logger.info("Closed all chain connections")

    @staticmethod
    async def _close_connections(connections: Dict[int, List[RPCConnection]]) -> None:
        for chain_id, held in connections.items():
            for connection in held:
                try:
                    await connection.close()
                except Exception as e:
                    logger.error(
                        f"Error closing {mask_url(connection.url)} for chain {chain_id}: {e}"
                    )

    async def __aenter__(self) -> "ConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close_all()


__all__ = [
    "Connector",
    "ConnectionPool",
    "DEFAULT_PROBE_TIMEOUT_SECONDS",
    "dial_endpoint",
]
