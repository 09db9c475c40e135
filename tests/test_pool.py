"""
Tests for idrx_chain.pool.ConnectionPool.

Tests cover:
- Initialization keeps answering endpoints in configured order
- Fail-fast when a deployed network has no live endpoint
- Ordered failover on acquire()
- Close semantics (idempotent, concurrent, waits for leases)
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from idrx_chain.config import NetworkDescriptor
from idrx_chain.exceptions import (
    ChainNotConnectedError,
    NoAvailableConnectionError,
    PoolClosedError,
)
from idrx_chain.logging_utils import ChainLogger
from idrx_chain.pool import ConnectionPool

from conftest import (
    ALPHA_CHAIN_ID,
    BETA_CHAIN_ID,
    FakeNode,
    make_connector,
    make_registry,
)


def _pool(registry, nodes, opened=None, chain_logger=None) -> ConnectionPool:
    return ConnectionPool(
        registry,
        dial_timeout_seconds=1.0,
        probe_timeout_seconds=0.5,
        connector=make_connector(nodes, opened),
        chain_logger=chain_logger,
    )


class TestInitialize:
    """Tests for ConnectionPool.initialize()."""

    @pytest.mark.asyncio
    async def test_connects_every_endpoint(self, pool):
        """Should hold one connection per answering endpoint, in order."""
        alpha = pool.connections(ALPHA_CHAIN_ID)
        assert [c.url for c in alpha] == ["https://alpha-1.test", "https://alpha-2.test"]
        assert set(pool.connected_chain_ids()) == {ALPHA_CHAIN_ID, BETA_CHAIN_ID}
        assert pool.primary(ALPHA_CHAIN_ID).url == "https://alpha-1.test"

    @pytest.mark.asyncio
    async def test_skips_dead_endpoint(self, registry, nodes):
        """A failing endpoint is logged and skipped, not fatal."""
        nodes["https://alpha-1.test"].down = True
        pool = _pool(registry, nodes)
        await pool.initialize()
        try:
            assert [c.url for c in pool.connections(ALPHA_CHAIN_ID)] == ["https://alpha-2.test"]
        finally:
            await pool.close_all()

    @pytest.mark.asyncio
    async def test_skips_wrong_chain_endpoint(self, registry, nodes):
        """An endpoint serving another chain counts as a failed dial."""
        nodes["https://alpha-2.test"] = FakeNode(BETA_CHAIN_ID)
        pool = _pool(registry, nodes)
        await pool.initialize()
        try:
            assert [c.url for c in pool.connections(ALPHA_CHAIN_ID)] == ["https://alpha-1.test"]
        finally:
            await pool.close_all()

    @pytest.mark.asyncio
    async def test_fails_when_network_unreachable(self, registry, nodes):
        """Zero live endpoints for a deployed network fails the whole pool."""
        nodes["https://beta-1.test"].down = True
        opened = []
        pool = _pool(registry, nodes, opened)

        with pytest.raises(NoAvailableConnectionError) as exc_info:
            await pool.initialize()

        assert exc_info.value.chain == BETA_CHAIN_ID
        assert exc_info.value.operation == "initialize"
        # connections opened for other networks were closed again
        assert opened
        assert all(c.closed for c in opened)
        assert pool.connected_chain_ids() == []

    @pytest.mark.asyncio
    async def test_skips_undeployed_network(self, nodes):
        """A network without a contract address is not dialed."""
        registry = make_registry(
            Gamma=NetworkDescriptor(
                chain_id=1003, name="Gamma", rpc_endpoints=("https://gamma.test",)
            )
        )
        pool = _pool(registry, nodes)
        await pool.initialize()
        try:
            assert 1003 not in pool.connected_chain_ids()
        finally:
            await pool.close_all()

    @pytest.mark.asyncio
    async def test_idempotent(self, pool, nodes):
        """A second initialize() should not dial again."""
        calls = len(nodes["https://alpha-1.test"].calls)
        await pool.initialize()
        assert len(nodes["https://alpha-1.test"].calls) == calls


class TestAcquire:
    """Tests for ConnectionPool.acquire()."""

    @pytest.mark.asyncio
    async def test_returns_first_live(self, pool):
        """Should return the first endpoint when it answers."""
        connection = await pool.acquire(ALPHA_CHAIN_ID)
        assert connection.url == "https://alpha-1.test"

    @pytest.mark.asyncio
    async def test_fails_over_in_order(self, registry, nodes):
        """Should skip endpoints that stop answering and log the failover."""
        chain_logger = ChainLogger()
        chain_logger.log_endpoint_failover = lambda *args, **kwargs: failovers.append(kwargs)
        failovers = []
        pool = _pool(registry, nodes, chain_logger=chain_logger)
        await pool.initialize()
        try:
            nodes["https://alpha-1.test"].down = True
            connection = await pool.acquire(ALPHA_CHAIN_ID)
            assert connection.url == "https://alpha-2.test"
            assert failovers[0]["new_endpoint"] == "https://alpha-2.test"

            # a recovered endpoint is preferred again
            nodes["https://alpha-1.test"].down = False
            connection = await pool.acquire(ALPHA_CHAIN_ID)
            assert connection.url == "https://alpha-1.test"
        finally:
            await pool.close_all()

    @pytest.mark.asyncio
    async def test_all_endpoints_down(self, pool, nodes):
        """Should raise NoAvailableConnectionError when every probe fails."""
        nodes["https://alpha-1.test"].down = True
        nodes["https://alpha-2.test"].down = True
        with pytest.raises(NoAvailableConnectionError) as exc_info:
            await pool.acquire(ALPHA_CHAIN_ID)
        assert len(exc_info.value.errors) == 2
        # failed connections are kept for the next acquire
        assert len(pool.connections(ALPHA_CHAIN_ID)) == 2

    @pytest.mark.asyncio
    async def test_unknown_chain(self, pool):
        """Should raise ChainNotConnectedError for chains it does not hold."""
        with pytest.raises(ChainNotConnectedError):
            await pool.acquire(424242)

    @pytest.mark.asyncio
    async def test_probe_checks_chain_id(self, pool, nodes):
        """A node that switched chains fails its probe."""
        nodes["https://alpha-1.test"].on("eth_chainId", hex(BETA_CHAIN_ID))
        connection = await pool.acquire(ALPHA_CHAIN_ID)
        assert connection.url == "https://alpha-2.test"


class TestClose:
    """Tests for ConnectionPool.close_all()."""

    @pytest.mark.asyncio
    async def test_close_then_acquire(self, registry, nodes):
        """Acquire after close raises PoolClosedError."""
        pool = _pool(registry, nodes)
        await pool.initialize()
        held = pool.connections(ALPHA_CHAIN_ID)
        await pool.close_all()

        assert pool.closed
        assert all(c.closed for c in held)
        with pytest.raises(PoolClosedError):
            await pool.acquire(ALPHA_CHAIN_ID)
        # PoolClosedError is a ChainNotConnectedError
        with pytest.raises(ChainNotConnectedError):
            pool.primary(ALPHA_CHAIN_ID)

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_concurrent(self, registry, nodes):
        """Repeated and concurrent close_all() calls close each connection once."""
        pool = _pool(registry, nodes)
        await pool.initialize()
        connection = pool.primary(BETA_CHAIN_ID)
        original_close = connection.close
        connection.close = AsyncMock(side_effect=original_close)

        await asyncio.gather(pool.close_all(), pool.close_all(), pool.close_all())
        await pool.close_all()
        assert connection.close.await_count == 1

    @pytest.mark.asyncio
    async def test_close_tolerates_errors(self, registry, nodes):
        """A connection whose close raises does not stop the others closing."""
        pool = _pool(registry, nodes)
        await pool.initialize()
        broken = pool.primary(ALPHA_CHAIN_ID)
        broken.close = AsyncMock(side_effect=RuntimeError("boom"))
        others = pool.connections(ALPHA_CHAIN_ID)[1:] + pool.connections(BETA_CHAIN_ID)

        await pool.close_all()
        assert pool.closed
        assert all(c.closed for c in others)

    @pytest.mark.asyncio
    async def test_close_waits_for_lease(self, pool):
        """close_all() should wait until a leased connection is returned."""
        async with pool.lease(ALPHA_CHAIN_ID) as connection:
            closer = asyncio.create_task(pool.close_all())
            for _ in range(5):
                await asyncio.sleep(0)
            assert not closer.done()
            assert not connection.closed

        await asyncio.wait_for(closer, timeout=1)
        assert connection.closed

    @pytest.mark.asyncio
    async def test_lease_queued_behind_pending_close(self, pool, nodes):
        """A lease requested while close_all() waits is refused once the close runs."""
        nodes["https://alpha-1.test"].delay("eth_blockNumber", 0.2).on("eth_blockNumber", "0x10")

        async def use_lease():
            async with pool.lease(ALPHA_CHAIN_ID) as connection:
                return await connection.call("eth_blockNumber", [])

        in_use = asyncio.create_task(use_lease())
        await asyncio.sleep(0.05)
        closer = asyncio.create_task(pool.close_all())
        await asyncio.sleep(0.01)
        late = asyncio.create_task(use_lease())

        assert await in_use == "0x10"
        await closer
        with pytest.raises(PoolClosedError):
            await late
        assert nodes["https://alpha-1.test"].methods_called().count("eth_blockNumber") == 1

    @pytest.mark.asyncio
    async def test_context_manager(self, registry, nodes):
        """async with should initialize and close."""
        async with _pool(registry, nodes) as pool:
            assert pool.connected_chain_ids()
        assert pool.closed

    @pytest.mark.asyncio
    async def test_initialize_after_close(self, registry, nodes):
        """A closed pool cannot be reopened."""
        pool = _pool(registry, nodes)
        await pool.close_all()
        with pytest.raises(PoolClosedError):
            await pool.initialize()

    @pytest.mark.asyncio
    async def test_endpoint_stats(self, pool):
        """Should report health per held connection."""
        await pool.acquire(ALPHA_CHAIN_ID)
        stats = pool.endpoint_stats()
        assert stats[ALPHA_CHAIN_ID][0]["status"] == "healthy"
        assert len(stats[ALPHA_CHAIN_ID]) == 2
