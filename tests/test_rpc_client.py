"""
Tests for idrx_chain.rpc_client.

Tests cover:
- JSON-RPC request/response handling over httpx
- Error objects and transport failures mapped to RPCError
- Dial with chain ID verification
- Endpoint health counters
"""
from __future__ import annotations

import json

import httpx
import pytest

from idrx_chain.exceptions import ChainIDMismatchError, RPCError
from idrx_chain.rpc_client import EndpointStatus, RPCConnection, mask_url

from conftest import ALPHA_CHAIN_ID, FakeNode, JsonRpcFault


class TestMaskUrl:
    """Tests for mask_url()."""

    def test_masks_query(self):
        """API keys in query strings should not be logged."""
        assert mask_url("https://rpc.test/v1?apikey=secret") == "https://rpc.test/v1?<params_masked>"

    def test_plain_url_unchanged(self):
        assert mask_url("https://rpc.test") == "https://rpc.test"


class TestRPCConnection:
    """Tests for RPCConnection calls."""

    @pytest.mark.asyncio
    async def test_chain_id(self):
        """Should decode the hex chain ID."""
        node = FakeNode(ALPHA_CHAIN_ID)
        connection = node.connection()
        try:
            assert await connection.chain_id() == ALPHA_CHAIN_ID
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_sends_jsonrpc_envelope(self):
        """Should send method and params in a JSON-RPC 2.0 body."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(body)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x10"})

        connection = RPCConnection("https://rpc.test", transport=httpx.MockTransport(handler))
        try:
            assert await connection.get_nonce("0xabc") == 16
        finally:
            await connection.close()

        assert seen[0]["jsonrpc"] == "2.0"
        assert seen[0]["method"] == "eth_getTransactionCount"
        assert seen[0]["params"] == ["0xabc", "pending"]

    @pytest.mark.asyncio
    async def test_error_object(self):
        """A JSON-RPC error should raise RPCError with code and data."""
        node = FakeNode(ALPHA_CHAIN_ID).on(
            "eth_estimateGas", JsonRpcFault(3, "execution reverted", "0xdeadbeef")
        )
        connection = node.connection()
        try:
            with pytest.raises(RPCError) as exc_info:
                await connection.estimate_gas({"to": "0x0"})
        finally:
            await connection.close()

        assert exc_info.value.code == 3
        assert exc_info.value.data == "0xdeadbeef"
        assert exc_info.value.operation == "eth_estimateGas"
        # the node answered, so the endpoint stays healthy
        assert connection.health.status == EndpointStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        """Connection errors should raise RPCError and mark the endpoint unhealthy."""
        node = FakeNode(ALPHA_CHAIN_ID)
        node.down = True
        connection = node.connection()
        try:
            with pytest.raises(RPCError):
                await connection.get_block_number()
        finally:
            await connection.close()

        assert connection.health.status == EndpointStatus.UNHEALTHY
        assert connection.health.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Non-2xx responses should raise RPCError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
        connection = RPCConnection("https://rpc.test", transport=transport)
        try:
            with pytest.raises(RPCError):
                await connection.get_gas_price()
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_send_raw_transaction_prefixes(self):
        """Should add 0x to raw transactions that lack it."""
        node = FakeNode(ALPHA_CHAIN_ID).on("eth_sendRawTransaction", lambda params: params[0])
        connection = node.connection()
        try:
            assert await connection.send_raw_transaction("abcd") == "0xabcd"
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_closed_connection(self):
        """Calls after close should raise RPCError."""
        connection = FakeNode(ALPHA_CHAIN_ID).connection()
        await connection.close()
        await connection.close()
        assert connection.closed
        with pytest.raises(RPCError):
            await connection.chain_id()

    @pytest.mark.asyncio
    async def test_health_counters(self):
        """Successful calls should update latency and request counters."""
        connection = FakeNode(ALPHA_CHAIN_ID).connection()
        try:
            await connection.chain_id()
            await connection.chain_id()
        finally:
            await connection.close()

        stats = connection.health.to_dict()
        assert stats["total_requests"] == 2
        assert stats["total_failures"] == 0
        assert stats["status"] == "healthy"


class TestDial:
    """Tests for RPCConnection.dial()."""

    @pytest.mark.asyncio
    async def test_dial_success(self):
        """Should return an open connection when the chain matches."""
        node = FakeNode(ALPHA_CHAIN_ID)
        connection = await RPCConnection.dial(
            "https://rpc.test", 1.0, expected_chain_id=ALPHA_CHAIN_ID, transport=node.transport()
        )
        assert not connection.closed
        await connection.close()

    @pytest.mark.asyncio
    async def test_dial_chain_mismatch(self):
        """Should refuse an endpoint serving another chain."""
        node = FakeNode(ALPHA_CHAIN_ID)
        with pytest.raises(ChainIDMismatchError) as exc_info:
            await RPCConnection.dial(
                "https://rpc.test", 1.0, expected_chain_id=ALPHA_CHAIN_ID + 1,
                transport=node.transport(),
            )
        assert exc_info.value.received == ALPHA_CHAIN_ID

    @pytest.mark.asyncio
    async def test_dial_unreachable(self):
        """Should raise RPCError when the endpoint does not answer."""
        node = FakeNode(ALPHA_CHAIN_ID)
        node.down = True
        with pytest.raises(RPCError):
            await RPCConnection.dial("https://rpc.test", 1.0, transport=node.transport())
