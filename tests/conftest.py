"""
Pytest configuration for idrx-chain tests.

FakeNode answers JSON-RPC over httpx.MockTransport, so RPCConnection,
ConnectionPool and TokenContract run their real request/response code.
"""
from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

from eth_abi import encode
from web3 import Web3

from idrx_chain.config import NetworkDescriptor, NetworkRegistry
from idrx_chain.pool import ConnectionPool
from idrx_chain.rpc_client import RPCConnection

ALPHA_CHAIN_ID = 1001
BETA_CHAIN_ID = 1002
ALPHA_CONTRACT = Web3.to_checksum_address("0x18bc5bcc660cf2b9ce3cd51a404afe1a0cbd3c22")
BETA_CONTRACT = Web3.to_checksum_address("0x649a2da7b28e0d54c13d5eff95d3a660652742cc")
TEST_PRIVATE_KEY = "0x" + "11" * 32


@dataclass
class JsonRpcFault:
    """Returned by a FakeNode handler to answer with a JSON-RPC error object."""
    code: int
    message: str
    data: Any = None


def revert_data(reason: str) -> str:
    """ABI-encoded Error(string) revert payload."""
    selector = bytes(Web3.keccak(text="Error(string)")[:4])
    return "0x" + (selector + encode(["string"], [reason])).hex()


def abi_result(types: List[str], values: List[Any]) -> str:
    return "0x" + encode(types, values).hex()


class FakeNode:
    """In-memory JSON-RPC node for one chain."""

    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        self.handlers: Dict[str, Any] = {}
        self.calls: List[Tuple[str, list]] = []
        self.delays: Dict[str, float] = {}
        self.down = False

    def on(self, method: str, result: Any) -> "FakeNode":
        """Answer method with a fixed result, or with result(params) if callable."""
        self.handlers[method] = result
        return self

    def delay(self, method: str, seconds: float) -> "FakeNode":
        """Hold every answer to method for seconds before replying."""
        self.delays[method] = seconds
        return self

    def methods_called(self) -> List[str]:
        return [method for method, _ in self.calls]

    def handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method, params = payload["method"], payload.get("params", [])
        self.calls.append((method, params))

        if self.down:
            raise httpx.ConnectError("node is down", request=request)

        if method in self.handlers:
            handler = self.handlers[method]
            result = handler(params) if callable(handler) else handler
        elif method == "eth_chainId":
            result = hex(self.chain_id)
        else:
            result = JsonRpcFault(-32601, f"method {method} not found")

        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": payload["id"]}
        if isinstance(result, JsonRpcFault):
            body["error"] = {"code": result.code, "message": result.message}
            if result.data is not None:
                body["error"]["data"] = result.data
        else:
            body["result"] = result
        return httpx.Response(200, json=body)

    async def handle_async(self, request: httpx.Request) -> httpx.Response:
        method = json.loads(request.content)["method"]
        if method in self.delays:
            await asyncio.sleep(self.delays[method])
        return self.handle(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle_async)

    def connection(self, url: str = "https://rpc.test") -> RPCConnection:
        return RPCConnection(url, timeout_seconds=5.0, transport=self.transport())


def make_connector(nodes: Dict[str, FakeNode], opened: Optional[List[RPCConnection]] = None):
    """Pool connector dialing FakeNodes by URL; unknown URLs fail to connect."""

    async def connector(url: str, descriptor: NetworkDescriptor, timeout: float) -> RPCConnection:
        node = nodes.get(url)
        if node is None:
            raise httpx.ConnectError(f"cannot reach {url}")
        connection = await RPCConnection.dial(
            url,
            timeout_seconds=timeout,
            expected_chain_id=descriptor.chain_id,
            transport=node.transport(),
        )
        if opened is not None:
            opened.append(connection)
        return connection

    return connector


def make_registry(
    alpha_endpoints: Tuple[str, ...] = ("https://alpha-1.test", "https://alpha-2.test"),
    beta_endpoints: Tuple[str, ...] = ("https://beta-1.test",),
    **extra: NetworkDescriptor,
) -> NetworkRegistry:
    networks = {
        "Alpha": NetworkDescriptor(
            chain_id=ALPHA_CHAIN_ID,
            name="Alpha",
            rpc_endpoints=alpha_endpoints,
            contract_address=ALPHA_CONTRACT,
            block_time_seconds=0.02,
            gas_limit=3_000_000,
            max_gas_price_wei=1_000_000_000,
            decimals=2,
        ),
        "Beta": NetworkDescriptor(
            chain_id=BETA_CHAIN_ID,
            name="Beta",
            rpc_endpoints=beta_endpoints,
            contract_address=BETA_CONTRACT,
            block_time_seconds=0.02,
            gas_limit=3_000_000,
            max_gas_price_wei=None,
            decimals=0,
        ),
    }
    networks.update(extra)
    return NetworkRegistry(networks)


@pytest.fixture
def sample_eth_address():
    """Valid Ethereum address for testing."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture
def sample_tx_hash():
    """Valid transaction hash for testing."""
    return "0x" + "a" * 64


@pytest.fixture
def registry() -> NetworkRegistry:
    return make_registry()


@pytest.fixture
def nodes() -> Dict[str, FakeNode]:
    """One FakeNode per test endpoint URL."""
    return {
        "https://alpha-1.test": FakeNode(ALPHA_CHAIN_ID),
        "https://alpha-2.test": FakeNode(ALPHA_CHAIN_ID),
        "https://beta-1.test": FakeNode(BETA_CHAIN_ID),
    }


@pytest_asyncio.fixture
async def pool(registry, nodes):
    """Initialized pool over the FakeNodes."""
    connection_pool = ConnectionPool(
        registry,
        dial_timeout_seconds=1.0,
        probe_timeout_seconds=0.5,
        connector=make_connector(nodes),
    )
    await connection_pool.initialize()
    yield connection_pool
    await connection_pool.close_all()
