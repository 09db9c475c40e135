"""IDRX contract ABI: calldata encoding, result decoding and event logs.

Selectors and topics are derived with Web3.keccak from the canonical
signatures below; arguments are packed with eth_abi.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_utils import is_address, to_checksum_address
from web3 import Web3

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractFunction:
    """A contract function with its input and output types."""
    name: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[:4])

    def encode_call(self, *args: Any) -> str:
        """Selector plus ABI-encoded arguments, as 0x-prefixed hex."""
        if len(args) != len(self.inputs):
            raise ValueError(
                f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}"
            )
        values = [_normalize_arg(t, a) for t, a in zip(self.inputs, args)]
        return "0x" + (self.selector + encode(list(self.inputs), values)).hex()

    def decode_result(self, data: str | bytes) -> Tuple[Any, ...]:
        raw = _to_bytes(data)
        if not raw and self.outputs:
            raise ValueError(f"{self.name} returned no data")
        values = decode(list(self.outputs), raw)
        return tuple(
            to_checksum_address(v) if t == "address" else v
            for t, v in zip(self.outputs, values)
        )


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class ContractEvent:
    """A contract event; topic[0] is keccak of the canonical signature."""
    name: str
    inputs: Tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @property
    def topic(self) -> str:
        return "0x" + Web3.keccak(text=self.signature).hex().removeprefix("0x")

    def matches(self, log: Dict[str, Any]) -> bool:
        topics = log.get("topics") or []
        return bool(topics) and _normalize_hex(topics[0]) == self.topic

    def decode_log(self, log: Dict[str, Any]) -> Dict[str, Any]:
        """
        Decode indexed fields from topics and the rest from data.

        Raises:
            ValueError: If the log is not this event or cannot be decoded
        """
        if not self.matches(log):
            raise ValueError(f"log is not a {self.name} event")

        topics = [_to_bytes(t) for t in log["topics"][1:]]
        indexed = [i for i in self.inputs if i.indexed]
        if len(topics) != len(indexed):
            raise ValueError(
                f"{self.name} expects {len(indexed)} indexed topics, got {len(topics)}"
            )

        decoded: Dict[str, Any] = {}
        for event_input, topic in zip(indexed, topics):
            (value,) = decode([event_input.type], topic)
            decoded[event_input.name] = value

        plain = [i for i in self.inputs if not i.indexed]
        values = decode([i.type for i in plain], _to_bytes(log.get("data", "0x")))
        for event_input, value in zip(plain, values):
            decoded[event_input.name] = value

        for event_input in self.inputs:
            if event_input.type == "address":
                decoded[event_input.name] = to_checksum_address(decoded[event_input.name])
        return decoded


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value.removeprefix("0x"))


def _normalize_hex(value: str | bytes) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return "0x" + value.lower().removeprefix("0x")


def _normalize_arg(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return to_checksum_address(value)
    return value


def normalize_address(address: str) -> str:
    """Checksummed address; raises ValueError for anything else."""
    if not isinstance(address, str) or not is_address(address):
        raise ValueError(f"invalid address: {address!r}")
    return to_checksum_address(address)


# ============ IDRX functions ============

BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))
TOTAL_SUPPLY = ContractFunction("totalSupply", (), ("uint256",))
NAME = ContractFunction("name", (), ("string",))
SYMBOL = ContractFunction("symbol", (), ("string",))
DECIMALS = ContractFunction("decimals", (), ("uint8",))
TRANSFER = ContractFunction("transfer", ("address", "uint256"), ("bool",))
MINT = ContractFunction("mint", ("address", "uint256"))
BURN = ContractFunction("burn", ("uint256",))
BURN_WITH_ACCOUNT_NUMBER = ContractFunction("burnWithAccountNumber", ("uint256", "string"))
# burnBridge(amount, toChainId)
BURN_BRIDGE = ContractFunction("burnBridge", ("uint256", "uint256"))
# mintBridge(to, amount, fromChainId, bridgeNonce)
MINT_BRIDGE = ContractFunction("mintBridge", ("address", "uint256", "uint256", "uint256"))
BRIDGE_NONCE = ContractFunction("bridgeNonce", (), ("uint256",))
FROM_CHAIN_NONCE_USED = ContractFunction("fromChainNonceUsed", ("uint256", "uint256"), ("bool",))
GET_BLACKLIST_STATUS = ContractFunction("getBlackListStatus", ("address",), ("bool",))
GET_PLATFORM_FEE_INFO = ContractFunction(
    "getPlatformFeeInfo", (), ("address", "uint64", "uint64")
)

# ============ IDRX events ============

BURN_BRIDGE_EVENT = ContractEvent(
    "BurnBridge",
    (
        EventInput("from", "address", indexed=True),
        EventInput("amount", "uint256"),
        EventInput("toChainId", "uint256"),
        EventInput("bridgeNonce", "uint256"),
        EventInput("platformFee", "uint256"),
        EventInput("timestamp", "uint256"),
    ),
)


# ============ Revert data ============

_ERROR_STRING_SELECTOR = bytes(Web3.keccak(text="Error(string)")[:4])
_PANIC_SELECTOR = bytes(Web3.keccak(text="Panic(uint256)")[:4])

# Custom errors from the OpenZeppelin base contracts IDRX builds on
_CUSTOM_ERRORS: Dict[bytes, Tuple[str, List[str]]] = {
    bytes(Web3.keccak(text=f"{name}({','.join(types)})")[:4]): (name, types)
    for name, types in (
        ("AccessControlUnauthorizedAccount", ["address", "bytes32"]),
        ("OwnableUnauthorizedAccount", ["address"]),
        ("ERC20InsufficientBalance", ["address", "uint256", "uint256"]),
        ("ERC20InvalidReceiver", ["address"]),
        ("EnforcedPause", []),
    )
}

UNAUTHORIZED_MARKERS = (
    "accesscontrol",
    "ownable",
    "unauthorized",
    "minter",
    "not owner",
    "caller is not",
)


def decode_revert_data(data: Any) -> Optional[str]:
    """Human-readable revert reason from raw revert data, if decodable."""
    if isinstance(data, dict):
        data = data.get("data")
    if not isinstance(data, (str, bytes)) or not data:
        return None
    try:
        raw = _to_bytes(data)
    except ValueError:
        return str(data)
    if len(raw) < 4:
        return None

    selector, payload = raw[:4], raw[4:]
    try:
        if selector == _ERROR_STRING_SELECTOR:
            (reason,) = decode(["string"], payload)
            return reason
        if selector == _PANIC_SELECTOR:
            (code,) = decode(["uint256"], payload)
            return f"Panic(0x{code:02x})"
        if selector in _CUSTOM_ERRORS:
            name, types = _CUSTOM_ERRORS[selector]
            values = decode(types, payload) if types else ()
            args = ", ".join(
                v.hex() if isinstance(v, bytes) else str(v) for v in values
            )
            return f"{name}({args})"
    except Exception as e:
        logger.debug(f"Could not decode revert data {raw.hex()}: {e}")
        return None
    return f"custom error 0x{selector.hex()}"


def is_unauthorized_reason(reason: Optional[str]) -> bool:
    """True if a revert reason indicates a missing role or ownership."""
    if not reason:
        return False
    lowered = reason.lower()
    return any(marker in lowered for marker in UNAUTHORIZED_MARKERS)


def decode_event(log: Dict[str, Any], event: ContractEvent) -> Dict[str, Any]:
    """Decode one log as the given event."""
    return event.decode_log(log)


def find_events(
    logs: Sequence[Dict[str, Any]],
    event: ContractEvent,
    address: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Logs in a receipt matching an event (and emitter address, if given)."""
    emitter = address.lower() if address else None
    return [
        log
        for log in logs
        if event.matches(log)
        and (emitter is None or str(log.get("address", "")).lower() == emitter)
    ]


__all__ = [
    "ContractFunction",
    "ContractEvent",
    "EventInput",
    "BALANCE_OF",
    "TOTAL_SUPPLY",
    "NAME",
    "SYMBOL",
    "DECIMALS",
    "TRANSFER",
    "MINT",
    "BURN",
    "BURN_WITH_ACCOUNT_NUMBER",
    "BURN_BRIDGE",
    "MINT_BRIDGE",
    "BRIDGE_NONCE",
    "FROM_CHAIN_NONCE_USED",
    "GET_BLACKLIST_STATUS",
    "GET_PLATFORM_FEE_INFO",
    "BURN_BRIDGE_EVENT",
    "decode_event",
    "decode_revert_data",
    "is_unauthorized_reason",
    "find_events",
    "normalize_address",
]
