"""
Tests for idrx_chain.abi.

Tests cover:
- Calldata encoding for IDRX functions
- Result decoding
- BurnBridge event matching and decoding
- Revert data decoding and role-failure detection
"""
from __future__ import annotations

import pytest
from eth_abi import encode
from web3 import Web3

from idrx_chain import abi

from conftest import ALPHA_CONTRACT, abi_result, revert_data

SENDER = "0x1234567890123456789012345678901234567890"


def burn_bridge_log(
    nonce: int,
    to_chain: int = 137,
    amount: int = 1000,
    address: str = ALPHA_CONTRACT,
    sender: str = SENDER,
) -> dict:
    """A BurnBridge log as it appears in a receipt."""
    return {
        "address": address.lower(),
        "topics": [
            abi.BURN_BRIDGE_EVENT.topic,
            "0x" + encode(["address"], [sender]).hex(),
        ],
        "data": "0x" + encode(
            ["uint256"] * 5, [amount, to_chain, nonce, 5, 1_700_000_000]
        ).hex(),
    }


class TestContractFunction:
    """Tests for ContractFunction encoding."""

    def test_selector(self):
        """Selectors are the first four bytes of keccak(signature)."""
        assert abi.BALANCE_OF.selector.hex() == "70a08231"
        assert abi.TRANSFER.selector.hex() == "a9059cbb"

    def test_encode_call(self):
        """Should pack selector and arguments."""
        data = abi.BALANCE_OF.encode_call(SENDER)
        assert data.startswith("0x70a08231")
        assert data.endswith(SENDER[2:].lower())
        assert len(data) == 2 + 8 + 64

    def test_encode_wrong_arity(self):
        """Should refuse a wrong number of arguments."""
        with pytest.raises(ValueError):
            abi.TRANSFER.encode_call(SENDER)

    def test_encode_string_argument(self):
        """Dynamic arguments should round through eth_abi."""
        data = abi.BURN_WITH_ACCOUNT_NUMBER.encode_call(500, "1234567890")
        assert data.startswith("0x" + abi.BURN_WITH_ACCOUNT_NUMBER.selector.hex())

    def test_decode_result(self):
        """Should decode return data into a tuple."""
        assert abi.BALANCE_OF.decode_result(abi_result(["uint256"], [15025])) == (15025,)

    def test_decode_address_checksummed(self):
        """Returned addresses should be checksummed."""
        raw = abi_result(["address", "uint64", "uint64"], [SENDER, 10, 20])
        recipient, burn_fee, mint_fee = abi.GET_PLATFORM_FEE_INFO.decode_result(raw)
        assert recipient == Web3.to_checksum_address(SENDER)
        assert (burn_fee, mint_fee) == (10, 20)

    def test_decode_empty_result(self):
        """Empty return data for a function with outputs is an error."""
        with pytest.raises(ValueError):
            abi.TOTAL_SUPPLY.decode_result("0x")


class TestBurnBridgeEvent:
    """Tests for BurnBridge event decoding."""

    def test_topic(self):
        """topic[0] is keccak of the canonical signature."""
        expected = Web3.keccak(
            text="BurnBridge(address,uint256,uint256,uint256,uint256,uint256)"
        ).hex()
        assert abi.BURN_BRIDGE_EVENT.topic == "0x" + expected.removeprefix("0x")

    def test_decode(self):
        """Should decode indexed and non-indexed fields."""
        event = abi.decode_event(burn_bridge_log(nonce=77), abi.BURN_BRIDGE_EVENT)
        assert event["bridgeNonce"] == 77
        assert event["toChainId"] == 137
        assert event["amount"] == 1000
        assert event["from"] == Web3.to_checksum_address(SENDER)

    def test_decode_wrong_event(self):
        """A log with another topic is rejected."""
        log = burn_bridge_log(nonce=1)
        log["topics"][0] = "0x" + "00" * 32
        with pytest.raises(ValueError):
            abi.decode_event(log, abi.BURN_BRIDGE_EVENT)

    def test_decode_missing_indexed_topic(self):
        """A log with too few topics is rejected."""
        log = burn_bridge_log(nonce=1)
        log["topics"] = log["topics"][:1]
        with pytest.raises(ValueError):
            abi.decode_event(log, abi.BURN_BRIDGE_EVENT)

    def test_find_events_filters_emitter(self):
        """Only logs from the given contract should match."""
        logs = [
            burn_bridge_log(nonce=1),
            burn_bridge_log(nonce=2, address="0x" + "99" * 20),
            {"address": ALPHA_CONTRACT, "topics": ["0x" + "11" * 32], "data": "0x"},
        ]
        found = abi.find_events(logs, abi.BURN_BRIDGE_EVENT, ALPHA_CONTRACT)
        assert len(found) == 1
        assert abi.decode_event(found[0], abi.BURN_BRIDGE_EVENT)["bridgeNonce"] == 1


class TestRevertDecoding:
    """Tests for revert data decoding."""

    def test_error_string(self):
        """Should decode Error(string) payloads."""
        assert abi.decode_revert_data(revert_data("insufficient balance")) == "insufficient balance"

    def test_nested_data(self):
        """Some nodes nest the payload in a dict."""
        assert abi.decode_revert_data({"data": revert_data("paused")}) == "paused"

    def test_custom_error(self):
        """Should name known custom errors."""
        selector = bytes(Web3.keccak(text="OwnableUnauthorizedAccount(address)")[:4])
        data = "0x" + (selector + encode(["address"], [SENDER])).hex()
        reason = abi.decode_revert_data(data)
        assert reason.startswith("OwnableUnauthorizedAccount(")

    def test_unknown_selector(self):
        """Unknown selectors are reported, not dropped."""
        assert abi.decode_revert_data("0x12345678") == "custom error 0x12345678"

    def test_no_data(self):
        """No payload means no reason."""
        assert abi.decode_revert_data(None) is None
        assert abi.decode_revert_data("0x") is None

    @pytest.mark.parametrize(
        "reason",
        [
            "AccessControl: account 0xabc is missing role 0x9f2d",
            "Ownable: caller is not the owner",
            "OwnableUnauthorizedAccount(0xabc)",
            "IDRX: caller is not MINTER",
        ],
    )
    def test_unauthorized_reasons(self, reason):
        """Role and ownership failures are recognized."""
        assert abi.is_unauthorized_reason(reason)

    def test_other_reasons_not_unauthorized(self):
        """Ordinary reverts are not role failures."""
        assert not abi.is_unauthorized_reason("ERC20: transfer amount exceeds balance")
        assert not abi.is_unauthorized_reason(None)


class TestNormalizeAddress:
    """Tests for normalize_address()."""

    def test_checksums(self):
        assert abi.normalize_address(SENDER.lower()) == Web3.to_checksum_address(SENDER)

    @pytest.mark.parametrize("value", ["", "0x123", "not-an-address", None])
    def test_rejects_invalid(self, value):
        """Should raise ValueError for anything that is not a 20-byte hex address."""
        with pytest.raises(ValueError):
            abi.normalize_address(value)
