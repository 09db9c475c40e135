"""Tests for idrx_chain.logging_utils."""
from __future__ import annotations

import logging

import pytest

from idrx_chain.logging_utils import (
    ChainLogger,
    LoggingConfig,
    OperationType,
    mask_address,
)

ADDRESS = "0x1234567890123456789012345678901234567890"


class TestMasking:
    def test_mask_address(self):
        assert mask_address(ADDRESS) == "0x1234...7890"

    def test_short_values_unchanged(self):
        assert mask_address("0x12") == "0x12"


class TestChainLogger:
    """Tests for ChainLogger."""

    @pytest.mark.asyncio
    async def test_operation_context_success(self, caplog):
        """Completed operations are logged with their metadata."""
        chain_logger = ChainLogger("idrx_chain.test")
        with caplog.at_level(logging.DEBUG, logger="idrx_chain.test"):
            async with chain_logger.operation_context(OperationType.BRIDGE, 8453, nonce=1) as ctx:
                ctx.metadata["extra"] = True

        assert ctx.success
        assert ctx.duration_ms is not None
        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.operation["metadata"] == {"nonce": 1, "extra": True}

    @pytest.mark.asyncio
    async def test_operation_context_failure(self, caplog):
        """Exceptions are recorded at error level and re-raised."""
        chain_logger = ChainLogger("idrx_chain.test")
        with caplog.at_level(logging.DEBUG, logger="idrx_chain.test"):
            with pytest.raises(RuntimeError):
                async with chain_logger.operation_context(OperationType.GAS_ESTIMATION, 137) as ctx:
                    raise RuntimeError("boom")

        assert not ctx.success
        assert ctx.error == "boom"
        assert caplog.records[-1].levelno == logging.ERROR

    def test_transaction_metrics(self):
        chain_logger = ChainLogger("idrx_chain.test")
        chain_logger.log_transaction_submitted(
            "0x01", 8453, "transfer", ADDRESS, ADDRESS, nonce=0, gas_limit=1, gas_price_wei=1
        )
        chain_logger.log_transaction_submitted(
            "0x02", 8453, "burn", ADDRESS, ADDRESS, nonce=1, gas_limit=1, gas_price_wei=1
        )
        chain_logger.log_transaction_confirmed("0x01", 8453, block_number=10, gas_used=21000)

        metrics = chain_logger.get_transaction_metrics()
        assert metrics["total_transactions"] == 2
        assert metrics["status_breakdown"] == {"confirmed": 1, "submitted": 1}

    def test_masks_addresses_when_configured(self, caplog):
        chain_logger = ChainLogger("idrx_chain.test", LoggingConfig(mask_addresses=True))
        with caplog.at_level(logging.INFO, logger="idrx_chain.test"):
            chain_logger.log_transaction_submitted(
                "0x01", 8453, "mint", ADDRESS, ADDRESS, nonce=0, gas_limit=1, gas_price_wei=1
            )
        assert caplog.records[-1].transaction["from_address"] == "0x1234...7890"

    def test_bridge_failure_logged_as_error(self, caplog):
        chain_logger = ChainLogger("idrx_chain.test")
        with caplog.at_level(logging.INFO, logger="idrx_chain.test"):
            chain_logger.log_bridge_transition("bridge_1", "minting", "mint_failed")
            chain_logger.log_bridge_transition("bridge_1", "minting", "completed")
        assert [r.levelno for r in caplog.records] == [logging.ERROR, logging.INFO]

    def test_failover_can_be_silenced(self, caplog):
        chain_logger = ChainLogger("idrx_chain.test", LoggingConfig(log_endpoint_health=False))
        with caplog.at_level(logging.DEBUG, logger="idrx_chain.test"):
            chain_logger.log_endpoint_failover(137, "https://a.test", "https://b.test", "timeout")
        assert caplog.records == []
