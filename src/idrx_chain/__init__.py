"""IDRX multi-chain token client and bridge orchestration exports."""

from .amounts import TokenAmount, from_base_units, parse_token_amount, to_base_units
from .bridge import (
    BridgeOperation,
    BridgeOrchestrator,
    BridgeRequest,
    BridgeStatus,
)
from .client import IDRXChainClient
from .config import (
    DEFAULT_DECIMALS,
    ClientSettings,
    NetworkDescriptor,
    NetworkRegistry,
    get_default_registry,
)
from .confirmation import (
    ConfirmationResult,
    TransactionReceipt,
    TransactionStatus,
    TransactionWaiter,
    WaitStatus,
)
from .contract import PendingTransaction, PlatformFeeInfo, TokenContract, TokenInfo
from .exceptions import (
    BridgeBurnError,
    BridgeBurnRevertedError,
    BridgeError,
    BridgeValidationError,
    ChainIDMismatchError,
    ChainNotConnectedError,
    ChainNotSupportedError,
    ConfirmationTimeoutError,
    IDRXChainError,
    InvalidAmountFormatError,
    NoAvailableConnectionError,
    NonceAlreadyUsedError,
    NonceExtractionError,
    PartialBridgeFailure,
    PoolClosedError,
    RPCError,
    TransactionRevertedError,
    UnauthorizedError,
    WaitCancelledError,
)
from .logging_utils import ChainLogger, LoggingConfig, setup_logging
from .pool import ConnectionPool
from .rpc_client import RPCConnection
from .signer import TransactionSigner

__all__ = [
    "TokenAmount",
    "from_base_units",
    "parse_token_amount",
    "to_base_units",
    "BridgeOperation",
    "BridgeOrchestrator",
    "BridgeRequest",
    "BridgeStatus",
    "IDRXChainClient",
    "DEFAULT_DECIMALS",
    "ClientSettings",
    "NetworkDescriptor",
    "NetworkRegistry",
    "get_default_registry",
    "ConfirmationResult",
    "TransactionReceipt",
    "TransactionStatus",
    "TransactionWaiter",
    "WaitStatus",
    "PendingTransaction",
    "PlatformFeeInfo",
    "TokenContract",
    "TokenInfo",
    "BridgeBurnError",
    "BridgeBurnRevertedError",
    "BridgeError",
    "BridgeValidationError",
    "ChainIDMismatchError",
    "ChainNotConnectedError",
    "ChainNotSupportedError",
    "ConfirmationTimeoutError",
    "IDRXChainError",
    "InvalidAmountFormatError",
    "NoAvailableConnectionError",
    "NonceAlreadyUsedError",
    "NonceExtractionError",
    "PartialBridgeFailure",
    "PoolClosedError",
    "RPCError",
    "TransactionRevertedError",
    "UnauthorizedError",
    "WaitCancelledError",
    "ChainLogger",
    "LoggingConfig",
    "setup_logging",
    "ConnectionPool",
    "RPCConnection",
    "TransactionSigner",
]
