"""
Local key transaction signer.

A TransactionSigner is bound to exactly one chain ID, verified against a
live node when built with for_chain(); it refuses to sign transactions for
any other chain.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account import Account

from .exceptions import ChainIDMismatchError
from .rpc_client import RPCConnection

logger = logging.getLogger(__name__)


@dataclass
class TransactionRequest:
    """A legacy (gasPrice) contract call to be signed."""
    to_address: str
    data: str
    gas_limit: int
    gas_price: int
    nonce: int
    chain_id: int
    value: int = 0

    def to_tx_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to_address,
            "value": self.value,
            "data": self.data,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price,
            "nonce": self.nonce,
            "chainId": self.chain_id,
        }


@dataclass(frozen=True)
class SignedTransaction:
    raw_transaction: str
    tx_hash: str


def _hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


class TransactionSigner:
    """Signs transactions with a local private key for one chain."""

    def __init__(self, private_key: str, chain_id: int):
        if not private_key:
            raise ValueError("private key is required to sign transactions")
        self._account = Account.from_key(private_key)
        self._chain_id = chain_id

    @classmethod
    async def for_chain(
        cls,
        private_key: str,
        connection: RPCConnection,
        chain_id: int,
    ) -> "TransactionSigner":
        """
        Build a signer after checking the node serves chain_id.

        Raises:
            ChainIDMismatchError: If the node reports another chain ID
        """
        reported = await connection.chain_id()
        if reported != chain_id:
            raise ChainIDMismatchError(
                expected=chain_id, received=reported, operation="create_signer"
            )
        return cls(private_key, chain_id)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def sign(self, request: TransactionRequest) -> SignedTransaction:
        if request.chain_id != self._chain_id:
            raise ChainIDMismatchError(
                expected=self._chain_id, received=request.chain_id, operation="sign"
            )
        signed = self._account.sign_transaction(request.to_tx_dict())
        result = SignedTransaction(
            raw_transaction=_hex(signed.raw_transaction),
            tx_hash=_hex(signed.hash),
        )
        logger.debug(
            f"Signed tx {result.tx_hash} nonce={request.nonce} chain={self._chain_id}"
        )
        return result

    def __repr__(self) -> str:
        return f"TransactionSigner(address={self.address!r}, chain_id={self._chain_id})"


def address_from_key(private_key: Optional[str]) -> Optional[str]:
    """Address controlled by a private key, or None if there is no key."""
    if not private_key:
        return None
    return Account.from_key(private_key).address


__all__ = [
    "TransactionRequest",
    "SignedTransaction",
    "TransactionSigner",
    "address_from_key",
]
