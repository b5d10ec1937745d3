"""Wallet / signing collaborator.

The orchestrator and the proof authenticator only talk to the abstract
:class:`WalletService`.  :class:`LocalWalletService` is a development
signer: every agent gets a deterministic secp256k1 key derived from a
process seed, so addresses survive restarts without a key store.

Proofs on requests are EIP-191 personal-sign signatures over a canonical
text; purchase intents are EIP-712 typed-data signatures.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PURCHASE_DOMAIN = {"name": "AgentMarketplace", "version": "1"}
PURCHASE_TYPES = {
    "Purchase": [
        {"name": "listingId", "type": "string"},
        {"name": "buyer", "type": "address"},
        {"name": "amount", "type": "uint256"},
        {"name": "timestamp", "type": "uint256"},
    ],
}


class TypedDataRequest(BaseModel):
    """EIP-712 payload to be signed on behalf of *agent_id*."""

    agent_id: str
    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    value: dict[str, Any] = Field(default_factory=dict)


class WalletService(ABC):
    @abstractmethod
    async def get_address(self, agent_id: str) -> str:
        pass

    @abstractmethod
    async def get_signer_id(self, agent_id: str) -> str:
        pass

    @abstractmethod
    async def sign_typed_data(self, request: TypedDataRequest) -> str:
        pass

    @abstractmethod
    async def sign_message(self, agent_id: str, message: str) -> str:
        pass

    @abstractmethod
    async def verify_signature(self, agent_id: str, signature: str, message: str) -> bool:
        pass


def _signature_bytes(signature: str) -> bytes:
    return bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)


class LocalWalletService(WalletService):
    """Seed-derived signer for development, tests and single-host setups."""

    def __init__(self, seed: str) -> None:
        if not seed:
            raise ValueError("LocalWalletService needs a non-empty seed")
        self._seed = seed
        self._accounts: dict[str, Any] = {}

    def _account(self, agent_id: str):
        acct = self._accounts.get(agent_id)
        if acct is None:
            key = hashlib.sha256(f"{self._seed}:{agent_id}".encode()).digest()
            acct = Account.from_key(key)
            self._accounts[agent_id] = acct
        return acct

    async def get_address(self, agent_id: str) -> str:
        return self._account(agent_id).address

    async def get_signer_id(self, agent_id: str) -> str:
        return f"local:{self._account(agent_id).address.lower()}"

    async def sign_typed_data(self, request: TypedDataRequest) -> str:
        acct = self._account(request.agent_id)
        signed = acct.sign_typed_data(request.domain, request.types, request.value)
        logger.debug("Signed typed data for agent %s", request.agent_id)
        return "0x" + bytes(signed.signature).hex()

    async def sign_message(self, agent_id: str, message: str) -> str:
        signed = self._account(agent_id).sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()

    async def verify_signature(self, agent_id: str, signature: str, message: str) -> bool:
        expected = self._account(agent_id).address
        try:
            recovered = Account.recover_message(
                encode_defunct(text=message), signature=_signature_bytes(signature)
            )
        except Exception as exc:  # noqa: BLE001 - any decode/recover failure means "not this signer"
            logger.debug("Signature for %s did not recover: %s", agent_id, exc)
            return False
        return recovered == expected

    async def verify_typed_data(self, request: TypedDataRequest, signature: str) -> bool:
        expected = self._account(request.agent_id).address
        try:
            signable = encode_typed_data(request.domain, request.types, request.value)
            recovered = Account.recover_message(signable, signature=_signature_bytes(signature))
        except Exception as exc:  # noqa: BLE001
            logger.debug("Typed-data signature for %s did not recover: %s", request.agent_id, exc)
            return False
        return recovered == expected
