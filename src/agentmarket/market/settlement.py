"""Settlement collaborator — executes (possibly cross-chain) transfers.

A provider answers ``execute_transfer`` synchronously with SUCCESS/FAILED
plus a settlement reference, and later reports terminal status either via
the webhook (``POST /webhooks/settlement``) or when polled through
``lookup``.  Transfers carry our transaction id as ``reference`` so a
provider can deduplicate retries and so rows orphaned by a crash can be
found again.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from agentmarket.market.models import TransactionStatus

logger = logging.getLogger(__name__)

WEBHOOK_SIGNATURE_HEADER = "X-Settlement-Signature"


class SettlementOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SettlementResult(BaseModel):
    """Synchronous answer to ``execute_transfer``."""

    model_config = ConfigDict(populate_by_name=True)

    status: SettlementOutcome
    settlement_ref: str | None = Field(default=None, alias="settlementRef")
    transfer_status: TransactionStatus = Field(default=TransactionStatus.PENDING, alias="transferStatus")
    explorer_url: str = Field(default="", alias="explorerUrl")
    error: str = ""


class SettlementUpdate(BaseModel):
    """Status notification for a previously issued transfer."""

    model_config = ConfigDict(populate_by_name=True)

    settlement_ref: str = Field(alias="settlementRef")
    status: TransactionStatus
    reference: str | None = None
    explorer_url: str = Field(default="", alias="explorerUrl")
    error: str = ""
    timestamp: float = Field(default_factory=time.time)


def sign_webhook(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of a webhook body, sent in ``X-Settlement-Signature``."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook(secret: str, body: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_webhook(secret, body).encode(), signature.encode())


class SettlementProvider(ABC):
    @abstractmethod
    async def execute_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        asset: str,
        destination_chain: int,
        source_chain: int,
        reference: str,
    ) -> SettlementResult:
        pass

    @abstractmethod
    async def lookup(self, reference: str) -> SettlementUpdate | None:
        """Current status of the transfer issued for *reference*, if any."""

    async def aclose(self) -> None:
        return None


# ── HTTP provider ────────────────────────────────────────────────────────────

class HttpSettlementProvider(SettlementProvider):
    """Talks to a bridge/settlement REST API.

    ``POST {base_url}/transfers`` issues a transfer,
    ``GET {base_url}/transfers?reference=...`` looks one up.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    async def execute_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        asset: str,
        destination_chain: int,
        source_chain: int,
        reference: str,
    ) -> SettlementResult:
        body = {
            "from": from_address,
            "to": to_address,
            "amount": str(amount),
            "asset": asset,
            "sourceChain": source_chain,
            "destinationChain": destination_chain,
            "reference": reference,
        }
        logger.info("Issuing transfer %s: %s %s -> chain %s", reference, amount, asset, destination_chain)
        resp = await self._client.post("/transfers", json=body, headers={"Idempotency-Key": reference})
        if resp.status_code in (400, 402, 409, 422):
            return SettlementResult(status=SettlementOutcome.FAILED, error=resp.text[:500])
        resp.raise_for_status()
        return SettlementResult.model_validate(resp.json())

    async def lookup(self, reference: str) -> SettlementUpdate | None:
        resp = await self._client.get("/transfers", params={"reference": reference})
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return SettlementUpdate.model_validate(resp.json())

    async def aclose(self) -> None:
        await self._client.aclose()


# ── Simulated provider ───────────────────────────────────────────────────────

class SimulatedSettlementProvider(SettlementProvider):
    """In-memory provider for local runs and tests.

    Transfers are accepted as PENDING (or CONFIRMED with
    ``confirm_immediately``) and finalised later with :meth:`settle`.
    """

    def __init__(
        self,
        explorer_base: str = "https://explorer.local/tx/",
        confirm_immediately: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.explorer_base = explorer_base
        self.confirm_immediately = confirm_immediately
        self.delay = delay
        self.fail_with: str | None = None             # next transfers answer FAILED
        self.raise_with: Exception | None = None      # next transfers raise
        self.transfers: dict[str, dict[str, Any]] = {}
        self._by_reference: dict[str, str] = {}

    async def execute_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        asset: str,
        destination_chain: int,
        source_chain: int,
        reference: str,
    ) -> SettlementResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raise_with is not None:
            raise self.raise_with
        if self.fail_with is not None:
            return SettlementResult(status=SettlementOutcome.FAILED, error=self.fail_with)

        existing = self._by_reference.get(reference)
        if existing:
            t = self.transfers[existing]
            return SettlementResult(
                status=SettlementOutcome.SUCCESS,
                settlement_ref=existing,
                transfer_status=t["status"],
                explorer_url=t["explorer_url"],
            )

        ref = "0x" + hashlib.sha256(f"{reference}:{time.time_ns()}".encode()).hexdigest()
        status = TransactionStatus.CONFIRMED if self.confirm_immediately else TransactionStatus.PENDING
        self.transfers[ref] = {
            "from": from_address,
            "to": to_address,
            "amount": amount,
            "asset": asset,
            "source_chain": source_chain,
            "destination_chain": destination_chain,
            "reference": reference,
            "status": status,
            "explorer_url": f"{self.explorer_base}{ref}",
            "error": "",
        }
        self._by_reference[reference] = ref
        return SettlementResult(
            status=SettlementOutcome.SUCCESS,
            settlement_ref=ref,
            transfer_status=status,
            explorer_url=f"{self.explorer_base}{ref}",
        )

    def settle(self, settlement_ref: str, status: TransactionStatus, error: str = "") -> SettlementUpdate:
        """Finalise a transfer and return the notification a webhook would carry."""
        t = self.transfers[settlement_ref]
        t["status"] = status
        t["error"] = error
        return SettlementUpdate(
            settlement_ref=settlement_ref,
            status=status,
            reference=t["reference"],
            explorer_url=t["explorer_url"],
            error=error,
        )

    async def lookup(self, reference: str) -> SettlementUpdate | None:
        ref = self._by_reference.get(reference)
        if ref is None:
            return None
        t = self.transfers[ref]
        return SettlementUpdate(
            settlement_ref=ref,
            status=t["status"],
            reference=reference,
            explorer_url=t["explorer_url"],
            error=t["error"],
        )
