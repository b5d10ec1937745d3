"""Marketplace data model — agents, policies, listings, offers, transactions.

Money is held as :class:`~decimal.Decimal` quantised to six fractional
digits so that policy comparisons and offer thresholds are exact.
"""

from __future__ import annotations

import hashlib
import json
import time
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

MONEY_QUANTUM = Decimal("0.000001")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, floats, strings and Decimals to an exact Decimal."""
    if isinstance(value, bool):
        raise TypeError("boolean is not a money amount")
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value)


def to_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANTUM)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


# ── Enums ────────────────────────────────────────────────────────────────────

class AgentRole(str, Enum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    MARKETPLACE = "MARKETPLACE"


class ListingStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    PENDING = "PENDING"
    SOLD = "SOLD"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class OfferDecision(str, Enum):
    ACCEPT = "ACCEPT"
    COUNTER = "COUNTER"
    REJECT = "REJECT"


class OfferStatus(str, Enum):
    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


# ── Agent & policy ───────────────────────────────────────────────────────────

class Policy(BaseModel):
    """Per-agent spending constraints."""

    max_transaction_value: Decimal = Decimal("100")
    daily_spending_limit: Decimal = Decimal("500")
    approved_counterparties: list[str] = Field(default_factory=list)   # empty -> any
    max_gas_price: int = 50_000_000_000                                 # wei (50 gwei)
    allowed_assets: list[str] = Field(default_factory=lambda: ["PYUSD", "USDC", "ETH"])

    def policy_hash(self) -> str:
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return "0x" + hashlib.sha256(canonical.encode()).hexdigest()


class Agent(BaseModel):
    id: str = Field(default_factory=_new_id)
    role: AgentRole
    wallet_address: str | None = None      # provisioned on first authenticated use
    policy: Policy = Field(default_factory=Policy)
    total_transactions: int = 0
    total_volume: Decimal = Decimal("0")
    created_at: float = Field(default_factory=time.time)
    last_activity: float | None = None


# ── Listings & offers ────────────────────────────────────────────────────────

class Listing(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    price: Decimal
    status: ListingStatus = ListingStatus.AVAILABLE
    seller_agent_id: str
    buyer_agent_id: str | None = None
    created_at: float = Field(default_factory=time.time)
    sold_at: float | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "listingId": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "tags": self.tags,
            "price": str(self.price),
            "status": self.status.value,
            "sellerAgentId": self.seller_agent_id,
        }


class Offer(BaseModel):
    id: str = Field(default_factory=_new_id)
    listing_id: str
    buyer_agent_id: str
    seller_agent_id: str
    price: Decimal
    decision: OfferDecision
    counter_price: Decimal | None = None
    status: OfferStatus = OfferStatus.OPEN
    round: int = 1
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @property
    def agreed_price(self) -> Decimal | None:
        """Price both sides have settled on, if any."""
        if self.decision == OfferDecision.ACCEPT:
            return self.price
        if self.decision == OfferDecision.COUNTER:
            return self.counter_price
        return None

    def to_result(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "offerId": self.id,
            "listingId": self.listing_id,
            "decision": self.decision.value,
            "status": self.status.value,
            "price": str(self.price),
            "round": self.round,
        }
        if self.counter_price is not None:
            out["counterPrice"] = str(self.counter_price)
        return out


# ── Transactions & proofs ────────────────────────────────────────────────────

class Transaction(BaseModel):
    id: str = Field(default_factory=_new_id)
    from_agent_id: str
    to_agent_id: str
    listing_id: str
    amount: Decimal
    asset: str = "PYUSD"
    source_chain: int
    destination_chain: int
    status: TransactionStatus = TransactionStatus.PENDING
    settlement_ref: str
    explorer_url: str = ""
    error_message: str = ""
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    confirmed_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ProofRecord(BaseModel):
    """Stored proof-of-intent, linked to the transaction it authorised."""

    id: str = Field(default_factory=_new_id)
    agent_id: str
    kind: str = "PURCHASE"
    signature: str
    signer_id: str
    policy_hash: str
    payload: dict[str, Any] = Field(default_factory=dict)
    issued_at: int                        # ms since epoch
    transaction_id: str | None = None


class PurchaseReceipt(BaseModel):
    transaction_id: str
    listing_id: str
    status: TransactionStatus
    amount: Decimal
    asset: str
    settlement_ref: str
    explorer_url: str = ""
    proof_signature: str = ""

    def to_result(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "listingId": self.listing_id,
            "status": self.status.value,
            "amount": str(self.amount),
            "asset": self.asset,
            "settlementRef": self.settlement_ref,
            "explorerUrl": self.explorer_url,
            "proofSignature": self.proof_signature,
        }
