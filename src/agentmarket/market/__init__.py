"""Marketplace domain: data model, store, collaborators and the purchase saga."""

from agentmarket.market.handlers import MarketplaceHandlers, register_marketplace_handlers
from agentmarket.market.models import (
    Agent,
    AgentRole,
    Listing,
    ListingStatus,
    Offer,
    OfferDecision,
    OfferStatus,
    Policy,
    ProofRecord,
    PurchaseReceipt,
    Transaction,
    TransactionStatus,
)
from agentmarket.market.offers import counter_price, evaluate_offer
from agentmarket.market.orchestrator import PurchaseOrchestrator, ReconciliationReport
from agentmarket.market.policy import SpendingPolicyEngine
from agentmarket.market.settlement import (
    HttpSettlementProvider,
    SettlementProvider,
    SettlementResult,
    SettlementUpdate,
    SimulatedSettlementProvider,
)
from agentmarket.market.store import MarketStore
from agentmarket.market.wallet import LocalWalletService, WalletService

__all__ = [
    "Agent",
    "AgentRole",
    "HttpSettlementProvider",
    "Listing",
    "ListingStatus",
    "LocalWalletService",
    "MarketStore",
    "MarketplaceHandlers",
    "Offer",
    "OfferDecision",
    "OfferStatus",
    "Policy",
    "ProofRecord",
    "PurchaseOrchestrator",
    "PurchaseReceipt",
    "ReconciliationReport",
    "SettlementProvider",
    "SettlementResult",
    "SettlementUpdate",
    "SimulatedSettlementProvider",
    "SpendingPolicyEngine",
    "Transaction",
    "TransactionStatus",
    "WalletService",
    "counter_price",
    "evaluate_offer",
    "register_marketplace_handlers",
]
