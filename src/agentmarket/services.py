"""Wires settings into the store, collaborators, orchestrator and dispatcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agentmarket.audit import AuditLogger
from agentmarket.config import MarketSettings
from agentmarket.market.handlers import MarketplaceHandlers, register_marketplace_handlers
from agentmarket.market.orchestrator import PurchaseOrchestrator
from agentmarket.market.policy import SpendingPolicyEngine
from agentmarket.market.settlement import (
    HttpSettlementProvider,
    SettlementProvider,
    SimulatedSettlementProvider,
)
from agentmarket.market.store import MarketStore
from agentmarket.market.wallet import LocalWalletService, WalletService
from agentmarket.protocol.auth import ProofAuthenticator
from agentmarket.protocol.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


@dataclass
class MarketServices:
    settings: MarketSettings
    store: MarketStore
    wallet: WalletService
    settlement: SettlementProvider
    audit: AuditLogger
    orchestrator: PurchaseOrchestrator
    authenticator: ProofAuthenticator
    dispatcher: Dispatcher
    handlers: MarketplaceHandlers

    async def aclose(self) -> None:
        await self.orchestrator.drain()
        await self.settlement.aclose()


def build_settlement(settings: MarketSettings) -> SettlementProvider:
    if settings.settlement_url:
        logger.info("Using settlement provider at %s", settings.settlement_url)
        return HttpSettlementProvider(
            settings.settlement_url,
            api_key=settings.settlement_api_key,
            timeout=settings.settlement_timeout,
        )
    logger.warning("AGENTMARKET_SETTLEMENT_URL not set; transfers are simulated")
    return SimulatedSettlementProvider()


def build_services(
    settings: MarketSettings | None = None,
    *,
    wallet: WalletService | None = None,
    settlement: SettlementProvider | None = None,
) -> MarketServices:
    settings = settings or MarketSettings.from_env()
    store = MarketStore(settings.db_path)
    wallet = wallet or LocalWalletService(settings.wallet_seed)
    settlement = settlement or build_settlement(settings)
    audit = AuditLogger(settings.audit_log_path)

    orchestrator = PurchaseOrchestrator(
        store,
        wallet,
        settlement,
        policy_engine=SpendingPolicyEngine(),
        audit=audit,
        settlement_timeout=settings.settlement_timeout,
        default_asset=settings.default_asset,
        default_chain=settings.default_chain,
        reconcile_after_seconds=settings.reconcile_after_seconds,
    )
    authenticator = ProofAuthenticator(
        store,
        wallet,
        max_age_seconds=settings.proof_max_age_seconds,
        max_skew_seconds=settings.proof_max_skew_seconds,
        audit=audit,
    )
    dispatcher = Dispatcher(authenticator)
    handlers = register_marketplace_handlers(dispatcher, store, orchestrator)

    return MarketServices(
        settings=settings,
        store=store,
        wallet=wallet,
        settlement=settlement,
        audit=audit,
        orchestrator=orchestrator,
        authenticator=authenticator,
        dispatcher=dispatcher,
        handlers=handlers,
    )
