"""Seller-side agent: owns listings and its pricing thresholds."""

from __future__ import annotations

import logging
import time
from typing import Any

from agentmarket.agents.base import onboard_agent
from agentmarket.market.models import AgentRole, Listing, ListingStatus, OfferDecision, Policy, to_money
from agentmarket.market.offers import evaluate_offer
from agentmarket.market.store import MarketStore
from agentmarket.protocol.errors import (
    AgentNotFoundError,
    AuthError,
    InvalidPriceError,
    ListingNotFoundError,
    ListingUnavailableError,
)

logger = logging.getLogger(__name__)


class SellerAgent:
    """Lists items and answers offers.

    Usage:
        seller = await SellerAgent.onboard(store)
        listing = await seller.create_listing("Trail shoes", price="120", category="shoes")
        seller.handle_offer(listing, "100")   # -> OfferDecision.COUNTER
    """

    def __init__(self, agent_id: str, store: MarketStore) -> None:
        self.agent_id = agent_id
        self._store = store

    @classmethod
    async def onboard(
        cls,
        store: MarketStore,
        policy: Policy | None = None,
        agent_id: str | None = None,
    ) -> SellerAgent:
        agent = await onboard_agent(store, AgentRole.SELLER, policy, agent_id)
        return cls(agent.id, store)

    async def create_listing(
        self,
        title: str,
        price: Any,
        description: str = "",
        category: str = "",
        tags: list[str] | None = None,
    ) -> Listing:
        amount = to_money(price)
        if amount <= 0:
            raise InvalidPriceError(f"Listing price must be positive, got {amount}")
        listing = Listing(
            title=title,
            description=description,
            category=category,
            tags=tags or [],
            price=amount,
            seller_agent_id=self.agent_id,
        )
        await self._store.create_listing(listing)
        logger.info("Seller %s listed %s (%s) at %s", self.agent_id, listing.id, title, amount)
        return listing

    async def update_price(self, listing_id: str, new_price: Any) -> Listing:
        amount = to_money(new_price)
        if amount <= 0:
            raise InvalidPriceError(f"Listing price must be positive, got {amount}")

        async with self._store.transaction() as s:
            listing = await s.get_listing(listing_id)
            if listing is None:
                raise ListingNotFoundError(f"Listing {listing_id} not found", data={"listingId": listing_id})
            if listing.seller_agent_id != self.agent_id:
                raise AuthError("Only the seller may reprice a listing", data={"listingId": listing_id})
            if listing.status != ListingStatus.AVAILABLE:
                raise ListingUnavailableError(
                    f"Listing {listing_id} is {listing.status.value}",
                    data={"listingId": listing_id, "status": listing.status.value},
                )
            listing.price = amount
            await s.update_listing(listing)

        logger.info("Listing %s repriced to %s", listing_id, amount)
        return listing

    async def set_policy(
        self,
        max_transaction_value: Any,
        daily_spending_limit: Any,
        approved_counterparties: list[str] | None = None,
    ) -> Policy:
        async with self._store.transaction() as s:
            agent = await s.get_agent(self.agent_id)
            if agent is None:
                raise AgentNotFoundError(f"Agent {self.agent_id} not found")
            agent.policy = agent.policy.model_copy(update={
                "max_transaction_value": to_money(max_transaction_value),
                "daily_spending_limit": to_money(daily_spending_limit),
                "approved_counterparties": list(approved_counterparties or []),
            })
            agent.last_activity = time.time()
            await s.update_agent(agent)

        logger.info(
            "Policy for %s: max %s per purchase, %s per day",
            self.agent_id, agent.policy.max_transaction_value, agent.policy.daily_spending_limit,
        )
        return agent.policy

    def handle_offer(self, listing: Listing, offer_price: Any) -> OfferDecision:
        decision = evaluate_offer(listing.price, offer_price)
        logger.info("Offer of %s on %s: %s", offer_price, listing.id, decision.value)
        return decision

    async def listings(self) -> list[Listing]:
        return [x for x in await self._store.list_listings() if x.seller_agent_id == self.agent_id]
