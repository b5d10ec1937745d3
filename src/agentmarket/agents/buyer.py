"""Buyer-side agent: searches and negotiates through the protocol client.

Every state-changing call carries a proof signed with the buyer's wallet
key, so the buyer must be onboarded on the node it talks to.
"""

from __future__ import annotations

import logging
from typing import Any

from agentmarket.agents.base import onboard_agent
from agentmarket.market.models import AgentRole, Policy
from agentmarket.market.store import MarketStore
from agentmarket.protocol.client import A2AClient
from agentmarket.protocol.envelope import Method

logger = logging.getLogger(__name__)


class BuyerAgent:
    def __init__(self, agent_id: str, client: A2AClient, policy_hash: str = "") -> None:
        self.agent_id = agent_id
        self._client = client
        self._policy_hash = policy_hash

    @classmethod
    async def onboard(
        cls,
        store: MarketStore,
        client: A2AClient,
        policy: Policy | None = None,
        agent_id: str | None = None,
    ) -> BuyerAgent:
        agent = await onboard_agent(store, AgentRole.BUYER, policy, agent_id)
        return cls(agent.id, client, agent.policy.policy_hash())

    async def _signed(self, method: Method, params: dict[str, Any]) -> Any:
        return await self._client.call(method, params, agent_id=self.agent_id, policy_hash=self._policy_hash)

    async def search(
        self,
        query: str,
        max_results: int | None = None,
        price_range: tuple[Any, Any] | None = None,
        category: str | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"query": query}
        if max_results is not None:
            params["maxResults"] = max_results
        if price_range is not None:
            params["priceRange"] = {"min": str(price_range[0]), "max": str(price_range[1])}
        if category:
            params["category"] = category
        results = await self._client.call(Method.SEARCH, params)
        logger.info("Buyer %s found %d listings for %r", self.agent_id, len(results), query)
        return results

    async def make_offer(self, listing_id: str, offer_price: Any) -> dict[str, Any]:
        return await self._signed(Method.OFFER, {"listingId": listing_id, "offerPrice": str(offer_price)})

    async def counter(self, offer_id: str, counter_price: Any) -> dict[str, Any]:
        return await self._signed(Method.COUNTER, {"offerId": offer_id, "counterPrice": str(counter_price)})

    async def accept(self, offer_id: str | None = None, listing_id: str | None = None) -> dict[str, Any]:
        """Accept an offer at its agreed price, or buy *listing_id* at list price."""
        if offer_id is None and listing_id is None:
            raise ValueError("accept needs an offer_id or a listing_id")
        params = {"offerId": offer_id} if offer_id is not None else {"listingId": listing_id}
        receipt = await self._signed(Method.ACCEPT, params)
        logger.info("Buyer %s purchase %s is %s", self.agent_id, receipt["transactionId"], receipt["status"])
        return receipt

    async def reject(self, offer_id: str) -> dict[str, Any]:
        return await self._signed(Method.REJECT, {"offerId": offer_id})
