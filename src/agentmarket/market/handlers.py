"""Handlers for the ``marketplace.*`` methods.

Negotiation is a small per-offer state machine:

    offer ──▶ OPEN (decision ACCEPT | COUNTER | REJECT)
    counter ──▶ OPEN, next round, re-evaluated
    accept ──▶ purchase at the agreed price ──▶ ACCEPTED / COMPLETED
    reject ──▶ REJECTED

Only the buyer who made an offer may counter, accept or reject it.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any

from agentmarket.market.models import (
    Listing,
    ListingStatus,
    Offer,
    OfferDecision,
    OfferStatus,
    TransactionStatus,
    to_money,
)
from agentmarket.market.offers import counter_price, evaluate_offer
from agentmarket.market.orchestrator import PurchaseOrchestrator
from agentmarket.market.store import MarketStore, StoreSession
from agentmarket.protocol.dispatcher import Dispatcher, HandlerContext
from agentmarket.protocol.envelope import Method
from agentmarket.protocol.errors import (
    AgentNotFoundError,
    AuthError,
    InvalidParamsError,
    InvalidPriceError,
    ListingNotFoundError,
    ListingUnavailableError,
    OfferNotFoundError,
    OfferRejectedError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10
MAX_RESULTS_CAP = 100
MAX_ROUNDS = 5


# ── Param helpers ────────────────────────────────────────────────────────────

def _require_str(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidParamsError(f"{key} is required", data={"param": key})
    return value


def _price(params: dict[str, Any], key: str) -> Decimal:
    if key not in params:
        raise InvalidParamsError(f"{key} is required", data={"param": key})
    try:
        value = to_money(params[key])
    except (TypeError, ValueError, InvalidOperation):
        raise InvalidParamsError(f"{key} must be a number", data={"param": key}) from None
    if not value.is_finite() or value <= 0:
        raise InvalidPriceError(f"{key} must be positive", data={"param": key, "value": str(params[key])})
    return value


def _actor(params: dict[str, Any], ctx: HandlerContext) -> str:
    return ctx.agent_id or _require_str(params, "agentId")


def _score(listing: Listing, terms: list[str]) -> int:
    title = listing.title.lower()
    description = listing.description.lower()
    category = listing.category.lower()
    tags = [t.lower() for t in listing.tags]
    score = 0
    for term in terms:
        if term in title:
            score += 3
        if term in category or any(term in t for t in tags):
            score += 2
        if term in description:
            score += 1
    return score


class MarketplaceHandlers:
    def __init__(self, store: MarketStore, orchestrator: PurchaseOrchestrator) -> None:
        self._store = store
        self._orchestrator = orchestrator

    # ── search ───────────────────────────────────────────────────────────

    async def search(self, params: dict[str, Any], ctx: HandlerContext) -> list[dict[str, Any]]:
        """Keyword search over available listings, best matches first."""
        query = params.get("query") or ""
        if not isinstance(query, str):
            raise InvalidParamsError("query must be a string", data={"param": "query"})

        max_results = params.get("maxResults")
        if max_results is None:
            max_results = DEFAULT_MAX_RESULTS
        try:
            if isinstance(max_results, bool):
                raise TypeError(max_results)
            max_results = int(max_results)
        except (TypeError, ValueError, OverflowError):
            raise InvalidParamsError("maxResults must be an integer", data={"param": "maxResults"}) from None
        if max_results < 1:
            raise InvalidParamsError("maxResults must be at least 1", data={"param": "maxResults"})
        max_results = min(max_results, MAX_RESULTS_CAP)

        low = high = None
        price_range = params.get("priceRange")
        if price_range is not None:
            if not isinstance(price_range, dict):
                raise InvalidParamsError("priceRange must be an object", data={"param": "priceRange"})
            try:
                if price_range.get("min") is not None:
                    low = to_money(price_range["min"])
                if price_range.get("max") is not None:
                    high = to_money(price_range["max"])
            except (TypeError, ValueError, InvalidOperation):
                raise InvalidParamsError("priceRange bounds must be numbers", data={"param": "priceRange"}) from None

        category = params.get("category")

        async with self._store.transaction(write=False) as s:
            listings = await s.list_listings(ListingStatus.AVAILABLE)

        terms = query.lower().split()
        scored: list[tuple[int, Listing]] = []
        for listing in listings:
            if category and listing.category.lower() != str(category).lower():
                continue
            if low is not None and listing.price < low:
                continue
            if high is not None and listing.price > high:
                continue
            score = _score(listing, terms) if terms else 0
            if terms and score == 0:
                continue
            scored.append((score, listing))

        scored.sort(key=lambda pair: (-pair[0], -pair[1].created_at))
        results = [{**listing.summary(), "score": score} for score, listing in scored[:max_results]]
        logger.info("Search %r returned %d of %d listings", query, len(results), len(scored))
        return results

    # ── offer ────────────────────────────────────────────────────────────

    async def offer(self, params: dict[str, Any], ctx: HandlerContext) -> dict[str, Any]:
        buyer_id = _actor(params, ctx)
        listing_id = _require_str(params, "listingId")
        price = _price(params, "offerPrice")

        async with self._store.transaction() as s:
            if await s.get_agent(buyer_id) is None:
                raise AgentNotFoundError(f"Agent {buyer_id} not found")
            listing = await self._open_listing(s, listing_id)
            if listing.seller_agent_id == buyer_id:
                raise InvalidParamsError("Agents cannot bid on their own listings")

            decision = evaluate_offer(listing.price, params["offerPrice"])
            offer = Offer(
                listing_id=listing.id,
                buyer_agent_id=buyer_id,
                seller_agent_id=listing.seller_agent_id,
                price=price,
                decision=decision,
                counter_price=counter_price(listing.price) if decision == OfferDecision.COUNTER else None,
            )
            await s.insert_offer(offer)

        logger.info("Offer %s on %s at %s: %s", offer.id, listing_id, price, decision.value)
        return offer.to_result()

    # ── counter ──────────────────────────────────────────────────────────

    async def counter(self, params: dict[str, Any], ctx: HandlerContext) -> dict[str, Any]:
        buyer_id = _actor(params, ctx)
        offer_id = _require_str(params, "offerId")
        price = _price(params, "counterPrice")

        async with self._store.transaction() as s:
            offer = await self._own_open_offer(s, offer_id, buyer_id)
            listing = await self._open_listing(s, offer.listing_id)

            exhausted = offer.round >= MAX_ROUNDS
            if exhausted:
                offer.status = OfferStatus.REJECTED
            else:
                offer.price = price
                offer.decision = evaluate_offer(listing.price, params["counterPrice"])
                offer.counter_price = (
                    counter_price(listing.price) if offer.decision == OfferDecision.COUNTER else None
                )
                offer.round += 1
            offer.updated_at = time.time()
            await s.update_offer(offer)

        if exhausted:
            raise OfferRejectedError(
                f"Negotiation ended after {MAX_ROUNDS} rounds",
                data={"offerId": offer.id, "round": offer.round},
            )
        logger.info("Offer %s round %d at %s: %s", offer.id, offer.round, price, offer.decision.value)
        return offer.to_result()

    # ── accept ───────────────────────────────────────────────────────────

    async def accept(self, params: dict[str, Any], ctx: HandlerContext) -> dict[str, Any]:
        """Buy at the agreed offer price, or at list price given only a listingId."""
        buyer_id = _actor(params, ctx)
        offer_id = params.get("offerId")
        asset = params.get("asset")
        if asset is not None and not isinstance(asset, str):
            raise InvalidParamsError("asset must be a string", data={"param": "asset"})
        destination_chain = params.get("destinationChain")
        if destination_chain is not None and (
            isinstance(destination_chain, bool) or not isinstance(destination_chain, int)
        ):
            raise InvalidParamsError("destinationChain must be an integer", data={"param": "destinationChain"})

        if not offer_id:
            listing_id = _require_str(params, "listingId")
            receipt = await self._orchestrator.purchase(
                buyer_id, listing_id,
                asset=asset, destination_chain=destination_chain, correlation_id=ctx.correlation_id,
            )
            return receipt.to_result()

        async with self._store.transaction(write=False) as s:
            offer = await self._own_open_offer(s, str(offer_id), buyer_id)
        agreed = offer.agreed_price
        if agreed is None:
            raise OfferRejectedError(
                "Offer was rejected by the seller; counter with a higher price",
                data={"offerId": offer.id, "price": str(offer.price)},
            )

        receipt = await self._orchestrator.purchase(
            buyer_id, offer.listing_id, amount=agreed,
            asset=asset, destination_chain=destination_chain, correlation_id=ctx.correlation_id,
        )

        async with self._store.transaction() as s:
            offer.status = (
                OfferStatus.COMPLETED if receipt.status == TransactionStatus.CONFIRMED else OfferStatus.ACCEPTED
            )
            offer.updated_at = time.time()
            await s.update_offer(offer)

        return {**receipt.to_result(), "offerId": offer.id}

    # ── reject ───────────────────────────────────────────────────────────

    async def reject(self, params: dict[str, Any], ctx: HandlerContext) -> dict[str, Any]:
        buyer_id = _actor(params, ctx)
        offer_id = _require_str(params, "offerId")

        async with self._store.transaction() as s:
            offer = await self._own_open_offer(s, offer_id, buyer_id)
            offer.status = OfferStatus.REJECTED
            offer.updated_at = time.time()
            await s.update_offer(offer)

        logger.info("Offer %s withdrawn by %s", offer.id, buyer_id)
        return offer.to_result()

    # ── helpers ──────────────────────────────────────────────────────────

    @staticmethod
    async def _open_listing(s: StoreSession, listing_id: str) -> Listing:
        listing = await s.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found", data={"listingId": listing_id})
        if listing.status != ListingStatus.AVAILABLE:
            raise ListingUnavailableError(
                f"Listing {listing_id} is not available",
                data={"listingId": listing_id, "status": listing.status.value},
            )
        return listing

    @staticmethod
    async def _own_open_offer(s: StoreSession, offer_id: str, buyer_id: str) -> Offer:
        offer = await s.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(f"Offer {offer_id} not found", data={"offerId": offer_id})
        if offer.buyer_agent_id != buyer_id:
            raise AuthError("Only the buyer who made an offer may act on it", data={"offerId": offer_id})
        if offer.status != OfferStatus.OPEN:
            raise InvalidParamsError(
                f"Offer {offer_id} is {offer.status.value}",
                data={"offerId": offer_id, "status": offer.status.value},
            )
        return offer


def register_marketplace_handlers(
    dispatcher: Dispatcher,
    store: MarketStore,
    orchestrator: PurchaseOrchestrator,
) -> MarketplaceHandlers:
    handlers = MarketplaceHandlers(store, orchestrator)
    dispatcher.register_handler(Method.SEARCH, handlers.search)
    dispatcher.register_handler(Method.OFFER, handlers.offer)
    dispatcher.register_handler(Method.COUNTER, handlers.counter)
    dispatcher.register_handler(Method.ACCEPT, handlers.accept)
    dispatcher.register_handler(Method.REJECT, handlers.reject)
    return handlers
