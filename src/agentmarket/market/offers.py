"""Seller-side offer evaluation.

Pure functions; the thresholds are fractions of the listing price:

    offer >= 90%          -> ACCEPT
    75% <= offer < 90%    -> COUNTER (at 90%)
    offer < 75%           -> REJECT
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from agentmarket.market.models import OfferDecision, to_decimal, to_money

ACCEPT_RATIO = Decimal("0.90")
COUNTER_RATIO = Decimal("0.75")


def evaluate_offer(listing_price: Any, offer_price: Any) -> OfferDecision:
    # compared unrounded
    listing = to_decimal(listing_price)
    offer = to_decimal(offer_price)
    if offer >= listing * ACCEPT_RATIO:
        return OfferDecision.ACCEPT
    if offer >= listing * COUNTER_RATIO:
        return OfferDecision.COUNTER
    return OfferDecision.REJECT


def counter_price(listing_price: Any) -> Decimal:
    """Lowest price the seller accepts outright."""
    return to_money(to_money(listing_price) * ACCEPT_RATIO)
