from __future__ import annotations
from decimal import Decimal

import pytest

from agentmarket.market.models import OfferDecision, to_money
from agentmarket.market.offers import counter_price, evaluate_offer


@pytest.mark.parametrize(
    "offer, expected",
    [
        (1000, OfferDecision.ACCEPT),
        (900, OfferDecision.ACCEPT),
        (899, OfferDecision.COUNTER),
        (750, OfferDecision.COUNTER),
        (749, OfferDecision.REJECT),
        (0, OfferDecision.REJECT),
    ],
)
def test_evaluate_boundaries(offer, expected):
    assert evaluate_offer(1000, offer) == expected


def test_evaluate_is_exact_for_fractional_prices():
    # 0.3 * 0.9 is not exactly 0.27 in binary floating point
    assert evaluate_offer("0.30", "0.27") == OfferDecision.ACCEPT
    assert evaluate_offer(0.3, 0.27) == OfferDecision.ACCEPT
    assert evaluate_offer("0.30", "0.269999") == OfferDecision.COUNTER
    assert evaluate_offer("0.30", "0.225") == OfferDecision.COUNTER


def test_counter_price_is_accept_threshold():
    assert counter_price(1000) == Decimal("900")
    assert counter_price("80") == Decimal("72.000000")
    assert evaluate_offer(80, counter_price(80)) == OfferDecision.ACCEPT


def test_to_money_quantizes_and_rejects_bools():
    assert to_money("1.23456789") == Decimal("1.234568")
    assert to_money(2) == Decimal("2.000000")
    with pytest.raises(TypeError):
        to_money(True)


def test_thresholds_compare_unrounded_prices():
    assert evaluate_offer(1000, "899.9999996") == OfferDecision.COUNTER
    assert evaluate_offer(1000, "749.9999996") == OfferDecision.REJECT
    assert evaluate_offer(1000, "900.0000001") == OfferDecision.ACCEPT
