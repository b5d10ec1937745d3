from __future__ import annotations
from decimal import Decimal

import pytest

from agentmarket.market.models import Policy
from agentmarket.market.policy import SpendingPolicyEngine, utc_day_start
from agentmarket.protocol.errors import ErrorCode, PolicyViolation


def _enforce(policy, price="50", amount=None, asset="PYUSD", counterparty="0xSeller", spent="0"):
    SpendingPolicyEngine().enforce(
        policy,
        listing_price=Decimal(price),
        amount=Decimal(amount if amount is not None else price),
        asset=asset,
        counterparty=counterparty,
        spent_today=Decimal(spent),
    )


def test_within_defaults_passes():
    _enforce(Policy())


def test_price_above_max_transaction_value():
    with pytest.raises(PolicyViolation) as exc:
        _enforce(Policy(), price="100.000001")
    assert exc.value.code == ErrorCode.INSUFFICIENT_FUNDS
    assert exc.value.data["rule"] == "max_transaction_value"


def test_price_equal_to_max_is_allowed():
    _enforce(Policy(), price="100")


def test_negotiated_amount_checked_too():
    policy = Policy(max_transaction_value=Decimal("60"))
    _enforce(policy, price="60", amount="55")
    with pytest.raises(PolicyViolation):
        _enforce(policy, price="50", amount="61")


def test_asset_allow_list_is_case_insensitive():
    _enforce(Policy(), asset="usdc")
    with pytest.raises(PolicyViolation) as exc:
        _enforce(Policy(), asset="DOGE")
    assert exc.value.data["rule"] == "allowed_assets"


def test_approved_counterparties():
    policy = Policy(approved_counterparties=["0xAbC"])
    _enforce(policy, counterparty="0xabc")
    with pytest.raises(PolicyViolation) as exc:
        _enforce(policy, counterparty="0xdef")
    assert exc.value.data["rule"] == "approved_counterparties"


def test_daily_limit_counts_todays_spend():
    policy = Policy(daily_spending_limit=Decimal("100"))
    _enforce(policy, price="40", spent="60")
    with pytest.raises(PolicyViolation) as exc:
        _enforce(policy, price="40", spent="60.5")
    assert exc.value.data["rule"] == "daily_spending_limit"


def test_utc_day_start():
    assert utc_day_start(86400 * 3 + 5) == 86400 * 3
    assert utc_day_start(86400 * 3) == 86400 * 3


def test_policy_hash_tracks_contents():
    assert Policy().policy_hash() == Policy().policy_hash()
    assert Policy().policy_hash() != Policy(daily_spending_limit=Decimal("1")).policy_hash()
    assert Policy().policy_hash().startswith("0x")
