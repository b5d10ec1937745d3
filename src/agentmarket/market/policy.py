from __future__ import annotations

import time
from decimal import Decimal

from agentmarket.market.models import Policy
from agentmarket.protocol.errors import PolicyViolation

SECONDS_PER_DAY = 86400


def utc_day_start(now: float | None = None) -> float:
    now = time.time() if now is None else now
    return now - (now % SECONDS_PER_DAY)


class SpendingPolicyEngine:
    """Checks a proposed spend against an agent's :class:`Policy`.

    Usage:
        engine = SpendingPolicyEngine()
        engine.enforce(policy, listing_price=Decimal("80"), amount=Decimal("75"),
                       asset="PYUSD", counterparty="0xabc...", spent_today=Decimal("0"))

    Raises :class:`PolicyViolation` on the first rule that fails.
    """

    def enforce(
        self,
        policy: Policy,
        *,
        listing_price: Decimal,
        amount: Decimal,
        asset: str,
        counterparty: str,
        spent_today: Decimal,
    ) -> None:
        limit = policy.max_transaction_value
        if listing_price > limit:
            raise PolicyViolation(
                f"Purchase price {listing_price} exceeds transaction limit {limit}",
                data={"rule": "max_transaction_value", "price": str(listing_price), "limit": str(limit)},
            )
        if amount > limit:
            raise PolicyViolation(
                f"Amount {amount} exceeds transaction limit {limit}",
                data={"rule": "max_transaction_value", "amount": str(amount), "limit": str(limit)},
            )

        allowed = {a.upper() for a in policy.allowed_assets}
        if allowed and asset.upper() not in allowed:
            raise PolicyViolation(
                f"Asset {asset} is not allowed. Allowed: {sorted(allowed)}",
                data={"rule": "allowed_assets", "asset": asset},
            )

        approved = {a.lower() for a in policy.approved_counterparties}
        if approved and counterparty.lower() not in approved:
            raise PolicyViolation(
                f"Counterparty {counterparty} is not approved",
                data={"rule": "approved_counterparties", "counterparty": counterparty},
            )

        daily = policy.daily_spending_limit
        if spent_today + amount > daily:
            raise PolicyViolation(
                f"Daily spend {spent_today + amount} would exceed limit {daily}",
                data={"rule": "daily_spending_limit", "spent": str(spent_today), "limit": str(daily)},
            )
