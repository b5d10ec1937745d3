from __future__ import annotations
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio

_src = Path(__file__).resolve().parent.parent / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from agentmarket.agents import SellerAgent, onboard_agent  # noqa: E402
from agentmarket.config import MarketSettings  # noqa: E402
from agentmarket.market.models import AgentRole  # noqa: E402
from agentmarket.market.settlement import SimulatedSettlementProvider  # noqa: E402
from agentmarket.protocol.client import A2AClient, LocalTransport  # noqa: E402
from agentmarket.services import build_services  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    return MarketSettings(
        db_path=str(tmp_path / "market.db"),
        audit_log_path=str(tmp_path / "audit.log"),
        wallet_seed="test-seed",
        settlement_timeout=2.0,
    )


@pytest.fixture
def settlement():
    return SimulatedSettlementProvider()


@pytest.fixture
def services(settings, settlement):
    return build_services(settings, settlement=settlement)


@pytest.fixture
def client(services):
    return A2AClient(LocalTransport(services.dispatcher), wallet=services.wallet)


@pytest_asyncio.fixture
async def market(services):
    """One seller with an 80 PYUSD listing and two buyers."""
    seller = await SellerAgent.onboard(services.store, agent_id="seller-1")
    await onboard_agent(services.store, AgentRole.BUYER, agent_id="buyer-1")
    await onboard_agent(services.store, AgentRole.BUYER, agent_id="buyer-2")
    listing = await seller.create_listing(
        "Trail running shoes",
        price="80",
        description="Lightweight shoes for muddy trails",
        category="shoes",
        tags=["running", "outdoor"],
    )
    return SimpleNamespace(seller=seller, buyer_id="buyer-1", other_buyer_id="buyer-2", listing=listing)
