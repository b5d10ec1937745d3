from __future__ import annotations

from agentmarket.market.models import Agent, AgentRole, Policy
from agentmarket.market.store import MarketStore


async def onboard_agent(
    store: MarketStore,
    role: AgentRole,
    policy: Policy | None = None,
    agent_id: str | None = None,
) -> Agent:
    """Create and persist a new agent; its wallet is provisioned on first purchase."""
    agent = Agent(role=role, policy=policy or Policy())
    if agent_id:
        agent.id = agent_id
    return await store.create_agent(agent)
