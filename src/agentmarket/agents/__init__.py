from agentmarket.agents.base import onboard_agent
from agentmarket.agents.buyer import BuyerAgent
from agentmarket.agents.seller import SellerAgent

__all__ = ["BuyerAgent", "SellerAgent", "onboard_agent"]
