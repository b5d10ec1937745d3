from __future__ import annotations
from agentmarket.config import MarketSettings
from agentmarket.market.settlement import HttpSettlementProvider, SimulatedSettlementProvider
from agentmarket.services import build_settlement


def test_defaults():
    settings = MarketSettings()
    assert settings.proof_max_age_seconds == 600.0
    assert settings.settlement_timeout == 30.0
    assert settings.default_chain == 84532


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("AGENTMARKET_DB_PATH", str(tmp_path / "x.db"))
    monkeypatch.setenv("AGENTMARKET_PROOF_MAX_AGE_SECONDS", "120")
    monkeypatch.setenv("AGENTMARKET_SETTLEMENT_TIMEOUT", "5")
    monkeypatch.setenv("AGENTMARKET_DEFAULT_CHAIN", "1")
    monkeypatch.setenv("AGENTMARKET_WEBHOOK_SECRET", "hook-secret")
    settings = MarketSettings.from_env()
    assert settings.db_path.endswith("x.db")
    assert settings.proof_max_age_seconds == 120.0
    assert settings.settlement_timeout == 5.0
    assert settings.default_chain == 1
    assert settings.webhook_secret == "hook-secret"


def test_settlement_provider_selection():
    assert isinstance(build_settlement(MarketSettings()), SimulatedSettlementProvider)
    assert isinstance(
        build_settlement(MarketSettings(settlement_url="https://bridge.example/api")),
        HttpSettlementProvider,
    )
