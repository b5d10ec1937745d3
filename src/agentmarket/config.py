"""Runtime settings read from the environment (and ``.env`` when present)."""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class MarketSettings(BaseModel):
    db_path: str = "agentmarket.db"
    proof_max_age_seconds: float = 600.0       # 10 minute freshness window
    proof_max_skew_seconds: float = 60.0       # tolerated clock drift into the future
    settlement_timeout: float = 30.0
    settlement_url: str = ""                   # empty -> simulated provider
    settlement_api_key: str = ""
    webhook_secret: str = ""                   # empty -> webhooks are not signed
    wallet_seed: str = "agentmarket-dev-seed"
    audit_log_path: str = "agentmarket-audit.log"
    reconcile_after_seconds: float = 900.0
    default_asset: str = "PYUSD"
    default_chain: int = 84532                 # Base Sepolia
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> MarketSettings:
        defaults = cls()
        return cls(
            db_path=os.getenv("AGENTMARKET_DB_PATH", defaults.db_path),
            proof_max_age_seconds=float(
                os.getenv("AGENTMARKET_PROOF_MAX_AGE_SECONDS", defaults.proof_max_age_seconds)
            ),
            proof_max_skew_seconds=float(
                os.getenv("AGENTMARKET_PROOF_MAX_SKEW_SECONDS", defaults.proof_max_skew_seconds)
            ),
            settlement_timeout=float(
                os.getenv("AGENTMARKET_SETTLEMENT_TIMEOUT", defaults.settlement_timeout)
            ),
            settlement_url=os.getenv("AGENTMARKET_SETTLEMENT_URL", defaults.settlement_url),
            settlement_api_key=os.getenv("AGENTMARKET_SETTLEMENT_API_KEY", defaults.settlement_api_key),
            webhook_secret=os.getenv("AGENTMARKET_WEBHOOK_SECRET", defaults.webhook_secret),
            wallet_seed=os.getenv("AGENTMARKET_WALLET_SEED", defaults.wallet_seed),
            audit_log_path=os.getenv("AGENTMARKET_AUDIT_LOG", defaults.audit_log_path),
            reconcile_after_seconds=float(
                os.getenv("AGENTMARKET_RECONCILE_AFTER_SECONDS", defaults.reconcile_after_seconds)
            ),
            default_asset=os.getenv("AGENTMARKET_DEFAULT_ASSET", defaults.default_asset),
            default_chain=int(os.getenv("AGENTMARKET_DEFAULT_CHAIN", defaults.default_chain)),
            log_level=os.getenv("AGENTMARKET_LOG_LEVEL", defaults.log_level),
        )
