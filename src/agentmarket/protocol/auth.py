"""Proof authentication for marketplace requests.

A request is authenticated when its method mutates state (offer, accept,
reject, counter) or when it carries a proof at all.  The proof signs a
canonical text of ``{method, params, timestamp}`` with the agent's wallet
key (EIP-191 personal-sign).

Checks run cheapest first: actor id, presence, freshness, then the
signature.  A stale proof is refused without touching the wallet.
"""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any

from agentmarket.audit import AuditLogger
from agentmarket.market.store import MarketStore
from agentmarket.market.wallet import WalletService
from agentmarket.protocol.envelope import Method, Proof, Request
from agentmarket.protocol.errors import AuthError, InvalidParamsError

logger = logging.getLogger(__name__)

AUTHENTICATED_METHODS = frozenset({Method.OFFER, Method.ACCEPT, Method.REJECT, Method.COUNTER})


def requires_auth(request: Request) -> bool:
    return request.method in AUTHENTICATED_METHODS or request.proof is not None


def canonical_message(method: Method | str, params: dict[str, Any], timestamp: int | float) -> str:
    """Deterministic text that a proof signs."""
    obj = {
        "method": Method(method).value,
        "params": params,
        "timestamp": timestamp,
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


async def build_proof(
    wallet: WalletService,
    agent_id: str,
    method: Method | str,
    params: dict[str, Any],
    policy_hash: str = "",
    timestamp: int | None = None,
) -> Proof:
    """Sign a fresh proof for *agent_id* calling *method* with *params*."""
    ts = int(time.time() * 1000) if timestamp is None else timestamp
    signature = await wallet.sign_message(agent_id, canonical_message(method, params, ts))
    return Proof(
        signature=signature,
        policy_hash=policy_hash,
        signer_id=await wallet.get_signer_id(agent_id),
        timestamp=ts,
    )


class ProofAuthenticator:
    def __init__(
        self,
        store: MarketStore,
        wallet: WalletService,
        max_age_seconds: float = 600.0,
        max_skew_seconds: float = 60.0,
        audit: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._wallet = wallet
        self._max_age_ms = max_age_seconds * 1000
        self._max_skew_ms = max_skew_seconds * 1000
        self._audit = audit

    async def authenticate(self, request: Request, correlation_id: str = "") -> str | None:
        """Return the authenticated agent id, or None when no auth applies.

        Raises :class:`InvalidParamsError` when ``params.agentId`` is
        missing and :class:`AuthError` for every proof failure.
        """
        if not requires_auth(request):
            return None

        agent_id = request.params.get("agentId")
        if not isinstance(agent_id, str) or not agent_id:
            raise InvalidParamsError("agentId is required for authenticated methods")

        try:
            await self._verify(agent_id, request)
        except AuthError as exc:
            logger.warning("Rejected %s from %s: %s", request.method.value, agent_id, exc.message)
            await self._record(agent_id, request, "denied", correlation_id, exc.message)
            raise

        await self._record(agent_id, request, "allowed", correlation_id)
        return agent_id

    async def _verify(self, agent_id: str, request: Request) -> None:
        proof = request.proof
        if proof is None:
            raise AuthError("Proof required for this method")
        if not math.isfinite(proof.timestamp):
            raise AuthError("Proof timestamp must be a finite number")

        age_ms = time.time() * 1000 - proof.timestamp
        if age_ms > self._max_age_ms:
            raise AuthError("Proof expired", data={"ageMs": int(age_ms)})
        if -age_ms > self._max_skew_ms:
            raise AuthError("Proof timestamp is in the future", data={"skewMs": int(-age_ms)})

        if await self._store.get_agent(agent_id) is None:
            raise AuthError(f"Unknown agent {agent_id}")

        message = canonical_message(request.method, request.params, proof.timestamp)
        try:
            valid = await self._wallet.verify_signature(agent_id, proof.signature, message)
        except Exception as exc:  # noqa: BLE001 - a wallet fault is a failed verification
            logger.warning("Wallet could not verify proof for %s: %s", agent_id, exc)
            valid = False
        if not valid:
            raise AuthError("Invalid proof signature")

    async def _record(
        self,
        agent_id: str,
        request: Request,
        outcome: str,
        correlation_id: str,
        reason: str = "",
    ) -> None:
        if self._audit is None:
            return
        detail = {"method": request.method.value}
        if reason:
            detail["reason"] = reason
        await self._audit.record(
            "auth", outcome,
            agent_id=agent_id, correlation_id=correlation_id, detail=detail,
        )
