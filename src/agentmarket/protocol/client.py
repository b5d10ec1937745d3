"""Client stub for calling a marketplace node.

    client = A2AClient(HttpTransport("http://localhost:8000/a2a"), wallet=wallet)
    result = await client.call("marketplace.offer",
                               {"listingId": "...", "offerPrice": "85"},
                               agent_id="buyer-1")

When an ``agent_id`` is given and the client holds a wallet, the request
carries a fresh proof signed for that agent.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from agentmarket.market.wallet import WalletService
from agentmarket.protocol.auth import build_proof
from agentmarket.protocol.dispatcher import Dispatcher
from agentmarket.protocol.envelope import Method, make_request, parse_response
from agentmarket.protocol.errors import ErrorCode

logger = logging.getLogger(__name__)


class A2ACallError(Exception):
    """The remote node answered with an error envelope."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


# ── Transports ───────────────────────────────────────────────────────────────

class Transport(ABC):
    @abstractmethod
    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        pass

    async def aclose(self) -> None:
        return None


class HttpTransport(Transport):
    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self._client.post(self._endpoint, json=payload)
        if resp.status_code == 400:
            # parse errors still come back as an envelope
            body = resp.json()
            if isinstance(body, dict) and "error" in body:
                return body
        resp.raise_for_status()
        return resp.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LocalTransport(Transport):
    """Delivers requests straight to an in-process dispatcher."""

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher

    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._dispatcher.handle_message(payload)
        return response.to_wire()


# ── Client ───────────────────────────────────────────────────────────────────

class A2AClient:
    def __init__(self, transport: Transport, wallet: WalletService | None = None) -> None:
        self._transport = transport
        self._wallet = wallet
        self._ids = itertools.count(1)

    async def _envelope(
        self,
        method: Method | str,
        params: dict[str, Any],
        agent_id: str | None,
        policy_hash: str,
        request_id: int | None,
    ) -> dict[str, Any]:
        params = dict(params)
        proof = None
        if agent_id is not None:
            params.setdefault("agentId", agent_id)
            if self._wallet is not None:
                proof = await build_proof(self._wallet, agent_id, method, params, policy_hash)
        return make_request(method, params, request_id, proof).to_wire()

    async def call(
        self,
        method: Method | str,
        params: dict[str, Any] | None = None,
        agent_id: str | None = None,
        policy_hash: str = "",
    ) -> Any:
        request_id = next(self._ids)
        payload = await self._envelope(method, params or {}, agent_id, policy_hash, request_id)
        logger.debug("-> %s #%s", payload["method"], request_id)

        response = parse_response(await self._transport.send(payload))
        if response.error is not None:
            logger.info(
                "%s #%s returned error %s: %s",
                payload["method"], request_id, response.error.code, response.error.message,
            )
            raise A2ACallError(response.error.code, response.error.message, response.error.data)
        if response.id != request_id:
            raise A2ACallError(
                int(ErrorCode.INTERNAL_ERROR),
                f"Response id {response.id!r} does not match request id {request_id}",
            )
        return response.result

    async def notify(
        self,
        method: Method | str,
        params: dict[str, Any] | None = None,
        agent_id: str | None = None,
        policy_hash: str = "",
    ) -> None:
        """Send a request without an id; any answer is dropped."""
        payload = await self._envelope(method, params or {}, agent_id, policy_hash, None)
        logger.debug("-> %s (notification)", payload["method"])
        await self._transport.send(payload)

    async def aclose(self) -> None:
        await self._transport.aclose()
