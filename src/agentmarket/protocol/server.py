"""HTTP surface — FastAPI app exposing a marketplace node.

Endpoints:

    POST /a2a                             protocol requests
    GET  /a2a                             server info and dispatcher stats
    POST /webhooks/settlement             settlement status callbacks
    GET  /agents/{agent_id}               agent profile with recent activity
    GET  /agents/{agent_id}/transactions  paginated transaction history
    GET  /listings                        paginated, filtered listings
    GET  /listings/{listing_id}           one listing with its seller
    GET  /transactions/{tx_id}            one transaction with its proofs
    GET  /metrics/summary                 marketplace totals
    GET  /health                          liveness and store counts

When ``webhook_secret`` is configured, settlement callbacks must carry
``X-Settlement-Signature``: the hex HMAC-SHA256 of the raw body.
"""

from __future__ import annotations

import logging
import math
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from agentmarket.market.models import Agent, Listing, ListingStatus, TransactionStatus, to_money
from agentmarket.market.settlement import WEBHOOK_SIGNATURE_HEADER, SettlementUpdate, verify_webhook
from agentmarket.protocol.envelope import PROTOCOL_VERSION, make_error
from agentmarket.protocol.errors import ErrorCode, TransactionNotFoundError

if TYPE_CHECKING:
    from agentmarket.services import MarketServices

logger = logging.getLogger(__name__)

SERVER_NAME = "AgentMarket A2A Server"
SERVER_VERSION = "0.1.0"
MAX_PAGE = 100
RECENT_WINDOW = 24 * 60 * 60


def _agent_view(agent: Agent) -> dict:
    return {
        "id": agent.id,
        "role": agent.role.value,
        "walletAddress": agent.wallet_address,
        "totalTransactions": agent.total_transactions,
        "totalVolume": str(agent.total_volume),
        "lastActivity": agent.last_activity,
        "createdAt": agent.created_at,
    }


def _listing_view(listing: Listing) -> dict:
    return {
        **listing.summary(),
        "buyerAgentId": listing.buyer_agent_id,
        "createdAt": listing.created_at,
        "soldAt": listing.sold_at,
    }


def create_app(services: MarketServices) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await services.aclose()

    app = FastAPI(title="AgentMarket", version=SERVER_VERSION, lifespan=lifespan)
    app.state.services = services

    @app.post("/a2a")
    async def a2a(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            err = make_error(None, ErrorCode.PARSE_ERROR, "Parse error")
            return JSONResponse(err.to_wire(), status_code=400)

        response = await services.dispatcher.handle_message(body)
        logger.info(
            "a2a %s -> %s",
            body.get("method") if isinstance(body, dict) else "?",
            "error" if response.is_error else "ok",
        )
        return JSONResponse(response.to_wire(), headers={"X-Request-ID": str(response.id)})

    @app.get("/a2a")
    async def a2a_info() -> dict:
        return {
            "name": SERVER_NAME,
            "version": SERVER_VERSION,
            "protocol": f"JSON-RPC {PROTOCOL_VERSION}",
            "stats": services.dispatcher.stats(),
        }

    @app.post("/webhooks/settlement")
    async def settlement_webhook(request: Request) -> dict:
        body = await request.body()
        secret = services.settings.webhook_secret
        if secret and not verify_webhook(secret, body, request.headers.get(WEBHOOK_SIGNATURE_HEADER, "")):
            logger.warning("Settlement webhook with a bad or missing signature")
            raise HTTPException(401, "Invalid webhook signature")
        try:
            update = SettlementUpdate.model_validate_json(body)
        except ValidationError as exc:
            raise RequestValidationError(exc.errors(include_url=False)) from exc

        logger.info("Settlement webhook %s: %s", update.settlement_ref, update.status.value)
        try:
            tx = await services.orchestrator.apply_settlement_update(update)
        except TransactionNotFoundError as exc:
            logger.warning("Settlement webhook for unknown transfer %s", update.settlement_ref)
            raise HTTPException(404, exc.message) from exc
        return {"success": True, "transactionId": tx.id, "status": tx.status.value}

    @app.get("/agents/{agent_id}")
    async def agent_profile(agent_id: str) -> dict:
        agent = await services.store.find_agent(agent_id)
        if agent is None:
            raise HTTPException(404, f"Agent {agent_id} not found")
        recent = await services.store.agent_profile(agent)
        return {
            "agent": _agent_view(agent),
            "recentListings": [_listing_view(x) for x in recent["recentListings"]],
            "recentTransactions": [tx.model_dump(mode="json") for tx in recent["recentTransactions"]],
        }

    @app.get("/agents/{agent_id}/transactions")
    async def agent_transactions(
        agent_id: str,
        limit: int = Query(50, ge=1),
        offset: int = Query(0, ge=0),
        status: TransactionStatus | None = None,
    ) -> dict:
        agent = await services.store.find_agent(agent_id)
        if agent is None:
            raise HTTPException(404, f"Agent {agent_id} not found")

        limit = min(limit, MAX_PAGE)
        txs, total = await services.store.list_transactions(agent.id, status, limit, offset)
        return {
            "agentId": agent.id,
            "transactions": [
                {
                    **tx.model_dump(mode="json"),
                    "type": "SENT" if tx.from_agent_id == agent.id else "RECEIVED",
                }
                for tx in txs
            ],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "hasMore": offset + len(txs) < total,
            },
        }

    @app.get("/listings")
    async def listings(
        page: int = 1,
        limit: int = 20,
        category: str | None = None,
        search: str | None = None,
        seller_address: str | None = Query(None, alias="sellerAddress"),
        status: ListingStatus | None = ListingStatus.AVAILABLE,
    ) -> dict:
        if page < 1 or limit < 1 or limit > MAX_PAGE:
            raise HTTPException(400, "Invalid pagination parameters")

        seller_id = None
        if seller_address:
            seller = await services.store.find_agent(seller_address)
            if seller is None:
                return {"listings": [], "page": page, "limit": limit, "total": 0, "totalPages": 0}
            seller_id = seller.id

        found, total = await services.store.page_listings(
            status=status,
            category=category,
            seller_agent_id=seller_id,
            search=search,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return {
            "listings": [_listing_view(x) for x in found],
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit),
        }

    @app.get("/listings/{listing_id}")
    async def listing_detail(listing_id: str) -> dict:
        listing = await services.store.get_listing(listing_id)
        if listing is None:
            raise HTTPException(404, f"Listing {listing_id} not found")
        seller = await services.store.get_agent(listing.seller_agent_id)
        counts = await services.store.seller_counts(listing.seller_agent_id)
        return {
            **_listing_view(listing),
            "sellerAgent": {
                "id": listing.seller_agent_id,
                "walletAddress": seller.wallet_address if seller else None,
                **counts,
            },
        }

    @app.get("/metrics/summary")
    async def metrics_summary() -> dict:
        metrics = await services.store.market_metrics(time.time() - RECENT_WINDOW)
        recent_volume = metrics.pop("recentVolume")
        return {
            **metrics,
            "totalVolume": str(to_money(metrics["totalVolume"])),
            "volume24h": str(to_money(recent_volume)),
        }

    @app.get("/transactions/{tx_id}")
    async def get_transaction(tx_id: str) -> dict:
        try:
            return await services.orchestrator.get_purchase_status(tx_id)
        except TransactionNotFoundError as exc:
            raise HTTPException(404, exc.message) from exc

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "store": await services.store.stats()}

    return app


def run_server(services: MarketServices, host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the node (blocking)."""
    import uvicorn

    uvicorn.run(create_app(services), host=host, port=port, log_level=services.settings.log_level.lower())
