from __future__ import annotations
import json

import httpx
import pytest
import pytest_asyncio

from agentmarket.market.settlement import WEBHOOK_SIGNATURE_HEADER, sign_webhook
from agentmarket.protocol.client import A2AClient, HttpTransport
from agentmarket.protocol.server import create_app


@pytest_asyncio.fixture
async def http(services):
    app = create_app(services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://node") as c:
        yield c


@pytest.fixture
def buyer_client(services, http):
    return A2AClient(HttpTransport("http://node/a2a", client=http), wallet=services.wallet)


@pytest.mark.asyncio
async def test_bad_json_is_parse_error(http):
    resp = await http.post("/a2a", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == -32700
    assert body["id"] is None


@pytest.mark.asyncio
async def test_invalid_envelope_is_answered_in_band(http):
    resp = await http.post("/a2a", json={"version": "1.0", "method": "marketplace.search", "params": {}, "id": 1})
    assert resp.status_code == 200
    assert resp.json()["error"]["code"] == -32600
    assert resp.json()["id"] is None


@pytest.mark.asyncio
async def test_search_over_http(http, market):
    resp = await http.post(
        "/a2a", json={"version": "2.0", "method": "marketplace.search", "params": {"query": "trail"}, "id": "s-1"}
    )
    assert resp.status_code == 200
    assert resp.headers["x-request-id"] == "s-1"
    assert resp.json()["result"][0]["title"] == "Trail running shoes"


@pytest.mark.asyncio
async def test_server_info(http):
    await http.post("/a2a", json={"version": "2.0", "method": "marketplace.search", "params": {}, "id": 1})
    info = (await http.get("/a2a")).json()
    assert info["protocol"] == "JSON-RPC 2.0"
    assert info["stats"]["request_count"] == 1
    assert info["stats"]["handlers_count"] == 5


@pytest.mark.asyncio
async def test_health(http, market):
    body = (await http.get("/health")).json()
    assert body["status"] == "ok"
    assert body["store"]["agents"] == 3
    assert body["store"]["listings"] == 1


@pytest.mark.asyncio
async def test_webhook_confirms_purchase(http, buyer_client, market):
    receipt = await buyer_client.call("marketplace.accept", {"listingId": market.listing.id}, agent_id="buyer-1")

    resp = await http.post(
        "/webhooks/settlement",
        json={"settlementRef": receipt["settlementRef"], "status": "CONFIRMED"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "transactionId": receipt["transactionId"], "status": "CONFIRMED"}

    detail = (await http.get(f"/transactions/{receipt['transactionId']}")).json()
    assert detail["status"] == "CONFIRMED"
    assert len(detail["proofs"]) == 1

    search = await buyer_client.call("marketplace.search", {"query": "shoes"})
    assert search == []


@pytest.mark.asyncio
async def test_webhook_for_unknown_transfer(http):
    resp = await http.post("/webhooks/settlement", json={"settlementRef": "0xnope", "status": "FAILED"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_transaction_history(http, buyer_client, services, market):
    receipt = await buyer_client.call("marketplace.accept", {"listingId": market.listing.id}, agent_id="buyer-1")

    buyer = (await http.get("/agents/buyer-1/transactions")).json()
    assert buyer["pagination"] == {"total": 1, "limit": 50, "offset": 0, "hasMore": False}
    assert buyer["transactions"][0]["id"] == receipt["transactionId"]
    assert buyer["transactions"][0]["type"] == "SENT"

    seller = (await http.get("/agents/seller-1/transactions", params={"limit": 500})).json()
    assert seller["pagination"]["limit"] == 100
    assert seller["transactions"][0]["type"] == "RECEIVED"

    failed = (await http.get("/agents/buyer-1/transactions", params={"status": "FAILED"})).json()
    assert failed["pagination"]["total"] == 0

    address = (await services.store.get_agent("buyer-1")).wallet_address
    by_address = (await http.get(f"/agents/{address}/transactions")).json()
    assert by_address["agentId"] == "buyer-1"


@pytest.mark.asyncio
async def test_history_for_unknown_agent(http):
    assert (await http.get("/agents/nobody/transactions")).status_code == 404
    assert (await http.get("/transactions/nothing")).status_code == 404


@pytest.mark.asyncio
async def test_signed_webhooks(http, buyer_client, services, market):
    services.settings.webhook_secret = "s3cret"
    receipt = await buyer_client.call("marketplace.accept", {"listingId": market.listing.id}, agent_id="buyer-1")
    body = json.dumps({"reference": receipt["transactionId"], "settlementRef": "0xforged", "status": "CONFIRMED"})

    unsigned = await http.post("/webhooks/settlement", content=body)
    assert unsigned.status_code == 401
    forged = await http.post(
        "/webhooks/settlement", content=body, headers={WEBHOOK_SIGNATURE_HEADER: sign_webhook("guess", body.encode())}
    )
    assert forged.status_code == 401
    tx = await services.store.get_transaction(receipt["transactionId"])
    assert tx.status.value == "PENDING"

    signed = await http.post(
        "/webhooks/settlement", content=body, headers={WEBHOOK_SIGNATURE_HEADER: sign_webhook("s3cret", body.encode())}
    )
    assert signed.status_code == 200
    assert signed.json()["status"] == "CONFIRMED"


@pytest.mark.asyncio
async def test_malformed_webhook_body(http):
    resp = await http.post("/webhooks/settlement", json={"status": "CONFIRMED"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_agent_profile(http, buyer_client, market):
    seller = (await http.get("/agents/seller-1")).json()
    assert seller["agent"]["role"] == "SELLER"
    assert seller["agent"]["totalTransactions"] == 0
    assert [x["listingId"] for x in seller["recentListings"]] == [market.listing.id]
    assert seller["recentTransactions"] == []

    receipt = await buyer_client.call("marketplace.accept", {"listingId": market.listing.id}, agent_id="buyer-1")
    buyer = (await http.get("/agents/buyer-1")).json()
    assert buyer["agent"]["walletAddress"].startswith("0x")
    assert [tx["id"] for tx in buyer["recentTransactions"]] == [receipt["transactionId"]]

    assert (await http.get("/agents/nobody")).status_code == 404


@pytest.mark.asyncio
async def test_listings_index(http, market):
    stove = await market.seller.create_listing("Camp stove", price="45", category="camping")

    everything = (await http.get("/listings")).json()
    assert everything["total"] == 2
    assert {x["listingId"] for x in everything["listings"]} == {market.listing.id, stove.id}

    camping = (await http.get("/listings", params={"category": "camping"})).json()
    assert [x["listingId"] for x in camping["listings"]] == [stove.id]
    trail = (await http.get("/listings", params={"search": "TRAIL"})).json()
    assert [x["listingId"] for x in trail["listings"]] == [market.listing.id]

    paged = (await http.get("/listings", params={"page": 2, "limit": 1})).json()
    assert (paged["total"], paged["totalPages"], len(paged["listings"])) == (2, 2, 1)

    assert (await http.get("/listings", params={"status": "SOLD"})).json()["total"] == 0
    assert (await http.get("/listings", params={"sellerAddress": "0xnobody"})).json()["total"] == 0
    assert (await http.get("/listings", params={"sellerAddress": "seller-1"})).json()["total"] == 2
    assert (await http.get("/listings", params={"limit": 101})).status_code == 400
    assert (await http.get("/listings", params={"page": 0})).status_code == 400


@pytest.mark.asyncio
async def test_listing_detail(http, market):
    body = (await http.get(f"/listings/{market.listing.id}")).json()
    assert body["title"] == "Trail running shoes"
    assert body["price"] == "80.000000"
    assert body["sellerAgent"] == {"id": "seller-1", "walletAddress": None, "totalListings": 1, "totalSales": 0}

    assert (await http.get("/listings/missing")).status_code == 404


@pytest.mark.asyncio
async def test_metrics_summary(http, buyer_client, market):
    before = (await http.get("/metrics/summary")).json()
    assert before["totalListings"] == 1
    assert before["activeListings"] == 1
    assert before["totalVolume"] == "0.000000"
    assert before["totalAgents"] == 3

    receipt = await buyer_client.call("marketplace.accept", {"listingId": market.listing.id}, agent_id="buyer-1")
    await http.post("/webhooks/settlement", json={"settlementRef": receipt["settlementRef"], "status": "CONFIRMED"})

    after = (await http.get("/metrics/summary")).json()
    assert after["activeListings"] == 0
    assert after["totalVolume"] == "80.000000"
    assert after["volume24h"] == "80.000000"
    assert after["activeAgents"] == 2
    assert after["totalTransactions"] == 1
