from __future__ import annotations
import httpx
import pytest

from agentmarket.protocol.client import A2ACallError, A2AClient, HttpTransport, LocalTransport, Transport
from agentmarket.protocol.errors import ErrorCode
from agentmarket.protocol.server import create_app


class RecordingTransport(Transport):
    def __init__(self, reply):
        self.reply = reply
        self.sent = []

    async def send(self, payload):
        self.sent.append(payload)
        return self.reply(payload)


@pytest.mark.asyncio
async def test_ids_increase_and_proof_is_attached(services, market):
    transport = RecordingTransport(lambda p: {"version": "2.0", "result": {}, "id": p.get("id")})
    client = A2AClient(transport, wallet=services.wallet)

    await client.call("marketplace.search", {"query": "a"})
    await client.call("marketplace.offer", {"listingId": "l", "offerPrice": "1"}, agent_id="buyer-1")

    first, second = transport.sent
    assert (first["id"], second["id"]) == (1, 2)
    assert "proof" not in first
    assert second["params"]["agentId"] == "buyer-1"
    assert second["proof"]["signerId"].startswith("local:0x")
    assert set(second["proof"]) == {"signature", "policyHash", "signerId", "timestamp"}


@pytest.mark.asyncio
async def test_mismatched_response_id_raises():
    transport = RecordingTransport(lambda p: {"version": "2.0", "result": [], "id": 999})
    client = A2AClient(transport)
    with pytest.raises(A2ACallError) as exc:
        await client.call("marketplace.search", {"query": "a"})
    assert exc.value.code == ErrorCode.INTERNAL_ERROR


@pytest.mark.asyncio
async def test_error_envelope_raises_with_code_and_data(services, market):
    client = A2AClient(LocalTransport(services.dispatcher), wallet=services.wallet)
    with pytest.raises(A2ACallError) as exc:
        await client.call("marketplace.offer", {"listingId": market.listing.id, "offerPrice": "0"}, agent_id="buyer-1")
    assert exc.value.code == ErrorCode.INVALID_PRICE
    assert exc.value.data["param"] == "offerPrice"


@pytest.mark.asyncio
async def test_notify_sends_without_id(services, market):
    transport = RecordingTransport(lambda p: {"version": "2.0", "result": None, "id": None})
    client = A2AClient(transport, wallet=services.wallet)
    assert await client.notify("marketplace.search", {"query": "a"}) is None
    assert "id" not in transport.sent[0]


@pytest.mark.asyncio
async def test_http_transport_round_trip(services, market):
    app = create_app(services)
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://node")
    client = A2AClient(HttpTransport("http://node/a2a", client=http), wallet=services.wallet)
    try:
        results = await client.call("marketplace.search", {"query": "shoes"})
        assert results[0]["listingId"] == market.listing.id

        with pytest.raises(A2ACallError) as exc:
            await client.call("marketplace.offer", {"listingId": market.listing.id, "offerPrice": "72"})
        assert exc.value.code == ErrorCode.INVALID_PARAMS

        offer = await client.call(
            "marketplace.offer", {"listingId": market.listing.id, "offerPrice": "72"}, agent_id="buyer-1"
        )
        assert offer["decision"] == "ACCEPT"
    finally:
        await http.aclose()
