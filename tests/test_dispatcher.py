from __future__ import annotations
import pytest

from agentmarket.protocol.dispatcher import Dispatcher
from agentmarket.protocol.errors import ErrorCode, ListingNotFoundError


def _msg(method="marketplace.search", params=None, id=1):
    return {"version": "2.0", "method": method, "params": params or {}, "id": id}


@pytest.mark.asyncio
async def test_unknown_handler_returns_method_not_found():
    dispatcher = Dispatcher()
    resp = await dispatcher.handle_message(_msg(id="req-9"))
    assert resp.error.code == ErrorCode.METHOD_NOT_FOUND
    assert resp.id == "req-9"


@pytest.mark.asyncio
async def test_invalid_request_never_reaches_handler():
    calls = []

    async def handler(params, ctx):
        calls.append(params)
        return "ok"

    dispatcher = Dispatcher()
    dispatcher.register_handler("marketplace.search", handler)
    resp = await dispatcher.handle_message({"version": "1.0", "method": "marketplace.search", "params": {}, "id": 5})
    assert resp.error.code == ErrorCode.INVALID_REQUEST
    assert resp.id is None
    assert calls == []


@pytest.mark.asyncio
async def test_success_wraps_result_with_request_id():
    async def handler(params, ctx):
        return {"echo": params["query"], "agent": ctx.agent_id}

    dispatcher = Dispatcher()
    dispatcher.register_handler("marketplace.search", handler)
    resp = await dispatcher.handle_message(_msg(params={"query": "shoes"}, id=42))
    assert not resp.is_error
    assert resp.id == 42
    assert resp.result == {"echo": "shoes", "agent": None}


@pytest.mark.asyncio
async def test_domain_error_maps_to_its_code():
    async def handler(params, ctx):
        raise ListingNotFoundError("Listing x not found", data={"listingId": "x"})

    dispatcher = Dispatcher()
    dispatcher.register_handler("marketplace.search", handler)
    resp = await dispatcher.handle_message(_msg())
    assert resp.error.code == ErrorCode.LISTING_NOT_FOUND
    assert resp.error.message == "Listing x not found"
    assert resp.error.data == {"listingId": "x"}


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_internal_error():
    async def handler(params, ctx):
        raise RuntimeError("boom")

    dispatcher = Dispatcher()
    dispatcher.register_handler("marketplace.search", handler)
    resp = await dispatcher.handle_message(_msg(id=3))
    assert resp.error.code == ErrorCode.INTERNAL_ERROR
    assert resp.error.message == "boom"
    assert resp.id == 3


@pytest.mark.asyncio
async def test_each_call_gets_a_fresh_context():
    seen = []

    async def handler(params, ctx):
        seen.append(ctx.correlation_id)
        return None

    dispatcher = Dispatcher()
    dispatcher.register_handler("marketplace.search", handler)
    await dispatcher.handle_message(_msg())
    await dispatcher.handle_message(_msg())
    assert len(set(seen)) == 2


@pytest.mark.asyncio
async def test_stats_and_clear_handlers():
    async def handler(params, ctx):
        return None

    dispatcher = Dispatcher()
    dispatcher.register_handler("marketplace.search", handler)
    dispatcher.register_handler("marketplace.offer", handler)
    await dispatcher.handle_message(_msg())
    await dispatcher.handle_message("garbage")

    stats = dispatcher.stats()
    assert stats["request_count"] == 2
    assert stats["handlers_count"] == 2
    assert set(stats["registered_methods"]) == {"marketplace.search", "marketplace.offer"}

    dispatcher.clear_handlers()
    assert dispatcher.stats()["handlers_count"] == 0
    resp = await dispatcher.handle_message(_msg())
    assert resp.error.code == ErrorCode.METHOD_NOT_FOUND
