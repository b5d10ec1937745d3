from __future__ import annotations
import pytest

from agentmarket.protocol.envelope import (
    Method,
    Proof,
    make_error,
    make_request,
    make_result,
    parse_request,
    parse_response,
)
from agentmarket.protocol.errors import ErrorCode, InvalidRequestError


def _raw(**overrides):
    raw = {"version": "2.0", "method": "marketplace.search", "params": {"query": "shoes"}, "id": 1}
    raw.update(overrides)
    return raw


def test_parse_valid_request():
    req = parse_request(_raw())
    assert req.method == Method.SEARCH
    assert req.params == {"query": "shoes"}
    assert req.id == 1
    assert req.proof is None


def test_parse_request_with_proof():
    proof = {"signature": "0xabc", "policyHash": "0x01", "signerId": "local:0x1", "timestamp": 1700000000000}
    req = parse_request(_raw(method="marketplace.offer", proof=proof))
    assert req.proof.signer_id == "local:0x1"
    assert req.proof.timestamp == 1700000000000


@pytest.mark.parametrize(
    "overrides",
    [
        {"version": "1.0"},
        {"method": "marketplace.buy"},
        {"params": ["not", "a", "map"]},
        {"id": float("nan")},
        {"id": {"nested": True}},
        {"proof": {"signature": "0xabc"}},
    ],
)
def test_parse_rejects_malformed(overrides):
    with pytest.raises(InvalidRequestError) as exc:
        parse_request(_raw(**overrides))
    assert exc.value.code == ErrorCode.INVALID_REQUEST
    assert exc.value.data


def test_parse_rejects_non_object():
    with pytest.raises(InvalidRequestError):
        parse_request(["version", "2.0"])


def test_id_may_be_string_or_absent():
    assert parse_request(_raw(id="abc")).id == "abc"
    raw = _raw()
    del raw["id"]
    assert parse_request(raw).id is None


def test_request_wire_uses_camel_case_proof():
    proof = Proof(signature="0xabc", policy_hash="0x01", signer_id="local:0x1", timestamp=5)
    wire = make_request(Method.OFFER, {"agentId": "a"}, 7, proof).to_wire()
    assert wire["version"] == "2.0"
    assert wire["method"] == "marketplace.offer"
    assert wire["proof"] == {"signature": "0xabc", "policyHash": "0x01", "signerId": "local:0x1", "timestamp": 5}
    assert parse_request(wire).proof == proof


def test_response_wire_shapes():
    ok = make_result(3, {"x": 1}).to_wire()
    assert ok == {"version": "2.0", "result": {"x": 1}, "id": 3}

    err = make_error(None, ErrorCode.METHOD_NOT_FOUND, "nope").to_wire()
    assert err == {"version": "2.0", "error": {"code": -32601, "message": "nope"}, "id": None}

    with_data = make_error(4, ErrorCode.INVALID_PRICE, "bad", {"param": "offerPrice"}).to_wire()
    assert with_data["error"]["data"] == {"param": "offerPrice"}


def test_id_may_be_a_fractional_number():
    req = parse_request(_raw(id=1.5))
    assert req.id == 1.5
    assert req.to_wire()["id"] == 1.5


@pytest.mark.asyncio
async def test_fractional_id_is_echoed(services):
    resp = await services.dispatcher.handle_message(_raw(id=2.25))
    assert not resp.is_error
    assert resp.id == 2.25
    assert parse_response(resp.to_wire()).id == 2.25
