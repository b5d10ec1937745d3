from __future__ import annotations
import json
import time

import pytest

from agentmarket.market.wallet import LocalWalletService
from agentmarket.protocol.auth import ProofAuthenticator, build_proof, canonical_message
from agentmarket.protocol.envelope import Method, Proof, Request, make_request
from agentmarket.protocol.errors import AuthError, ErrorCode, InvalidParamsError


class SpyWallet(LocalWalletService):
    def __init__(self, seed):
        super().__init__(seed)
        self.verify_calls = 0
        self.explode = False

    async def verify_signature(self, agent_id, signature, message):
        self.verify_calls += 1
        if self.explode:
            raise ConnectionError("wallet service unreachable")
        return await super().verify_signature(agent_id, signature, message)


@pytest.fixture
def wallet():
    return SpyWallet("test-seed")


@pytest.fixture
def authenticator(services, wallet):
    return ProofAuthenticator(services.store, wallet, audit=services.audit)


async def _signed(wallet, agent_id, method, params, timestamp=None):
    proof = await build_proof(wallet, agent_id, method, params, timestamp=timestamp)
    return make_request(method, params, 1, proof)


def test_canonical_message_is_key_order_independent():
    a = canonical_message("marketplace.offer", {"b": 1, "a": 2}, 5)
    b = canonical_message(Method.OFFER, {"a": 2, "b": 1}, 5)
    assert a == b == '{"method":"marketplace.offer","params":{"a":2,"b":1},"timestamp":5}'


@pytest.mark.asyncio
async def test_valid_proof_returns_agent_id(market, authenticator, wallet):
    params = {"agentId": "buyer-1", "listingId": market.listing.id, "offerPrice": "72"}
    req = await _signed(wallet, "buyer-1", Method.OFFER, params)
    assert await authenticator.authenticate(req) == "buyer-1"


@pytest.mark.asyncio
async def test_unauthenticated_method_without_proof_passes(authenticator):
    req = make_request(Method.SEARCH, {"query": "shoes"}, 1)
    assert await authenticator.authenticate(req) is None


@pytest.mark.asyncio
async def test_proof_on_any_method_triggers_authentication(market, authenticator, wallet):
    req = await _signed(wallet, "buyer-1", Method.SEARCH, {"query": "shoes"})
    with pytest.raises(InvalidParamsError):
        await authenticator.authenticate(req)

    req = await _signed(wallet, "buyer-1", Method.SEARCH, {"query": "shoes", "agentId": "buyer-1"})
    assert await authenticator.authenticate(req) == "buyer-1"


@pytest.mark.asyncio
async def test_missing_agent_id_is_invalid_params(authenticator):
    req = make_request(Method.OFFER, {"listingId": "l1", "offerPrice": "10"}, 1)
    with pytest.raises(InvalidParamsError) as exc:
        await authenticator.authenticate(req)
    assert exc.value.code == ErrorCode.INVALID_PARAMS


@pytest.mark.asyncio
async def test_missing_proof_is_unauthorized(market, authenticator):
    req = make_request(Method.OFFER, {"agentId": "buyer-1", "listingId": "l1", "offerPrice": "10"}, 1)
    with pytest.raises(AuthError) as exc:
        await authenticator.authenticate(req)
    assert exc.value.code == ErrorCode.UNAUTHORIZED


@pytest.mark.asyncio
async def test_stale_proof_rejected_without_verifying(market, authenticator, wallet):
    eleven_minutes_ago = int((time.time() - 660) * 1000)
    params = {"agentId": "buyer-1", "offerId": "o1"}
    req = await _signed(wallet, "buyer-1", Method.REJECT, params, timestamp=eleven_minutes_ago)
    with pytest.raises(AuthError, match="expired"):
        await authenticator.authenticate(req)
    assert wallet.verify_calls == 0


@pytest.mark.asyncio
async def test_proof_just_inside_window_is_accepted(market, authenticator, wallet):
    nine_minutes_ago = int((time.time() - 540) * 1000)
    params = {"agentId": "buyer-1", "offerId": "o1"}
    req = await _signed(wallet, "buyer-1", Method.REJECT, params, timestamp=nine_minutes_ago)
    assert await authenticator.authenticate(req) == "buyer-1"


@pytest.mark.asyncio
async def test_future_proof_beyond_skew_rejected(market, authenticator, wallet):
    in_five_minutes = int((time.time() + 300) * 1000)
    req = await _signed(wallet, "buyer-1", Method.REJECT, {"agentId": "buyer-1"}, timestamp=in_five_minutes)
    with pytest.raises(AuthError, match="future"):
        await authenticator.authenticate(req)
    assert wallet.verify_calls == 0


@pytest.mark.asyncio
async def test_tampered_params_rejected(market, authenticator, wallet):
    params = {"agentId": "buyer-1", "listingId": market.listing.id, "offerPrice": "72"}
    req = await _signed(wallet, "buyer-1", Method.OFFER, params)
    req.params["offerPrice"] = "1"
    with pytest.raises(AuthError, match="Invalid proof signature"):
        await authenticator.authenticate(req)


@pytest.mark.asyncio
async def test_proof_signed_by_another_agent_rejected(market, authenticator, wallet):
    params = {"agentId": "buyer-1", "offerId": "o1"}
    proof = await build_proof(wallet, "buyer-2", Method.REJECT, params)
    req = make_request(Method.REJECT, params, 1, proof)
    with pytest.raises(AuthError):
        await authenticator.authenticate(req)


@pytest.mark.asyncio
async def test_unknown_agent_rejected(market, authenticator, wallet):
    req = await _signed(wallet, "ghost", Method.REJECT, {"agentId": "ghost"})
    with pytest.raises(AuthError, match="Unknown agent"):
        await authenticator.authenticate(req)


@pytest.mark.asyncio
async def test_malformed_signature_rejected(market, authenticator, wallet):
    params = {"agentId": "buyer-1"}
    req = await _signed(wallet, "buyer-1", Method.REJECT, params)
    req.proof.signature = "0xnothex"
    with pytest.raises(AuthError):
        await authenticator.authenticate(req)


@pytest.mark.asyncio
async def test_wallet_failure_is_unauthorized(market, authenticator, wallet):
    wallet.explode = True
    req = await _signed(wallet, "buyer-1", Method.REJECT, {"agentId": "buyer-1"})
    with pytest.raises(AuthError):
        await authenticator.authenticate(req)
    assert wallet.verify_calls == 1


@pytest.mark.asyncio
async def test_denials_are_audited(market, authenticator, services):
    req = make_request(Method.OFFER, {"agentId": "buyer-1"}, 1)
    with pytest.raises(AuthError):
        await authenticator.authenticate(req, correlation_id="corr-1")

    events = [e for e in services.audit.read() if e["action"] == "auth"]
    assert events[-1]["outcome"] == "denied"
    assert events[-1]["agent_id"] == "buyer-1"
    assert events[-1]["correlation_id"] == "corr-1"
    assert events[-1]["detail"]["method"] == "marketplace.offer"


@pytest.mark.parametrize("timestamp", [float("nan"), float("inf")])
@pytest.mark.asyncio
async def test_non_finite_proof_timestamp_is_refused(services, market, timestamp):
    params = {"agentId": "buyer-1", "listingId": market.listing.id, "offerPrice": "72"}
    signature = await services.wallet.sign_message(
        "buyer-1", canonical_message(Method.OFFER, params, timestamp)
    )
    raw = json.loads(json.dumps({
        "version": "2.0",
        "method": "marketplace.offer",
        "params": params,
        "id": 1,
        "proof": {
            "signature": signature,
            "policyHash": "",
            "signerId": await services.wallet.get_signer_id("buyer-1"),
            "timestamp": timestamp,
        },
    }))

    resp = await services.dispatcher.handle_message(raw)
    assert resp.is_error
    assert resp.error.code == ErrorCode.INVALID_REQUEST
    assert (await services.store.stats())["offers"] == 0


@pytest.mark.asyncio
async def test_non_finite_timestamp_fails_before_wallet(market, authenticator, wallet):
    params = {"agentId": "buyer-1", "listingId": market.listing.id, "offerPrice": "72"}
    proof = Proof.model_construct(signature="0x00", policy_hash="", signer_id="x", timestamp=float("nan"))
    req = Request.model_construct(version="2.0", method=Method.OFFER, params=params, id=1, proof=proof)

    with pytest.raises(AuthError, match="finite"):
        await authenticator.authenticate(req)
    assert wallet.verify_calls == 0
