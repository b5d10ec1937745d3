"""Marketplace protocol envelope — request/response shapes and validation.

Every agent-to-agent call is a JSON-RPC 2.0 style request:

    { version: "2.0", method, params, id?, proof? }

answered by exactly one response:

    { version: "2.0", result | error, id }

The method set is closed.  A payload that does not match the request shape
is rejected with ``INVALID_REQUEST`` before any handler or authenticator
sees it.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
)

from agentmarket.protocol.errors import ErrorCode, InvalidRequestError

PROTOCOL_VERSION = "2.0"

FiniteFloat = Annotated[StrictFloat, Field(allow_inf_nan=False)]
RequestId = Union[StrictStr, StrictInt, FiniteFloat]


# ── Methods ──────────────────────────────────────────────────────────────────

class Method(str, Enum):
    SEARCH = "marketplace.search"
    OFFER = "marketplace.offer"
    ACCEPT = "marketplace.accept"
    REJECT = "marketplace.reject"
    COUNTER = "marketplace.counter"


# ── Proof ────────────────────────────────────────────────────────────────────

class Proof(BaseModel):
    """Signed attestation attached to authenticated requests."""

    model_config = ConfigDict(populate_by_name=True)

    signature: StrictStr
    policy_hash: StrictStr = Field(alias="policyHash")
    signer_id: StrictStr = Field(alias="signerId")
    timestamp: StrictInt | FiniteFloat        # ms since epoch

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ── Envelopes ────────────────────────────────────────────────────────────────

class Request(BaseModel):
    version: Literal["2.0"]
    method: Method
    params: dict[str, Any]
    id: RequestId | None = None
    proof: Proof | None = None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "version": self.version,
            "method": self.method.value,
            "params": self.params,
        }
        if self.id is not None:
            out["id"] = self.id
        if self.proof is not None:
            out["proof"] = self.proof.to_wire()
        return out


class ErrorObject(BaseModel):
    code: int
    message: str
    data: Any = None


class Response(BaseModel):
    version: Literal["2.0"] = PROTOCOL_VERSION
    result: Any = None
    error: ErrorObject | None = None
    id: RequestId | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"version": self.version}
        if self.error is not None:
            out["error"] = self.error.model_dump(exclude_none=True)
        else:
            out["result"] = self.result
        out["id"] = self.id
        return out


# ── Validation ───────────────────────────────────────────────────────────────

def parse_request(raw: Any) -> Request:
    """Validate *raw* against the request shape or raise ``InvalidRequestError``."""
    if not isinstance(raw, dict):
        raise InvalidRequestError("Invalid JSON-RPC 2.0 message", data=[{"loc": [], "msg": "expected an object"}])
    try:
        return Request.model_validate(raw)
    except ValidationError as exc:
        problems = [
            {"loc": [str(p) for p in e["loc"]], "msg": e["msg"]}
            for e in exc.errors(include_url=False)
        ]
        raise InvalidRequestError("Invalid JSON-RPC 2.0 message", data=problems) from exc


def parse_response(raw: Any) -> Response:
    return Response.model_validate(raw)


# ── Builders ─────────────────────────────────────────────────────────────────

def make_request(
    method: Method | str,
    params: dict[str, Any] | None = None,
    request_id: str | int | float | None = None,
    proof: Proof | None = None,
) -> Request:
    return Request(
        version=PROTOCOL_VERSION,
        method=Method(method),
        params=params or {},
        id=request_id,
        proof=proof,
    )


def make_result(request_id: str | int | float | None, result: Any) -> Response:
    return Response(result=result, id=request_id)


def make_error(
    request_id: str | int | float | None,
    code: ErrorCode | int,
    message: str,
    data: Any = None,
) -> Response:
    return Response(error=ErrorObject(code=int(code), message=message, data=data), id=request_id)
