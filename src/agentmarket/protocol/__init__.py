"""Agent-to-agent marketplace protocol.

Request/response envelopes, the closed method set, error codes and the
dispatcher.  Proof authentication (``protocol.auth``), the client stub
(``protocol.client``) and the HTTP app (``protocol.server``) build on the
marketplace store and are imported from their own modules.
"""

from agentmarket.protocol.dispatcher import Dispatcher, HandlerContext
from agentmarket.protocol.envelope import (
    PROTOCOL_VERSION,
    ErrorObject,
    Method,
    Proof,
    Request,
    Response,
    make_error,
    make_request,
    make_result,
    parse_request,
    parse_response,
)
from agentmarket.protocol.errors import ErrorCode, MarketError

__all__ = [
    "PROTOCOL_VERSION",
    "Dispatcher",
    "ErrorCode",
    "ErrorObject",
    "HandlerContext",
    "MarketError",
    "Method",
    "Proof",
    "Request",
    "Response",
    "make_error",
    "make_request",
    "make_result",
    "parse_request",
    "parse_response",
]
