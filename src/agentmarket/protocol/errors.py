"""Protocol error codes and the exception taxonomy shared by every layer.

Handlers raise :class:`MarketError` subclasses; the dispatcher turns them
into error envelopes carrying ``code``, ``message`` and optional ``data``.
Anything else escaping a handler is reported as ``INTERNAL_ERROR``.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    # JSON-RPC 2.0
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Application range
    LISTING_NOT_FOUND = -32001
    INSUFFICIENT_FUNDS = -32002
    UNAUTHORIZED = -32003
    OFFER_REJECTED = -32004
    INVALID_PRICE = -32005
    PURCHASE_IN_PROGRESS = -32006
    LISTING_UNAVAILABLE = -32007
    SETTLEMENT_FAILED = -32008


class MarketError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        err: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            err["data"] = self.data
        return err


# ── Protocol ─────────────────────────────────────────────────────────────────

class ProtocolError(MarketError):
    code = ErrorCode.INVALID_REQUEST


class ParseError(ProtocolError):
    code = ErrorCode.PARSE_ERROR


class InvalidRequestError(ProtocolError):
    code = ErrorCode.INVALID_REQUEST


class MethodNotFoundError(ProtocolError):
    code = ErrorCode.METHOD_NOT_FOUND


class InvalidParamsError(ProtocolError):
    code = ErrorCode.INVALID_PARAMS


# ── Auth ─────────────────────────────────────────────────────────────────────

class AuthError(MarketError):
    code = ErrorCode.UNAUTHORIZED


# ── Marketplace ──────────────────────────────────────────────────────────────

class PolicyViolation(MarketError):
    """Spend refused before any external call was made."""

    code = ErrorCode.INSUFFICIENT_FUNDS


class DuplicatePurchaseError(PolicyViolation):
    code = ErrorCode.PURCHASE_IN_PROGRESS


class ListingNotFoundError(MarketError):
    code = ErrorCode.LISTING_NOT_FOUND


class ListingUnavailableError(MarketError):
    code = ErrorCode.LISTING_UNAVAILABLE


class InvalidPriceError(MarketError):
    code = ErrorCode.INVALID_PRICE


class OfferRejectedError(MarketError):
    code = ErrorCode.OFFER_REJECTED


class AgentNotFoundError(InvalidParamsError):
    pass


class OfferNotFoundError(InvalidParamsError):
    pass


class TransactionNotFoundError(InvalidParamsError):
    pass


# ── Settlement ───────────────────────────────────────────────────────────────

class SettlementError(MarketError):
    """The settlement provider failed; the transaction was written FAILED."""

    code = ErrorCode.SETTLEMENT_FAILED


class SettlementTimeoutError(SettlementError):
    """No answer in time; the transaction stays PENDING for reconciliation."""
