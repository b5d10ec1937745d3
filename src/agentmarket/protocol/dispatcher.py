"""Method registry and dispatcher.

``handle_message`` always answers with a well-formed response envelope:

    raw dict ──▶ parse_request ──▶ authenticate ──▶ handler ──▶ Response
                     │                  │               │
                INVALID_REQUEST     UNAUTHORIZED     code / INTERNAL_ERROR
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from agentmarket.protocol.envelope import (
    Method,
    Request,
    Response,
    make_error,
    make_result,
    parse_request,
)
from agentmarket.protocol.errors import ErrorCode, MarketError, MethodNotFoundError

if TYPE_CHECKING:
    from agentmarket.protocol.auth import ProofAuthenticator

logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """Per-call context handed to every handler."""

    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    agent_id: str | None = None       # set when the request was authenticated


Handler = Callable[[dict[str, Any], HandlerContext], Awaitable[Any]]


class Dispatcher:
    def __init__(self, authenticator: ProofAuthenticator | None = None) -> None:
        self._handlers: dict[Method, Handler] = {}
        self._authenticator = authenticator
        self._request_count = 0

    def register_handler(self, method: Method | str, handler: Handler) -> None:
        method = Method(method)
        if method in self._handlers:
            logger.warning("Replacing handler for %s", method.value)
        self._handlers[method] = handler

    def clear_handlers(self) -> None:
        self._handlers.clear()

    @property
    def registered_methods(self) -> list[str]:
        return [m.value for m in self._handlers]

    def stats(self) -> dict[str, Any]:
        return {
            "request_count": self._request_count,
            "registered_methods": self.registered_methods,
            "handlers_count": len(self._handlers),
        }

    async def handle_message(self, raw: Any) -> Response:
        self._request_count += 1
        ctx = HandlerContext()

        try:
            request = parse_request(raw)
        except MarketError as exc:
            logger.info("Invalid request [%s]: %s", ctx.correlation_id, exc.message)
            return make_error(None, exc.code, exc.message, exc.data)

        return await self._dispatch(request, ctx)

    async def _dispatch(self, request: Request, ctx: HandlerContext) -> Response:
        handler = self._handlers.get(request.method)
        if handler is None:
            err = MethodNotFoundError(f"Method not found: {request.method.value}")
            return make_error(request.id, err.code, err.message)

        try:
            if self._authenticator is not None:
                ctx.agent_id = await self._authenticator.authenticate(request, ctx.correlation_id)
            result = await handler(request.params, ctx)
        except MarketError as exc:
            logger.info(
                "%s [%s] failed with %s: %s",
                request.method.value, ctx.correlation_id, exc.code.name, exc.message,
            )
            return make_error(request.id, exc.code, exc.message, exc.data)
        except Exception as exc:  # noqa: BLE001 - every call must produce an envelope
            logger.exception("%s [%s] crashed", request.method.value, ctx.correlation_id)
            return make_error(request.id, ErrorCode.INTERNAL_ERROR, str(exc) or type(exc).__name__)

        logger.debug("%s [%s] ok", request.method.value, ctx.correlation_id)
        return make_result(request.id, result)
