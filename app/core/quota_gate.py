"""Quota gate middleware for the FastAPI application.

This module wires the enforcer into the HTTP layer.

For every request the middleware:
- skips work entirely when no policy applies to the endpoint
- buffers the body (Starlette replays it to the downstream handler, so the
  route can still read it)
- runs the synchronous enforcer in the threadpool so a slow quota store never
  blocks the event loop
- turns a non-allow decision into a response: 429 for quota violations, 400
  when a key could not be derived, 503 when the store is down and the gate is
  fail-closed
"""

from __future__ import annotations

import logging

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from app.core.exception_handlers import build_error_content
from app.schemas.policy import Policy
from app.schemas.quota import Decision, DecisionOutcome, InboundRequest, Rate
from app.services.enforcer import Enforcer
from app.utils.durations import whole_seconds

logger = logging.getLogger(__name__)


def build_inbound_request(request: Request, body: bytes) -> InboundRequest:
    """Snapshot the parts of a Starlette request the gate reads."""

    return InboundRequest(
        method=request.method.upper(),
        path=request.url.path,
        body=body,
        headers={name.lower(): value for name, value in request.headers.items()},
        client_host=request.client.host if request.client else None,
    )


def _rejection_response(rate: Rate, policy: Policy, include_headers: bool) -> JSONResponse:
    code = "rate_limit_blocked" if rate.blocked else "rate_limit_exceeded"
    content = build_error_content(
        code=code,
        message="Rate limit exceeded. Try again later.",
        details={"policy": policy.name, "count": rate.count},
    )

    headers: dict[str, str] = {}
    if include_headers:
        # Upper bound: the remaining window/block time is not tracked per key.
        wait = max(policy.duration, policy.block_duration or policy.duration)
        headers["Retry-After"] = str(whole_seconds(wait))
        headers["X-RateLimit-Limit"] = str(policy.count)
        headers["X-RateLimit-Policy"] = policy.name

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=content,
        headers=headers or None,
    )


def build_decision_response(decision: Decision, *, include_headers: bool = True) -> JSONResponse:
    """Render a non-allow decision as an HTTP response.

    Raises:
        ValueError: If the decision is ``ALLOW`` or lacks its payload.
    """
    outcome = decision.outcome

    if outcome is DecisionOutcome.REJECT and decision.rate and decision.policy:
        return _rejection_response(decision.rate, decision.policy, include_headers)

    if outcome is DecisionOutcome.INVALID_REQUEST and decision.error:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=build_error_content(
                code=decision.error.code,
                message=decision.error.message,
                details=decision.error.details,
            ),
        )

    if outcome is DecisionOutcome.STORE_UNAVAILABLE and decision.error:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=build_error_content(
                code=decision.error.code,
                message="Rate limiting is temporarily unavailable. Try again later.",
            ),
        )

    raise ValueError(f"no response for decision outcome {outcome.value!r}")


class QuotaGateMiddleware(BaseHTTPMiddleware):
    """Admission control in front of every route.

    Usage:
        app.add_middleware(QuotaGateMiddleware, enforcer=enforcer)
    """

    def __init__(self, app: ASGIApp, enforcer: Enforcer, include_headers: bool = True) -> None:
        super().__init__(app)
        self.enforcer = enforcer
        self.include_headers = include_headers

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Resolved once here on the event loop; admit reuses the list.
        policies = self.enforcer.matcher.resolve(request.url.path, request.method)
        if not policies:
            return await call_next(request)

        body = await request.body()
        decision = await run_in_threadpool(
            self.enforcer.admit, build_inbound_request(request, body), policies
        )
        if decision.allowed:
            return await call_next(request)

        logger.info(
            "quota_gate.denied",
            extra={
                "outcome": decision.outcome.value,
                "policy": decision.policy.name if decision.policy else None,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return build_decision_response(decision, include_headers=self.include_headers)
