"""Value types exchanged between the gate's components.

These are plain frozen dataclasses rather than Pydantic models: they are
built on every request and never serialised directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Mapping

from app.core.errors import AppError, FieldNotPresentedError, QuotaStoreUnavailableError
from app.schemas.policy import Policy


@dataclass(frozen=True)
class InboundRequest:
    """Snapshot of the request surface the gate needs.

    Attributes:
        method: Upper-case HTTP method.
        path: Request URI path (no query string).
        body: Buffered request body; the downstream handler reads the same bytes.
        headers: Header mapping keyed by lower-case header name.
        client_host: Remote address reported by the transport, if any.
    """

    method: str
    path: str
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    client_host: str | None = None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


@dataclass(frozen=True)
class RatePolicy:
    """Input to a single consume: the derived key plus the policy limits."""

    key: str
    duration: timedelta
    count: int
    block_duration: timedelta | None = None

    @classmethod
    def from_policy(cls, key: str, policy: Policy) -> "RatePolicy":
        return cls(
            key=key,
            duration=policy.duration,
            count=policy.count,
            block_duration=policy.block_duration,
        )


@dataclass(frozen=True)
class Rate:
    """Result of a consume.

    Attributes:
        count: Counter value in the active window after this consume, or None
            when an active block rejected the call without touching the counter.
        exceeded: The window's count has passed the quota.
        blocked: A cool-down is active for this key.
    """

    count: int | None
    exceeded: bool
    blocked: bool

    @property
    def rejected(self) -> bool:
        return self.exceeded or self.blocked


class DecisionOutcome(str, Enum):
    """Admission outcome."""

    ALLOW = "allow"
    REJECT = "reject"
    INVALID_REQUEST = "invalid_request"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class Decision:
    """Explicit admission result returned by the enforcer.

    Only ``ALLOW`` lets the request through. ``REJECT`` carries the violated
    rate and policy; the failure outcomes carry the error that stopped
    evaluation and the policy being evaluated at the time.
    """

    outcome: DecisionOutcome
    rate: Rate | None = None
    policy: Policy | None = None
    error: AppError | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is DecisionOutcome.ALLOW

    @classmethod
    def allow(cls) -> "Decision":
        return cls(DecisionOutcome.ALLOW)

    @classmethod
    def reject(cls, rate: Rate, policy: Policy) -> "Decision":
        return cls(DecisionOutcome.REJECT, rate=rate, policy=policy)

    @classmethod
    def invalid_request(cls, error: FieldNotPresentedError, policy: Policy) -> "Decision":
        return cls(DecisionOutcome.INVALID_REQUEST, policy=policy, error=error)

    @classmethod
    def store_unavailable(cls, error: QuotaStoreUnavailableError, policy: Policy) -> "Decision":
        return cls(DecisionOutcome.STORE_UNAVAILABLE, policy=policy, error=error)
