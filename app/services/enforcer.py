"""Admission decisions for inbound requests.

The enforcer ties the gate together: resolve the policies for the endpoint,
derive one key per policy, consume quota, and stop at the first policy that
reports the request as exceeded or blocked. Policies after that one are not
consumed for this request.

``admit`` never raises for request-level problems. Key derivation failures
and store outages come back as explicit :class:`Decision` outcomes so the
caller has to handle each case.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Sequence

from app.adapters.quota_store.factory import create_quota_store
from app.core.config import GateSettings
from app.core.errors import FieldNotPresentedError, QuotaStoreUnavailableError
from app.schemas.policy import Policy, PolicyFile
from app.schemas.quota import Decision, InboundRequest, RatePolicy
from app.services.key_generators import KeyGenerator, KeyGeneratorRegistry
from app.services.policy_matcher import PolicyMatcher
from app.services.quota_engine import QuotaEngine

logger = logging.getLogger(__name__)


def hash_quota_key(key: str) -> str:
    """Hash a quota key for logging; keys may embed client data."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class Enforcer:
    """Per-request orchestration of matcher, key generators and engine."""

    def __init__(
        self,
        matcher: PolicyMatcher,
        key_generators: KeyGeneratorRegistry,
        engine: QuotaEngine,
        *,
        fail_open: bool = False,
    ) -> None:
        """Initialize the enforcer.

        Key generators are looked up for every configured policy here, so a
        policy naming an unknown generator fails at startup.

        Raises:
            ConfigurationAppError: If a policy references an unknown generator.
        """
        self._matcher = matcher
        self._engine = engine
        self._fail_open = fail_open
        self._generators: dict[str, KeyGenerator] = {
            policy.name: key_generators.get(policy.key_generator)
            for policy in matcher.policies
        }

    @property
    def matcher(self) -> PolicyMatcher:
        return self._matcher

    @property
    def engine(self) -> QuotaEngine:
        return self._engine

    @property
    def fail_open(self) -> bool:
        return self._fail_open

    def admit(
        self,
        request: InboundRequest,
        policies: Sequence[Policy] | None = None,
    ) -> Decision:
        """Decide whether ``request`` may proceed.

        Args:
            request: Snapshot of the inbound request.
            policies: Policies already resolved for the request; resolved
                from the matcher when omitted.

        Returns:
            Decision: ``ALLOW``; ``REJECT`` with the violated rate and policy;
                ``INVALID_REQUEST`` when a key could not be derived; or
                ``STORE_UNAVAILABLE`` when the store failed and the gate is
                fail-closed.
        """
        if policies is None:
            policies = self._matcher.resolve(request.path, request.method)

        for policy in policies:
            try:
                key = self._generators[policy.name].generate_key(request, policy)
            except FieldNotPresentedError as exc:
                logger.warning(
                    "enforcer.field_not_presented",
                    extra={
                        "policy": policy.name,
                        "field": exc.field,
                        "path": request.path,
                        "method": request.method,
                    },
                )
                return Decision.invalid_request(exc, policy)

            try:
                rate = self._engine.consume(RatePolicy.from_policy(key, policy))
            except QuotaStoreUnavailableError as exc:
                if self._fail_open:
                    logger.warning(
                        "enforcer.store_unavailable_fail_open",
                        extra={"policy": policy.name, "key_hash": hash_quota_key(key)},
                    )
                    continue
                logger.error(
                    "enforcer.store_unavailable",
                    extra={"policy": policy.name, "key_hash": hash_quota_key(key)},
                )
                return Decision.store_unavailable(exc, policy)

            if rate.rejected:
                logger.warning(
                    "enforcer.rejected",
                    extra={
                        "policy": policy.name,
                        "key_hash": hash_quota_key(key),
                        "limit": policy.count,
                        "count": rate.count,
                        "blocked": rate.blocked,
                        "window_s": policy.duration.total_seconds(),
                    },
                )
                return Decision.reject(rate, policy)

            logger.debug(
                "enforcer.consumed",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_quota_key(key),
                    "limit": policy.count,
                    "count": rate.count,
                },
            )

        return Decision.allow()


def create_enforcer(gate_settings: GateSettings, policy_file: PolicyFile) -> Enforcer:
    """Build an enforcer from settings and a validated policy file.

    Raises:
        ConfigurationAppError: If the store backend or a key generator is unknown.
    """
    registry = KeyGeneratorRegistry.from_config(policy_file.key_generators)
    matcher = PolicyMatcher(policy_file.policies, cache_size=gate_settings.matcher_cache_size)
    engine = QuotaEngine(create_quota_store(gate_settings), key_prefix=gate_settings.key_prefix)
    return Enforcer(matcher, registry, engine, fail_open=gate_settings.fail_open)


def describe_policy(policy: Policy) -> dict[str, object]:
    """Compact, log-safe view of a policy."""

    return {
        "name": policy.name,
        "window_s": policy.duration.total_seconds(),
        "limit": policy.count,
        "block_s": policy.block_duration.total_seconds() if policy.block_duration else None,
    }
