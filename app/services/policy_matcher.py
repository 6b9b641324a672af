"""Policy resolution for a (uri, method) pair.

A policy applies when none of its exclude routes match and at least one of
its routes does. Among applicable policies with the same window only the
strictest (smallest count) is kept, and the result is ordered by window so
short, cheap windows are checked first.

Resolutions are cached per (uri, method). An empty resolution is cached like
any other, so unmatched endpoints are not rescanned on every request.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Sequence

from app.schemas.policy import Policy, Route
from app.utils.path_matcher import match_path
from app.utils.simple_cache import SimpleLRUCache

logger = logging.getLogger(__name__)


def route_matches(route: Route, uri: str, method: str) -> bool:
    """Return True if ``route`` applies to the request."""

    if route.method is not None and route.method != method.upper():
        return False
    return match_path(route.uri, uri)


def policy_applies(policy: Policy, uri: str, method: str) -> bool:
    """Exclusion takes precedence over inclusion."""

    if any(route_matches(route, uri, method) for route in policy.exclude_routes):
        return False
    return any(route_matches(route, uri, method) for route in policy.routes)


class PolicyMatcher:
    """Resolves and caches the ordered policies for an endpoint."""

    def __init__(self, policies: Sequence[Policy], *, cache_size: int | None = 4096) -> None:
        self._policies = tuple(policies)
        self._cache: SimpleLRUCache[tuple[str, str], tuple[Policy, ...]] = SimpleLRUCache(
            max_entries=cache_size
        )

    @property
    def policies(self) -> tuple[Policy, ...]:
        return self._policies

    def resolve(self, uri: str, method: str) -> list[Policy]:
        """Return the policies to enforce for ``method uri``, shortest window first.

        Args:
            uri: Request path.
            method: HTTP method.

        Returns:
            Ordered list of policies; empty when nothing applies.
        """
        cache_key = (uri, method.upper())
        resolved = self._cache.get_or_compute(
            cache_key, lambda: self._compute(cache_key[0], cache_key[1])
        )
        return list(resolved)

    def cache_info(self) -> dict[str, int | None]:
        return self._cache.stats()

    def _compute(self, uri: str, method: str) -> tuple[Policy, ...]:
        strictest: dict[timedelta, Policy] = {}
        for policy in self._policies:
            if not policy_applies(policy, uri, method):
                continue
            current = strictest.get(policy.duration)
            # Strict comparison: on equal counts the first policy in file order wins.
            if current is None or policy.count < current.count:
                strictest[policy.duration] = policy

        resolved = tuple(sorted(strictest.values(), key=lambda p: p.duration))
        logger.debug(
            "policy_matcher.resolved",
            extra={
                "path": uri,
                "method": method,
                "policies": [p.name for p in resolved],
            },
        )
        return resolved
