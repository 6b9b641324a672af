"""Key generators: turn a request and a policy into a quota identity.

Every generator starts from the same base key::

    {uri}_{method}_{ISO window}_{count}

and appends request-derived values joined by ``_``. Values are appended in
the order the policy file declares them, so two instances configured from
the same file always produce byte-identical keys for the same request.

The registry maps the names used by policies (``keyGenerator: phone-body``)
to generator instances. It is built once from the policy file at startup.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence

from app.core.errors import ConfigurationAppError, FieldNotPresentedError
from app.schemas.policy import KeyGeneratorConfig, Policy
from app.schemas.quota import InboundRequest
from app.utils.durations import format_iso_duration

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "_"


def build_base_key(request: InboundRequest, policy: Policy) -> list[str]:
    """Return the components shared by every generated key."""

    return [
        request.path,
        request.method,
        format_iso_duration(policy.duration),
        str(policy.count),
    ]


def _render_value(value: Any) -> str:
    """Render a JSON value as key text.

    Strings are used verbatim; every other JSON type uses its compact JSON
    text with sorted object keys.
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class KeyGenerator(ABC):
    """Capability producing a deterministic identity key for a request."""

    @abstractmethod
    def generate_key(self, request: InboundRequest, policy: Policy) -> str:
        """Build the quota key for ``request`` under ``policy``.

        Raises:
            FieldNotPresentedError: If a value the key needs is missing.
        """
        raise NotImplementedError


class RequestBodyKeyGenerator(KeyGenerator):
    """Appends values of top-level fields of a JSON object body."""

    def __init__(self, params: Sequence[str]) -> None:
        if not params:
            raise ValueError("params must name at least one body field")
        self.params = tuple(params)

    def generate_key(self, request: InboundRequest, policy: Policy) -> str:
        payload = self._parse_body(request)

        key = build_base_key(request, policy)
        for param in self.params:
            value = payload.get(param)
            if value is None:
                raise FieldNotPresentedError.for_field(param, request.path)
            key.append(_render_value(value))
        return KEY_SEPARATOR.join(key)

    def _parse_body(self, request: InboundRequest) -> Mapping[str, Any]:
        try:
            payload = json.loads(request.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            logger.debug(
                "key_generator.body_unparsable",
                extra={"path": request.path, "error_type": type(exc).__name__},
            )
            raise FieldNotPresentedError.for_field(self.params[0], request.path) from exc

        if not isinstance(payload, dict):
            raise FieldNotPresentedError.for_field(self.params[0], request.path)
        return payload


class RequestHeaderKeyGenerator(KeyGenerator):
    """Appends values of request headers (case-insensitive lookup)."""

    def __init__(self, params: Sequence[str]) -> None:
        if not params:
            raise ValueError("params must name at least one header")
        self.params = tuple(params)

    def generate_key(self, request: InboundRequest, policy: Policy) -> str:
        key = build_base_key(request, policy)
        for param in self.params:
            value = request.header(param)
            if value is None:
                raise FieldNotPresentedError.for_field(param, request.path, source="headers")
            key.append(value)
        return KEY_SEPARATOR.join(key)


class ClientAddressKeyGenerator(KeyGenerator):
    """Appends the remote address reported by the transport."""

    def generate_key(self, request: InboundRequest, policy: Policy) -> str:
        key = build_base_key(request, policy)
        key.append(request.client_host or "unknown")
        return KEY_SEPARATOR.join(key)


def create_key_generator(config: KeyGeneratorConfig) -> KeyGenerator:
    """Instantiate a generator from its policy file declaration."""

    if config.type == "body":
        return RequestBodyKeyGenerator(config.params)
    if config.type == "header":
        return RequestHeaderKeyGenerator(config.params)
    if config.type == "client-address":
        return ClientAddressKeyGenerator()

    raise ConfigurationAppError(
        code="unknown_key_generator_type",
        message=f"Unknown key generator type: '{config.type}'",
    )


class KeyGeneratorRegistry:
    """Name to generator mapping, resolved once at startup."""

    def __init__(self, generators: Mapping[str, KeyGenerator]) -> None:
        self._generators = dict(generators)

    @classmethod
    def from_config(cls, configs: Mapping[str, KeyGeneratorConfig]) -> "KeyGeneratorRegistry":
        generators: dict[str, KeyGenerator] = {"client-address": ClientAddressKeyGenerator()}
        for name, config in configs.items():
            generators[name] = create_key_generator(config)
        return cls(generators)

    def __contains__(self, name: str) -> bool:
        return name in self._generators

    def names(self) -> list[str]:
        return sorted(self._generators)

    def get(self, name: str) -> KeyGenerator:
        """Return the generator registered as ``name``.

        Raises:
            ConfigurationAppError: If no generator has that name.
        """
        try:
            return self._generators[name]
        except KeyError:
            raise ConfigurationAppError(
                code="unknown_key_generator",
                message=f"No key generator registered as '{name}'",
                details={"hint": f"registered: {', '.join(self.names())}"},
            ) from None
