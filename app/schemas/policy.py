"""Pydantic schemas for the quota policy file.

The file is format-agnostic (YAML or JSON) and accepts the camelCase keys of
the published schema (``keyGenerator``, ``excludeRoutes``, ``filterOrder``)
as well as their snake_case equivalents.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Annotated, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from app.utils.durations import parse_short_duration
from app.utils.path_matcher import compile_pattern

HTTP_METHODS = frozenset(
    {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"}
)

# Registered for every policy file unless the file defines the same name.
BUILTIN_KEY_GENERATORS = frozenset({"client-address"})


def _coerce_duration(value: object) -> object:
    if isinstance(value, str):
        parsed = parse_short_duration(value)
        if parsed is not None:
            return parsed
    return value


def _require_positive(value: timedelta) -> timedelta:
    if value <= timedelta(0):
        raise ValueError("duration must be positive")
    return value


PositiveDuration = Annotated[
    timedelta,
    BeforeValidator(_coerce_duration),
    AfterValidator(_require_positive),
]


class _PolicyModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")


class Route(_PolicyModel):
    """URL glob pattern plus optional HTTP method."""

    uri: str = Field(..., min_length=1, description="Ant-style URL pattern, e.g. /api/**")
    method: str | None = Field(
        default=None,
        description="HTTP method constraint; None matches every method.",
    )

    @field_validator("uri")
    @classmethod
    def check_pattern(cls, value: str) -> str:
        try:
            compile_pattern(value)
        except re.error as exc:
            raise ValueError(f"invalid route pattern {value!r}: {exc}") from exc
        return value

    @field_validator("method")
    @classmethod
    def normalise_method(cls, value: str | None) -> str | None:
        if value is None:
            return None
        method = value.strip().upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"unknown HTTP method: {value!r}")
        return method


class Block(_PolicyModel):
    """Cool-down applied once a policy's quota is exhausted."""

    duration: PositiveDuration = Field(..., description="Length of the cool-down.")


class Policy(_PolicyModel):
    """A named quota rule."""

    name: str = Field(..., min_length=1)
    duration: PositiveDuration = Field(..., description="Window length.")
    count: int = Field(..., ge=1, description="Maximum allowed requests per window.")
    key_generator: str = Field(..., alias="keyGenerator", min_length=1)
    routes: tuple[Route, ...] = Field(..., min_length=1)
    exclude_routes: tuple[Route, ...] = Field(default=(), alias="excludeRoutes")
    block: Block | None = None

    @property
    def block_duration(self) -> timedelta | None:
        return self.block.duration if self.block else None


class KeyGeneratorConfig(_PolicyModel):
    """Named key generator declaration.

    ``params`` is an ordered sequence: generated keys append values in exactly
    this order.
    """

    type: Literal["body", "header", "client-address"]
    params: tuple[str, ...] = ()

    @model_validator(mode="after")
    def check_params(self) -> "KeyGeneratorConfig":
        if len(set(self.params)) != len(self.params):
            raise ValueError("params must not contain duplicates")
        if self.type in ("body", "header") and not self.params:
            raise ValueError(f"a {self.type} key generator needs at least one param")
        if self.type == "client-address" and self.params:
            raise ValueError("a client-address key generator takes no params")
        return self


class PolicyFile(_PolicyModel):
    """Root document of the policy file."""

    filter_order: int = Field(default=0, alias="filterOrder")
    key_generators: dict[str, KeyGeneratorConfig] = Field(
        default_factory=dict, alias="keyGenerators"
    )
    policies: tuple[Policy, ...] = ()

    @model_validator(mode="after")
    def check_references(self) -> "PolicyFile":
        seen: set[str] = set()
        for policy in self.policies:
            if policy.name in seen:
                raise ValueError(f"duplicate policy name: {policy.name!r}")
            seen.add(policy.name)

        known = BUILTIN_KEY_GENERATORS | set(self.key_generators)
        for policy in self.policies:
            if policy.key_generator not in known:
                raise ValueError(
                    f"policy {policy.name!r} references unknown key generator "
                    f"{policy.key_generator!r}"
                )
        return self
