"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before any import loads settings, so tests never
pick up a developer's .env file or policy file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("GATE_STORE_BACKEND", "memory")
os.environ.pop("GATE_POLICIES_FILE", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import timedelta
from typing import Any

import pytest

from app.schemas.policy import Policy


class FakeClock:
    """Deterministic monotonic clock used to test expiry logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def make_policy(**overrides: Any) -> Policy:
    """Build a valid policy, overriding any field by its Python name."""

    base: dict[str, Any] = {
        "name": "TEST",
        "duration": timedelta(hours=1),
        "count": 3,
        "key_generator": "client-address",
        "routes": [{"uri": "/test"}],
    }
    base.update(overrides)
    return Policy.model_validate(base)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
