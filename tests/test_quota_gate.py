"""Integration tests for the quota gate in front of FastAPI routes."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.config import GateSettings, LogSettings, Settings
from app.core.errors import ConfigurationAppError, QuotaStoreUnavailableError
from app.schemas.policy import PolicyFile
from app.services.enforcer import Enforcer
from app.services.key_generators import KeyGeneratorRegistry
from app.services.policy_matcher import PolicyMatcher
from app.services.quota_engine import QuotaEngine

POLICY_DOCUMENT = {
    "keyGenerators": {"phone-body": {"type": "body", "params": ["phone-number"]}},
    "policies": [
        {
            "name": "TEST",
            "duration": "PT1H",
            "count": 2,
            "keyGenerator": "phone-body",
            "routes": [{"uri": "/test/**", "method": "POST"}],
            "excludeRoutes": [{"uri": "/test/open"}],
        },
        {
            "name": "BLOCKING",
            "duration": "1m",
            "count": 1,
            "keyGenerator": "client-address",
            "routes": [{"uri": "/blocking"}],
            "block": {"duration": "5m"},
        },
    ],
}


def _settings(**gate_overrides) -> Settings:
    return Settings(gate=GateSettings(**gate_overrides), log=LogSettings(level="WARNING"))


def _add_routes(app: FastAPI) -> FastAPI:
    @app.post("/test/echo")
    async def echo(request: Request) -> dict:
        return {"received": await request.json()}

    @app.post("/test/open")
    async def open_route() -> dict:
        return {"ok": True}

    @app.get("/blocking")
    async def blocking() -> dict:
        return {"ok": True}

    return app


def _client(document: dict = POLICY_DOCUMENT, **gate_overrides) -> TestClient:
    app = create_app(_settings(**gate_overrides), policy_file=PolicyFile.model_validate(document))
    return TestClient(_add_routes(app))


@pytest.fixture
def client() -> TestClient:
    return _client()


def test_downstream_still_reads_body(client: TestClient) -> None:
    resp = client.post("/test/echo", json={"phone-number": 213213213})

    assert resp.status_code == 200
    assert resp.json() == {"received": {"phone-number": 213213213}}


def test_rejects_once_quota_is_used(client: TestClient) -> None:
    statuses = [
        client.post("/test/echo", json={"phone-number": 1}).status_code for _ in range(3)
    ]

    assert statuses == [200, 200, 429]


def test_rejection_body_and_headers(client: TestClient) -> None:
    for _ in range(2):
        client.post("/test/echo", json={"phone-number": 1})

    resp = client.post("/test/echo", json={"phone-number": 1}, headers={"X-Request-ID": "req-9"})

    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "3600"
    assert resp.headers["X-RateLimit-Limit"] == "2"
    assert resp.headers["X-RateLimit-Policy"] == "TEST"
    assert resp.headers["X-Request-ID"] == "req-9"
    error = resp.json()["error"]
    assert error["code"] == "rate_limit_exceeded"
    assert error["request_id"] == "req-9"
    assert error["details"] == {"policy": "TEST", "count": 3}


def test_keys_are_isolated_per_body_value(client: TestClient) -> None:
    for _ in range(2):
        client.post("/test/echo", json={"phone-number": 1})

    assert client.post("/test/echo", json={"phone-number": 2}).status_code == 200
    assert client.post("/test/echo", json={"phone-number": 1}).status_code == 429


def test_missing_field_returns_400(client: TestClient) -> None:
    resp = client.post("/test/echo", json={"email": "a@b.c"})

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "field_not_presented"
    assert error["message"] == "The field `phone-number` is not presented in the request body /test/echo"


def test_excluded_route_is_not_limited(client: TestClient) -> None:
    statuses = {client.post("/test/open").status_code for _ in range(5)}

    assert statuses == {200}


def test_unmatched_method_is_not_limited(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "policies": 2}


def test_block_reported_with_block_duration(client: TestClient) -> None:
    client.get("/blocking")
    first = client.get("/blocking")
    second = client.get("/blocking")

    assert first.status_code == 429
    assert first.json()["error"]["code"] == "rate_limit_exceeded"
    assert first.headers["Retry-After"] == "300"
    assert second.status_code == 429
    assert second.json()["error"]["code"] == "rate_limit_blocked"
    assert second.json()["error"]["details"] == {"policy": "BLOCKING", "count": None}


def test_rate_limit_headers_can_be_disabled() -> None:
    client = _client(include_headers=False)
    client.get("/blocking")

    resp = client.get("/blocking")

    assert resp.status_code == 429
    assert "Retry-After" not in resp.headers
    assert "X-RateLimit-Limit" not in resp.headers


def test_disabled_gate_lets_everything_through() -> None:
    client = _client(enabled=False)

    statuses = {client.get("/blocking").status_code for _ in range(5)}

    assert statuses == {200}


def _failing_enforcer(policy_file: PolicyFile, *, fail_open: bool) -> Enforcer:
    store = MagicMock()
    store.flag_active.side_effect = QuotaStoreUnavailableError(
        code="quota_store_unavailable", message="The quota store did not respond in time"
    )
    store.increment_with_expiry.side_effect = store.flag_active.side_effect
    return Enforcer(
        PolicyMatcher(policy_file.policies),
        KeyGeneratorRegistry.from_config(policy_file.key_generators),
        QuotaEngine(store),
        fail_open=fail_open,
    )


@pytest.mark.parametrize(("fail_open", "expected"), [(False, 503), (True, 200)])
def test_store_outage(fail_open: bool, expected: int) -> None:
    policy_file = PolicyFile.model_validate(POLICY_DOCUMENT)
    app = create_app(
        _settings(),
        policy_file=policy_file,
        enforcer=_failing_enforcer(policy_file, fail_open=fail_open),
    )
    client = TestClient(_add_routes(app))

    resp = client.post("/test/echo", json={"phone-number": 1})

    assert resp.status_code == expected
    if expected == 503:
        assert resp.json()["error"]["code"] == "quota_store_unavailable"


@pytest.mark.parametrize(("filter_order", "has_request_id"), [(-1, False), (0, True), (10, True)])
def test_filter_order_positions_gate_around_request_id(
    filter_order: int, has_request_id: bool
) -> None:
    client = _client(filter_order=filter_order)
    client.get("/blocking")

    resp = client.get("/blocking")

    assert resp.status_code == 429
    assert ("X-Request-ID" in resp.headers) is has_request_id


def test_invalid_route_pattern_fails_app_startup(tmp_path) -> None:
    path = tmp_path / "policies.yaml"
    path.write_text(
        "policies:\n"
        "  - name: BAD\n"
        "    duration: 1m\n"
        "    count: 1\n"
        "    keyGenerator: client-address\n"
        "    routes:\n"
        "      - { uri: \"/users/{id:(}\" }\n",
        encoding="utf-8",
    )

    with pytest.raises(ConfigurationAppError) as exc_info:
        create_app(_settings(policies_file=str(path)))

    assert exc_info.value.code == "policy_file_invalid"


def test_filter_order_read_from_policy_file() -> None:
    client = _client({**POLICY_DOCUMENT, "filterOrder": -5})
    client.get("/blocking")

    resp = client.get("/blocking")

    assert resp.status_code == 429
    assert "X-Request-ID" not in resp.headers


def test_policies_resolved_once_per_gated_request() -> None:
    policy_file = PolicyFile.model_validate(POLICY_DOCUMENT)
    app = create_app(_settings(), policy_file=policy_file)
    matcher = app.state.enforcer.matcher
    client = TestClient(_add_routes(app))

    with patch.object(matcher, "resolve", wraps=matcher.resolve) as resolve:
        resp = client.post("/test/echo", json={"phone-number": 1})

    assert resp.status_code == 200
    assert resolve.call_count == 1
