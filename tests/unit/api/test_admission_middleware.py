"""Unit tests for admission middleware."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from tollgate.admission.engine import AdmissionEngine
from tollgate.admission.guard import AdmissionGuard
from tollgate.admission.models import FailurePolicy, LimiterConfig
from tollgate.admission.policy import AdmissionPolicy
from tollgate.admission.stores.inmemory import InMemoryAtomicStore
from tollgate.api.middleware.admission import AdmissionMiddleware

RESULT = {"deviceId": "D1", "testResult": "PASS", "stepId": 7}
HEADERS = {"X-Device-Id": "D1"}


def make_policy(**overrides: Any) -> AdmissionPolicy:
    data: dict[str, Any] = {
        "operation_id": "submitResult",
        "dedup_ttl": 5,
        "field_selectors": ["deviceId", "testResult", "stepId"],
        "limiter": LimiterConfig.window(limit=2, window=1),
    }
    data.update(overrides)
    return AdmissionPolicy(**data)


def make_client(
    guard: AdmissionGuard, calls: list[dict], enabled: bool = True
) -> TestClient:
    app = FastAPI()

    @app.post("/v1/results", status_code=201)
    async def submit_result(body: dict) -> dict:
        calls.append(body)
        return {"stored": True}

    @app.get("/v1/results")
    async def list_results() -> list:
        return calls

    @app.post("/v1/logs")
    async def submit_log(body: dict) -> dict:
        return {"stored": True}

    app.add_middleware(
        AdmissionMiddleware,
        guards={"/v1/results": guard},
        enabled=enabled,
    )
    return TestClient(app)


@pytest.fixture
def engine(clock) -> AdmissionEngine:
    return AdmissionEngine(InMemoryAtomicStore(clock=clock))


@pytest.fixture
def failing_engine() -> AdmissionEngine:
    store = MagicMock()
    store.backend = "mock"
    store.execute = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    return AdmissionEngine(store)


@pytest.fixture
def calls() -> list[dict]:
    return []


class TestAdmissionMiddleware:
    """Tests for decision handling on protected paths."""

    def test_allow_passes_to_handler(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)

        response = client.post("/v1/results", json=RESULT, headers=HEADERS)

        assert response.status_code == 201
        assert response.json() == {"stored": True}
        assert response.headers["X-Admission-Decision"] == "allow"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert calls == [RESULT]

    def test_duplicate_answers_success_without_handler(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)
        client.post("/v1/results", json=RESULT, headers=HEADERS)

        response = client.post(
            "/v1/results", json={**RESULT, "sentAt": 1700000000123}, headers=HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "accepted"
        assert body["duplicate"] is True
        assert body["operation_id"] == "submitResult"
        assert len(body["fingerprint"]) == 64
        assert response.headers["X-Admission-Decision"] == "duplicate"
        assert len(calls) == 1

    def test_rate_limited_returns_429(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)
        for step in range(2):
            client.post("/v1/results", json={**RESULT, "stepId": step}, headers=HEADERS)

        response = client.post("/v1/results", json=RESULT, headers=HEADERS)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1"
        assert response.headers["X-Admission-Decision"] == "rate_limited"
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert response.json()["error"]["retry_after"] == 1.0
        assert len(calls) == 2

    def test_fail_closed_returns_503(self, failing_engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), failing_engine), calls)

        response = client.post("/v1/results", json=RESULT, headers=HEADERS)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"
        assert response.headers["X-Admission-Decision"] == "unknown"
        assert calls == []

    def test_fail_open_passes_to_handler(self, failing_engine, calls) -> None:
        policy = make_policy(on_store_failure=FailurePolicy.FAIL_OPEN)
        client = make_client(AdmissionGuard(policy, failing_engine), calls)

        response = client.post("/v1/results", json=RESULT, headers=HEADERS)

        assert response.status_code == 201
        assert response.headers["X-Admission-Decision"] == "unknown"
        assert calls == [RESULT]


class TestRequestValidation:
    """Tests for requests rejected before evaluation."""

    def test_missing_caller_header(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)

        response = client.post("/v1/results", json=RESULT)

        assert response.status_code == 400
        assert "X-Device-Id" in response.json()["error"]["message"]

    def test_caller_selector_replaces_header(self, engine, calls) -> None:
        guard = AdmissionGuard(make_policy(caller_selector="deviceId"), engine)
        client = make_client(guard, calls)

        response = client.post("/v1/results", json=RESULT)

        assert response.status_code == 201

    def test_invalid_json(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)

        response = client.post(
            "/v1/results",
            content=b"{not json",
            headers={**HEADERS, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_unresolvable_selector_rejected(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)

        response = client.post("/v1/results", json={"deviceId": "D1"}, headers=HEADERS)

        assert response.status_code == 400
        assert "stepId" in response.json()["error"]["message"]
        assert calls == []


class TestUnprotectedRequests:
    """Tests for requests the middleware does not guard."""

    def test_get_is_not_guarded(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)
        response = client.get("/v1/results")
        assert response.status_code == 200
        assert "X-Admission-Decision" not in response.headers

    def test_other_paths_not_guarded(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls)
        response = client.post("/v1/logs", json=RESULT)
        assert response.status_code == 200

    def test_disabled_middleware_passes_everything(self, engine, calls) -> None:
        client = make_client(AdmissionGuard(make_policy(), engine), calls, enabled=False)

        for _ in range(3):
            response = client.post("/v1/results", json=RESULT, headers=HEADERS)
            assert response.status_code == 201

        assert len(calls) == 3
