from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from promptgate.apps.api.deps import get_orchestrator
from promptgate.apps.api.main import create_app
from promptgate.core.errors import ProviderError
from promptgate.providers.llm.base import ProviderResponse
from promptgate.providers.llm.fake import FakeLLMProvider
from promptgate.services.feature_gate import FeatureGate
from promptgate.services.orchestrator import RequestOrchestrator
from promptgate.services.rate_limit import MemoryCounterStore, RateLimiter


_HEADERS = {"X-User-Id": "u-api", "X-Tenant-Id": "t-api"}
_BODY = {"question_count": 2, "complexity": "moderate", "tone": "neutral"}


class _Roles:
    async def list_roles(self, user_id: str) -> list[str]:
        return ["user"]


class _Flags:
    def __init__(self, enabled: bool | None = None) -> None:
        self._enabled = enabled

    async def get_flag(self, tenant_id: str, feature_key: str) -> bool | None:
        return self._enabled


class _FailingProvider:
    name = "broken"

    async def generate(self, prompt: str, *, model: str | None = None) -> ProviderResponse:
        raise ProviderError("upstream 500")


def _client(*, provider=None, flag: bool | None = None, user_limit: int = 30) -> AsyncClient:
    # Swap the orchestrator so no database, Redis, or Vertex is needed.
    orchestrator = RequestOrchestrator(
        feature_gate=FeatureGate(roles=_Roles(), flags=_Flags(flag)),
        rate_limiter=RateLimiter(MemoryCounterStore(), user_limit=user_limit, enabled=True),
        provider=provider or FakeLLMProvider(),
    )
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health_is_enveloped() -> None:
    async with _client() as client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-health"})
    assert response.status_code == 200
    body = response.json()
    assert body["data"]["status"] == "ok"
    assert body["data"]["llm_provider"] == "fake"
    assert body["meta"] == {"request_id": "req-health", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-health"


@pytest.mark.asyncio
async def test_generate_questions_success() -> None:
    async with _client() as client:
        response = await client.post("/v1/ai/generate-questions", json=_BODY, headers=_HEADERS)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["result"]["success"] is True
    assert len(data["result"]["questions"]) == 1
    assert data["generation"]["prompt_id"] == "question_generator"
    assert data["generation"]["user_role"] == "user"
    assert data["generation"]["rate_limit_degraded"] is False


@pytest.mark.asyncio
async def test_missing_identity_headers_are_rejected() -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/ai/generate-questions", json=_BODY, headers={"X-Tenant-Id": "t-api"}
        )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_invalid_variables_return_422() -> None:
    async with _client() as client:
        response = await client.post(
            "/v1/ai/generate-questions",
            json={"question_count": 0},
            headers=_HEADERS,
        )
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "AI_RESPONSE_INVALID"
    assert "question_count" in error["message"]
    assert "tone" in error["message"]


@pytest.mark.asyncio
async def test_non_object_body_is_a_request_validation_error() -> None:
    async with _client() as client:
        response = await client.post("/v1/ai/generate-questions", json=[1, 2], headers=_HEADERS)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_rate_limited_response_carries_retry_hint() -> None:
    async with _client(user_limit=1) as client:
        first = await client.post("/v1/ai/generate-questions", json=_BODY, headers=_HEADERS)
        second = await client.post("/v1/ai/generate-questions", json=_BODY, headers=_HEADERS)
    assert first.status_code == 200
    assert second.status_code == 429
    error = second.json()["error"]
    assert error["code"] == "RATE_LIMITED"
    assert error["details"]["scope"] == "user"
    assert second.headers["X-RateLimit-Scope"] == "user"
    assert 1 <= int(second.headers["Retry-After"]) <= 600


@pytest.mark.asyncio
async def test_disabled_feature_returns_403() -> None:
    async with _client(flag=False) as client:
        response = await client.post("/v1/ai/generate-questions", json=_BODY, headers=_HEADERS)
    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "FEATURE_DISABLED"
    assert error["details"] == {"feature": "question_generation", "reason": "feature_disabled"}


@pytest.mark.asyncio
async def test_provider_failure_returns_503_without_details() -> None:
    async with _client(provider=_FailingProvider()) as client:
        response = await client.post("/v1/ai/generate-questions", json=_BODY, headers=_HEADERS)
    assert response.status_code == 503
    error = response.json()["error"]
    assert error["code"] == "SERVICE_UNAVAILABLE"
    assert "upstream" not in error["message"]


@pytest.mark.asyncio
async def test_ops_telemetry_reports_ai_calls() -> None:
    async with _client() as client:
        await client.post("/v1/ai/generate-questions", json=_BODY, headers=_HEADERS)
        response = await client.get("/v1/ops/ai-telemetry")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["features"]["question_generation"]["total"] == 1
    assert data["counters"]["ai_calls_total"] == 1
    assert data["rate_limits"]["user_limit"] == 30
    assert "question_generation" in data["feature_gate"]["features"]
