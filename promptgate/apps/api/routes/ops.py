from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from promptgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from promptgate.apps.api.response import SuccessEnvelope, success_response
from promptgate.core.config import get_settings
from promptgate.services.feature_gate import describe_feature_gate
from promptgate.services.telemetry import ai_call_summary, counters_snapshot, p95_request_latency


router = APIRouter(prefix="/ops", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)


class AITelemetryResponse(BaseModel):
    window_s: int
    features: dict[str, Any]
    counters: dict[str, int]
    p95_request_latency_ms: float | None
    rate_limits: dict[str, Any]
    feature_gate: dict[str, Any]


@router.get("/ai-telemetry", response_model=SuccessEnvelope[AITelemetryResponse])
async def ai_telemetry(
    request: Request,
    window_s: int = Query(default=3600, ge=60, le=86400),
) -> dict:
    # Aggregates only; no prompt or response content is ever retained.
    settings = get_settings()
    payload = AITelemetryResponse(
        window_s=window_s,
        features=ai_call_summary(window_s),
        counters=counters_snapshot(),
        p95_request_latency_ms=p95_request_latency(window_s, path_prefix="/v1/ai"),
        rate_limits={
            "enabled": settings.rate_limit_enabled,
            "backend": settings.rl_backend,
            "window_minutes": settings.rl_window_minutes,
            "user_limit": settings.rl_user_limit,
            "tenant_limit": settings.rl_tenant_limit,
        },
        feature_gate=describe_feature_gate(),
    )
    return success_response(request=request, data=payload)
