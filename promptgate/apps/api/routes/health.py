from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from promptgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from promptgate.apps.api.response import SuccessEnvelope, success_response
from promptgate.core.config import get_settings

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    llm_provider: str
    rate_limit_backend: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    settings = get_settings()
    payload = HealthResponse(
        status="ok",
        llm_provider=settings.llm_provider,
        rate_limit_backend=settings.rl_backend if settings.rate_limit_enabled else "disabled",
    )
    return success_response(request=request, data=payload)
