from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel

from promptgate.apps.api.deps import Principal, get_orchestrator, get_principal
from promptgate.apps.api.openapi import AI_ERROR_RESPONSES
from promptgate.apps.api.response import SuccessEnvelope, get_request_id, success_response
from promptgate.prompts.question_generator import QUESTION_GENERATOR, QuestionGeneratorOutput
from promptgate.services.orchestrator import RequestOrchestrator


router = APIRouter(prefix="/ai", tags=["ai"], responses=AI_ERROR_RESPONSES)


class GenerationMeta(BaseModel):
    prompt_id: str
    prompt_version: int
    user_role: str
    context_chars: int
    context_trimmed: bool
    rate_limit_window: str
    rate_limit_degraded: bool


class GenerateQuestionsResponse(BaseModel):
    result: QuestionGeneratorOutput
    generation: GenerationMeta


@router.post(
    "/generate-questions",
    response_model=SuccessEnvelope[GenerateQuestionsResponse],
)
async def generate_questions(
    request: Request,
    variables: dict[str, Any] = Body(...),
    principal: Principal = Depends(get_principal),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
) -> dict:
    # Variables are validated by the orchestrator so schema failures share one error code.
    result = await orchestrator.run(
        QUESTION_GENERATOR,
        user_id=principal.user_id,
        tenant_id=principal.tenant_id,
        variables=variables,
        request_id=get_request_id(request),
    )
    payload = GenerateQuestionsResponse(
        result=result.output,
        generation=GenerationMeta(
            prompt_id=QUESTION_GENERATOR.id,
            prompt_version=QUESTION_GENERATOR.version,
            user_role=result.gate.user_role,
            context_chars=result.context_chars,
            context_trimmed=result.context_trimmed,
            rate_limit_window=result.rate_limit.window_key,
            rate_limit_degraded=result.rate_limit.degraded,
        ),
    )
    return success_response(request=request, data=payload)
