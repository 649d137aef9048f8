"""Run one AI request through the governance pipeline.

Order: input validation, feature gate, rate limit, context build, provider call,
output validation. Callers only ever see the four DomainError subclasses; no step
is retried here and a consumed rate-limit slot is not returned on failure.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable

from pydantic import BaseModel

from promptgate.core.config import get_settings
from promptgate.core.errors import (
    AIResponseInvalidError,
    DomainError,
    FeaturePermissionDeniedError,
    PromptGateError,
    RateLimitExceededError,
    ServiceUnavailableError,
)
from promptgate.providers.llm.base import LLMProvider, ProviderResponse
from promptgate.services.audit import (
    EVENT_FEATURE_DENIED,
    EVENT_GENERATION_COMPLETED,
    EVENT_RATE_LIMITED,
    AuditSink,
)
from promptgate.services.context_builder import BuiltContext, LayerReport, build_context
from promptgate.services.feature_gate import FeatureGate, FeatureGateResult
from promptgate.services.pii import safe_summarize
from promptgate.services.rate_limit import RateLimitDecision, RateLimiter
from promptgate.services.schemas import PromptDefinition, validate_payload
from promptgate.services.telemetry import increment_counter, record_ai_call


logger = logging.getLogger(__name__)

_GENERIC_FAILURE = "AI generation failed"


@dataclass(frozen=True)
class GenerationResult:
    output: BaseModel
    gate: FeatureGateResult
    rate_limit: RateLimitDecision
    layers: list[LayerReport]
    context_chars: int
    context_trimmed: bool
    provider: str
    model: str
    used_fallback: bool
    duration_ms: float


@dataclass
class _CallTelemetry:
    # Mutable per-call record flushed in the finally block regardless of outcome.
    feature: str
    prompt_id: str
    provider: str | None = None
    model: str | None = None
    success: bool = False
    used_fallback: bool = False
    error_code: str | None = None


class RequestOrchestrator:
    def __init__(
        self,
        *,
        feature_gate: FeatureGate,
        rate_limiter: RateLimiter,
        provider: LLMProvider,
        audit: AuditSink | None = None,
        max_context_chars: int | None = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._gate = feature_gate
        self._limiter = rate_limiter
        self._provider = provider
        self._audit = audit
        self._max_context_chars = max_context_chars
        self._time = time_source or time.monotonic

    async def run(
        self,
        definition: PromptDefinition,
        *,
        user_id: str,
        tenant_id: str,
        variables: Any,
        request_id: str | None = None,
    ) -> GenerationResult:
        start = self._time()
        telemetry = _CallTelemetry(feature=definition.feature, prompt_id=definition.id)
        try:
            result = await self._run(
                definition,
                telemetry,
                user_id=user_id,
                tenant_id=tenant_id,
                variables=variables,
                request_id=request_id,
                start=start,
            )
            telemetry.success = True
            return result
        except DomainError as exc:
            telemetry.error_code = exc.code
            raise
        except Exception as exc:  # noqa: BLE001 - callers only see the domain taxonomy
            telemetry.error_code = ServiceUnavailableError.code
            logger.error(
                "ai_request_unexpected_error feature=%s prompt_id=%s error_type=%s request_id=%s",
                definition.feature,
                definition.id,
                type(exc).__name__,
                request_id,
            )
            raise ServiceUnavailableError(_GENERIC_FAILURE) from exc
        finally:
            duration_ms = (self._time() - start) * 1000.0
            record_ai_call(
                feature=telemetry.feature,
                prompt_id=telemetry.prompt_id,
                provider=telemetry.provider,
                model=telemetry.model,
                duration_ms=duration_ms,
                success=telemetry.success,
                used_fallback=telemetry.used_fallback,
                error_code=telemetry.error_code,
            )
            logger.debug(
                "ai_call_telemetry feature=%s prompt_id=%s version=%s provider=%s model=%s "
                "duration_ms=%.1f success=%s used_fallback=%s",
                telemetry.feature,
                telemetry.prompt_id,
                definition.version,
                telemetry.provider,
                telemetry.model,
                duration_ms,
                telemetry.success,
                telemetry.used_fallback,
            )

    async def _run(
        self,
        definition: PromptDefinition,
        telemetry: _CallTelemetry,
        *,
        user_id: str,
        tenant_id: str,
        variables: Any,
        request_id: str | None,
        start: float,
    ) -> GenerationResult:
        validated = validate_payload(definition.variables_schema, variables)
        if not validated.ok:
            message = f"Invalid AI input variables: {'; '.join(validated.errors)}"
            logger.warning(
                "ai_input_invalid prompt_id=%s error_count=%s", definition.id, len(validated.errors)
            )
            raise AIResponseInvalidError(message)
        prompt_variables = validated.value

        try:
            gate = await self._gate.authorize(
                user_id=user_id, tenant_id=tenant_id, feature=definition.feature
            )
        except FeaturePermissionDeniedError as exc:
            increment_counter(f"ai_feature_denied_total.{exc.reason}")
            await self._emit_audit(
                tenant_id=tenant_id,
                actor_id=user_id,
                actor_role=None,
                event_type=EVENT_FEATURE_DENIED,
                outcome="failure",
                resource_id=definition.feature,
                request_id=request_id,
                metadata={"reason": exc.reason},
                error_code=exc.code,
            )
            raise

        try:
            decision = await self._limiter.enforce(user_id=user_id, tenant_id=tenant_id)
        except RateLimitExceededError as exc:
            increment_counter(f"ai_rate_limited_total.{exc.scope}")
            await self._emit_audit(
                tenant_id=tenant_id,
                actor_id=user_id,
                actor_role=gate.user_role,
                event_type=EVENT_RATE_LIMITED,
                outcome="failure",
                resource_id=definition.feature,
                request_id=request_id,
                metadata={"scope": exc.scope, "window_key": exc.window_key},
                error_code=exc.code,
            )
            raise

        directive = getattr(prompt_variables, "custom_prompt", None)
        if directive:
            summary = safe_summarize(directive)
            logger.debug(
                "ai_custom_prompt_shape length=%s has_pii=%s", summary["length"], summary["has_pii"]
            )

        context: BuiltContext = build_context(
            definition.build_layers(prompt_variables),
            max_context_chars=(
                self._max_context_chars
                if self._max_context_chars is not None
                else get_settings().context_max_chars
            ),
        )
        logger.info(
            "ai_context_built prompt_id=%s total_chars=%s was_trimmed=%s layers=%s",
            definition.id,
            context.total_chars,
            context.was_trimmed,
            len(context.layers),
        )

        requested_model = getattr(prompt_variables, "ai_model", None) or definition.model
        response = await self._call_provider(context.text, requested_model, request_id)
        telemetry.provider = response.provider
        telemetry.model = response.model
        payload = response.data if isinstance(response.data, dict) else None
        telemetry.used_fallback = bool(
            response.used_fallback or (payload or {}).get("used_fallback", False)
        )

        if payload is None:
            logger.error(
                "ai_output_invalid prompt_id=%s provider=%s payload_type=%s",
                definition.id,
                response.provider,
                type(response.data).__name__,
            )
            raise AIResponseInvalidError("AI output invalid: <root>: expected object")

        if payload.get("error"):
            # Provider errors can echo request content; log only that one occurred.
            logger.warning(
                "ai_provider_error_payload provider=%s model=%s request_id=%s",
                response.provider,
                response.model,
                request_id,
            )
            raise ServiceUnavailableError("AI provider returned an error")

        output = validate_payload(definition.output_schema, payload)
        if not output.ok:
            issues = "; ".join(output.errors)
            logger.error(
                "ai_output_invalid prompt_id=%s provider=%s error_count=%s",
                definition.id,
                response.provider,
                len(output.errors),
            )
            raise AIResponseInvalidError(f"AI output invalid: {issues}")

        await self._emit_audit(
            tenant_id=tenant_id,
            actor_id=user_id,
            actor_role=gate.user_role,
            event_type=EVENT_GENERATION_COMPLETED,
            outcome="success",
            resource_id=definition.feature,
            request_id=request_id,
            metadata={
                "prompt_id": definition.id,
                "prompt_version": definition.version,
                "provider": response.provider,
                "model": response.model,
                "context_chars": context.total_chars,
                "context_trimmed": context.was_trimmed,
            },
        )

        return GenerationResult(
            output=output.value,
            gate=gate,
            rate_limit=decision,
            layers=list(context.layers),
            context_chars=context.total_chars,
            context_trimmed=context.was_trimmed,
            provider=response.provider,
            model=response.model,
            used_fallback=telemetry.used_fallback,
            duration_ms=(self._time() - start) * 1000.0,
        )

    async def _call_provider(
        self, prompt: str, model: str | None, request_id: str | None
    ) -> ProviderResponse:
        try:
            return await self._provider.generate(prompt, model=model)
        except PromptGateError as exc:
            logger.warning(
                "ai_provider_failed provider=%s error_type=%s request_id=%s",
                getattr(self._provider, "name", "unknown"),
                type(exc).__name__,
                request_id,
            )
            raise ServiceUnavailableError(_GENERIC_FAILURE) from exc
        except (TimeoutError, OSError) as exc:
            logger.warning(
                "ai_provider_transport_error provider=%s error_type=%s request_id=%s",
                getattr(self._provider, "name", "unknown"),
                type(exc).__name__,
                request_id,
            )
            raise ServiceUnavailableError(_GENERIC_FAILURE) from exc

    async def _emit_audit(
        self,
        *,
        tenant_id: str,
        actor_id: str,
        actor_role: str | None,
        event_type: str,
        outcome: str,
        resource_id: str,
        request_id: str | None,
        metadata: dict[str, Any],
        error_code: str | None = None,
    ) -> None:
        # Audit is a side call; its failures never change the request outcome.
        if self._audit is None:
            return
        try:
            await self._audit(
                tenant_id=tenant_id,
                actor_type="user",
                actor_id=actor_id,
                actor_role=actor_role,
                event_type=event_type,
                outcome=outcome,
                resource_type="ai_feature",
                resource_id=resource_id,
                request_id=request_id,
                metadata=metadata,
                error_code=error_code,
            )
        except Exception as exc:  # noqa: BLE001 - audit is best-effort
            logger.warning(
                "ai_audit_failed event_type=%s error_type=%s", event_type, type(exc).__name__
            )


def build_orchestrator(request_id: str | None = None) -> RequestOrchestrator:
    # Wire production collaborators from settings.
    from promptgate.providers.llm.factory import get_llm_provider
    from promptgate.services.audit import record_event
    from promptgate.services.feature_gate import build_feature_gate
    from promptgate.services.rate_limit import get_rate_limiter

    settings = get_settings()
    return RequestOrchestrator(
        feature_gate=build_feature_gate(),
        rate_limiter=get_rate_limiter(),
        provider=get_llm_provider(request_id),
        audit=record_event if settings.audit_enabled else None,
    )
