from __future__ import annotations

from typing import Any

from promptgate.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _documented(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _documented(
        "Missing identity headers",
        _error_example(code="AUTH_UNAUTHORIZED", message="X-User-Id header is required"),
    ),
    500: _documented(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
}

AI_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    403: _documented(
        "Feature disabled for tenant or role too low",
        _error_example(
            code="PERMISSION_DENIED",
            message="Insufficient role to use AI feature 'prompt_rewrite'",
            details={"feature": "prompt_rewrite", "reason": "rbac"},
        ),
    ),
    422: _documented(
        "Input variables or provider output failed validation",
        _error_example(
            code="AI_RESPONSE_INVALID",
            message="Invalid AI input variables: question_count: Field required",
        ),
    ),
    429: _documented(
        "Per-user or per-tenant window limit exceeded",
        _error_example(
            code="RATE_LIMITED",
            message="Rate limit exceeded (user) for window 2026-01-01T14:30",
            details={"scope": "user", "window_key": "2026-01-01T14:30"},
        ),
    ),
    503: _documented(
        "AI provider unavailable",
        _error_example(code="SERVICE_UNAVAILABLE", message="AI generation failed"),
    ),
}
