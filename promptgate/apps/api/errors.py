from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from promptgate.apps.api.response import ErrorDetail, error_envelope, error_response
from promptgate.core.config import get_settings
from promptgate.core.errors import (
    AIResponseInvalidError,
    DomainError,
    FeaturePermissionDeniedError,
    RateLimitExceededError,
    ServiceUnavailableError,
)
from promptgate.services.window import seconds_until_window_end


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

_DOMAIN_STATUS: tuple[tuple[type[DomainError], int], ...] = (
    (RateLimitExceededError, 429),
    (FeaturePermissionDeniedError, 403),
    (AIResponseInvalidError, 422),
    (ServiceUnavailableError, 503),
)


def status_for_domain_error(exc: DomainError) -> int:
    for error_type, status_code in _DOMAIN_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = status_for_domain_error(exc)
    headers: dict[str, str] = {}
    details: dict[str, Any] | None = None
    if isinstance(exc, RateLimitExceededError):
        retry_after = seconds_until_window_end(
            exc.window_key,
            datetime.now(timezone.utc),
            get_settings().rl_window_minutes,
        )
        headers["Retry-After"] = str(retry_after)
        headers["X-RateLimit-Scope"] = exc.scope
        details = {"scope": exc.scope, "window_key": exc.window_key}
    elif isinstance(exc, FeaturePermissionDeniedError):
        details = {"feature": exc.feature, "reason": exc.reason}
    payload = error_envelope(request=request, error=ErrorDetail.from_domain(exc, details))
    return JSONResponse(content=payload, status_code=status_code, headers=headers or None)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Routing errors (404/405) get the same envelope as handler-raised ones.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "invalid value")}
        for error in exc.errors()
    ]
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": errors},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces or provider payloads to callers.
    logger.error(
        "unhandled_exception path=%s error_type=%s", request.url.path, type(exc).__name__
    )
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
