from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel

from promptgate.core.errors import DomainError


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

T = TypeVar("T")


def get_request_id(request: Request) -> str:
    # The first call for a request fixes its id; later calls reuse it.
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
    return request_id


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION

    @classmethod
    def for_request(cls, request: Request) -> "ResponseMeta":
        return cls(request_id=get_request_id(request))


class ErrorDetail(BaseModel):
    """Caller-facing error body.

    ``code`` is one of the stable domain codes (``RATE_LIMITED``,
    ``FEATURE_DISABLED``, ``PERMISSION_DENIED``, ``AI_RESPONSE_INVALID``,
    ``SERVICE_UNAVAILABLE``) or a transport code such as ``AUTH_UNAUTHORIZED``.
    ``message`` never carries provider payloads or prompt text.
    """

    code: str
    message: str
    details: dict[str, Any] | None = None

    @classmethod
    def from_domain(cls, exc: DomainError, details: dict[str, Any] | None = None) -> "ErrorDetail":
        return cls(code=exc.code, message=exc.message, details=details)


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    body = data.model_dump(mode="json") if isinstance(data, BaseModel) else data
    return {"data": body, "meta": ResponseMeta.for_request(request).model_dump()}


def error_envelope(*, request: Request, error: ErrorDetail) -> dict[str, Any]:
    envelope = ErrorEnvelope(error=error, meta=ResponseMeta.for_request(request))
    return envelope.model_dump(mode="json", exclude_none=True)


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return error_envelope(
        request=request, error=ErrorDetail(code=code, message=message, details=details)
    )
