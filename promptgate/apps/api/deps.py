from __future__ import annotations

from fastapi import Header, HTTPException, Request, status
from pydantic import BaseModel

from promptgate.apps.api.response import get_request_id
from promptgate.services.orchestrator import RequestOrchestrator, build_orchestrator


class Principal(BaseModel):
    # Identity resolved upstream; this service only trusts the forwarded headers.
    user_id: str
    tenant_id: str


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


async def get_principal(
    user_id: str | None = Header(default=None, alias="X-User-Id", max_length=128),
    tenant_id: str | None = Header(default=None, alias="X-Tenant-Id", max_length=128),
) -> Principal:
    if not user_id or not user_id.strip():
        raise _auth_error("X-User-Id header is required")
    if not tenant_id or not tenant_id.strip():
        raise _auth_error("X-Tenant-Id header is required")
    return Principal(user_id=user_id.strip(), tenant_id=tenant_id.strip())


async def get_orchestrator(request: Request) -> RequestOrchestrator:
    # Overridden in tests through app.dependency_overrides.
    return build_orchestrator(get_request_id(request))
