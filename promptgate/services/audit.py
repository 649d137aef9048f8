from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from promptgate.domain.models import AuditEvent
from promptgate.services.pii import redact_pii


logger = logging.getLogger(__name__)

EVENT_FEATURE_DENIED = "ai.feature_denied"
EVENT_RATE_LIMITED = "ai.rate_limited"
EVENT_GENERATION_COMPLETED = "ai.generation.completed"

# Any key containing one of these fragments is replaced wholesale.
_SENSITIVE_KEY_FRAGMENTS = (
    "api_key",
    "authorization",
    "token",
    "secret",
    "password",
    "text",
    "content",
    "prompt",
    "directive",
)
_REDACTED_VALUE = "[REDACTED]"
_MAX_VALUE_CHARS = 256


class AuditSink(Protocol):
    def __call__(
        self,
        *,
        tenant_id: str | None,
        actor_type: str,
        actor_id: str | None,
        actor_role: str | None,
        event_type: str,
        outcome: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> Awaitable[None]:
        ...


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def _sanitize_string(value: str) -> str:
    # Free-form values are PII-scrubbed and bounded; keys decide full redaction.
    scrubbed = redact_pii(value).redacted_text
    if len(scrubbed) > _MAX_VALUE_CHARS:
        return scrubbed[:_MAX_VALUE_CHARS]
    return scrubbed


def sanitize_metadata(value: Any) -> Any:
    """Return a copy of audit metadata that is safe to persist.

    Sensitive keys are replaced with ``[REDACTED]`` at any depth, string values are
    passed through PII redaction and capped in length, and other scalars are kept.
    """
    if isinstance(value, dict):
        return {
            str(key): _REDACTED_VALUE if _is_sensitive_key(str(key)) else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    if isinstance(value, str):
        return _sanitize_string(value)
    return value


async def _persist(session: AsyncSession, event: AuditEvent, *, commit: bool) -> None:
    try:
        session.add(event)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        logger.warning(
            "audit_event_write_failed event_type=%s request_id=%s error_type=%s",
            event.event_type,
            event.request_id,
            type(exc).__name__,
        )


async def record_event(
    *,
    session: AsyncSession | None = None,
    occurred_at: datetime | None = None,
    tenant_id: str | None,
    actor_type: str,
    actor_id: str | None,
    actor_role: str | None,
    event_type: str,
    outcome: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    commit: bool | None = None,
) -> None:
    # Best-effort: a failed audit write is logged and never reaches the caller.
    event = AuditEvent(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        tenant_id=tenant_id,
        actor_type=actor_type,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_id,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )

    if session is not None:
        await _persist(session, event, commit=bool(commit))
        return

    from promptgate.persistence.db import SessionLocal

    async with SessionLocal() as audit_session:
        await _persist(audit_session, event, commit=True)
