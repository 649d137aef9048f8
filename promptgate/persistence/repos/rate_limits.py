from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from promptgate.core.config import get_settings
from promptgate.domain.models import AIRateLimitCounter
from promptgate.services.rate_limit import CounterKey


def build_increment_statement(key: CounterKey):
    # Single-statement upsert so concurrent requests serialize on the row lock.
    stmt = pg_insert(AIRateLimitCounter).values(
        scope=key.scope,
        identity_id=key.identity_id,
        window_key=key.window_key,
        request_count=1,
    )
    return stmt.on_conflict_do_update(
        constraint="uq_ai_rate_limits_scope_identity_window",
        set_={
            "request_count": AIRateLimitCounter.request_count + 1,
            "updated_at": func.now(),
        },
    ).returning(AIRateLimitCounter.request_count)


class SqlCounterStore:
    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def incr(self, key: CounterKey, ttl_s: int) -> int:
        # Rows are removed by prune_rate_limit_counters rather than a per-row TTL.
        _ = ttl_s
        async with self._session_factory() as session:
            result = await session.execute(build_increment_statement(key))
            count = int(result.scalar_one())
            await session.commit()
        return count

    async def get(self, key: CounterKey) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AIRateLimitCounter.request_count).where(
                    AIRateLimitCounter.scope == key.scope,
                    AIRateLimitCounter.identity_id == key.identity_id,
                    AIRateLimitCounter.window_key == key.window_key,
                )
            )
            return int(result.scalar_one_or_none() or 0)


async def prune_rate_limit_counters(
    session: AsyncSession,
    *,
    now: datetime | None = None,
) -> int:
    # Drop counters for windows that closed longer ago than the retention period.
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.rl_counter_retention_minutes)
    result = await session.execute(
        delete(AIRateLimitCounter).where(AIRateLimitCounter.updated_at < cutoff)
    )
    return result.rowcount or 0
