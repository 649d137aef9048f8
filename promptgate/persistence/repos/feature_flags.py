from __future__ import annotations

from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promptgate.domain.models import TenantFeatureFlag


async def get_feature_flag(session: AsyncSession, tenant_id: str, feature_key: str) -> bool | None:
    # None means the tenant never configured the flag.
    result = await session.execute(
        select(TenantFeatureFlag.enabled).where(
            TenantFeatureFlag.tenant_id == tenant_id,
            TenantFeatureFlag.feature_key == feature_key,
        )
    )
    enabled = result.scalar_one_or_none()
    if enabled is None:
        return None
    return bool(enabled)


async def set_feature_flag(
    session: AsyncSession, tenant_id: str, feature_key: str, enabled: bool
) -> TenantFeatureFlag:
    row = await session.get(TenantFeatureFlag, (tenant_id, feature_key))
    if row is None:
        row = TenantFeatureFlag(tenant_id=tenant_id, feature_key=feature_key, enabled=enabled)
        session.add(row)
    else:
        row.enabled = enabled
    await session.flush()
    return row


class SqlFeatureFlagStore:
    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_flag(self, tenant_id: str, feature_key: str) -> bool | None:
        async with self._session_factory() as session:
            return await get_feature_flag(session, tenant_id, feature_key)
