from __future__ import annotations

from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promptgate.domain.models import UserRole


async def list_user_roles(session: AsyncSession, user_id: str) -> list[str]:
    result = await session.execute(select(UserRole.role).where(UserRole.user_id == user_id))
    return [str(role) for role in result.scalars().all()]


class SqlRoleStore:
    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_roles(self, user_id: str) -> list[str]:
        async with self._session_factory() as session:
            return await list_user_roles(session, user_id)


async def grant_user_role(session: AsyncSession, user_id: str, role: str) -> bool:
    # Returns False when the grant already exists.
    existing = await session.execute(
        select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == role)
    )
    if existing.scalar_one_or_none() is not None:
        return False
    session.add(UserRole(user_id=user_id, role=role))
    await session.flush()
    return True
