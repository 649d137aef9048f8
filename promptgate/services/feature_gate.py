from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Generic, Iterable, Protocol, TypeVar

from promptgate.core.errors import FeaturePermissionDeniedError


logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_MANAGER = "manager"
ROLE_TENANT_ADMIN = "tenant_admin"
ROLE_SUPER_ADMIN = "super_admin"

# Ordered from lowest to highest privilege.
ROLE_HIERARCHY = [ROLE_USER, ROLE_MANAGER, ROLE_TENANT_ADMIN, ROLE_SUPER_ADMIN]

FEATURE_QUESTION_GENERATION = "question_generation"
FEATURE_PROMPT_REWRITE = "prompt_rewrite"
FEATURE_AI_CRITIC_PASS = "ai_critic_pass"
FEATURE_QUALITY_REGEN = "quality_regen"

# Generation-class features are open to any member; administrative ones need tenant admins.
FEATURE_ROLE_MAP = {
    FEATURE_QUESTION_GENERATION: ROLE_USER,
    FEATURE_PROMPT_REWRITE: ROLE_USER,
    FEATURE_AI_CRITIC_PASS: ROLE_TENANT_ADMIN,
    FEATURE_QUALITY_REGEN: ROLE_TENANT_ADMIN,
}

DENIAL_FEATURE_DISABLED = "feature_disabled"
DENIAL_RBAC = "rbac"


class RoleStore(Protocol):
    async def list_roles(self, user_id: str) -> list[str]:
        ...


class FeatureFlagStore(Protocol):
    # Returns None when the tenant has no row for the feature.
    async def get_flag(self, tenant_id: str, feature_key: str) -> bool | None:
        ...


T = TypeVar("T")


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    # Carry either a value or the lookup failure so fallbacks stay explicit at call sites.
    value: T | None = None
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


async def _lookup(awaitable: Awaitable[T]) -> LookupResult[T]:
    try:
        return LookupResult(value=await awaitable)
    except Exception as exc:  # noqa: BLE001 - caller decides the fallback
        return LookupResult(error=exc)


@dataclass(frozen=True)
class FeatureGateResult:
    feature: str
    user_role: str
    feature_enabled: bool


def role_level(role: str) -> int:
    # Unknown role strings rank with the lowest privilege.
    try:
        return ROLE_HIERARCHY.index(role)
    except ValueError:
        return 0


def resolve_effective_role(roles: Iterable[str]) -> str:
    # Highest-ranked role wins; users with no assignments are plain users.
    effective = ROLE_USER
    for role in roles:
        if role_level(role) > role_level(effective):
            effective = role
    return effective


def required_role(feature: str) -> str:
    return FEATURE_ROLE_MAP.get(feature, ROLE_USER)


class FeatureGate:
    def __init__(self, *, roles: RoleStore, flags: FeatureFlagStore) -> None:
        self._roles = roles
        self._flags = flags

    async def is_feature_enabled(self, tenant_id: str, feature: str) -> bool:
        result = await _lookup(self._flags.get_flag(tenant_id, feature))
        if result.failed:
            logger.warning(
                "feature_flag_lookup_failed feature=%s fallback=enabled error_type=%s",
                feature,
                type(result.error).__name__,
            )
            return True
        # Unconfigured flags are treated as enabled.
        if result.value is None:
            return True
        return result.value is True

    async def resolve_user_role(self, user_id: str) -> str:
        result = await _lookup(self._roles.list_roles(user_id))
        if result.failed:
            logger.warning(
                "role_lookup_failed fallback=%s error_type=%s",
                ROLE_USER,
                type(result.error).__name__,
            )
            return ROLE_USER
        return resolve_effective_role(result.value or [])

    async def authorize(self, *, user_id: str, tenant_id: str, feature: str) -> FeatureGateResult:
        """Authorize an AI feature for a caller.

        The tenant flag is checked first and short-circuits before any role lookup;
        a disabled feature denies every role, including super admins.
        """
        enabled = await self.is_feature_enabled(tenant_id, feature)
        if not enabled:
            logger.info("feature_denied feature=%s reason=%s", feature, DENIAL_FEATURE_DISABLED)
            raise FeaturePermissionDeniedError(DENIAL_FEATURE_DISABLED, feature)

        user_role = await self.resolve_user_role(user_id)
        if role_level(user_role) < role_level(required_role(feature)):
            logger.info("feature_denied feature=%s reason=%s", feature, DENIAL_RBAC)
            raise FeaturePermissionDeniedError(DENIAL_RBAC, feature)

        return FeatureGateResult(feature=feature, user_role=user_role, feature_enabled=True)


def build_feature_gate() -> FeatureGate:
    # Wire SQL-backed stores lazily so importing the gate never creates an engine.
    from promptgate.persistence.db import SessionLocal
    from promptgate.persistence.repos.feature_flags import SqlFeatureFlagStore
    from promptgate.persistence.repos.roles import SqlRoleStore

    return FeatureGate(roles=SqlRoleStore(SessionLocal), flags=SqlFeatureFlagStore(SessionLocal))


def describe_feature_gate() -> dict[str, Any]:
    # Expose the static feature table for ops visibility.
    return {
        "roles": list(ROLE_HIERARCHY),
        "features": {feature: role for feature, role in sorted(FEATURE_ROLE_MAP.items())},
    }
