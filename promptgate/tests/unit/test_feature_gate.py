from __future__ import annotations

import pytest

from promptgate.core.errors import FeaturePermissionDeniedError
from promptgate.services.feature_gate import (
    DENIAL_FEATURE_DISABLED,
    DENIAL_RBAC,
    FEATURE_AI_CRITIC_PASS,
    FEATURE_QUESTION_GENERATION,
    ROLE_MANAGER,
    ROLE_SUPER_ADMIN,
    ROLE_TENANT_ADMIN,
    ROLE_USER,
    FeatureGate,
    describe_feature_gate,
    required_role,
    resolve_effective_role,
    role_level,
)


class _Roles:
    def __init__(self, roles: dict[str, list[str]] | None = None, *, fail: bool = False) -> None:
        self._roles = roles or {}
        self._fail = fail
        self.calls = 0

    async def list_roles(self, user_id: str) -> list[str]:
        self.calls += 1
        if self._fail:
            raise ConnectionError("roles unavailable")
        return self._roles.get(user_id, [])


class _Flags:
    def __init__(self, flags: dict[tuple[str, str], bool] | None = None, *, fail: bool = False) -> None:
        self._flags = flags or {}
        self._fail = fail

    async def get_flag(self, tenant_id: str, feature_key: str) -> bool | None:
        if self._fail:
            raise TimeoutError("flags unavailable")
        return self._flags.get((tenant_id, feature_key))


def test_role_ranking() -> None:
    assert role_level(ROLE_USER) < role_level(ROLE_MANAGER) < role_level(ROLE_TENANT_ADMIN)
    assert role_level(ROLE_TENANT_ADMIN) < role_level(ROLE_SUPER_ADMIN)
    assert role_level("auditor") == 0


def test_effective_role_is_highest_held() -> None:
    assert resolve_effective_role([]) == ROLE_USER
    assert resolve_effective_role([ROLE_MANAGER, ROLE_USER]) == ROLE_MANAGER
    assert resolve_effective_role(["auditor", ROLE_TENANT_ADMIN, ROLE_MANAGER]) == ROLE_TENANT_ADMIN


def test_unknown_feature_requires_user_role() -> None:
    assert required_role("something_new") == ROLE_USER
    assert required_role(FEATURE_AI_CRITIC_PASS) == ROLE_TENANT_ADMIN


@pytest.mark.asyncio
async def test_user_denied_admin_feature() -> None:
    gate = FeatureGate(roles=_Roles({"u1": [ROLE_USER]}), flags=_Flags())

    with pytest.raises(FeaturePermissionDeniedError) as exc_info:
        await gate.authorize(user_id="u1", tenant_id="t1", feature=FEATURE_AI_CRITIC_PASS)

    assert exc_info.value.reason == DENIAL_RBAC
    assert exc_info.value.code == "PERMISSION_DENIED"
    assert exc_info.value.feature == FEATURE_AI_CRITIC_PASS


@pytest.mark.asyncio
async def test_tenant_admin_allowed_admin_feature() -> None:
    gate = FeatureGate(roles=_Roles({"a1": [ROLE_USER, ROLE_TENANT_ADMIN]}), flags=_Flags())

    result = await gate.authorize(user_id="a1", tenant_id="t1", feature=FEATURE_AI_CRITIC_PASS)

    assert result.user_role == ROLE_TENANT_ADMIN
    assert result.feature_enabled is True


@pytest.mark.asyncio
async def test_disabled_feature_denies_super_admin_before_role_lookup() -> None:
    roles = _Roles({"root": [ROLE_SUPER_ADMIN]})
    flags = _Flags({("t1", FEATURE_QUESTION_GENERATION): False})
    gate = FeatureGate(roles=roles, flags=flags)

    with pytest.raises(FeaturePermissionDeniedError) as exc_info:
        await gate.authorize(user_id="root", tenant_id="t1", feature=FEATURE_QUESTION_GENERATION)

    assert exc_info.value.reason == DENIAL_FEATURE_DISABLED
    assert exc_info.value.code == "FEATURE_DISABLED"
    assert roles.calls == 0


@pytest.mark.asyncio
async def test_missing_flag_row_means_enabled() -> None:
    gate = FeatureGate(roles=_Roles(), flags=_Flags())
    assert await gate.is_feature_enabled("t1", FEATURE_QUESTION_GENERATION) is True


@pytest.mark.asyncio
async def test_flag_lookup_failure_fails_open(caplog) -> None:
    gate = FeatureGate(roles=_Roles(), flags=_Flags(fail=True))

    result = await gate.authorize(user_id="u1", tenant_id="t1", feature=FEATURE_QUESTION_GENERATION)

    assert result.feature_enabled is True
    assert "feature_flag_lookup_failed" in caplog.text


@pytest.mark.asyncio
async def test_role_lookup_failure_defaults_to_user() -> None:
    gate = FeatureGate(roles=_Roles(fail=True), flags=_Flags())

    allowed = await gate.authorize(user_id="u1", tenant_id="t1", feature=FEATURE_QUESTION_GENERATION)
    assert allowed.user_role == ROLE_USER

    with pytest.raises(FeaturePermissionDeniedError) as exc_info:
        await gate.authorize(user_id="u1", tenant_id="t1", feature=FEATURE_AI_CRITIC_PASS)
    assert exc_info.value.reason == DENIAL_RBAC


def test_describe_feature_gate_lists_roles_and_features() -> None:
    description = describe_feature_gate()
    assert description["roles"] == [ROLE_USER, ROLE_MANAGER, ROLE_TENANT_ADMIN, ROLE_SUPER_ADMIN]
    assert description["features"][FEATURE_QUESTION_GENERATION] == ROLE_USER
