from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from promptgate.core.errors import RateLimitExceededError
from promptgate.services.rate_limit import (
    SCOPE_TENANT,
    SCOPE_USER,
    CounterKey,
    MemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
    build_counter_store,
    evaluate_counts,
    get_rate_limiter,
    is_exceeded,
)


_NOW = datetime(2026, 3, 1, 14, 37, 22, tzinfo=timezone.utc)
_WINDOW = "2026-03-01T14:30"


class _RecordingStore:
    # Wrap the memory store and remember which keys were incremented.
    def __init__(self) -> None:
        self.inner = MemoryCounterStore()
        self.incremented: list[CounterKey] = []

    async def incr(self, key: CounterKey, ttl_s: int) -> int:
        self.incremented.append(key)
        return await self.inner.incr(key, ttl_s)

    async def get(self, key: CounterKey) -> int:
        return await self.inner.get(key)


class _FailingStore:
    async def incr(self, key: CounterKey, ttl_s: int) -> int:
        raise ConnectionError("counter store down")

    async def get(self, key: CounterKey) -> int:
        raise ConnectionError("counter store down")


class _StubRedis:
    # Minimal async Redis double covering the calls the counter store makes.
    def __init__(self) -> None:
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def eval(self, script: str, numkeys: int, key: str, ttl: int) -> int:
        assert numkeys == 1
        self.values[key] = self.values.get(key, 0) + 1
        if self.values[key] == 1:
            self.ttls[key] = ttl
        return self.values[key]

    async def get(self, key: str) -> str | None:
        value = self.values.get(key)
        return None if value is None else str(value)


def _limiter(store, **kwargs) -> RateLimiter:
    kwargs.setdefault("enabled", True)
    return RateLimiter(store, time_provider=lambda: _NOW, **kwargs)


def test_limit_is_strictly_greater_than() -> None:
    assert is_exceeded(30, 30) is False
    assert is_exceeded(31, 30) is True


def test_user_at_limit_is_allowed() -> None:
    decision = evaluate_counts(user_count=30, tenant_count=50, window_key=_WINDOW)
    assert decision.allowed is True
    assert decision.scope is None


def test_user_over_limit_is_reported_as_user_even_when_tenant_exceeded() -> None:
    decision = evaluate_counts(user_count=31, tenant_count=201, window_key=_WINDOW)
    assert decision.allowed is False
    assert decision.scope == SCOPE_USER
    assert decision.user_exceeded is True
    assert decision.tenant_exceeded is False


def test_tenant_boundary() -> None:
    at_limit = evaluate_counts(user_count=5, tenant_count=200, window_key=_WINDOW)
    assert at_limit.allowed is True

    over = evaluate_counts(user_count=5, tenant_count=201, window_key=_WINDOW)
    assert over.allowed is False
    assert over.scope == SCOPE_TENANT
    assert over.tenant_exceeded is True


@pytest.mark.asyncio
async def test_concurrent_requests_never_exceed_user_limit() -> None:
    limiter = _limiter(MemoryCounterStore(), user_limit=30, tenant_limit=1000)

    results = await asyncio.gather(
        *(limiter.enforce(user_id="u1", tenant_id="t1") for _ in range(40)),
        return_exceptions=True,
    )

    allowed = [item for item in results if not isinstance(item, Exception)]
    rejected = [item for item in results if isinstance(item, RateLimitExceededError)]
    assert len(allowed) == 30
    assert len(rejected) == 10
    assert all(exc.scope == SCOPE_USER and exc.window_key == _WINDOW for exc in rejected)


@pytest.mark.asyncio
async def test_tenant_counter_untouched_when_user_is_throttled() -> None:
    store = _RecordingStore()
    limiter = _limiter(store, user_limit=1, tenant_limit=100)

    await limiter.enforce(user_id="u1", tenant_id="t1")
    with pytest.raises(RateLimitExceededError) as exc_info:
        await limiter.enforce(user_id="u1", tenant_id="t1")

    assert exc_info.value.scope == SCOPE_USER
    tenant_keys = [key for key in store.incremented if key.scope == SCOPE_TENANT]
    assert len(tenant_keys) == 1
    assert await store.get(CounterKey(SCOPE_TENANT, "t1", _WINDOW)) == 1


@pytest.mark.asyncio
async def test_tenant_limit_spans_users() -> None:
    limiter = _limiter(MemoryCounterStore(), user_limit=30, tenant_limit=3)

    for user_id in ("u1", "u2", "u3"):
        await limiter.enforce(user_id=user_id, tenant_id="t1")
    with pytest.raises(RateLimitExceededError) as exc_info:
        await limiter.enforce(user_id="u4", tenant_id="t1")

    assert exc_info.value.scope == SCOPE_TENANT
    assert exc_info.value.window_key == _WINDOW
    # Other tenants are unaffected.
    decision = await limiter.enforce(user_id="u4", tenant_id="t2")
    assert decision.allowed is True


@pytest.mark.asyncio
async def test_store_failure_fails_open() -> None:
    limiter = _limiter(_FailingStore())

    decision = await limiter.enforce(user_id="u1", tenant_id="t1")
    assert decision.allowed is True
    assert decision.degraded is True

    check = await limiter.check(SCOPE_USER, "u1")
    assert check.allowed is True
    assert check.current_count == 0


@pytest.mark.asyncio
async def test_check_is_read_only() -> None:
    limiter = _limiter(MemoryCounterStore(), user_limit=2)
    await limiter.increment(SCOPE_USER, "u1")
    await limiter.increment(SCOPE_USER, "u1")

    first = await limiter.check(SCOPE_USER, "u1")
    second = await limiter.check(SCOPE_USER, "u1")
    assert first.current_count == second.current_count == 2
    assert first.allowed is True

    await limiter.increment(SCOPE_USER, "u1")
    assert (await limiter.check(SCOPE_USER, "u1")).allowed is False


@pytest.mark.asyncio
async def test_disabled_limiter_never_counts() -> None:
    store = _RecordingStore()
    limiter = _limiter(store, enabled=False, user_limit=1)
    for _ in range(3):
        decision = await limiter.enforce(user_id="u1", tenant_id="t1")
        assert decision.allowed is True
    assert store.incremented == []


@pytest.mark.asyncio
async def test_memory_store_resets_after_ttl() -> None:
    clock = {"now": 100.0}
    store = MemoryCounterStore(time_source=lambda: clock["now"])
    key = CounterKey(SCOPE_USER, "u1", _WINDOW)

    assert await store.incr(key, 60) == 1
    assert await store.incr(key, 60) == 2
    clock["now"] += 61
    assert await store.get(key) == 0
    assert await store.incr(key, 60) == 1


@pytest.mark.asyncio
async def test_redis_store_uses_prefixed_keys_and_ttl() -> None:
    redis = _StubRedis()
    store = RedisCounterStore(redis, prefix="test:rl")
    limiter = _limiter(store, window_minutes=10, ttl_windows=2)

    await limiter.enforce(user_id="u1", tenant_id="t1")
    await limiter.enforce(user_id="u1", tenant_id="t1")

    user_key = f"test:rl:user:u1:{_WINDOW}"
    tenant_key = f"test:rl:tenant:t1:{_WINDOW}"
    assert redis.values == {user_key: 2, tenant_key: 2}
    assert redis.ttls[user_key] == 1200
    assert await store.get(CounterKey(SCOPE_USER, "u1", _WINDOW)) == 2


def test_limit_for_rejects_unknown_scope() -> None:
    limiter = _limiter(MemoryCounterStore())
    assert limiter.limit_for(SCOPE_USER) == 30
    assert limiter.limit_for(SCOPE_TENANT) == 200
    with pytest.raises(ValueError):
        limiter.limit_for("global")


def test_build_counter_store_memory_backend() -> None:
    assert isinstance(build_counter_store("memory"), MemoryCounterStore)
    assert isinstance(build_counter_store("redis"), RedisCounterStore)


def test_get_rate_limiter_is_cached() -> None:
    assert get_rate_limiter() is get_rate_limiter()
