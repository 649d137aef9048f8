from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis

from promptgate.core.config import get_settings
from promptgate.core.errors import RateLimitExceededError
from promptgate.services.window import window_key as compute_window_key


logger = logging.getLogger(__name__)

SCOPE_USER = "user"
SCOPE_TENANT = "tenant"

RATE_LIMIT_SCOPES = (SCOPE_USER, SCOPE_TENANT)


@dataclass(frozen=True)
class CounterKey:
    # One counter per scope, identity, and window bucket.
    scope: str
    identity_id: str
    window_key: str


class CounterStore(Protocol):
    # Stores must provide an atomic increment-and-fetch; read-then-write is not enough.
    async def incr(self, key: CounterKey, ttl_s: int) -> int:
        ...

    async def get(self, key: CounterKey) -> int:
        ...


@dataclass(frozen=True)
class RateLimitCheck:
    allowed: bool
    current_count: int
    window_key: str


@dataclass(frozen=True)
class RateLimitDecision:
    # Capture the outcome of a user+tenant enforcement pass.
    allowed: bool
    window_key: str
    scope: str | None
    user_count: int
    tenant_count: int
    user_exceeded: bool = False
    tenant_exceeded: bool = False
    degraded: bool = False


_INCR_WITH_TTL_LUA = r"""
local count = redis.call("INCR", KEYS[1])
if count == 1 then
  redis.call("EXPIRE", KEYS[1], tonumber(ARGV[1]))
end
return count
"""


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def _get_redis() -> Redis:
    # Cache Redis connections to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            _redis_loop = current_loop
    return _redis_pool


class RedisCounterStore:
    def __init__(self, redis: Redis | None = None, *, prefix: str | None = None) -> None:
        # Accept an injected client for tests; otherwise share the module pool.
        self._redis = redis
        self._prefix = prefix or get_settings().rl_redis_prefix

    def _key(self, key: CounterKey) -> str:
        return f"{self._prefix}:{key.scope}:{key.identity_id}:{key.window_key}"

    async def _client(self) -> Redis:
        if self._redis is not None:
            return self._redis
        return await _get_redis()

    async def incr(self, key: CounterKey, ttl_s: int) -> int:
        # INCR and the first EXPIRE run in one script so concurrent callers see distinct counts.
        redis = await self._client()
        result = await redis.eval(_INCR_WITH_TTL_LUA, 1, self._key(key), max(1, int(ttl_s)))
        return int(result)

    async def get(self, key: CounterKey) -> int:
        redis = await self._client()
        raw = await redis.get(self._key(key))
        return int(raw or 0)


class MemoryCounterStore:
    """Process-local counter store; correct only for a single worker process."""

    def __init__(self, *, time_source: Callable[[], float] | None = None) -> None:
        self._time = time_source or time.monotonic
        self._counts: dict[CounterKey, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (_count, expires_at) in self._counts.items() if expires_at <= now]
        for key in expired:
            del self._counts[key]

    async def incr(self, key: CounterKey, ttl_s: int) -> int:
        async with self._lock:
            now = self._time()
            count, expires_at = self._counts.get(key, (0, 0.0))
            if count and expires_at <= now:
                count = 0
            if count == 0:
                self._purge_expired(now)
                expires_at = now + max(1, int(ttl_s))
            count += 1
            self._counts[key] = (count, expires_at)
            return count

    async def get(self, key: CounterKey) -> int:
        async with self._lock:
            count, expires_at = self._counts.get(key, (0, 0.0))
            if count and expires_at <= self._time():
                return 0
            return count


def is_exceeded(count: int, limit: int) -> bool:
    # A count equal to the limit is still allowed; the first rejected request is limit + 1.
    return count > limit


def evaluate_counts(
    *,
    user_count: int,
    tenant_count: int,
    window_key: str,
    user_limit: int | None = None,
    tenant_limit: int | None = None,
) -> RateLimitDecision:
    """Apply the user-before-tenant precedence to a pair of post-increment counts.

    A user violation always wins: when both limits are exceeded the decision reports
    scope ``user`` and ``tenant_exceeded`` stays False.
    """
    settings = get_settings()
    user_limit = settings.rl_user_limit if user_limit is None else user_limit
    tenant_limit = settings.rl_tenant_limit if tenant_limit is None else tenant_limit

    if is_exceeded(user_count, user_limit):
        return RateLimitDecision(
            allowed=False,
            window_key=window_key,
            scope=SCOPE_USER,
            user_count=user_count,
            tenant_count=tenant_count,
            user_exceeded=True,
        )
    if is_exceeded(tenant_count, tenant_limit):
        return RateLimitDecision(
            allowed=False,
            window_key=window_key,
            scope=SCOPE_TENANT,
            user_count=user_count,
            tenant_count=tenant_count,
            tenant_exceeded=True,
        )
    return RateLimitDecision(
        allowed=True,
        window_key=window_key,
        scope=None,
        user_count=user_count,
        tenant_count=tenant_count,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    def __init__(
        self,
        store: CounterStore,
        *,
        user_limit: int | None = None,
        tenant_limit: int | None = None,
        window_minutes: int | None = None,
        ttl_windows: int | None = None,
        enabled: bool | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._user_limit = settings.rl_user_limit if user_limit is None else user_limit
        self._tenant_limit = settings.rl_tenant_limit if tenant_limit is None else tenant_limit
        self._window_minutes = window_minutes or settings.rl_window_minutes
        ttl_windows = ttl_windows or settings.rl_counter_ttl_windows
        # Keep counters alive past their own window so late readers still see the final count.
        self._ttl_s = self._window_minutes * 60 * max(1, ttl_windows)
        self._enabled = settings.rate_limit_enabled if enabled is None else enabled
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or _utc_now

    @property
    def window_minutes(self) -> int:
        return self._window_minutes

    def limit_for(self, scope: str) -> int:
        if scope == SCOPE_USER:
            return self._user_limit
        if scope == SCOPE_TENANT:
            return self._tenant_limit
        raise ValueError(f"unknown rate limit scope: {scope}")

    def window_key(self, now: datetime | None = None) -> str:
        return compute_window_key(now or self._time_provider(), self._window_minutes)

    async def check(
        self, scope: str, identity_id: str, now: datetime | None = None
    ) -> RateLimitCheck:
        # Read-only view of the current window; does not consume quota.
        limit = self.limit_for(scope)
        key = self.window_key(now)
        try:
            count = await self._store.get(CounterKey(scope, identity_id, key))
        except Exception as exc:  # noqa: BLE001 - counter store outages fail open
            logger.warning(
                "rate_limit_check_degraded scope=%s window=%s error_type=%s",
                scope,
                key,
                type(exc).__name__,
            )
            return RateLimitCheck(allowed=True, current_count=0, window_key=key)
        return RateLimitCheck(allowed=not is_exceeded(count, limit), current_count=count, window_key=key)

    async def increment(self, scope: str, identity_id: str, now: datetime | None = None) -> int:
        self.limit_for(scope)
        key = self.window_key(now)
        return await self._store.incr(CounterKey(scope, identity_id, key), self._ttl_s)

    async def enforce(
        self,
        *,
        user_id: str,
        tenant_id: str,
        now: datetime | None = None,
    ) -> RateLimitDecision:
        """Consume one request for the user and tenant, raising when a limit is exceeded.

        The tenant counter is only incremented once the user passes, so a throttled
        user does not eat into the tenant's window. Increments are never rolled back.
        """
        key = self.window_key(now)
        if not self._enabled:
            return RateLimitDecision(
                allowed=True, window_key=key, scope=None, user_count=0, tenant_count=0
            )

        tenant_count = 0
        try:
            user_count = await self._store.incr(CounterKey(SCOPE_USER, user_id, key), self._ttl_s)
            if not is_exceeded(user_count, self._user_limit):
                tenant_count = await self._store.incr(
                    CounterKey(SCOPE_TENANT, tenant_id, key), self._ttl_s
                )
        except Exception as exc:  # noqa: BLE001 - counter store outages fail open
            logger.warning(
                "rate_limit_degraded window=%s fallback=allow error_type=%s",
                key,
                type(exc).__name__,
            )
            return RateLimitDecision(
                allowed=True,
                window_key=key,
                scope=None,
                user_count=0,
                tenant_count=0,
                degraded=True,
            )

        decision = evaluate_counts(
            user_count=user_count,
            tenant_count=tenant_count,
            window_key=key,
            user_limit=self._user_limit,
            tenant_limit=self._tenant_limit,
        )
        if not decision.allowed:
            logger.info("rate_limited scope=%s window=%s", decision.scope, key)
            raise RateLimitExceededError(decision.scope or SCOPE_USER, key)
        return decision


def build_counter_store(backend: str | None = None) -> CounterStore:
    # Select the shared counter store; memory is only safe for single-process deployments.
    backend = (backend or get_settings().rl_backend or "redis").lower()
    if backend == "memory":
        return MemoryCounterStore()
    if backend == "database":
        from promptgate.persistence.db import SessionLocal
        from promptgate.persistence.repos.rate_limits import SqlCounterStore

        return SqlCounterStore(SessionLocal)
    return RedisCounterStore()


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    # Cache the rate limiter so requests share the store and its connections.
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(build_counter_store())
    return _rate_limiter


def reset_rate_limiter_state() -> None:
    # Reset cached limiter and Redis connections for deterministic test setup.
    global _rate_limiter, _redis_pool, _redis_loop
    _rate_limiter = None
    _redis_pool = None
    _redis_loop = None
