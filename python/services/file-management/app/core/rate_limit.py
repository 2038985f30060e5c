"""
Sliding-window rate limiter.

Each (route class, identity) pair owns an ordered set of request timestamps
covering the trailing interval. A request is admitted when fewer than `limit`
timestamps remain after evicting the expired ones.

Backends:
- RedisWindowStore: shared across instances, evict/count/insert run as one Lua script
- LocalWindowStore: single process, guarded by an asyncio.Lock
"""

import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from fastapi import Depends, Response, status
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.auth import Principal, get_current_principal
from app.core.config import RateLimitBackend, RouteClass, settings
from app.core.dependencies import get_redis
from app.core.errors import VaultError
from shared_schemas.common import ErrorKind, ErrorResponse

logger = logging.getLogger(__name__)


# KEYS[1] = window key
# ARGV = now_ms, interval_ms, limit, member
# Returns {admitted, count_before, oldest_score}
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local interval = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - interval)
local count = redis.call('ZCARD', key)
local oldest = now
local first = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if first[2] then
    oldest = tonumber(first[2])
end

if count >= limit then
    return {0, count, oldest}
end

redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, interval)
return {1, count, oldest}
"""


@dataclass(frozen=True)
class RateLimitRule:
    """Window length and request budget for a route class."""
    interval_seconds: int
    limit: int

    @property
    def interval_ms(self) -> int:
        return self.interval_seconds * 1000


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }


class RateLimitExceeded(VaultError):
    """Raised by the dependency to short-circuit a request with 429."""

    kind = ErrorKind.RATE_LIMITED
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, decision: RateLimitDecision):
        super().__init__(
            f"Rate limit exceeded. Try again in {decision.reset_seconds} seconds."
        )
        self.decision = decision

    def to_response(self) -> ErrorResponse:
        response = super().to_response()
        response.reset = self.decision.reset_seconds
        return response


class WindowStore:
    """Counter store interface."""

    async def hit(
        self,
        key: str,
        now_ms: int,
        interval_ms: int,
        limit: int
    ) -> Tuple[bool, int, int]:
        """
        Evict, count and conditionally record one request atomically.

        Returns:
            (admitted, count before this request, oldest surviving timestamp in ms)
        """
        raise NotImplementedError


class LocalWindowStore(WindowStore):
    """In-process store for single-instance deployments and tests."""

    PRUNE_INTERVAL_MS = 1000

    def __init__(self):
        self._windows: Dict[str, List[int]] = {}
        self._expires: Dict[str, int] = {}
        self._next_prune_ms = 0
        self._lock = asyncio.Lock()

    def _prune(self, now_ms: int):
        """Drop keys whose newest request has left its window."""
        for key in [k for k, expires in self._expires.items() if expires <= now_ms]:
            del self._windows[key]
            del self._expires[key]
        self._next_prune_ms = now_ms + self.PRUNE_INTERVAL_MS

    async def hit(self, key, now_ms, interval_ms, limit):
        async with self._lock:
            if now_ms >= self._next_prune_ms:
                self._prune(now_ms)

            window_start = now_ms - interval_ms
            timestamps = [t for t in self._windows.get(key, []) if t > window_start]
            count = len(timestamps)
            oldest = timestamps[0] if timestamps else now_ms

            if count >= limit:
                if timestamps:
                    self._windows[key] = timestamps
                return False, count, oldest

            timestamps.append(now_ms)
            self._windows[key] = timestamps
            self._expires[key] = now_ms + interval_ms
            return True, count, oldest


class RedisWindowStore(WindowStore):
    """Redis sorted-set store, atomic per key via a Lua script."""

    def __init__(self, redis_factory: Callable[[], Awaitable[Redis]]):
        self._redis_factory = redis_factory
        self._script = None

    async def hit(self, key, now_ms, interval_ms, limit):
        redis = await self._redis_factory()
        if self._script is None:
            self._script = redis.register_script(SLIDING_WINDOW_SCRIPT)

        # Unique member so concurrent requests in the same millisecond all count
        member = f"{now_ms}-{uuid.uuid4().hex}"
        admitted, count, oldest = await self._script(
            keys=[key],
            args=[now_ms, interval_ms, limit, member],
            client=redis,
        )
        return bool(int(admitted)), int(count), int(oldest)


class RateLimiter:
    """Admission gate keyed by (route class, identity)."""

    def __init__(
        self,
        store: WindowStore,
        rules: Dict[RouteClass, RateLimitRule],
        fail_open: bool = False,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.rules = rules
        self.fail_open = fail_open
        self._clock = clock

    @staticmethod
    def window_key(route_class: RouteClass, identity: str) -> str:
        return f"rate_limit:{route_class.value}:{identity}"

    async def admit(self, route_class: RouteClass, identity: str) -> RateLimitDecision:
        """
        Record one request and decide whether it may proceed.

        Args:
            route_class: Endpoint group being called
            identity: Principal id, email, or client address

        Returns:
            RateLimitDecision with remaining budget and seconds until reset
        """
        rule = self.rules[route_class]
        now_ms = int(self._clock() * 1000)
        key = self.window_key(route_class, identity)

        try:
            admitted, count, oldest = await self.store.hit(
                key, now_ms, rule.interval_ms, rule.limit
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            if self.fail_open:
                logger.warning(f"[RATE LIMIT] Store unavailable, admitting {key}: {e}")
                return RateLimitDecision(
                    allowed=True,
                    limit=rule.limit,
                    remaining=rule.limit - 1,
                    reset_seconds=rule.interval_seconds,
                )
            logger.error(f"[RATE LIMIT] Store unavailable, rejecting {key}: {e}")
            return RateLimitDecision(
                allowed=False,
                limit=rule.limit,
                remaining=0,
                reset_seconds=rule.interval_seconds,
            )

        reset_seconds = max(1, math.ceil((oldest + rule.interval_ms - now_ms) / 1000))

        if not admitted:
            logger.info(f"[RATE LIMIT] Rejected {key} (count={count}, reset={reset_seconds}s)")
            return RateLimitDecision(
                allowed=False,
                limit=rule.limit,
                remaining=0,
                reset_seconds=reset_seconds,
            )

        return RateLimitDecision(
            allowed=True,
            limit=rule.limit,
            remaining=max(0, rule.limit - count - 1),
            reset_seconds=reset_seconds,
        )


def build_rules() -> Dict[RouteClass, RateLimitRule]:
    """Route-class table from settings."""
    rules = {}
    for route_class in RouteClass:
        interval, limit = settings.rate_limit_for(route_class)
        rules[route_class] = RateLimitRule(interval_seconds=interval, limit=limit)
    return rules


def build_store(backend: RateLimitBackend) -> WindowStore:
    if backend == RateLimitBackend.LOCAL:
        return LocalWindowStore()
    return RedisWindowStore(get_redis)


# Global rate limiter instance
rate_limiter = RateLimiter(
    store=build_store(settings.RATE_LIMIT_BACKEND),
    rules=build_rules(),
    fail_open=settings.RATE_LIMIT_FAIL_OPEN,
)


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


async def enforce(
    limiter: RateLimiter,
    route_class: RouteClass,
    identity: str,
    response: Optional[Response] = None
) -> RateLimitDecision:
    """
    Admit or reject a request, copying rate-limit headers onto the response.

    Raises:
        RateLimitExceeded: If the window is full (or the store is down and fail-closed)
    """
    decision = await limiter.admit(route_class, identity)
    if not decision.allowed:
        raise RateLimitExceeded(decision)
    if response is not None:
        response.headers.update(decision.headers())
    return decision


def rate_limit(route_class: RouteClass):
    """
    Dependency factory keyed by the authenticated principal.

    Usage:
        @router.post("/init-multipart", dependencies=[Depends(rate_limit(RouteClass.UPLOAD))])
    """
    async def dependency(
        response: Response,
        principal: Principal = Depends(get_current_principal),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitDecision:
        return await enforce(limiter, route_class, str(principal.id), response)

    return dependency
