"""
Fixed-window rate limiter for the proxy service.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TYPE_CHECKING

import redis.asyncio as redis

from shared.config import ProxyConfig
from shared.errors import BackendError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


UNKNOWN_IDENTITY = "unknown"


@dataclass
class RateCounter:
    """Per-identity request count within the current window."""

    identity: str
    count: int
    window_start: float
    window_seconds: int


def _decision(allowed: bool, count: int, limit: int, reset_in_seconds: int, error: Optional[str] = None) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "allowed": allowed,
        "current_count": count,
        "limit": limit,
        "remaining": max(0, limit - count),
        "reset_in_seconds": reset_in_seconds,
    }
    if not allowed:
        result["retry_after"] = reset_in_seconds
    if error is not None:
        result["error"] = error
    return result


def fail_open(limit: int, window_seconds: int, error: str) -> Dict[str, Any]:
    """Decision used when the backend cannot answer."""
    return _decision(True, 0, limit, window_seconds, error=error)


class RateLimiter(ABC):
    """Abstract fixed-window limiter keyed by caller identity."""

    backend_name = "abstract"

    @abstractmethod
    async def check(self, identity: str, limit: int, window_seconds: int) -> Dict[str, Any]:
        """Count one request for ``identity`` and decide admission."""

    @abstractmethod
    async def reset(self, identity: str) -> bool:
        """Drop the counter for ``identity``."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class LocalRateLimiter(RateLimiter):
    """In-process counters; never evicted except by overwrite."""

    backend_name = "local"

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.logger = get_logger("proxy.rate_limiter.local")
        self._counters: Dict[str, RateCounter] = {}

    async def check(self, identity: str, limit: int, window_seconds: int) -> Dict[str, Any]:
        now = self.clock()
        counter = self._counters.get(identity)

        if counter is None or now - counter.window_start > window_seconds:
            counter = RateCounter(identity, 1, now, window_seconds)
            self._counters[identity] = counter
        else:
            counter.count += 1

        reset_in = max(0, math.ceil(counter.window_start + window_seconds - now))
        allowed = counter.count <= limit
        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=identity,
                current_count=counter.count,
                limit=limit
            )
        return _decision(allowed, counter.count, limit, reset_in)

    async def reset(self, identity: str) -> bool:
        return self._counters.pop(identity, None) is not None

    def counter_for(self, identity: str) -> Optional[RateCounter]:
        return self._counters.get(identity)


class RedisRateLimiter(RateLimiter):
    """Shared counters using atomic INCR with the expiry re-armed per hit."""

    backend_name = "redis"

    def __init__(
        self,
        redis_url: str,
        token: str = "",
        *,
        timeout: float = 2.0,
        client: Optional[redis.Redis] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.redis_url = redis_url
        self.token = token
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("proxy.rate_limiter.redis")
        self._redis: Optional[redis.Redis] = client
        self._owns_client = client is None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                password=self.token or None,
                socket_connect_timeout=self.timeout,
                socket_timeout=self.timeout,
            )
        return self._redis

    def _make_key(self, identity: str) -> str:
        """Generate rate limit key."""
        return f"rl:{identity}"

    async def _execute(self, command: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        """Run ``command`` against the client under the backend timeout.

        Any fault, the timeout included, is raised as BackendError.
        """
        try:
            redis_client = await self._get_redis()
            return await asyncio.wait_for(command(redis_client), self.timeout)
        except Exception as e:
            raise BackendError("redis", str(e) or type(e).__name__) from e

    async def _increment(self, redis_client: redis.Redis, key: str, window_seconds: int) -> int:
        async with redis_client.pipeline(transaction=True) as pipeline:
            pipeline.incr(key)
            pipeline.expire(key, window_seconds)
            results = await pipeline.execute()
        return int(results[0])

    async def check(self, identity: str, limit: int, window_seconds: int) -> Dict[str, Any]:
        key = self._make_key(identity)

        try:
            count = await self._execute(lambda client: self._increment(client, key, window_seconds))
        except BackendError as e:
            self.logger.error("Rate limit check error", client_id=identity, error=e.message)
            if self.metrics:
                self.metrics.increment_counter(
                    "proxy_backend_errors_total", backend="redis", operation="rate_limit"
                )
            return fail_open(limit, window_seconds, e.message)

        allowed = count <= limit
        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=identity,
                current_count=count,
                limit=limit
            )
        return _decision(allowed, count, limit, window_seconds)

    async def reset(self, identity: str) -> bool:
        """Reset rate limit for a caller."""
        try:
            await self._execute(lambda client: client.delete(self._make_key(identity)))
        except BackendError as e:
            self.logger.error("Rate limit reset error", error=e.message)
            return False
        self.logger.info("Rate limit reset", client_id=identity)
        return True

    async def ping(self) -> bool:
        try:
            return bool(await self._execute(lambda client: client.ping()))
        except BackendError as e:
            self.logger.error("Rate limiter ping failed", error=e.message)
            return False

    async def close(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
        self._redis = None


def client_identity(headers: Mapping[str, str], client_host: Optional[str]) -> str:
    """First X-Forwarded-For address, else the peer address, else ``unknown``."""
    forwarded_for = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    if client_host:
        return client_host
    return UNKNOWN_IDENTITY


class RateLimitMiddleware:
    """Resolves caller identity and applies the configured budget."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        limit: int,
        window_seconds: int,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.rate_limiter = rate_limiter
        self.limit = limit
        self.window_seconds = window_seconds
        self.metrics = metrics
        self.logger = get_logger("proxy.rate_limit_middleware")

    async def check_request(self, identity: str) -> Dict[str, Any]:
        """Check rate limit for a caller; limiter faults fail open."""
        try:
            result = await self.rate_limiter.check(identity, self.limit, self.window_seconds)
        except Exception as e:
            self.logger.error("Rate limiter middleware error", error=str(e))
            result = fail_open(self.limit, self.window_seconds, str(e))

        if self.metrics:
            outcome = "allowed" if result["allowed"] else "exceeded"
            if "error" in result:
                outcome = "fail_open"
            self.metrics.increment_counter("proxy_rate_limit_decisions_total", result=outcome)
        return result


def create_rate_limiter(
    config: ProxyConfig,
    *,
    client: Optional[redis.Redis] = None,
    metrics: Optional["MetricsCollector"] = None,
    clock: Callable[[], float] = time.time,
) -> RateLimiter:
    """Pick the Redis backend when a shared URL is configured, else local."""
    if config.shared_backend_enabled:
        return RedisRateLimiter(
            config.redis_url,
            config.redis_token,
            timeout=config.backend_timeout,
            client=client,
            metrics=metrics,
        )
    return LocalRateLimiter(clock=clock)
