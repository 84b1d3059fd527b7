"""
Response envelope cache for the proxy service.
"""

import asyncio
import base64
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

import redis.asyncio as redis

from shared.config import ProxyConfig
from shared.errors import BackendError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


def build_cache_control(ttl_seconds: int) -> str:
    """Cache-Control value handed to downstream HTTP caches."""
    return (
        f"public, max-age={ttl_seconds}, s-maxage={ttl_seconds}, "
        f"stale-while-revalidate={min(60, ttl_seconds)}"
    )


@dataclass
class CacheEntry:
    """A stored upstream response, replayed verbatim on hit."""

    status_code: int
    headers: Dict[str, str]
    body: bytes
    created_at: float
    ttl_seconds: int

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_seconds

    def to_json(self) -> str:
        return json.dumps({
            "status": self.status_code,
            "headers": self.headers,
            "body": base64.b64encode(self.body).decode("ascii"),
            "created_at": self.created_at,
            "ttl_seconds": self.ttl_seconds,
        })

    @classmethod
    def from_json(cls, payload: Any) -> "CacheEntry":
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        data = json.loads(payload)
        return cls(
            status_code=int(data["status"]),
            headers=dict(data.get("headers") or {}),
            body=base64.b64decode(data["body"]),
            created_at=float(data["created_at"]),
            ttl_seconds=int(data["ttl_seconds"]),
        )


class ResponseCache(ABC):
    """Abstract response cache; ``put`` is best effort."""

    backend_name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return a live entry or None on miss, expiry or backend fault."""

    @abstractmethod
    async def put(self, key: str, entry: CacheEntry, ttl_seconds: int) -> bool:
        """Store an entry; False when the backend refused it."""

    async def delete(self, key: str) -> bool:
        return False

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class LocalResponseCache(ResponseCache):
    """Process-local map.

    No sweeper runs: expired entries are only dropped when their key is
    looked up again, so memory grows with distinct keys over the process
    lifetime.
    """

    backend_name = "local"

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.logger = get_logger("proxy.cache.local")
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            del self._entries[key]
            return None
        return entry

    async def put(self, key: str, entry: CacheEntry, ttl_seconds: int) -> bool:
        if ttl_seconds <= 0:
            return False
        entry.ttl_seconds = ttl_seconds
        self._entries[key] = entry
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._entries)


class RedisResponseCache(ResponseCache):
    """Shared cache using ``SET key <envelope> EX ttl``."""

    backend_name = "redis"

    def __init__(
        self,
        redis_url: str,
        token: str = "",
        *,
        timeout: float = 2.0,
        client: Optional[redis.Redis] = None,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis_url = redis_url
        self.token = token
        self.timeout = timeout
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("proxy.cache.redis")
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

    async def _execute(self, command: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        """Run ``command`` against the client under the backend timeout.

        Any fault, the timeout included, is raised as BackendError.
        """
        try:
            redis_client = await self._get_redis()
            return await asyncio.wait_for(command(redis_client), self.timeout)
        except Exception as e:
            raise BackendError("redis", str(e) or type(e).__name__) from e

    def _record_failure(self, operation: str, error: BackendError) -> None:
        self.logger.error("Cache backend error", operation=operation, error=error.message)
        if self.metrics:
            self.metrics.increment_counter(
                "proxy_backend_errors_total", backend="redis", operation=f"cache_{operation}"
            )

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            cached_data = await self._execute(lambda client: client.get(key))
        except BackendError as e:
            self._record_failure("get", e)
            return None

        if not cached_data:
            return None

        try:
            entry = CacheEntry.from_json(cached_data)
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            return None

        # Redis expiry is second-granular; enforce the exact boundary here too.
        if entry.is_expired(self.clock()):
            return None
        return entry

    async def put(self, key: str, entry: CacheEntry, ttl_seconds: int) -> bool:
        if ttl_seconds <= 0:
            return False
        entry.ttl_seconds = ttl_seconds
        try:
            await self._execute(lambda client: client.set(key, entry.to_json(), ex=ttl_seconds))
        except BackendError as e:
            self._record_failure("put", e)
            return False
        self.logger.debug("Cached response", key=key, ttl=ttl_seconds)
        return True

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._execute(lambda client: client.delete(key)))
        except BackendError as e:
            self._record_failure("delete", e)
            return False

    async def ping(self) -> bool:
        try:
            return bool(await self._execute(lambda client: client.ping()))
        except BackendError as e:
            self._record_failure("ping", e)
            return False

    async def close(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
        self._redis = None


def create_response_cache(
    config: ProxyConfig,
    *,
    client: Optional[redis.Redis] = None,
    metrics: Optional["MetricsCollector"] = None,
    clock: Callable[[], float] = time.time,
) -> ResponseCache:
    """Pick the Redis backend when a shared URL is configured, else local."""
    if config.shared_backend_enabled:
        return RedisResponseCache(
            config.redis_url,
            config.redis_token,
            timeout=config.backend_timeout,
            client=client,
            metrics=metrics,
            clock=clock,
        )
    return LocalResponseCache(clock=clock)
