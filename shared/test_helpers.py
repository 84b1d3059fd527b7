"""
Test helper functions and fakes for the weather edge proxy.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shared.config import ProxyConfig


class FakeClock:
    """Manually advanced clock, injectable wherever ``time.time`` is used."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _FakePipeline:
    """Queues commands and applies them together on ``execute``."""

    def __init__(self, redis_fake: "FakeRedis"):
        self._redis = redis_fake
        self._commands: List[Tuple[str, tuple]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._commands.clear()
        return False

    def incr(self, key: str):
        self._commands.append(("incr", (key,)))
        return self

    def expire(self, key: str, seconds: int):
        self._commands.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> List[Any]:
        results = [self._redis._apply(name, *args) for name, args in self._commands]
        self._commands.clear()
        return results


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` (subset used by the proxy)."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self._data: Dict[str, bytes] = {}
        self._expiry: Dict[str, float] = {}
        self.commands: List[Tuple[str, tuple]] = []
        self.closed = False

    def _purge(self, key: str) -> None:
        expires_at = self._expiry.get(key)
        if expires_at is not None and self.clock() >= expires_at:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    def _apply(self, name: str, *args) -> Any:
        self.commands.append((name, args))
        if name == "incr":
            key = args[0]
            self._purge(key)
            value = int(self._data.get(key, b"0")) + 1
            self._data[key] = str(value).encode()
            return value
        if name == "expire":
            key, seconds = args
            self._purge(key)
            if key not in self._data:
                return False
            self._expiry[key] = self.clock() + seconds
            return True
        raise ValueError(f"Unsupported command {name}")

    async def get(self, key: str) -> Optional[bytes]:
        self.commands.append(("get", (key,)))
        self._purge(key)
        return self._data.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self.commands.append(("set", (key, ex)))
        self._data[key] = value.encode() if isinstance(value, str) else value
        if ex is not None:
            self._expiry[key] = self.clock() + ex
        else:
            self._expiry.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            self._expiry.pop(key, None)
        return removed

    async def ping(self) -> bool:
        return True

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        return _FakePipeline(self)

    def ttl_of(self, key: str) -> Optional[float]:
        expires_at = self._expiry.get(key)
        return None if expires_at is None else expires_at - self.clock()

    async def aclose(self) -> None:
        self.closed = True


class StubUpstream:
    """``httpx.MockTransport`` handler that counts outbound provider calls."""

    def __init__(
        self,
        status_code: int = 200,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        error: Optional[Exception] = None,
    ):
        self.status_code = status_code
        self.body = body if body is not None else {"current_weather": {"temperature": 12.3}}
        self.headers = headers if headers is not None else {"content-type": "application/json; charset=utf-8"}
        self.error = error
        self.requests: List[httpx.Request] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    @property
    def last_url(self) -> str:
        return str(self.requests[-1].url)

    def _content(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return json.dumps(self.body).encode("utf-8")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, headers=self.headers, content=self._content())

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_config(**overrides) -> ProxyConfig:
    """Config isolated from the process environment and any .env file."""
    defaults: Dict[str, Any] = {
        "env": "test",
        "log_level": "warning",
        "cache_ttl": 60,
        "rate_limit": 60,
        "rate_window": 60,
        "api_key": "",
        "allowed_origins": "",
        "openweather_key": "",
        "redis_url": "",
        "redis_token": "",
    }
    defaults.update(overrides)
    return ProxyConfig(_env_file=None, **defaults)
