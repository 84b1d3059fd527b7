"""
Proxy caching package.

Stores full upstream response envelopes (status, headers, body) keyed by
the canonical request. Only 2xx responses are stored; lookups degrade to a
miss on any backend fault.
"""

from .response_cache import (
    CacheEntry,
    LocalResponseCache,
    RedisResponseCache,
    ResponseCache,
    build_cache_control,
    create_response_cache,
)

__all__ = [
    "CacheEntry",
    "LocalResponseCache",
    "RedisResponseCache",
    "ResponseCache",
    "build_cache_control",
    "create_response_cache",
]
