"""
Rate limiting package for the proxy.

Holds the fixed-window limiter with interchangeable in-process and Redis
backends. Both fail open: a backend fault never blocks a request.
"""

from .fixed_window import (
    LocalRateLimiter,
    RateCounter,
    RateLimiter,
    RateLimitMiddleware,
    RedisRateLimiter,
    client_identity,
    create_rate_limiter,
)

__all__ = [
    "LocalRateLimiter",
    "RateCounter",
    "RateLimiter",
    "RateLimitMiddleware",
    "RedisRateLimiter",
    "client_identity",
    "create_rate_limiter",
]
