"""
Unit tests for the proxy rate limiter.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from service_proxy.app.ratelimit.fixed_window import (
    LocalRateLimiter,
    RateLimitMiddleware,
    RedisRateLimiter,
    client_identity,
    create_rate_limiter,
)
from shared.errors import BackendError
from shared.metrics import MetricsCollector
from shared.test_helpers import make_config


class TestLocalRateLimiter:
    """Test cases for LocalRateLimiter."""

    @pytest.fixture
    def rate_limiter(self, clock):
        return LocalRateLimiter(clock=clock)

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, rate_limiter):
        """Test that exactly ``limit`` requests are admitted per window."""
        results = [await rate_limiter.check("1.2.3.4", 3, 60) for _ in range(4)]

        assert [r["allowed"] for r in results] == [True, True, True, False]
        assert results[2]["remaining"] == 0
        assert results[3]["current_count"] == 4
        assert results[3]["retry_after"] == 60

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self, rate_limiter, clock):
        """Test that a fresh window starts once the old one has passed."""
        await rate_limiter.check("1.2.3.4", 1, 60)
        assert (await rate_limiter.check("1.2.3.4", 1, 60))["allowed"] is False

        clock.advance(60)
        # Window end is inclusive.
        assert (await rate_limiter.check("1.2.3.4", 1, 60))["allowed"] is False

        clock.advance(0.5)
        result = await rate_limiter.check("1.2.3.4", 1, 60)
        assert result["allowed"] is True
        assert result["current_count"] == 1

    @pytest.mark.asyncio
    async def test_denied_requests_still_count(self, rate_limiter, clock):
        """Test that the window start is not moved by denied requests."""
        await rate_limiter.check("a", 1, 10)
        clock.advance(5)
        await rate_limiter.check("a", 1, 10)

        counter = rate_limiter.counter_for("a")
        assert counter.count == 2
        assert counter.window_start == clock.now - 5

    @pytest.mark.asyncio
    async def test_reset_in_seconds_counts_down(self, rate_limiter, clock):
        await rate_limiter.check("a", 5, 60)
        clock.advance(20.2)

        result = await rate_limiter.check("a", 5, 60)
        assert result["reset_in_seconds"] == 40

    @pytest.mark.asyncio
    async def test_identities_are_independent(self, rate_limiter):
        await rate_limiter.check("a", 1, 60)

        assert (await rate_limiter.check("b", 1, 60))["allowed"] is True
        assert (await rate_limiter.check("a", 1, 60))["allowed"] is False

    @pytest.mark.asyncio
    async def test_zero_limit_denies_everything(self, rate_limiter):
        assert (await rate_limiter.check("a", 0, 60))["allowed"] is False

    @pytest.mark.asyncio
    async def test_reset(self, rate_limiter):
        await rate_limiter.check("a", 1, 60)

        assert await rate_limiter.reset("a") is True
        assert await rate_limiter.reset("a") is False
        assert (await rate_limiter.check("a", 1, 60))["allowed"] is True


class TestRedisRateLimiter:
    """Test cases for RedisRateLimiter."""

    @pytest.fixture
    def rate_limiter(self, fake_redis):
        return RedisRateLimiter("redis://fake", client=fake_redis, timeout=0.5)

    @pytest.mark.asyncio
    async def test_increment_and_expire_issued_together(self, rate_limiter, fake_redis):
        """Test that each check issues INCR then EXPIRE on the identity key."""
        result = await rate_limiter.check("1.2.3.4", 2, 30)

        assert result["allowed"] is True
        assert result["current_count"] == 1
        assert fake_redis.commands == [("incr", ("rl:1.2.3.4",)), ("expire", ("rl:1.2.3.4", 30))]
        assert fake_redis.ttl_of("rl:1.2.3.4") == 30

    @pytest.mark.asyncio
    async def test_limit_exceeded(self, rate_limiter):
        results = [await rate_limiter.check("1.2.3.4", 2, 30) for _ in range(3)]

        assert [r["allowed"] for r in results] == [True, True, False]
        assert results[2]["retry_after"] == 30

    @pytest.mark.asyncio
    async def test_counter_expires_with_window(self, rate_limiter, clock):
        await rate_limiter.check("1.2.3.4", 1, 30)
        assert (await rate_limiter.check("1.2.3.4", 1, 30))["allowed"] is False

        clock.advance(30)
        result = await rate_limiter.check("1.2.3.4", 1, 30)
        assert result["allowed"] is True
        assert result["current_count"] == 1

    @pytest.mark.asyncio
    async def test_backend_error_fails_open(self, fake_redis):
        """Test that a Redis fault admits the request and is counted."""
        metrics = MetricsCollector("proxy")
        rate_limiter = RedisRateLimiter("redis://fake", client=fake_redis, metrics=metrics)

        with patch.object(rate_limiter, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_get_redis.side_effect = ConnectionError("Redis connection failed")

            result = await rate_limiter.check("1.2.3.4", 1, 60)

        assert result["allowed"] is True
        assert "redis: Redis connection failed" in result["error"]
        assert metrics.sample_value(
            "proxy_backend_errors_total", backend="redis", operation="rate_limit"
        ) == 1.0

    @pytest.mark.asyncio
    async def test_backend_timeout_fails_open(self, fake_redis):
        """Test that a hung backend is abandoned after the timeout."""
        rate_limiter = RedisRateLimiter("redis://fake", client=fake_redis, timeout=0.01)

        async def hang(*args, **kwargs):
            await asyncio.sleep(1)

        with patch.object(rate_limiter, '_increment', side_effect=hang):
            result = await rate_limiter.check("1.2.3.4", 1, 60)

        assert result["allowed"] is True
        assert "TimeoutError" in result["error"]

    @pytest.mark.asyncio
    async def test_execute_raises_backend_error(self, rate_limiter):
        """Test that limiter command faults surface as BackendError before failing open."""
        with patch.object(rate_limiter, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_get_redis.side_effect = ConnectionError("Redis connection failed")

            with pytest.raises(BackendError) as exc_info:
                await rate_limiter._execute(lambda client: client.ping())

        assert exc_info.value.message == "redis: Redis connection failed"

    @pytest.mark.asyncio
    async def test_ping_and_reset(self, rate_limiter, fake_redis):
        await rate_limiter.check("1.2.3.4", 1, 60)

        assert await rate_limiter.ping() is True
        assert await rate_limiter.reset("1.2.3.4") is True
        assert (await rate_limiter.check("1.2.3.4", 1, 60))["allowed"] is True

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, rate_limiter, fake_redis):
        await rate_limiter.close()
        assert fake_redis.closed is False

    @pytest.mark.asyncio
    async def test_close_owned_client(self):
        rate_limiter = RedisRateLimiter("redis://localhost:6379/0")
        owned = AsyncMock()

        with patch("service_proxy.app.ratelimit.fixed_window.redis.from_url", return_value=owned) as mock_from_url:
            await rate_limiter._get_redis()
            await rate_limiter.close()

        mock_from_url.assert_called_once()
        owned.aclose.assert_awaited_once()


class TestRateLimitMiddleware:
    """Test cases for RateLimitMiddleware."""

    @pytest.mark.asyncio
    async def test_records_decisions(self, clock):
        metrics = MetricsCollector("proxy")
        middleware = RateLimitMiddleware(LocalRateLimiter(clock), limit=1, window_seconds=60, metrics=metrics)

        assert (await middleware.check_request("a"))["allowed"] is True
        assert (await middleware.check_request("a"))["allowed"] is False

        assert metrics.sample_value("proxy_rate_limit_decisions_total", result="allowed") == 1.0
        assert metrics.sample_value("proxy_rate_limit_decisions_total", result="exceeded") == 1.0

    @pytest.mark.asyncio
    async def test_limiter_exception_fails_open(self):
        """Test that an unexpected limiter exception never blocks a request."""
        metrics = MetricsCollector("proxy")
        limiter = MagicMock()
        limiter.check = AsyncMock(side_effect=RuntimeError("boom"))
        middleware = RateLimitMiddleware(limiter, limit=1, window_seconds=60, metrics=metrics)

        result = await middleware.check_request("a")

        assert result["allowed"] is True
        assert result["error"] == "boom"
        assert metrics.sample_value("proxy_rate_limit_decisions_total", result="fail_open") == 1.0


class TestClientIdentity:
    """Test cases for client_identity."""

    def test_first_forwarded_address_wins(self):
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1"}
        assert client_identity(headers, "10.0.0.2") == "203.0.113.7"

    def test_peer_address_fallback(self):
        assert client_identity({}, "10.0.0.2") == "10.0.0.2"
        assert client_identity({"x-forwarded-for": " , "}, "10.0.0.2") == "10.0.0.2"

    def test_unknown_when_nothing_available(self):
        assert client_identity({}, None) == "unknown"


class TestCreateRateLimiter:
    """Test cases for backend selection."""

    def test_local_without_redis_url(self):
        assert isinstance(create_rate_limiter(make_config()), LocalRateLimiter)

    def test_redis_with_url(self, fake_redis):
        config = make_config(redis_url="redis://cache:6379/0", redis_token="t", backend_timeout=1.5)
        limiter = create_rate_limiter(config, client=fake_redis)

        assert isinstance(limiter, RedisRateLimiter)
        assert limiter.token == "t"
        assert limiter.timeout == 1.5
