"""
Weather edge proxy service.
"""

import time
from typing import Callable, Dict, Optional

import httpx
import redis.asyncio as redis
from fastapi import Request, Response

from shared.base_service import BaseService
from shared.config import ProxyConfig, get_config
from .adapters.upstream_client import UpstreamClient
from .caching.response_cache import create_response_cache
from .pipeline import ProxyPipeline, ProxyRequest
from .providers.registry import ProviderRegistry
from .ratelimit.fixed_window import RateLimitMiddleware, create_rate_limiter
from .security.gate import SecurityGate
from .validation.request_validator import RequestValidator


class ProxyService(BaseService):
    """Edge proxy between browser clients and upstream weather providers.

    Components are constructed once here and injected into the pipeline;
    their lifetime is the service lifetime.
    """

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        *,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
        redis_client: Optional[redis.Redis] = None,
        registry: Optional[ProviderRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__("proxy", config or get_config())

        if redis_client is None and self.config.shared_backend_enabled:
            redis_client = redis.from_url(
                self.config.redis_url,
                password=self.config.redis_token or None,
                socket_connect_timeout=self.config.backend_timeout,
                socket_timeout=self.config.backend_timeout,
            )
        self.redis_client = redis_client

        self.registry = registry or ProviderRegistry()
        self.validator = RequestValidator(self.config)
        self.security_gate = SecurityGate.from_config(self.config)
        self.rate_limiter = create_rate_limiter(
            self.config, client=redis_client, metrics=self.metrics, clock=clock
        )
        self.rate_limit_middleware = RateLimitMiddleware(
            self.rate_limiter,
            limit=self.config.rate_limit,
            window_seconds=self.config.rate_window,
            metrics=self.metrics,
        )
        self.cache = create_response_cache(
            self.config, client=redis_client, metrics=self.metrics, clock=clock
        )
        self.upstream_client = UpstreamClient(
            self.config.upstream_timeout,
            transport=upstream_transport,
            metrics=self.metrics,
        )
        self.pipeline = ProxyPipeline(
            self.registry,
            self.validator,
            self.security_gate,
            self.rate_limit_middleware,
            self.cache,
            self.upstream_client,
            cache_ttl=self.config.cache_ttl,
            metrics=self.metrics,
            clock=clock,
        )

        self.logger.info(
            "Proxy configured",
            backend=self.cache.backend_name,
            cache_ttl=self.config.cache_ttl,
            rate_limit=self.config.rate_limit,
            rate_window=self.config.rate_window,
            origin_check=bool(self.security_gate.allowed_origins),
            proxy_key_check=bool(self.security_gate.api_key),
            providers=list(self.registry.provider_ids()),
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.upstream_client.close()
            await self.cache.close()
            await self.rate_limiter.close()
            if self.redis_client is not None:
                await self.redis_client.aclose()

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.proxy_service = self

    def _setup_proxy_routes(self):
        """Set up the proxy entry point."""

        @self.app.get("/api/weather")
        async def proxy_weather(request: Request):
            """Relay a whitelisted, rate-limited, cached provider request."""
            result = await self.pipeline.handle(
                ProxyRequest(
                    params=dict(request.query_params),
                    headers=request.headers,
                    client_host=request.client.host if request.client else None,
                )
            )
            return Response(
                content=result.body,
                status_code=result.status_code,
                headers=result.headers,
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check proxy dependencies."""
        if not self.config.shared_backend_enabled:
            return {}
        return {
            "cache": "ok" if await self.cache.ping() else "error",
            "rate_limit_store": "ok" if await self.rate_limiter.ping() else "error",
        }


def create_app(config: Optional[ProxyConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = ProxyService(config, **kwargs)
    return service.app


def main():
    """Run the proxy with configuration from the environment."""
    service = ProxyService()
    service.run()


if __name__ == "__main__":
    main()
