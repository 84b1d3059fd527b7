"""
Request pipeline for the weather edge proxy.

Stages run strictly in order and stop at the first terminal outcome:

    ResolveProvider -> Validate -> Authorize -> RateLimit
        -> CacheLookup (hit responds) -> UpstreamFetch -> CacheStore -> Respond

Terminal outcomes are raised as ``shared.errors.ProxyError`` subclasses and
rendered by the service's exception handlers.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, TYPE_CHECKING

from shared.errors import ProxyError, RateLimitError
from shared.logging import get_logger, set_client_context
from .adapters.upstream_client import UpstreamClient, UpstreamResponse
from .caching.response_cache import CacheEntry, ResponseCache, build_cache_control
from .providers.registry import ProviderConfig, ProviderRegistry
from .ratelimit.fixed_window import RateLimitMiddleware, client_identity
from .security.gate import SecurityGate
from .validation.request_validator import NormalizedRequest, RequestValidator

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_CONTENT_TYPE = "application/json"
# Sent on relayed non-2xx responses, which are also kept out of the response cache.
UNCACHEABLE_CONTROL = "no-store"


class PipelineStage(str, Enum):
    """Pipeline states, in execution order."""
    RESOLVE_PROVIDER = "resolve_provider"
    VALIDATE = "validate"
    AUTHORIZE = "authorize"
    RATE_LIMIT = "rate_limit"
    CACHE_LOOKUP = "cache_lookup"
    UPSTREAM_FETCH = "upstream_fetch"
    CACHE_STORE = "cache_store"
    RESPOND = "respond"


@dataclass
class ProxyRequest:
    """Transport-neutral view of an incoming GET."""
    params: Mapping[str, str]
    headers: Mapping[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None


@dataclass
class ProxyResponse:
    status_code: int
    headers: Dict[str, str]
    body: bytes
    cache_hit: bool = False


class ProxyPipeline:
    """Sequences registry, validator, gate, limiter, cache and upstream."""

    def __init__(
        self,
        registry: ProviderRegistry,
        validator: RequestValidator,
        security_gate: SecurityGate,
        rate_limit: RateLimitMiddleware,
        cache: ResponseCache,
        upstream: UpstreamClient,
        *,
        cache_ttl: int,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.validator = validator
        self.security_gate = security_gate
        self.rate_limit = rate_limit
        self.cache = cache
        self.upstream = upstream
        self.cache_ttl = cache_ttl
        self.cache_control = build_cache_control(cache_ttl)
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("proxy.pipeline")

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        """Run one request through every stage."""
        stage = PipelineStage.RESOLVE_PROVIDER
        try:
            provider = self.registry.resolve(request.params.get("provider"))

            stage = PipelineStage.VALIDATE
            normalized = self.validator.validate(provider, request.params)

            stage = PipelineStage.AUTHORIZE
            self.security_gate.authorize(request.headers)

            stage = PipelineStage.RATE_LIMIT
            identity = client_identity(request.headers, request.client_host)
            set_client_context(identity)
            normalized = replace(normalized, identity=identity)
            decision = await self.rate_limit.check_request(identity)
            if not decision["allowed"]:
                raise RateLimitError(
                    retry_after=decision.get("retry_after"),
                    details={"limit": decision.get("limit"), "current_count": decision.get("current_count")},
                )

            stage = PipelineStage.CACHE_LOOKUP
            cached = await self._lookup(provider, normalized)
            if cached is not None:
                return ProxyResponse(
                    status_code=cached.status_code,
                    headers=dict(cached.headers),
                    body=cached.body,
                    cache_hit=True,
                )

            stage = PipelineStage.UPSTREAM_FETCH
            upstream = await self.upstream.fetch(
                provider,
                normalized,
                self.validator.credential_for(provider),
            )

            stage = PipelineStage.CACHE_STORE
            response = self._shape(upstream)
            if upstream.is_success:
                await self._store(normalized, response)

            stage = PipelineStage.RESPOND
            return response
        except ProxyError:
            raise
        except Exception as exc:
            self.logger.error("Unexpected pipeline failure", stage=stage.value, error=str(exc), exc_info=True)
            raise ProxyError(str(exc) or type(exc).__name__, details={"stage": stage.value}) from exc

    def _shape(self, upstream: UpstreamResponse) -> ProxyResponse:
        content_type = upstream.content_type or DEFAULT_CONTENT_TYPE
        cache_control = self.cache_control if upstream.is_success else UNCACHEABLE_CONTROL
        return ProxyResponse(
            status_code=upstream.status_code,
            headers={"content-type": content_type, "cache-control": cache_control},
            body=upstream.body,
        )

    async def _lookup(self, provider: ProviderConfig, request: NormalizedRequest) -> Optional[CacheEntry]:
        try:
            entry = await self.cache.get(request.cache_key)
        except Exception as exc:
            self.logger.error("Cache lookup error", key=request.cache_key, error=str(exc))
            entry = None

        result = "hit" if entry is not None else "miss"
        self.logger.debug("Cache lookup", key=request.cache_key, result=result)
        if self.metrics:
            self.metrics.increment_counter(
                "proxy_cache_lookups_total", provider=provider.provider_id, result=result
            )
        return entry

    async def _store(self, request: NormalizedRequest, response: ProxyResponse) -> None:
        entry = CacheEntry(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.body,
            created_at=self.clock(),
            ttl_seconds=self.cache_ttl,
        )
        try:
            stored = await self.cache.put(request.cache_key, entry, self.cache_ttl)
        except Exception as exc:
            self.logger.error("Cache store error", key=request.cache_key, error=str(exc))
            stored = False

        if not stored:
            self.logger.debug("Response not cached", key=request.cache_key)
