"""
Upstream provider client for the proxy.
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional, TYPE_CHECKING

import httpx

from shared.errors import UpstreamTransportError
from shared.logging import get_logger
from ..providers.registry import ProviderConfig
from ..validation.request_validator import NormalizedRequest

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class UpstreamResponse:
    """Raw provider response; the body is never parsed."""

    status_code: int
    headers: Dict[str, str]
    body: bytes

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")


class UpstreamClient:
    """Performs exactly one GET per call against the resolved provider."""

    def __init__(
        self,
        timeout: float = 10.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("proxy.upstream")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    @staticmethod
    def build_url(
        provider: ProviderConfig,
        request: NormalizedRequest,
        credential: Optional[str] = None,
    ) -> str:
        """``base?canonical`` plus the server-held credential when required."""
        query = request.canonical_query
        if provider.requires_credential and credential:
            suffix = httpx.QueryParams({provider.credential_param: credential})
            query = f"{query}&{suffix}" if query else str(suffix)
        if not query:
            return provider.base_url
        return f"{provider.base_url}?{query}"

    async def fetch(
        self,
        provider: ProviderConfig,
        request: NormalizedRequest,
        credential: Optional[str] = None,
    ) -> UpstreamResponse:
        """Fetch from the provider; transport faults raise UpstreamTransportError."""
        url = self.build_url(provider, request, credential)
        # Never log the credentialed URL.
        log_target = f"{provider.base_url}?{request.canonical_query}"
        start = time.perf_counter()

        try:
            response = await self._client.get(url)
            body = response.content
        except httpx.RequestError as exc:
            self.logger.error(
                "Upstream transport error",
                provider=provider.provider_id,
                url=log_target,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            self._record(provider.provider_id, "transport_error", time.perf_counter() - start)
            raise UpstreamTransportError(
                details={"provider": provider.provider_id, "error": type(exc).__name__}
            ) from exc

        duration = time.perf_counter() - start
        self._record(provider.provider_id, f"{response.status_code // 100}xx", duration)

        if response.is_success:
            self.logger.debug(
                "Upstream response received",
                provider=provider.provider_id,
                url=log_target,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
        else:
            self.logger.warning(
                "Upstream returned non-success status",
                provider=provider.provider_id,
                url=log_target,
                status_code=response.status_code,
            )

        return UpstreamResponse(
            status_code=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            body=body,
        )

    def _record(self, provider_id: str, status_class: str, duration: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter(
            "proxy_upstream_requests_total", provider=provider_id, status_class=status_class
        )
        self.metrics.observe_histogram(
            "proxy_upstream_duration_seconds", duration, provider=provider_id
        )

    async def close(self) -> None:
        await self._client.aclose()
