"""
Shared error handling for the weather edge proxy.

Every error that reaches a caller is rendered as a single-field JSON
object: ``{"error": "<message>"}``.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str


class ProxyError(Exception):
    """Base exception for proxy failures that map to an HTTP status."""

    status_code: int = 500
    code: str = "PROXY_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message)


class ValidationError(ProxyError):
    """Caller input fault; never retried."""

    status_code = 400
    code = "VALIDATION_ERROR"


class UnsupportedProviderError(ValidationError):
    """Provider id did not resolve to a registry entry."""

    code = "UNSUPPORTED_PROVIDER"

    def __init__(self, message: str = "Unsupported provider", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class ConfigurationError(ProxyError):
    """Server-side configuration is incomplete for this request."""

    status_code = 500
    code = "CONFIGURATION_ERROR"


class AuthenticationError(ProxyError):
    """Shared-secret mismatch."""

    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Invalid proxy key", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class AuthorizationError(ProxyError):
    """Origin not in the allowlist."""

    status_code = 403
    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Origin not allowed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class RateLimitError(ProxyError):
    """Caller exceeded the fixed-window budget."""

    status_code = 429
    code = "RATE_LIMIT_ERROR"

    def __init__(
        self,
        message: str = "Too many requests",
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, details)


class UpstreamTransportError(ProxyError):
    """DNS, connect, timeout or protocol failure talking to a provider."""

    status_code = 500
    code = "UPSTREAM_TRANSPORT_ERROR"

    def __init__(self, message: str = "Upstream request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class BackendError(ProxyError):
    """Cache or rate-limiter infrastructure failure.

    Raised inside backends only; callers degrade to cache-miss or
    fail-open instead of surfacing it.
    """

    code = "BACKEND_ERROR"

    def __init__(self, backend: str, message: str = "Backend unavailable", details: Optional[Dict[str, Any]] = None):
        self.backend = backend
        super().__init__(f"{backend}: {message}", details)
