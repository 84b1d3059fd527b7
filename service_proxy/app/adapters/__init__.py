"""
Adapters package for the proxy service.

Contains the HTTP client used for outbound provider calls. The adapter
owns URL construction (including server-side credentials) and maps
transport faults to shared errors.
"""

from .upstream_client import UpstreamClient, UpstreamResponse

__all__ = ["UpstreamClient", "UpstreamResponse"]
