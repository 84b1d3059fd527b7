"""
Provider registry package.

Holds the immutable catalog of upstream weather providers: their base
URLs, parameter whitelists, required and numeric fields, and whether a
server-held credential is appended to the outbound URL.
"""

from .registry import (
    DEFAULT_PROVIDER_ID,
    DEFAULT_PROVIDERS,
    OPEN_METEO,
    OPEN_METEO_GEOCODING,
    OPEN_WEATHER_MAP,
    ProviderConfig,
    ProviderRegistry,
)

__all__ = [
    "DEFAULT_PROVIDER_ID",
    "DEFAULT_PROVIDERS",
    "OPEN_METEO",
    "OPEN_METEO_GEOCODING",
    "OPEN_WEATHER_MAP",
    "ProviderConfig",
    "ProviderRegistry",
]
